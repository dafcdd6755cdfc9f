# src/services/miniapp_bff/telegram_auth.py
"""
Валидация Telegram Mini App initData.
https://core.telegram.org/bots/webapps#validating-data-received-via-the-mini-app

Любая ошибка разбора, пустой токен, отсутствующий hash, несовпадение
подписи или устаревший auth_date означают отказ.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qsl, urlencode

from pydantic import BaseModel, ValidationError


class TelegramUser(BaseModel):
    """Данные пользователя из initData."""
    id: int
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    language_code: str | None = None
    is_premium: bool | None = None
    photo_url: str | None = None


class TelegramInitData(BaseModel):
    """Распарсенные и проверенные данные initData."""
    user: TelegramUser
    auth_date: datetime
    query_id: str | None = None
    chat_type: str | None = None
    chat_instance: str | None = None
    start_param: str | None = None
    hash: str


class TelegramAuthError(Exception):
    """Ошибка валидации Telegram данных."""
    pass


def _secret_key(bot_token: str) -> bytes:
    """Первая ступень: HMAC-SHA256 с ключом "WebAppData" от токена бота."""
    return hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()


def _data_check_string(fields: dict[str, str]) -> str:
    return "\n".join(f"{key}={fields[key]}" for key in sorted(fields) if key != "hash")


def _parse(init_data: str) -> dict[str, str]:
    """
    Разбирает query string. Повтор ключа считается подделкой:
    иначе подписанное и прочитанное значения могут разойтись.
    """
    pairs = parse_qsl(init_data, keep_blank_values=True, strict_parsing=True)
    fields: dict[str, str] = {}
    for key, value in pairs:
        if key in fields:
            raise TelegramAuthError(f"Повторяющийся ключ {key} в initData")
        fields[key] = value
    return fields


def sign_fields(fields: dict[str, str], bot_token: str) -> str:
    """Подпись (hex) для набора полей initData."""
    return hmac.new(
        _secret_key(bot_token),
        _data_check_string(fields).encode(),
        hashlib.sha256,
    ).hexdigest()


def validate_init_data(
    init_data: str,
    bot_token: str,
    max_age_seconds: int = 86400,
    max_future_skew: int = 60,
    now: float | None = None,
) -> TelegramInitData:
    """
    Валидировать initData от Telegram Mini App.

    Args:
        init_data: URL-encoded строка от Telegram WebApp.initData
        bot_token: Токен бота
        max_age_seconds: Максимальный возраст auth_date (по умолчанию 24 часа)
        max_future_skew: Допустимое опережение auth_date (рассинхрон часов)
        now: Текущее время (unix), для тестов

    Returns:
        TelegramInitData с данными пользователя

    Raises:
        TelegramAuthError: Если данные невалидны или устарели
    """
    if not bot_token:
        raise TelegramAuthError("Токен бота не настроен")
    if not init_data:
        raise TelegramAuthError("Пустой initData")

    try:
        fields = _parse(init_data)
    except ValueError as e:
        raise TelegramAuthError(f"Ошибка парсинга initData: {e}") from e

    received_hash = fields.get("hash")
    if not received_hash:
        raise TelegramAuthError("Отсутствует hash в initData")

    expected_hash = sign_fields(fields, bot_token)
    if not hmac.compare_digest(expected_hash.encode(), received_hash.encode()):
        raise TelegramAuthError("Невалидный hash initData")

    raw_auth_date = fields.get("auth_date")
    if not raw_auth_date:
        raise TelegramAuthError("Отсутствует auth_date в initData")
    try:
        auth_ts = int(raw_auth_date)
    except ValueError as e:
        raise TelegramAuthError("Некорректный auth_date") from e

    current = time.time() if now is None else now
    if current - auth_ts > max_age_seconds:
        raise TelegramAuthError("initData устарели")
    if auth_ts - current > max_future_skew:
        raise TelegramAuthError("auth_date в будущем")

    raw_user = fields.get("user")
    if not raw_user:
        raise TelegramAuthError("Отсутствует user в initData")

    try:
        user = TelegramUser.model_validate(json.loads(raw_user))
    except (ValueError, ValidationError) as e:
        raise TelegramAuthError(f"Некорректный user в initData: {e}") from e

    return TelegramInitData(
        user=user,
        auth_date=datetime.fromtimestamp(auth_ts, tz=timezone.utc),
        query_id=fields.get("query_id"),
        chat_type=fields.get("chat_type"),
        chat_instance=fields.get("chat_instance"),
        start_param=fields.get("start_param"),
        hash=received_hash,
    )


def verify_init_data(
    init_data: str,
    bot_token: str,
    max_age_seconds: int = 86400,
    max_future_skew: int = 60,
    now: float | None = None,
) -> bool:
    """True, только если initData подписаны этим ботом и свежие."""
    try:
        validate_init_data(init_data, bot_token, max_age_seconds, max_future_skew, now)
    except TelegramAuthError:
        return False
    return True


def extract_user_id(init_data: str) -> int | None:
    """
    Быстрое извлечение user_id из initData без проверки подписи.
    Только для логирования: доверять результату нельзя.
    """
    try:
        fields = dict(parse_qsl(init_data, keep_blank_values=True))
        user_id = json.loads(fields["user"]).get("id")
    except (KeyError, ValueError, AttributeError):
        return None
    return user_id if isinstance(user_id, int) else None


def build_init_data(
    user: dict[str, Any],
    bot_token: str,
    auth_date: int | None = None,
    **extra: str,
) -> str:
    """
    Собирает корректно подписанную строку initData.
    Нужна для тестов и локальной отладки без клиента Telegram.
    """
    fields = {
        "auth_date": str(int(time.time()) if auth_date is None else auth_date),
        "user": json.dumps(user, separators=(",", ":"), ensure_ascii=False),
        **extra,
    }
    fields["hash"] = sign_fields(fields, bot_token)
    return urlencode(fields)
