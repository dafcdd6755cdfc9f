# src/services/miniapp_bff/dependencies.py
"""
Dependency Injection для API витрины.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Annotated

from fastapi import Header, Query

from src.common.exceptions import AuthFailed, ValidationFailed
from src.common.logger import log_warning
from src.services.miniapp_bff.telegram_auth import (
    TelegramAuthError,
    TelegramInitData,
    extract_user_id,
    validate_init_data,
)

if TYPE_CHECKING:
    from src.config.loader import Settings
    from src.core.catalog.service import CatalogService
    from src.core.wallet.service import WalletService
    from src.infra.database import DatabaseManager
    from src.infra.event_bus import EventBus
    from src.infra.redis_client import RedisClient
    from src.services.payments.gateway import RupantorPayClient
    from src.services.payments.service import PaymentService


# Синглтоны
_db: "DatabaseManager | None" = None
_redis: "RedisClient | None" = None
_event_bus: "EventBus | None" = None
_gateway: "RupantorPayClient | None" = None
_wallet_service: "WalletService | None" = None
_payment_service: "PaymentService | None" = None
_catalog_service: "CatalogService | None" = None
_bot_token: str = ""
_max_age: int = 86400
_max_future_skew: int = 60


async def init_dependencies(
    db: "DatabaseManager",
    redis: "RedisClient",
    event_bus: "EventBus | None",
    gateway: "RupantorPayClient",
    config: "Settings",
) -> None:
    """Собрать сервисы при старте приложения."""
    global _db, _redis, _event_bus, _gateway, _wallet_service, _payment_service, _catalog_service
    global _bot_token, _max_age, _max_future_skew

    from src.core.catalog.provisioner import ProxyProvisioner
    from src.core.catalog.repository import CatalogRepository
    from src.core.catalog.service import CatalogService
    from src.core.security.replay_guard import ReplayGuard
    from src.core.wallet.repository import WalletRepository
    from src.core.wallet.service import WalletService
    from src.services.payments.service import PaymentService

    _db = db
    _redis = redis
    # В /health шина проверяется, только если RabbitMQ включён
    _event_bus = event_bus if config.rabbitmq.RABBITMQ_ENABLED else None
    _gateway = gateway
    _bot_token = config.telegram.BOT_TOKEN
    _max_age = config.telegram.INIT_DATA_MAX_AGE
    _max_future_skew = config.telegram.INIT_DATA_MAX_FUTURE_SKEW

    replay_guard = ReplayGuard(
        redis,
        in_flight_window=config.replay_guard.IN_FLIGHT_WINDOW,
        processed_ttl=config.replay_guard.PROCESSED_TTL,
    )
    wallet_repository = WalletRepository(db)

    _wallet_service = WalletService(
        db=db,
        repository=wallet_repository,
        event_bus=event_bus,
        min_deposit=Decimal(str(config.payments.MIN_DEPOSIT)),
        max_deposit=Decimal(str(config.payments.MAX_DEPOSIT)),
    )
    _payment_service = PaymentService(
        wallet=_wallet_service,
        gateway=gateway,
        config=config.payments,
        replay_guard=replay_guard,
    )
    _catalog_service = CatalogService(
        db=db,
        repository=CatalogRepository(db),
        wallet_repository=wallet_repository,
        provisioner=ProxyProvisioner(
            host_template=config.proxy.PROXY_HOST_TEMPLATE,
            port_min=config.proxy.PROXY_PORT_MIN,
            port_max=config.proxy.PROXY_PORT_MAX,
        ),
        replay_guard=replay_guard,
        event_bus=event_bus,
    )


def get_db() -> "DatabaseManager":
    """Получить менеджер базы данных."""
    if _db is None:
        raise RuntimeError("База данных не инициализирована. Вызовите init_dependencies()")
    return _db


def get_redis() -> "RedisClient":
    """Получить клиент Redis."""
    if _redis is None:
        raise RuntimeError("Redis не инициализирован. Вызовите init_dependencies()")
    return _redis


def get_event_bus() -> "EventBus | None":
    """Шина событий или None, если RabbitMQ отключён."""
    return _event_bus


def get_wallet_service() -> "WalletService":
    if _wallet_service is None:
        raise RuntimeError("WalletService не инициализирован. Вызовите init_dependencies()")
    return _wallet_service


def get_payment_service() -> "PaymentService":
    if _payment_service is None:
        raise RuntimeError("PaymentService не инициализирован. Вызовите init_dependencies()")
    return _payment_service


def get_catalog_service() -> "CatalogService":
    if _catalog_service is None:
        raise RuntimeError("CatalogService не инициализирован. Вызовите init_dependencies()")
    return _catalog_service


# === AUTH ===

def require_init_data(init_data: str | None) -> str:
    """initData из тела или заголовка. Без него запрос отклоняется с 400."""
    if not init_data:
        raise ValidationFailed("Telegram init data is required")
    return init_data


async def authenticate(init_data: str | None) -> TelegramInitData:
    """
    Проверить initData.

    Raises:
        ValidationFailed: initData не передан
        AuthFailed: Подпись неверна или данные устарели
    """
    init_data = require_init_data(init_data)
    try:
        return validate_init_data(
            init_data,
            _bot_token,
            max_age_seconds=_max_age,
            max_future_skew=_max_future_skew,
        )
    except TelegramAuthError as e:
        await log_warning(
            f"initData отклонены: {e}",
            extra={"claimed_user_id": extract_user_id(init_data)},
        )
        raise AuthFailed() from e


async def get_current_user(
    init_data: Annotated[str | None, Query()] = None,
    x_telegram_init_data: Annotated[str | None, Header(alias="X-Telegram-Init-Data")] = None,
) -> TelegramInitData:
    """initData из query-параметра init_data или заголовка X-Telegram-Init-Data."""
    return await authenticate(init_data or x_telegram_init_data)


async def cleanup_dependencies() -> None:
    """Очистить ресурсы при остановке приложения."""
    global _wallet_service, _payment_service, _catalog_service, _gateway
    if _gateway is not None:
        await _gateway.close()
        _gateway = None
    _wallet_service = None
    _payment_service = None
    _catalog_service = None
