# src/core/security/replay_guard.py
"""
Защита от повторов (replay guard).

Идентификатор запроса детерминирован: он строится из области действия,
вызывающего пользователя и ключа идемпотентности, поэтому повтор клиента
после потерянного ответа получает тот же идентификатор.

Состояние хранится в Redis и общее для всех экземпляров сервиса:
- ключ с коротким TTL (окно in-flight) означает, что запрос выполняется;
- ключ с длинным TTL и processed=true означает, что запрос уже выполнен.
Старые записи удаляются самим Redis по TTL.
"""

from __future__ import annotations

import hashlib
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from src.common.exceptions import ReplayDetectedError
from src.common.logger import log_debug, log_error, log_warning
from src.infra.redis_client import RedisClient

KEY_PREFIX = "replay"


def make_request_id(scope: str, caller: str | int, idempotency_key: str) -> str:
    """
    Детерминированный идентификатор запроса.

    Args:
        scope: Операция (purchase, deposit, verify, callback)
        caller: Кто вызывает (telegram_id или reference_id)
        idempotency_key: Ключ идемпотентности клиента или reference_id
    """
    digest = hashlib.sha256(f"{scope}\x1f{caller}\x1f{idempotency_key}".encode()).hexdigest()
    return f"{scope}:{digest}"


class ReplayGuard:
    """Отметки о выполняющихся и выполненных запросах в Redis."""

    def __init__(
        self,
        redis: RedisClient,
        in_flight_window: int = 5,
        processed_ttl: int = 3600,
    ) -> None:
        self._redis = redis
        self._in_flight_window = in_flight_window
        self._processed_ttl = processed_ttl

    @staticmethod
    def _key(request_id: str) -> str:
        return f"{KEY_PREFIX}:{request_id}"

    async def is_processed(self, request_id: str) -> bool:
        """True, если запрос уже выполнен или был замечен в окне in-flight."""
        return await self._redis.get_json(self._key(request_id)) is not None

    async def claim(self, request_id: str, owner: str | None = None) -> bool:
        """
        Атомарно занимает идентификатор (SET NX EX).

        Args:
            request_id: Идентификатор запроса
            owner: Метка владельца отметки, см. release()

        Returns:
            False, если запрос уже выполняется или выполнен
        """
        return await self._redis.set_json(
            self._key(request_id),
            {"processed": False, "owner": owner, "ts": time.time()},
            ttl=self._in_flight_window,
            nx=True,
        )

    async def mark_processed(self, request_id: str) -> None:
        """Запоминает выполненный запрос на processed_ttl секунд."""
        await self._redis.set_json(
            self._key(request_id),
            {"processed": True, "ts": time.time()},
            ttl=self._processed_ttl,
        )

    async def release(self, request_id: str, owner: str | None = None) -> None:
        """
        Снимает in-flight отметку, чтобы клиент мог повторить запрос.

        С owner удаляется только своя незавершённая отметка: если окно
        истекло и идентификатор занял или завершил другой запрос,
        его отметка остаётся.
        """
        key = self._key(request_id)
        if owner is not None:
            record = await self._redis.get_json(key)
            if record is None or record.get("processed") or record.get("owner") != owner:
                return
        await self._redis.delete(key)

    @asynccontextmanager
    async def protect(self, request_id: str, remember: bool = True) -> AsyncIterator[None]:
        """
        claim → выполнить блок → mark_processed (или release при ошибке).

        Args:
            request_id: Идентификатор из make_request_id
            remember: Запоминать ли успешный запрос. При False отсекаются
                только параллельные дубли, повтор после завершения допустим.

        Raises:
            ReplayDetectedError: Если запрос уже выполняется или выполнен
        """
        owner = uuid.uuid4().hex
        if await self.is_processed(request_id) or not await self.claim(request_id, owner):
            await log_warning(f"Повтор запроса отклонён: {request_id}")
            raise ReplayDetectedError()

        try:
            yield
        except BaseException:
            await self.release(request_id, owner)
            raise

        # Блок уже выполнен, сбой Redis только логируется
        try:
            if remember:
                await self.mark_processed(request_id)
            else:
                await self.release(request_id, owner)
        except Exception as e:
            await log_error(f"Не удалось обновить отметку {request_id}: {e}")
            return
        await log_debug(f"Запрос {request_id} завершён")
