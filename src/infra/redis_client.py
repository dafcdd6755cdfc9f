# src/infra/redis_client.py
"""
Клиент Redis.
Используется защитой от повторов: короткоживущие ключи с SET NX EX.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis

from src.common.logger import get_logger, log_error, log_info

logger = get_logger("redis")


class RedisClient:
    """
    Асинхронный клиент Redis (Singleton).
    Все ключи автоматически получают префикс namespace.
    """

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "proxy_store"

    @property
    def client(self) -> redis.Redis:
        """Низкоуровневый клиент redis.asyncio."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    @property
    def namespace(self) -> str:
        return self._namespace

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def connect(
        self,
        url: str,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        """
        Подключается к Redis и проверяет соединение PING.

        Args:
            url: URL Redis
            max_connections: Размер пула соединений
            namespace: Префикс ключей
        """
        if self._client is not None:
            return

        if namespace:
            self._namespace = namespace

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        await self._client.ping()
        await log_info("Подключение к Redis установлено")

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто")

    # =========================================================================
    # БАЗОВЫЕ ОПЕРАЦИИ
    # =========================================================================

    async def get(self, key: str) -> str | None:
        return await self.client.get(self._make_key(key))

    async def set(
        self,
        key: str,
        value: str,
        ttl: int | None = None,
        nx: bool = False,
    ) -> bool:
        """
        Устанавливает значение.

        Args:
            key: Ключ
            value: Значение
            ttl: Время жизни в секундах
            nx: Записать, только если ключа ещё нет

        Returns:
            True, если значение записано (при nx=True False означает, что ключ уже был)
        """
        result = await self.client.set(self._make_key(key), value, ex=ttl, nx=nx)
        return bool(result)

    async def delete(self, key: str) -> int:
        return await self.client.delete(self._make_key(key))

    # =========================================================================
    # JSON ОПЕРАЦИИ
    # =========================================================================

    async def get_json(self, key: str) -> dict[str, Any] | None:
        """Читает JSON-объект. Повреждённое значение считается отсутствующим."""
        data = await self.get(key)
        if data is None:
            return None
        try:
            value = json.loads(data)
        except json.JSONDecodeError:
            await log_error(f"Некорректный JSON в ключе {key}")
            return None
        return value if isinstance(value, dict) else None

    async def set_json(
        self,
        key: str,
        data: dict[str, Any],
        ttl: int | None = None,
        nx: bool = False,
    ) -> bool:
        """Сериализует и сохраняет JSON-объект."""
        return await self.set(key, json.dumps(data, ensure_ascii=False), ttl=ttl, nx=nx)

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def health_check(self) -> bool:
        """True, если Redis отвечает на PING."""
        try:
            return bool(await self.client.ping())
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False


def get_redis() -> RedisClient:
    """Возвращает глобальный экземпляр RedisClient."""
    return RedisClient()


async def init_redis() -> RedisClient:
    """Подключается к Redis по настройкам из конфигурации."""
    from src.config import settings

    redis_client = get_redis()
    await redis_client.connect(
        url=settings.redis.url,
        max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        namespace=settings.redis.REDIS_NAMESPACE,
    )
    await log_info(
        f"Redis подключён: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}"
    )
    return redis_client


async def close_redis() -> None:
    """Закрывает подключение к Redis."""
    await get_redis().disconnect()
