# src/infra/event_bus.py
"""
Шина событий на базе RabbitMQ.
Витрина только публикует события о деньгах и покупках:
подписчики (аналитика, уведомления) живут вне этого сервиса.
"""

from __future__ import annotations

from datetime import datetime, timezone

import aio_pika
from aio_pika import DeliveryMode, ExchangeType, Message
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection

from src.common.logger import get_logger, log_debug, log_error, log_info
from src.shared.events.base import DomainEvent

logger = get_logger("event_bus")


class EventBus:
    """
    Публикатор доменных событий в topic exchange (Singleton).

    Если шина не подключена (RabbitMQ отключён в конфиге), публикация
    превращается в запись в лог: деньги и склад от неё не зависят.
    """

    _instance: EventBus | None = None

    def __new__(cls) -> EventBus:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._exchange_name = "proxy_store.events"

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed

    async def connect(self, url: str, exchange_name: str | None = None) -> None:
        """
        Подключается к RabbitMQ и объявляет durable topic exchange.

        Args:
            url: URL RabbitMQ
            exchange_name: Имя exchange
        """
        if self.is_connected:
            return

        if exchange_name:
            self._exchange_name = exchange_name

        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )
        await log_info(f"Подключение к RabbitMQ установлено, exchange={self._exchange_name}")

    async def disconnect(self) -> None:
        """Закрывает соединение с RabbitMQ."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            await log_info("Соединение с RabbitMQ закрыто")

    async def publish(self, event: DomainEvent) -> bool:
        """
        Публикует событие, routing_key = event_type.

        Ошибки публикации логируются и не пробрасываются.

        Returns:
            True, если событие ушло в брокер
        """
        if not self.is_connected or self._exchange is None:
            await log_debug(f"Шина не подключена, событие {event.event_type} только в логе",
                            extra={"event": event.model_dump(mode="json")})
            return False

        try:
            message = Message(
                body=event.to_json().encode(),
                content_type="application/json",
                message_id=event.event_id,
                timestamp=datetime.now(timezone.utc),
                delivery_mode=DeliveryMode.PERSISTENT,
            )
            await self._exchange.publish(message, routing_key=event.event_type)
        except Exception as e:
            await log_error(f"Ошибка публикации события {event.event_type}: {e}")
            return False

        await log_debug(f"Событие опубликовано: {event.event_type}")
        return True

    async def health_check(self) -> bool:
        return self.is_connected


def get_event_bus() -> EventBus:
    """Возвращает глобальный экземпляр EventBus."""
    return EventBus()


async def init_event_bus() -> EventBus:
    """Подключает шину, если RabbitMQ включён в конфиге."""
    from src.config import settings

    event_bus = get_event_bus()
    if not settings.rabbitmq.RABBITMQ_ENABLED:
        await log_info("RabbitMQ отключён в конфиге, события пишутся только в лог")
        return event_bus

    await event_bus.connect(
        url=settings.rabbitmq.url,
        exchange_name=settings.rabbitmq.RABBITMQ_EXCHANGE,
    )
    return event_bus


async def close_event_bus() -> None:
    """Закрывает подключение к RabbitMQ."""
    await get_event_bus().disconnect()
