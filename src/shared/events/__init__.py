# src/shared/events/__init__.py
"""
Схемы событий для RabbitMQ.

- wallet_events: зачисление и провал депозитов
- store_events: покупки прокси

Все события содержат event_id для дедупликации на стороне потребителя.
"""

from src.shared.events.base import DomainEvent, EventMetadata
from src.shared.events.store_events import PurchaseCompleted
from src.shared.events.wallet_events import DepositCompleted, DepositFailed

__all__ = [
    "DomainEvent",
    "EventMetadata",
    "DepositCompleted",
    "DepositFailed",
    "PurchaseCompleted",
]
