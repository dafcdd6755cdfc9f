# src/shared/events/store_events.py
"""
События витрины.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from src.shared.events.base import DomainEvent


class PurchaseCompleted(DomainEvent):
    """Событие: пакет прокси куплен и оплачен с баланса."""

    event_type: Literal["store.purchase_completed"] = "store.purchase_completed"

    purchase_id: str
    user_id: str
    telegram_id: int
    product_id: str
    gb_amount: int
    quantity: int
    total_amount: Decimal
    remaining_balance: Decimal
