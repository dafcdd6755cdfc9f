# src/shared/events/wallet_events.py
"""
События кошелька: проведение депозитов.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from src.shared.events.base import DomainEvent


class DepositCompleted(DomainEvent):
    """Событие: депозит зачислен на баланс."""

    event_type: Literal["wallet.deposit_completed"] = "wallet.deposit_completed"

    reference_id: str
    user_id: str
    telegram_id: int
    amount: Decimal
    balance: Decimal
    source: str  # callback | verify
    gateway_transaction_id: str | None = None


class DepositFailed(DomainEvent):
    """Событие: платёж по депозиту не прошёл."""

    event_type: Literal["wallet.deposit_failed"] = "wallet.deposit_failed"

    reference_id: str
    user_id: str
    amount: Decimal
    source: str
    gateway_status: str | None = None
