# src/core/wallet/models.py
"""
Модели кошелька: пользователь, движение по счёту, подтверждённый платёж.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import SettlementOutcome, TransactionStatus, TransactionType

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """
    Приводит сумму к Decimal с точностью до цента.

    Raises:
        ValueError: Если значение не число
    """
    if isinstance(value, bool):
        raise ValueError("Сумма не может быть bool")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Некорректная сумма: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Некорректная сумма: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class User(BaseModel):
    """Пользователь Mini App."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    telegram_id: int
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    photo_url: str | None = None
    balance: Decimal = Decimal("0.00")
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "User":
        return cls(
            id=str(row["id"]),
            telegram_id=row["telegram_id"],
            username=row.get("username"),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            photo_url=row.get("photo_url"),
            balance=to_money(row["balance"]),
            created_at=row.get("created_at"),
        )


class Transaction(BaseModel):
    """Движение по кошельку: депозит (+) или покупка (-)."""

    id: str
    user_id: str
    type: TransactionType
    amount: Decimal
    description: str | None = None
    reference_id: str
    status: TransactionStatus
    checkout_url: str | None = None
    created_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "Transaction":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            type=TransactionType(row["type"]),
            amount=to_money(row["amount"]),
            description=row.get("description"),
            reference_id=row["reference_id"],
            status=TransactionStatus(row["status"]),
            checkout_url=row.get("checkout_url"),
            created_at=row.get("created_at"),
        )

    def to_api(self) -> dict[str, Any]:
        """Представление для истории операций в Mini App."""
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": float(self.amount),
            "description": self.description,
            "referenceId": self.reference_id,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class SettlementResult(BaseModel):
    """Итог проведения депозита."""

    outcome: SettlementOutcome
    reference_id: str
    user_id: str
    amount: Decimal
    balance: Decimal = Field(..., description="Баланс после проведения")

    @property
    def applied(self) -> bool:
        """Изменило ли это проведение состояние."""
        return self.outcome != SettlementOutcome.ALREADY_PROCESSED
