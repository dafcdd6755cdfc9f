# src/core/catalog/models.py
"""
Модели каталога прокси и покупок.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Mapping

from pydantic import BaseModel, Field

from src.core.wallet.models import to_money


class ProxyProduct(BaseModel):
    """Товар: пакет трафика прокси, продаётся по гигабайтам."""

    id: str
    name: str
    description: str | None = None
    gb_options: list[int] = Field(default_factory=list)
    price_per_gb: Decimal
    stock: int = 0
    is_active: bool = True

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "ProxyProduct":
        return cls(
            id=row["id"],
            name=row["name"],
            description=row.get("description"),
            gb_options=list(row["gb_options"] or []),
            price_per_gb=to_money(row["price_per_gb"]),
            stock=row["stock"],
            is_active=row["is_active"],
        )

    def price_for(self, gb_amount: int, quantity: int) -> Decimal:
        """Итоговая цена: gb_amount × quantity × price_per_gb."""
        return to_money(self.price_per_gb * gb_amount * quantity)

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "gbOptions": self.gb_options,
            "pricePerGb": float(self.price_per_gb),
            "stock": self.stock,
            "isActive": self.is_active,
        }


class ProxyCredentials(BaseModel):
    """Выданные доступы к прокси. Пароль наружу не отдаётся."""

    ip: str
    port: int
    username: str
    password: str

    def public(self) -> dict[str, Any]:
        return {"ip": self.ip, "port": self.port, "username": self.username}

    def to_json(self) -> str:
        return json.dumps(self.model_dump())


class PurchaseResult(BaseModel):
    """Результат успешной покупки."""

    purchase_id: str
    user_id: str
    product_id: str
    gb_amount: int
    quantity: int
    total_amount: Decimal
    remaining_balance: Decimal
    credentials: ProxyCredentials

    @property
    def total_gb(self) -> int:
        return self.gb_amount * self.quantity

    def to_api(self) -> dict[str, Any]:
        return {
            "success": True,
            "purchaseId": self.purchase_id,
            "totalAmount": float(self.total_amount),
            "remainingBalance": float(self.remaining_balance),
            "proxyDetails": self.credentials.public(),
            "message": f"Successfully purchased {self.total_gb}GB proxy package(s)",
        }
