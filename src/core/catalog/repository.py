# src/core/catalog/repository.py
"""
Репозиторий каталога и покупок.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from asyncpg import Connection

from src.common.constants import PurchaseStatus
from src.core.catalog.models import ProxyCredentials, ProxyProduct
from src.infra.database import DatabaseManager

_PRODUCT_COLUMNS = "id, name, description, gb_options, price_per_gb, stock, is_active"


class CatalogRepository:
    """Репозиторий товаров и покупок прокси."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _runner(self, conn: Connection | None) -> Any:
        return conn if conn is not None else self._db

    async def list_active(self) -> list[ProxyProduct]:
        rows = await self._db.fetch(
            f"SELECT {_PRODUCT_COLUMNS} FROM proxy_products WHERE is_active ORDER BY created_at, id"
        )
        return [ProxyProduct.from_record(row) for row in rows]

    async def get_product(
        self,
        product_id: str,
        conn: Connection | None = None,
        for_update: bool = False,
    ) -> ProxyProduct | None:
        lock = " FOR UPDATE" if for_update else ""
        row = await self._runner(conn).fetchrow(
            f"SELECT {_PRODUCT_COLUMNS} FROM proxy_products WHERE id = $1{lock}",
            product_id,
        )
        return ProxyProduct.from_record(row) if row else None

    async def decrement_stock(self, product_id: str, quantity: int, conn: Connection) -> int | None:
        """
        Условное списание со склада.

        Returns:
            Новый остаток или None, если товара не хватает
        """
        return await conn.fetchval(
            """
            UPDATE proxy_products SET stock = stock - $2, updated_at = now()
            WHERE id = $1 AND stock >= $2
            RETURNING stock
            """,
            product_id,
            quantity,
        )

    async def insert_purchase(
        self,
        user_id: str,
        product_id: str,
        total_gb: int,
        quantity: int,
        total_amount: Decimal,
        credentials: ProxyCredentials,
        conn: Connection,
    ) -> str:
        """Записывает покупку. gb_amount хранит суммарный объём."""
        purchase_id = await conn.fetchval(
            """
            INSERT INTO proxy_purchases (user_id, product_id, gb_amount, quantity, total_amount, status, proxy_details)
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
            RETURNING id
            """,
            user_id,
            product_id,
            total_gb,
            quantity,
            total_amount,
            PurchaseStatus.COMPLETED.value,
            credentials.to_json(),
        )
        return str(purchase_id)
