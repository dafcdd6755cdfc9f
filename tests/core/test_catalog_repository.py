# tests/core/test_catalog_repository.py
"""
Тесты SQL репозитория каталога.
"""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.catalog.models import ProxyCredentials
from src.core.catalog.repository import CatalogRepository

PRODUCT_ROW = {
    "id": "product-1",
    "name": "ABC (GB) Proxy",
    "description": "Non-expiring residential proxies",
    "gb_options": [1, 5, 10],
    "price_per_gb": Decimal("1.5"),
    "stock": 1000,
    "is_active": True,
}


def _sql(mock: AsyncMock) -> str:
    return " ".join(mock.call_args.args[0].split())


@pytest.fixture
def db() -> MagicMock:
    manager = MagicMock()
    manager.fetch = AsyncMock(return_value=[PRODUCT_ROW])
    manager.fetchrow = AsyncMock(return_value=None)
    return manager


@pytest.fixture
def conn() -> MagicMock:
    connection = MagicMock()
    connection.fetchrow = AsyncMock(return_value=None)
    connection.fetchval = AsyncMock(return_value=None)
    return connection


@pytest.fixture
def repository(db: MagicMock) -> CatalogRepository:
    return CatalogRepository(db)


class TestProducts:

    @pytest.mark.asyncio
    async def test_list_active(self, repository: CatalogRepository, db: MagicMock) -> None:
        [product] = await repository.list_active()

        assert product.price_per_gb == Decimal("1.50")
        assert product.gb_options == [1, 5, 10]
        assert "WHERE is_active" in _sql(db.fetch)

    @pytest.mark.asyncio
    async def test_get_for_update(self, repository: CatalogRepository, conn: MagicMock) -> None:
        conn.fetchrow.return_value = PRODUCT_ROW

        product = await repository.get_product("product-1", conn=conn, for_update=True)

        assert product.stock == 1000
        assert _sql(conn.fetchrow).endswith("WHERE id = $1 FOR UPDATE")
        assert conn.fetchrow.call_args.args[1:] == ("product-1",)

    @pytest.mark.asyncio
    async def test_missing_product(self, repository: CatalogRepository, db: MagicMock) -> None:
        assert await repository.get_product("nope") is None
        assert "FOR UPDATE" not in _sql(db.fetchrow)


class TestStock:

    @pytest.mark.asyncio
    async def test_decrement_is_conditional(self, repository: CatalogRepository, conn: MagicMock) -> None:
        conn.fetchval.return_value = 998

        assert await repository.decrement_stock("product-1", 2, conn) == 998
        assert "WHERE id = $1 AND stock >= $2 RETURNING stock" in _sql(conn.fetchval)
        assert conn.fetchval.call_args.args[1:] == ("product-1", 2)

    @pytest.mark.asyncio
    async def test_decrement_without_stock(self, repository: CatalogRepository, conn: MagicMock) -> None:
        """Нет строки: товара меньше, чем просили."""
        assert await repository.decrement_stock("product-1", 5000, conn) is None


class TestPurchases:

    @pytest.mark.asyncio
    async def test_insert(self, repository: CatalogRepository, conn: MagicMock) -> None:
        conn.fetchval.return_value = "purchase-1"
        credentials = ProxyCredentials(ip="1.2.3.4", port=8080, username="u", password="secret")

        purchase_id = await repository.insert_purchase(
            user_id="user-1",
            product_id="product-1",
            total_gb=10,
            quantity=2,
            total_amount=Decimal("15.00"),
            credentials=credentials,
            conn=conn,
        )

        assert purchase_id == "purchase-1"
        assert "$7::jsonb" in _sql(conn.fetchval)
        args = conn.fetchval.call_args.args[1:]
        assert args[:6] == ("user-1", "product-1", 10, 2, Decimal("15.00"), "completed")
        assert json.loads(args[6])["password"] == "secret"
