# tests/fakes.py
"""
In-memory заменители БД, репозиториев и Redis.

FakeDatabase.transaction() сериализует транзакции общей блокировкой
(аналог блокировки строк FOR UPDATE) и откатывает состояние хранилища
при исключении, поэтому тесты проверяют реальную атомарность сервисов.
"""

from __future__ import annotations

import asyncio
import copy
import json
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator

from src.common.constants import PaymentStatus, PurchaseStatus, TransactionStatus, TransactionType
from src.core.catalog.models import ProxyCredentials, ProxyProduct
from src.core.wallet.models import Transaction, User, to_money
from src.services.miniapp_bff.telegram_auth import TelegramUser


class InMemoryStore:
    """Таблицы витрины в виде словарей."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.transactions: dict[str, dict[str, Any]] = {}
        self.payments: dict[str, dict[str, Any]] = {}
        self.products: dict[str, dict[str, Any]] = {}
        self.purchases: dict[str, dict[str, Any]] = {}

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self.__dict__)

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.__dict__.update(snapshot)

    def add_user(self, telegram_id: int, balance: str | Decimal = "0.00", **profile: Any) -> str:
        user_id = str(uuid.uuid4())
        self.users[user_id] = {
            "id": user_id,
            "telegram_id": telegram_id,
            "username": profile.get("username"),
            "first_name": profile.get("first_name"),
            "last_name": profile.get("last_name"),
            "photo_url": profile.get("photo_url"),
            "balance": to_money(balance),
            "created_at": datetime.now(timezone.utc),
        }
        return user_id

    def add_product(
        self,
        product_id: str = "product-1",
        price_per_gb: str = "1.50",
        stock: int = 1000,
        gb_options: list[int] | None = None,
        is_active: bool = True,
    ) -> str:
        self.products[product_id] = {
            "id": product_id,
            "name": "ABC (GB) Proxy",
            "description": "Non-expiring residential proxies, global coverage",
            "gb_options": gb_options if gb_options is not None else [1, 2, 5, 10, 15, 20, 25, 30, 50, 100],
            "price_per_gb": Decimal(price_per_gb),
            "stock": stock,
            "is_active": is_active,
        }
        return product_id

    def add_transaction(
        self,
        user_id: str,
        reference_id: str,
        amount: str | Decimal,
        status: TransactionStatus = TransactionStatus.PENDING,
        tx_type: TransactionType = TransactionType.DEPOSIT,
        checkout_url: str | None = None,
    ) -> None:
        self.transactions[reference_id] = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "type": tx_type.value,
            "amount": to_money(amount),
            "description": "test",
            "reference_id": reference_id,
            "status": status.value,
            "checkout_url": checkout_url,
            "created_at": datetime.now(timezone.utc),
        }

    def balance(self, user_id: str) -> Decimal:
        return self.users[user_id]["balance"]


class FakeConnection:
    """Маркер соединения транзакции: fake-репозитории его игнорируют."""


class FakeDatabase:
    """Замена DatabaseManager с настоящим откатом."""

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self.healthy = True
        self.commits = 0
        self.rollbacks = 0
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[FakeConnection]:
        async with self._lock:
            snapshot = self.store.snapshot()
            try:
                yield FakeConnection()
            except BaseException:
                self.store.restore(snapshot)
                self.rollbacks += 1
                raise
            self.commits += 1

    async def health_check(self) -> bool:
        return self.healthy


class FakeWalletRepository:
    """Та же поверхность, что у WalletRepository, поверх InMemoryStore."""

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    def _user_row(self, telegram_id: int) -> dict[str, Any] | None:
        for row in self.store.users.values():
            if row["telegram_id"] == telegram_id:
                return row
        return None

    async def upsert_user(self, profile: TelegramUser, conn: Any = None) -> User:
        await asyncio.sleep(0)
        row = self._user_row(profile.id)
        if row is None:
            user_id = self.store.add_user(profile.id)
            row = self.store.users[user_id]
        row.update(
            username=profile.username,
            first_name=profile.first_name,
            last_name=profile.last_name,
            photo_url=profile.photo_url or row.get("photo_url"),
        )
        return User.from_record(row)

    async def get_user_by_telegram_id(self, telegram_id: int, conn: Any = None, for_update: bool = False) -> User | None:
        await asyncio.sleep(0)
        row = self._user_row(telegram_id)
        return User.from_record(row) if row else None

    async def get_telegram_id(self, user_id: str) -> int:
        row = self.store.users.get(user_id)
        return row["telegram_id"] if row else 0

    async def get_balance(self, user_id: str, conn: Any = None) -> Decimal:
        return to_money(self.store.users[user_id]["balance"])

    async def credit_balance(self, user_id: str, amount: Decimal, conn: Any) -> Decimal:
        row = self.store.users[user_id]
        row["balance"] = to_money(row["balance"] + amount)
        return row["balance"]

    async def debit_balance(self, user_id: str, amount: Decimal, conn: Any) -> Decimal | None:
        row = self.store.users[user_id]
        if row["balance"] < amount:
            return None
        row["balance"] = to_money(row["balance"] - amount)
        return row["balance"]

    async def insert_transaction(
        self,
        user_id: str,
        tx_type: TransactionType,
        amount: Decimal,
        description: str,
        reference_id: str,
        status: TransactionStatus,
        conn: Any = None,
    ) -> Transaction | None:
        await asyncio.sleep(0)
        if reference_id in self.store.transactions:
            return None
        self.store.transactions[reference_id] = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "type": tx_type.value,
            "amount": to_money(amount),
            "description": description,
            "reference_id": reference_id,
            "status": status.value,
            "checkout_url": None,
            "created_at": datetime.now(timezone.utc),
        }
        return Transaction.from_record(self.store.transactions[reference_id])

    async def get_transaction(self, reference_id: str, conn: Any = None, for_update: bool = False) -> Transaction | None:
        await asyncio.sleep(0)
        row = self.store.transactions.get(reference_id)
        return Transaction.from_record(row) if row else None

    async def set_checkout_url(self, reference_id: str, checkout_url: str, conn: Any = None) -> None:
        if reference_id in self.store.transactions:
            self.store.transactions[reference_id]["checkout_url"] = checkout_url

    async def transition_status(
        self,
        reference_id: str,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
        conn: Any = None,
    ) -> bool:
        row = self.store.transactions.get(reference_id)
        if row is None or row["status"] != from_status.value:
            return False
        row["status"] = to_status.value
        return True

    async def reopen_abandoned(self, reference_id: str, conn: Any = None) -> bool:
        row = self.store.transactions.get(reference_id)
        if (
            row is None
            or row["status"] != TransactionStatus.FAILED.value
            or row["checkout_url"]
            or reference_id in self.store.payments
        ):
            return False
        row["status"] = TransactionStatus.PENDING.value
        return True

    async def list_transactions(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Transaction]:
        rows = [row for row in self.store.transactions.values() if row["user_id"] == user_id]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return [Transaction.from_record(row) for row in rows[offset:offset + limit]]

    async def insert_payment(
        self,
        reference_id: str,
        user_id: str,
        amount: Decimal,
        source: str,
        gateway_transaction_id: str | None,
        conn: Any,
    ) -> str | None:
        if reference_id in self.store.payments:
            return None
        payment_id = str(uuid.uuid4())
        self.store.payments[reference_id] = {
            "id": payment_id,
            "reference_id": reference_id,
            "user_id": user_id,
            "amount": amount,
            "status": PaymentStatus.VERIFIED.value,
            "gateway_transaction_id": gateway_transaction_id,
            "source": source,
        }
        return payment_id


class FakeCatalogRepository:
    """Та же поверхность, что у CatalogRepository."""

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def list_active(self) -> list[ProxyProduct]:
        return [ProxyProduct.from_record(row) for row in self.store.products.values() if row["is_active"]]

    async def get_product(self, product_id: str, conn: Any = None, for_update: bool = False) -> ProxyProduct | None:
        await asyncio.sleep(0)
        row = self.store.products.get(product_id)
        return ProxyProduct.from_record(row) if row else None

    async def decrement_stock(self, product_id: str, quantity: int, conn: Any) -> int | None:
        row = self.store.products[product_id]
        if row["stock"] < quantity:
            return None
        row["stock"] -= quantity
        return row["stock"]

    async def insert_purchase(
        self,
        user_id: str,
        product_id: str,
        total_gb: int,
        quantity: int,
        total_amount: Decimal,
        credentials: ProxyCredentials,
        conn: Any,
    ) -> str:
        purchase_id = str(uuid.uuid4())
        self.store.purchases[purchase_id] = {
            "id": purchase_id,
            "user_id": user_id,
            "product_id": product_id,
            "gb_amount": total_gb,
            "quantity": quantity,
            "total_amount": total_amount,
            "status": PurchaseStatus.COMPLETED.value,
            "proxy_details": json.loads(credentials.to_json()),
        }
        return purchase_id


class FakeRedis:
    """
    Подмножество RedisClient: строки с TTL и SET NX.
    Время можно сдвинуть через advance().
    """

    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float | None]] = {}
        self.ttls: dict[str, int | None] = {}
        self._offset = 0.0
        self.healthy = True

    def _now(self) -> float:
        return time.monotonic() + self._offset

    def advance(self, seconds: float) -> None:
        self._offset += seconds

    def _alive(self, key: str) -> bool:
        item = self._data.get(key)
        if item is None:
            return False
        expires_at = item[1]
        if expires_at is not None and expires_at <= self._now():
            del self._data[key]
            return False
        return True

    async def get(self, key: str) -> str | None:
        return self._data[key][0] if self._alive(key) else None

    async def set(self, key: str, value: str, ttl: int | None = None, nx: bool = False) -> bool:
        if nx and self._alive(key):
            return False
        self._data[key] = (value, self._now() + ttl if ttl else None)
        self.ttls[key] = ttl
        return True

    async def delete(self, key: str) -> int:
        return 1 if self._data.pop(key, None) is not None else 0

    async def get_json(self, key: str) -> dict[str, Any] | None:
        raw = await self.get(key)
        return json.loads(raw) if raw is not None else None

    async def set_json(self, key: str, data: dict[str, Any], ttl: int | None = None, nx: bool = False) -> bool:
        return await self.set(key, json.dumps(data), ttl=ttl, nx=nx)

    async def health_check(self) -> bool:
        return self.healthy
