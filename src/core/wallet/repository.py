# src/core/wallet/repository.py
"""
Репозиторий кошелька.

Методы, меняющие деньги, принимают соединение транзакции (conn),
открытой через DatabaseManager.transaction(). Без conn запрос идёт
через пул отдельным автокоммитом.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from asyncpg import Connection

from src.common.constants import PaymentStatus, TransactionStatus, TransactionType
from src.core.wallet.models import Transaction, User, to_money
from src.infra.database import DatabaseManager
from src.services.miniapp_bff.telegram_auth import TelegramUser

_USER_COLUMNS = "id, telegram_id, username, first_name, last_name, photo_url, balance, created_at"
_TX_COLUMNS = (
    "id, user_id, type, amount, description, reference_id, status, checkout_url, created_at"
)


class WalletRepository:
    """Репозиторий пользователей, транзакций и платежей."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    def _runner(self, conn: Connection | None) -> Any:
        return conn if conn is not None else self._db

    # =========================================================================
    # ПОЛЬЗОВАТЕЛИ
    # =========================================================================

    async def upsert_user(self, profile: TelegramUser, conn: Connection | None = None) -> User:
        """
        Находит или создаёт пользователя по telegram_id и обновляет профиль.
        Баланс при этом не трогается.
        """
        row = await self._runner(conn).fetchrow(
            f"""
            INSERT INTO users (telegram_id, username, first_name, last_name, photo_url)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (telegram_id) DO UPDATE SET
                username = EXCLUDED.username,
                first_name = EXCLUDED.first_name,
                last_name = EXCLUDED.last_name,
                photo_url = COALESCE(EXCLUDED.photo_url, users.photo_url),
                updated_at = now()
            RETURNING {_USER_COLUMNS}
            """,
            profile.id,
            profile.username,
            profile.first_name,
            profile.last_name,
            profile.photo_url,
        )
        return User.from_record(row)

    async def get_user_by_telegram_id(
        self,
        telegram_id: int,
        conn: Connection | None = None,
        for_update: bool = False,
    ) -> User | None:
        lock = " FOR UPDATE" if for_update else ""
        row = await self._runner(conn).fetchrow(
            f"SELECT {_USER_COLUMNS} FROM users WHERE telegram_id = $1{lock}",
            telegram_id,
        )
        return User.from_record(row) if row else None

    async def get_telegram_id(self, user_id: str) -> int:
        value = await self._db.fetchval("SELECT telegram_id FROM users WHERE id = $1", user_id)
        return int(value) if value is not None else 0

    async def get_balance(self, user_id: str, conn: Connection | None = None) -> Decimal:
        value = await self._runner(conn).fetchval(
            "SELECT balance FROM users WHERE id = $1",
            user_id,
        )
        return to_money(value if value is not None else 0)

    async def credit_balance(self, user_id: str, amount: Decimal, conn: Connection) -> Decimal:
        """Зачисляет сумму и возвращает новый баланс."""
        value = await conn.fetchval(
            """
            UPDATE users SET balance = balance + $2, updated_at = now()
            WHERE id = $1
            RETURNING balance
            """,
            user_id,
            amount,
        )
        return to_money(value)

    async def debit_balance(self, user_id: str, amount: Decimal, conn: Connection) -> Decimal | None:
        """
        Условное списание: только если хватает средств.

        Returns:
            Новый баланс или None, если средств недостаточно
        """
        value = await conn.fetchval(
            """
            UPDATE users SET balance = balance - $2, updated_at = now()
            WHERE id = $1 AND balance >= $2
            RETURNING balance
            """,
            user_id,
            amount,
        )
        return to_money(value) if value is not None else None

    # =========================================================================
    # ТРАНЗАКЦИИ
    # =========================================================================

    async def insert_transaction(
        self,
        user_id: str,
        tx_type: TransactionType,
        amount: Decimal,
        description: str,
        reference_id: str,
        status: TransactionStatus,
        conn: Connection | None = None,
    ) -> Transaction | None:
        """
        Создаёт транзакцию.

        Returns:
            Транзакцию или None, если reference_id уже занят
        """
        row = await self._runner(conn).fetchrow(
            f"""
            INSERT INTO transactions (user_id, type, amount, description, reference_id, status)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (reference_id) DO NOTHING
            RETURNING {_TX_COLUMNS}
            """,
            user_id,
            tx_type.value,
            amount,
            description,
            reference_id,
            status.value,
        )
        return Transaction.from_record(row) if row else None

    async def get_transaction(
        self,
        reference_id: str,
        conn: Connection | None = None,
        for_update: bool = False,
    ) -> Transaction | None:
        lock = " FOR UPDATE" if for_update else ""
        row = await self._runner(conn).fetchrow(
            f"SELECT {_TX_COLUMNS} FROM transactions WHERE reference_id = $1{lock}",
            reference_id,
        )
        return Transaction.from_record(row) if row else None

    async def set_checkout_url(
        self,
        reference_id: str,
        checkout_url: str,
        conn: Connection | None = None,
    ) -> None:
        await self._runner(conn).execute(
            """
            UPDATE transactions SET checkout_url = $2, updated_at = now()
            WHERE reference_id = $1
            """,
            reference_id,
            checkout_url,
        )

    async def transition_status(
        self,
        reference_id: str,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
        conn: Connection | None = None,
    ) -> bool:
        """
        Условный переход статуса.

        Returns:
            True, если транзакция была в from_status и переведена
        """
        row = await self._runner(conn).fetchrow(
            """
            UPDATE transactions SET status = $3, updated_at = now()
            WHERE reference_id = $1 AND status = $2
            RETURNING id
            """,
            reference_id,
            from_status.value,
            to_status.value,
        )
        return row is not None

    async def reopen_abandoned(self, reference_id: str, conn: Connection | None = None) -> bool:
        """
        failed → pending для депозита, по которому шлюз так и не выдал
        страницу оплаты и платёж не поступал.

        Returns:
            True, если транзакция переоткрыта
        """
        row = await self._runner(conn).fetchrow(
            """
            UPDATE transactions SET status = $3, updated_at = now()
            WHERE reference_id = $1 AND status = $2 AND checkout_url IS NULL
              AND NOT EXISTS (SELECT 1 FROM payments WHERE payments.reference_id = $1)
            RETURNING id
            """,
            reference_id,
            TransactionStatus.FAILED.value,
            TransactionStatus.PENDING.value,
        )
        return row is not None

    async def list_transactions(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Transaction]:
        rows = await self._db.fetch(
            f"""
            SELECT {_TX_COLUMNS} FROM transactions
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            user_id,
            limit,
            offset,
        )
        return [Transaction.from_record(row) for row in rows]

    # =========================================================================
    # ПЛАТЕЖИ
    # =========================================================================

    async def insert_payment(
        self,
        reference_id: str,
        user_id: str,
        amount: Decimal,
        source: str,
        gateway_transaction_id: str | None,
        conn: Connection,
    ) -> str | None:
        """
        Записывает подтверждённый платёж.

        Returns:
            ID платежа или None, если платёж по reference_id уже есть
        """
        payment_id = await conn.fetchval(
            """
            INSERT INTO payments (reference_id, user_id, amount, status, gateway_transaction_id, source)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (reference_id) DO NOTHING
            RETURNING id
            """,
            reference_id,
            user_id,
            amount,
            PaymentStatus.VERIFIED.value,
            gateway_transaction_id,
            source,
        )
        return str(payment_id) if payment_id is not None else None
