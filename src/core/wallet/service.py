# src/core/wallet/service.py
"""
Бизнес-логика кошелька.

Баланс меняется только в двух местах: проведение депозита (settle)
и покупка (см. src/core/catalog/service.py). Оба изменения выполняются
внутри одной транзакции БД вместе со сменой статуса.
"""

from __future__ import annotations

import hashlib
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from src.common.constants import (
    SettlementOutcome,
    SettlementSource,
    TransactionStatus,
    TransactionType,
)
from src.common.exceptions import AmountMismatchError, ConflictError, NotFound, ValidationFailed
from src.common.logger import log_info, log_warning
from src.core.wallet.models import SettlementResult, Transaction, User, to_money
from src.core.wallet.repository import WalletRepository
from src.shared.events.wallet_events import DepositCompleted, DepositFailed

if TYPE_CHECKING:
    from src.infra.database import DatabaseManager
    from src.infra.event_bus import EventBus
    from src.services.miniapp_bff.telegram_auth import TelegramUser


def new_reference(prefix: str) -> str:
    """Новый уникальный reference_id вида <prefix>_<hex>."""
    return f"{prefix}_{uuid.uuid4().hex}"


def idempotent_reference(prefix: str, telegram_id: int, idempotency_key: str) -> str:
    """reference_id, детерминированный по пользователю и ключу идемпотентности."""
    digest = hashlib.sha256(f"{telegram_id}:{idempotency_key}".encode()).hexdigest()
    return f"{prefix}_{digest[:32]}"


class WalletService:
    """
    Сервис кошелька.

    Ответственности:
    - ленивое создание пользователя
    - чтение баланса и истории
    - открытие депозита (pending, баланс не меняется)
    - идемпотентное проведение депозита
    """

    def __init__(
        self,
        db: "DatabaseManager",
        repository: WalletRepository,
        event_bus: "EventBus | None" = None,
        min_deposit: Decimal = Decimal("1.00"),
        max_deposit: Decimal = Decimal("10000.00"),
    ) -> None:
        self.db = db
        self.repository = repository
        self.event_bus = event_bus
        self.min_deposit = to_money(min_deposit)
        self.max_deposit = to_money(max_deposit)

    # === ПОЛЬЗОВАТЕЛИ И БАЛАНС ===

    async def get_or_create_user(self, profile: "TelegramUser") -> User:
        return await self.repository.upsert_user(profile)

    async def find_user(self, telegram_id: int) -> User | None:
        return await self.repository.get_user_by_telegram_id(telegram_id)

    async def get_balance(self, profile: "TelegramUser") -> dict[str, Any]:
        """Баланс для Mini App. Пользователь создаётся при первом обращении."""
        user = await self.get_or_create_user(profile)
        return {
            "balance": float(user.balance),
            "userId": user.id,
            "firstName": user.first_name,
            "lastName": user.last_name,
        }

    async def get_transactions(self, profile: "TelegramUser", limit: int = 20, offset: int = 0) -> list[Transaction]:
        user = await self.repository.get_user_by_telegram_id(profile.id)
        if user is None:
            return []
        return await self.repository.list_transactions(user.id, limit=limit, offset=offset)

    # === ДЕПОЗИТ ===

    def validate_deposit_amount(self, amount: Any) -> Decimal:
        """
        Проверяет сумму депозита и округляет до цента.

        Raises:
            ValidationFailed: Сумма не число, не положительна или вне лимитов
        """
        try:
            value = to_money(amount)
        except ValueError as e:
            raise ValidationFailed("Invalid amount") from e

        if value <= 0:
            raise ValidationFailed("Invalid amount")
        if value < self.min_deposit or value > self.max_deposit:
            raise ValidationFailed(
                f"Amount must be between {self.min_deposit} and {self.max_deposit}",
                extra={"min": float(self.min_deposit), "max": float(self.max_deposit)},
            )
        return value

    async def open_deposit(
        self,
        user: User,
        amount: Decimal,
        description: str,
        reference_id: str | None = None,
    ) -> tuple[Transaction, bool]:
        """
        Создаёт pending-депозит. Баланс не меняется до подтверждения оплаты.

        Args:
            user: Владелец депозита
            amount: Сумма (уже проверенная)
            description: Описание для истории
            reference_id: Заданный reference_id (для идемпотентных повторов)

        Returns:
            (транзакция, создана ли она этим вызовом)

        Raises:
            ConflictError: reference_id занят чужой транзакцией
        """
        reference = reference_id or new_reference("deposit")
        created = await self.repository.insert_transaction(
            user_id=user.id,
            tx_type=TransactionType.DEPOSIT,
            amount=amount,
            description=description,
            reference_id=reference,
            status=TransactionStatus.PENDING,
        )
        if created is not None:
            await log_info(
                f"Открыт депозит {reference} на {amount}",
                extra={"reference_id": reference, "user_id": user.id},
            )
            return created, True

        existing = await self.repository.get_transaction(reference)
        if existing is None or existing.user_id != user.id or existing.type != TransactionType.DEPOSIT:
            raise ConflictError("Reference already in use")
        if existing.amount != amount:
            raise ConflictError("Idempotency key reused with a different amount")
        return existing, False

    async def attach_checkout_url(self, reference_id: str, checkout_url: str) -> None:
        await self.repository.set_checkout_url(reference_id, checkout_url)

    async def abandon_deposit(self, reference_id: str) -> bool:
        """Компенсация: pending → failed, если checkout не удалось создать."""
        return await self.repository.transition_status(
            reference_id, TransactionStatus.PENDING, TransactionStatus.FAILED
        )

    async def reopen_deposit(self, reference_id: str) -> bool:
        """failed → pending для повтора депозита, брошенного до выдачи checkout."""
        return await self.repository.reopen_abandoned(reference_id)

    async def get_deposit(self, reference_id: str) -> Transaction | None:
        return await self.repository.get_transaction(reference_id)

    # === ПРОВЕДЕНИЕ ===

    async def settle(
        self,
        reference_id: str,
        outcome: TransactionStatus,
        amount: Any = None,
        source: SettlementSource = SettlementSource.VERIFY,
        gateway_transaction_id: str | None = None,
    ) -> SettlementResult:
        """
        Единственная операция, переводящая депозит из pending.
        Вызывается и вебхуком, и ручной проверкой; повторы безопасны.

        Шаги в одной транзакции БД:
        1. блокировка строки транзакции (FOR UPDATE)
        2. не pending → already_processed
        3. failed → условный переход pending → failed
        4. completed → сверка суммы, вставка в payments по уникальному
           reference_id, условный переход pending → completed, зачисление

        Args:
            reference_id: Идентификатор депозита
            outcome: COMPLETED или FAILED
            amount: Сумма по данным шлюза (None — сумма депозита)
            source: callback или verify
            gateway_transaction_id: ID операции в шлюзе

        Raises:
            NotFound: Депозит не найден
            AmountMismatchError: Сумма шлюза не совпадает с суммой депозита
        """
        if outcome not in (TransactionStatus.COMPLETED, TransactionStatus.FAILED):
            raise ValueError(f"Недопустимый исход проведения: {outcome}")

        reported = None
        if amount is not None:
            try:
                reported = to_money(amount)
            except ValueError as e:
                raise ValidationFailed("Invalid amount") from e

        async with self.db.transaction() as conn:
            tx = await self.repository.get_transaction(reference_id, conn=conn, for_update=True)
            if tx is None or tx.type != TransactionType.DEPOSIT:
                raise NotFound("Transaction not found")

            if not tx.is_pending:
                return await self._already_processed(tx, conn)

            if outcome == TransactionStatus.FAILED:
                if not await self.repository.transition_status(
                    reference_id, TransactionStatus.PENDING, TransactionStatus.FAILED, conn=conn
                ):
                    return await self._already_processed(tx, conn)
                balance = await self.repository.get_balance(tx.user_id, conn=conn)
                result = SettlementResult(
                    outcome=SettlementOutcome.FAILED,
                    reference_id=reference_id,
                    user_id=tx.user_id,
                    amount=tx.amount,
                    balance=balance,
                )
            else:
                if reported is not None and reported != tx.amount:
                    await log_warning(
                        f"Сумма шлюза {reported} не совпадает с депозитом {tx.amount}",
                        extra={"reference_id": reference_id, "source": source.value},
                    )
                    raise AmountMismatchError(extra={"expected": float(tx.amount), "received": float(reported)})

                payment_id = await self.repository.insert_payment(
                    reference_id=reference_id,
                    user_id=tx.user_id,
                    amount=tx.amount,
                    source=source.value,
                    gateway_transaction_id=gateway_transaction_id,
                    conn=conn,
                )
                if payment_id is None:
                    return await self._already_processed(tx, conn)

                if not await self.repository.transition_status(
                    reference_id, TransactionStatus.PENDING, TransactionStatus.COMPLETED, conn=conn
                ):
                    raise ConflictError("Transaction state changed concurrently")

                balance = await self.repository.credit_balance(tx.user_id, tx.amount, conn)
                result = SettlementResult(
                    outcome=SettlementOutcome.COMPLETED,
                    reference_id=reference_id,
                    user_id=tx.user_id,
                    amount=tx.amount,
                    balance=balance,
                )

        await self._after_settle(result, source, gateway_transaction_id)
        return result

    async def _already_processed(self, tx: Transaction, conn: Any) -> SettlementResult:
        balance = await self.repository.get_balance(tx.user_id, conn=conn)
        await log_info(
            f"Депозит {tx.reference_id} уже проведён ({tx.status.value})",
            extra={"reference_id": tx.reference_id},
        )
        return SettlementResult(
            outcome=SettlementOutcome.ALREADY_PROCESSED,
            reference_id=tx.reference_id,
            user_id=tx.user_id,
            amount=tx.amount,
            balance=balance,
        )

    async def _after_settle(
        self,
        result: SettlementResult,
        source: SettlementSource,
        gateway_transaction_id: str | None,
    ) -> None:
        """Лог и событие после коммита."""
        if result.outcome == SettlementOutcome.COMPLETED:
            await log_info(
                f"Депозит {result.reference_id} зачислен: +{result.amount}, баланс {result.balance}",
                extra={"reference_id": result.reference_id, "user_id": result.user_id, "source": source.value},
            )
            event: DepositCompleted | DepositFailed = DepositCompleted(
                reference_id=result.reference_id,
                user_id=result.user_id,
                telegram_id=await self.repository.get_telegram_id(result.user_id),
                amount=result.amount,
                balance=result.balance,
                source=source.value,
                gateway_transaction_id=gateway_transaction_id,
            )
        else:
            await log_info(
                f"Депозит {result.reference_id} отклонён шлюзом",
                extra={"reference_id": result.reference_id, "source": source.value},
            )
            event = DepositFailed(
                reference_id=result.reference_id,
                user_id=result.user_id,
                amount=result.amount,
                source=source.value,
            )

        if self.event_bus is not None:
            await self.event_bus.publish(event)
