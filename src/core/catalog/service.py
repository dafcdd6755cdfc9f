# src/core/catalog/service.py
"""
Каталог и покупка прокси.

Покупка атомарна: списание баланса, списание склада, запись покупки
и запись транзакции выполняются в одной транзакции БД. Строки
пользователя и товара блокируются до коммита.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from src.common.constants import TransactionStatus, TransactionType
from src.common.exceptions import (
    InsufficientFundsError,
    InsufficientStockError,
    NotFound,
    ReplayDetectedError,
    ValidationFailed,
)
from src.common.logger import log_info, log_warning
from src.core.catalog.models import ProxyProduct, PurchaseResult
from src.core.catalog.provisioner import ProxyProvisioner
from src.core.catalog.repository import CatalogRepository
from src.core.security.replay_guard import make_request_id
from src.core.wallet.repository import WalletRepository
from src.core.wallet.service import idempotent_reference, new_reference
from src.shared.events.store_events import PurchaseCompleted

if TYPE_CHECKING:
    from src.core.security.replay_guard import ReplayGuard
    from src.infra.database import DatabaseManager
    from src.infra.event_bus import EventBus
    from src.services.miniapp_bff.telegram_auth import TelegramUser

REQUIRED_FIELDS_MESSAGE = "Product ID, GB amount, and quantity are required"


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return value


def parse_purchase_fields(product_id: Any, gb_amount: Any, quantity: Any) -> tuple[str, int, int]:
    """
    Проверяет поля покупки до обращения к БД.

    Raises:
        ValidationFailed: Нет товара, объёма или количества
    """
    gb = _positive_int(gb_amount)
    qty = _positive_int(quantity)
    if not isinstance(product_id, str) or not product_id or gb is None or qty is None:
        raise ValidationFailed(REQUIRED_FIELDS_MESSAGE)
    return product_id, gb, qty


class CatalogService:
    """
    Сервис каталога.

    Ответственности:
    - список активных товаров
    - покупка пакета прокси с оплатой с баланса
    """

    def __init__(
        self,
        db: "DatabaseManager",
        repository: CatalogRepository,
        wallet_repository: WalletRepository,
        provisioner: ProxyProvisioner,
        replay_guard: "ReplayGuard | None" = None,
        event_bus: "EventBus | None" = None,
    ) -> None:
        self.db = db
        self.repository = repository
        self.wallet_repository = wallet_repository
        self.provisioner = provisioner
        self.replay_guard = replay_guard
        self.event_bus = event_bus

    async def list_products(self) -> list[ProxyProduct]:
        return await self.repository.list_active()

    async def purchase(
        self,
        profile: "TelegramUser",
        product_id: Any,
        gb_amount: Any,
        quantity: Any,
        idempotency_key: str | None = None,
    ) -> PurchaseResult:
        """
        Покупка пакета прокси.

        С idempotency_key повтор того же запроса отклоняется
        ReplayDetectedError (409), даже если первый уже завершился.
        reference_id списания выводится из ключа, поэтому дубль
        отсекается уникальным индексом и после истечения отметки в Redis.

        Raises:
            ValidationFailed: Нет полей, неверные числа или недопустимый объём
            NotFound: Пользователь или товар не найдены
            InsufficientStockError: Не хватает товара
            InsufficientFundsError: Не хватает средств
        """
        product_id, gb, qty = parse_purchase_fields(product_id, gb_amount, quantity)

        if idempotency_key:
            reference = idempotent_reference("purchase", profile.id, idempotency_key)
        else:
            reference = new_reference("purchase")

        if idempotency_key and self.replay_guard is not None:
            request_id = make_request_id("purchase", profile.id, idempotency_key)
            async with self.replay_guard.protect(request_id):
                result = await self._purchase(profile, product_id, gb, qty, reference)
        else:
            result = await self._purchase(profile, product_id, gb, qty, reference)

        await self._after_purchase(profile, result)
        return result

    async def _purchase(
        self,
        profile: "TelegramUser",
        product_id: str,
        gb_amount: int,
        quantity: int,
        reference: str,
    ) -> PurchaseResult:
        async with self.db.transaction() as conn:
            user = await self.wallet_repository.get_user_by_telegram_id(profile.id, conn=conn, for_update=True)
            if user is None:
                raise NotFound("User not found")

            product = await self.repository.get_product(product_id, conn=conn, for_update=True)
            if product is None or not product.is_active:
                raise NotFound("Product not found or not available")

            if gb_amount not in product.gb_options:
                raise ValidationFailed("Invalid GB amount for this product")

            if product.stock < quantity:
                raise InsufficientStockError()

            total = product.price_for(gb_amount, quantity)
            if user.balance < total:
                await log_warning(
                    f"Недостаточно средств у {user.id}: нужно {total}, есть {user.balance}",
                    extra={"user_id": user.id, "product_id": product_id},
                )
                raise InsufficientFundsError(
                    extra={"required": float(total), "available": float(user.balance)}
                )

            remaining = await self.wallet_repository.debit_balance(user.id, total, conn)
            if remaining is None:
                raise InsufficientFundsError(
                    extra={"required": float(total), "available": float(user.balance)}
                )

            if await self.repository.decrement_stock(product.id, quantity, conn) is None:
                raise InsufficientStockError()

            credentials = self.provisioner.issue(user.id, reference)
            total_gb = gb_amount * quantity

            purchase_id = await self.repository.insert_purchase(
                user_id=user.id,
                product_id=product.id,
                total_gb=total_gb,
                quantity=quantity,
                total_amount=total,
                credentials=credentials,
                conn=conn,
            )

            debit = await self.wallet_repository.insert_transaction(
                user_id=user.id,
                tx_type=TransactionType.PURCHASE,
                amount=-total,
                description=f"Purchase of {total_gb}GB proxy package(s)",
                reference_id=reference,
                status=TransactionStatus.COMPLETED,
                conn=conn,
            )
            if debit is None:
                await log_warning(
                    f"Повтор покупки {reference} отклонён уникальным reference_id",
                    extra={"reference_id": reference, "user_id": user.id},
                )
                raise ReplayDetectedError()

        return PurchaseResult(
            purchase_id=purchase_id,
            user_id=user.id,
            product_id=product.id,
            gb_amount=gb_amount,
            quantity=quantity,
            total_amount=total,
            remaining_balance=remaining,
            credentials=credentials,
        )

    async def _after_purchase(self, profile: "TelegramUser", result: PurchaseResult) -> None:
        await log_info(
            f"Покупка {result.purchase_id}: {result.total_gb}GB за {result.total_amount}",
            extra={"purchase_id": result.purchase_id, "telegram_id": profile.id},
        )
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            PurchaseCompleted(
                purchase_id=result.purchase_id,
                user_id=result.user_id,
                telegram_id=profile.id,
                product_id=result.product_id,
                gb_amount=result.gb_amount,
                quantity=result.quantity,
                total_amount=result.total_amount,
                remaining_balance=result.remaining_balance,
            )
        )
