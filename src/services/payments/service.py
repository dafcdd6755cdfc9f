# src/services/payments/service.py
"""
Бизнес-логика платежей RupantorPay.

Три входа (создание checkout, вебхук, ручная проверка) сходятся
в WalletService.settle, поэтому один reference_id зачисляется
не более одного раза при любом порядке и количестве вызовов.
"""

from __future__ import annotations

from contextlib import AsyncExitStack
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from src.common.constants import (
    GATEWAY_FAILURE_STATUSES,
    GATEWAY_SUCCESS_STATUSES,
    SettlementOutcome,
    SettlementSource,
    TransactionStatus,
)
from src.common.exceptions import AuthFailed, ConflictError, NotFound, PaymentGatewayError, ValidationFailed
from src.common.logger import log_error, log_info, log_warning
from src.core.security.replay_guard import make_request_id
from src.core.wallet.models import SettlementResult, User
from src.core.wallet.service import WalletService, idempotent_reference
from src.services.payments.gateway import (
    CheckoutRequest,
    RupantorPayClient,
    VerificationResult,
    verify_callback_signature,
)

if TYPE_CHECKING:
    from src.config.loader import PaymentSettings
    from src.core.security.replay_guard import ReplayGuard
    from src.services.miniapp_bff.telegram_auth import TelegramUser

CHECKOUT_FAILED_MESSAGE = "Failed to create payment checkout"
VERIFY_FAILED_MESSAGE = "Failed to verify payment"
CALLBACK_FAILED_MESSAGE = "Failed to process payment callback"


class DepositIntent(BaseModel):
    """Открытый депозит со ссылкой на оплату."""
    reference_id: str
    checkout_url: str
    amount: Decimal


class PaymentService:
    """
    Сервис платежей.

    Ответственности:
    - создание депозита и страницы оплаты
    - приём вебхука шлюза
    - ручная проверка статуса оплаты из Mini App
    """

    def __init__(
        self,
        wallet: WalletService,
        gateway: RupantorPayClient,
        config: "PaymentSettings",
        replay_guard: "ReplayGuard | None" = None,
    ) -> None:
        self.wallet = wallet
        self.gateway = gateway
        self.config = config
        self.replay_guard = replay_guard

    async def _guard(self, stack: AsyncExitStack, scope: str, caller: str | int, key: str) -> None:
        """Защита от параллельных дублей: повтор после завершения допустим."""
        if self.replay_guard is None:
            return
        await stack.enter_async_context(
            self.replay_guard.protect(make_request_id(scope, caller, key), remember=False)
        )

    # === CHECKOUT ===

    def customer_identity(self, user: User) -> tuple[str, str]:
        """
        Email и имя плательщика для шлюза.

        В режиме anonymous в шлюз не уходит ничего, кроме telegram_id.
        """
        domain = self.config.CUSTOMER_EMAIL_DOMAIN
        anonymous_email = f"user{user.telegram_id}@{domain}"
        if self.config.CUSTOMER_IDENTITY_MODE == "anonymous":
            return anonymous_email, "Telegram User"

        email = f"{user.username}@{domain}" if user.username else anonymous_email
        name = f"{user.first_name or ''} {user.last_name or ''}".strip() or "Telegram User"
        return email, name

    async def create_checkout(
        self,
        profile: "TelegramUser",
        amount: Any,
        description: str | None = None,
        idempotency_key: str | None = None,
        create_user: bool = False,
    ) -> DepositIntent:
        """
        Открывает депозит и создаёт страницу оплаты.

        Args:
            profile: Проверенный пользователь Telegram
            amount: Сумма депозита
            description: Описание платежа
            idempotency_key: Ключ идемпотентности. Повтор с тем же ключом
                возвращает уже созданную страницу оплаты
            create_user: Создать пользователя, если его ещё нет

        Raises:
            ValidationFailed: Некорректная сумма
            NotFound: Пользователь не найден (create_user=False)
            PaymentGatewayError: Шлюз не создал страницу оплаты
        """
        value = self.wallet.validate_deposit_amount(amount)

        if create_user:
            user = await self.wallet.get_or_create_user(profile)
        else:
            found = await self.wallet.find_user(profile.id)
            if found is None:
                raise NotFound("User not found")
            user = found

        if not self.config.is_configured:
            await log_error("Платёжный шлюз не настроен: нет API-ключа или URL возврата")
            raise PaymentGatewayError("payments config incomplete", public_message=CHECKOUT_FAILED_MESSAGE)

        reference = idempotent_reference("deposit", profile.id, idempotency_key) if idempotency_key else None
        text = description or f"Deposit for {value} {self.config.CURRENCY}"

        async with AsyncExitStack() as stack:
            if idempotency_key:
                await self._guard(stack, "deposit", profile.id, idempotency_key)

            tx, created = await self.wallet.open_deposit(user, value, text, reference)
            if not created:
                # Прошлая попытка сорвалась на шлюзе: страницы оплаты нет, можно повторить
                if tx.status == TransactionStatus.FAILED and not tx.checkout_url:
                    if not await self.wallet.reopen_deposit(tx.reference_id):
                        raise ConflictError("Deposit already finalized")
                    await log_info(
                        f"Депозит {tx.reference_id} переоткрыт для повторного checkout",
                        extra={"reference_id": tx.reference_id},
                    )
                elif not tx.is_pending:
                    raise ConflictError("Deposit already finalized")
                if tx.checkout_url:
                    return DepositIntent(reference_id=tx.reference_id, checkout_url=tx.checkout_url, amount=tx.amount)

            email, name = self.customer_identity(user)
            request = CheckoutRequest(
                amount=float(value),
                description=text,
                success_url=self.config.SUCCESS_URL,
                cancel_url=self.config.CANCEL_URL,
                callback_url=self.config.CALLBACK_URL,
                reference_id=tx.reference_id,
                customer_email=email,
                customer_name=name,
            )

            try:
                session = await self.gateway.create_checkout(request)
            except PaymentGatewayError as e:
                await log_error(
                    f"Checkout не создан для {tx.reference_id}: {e.detail}",
                    extra={"reference_id": tx.reference_id},
                )
                await self.wallet.abandon_deposit(tx.reference_id)
                raise PaymentGatewayError(e.detail, public_message=CHECKOUT_FAILED_MESSAGE, status=e.upstream_status) from e

            await self.wallet.attach_checkout_url(tx.reference_id, session.checkout_url)

        return DepositIntent(reference_id=tx.reference_id, checkout_url=session.checkout_url, amount=value)

    # === CALLBACK ===

    async def handle_callback(
        self,
        payload: dict[str, Any],
        raw_body: bytes,
        signature: str | None,
    ) -> dict[str, Any]:
        """
        Вебхук шлюза.

        С WEBHOOK_SECRET тело принимается только с верной подписью
        X-Signature. Без секрета телу не доверяем: статус и сумма берутся
        из verify-payment шлюза.

        Raises:
            ValidationFailed: Нет reference_id или status
            AuthFailed: Неверная подпись
            NotFound: Неизвестный reference_id
        """
        reference_id = payload.get("reference_id")
        status = payload.get("status")
        if not isinstance(reference_id, str) or not reference_id or not isinstance(status, str) or not status:
            raise ValidationFailed("reference_id and status are required")

        secret = self.config.WEBHOOK_SECRET
        if secret:
            if not verify_callback_signature(raw_body, signature, secret):
                await log_warning(
                    f"Вебхук с неверной подписью для {reference_id}",
                    extra={"reference_id": reference_id},
                )
                raise AuthFailed("Invalid callback signature")
            transaction_id = payload.get("transaction_id")
            try:
                verification = VerificationResult(
                    reference_id=reference_id,
                    status=status,
                    amount=payload.get("amount"),
                    transaction_id=str(transaction_id) if transaction_id is not None else None,
                )
            except ValidationError as e:
                raise ValidationFailed("Invalid amount") from e
        else:
            try:
                verification = await self.gateway.verify_payment(reference_id)
            except PaymentGatewayError as e:
                raise PaymentGatewayError(e.detail, public_message=CALLBACK_FAILED_MESSAGE) from e
            if verification.normalized_status != status.strip().lower():
                await log_warning(
                    f"Статус вебхука {status} расходится со шлюзом {verification.status}",
                    extra={"reference_id": reference_id},
                )

        await log_info(
            f"Вебхук для {reference_id}: {verification.status}",
            extra={"reference_id": reference_id},
        )

        async with AsyncExitStack() as stack:
            await self._guard(stack, "callback", reference_id, verification.normalized_status)
            outcome = await self._settle_from_gateway(verification, SettlementSource.CALLBACK)

        if outcome is None:
            if await self.wallet.get_deposit(reference_id) is None:
                raise NotFound("Transaction not found")
            return {"message": "Callback acknowledged, payment not final"}
        if outcome.outcome == SettlementOutcome.ALREADY_PROCESSED:
            return {"message": "Payment already processed"}
        return {"message": "Callback processed successfully"}

    # === VERIFY ===

    async def verify(self, profile: "TelegramUser", reference_id: Any) -> dict[str, Any]:
        """
        Ручная проверка оплаты из Mini App.

        Raises:
            ValidationFailed: Нет reference_id
            NotFound: Нет пользователя или депозит чужой
        """
        if not isinstance(reference_id, str) or not reference_id:
            raise ValidationFailed("Reference ID is required")

        user = await self.wallet.find_user(profile.id)
        if user is None:
            raise NotFound("User not found")

        tx = await self.wallet.get_deposit(reference_id)
        if tx is None or tx.user_id != user.id:
            raise NotFound("Transaction not found")

        if not tx.is_pending:
            return self._already_processed(user.balance)

        async with AsyncExitStack() as stack:
            await self._guard(stack, "verify", profile.id, reference_id)
            try:
                verification = await self.gateway.verify_payment(reference_id)
            except PaymentGatewayError as e:
                raise PaymentGatewayError(e.detail, public_message=VERIFY_FAILED_MESSAGE) from e
            result = await self._settle_from_gateway(verification, SettlementSource.VERIFY)

        if result is None:
            return {
                "status": "pending",
                "message": "Payment is not completed yet",
                "balance": float(user.balance),
            }
        if result.outcome == SettlementOutcome.ALREADY_PROCESSED:
            return self._already_processed(result.balance)
        if result.outcome == SettlementOutcome.FAILED:
            return {
                "status": "failed",
                "message": "Payment verification failed",
                "balance": float(result.balance),
            }
        return {
            "status": "verified",
            "message": "Payment verified and balance updated",
            "balance": float(result.balance),
            "amount": float(result.amount),
        }

    # === HELPERS ===

    async def _settle_from_gateway(
        self,
        verification: VerificationResult,
        source: SettlementSource,
    ) -> SettlementResult | None:
        """
        Переводит статус шлюза в проведение.

        Returns:
            SettlementResult или None, если статус не окончательный
        """
        status = verification.normalized_status
        if status in GATEWAY_SUCCESS_STATUSES:
            return await self.wallet.settle(
                verification.reference_id,
                TransactionStatus.COMPLETED,
                amount=verification.amount,
                source=source,
                gateway_transaction_id=verification.transaction_id,
            )
        if status in GATEWAY_FAILURE_STATUSES:
            return await self.wallet.settle(
                verification.reference_id,
                TransactionStatus.FAILED,
                source=source,
            )
        return None

    @staticmethod
    def _already_processed(balance: Decimal) -> dict[str, Any]:
        return {
            "status": "already_processed",
            "message": "Payment already processed",
            "balance": float(balance),
        }
