# src/services/payments/gateway.py
"""
Клиент платёжного шлюза RupantorPay.

- POST /api/payment/checkout — создать страницу оплаты
- POST /api/payment/verify-payment — узнать статус оплаты по reference_id

Любой не-2xx ответ, сетевая ошибка или неожиданное тело ответа
превращаются в PaymentGatewayError. Детали уходят только в лог.
"""

from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from src.common.exceptions import PaymentGatewayError
from src.common.logger import log_error, log_info

CHECKOUT_PATH = "/api/payment/checkout"
VERIFY_PATH = "/api/payment/verify-payment"


class CheckoutRequest(BaseModel):
    """Тело запроса на создание checkout."""
    amount: float
    description: str
    success_url: str
    cancel_url: str
    callback_url: str
    reference_id: str
    customer_email: str
    customer_name: str


class CheckoutSession(BaseModel):
    """Созданная страница оплаты."""
    checkout_url: str
    reference_id: str


class VerificationResult(BaseModel):
    """Статус оплаты по данным шлюза."""
    reference_id: str
    status: str
    amount: Decimal | None = None
    transaction_id: str | None = None

    @property
    def normalized_status(self) -> str:
        return self.status.strip().lower()


def verify_callback_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """
    Проверяет подпись вебхука: HMAC-SHA256 (hex) от сырого тела.
    Допускается префикс "sha256=".
    """
    if not secret or not signature:
        return False
    received = signature.strip()
    if received.lower().startswith("sha256="):
        received = received[len("sha256="):]
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode(), received.encode())


def sign_callback(raw_body: bytes, secret: str) -> str:
    """Подпись тела вебхука (для тестов и ручной отладки)."""
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


class RupantorPayClient:
    """Асинхронный клиент RupantorPay на httpx."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.rupantorpay.com",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"X-API-KEY": api_key, "Content-Type": "application/json"},
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def close(self) -> None:
        """Закрывает HTTP клиент."""
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self._api_key:
            raise PaymentGatewayError("RUPANTOR_API_KEY не задан")

        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            await log_error(f"RupantorPay {path}: сетевая ошибка {e!r}")
            raise PaymentGatewayError(f"Сетевая ошибка {path}: {e!r}") from e

        if response.status_code >= 400:
            await log_error(
                f"RupantorPay {path}: HTTP {response.status_code}",
                extra={"body": response.text[:500]},
            )
            raise PaymentGatewayError(
                f"HTTP {response.status_code} от {path}",
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise PaymentGatewayError(f"Некорректный JSON от {path}") from e
        if not isinstance(data, dict):
            raise PaymentGatewayError(f"Неожиданный ответ от {path}")
        return data

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Создаёт страницу оплаты.

        Raises:
            PaymentGatewayError: Шлюз недоступен или не вернул checkout_url
        """
        data = await self._post(CHECKOUT_PATH, request.model_dump())
        checkout_url = data.get("checkout_url")
        if not checkout_url or not isinstance(checkout_url, str):
            raise PaymentGatewayError("В ответе шлюза нет checkout_url")

        await log_info(f"Checkout создан для {request.reference_id}")
        return CheckoutSession(checkout_url=checkout_url, reference_id=request.reference_id)

    async def verify_payment(self, reference_id: str) -> VerificationResult:
        """
        Запрашивает статус оплаты.

        Raises:
            PaymentGatewayError: Шлюз недоступен или ответ без status
        """
        data = await self._post(VERIFY_PATH, {"reference_id": reference_id})
        if not isinstance(data.get("status"), str):
            raise PaymentGatewayError("В ответе шлюза нет status")

        transaction_id = data.get("transaction_id")
        try:
            return VerificationResult(
                reference_id=reference_id,
                status=data["status"],
                amount=data.get("amount"),
                transaction_id=str(transaction_id) if transaction_id is not None else None,
            )
        except ValidationError as e:
            raise PaymentGatewayError(f"Некорректный ответ verify-payment: {e}") from e
