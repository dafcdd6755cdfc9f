# src/services/payments/app.py
"""
HTTP-маршруты платежей.

Endpoints:
- POST /api/create-checkout - открыть депозит (пользователь должен существовать)
- POST /api/payment-callback - вебхук RupantorPay
- POST /api/verify-payment - ручная проверка оплаты из Mini App
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from src.common.exceptions import ValidationFailed
from src.services.miniapp_bff.dependencies import authenticate, get_payment_service, require_init_data
from src.services.payments.service import PaymentService


# === REQUEST MODELS ===

class CreateCheckoutRequest(BaseModel):
    """Запрос на создание страницы оплаты."""
    init_data: str | None = None
    amount: Decimal | None = None
    description: str | None = None
    idempotency_key: str | None = None


class VerifyPaymentRequest(BaseModel):
    """Запрос на проверку оплаты."""
    init_data: str | None = None
    reference_id: str | None = None


router = APIRouter(prefix="/api", tags=["Payments"])


@router.post("/create-checkout")
async def create_checkout(
    body: CreateCheckoutRequest,
    service: Annotated[PaymentService, Depends(get_payment_service)],
    x_telegram_init_data: Annotated[str | None, Header(alias="X-Telegram-Init-Data")] = None,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> dict[str, Any]:
    """Создать депозит и страницу оплаты."""
    init_data = require_init_data(body.init_data or x_telegram_init_data)
    if body.amount is None:
        raise ValidationFailed("Valid amount is required")
    auth = await authenticate(init_data)

    intent = await service.create_checkout(
        auth.user,
        body.amount,
        description=body.description,
        idempotency_key=body.idempotency_key or idempotency_key,
        create_user=False,
    )
    return {
        "checkout_url": intent.checkout_url,
        "reference_id": intent.reference_id,
        "amount": float(intent.amount),
    }


@router.post("/payment-callback")
async def payment_callback(
    request: Request,
    service: Annotated[PaymentService, Depends(get_payment_service)],
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
) -> dict[str, Any]:
    """Вебхук платёжного шлюза. Подпись проверяется по сырому телу."""
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError as e:
        raise ValidationFailed("Invalid JSON body") from e
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON body")

    return await service.handle_callback(payload, raw_body, x_signature)


@router.post("/verify-payment")
async def verify_payment(
    body: VerifyPaymentRequest,
    service: Annotated[PaymentService, Depends(get_payment_service)],
    x_telegram_init_data: Annotated[str | None, Header(alias="X-Telegram-Init-Data")] = None,
) -> dict[str, Any]:
    """Проверить оплату и, если она прошла, зачислить депозит."""
    init_data = require_init_data(body.init_data or x_telegram_init_data)
    if not body.reference_id:
        raise ValidationFailed("Reference ID is required")
    auth = await authenticate(init_data)
    return await service.verify(auth.user, body.reference_id)
