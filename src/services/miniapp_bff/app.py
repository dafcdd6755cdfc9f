# src/services/miniapp_bff/app.py
"""
FastAPI приложение витрины прокси (BFF для Telegram Mini App).

Все /api endpoints, кроме вебхука, требуют валидные Telegram initData:
query-параметр или поле тела init_data либо заголовок X-Telegram-Init-Data.

Endpoints:
- GET /api/wallet/balance - баланс (пользователь создаётся при первом обращении)
- GET /api/wallet/transactions - история операций
- POST /api/wallet/deposit - открыть депозит и получить ссылку на оплату
- GET /api/products/list - активные товары
- POST /api/proxy/purchase - купить пакет прокси с баланса
- /api/create-checkout, /api/payment-callback, /api/verify-payment - см. payments/app.py
- GET /health - состояние сервиса
- GET / - страница Mini App
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.common.exceptions import StoreError, ValidationFailed
from src.common.logger import log_error, log_info, log_warning, setup_logging
from src.config import settings
from src.config.loader import get_project_root
from src.core.catalog.service import CatalogService, parse_purchase_fields
from src.core.wallet.service import WalletService
from src.services.miniapp_bff import dependencies
from src.services.miniapp_bff.dependencies import (
    authenticate,
    cleanup_dependencies,
    get_catalog_service,
    get_current_user,
    get_payment_service,
    get_wallet_service,
    init_dependencies,
    require_init_data,
)
from src.services.miniapp_bff.telegram_auth import TelegramInitData
from src.services.payments.app import router as payments_router
from src.services.payments.service import PaymentService
from src.shared.models.common import HealthStatus, error_payload

SERVICE_NAME = "storefront"
INDEX_PAGE = get_project_root() / "webapp" / "index.html"

_started_at = time.monotonic()


# === REQUEST MODELS ===

class DepositRequest(BaseModel):
    """Запрос на пополнение кошелька."""
    init_data: str | None = None
    amount: Decimal | None = None
    idempotency_key: str | None = None


class PurchaseRequest(BaseModel):
    """Запрос на покупку пакета прокси."""
    init_data: str | None = None
    productId: str | None = None
    gbAmount: int | None = None
    quantity: int | None = None
    idempotency_key: str | None = None


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    from src.infra.database import close_db, init_db
    from src.infra.event_bus import close_event_bus, init_event_bus
    from src.infra.redis_client import close_redis, init_redis
    from src.services.payments.gateway import RupantorPayClient

    setup_logging()
    if not settings.telegram.BOT_TOKEN:
        await log_warning("BOT_TOKEN не задан: все запросы с initData будут отклонены")

    db = await init_db()
    redis = await init_redis()
    event_bus = await init_event_bus()
    gateway = RupantorPayClient(
        api_key=settings.payments.RUPANTOR_API_KEY,
        base_url=settings.payments.RUPANTOR_BASE_URL,
        timeout=settings.payments.GATEWAY_TIMEOUT,
    )

    await init_dependencies(db, redis, event_bus, gateway, settings)
    await log_info(f"{SERVICE_NAME} запущен")

    yield

    await cleanup_dependencies()
    await close_event_bus()
    await close_redis()
    await close_db()


# === APP ===

app = FastAPI(
    title="Proxy Store",
    description="Витрина прокси для Telegram Mini App: кошелёк, оплата RupantorPay, покупки.",
    version=settings.system.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Mini App загружается с доменов Telegram
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.deployment.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(payments_router)


# === ERROR HANDLERS ===

@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Доменные ошибки → {"error": ..., "code"?: ...}."""
    if exc.status_code >= 500:
        await log_error(f"{request.method} {request.url.path}: {exc!s}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Ошибки схемы запроса отдаются как 400, а не 422."""
    errors = exc.errors()
    detail = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        detail = f"Invalid request: {field} {first.get('msg', '')}".strip()
    return JSONResponse(status_code=400, content=error_payload(detail))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    await log_error(f"Необработанная ошибка {request.method} {request.url.path}: {exc!r}", exc_info=True)
    return JSONResponse(status_code=500, content=error_payload("Internal server error"))


# === HEALTH CHECK ===

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса и его зависимостей."""
    checks: dict[str, str] = {}
    for name, getter in (("postgres", dependencies.get_db), ("redis", dependencies.get_redis)):
        try:
            healthy = await getter().health_check()
        except RuntimeError:
            healthy = False
        checks[name] = "healthy" if healthy else "unhealthy"

    event_bus = dependencies.get_event_bus()
    if event_bus is not None:
        checks["rabbitmq"] = "healthy" if await event_bus.health_check() else "unhealthy"

    return HealthStatus(
        service=SERVICE_NAME,
        status="healthy" if all(v == "healthy" for v in checks.values()) else "degraded",
        version=settings.system.VERSION,
        uptime_seconds=round(time.monotonic() - _started_at, 1),
        dependencies=checks,
    )


# === MINI APP PAGE ===

@app.get("/", include_in_schema=False)
async def index() -> FileResponse:
    """Статическая страница Mini App."""
    return FileResponse(INDEX_PAGE, media_type="text/html")


# === WALLET ===

@app.get("/api/wallet/balance", tags=["Wallet"])
async def get_balance(
    auth: Annotated[TelegramInitData, Depends(get_current_user)],
    wallet: Annotated[WalletService, Depends(get_wallet_service)],
) -> dict[str, Any]:
    """Баланс пользователя. Первый вызов создаёт пользователя."""
    return await wallet.get_balance(auth.user)


@app.get("/api/wallet/transactions", tags=["Wallet"])
async def get_transactions(
    auth: Annotated[TelegramInitData, Depends(get_current_user)],
    wallet: Annotated[WalletService, Depends(get_wallet_service)],
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    """Последние операции по кошельку."""
    items = await wallet.get_transactions(auth.user, limit=limit, offset=offset)
    return {"items": [tx.to_api() for tx in items]}


@app.post("/api/wallet/deposit", tags=["Wallet"])
async def create_deposit(
    body: DepositRequest,
    payments: Annotated[PaymentService, Depends(get_payment_service)],
    x_telegram_init_data: Annotated[str | None, Header(alias="X-Telegram-Init-Data")] = None,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> dict[str, Any]:
    """Открыть депозит. Баланс изменится только после подтверждения оплаты."""
    init_data = require_init_data(body.init_data or x_telegram_init_data)
    if body.amount is None:
        raise ValidationFailed("Valid amount is required")
    auth = await authenticate(init_data)

    intent = await payments.create_checkout(
        auth.user,
        body.amount,
        description=f"Deposit request for {body.amount} {settings.payments.CURRENCY}",
        idempotency_key=body.idempotency_key or idempotency_key,
        create_user=True,
    )
    return {
        "checkoutUrl": intent.checkout_url,
        "referenceId": intent.reference_id,
        "amount": float(intent.amount),
    }


# === CATALOG ===

@app.get("/api/products/list", tags=["Catalog"])
async def list_products(
    auth: Annotated[TelegramInitData, Depends(get_current_user)],
    catalog: Annotated[CatalogService, Depends(get_catalog_service)],
) -> list[dict[str, Any]]:
    """Активные товары."""
    return [product.to_api() for product in await catalog.list_products()]


@app.post("/api/proxy/purchase", tags=["Catalog"])
async def purchase_proxy(
    body: PurchaseRequest,
    catalog: Annotated[CatalogService, Depends(get_catalog_service)],
    x_telegram_init_data: Annotated[str | None, Header(alias="X-Telegram-Init-Data")] = None,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> dict[str, Any]:
    """Купить пакет прокси с баланса. Пароль доступа в ответ не попадает."""
    init_data = require_init_data(body.init_data or x_telegram_init_data)
    product_id, gb_amount, quantity = parse_purchase_fields(body.productId, body.gbAmount, body.quantity)
    auth = await authenticate(init_data)
    result = await catalog.purchase(
        auth.user,
        product_id,
        gb_amount,
        quantity,
        idempotency_key=body.idempotency_key or idempotency_key,
    )
    return result.to_api()


# === STARTUP ===

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.deployment.STOREFRONT_HOST, port=settings.deployment.STOREFRONT_PORT)
