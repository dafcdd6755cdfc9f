# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("BOT_TOKEN", "123456:TEST-bot-token")
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from src.config.loader import PaymentSettings
from src.core.catalog.provisioner import ProxyProvisioner
from src.core.catalog.service import CatalogService
from src.core.security.replay_guard import ReplayGuard
from src.core.wallet.service import WalletService
from src.services.miniapp_bff.telegram_auth import TelegramUser, build_init_data
from src.services.payments.gateway import CheckoutSession, VerificationResult
from src.services.payments.service import PaymentService
from tests.fakes import (
    FakeCatalogRepository,
    FakeDatabase,
    FakeRedis,
    FakeWalletRepository,
    InMemoryStore,
)

BOT_TOKEN = "123456:TEST-bot-token"
TELEGRAM_ID = 777000111


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture
def payment_config() -> PaymentSettings:
    """Настройки платежей без секрета вебхука."""
    return PaymentSettings(
        RUPANTOR_API_KEY="test-api-key",
        RUPANTOR_BASE_URL="https://gateway.test",
        SUCCESS_URL="https://shop.test/success",
        CANCEL_URL="https://shop.test/cancel",
        CALLBACK_URL="https://shop.test/api/payment-callback",
    )


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (FAKE)
# =============================================================================

@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def fake_db(store: InMemoryStore) -> FakeDatabase:
    return FakeDatabase(store)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


@pytest.fixture
def replay_guard(fake_redis: FakeRedis) -> ReplayGuard:
    return ReplayGuard(fake_redis, in_flight_window=5, processed_ttl=3600)


@pytest.fixture
def wallet_repository(store: InMemoryStore) -> FakeWalletRepository:
    return FakeWalletRepository(store)


@pytest.fixture
def catalog_repository(store: InMemoryStore) -> FakeCatalogRepository:
    return FakeCatalogRepository(store)


# =============================================================================
# ФИКСТУРЫ СЕРВИСОВ
# =============================================================================

@pytest.fixture
def wallet_service(fake_db, wallet_repository, mock_event_bus) -> WalletService:
    return WalletService(db=fake_db, repository=wallet_repository, event_bus=mock_event_bus)


@pytest.fixture
def catalog_service(
    fake_db, catalog_repository, wallet_repository, replay_guard, mock_event_bus
) -> CatalogService:
    return CatalogService(
        db=fake_db,
        repository=catalog_repository,
        wallet_repository=wallet_repository,
        provisioner=ProxyProvisioner(),
        replay_guard=replay_guard,
        event_bus=mock_event_bus,
    )


@pytest.fixture
def gateway() -> MagicMock:
    """Мок клиента RupantorPay: checkout создаётся, оплата ещё в pending."""
    client = MagicMock()
    client.is_configured = True
    client.create_checkout = AsyncMock(
        side_effect=lambda request: CheckoutSession(
            checkout_url=f"https://pay.test/{request.reference_id}",
            reference_id=request.reference_id,
        )
    )
    client.verify_payment = AsyncMock(
        side_effect=lambda reference_id: VerificationResult(reference_id=reference_id, status="pending")
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
def payment_service(wallet_service, gateway, payment_config, replay_guard) -> PaymentService:
    return PaymentService(
        wallet=wallet_service,
        gateway=gateway,
        config=payment_config,
        replay_guard=replay_guard,
    )


# =============================================================================
# ДАННЫЕ TELEGRAM
# =============================================================================

@pytest.fixture
def telegram_user_data() -> dict[str, Any]:
    """Пример пользователя из initData."""
    return {
        "id": TELEGRAM_ID,
        "first_name": "Ivan",
        "last_name": "Petrov",
        "username": "ivan_p",
        "language_code": "en",
    }


@pytest.fixture
def profile(telegram_user_data: dict[str, Any]) -> TelegramUser:
    return TelegramUser.model_validate(telegram_user_data)


@pytest.fixture
def init_data(telegram_user_data: dict[str, Any]) -> str:
    """Свежие initData, подписанные тестовым токеном."""
    return build_init_data(telegram_user_data, BOT_TOKEN, query_id="AAHdF6IQAAAAAN0XohDhrOrc")
