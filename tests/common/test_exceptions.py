# tests/common/test_exceptions.py
"""
Тесты иерархии доменных ошибок.
"""

from __future__ import annotations

import pytest

from src.common.exceptions import (
    AmountMismatchError,
    AuthFailed,
    ConflictError,
    InsufficientFundsError,
    NotFound,
    PaymentGatewayError,
    ReplayDetectedError,
    StoreError,
    ValidationFailed,
)


class TestStoreError:

    @pytest.mark.parametrize(
        "error_cls, status",
        [
            (ValidationFailed, 400),
            (InsufficientFundsError, 400),
            (AuthFailed, 401),
            (NotFound, 404),
            (ConflictError, 409),
            (ReplayDetectedError, 409),
            (AmountMismatchError, 409),
            (PaymentGatewayError, 500),
        ],
    )
    def test_status_codes(self, error_cls: type[StoreError], status: int) -> None:
        assert error_cls.status_code == status

    def test_default_message(self) -> None:
        assert StoreError().to_payload() == {"error": "Internal server error"}

    def test_payload_with_code_and_extra(self) -> None:
        error = InsufficientFundsError(extra={"required": 30.0, "available": 25.0})

        assert error.to_payload() == {"error": "Insufficient balance", "required": 30.0, "available": 25.0}

    def test_replay_payload(self) -> None:
        assert ReplayDetectedError().to_payload() == {
            "error": "Request already processed (possible replay attack)",
            "code": "REPLAY_DETECTED",
        }

    def test_code_override(self) -> None:
        assert ConflictError("Deposit already finalized", code="DEPOSIT_FINALIZED").code == "DEPOSIT_FINALIZED"


class TestPaymentGatewayError:

    def test_detail_stays_out_of_payload(self) -> None:
        """Ответ шлюза виден в логах, но не клиенту."""
        error = PaymentGatewayError("HTTP 502: <html>upstream</html>", status=502)

        assert error.to_payload() == {"error": "Payment provider error"}
        assert str(error) == "HTTP 502: <html>upstream</html>"
        assert error.upstream_status == 502

    def test_public_message_override(self) -> None:
        error = PaymentGatewayError("no api key", public_message="Payment gateway not configured")
        assert error.message == "Payment gateway not configured"
