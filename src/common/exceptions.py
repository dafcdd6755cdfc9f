# src/common/exceptions.py
"""
Иерархия доменных ошибок витрины.

Каждая ошибка знает свой HTTP-статус и публичное сообщение.
Обработчики FastAPI превращают их в JSON-конверт {"error": ...}.
"""

from __future__ import annotations

from typing import Any


class StoreError(Exception):
    """Базовая ошибка витрины."""

    status_code: int = 500
    code: str | None = None
    public_message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.public_message
        if code is not None:
            self.code = code
        self.extra = extra or {}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        """JSON-конверт ошибки."""
        payload: dict[str, Any] = {"error": self.message}
        if self.code:
            payload["code"] = self.code
        payload.update(self.extra)
        return payload


class ValidationFailed(StoreError):
    """Некорректные или отсутствующие поля запроса."""
    status_code = 400
    public_message = "Invalid request"


class AuthFailed(StoreError):
    """initData отсутствует, невалидна или устарела."""
    status_code = 401
    public_message = "Unauthorized: Invalid Telegram init data"


class NotFound(StoreError):
    """Пользователь, товар или транзакция не найдены."""
    status_code = 404
    public_message = "Not found"


class ConflictError(StoreError):
    """Конфликт состояния (повтор, расхождение сумм)."""
    status_code = 409
    public_message = "Conflict"


class ReplayDetectedError(ConflictError):
    """Повторная или параллельная отправка того же запроса."""
    code = "REPLAY_DETECTED"
    public_message = "Request already processed (possible replay attack)"


class AmountMismatchError(ConflictError):
    """Сумма от платёжного шлюза не совпадает с суммой депозита."""
    code = "AMOUNT_MISMATCH"
    public_message = "Payment amount does not match the deposit"


class InsufficientFundsError(StoreError):
    """Недостаточно средств на балансе."""
    status_code = 400
    public_message = "Insufficient balance"


class InsufficientStockError(StoreError):
    """Недостаточно товара на складе."""
    status_code = 400
    public_message = "Insufficient stock available"


class PaymentGatewayError(StoreError):
    """Ошибка внешнего платёжного шлюза. Детали только в логах."""
    status_code = 500
    public_message = "Payment provider error"

    def __init__(
        self,
        detail: str,
        *,
        public_message: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(public_message or self.public_message)
        self.detail = detail
        self.upstream_status = status

    def __str__(self) -> str:
        return self.detail
