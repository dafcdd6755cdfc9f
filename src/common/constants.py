# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TransactionType(str, Enum):
    """Типы операций по кошельку."""
    DEPOSIT = "deposit"
    PURCHASE = "purchase"


class TransactionStatus(str, Enum):
    """Статусы операции по кошельку."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    """Статус записи о подтверждённом платеже."""
    VERIFIED = "verified"


class PurchaseStatus(str, Enum):
    """Статусы покупки прокси."""
    COMPLETED = "completed"
    FAILED = "failed"


class SettlementOutcome(str, Enum):
    """Итог проведения депозита."""
    COMPLETED = "completed"
    FAILED = "failed"
    ALREADY_PROCESSED = "already_processed"


class SettlementSource(str, Enum):
    """Кто инициировал проведение депозита."""
    CALLBACK = "callback"
    VERIFY = "verify"


# Статусы платёжного шлюза, которые считаются успешными / неуспешными
GATEWAY_SUCCESS_STATUSES = frozenset({"completed", "success"})
GATEWAY_FAILURE_STATUSES = frozenset({"failed", "cancelled"})
