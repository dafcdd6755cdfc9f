# src/core/wallet/__init__.py
"""
Домен кошелька: пользователи, баланс, депозиты и их проведение.
"""

from src.core.wallet.models import SettlementResult, Transaction, User, to_money
from src.core.wallet.repository import WalletRepository
from src.core.wallet.service import WalletService

__all__ = [
    "SettlementResult",
    "Transaction",
    "User",
    "to_money",
    "WalletRepository",
    "WalletService",
]
