# src/core/__init__.py
"""
Доменный слой витрины.

- wallet: пользователи, баланс, депозиты
- catalog: товары и покупки прокси
- security: защита от повторов
"""
