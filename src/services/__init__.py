# src/services/__init__.py
"""
HTTP-слой приложения.

Сервисы:
- miniapp_bff: API витрины для Telegram Mini App
- payments: интеграция с RupantorPay
"""

__all__: list[str] = []
