# src/services/miniapp_bff/__init__.py
"""
Storefront BFF — HTTP API для Telegram Mini App витрины прокси.

- Валидация Telegram initData
- Кошелёк и депозиты
- Каталог и покупки
"""
