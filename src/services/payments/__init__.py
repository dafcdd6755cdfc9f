# src/services/payments/__init__.py
"""
Платежи через RupantorPay: checkout, вебхук и ручная проверка оплаты.
"""
