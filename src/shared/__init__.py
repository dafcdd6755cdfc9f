# src/shared/__init__.py
"""
Общий код сервисов витрины.

Модули:
- events: схемы доменных событий RabbitMQ
- models: общие модели ответов API
"""

__all__: list[str] = []
