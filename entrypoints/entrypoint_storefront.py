#!/usr/bin/env python3
"""
Entrypoint для витрины прокси.

Запуск:
    python entrypoints/entrypoint_storefront.py

Порт по умолчанию: 8088
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from src.config import settings


def main() -> None:
    """Запустить витрину."""
    uvicorn.run(
        "src.services.miniapp_bff.app:app",
        host=settings.deployment.STOREFRONT_HOST,
        port=settings.deployment.STOREFRONT_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
