#!/usr/bin/env python3
# main.py
"""
Точка входа Proxy Store.

Режимы:
    storefront  — HTTP API витрины и страница Mini App (по умолчанию)
    migrate     — применить migrations/init.sql
    init_data   — напечатать подписанные initData dev-пользователя
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, setup_logging
from src.config import settings

MODES = ("storefront", "migrate", "init_data")

_shutdown_event: asyncio.Event | None = None


def setup_signal_handlers() -> None:
    """Настраивает обработчики SIGINT/SIGTERM для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def run_storefront() -> None:
    """Запускает uvicorn с приложением витрины."""
    import uvicorn

    await log_info(
        f"Запуск витрины на {settings.deployment.STOREFRONT_HOST}:{settings.deployment.STOREFRONT_PORT}...",
        type_msg=TypeMsg.INFO,
    )
    config = uvicorn.Config(
        "src.services.miniapp_bff.app:app",
        host=settings.deployment.STOREFRONT_HOST,
        port=settings.deployment.STOREFRONT_PORT,
        reload=settings.system.DEBUG,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    server = uvicorn.Server(config)

    serve_task = asyncio.create_task(server.serve())
    stop_task = asyncio.create_task(_shutdown_event.wait()) if _shutdown_event else None
    waiters = {serve_task} if stop_task is None else {serve_task, stop_task}

    done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    if stop_task is not None and stop_task in done:
        await log_info("Витрина: graceful shutdown", type_msg=TypeMsg.DEBUG)
        server.should_exit = True
        await serve_task
    elif stop_task is not None:
        stop_task.cancel()


async def run_migrate() -> None:
    """Применяет схему к базе из настроек."""
    from src.infra.database import close_db, init_db

    await init_db(apply_schema=True)
    await log_info("Схема применена", type_msg=TypeMsg.INFO)
    await close_db()


def print_dev_init_data() -> None:
    """Печатает initData, подписанные BOT_TOKEN, для ручной проверки API."""
    from src.services.miniapp_bff.telegram_auth import build_init_data

    if not settings.telegram.BOT_TOKEN:
        print("BOT_TOKEN не задан")
        sys.exit(1)

    init_data = build_init_data(
        {"id": 12345, "first_name": "Dev", "last_name": "User", "username": "devuser"},
        settings.telegram.BOT_TOKEN,
    )
    print(init_data)


async def main(mode: str) -> None:
    setup_logging()
    setup_signal_handlers()

    await log_info(f"Proxy Store v{settings.system.VERSION}: режим '{mode}'", type_msg=TypeMsg.INFO)
    try:
        if mode == "storefront":
            await run_storefront()
        elif mode == "migrate":
            await run_migrate()
    except asyncio.CancelledError:
        pass
    except Exception as e:
        await log_error(f"Критическая ошибка в режиме '{mode}': {e}", exc_info=True)
        raise
    finally:
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
Proxy Store — витрина прокси для Telegram Mini App

Использование:
    python main.py [mode]

Режимы:
    storefront   — HTTP API и страница Mini App (по умолчанию)
    migrate      — применить migrations/init.sql
    init_data    — напечатать подписанные initData dev-пользователя

Примеры:
    python main.py
    python main.py migrate
    curl -H "X-Telegram-Init-Data: $(python main.py init_data)" localhost:8088/api/wallet/balance
    """)


if __name__ == "__main__":
    mode = "storefront"

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        if arg not in MODES:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)
        mode = arg

    if mode == "init_data":
        print_dev_init_data()
        sys.exit(0)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
