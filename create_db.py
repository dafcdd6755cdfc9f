# create_db.py
"""Создаёт базу данных из настроек (если её нет) и применяет схему."""

import asyncio

import asyncpg

from src.config import settings
from src.infra.database import close_db, init_db


async def create_db() -> None:
    db_name = settings.database.DB_NAME

    # Подключаемся к служебной БД, чтобы создать целевую
    sys_conn = await asyncpg.connect(
        user=settings.database.DB_USER,
        password=settings.database.DB_PASSWORD,
        host=settings.database.DB_HOST,
        port=settings.database.DB_PORT,
        database="postgres",
    )
    try:
        exists = await sys_conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", db_name)
        if not exists:
            print(f"Creating database {db_name}...")
            # Имя БД нельзя передать параметром
            await sys_conn.execute(f'CREATE DATABASE "{db_name}"')
            print("Database created.")
        else:
            print(f"Database {db_name} already exists.")
    finally:
        await sys_conn.close()

    await init_db(apply_schema=True)
    print("Schema applied.")
    await close_db()


if __name__ == "__main__":
    asyncio.run(create_db())
