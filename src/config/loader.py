# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины — config/config.json.
Секретные данные переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации (можно переопределить через CONFIG_PATH)."""
    override = os.getenv("CONFIG_PATH")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = path or get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


def _env(name: str, data: dict[str, Any], default: Any) -> Any:
    """Значение из окружения, затем из config.json, затем дефолт."""
    value = os.getenv(name)
    if value is not None and value != "":
        return value
    return data.get(name, default)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "proxy_store"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"


class DeploymentSettings(BaseModel):
    """Где слушает HTTP API витрины."""
    STOREFRONT_HOST: str = "0.0.0.0"
    STOREFRONT_PORT: int = 8088
    CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class TelegramSettings(BaseModel):
    """Настройки Telegram Mini App."""
    BOT_TOKEN: str = ""
    # Максимальный возраст initData (auth_date), секунды
    INIT_DATA_MAX_AGE: int = 86400
    # Допустимое опережение auth_date из-за рассинхрона часов, секунды
    INIT_DATA_MAX_FUTURE_SKEW: int = 60
    WEBAPP_URL: str = ""

    @field_validator("BOT_TOKEN", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает токен из переменных окружения, если не задан."""
        if not v:
            return os.getenv("BOT_TOKEN", "")
        return v


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "proxy_store"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 2
    DB_MAX_POOL_SIZE: int = 10
    DB_COMMAND_TIMEOUT: int = 30
    DATABASE_URL: str | None = None

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """DSN для asyncpg. DATABASE_URL имеет приоритет."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "proxy_store"
    REDIS_MAX_CONNECTIONS: int = 50

    @property
    def url(self) -> str:
        """URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ (доменные события)."""
    RABBITMQ_ENABLED: bool = False
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "proxy_store.events"

    @property
    def url(self) -> str:
        """URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class ReplayGuardSettings(BaseModel):
    """Окна защиты от повторов."""
    # Сколько секунд параллельный дубль считается повтором
    IN_FLIGHT_WINDOW: int = 5
    # Сколько помним обработанный запрос
    PROCESSED_TTL: int = 3600


class PaymentSettings(BaseModel):
    """Настройки платёжного шлюза RupantorPay и депозитов."""
    RUPANTOR_API_KEY: str = ""
    RUPANTOR_BASE_URL: str = "https://api.rupantorpay.com"
    SUCCESS_URL: str = ""
    CANCEL_URL: str = ""
    CALLBACK_URL: str = ""
    WEBHOOK_SECRET: str = ""
    GATEWAY_TIMEOUT: float = 15.0
    CURRENCY: str = "USD"
    MIN_DEPOSIT: float = 1.0
    MAX_DEPOSIT: float = 10000.0
    # telegram: имя и email из профиля Telegram; anonymous: только user<id>
    CUSTOMER_IDENTITY_MODE: str = "telegram"
    CUSTOMER_EMAIL_DOMAIN: str = "telegram.com"

    @field_validator("CUSTOMER_IDENTITY_MODE")
    @classmethod
    def check_identity_mode(cls, v: str) -> str:
        """Разрешены только известные режимы."""
        if v not in ("telegram", "anonymous"):
            raise ValueError(f"Неизвестный CUSTOMER_IDENTITY_MODE: {v}")
        return v

    @model_validator(mode="after")
    def check_limits(self) -> "PaymentSettings":
        """MIN_DEPOSIT не может быть больше MAX_DEPOSIT."""
        if self.MIN_DEPOSIT > self.MAX_DEPOSIT:
            raise ValueError("MIN_DEPOSIT больше MAX_DEPOSIT")
        return self

    @property
    def is_configured(self) -> bool:
        """Хватает ли настроек для создания checkout."""
        return all((self.RUPANTOR_API_KEY, self.SUCCESS_URL, self.CANCEL_URL, self.CALLBACK_URL))


class ProxySettings(BaseModel):
    """Параметры выдачи прокси-доступов."""
    PROXY_HOST_TEMPLATE: str = "proxy-{token}.example.com"
    PROXY_PORT_MIN: int = 1024
    PROXY_PORT_MAX: int = 65535


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    replay_guard: ReplayGuardSettings = Field(default_factory=ReplayGuardSettings)
    payments: PaymentSettings = Field(default_factory=PaymentSettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """
        Создаёт объект Settings из плоского словаря config.json.
        Секреты и адреса инфраструктуры переопределяются из окружения.
        """
        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "proxy_store"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", False),
                LOG_LEVEL=data.get("LOG_LEVEL", "INFO"),
                ENVIRONMENT=_env("ENVIRONMENT", data, "development"),
            ),
            deployment=DeploymentSettings(
                STOREFRONT_HOST=_env("STOREFRONT_HOST", data, "0.0.0.0"),
                STOREFRONT_PORT=int(_env("STOREFRONT_PORT", data, 8088)),
                CORS_ORIGINS=data.get("CORS_ORIGINS", ["*"]),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=data.get("LOG_LEVEL", "INFO"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
            ),
            telegram=TelegramSettings(
                BOT_TOKEN=_env("BOT_TOKEN", data, "") or os.getenv("TELEGRAM_BOT_TOKEN", ""),
                INIT_DATA_MAX_AGE=int(_env("INIT_DATA_MAX_AGE", data, 86400)),
                INIT_DATA_MAX_FUTURE_SKEW=int(data.get("INIT_DATA_MAX_FUTURE_SKEW", 60)),
                WEBAPP_URL=_env("WEBAPP_URL", data, ""),
            ),
            database=DatabaseSettings(
                DB_HOST=_env("DB_HOST", data, "localhost"),
                DB_PORT=int(_env("DB_PORT", data, 5432)),
                DB_NAME=_env("DB_NAME", data, "proxy_store"),
                DB_USER=_env("DB_USER", data, "postgres"),
                DB_PASSWORD=_env("DB_PASSWORD", data, ""),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 2),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 10),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 30),
                DATABASE_URL=os.getenv("DATABASE_URL") or data.get("DATABASE_URL"),
            ),
            redis=RedisSettings(
                REDIS_HOST=_env("REDIS_HOST", data, "localhost"),
                REDIS_PORT=int(_env("REDIS_PORT", data, 6379)),
                REDIS_DB=int(_env("REDIS_DB", data, 0)),
                REDIS_PASSWORD=_env("REDIS_PASSWORD", data, ""),
                REDIS_NAMESPACE=data.get("REDIS_NAMESPACE", "proxy_store"),
                REDIS_MAX_CONNECTIONS=data.get("REDIS_MAX_CONNECTIONS", 50),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_ENABLED=data.get("RABBITMQ_ENABLED", False),
                RABBITMQ_HOST=_env("RABBITMQ_HOST", data, "localhost"),
                RABBITMQ_PORT=int(_env("RABBITMQ_PORT", data, 5672)),
                RABBITMQ_USER=_env("RABBITMQ_USER", data, "guest"),
                RABBITMQ_PASSWORD=_env("RABBITMQ_PASSWORD", data, "guest"),
                RABBITMQ_VHOST=data.get("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=data.get("RABBITMQ_EXCHANGE", "proxy_store.events"),
            ),
            replay_guard=ReplayGuardSettings(
                IN_FLIGHT_WINDOW=data.get("REPLAY_IN_FLIGHT_WINDOW", 5),
                PROCESSED_TTL=data.get("REPLAY_PROCESSED_TTL", 3600),
            ),
            payments=PaymentSettings(
                RUPANTOR_API_KEY=_env("RUPANTOR_API_KEY", data, ""),
                RUPANTOR_BASE_URL=_env("RUPANTOR_BASE_URL", data, "https://api.rupantorpay.com"),
                SUCCESS_URL=_env("SUCCESS_URL", data, ""),
                CANCEL_URL=_env("CANCEL_URL", data, ""),
                CALLBACK_URL=_env("CALLBACK_URL", data, ""),
                WEBHOOK_SECRET=_env("RUPANTOR_WEBHOOK_SECRET", data, ""),
                GATEWAY_TIMEOUT=float(data.get("GATEWAY_TIMEOUT", 15.0)),
                CURRENCY=data.get("CURRENCY", "USD"),
                MIN_DEPOSIT=float(data.get("MIN_DEPOSIT", 1.0)),
                MAX_DEPOSIT=float(data.get("MAX_DEPOSIT", 10000.0)),
                CUSTOMER_IDENTITY_MODE=_env("CUSTOMER_IDENTITY_MODE", data, "telegram"),
                CUSTOMER_EMAIL_DOMAIN=data.get("CUSTOMER_EMAIL_DOMAIN", "telegram.com"),
            ),
            proxy=ProxySettings(
                PROXY_HOST_TEMPLATE=data.get("PROXY_HOST_TEMPLATE", "proxy-{token}.example.com"),
                PROXY_PORT_MIN=data.get("PROXY_PORT_MIN", 1024),
                PROXY_PORT_MAX=data.get("PROXY_PORT_MAX", 65535),
            ),
        )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """Создаёт объект Settings из config.json."""
        return cls.from_dict(load_config_json())


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Перед чтением config.json подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
