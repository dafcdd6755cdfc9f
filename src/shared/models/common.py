# src/shared/models/common.py
"""
Общие модели ответов API.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Конверт ошибки: {"error": ..., "code": ...} плюс доп. поля."""

    model_config = ConfigDict(extra="allow")

    error: str
    code: str | None = None


class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""

    service: str
    status: str = "healthy"  # healthy, degraded, unhealthy
    version: str | None = None
    uptime_seconds: float | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)


def error_payload(message: str, code: str | None = None, **extra: Any) -> dict[str, Any]:
    """Собирает JSON-конверт ошибки без пустых полей."""
    return ErrorResponse(error=message, code=code, **extra).model_dump(exclude_none=True)
