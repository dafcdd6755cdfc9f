# src/core/catalog/provisioner.py
"""
Выдача доступов к прокси.

Реальной интеграции с провайдером нет: доступы генерируются локально
криптостойким генератором и хранятся вместе с покупкой.
"""

from __future__ import annotations

import secrets

from src.core.catalog.models import ProxyCredentials


class ProxyProvisioner:
    """Генератор доступов к прокси."""

    def __init__(
        self,
        host_template: str = "proxy-{token}.example.com",
        port_min: int = 1024,
        port_max: int = 65535,
    ) -> None:
        if not 0 < port_min <= port_max <= 65535:
            raise ValueError(f"Некорректный диапазон портов: {port_min}-{port_max}")
        self.host_template = host_template
        self.port_min = port_min
        self.port_max = port_max

    def issue(self, user_id: str, purchase_ref: str) -> ProxyCredentials:
        """
        Args:
            user_id: Владелец доступа
            purchase_ref: reference_id списания, к которому привязан доступ
        """
        host_token = secrets.token_hex(6)
        port = self.port_min + secrets.randbelow(self.port_max - self.port_min + 1)
        return ProxyCredentials(
            ip=self.host_template.format(token=host_token),
            port=port,
            username=f"user_{user_id.replace('-', '')[:12]}_{purchase_ref[-8:]}",
            password=secrets.token_urlsafe(18),
        )
