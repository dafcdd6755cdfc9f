# tests/core/test_catalog_models.py
"""
Тесты моделей каталога и генератора доступов.
"""

from __future__ import annotations

import json
from decimal import Decimal

import pytest

from src.core.catalog.models import ProxyCredentials, ProxyProduct
from src.core.catalog.provisioner import ProxyProvisioner


class TestProxyProduct:

    def test_from_record(self) -> None:
        product = ProxyProduct.from_record({
            "id": "product-1",
            "name": "ABC (GB) Proxy",
            "description": None,
            "gb_options": [1, 5],
            "price_per_gb": Decimal("1.5"),
            "stock": 10,
            "is_active": True,
        })

        assert product.price_per_gb == Decimal("1.50")
        assert product.gb_options == [1, 5]

    def test_price_for(self) -> None:
        product = ProxyProduct(id="p", name="p", price_per_gb=Decimal("1.33"))
        assert product.price_for(5, 3) == Decimal("19.95")


class TestProxyProvisioner:

    def test_issue(self) -> None:
        provisioner = ProxyProvisioner(host_template="px-{token}.example.net", port_min=20000, port_max=20010)

        credentials = provisioner.issue("8f14e45f-ceea-467a-9575-6e7c3a1b2c3d", "purchase_0123456789abcdef")

        assert credentials.ip.startswith("px-") and credentials.ip.endswith(".example.net")
        assert 20000 <= credentials.port <= 20010
        assert credentials.username == "user_8f14e45fceea_89abcdef"
        assert len(credentials.password) >= 20

    def test_credentials_are_unique(self) -> None:
        provisioner = ProxyProvisioner()
        first = provisioner.issue("user", "purchase_a")
        second = provisioner.issue("user", "purchase_a")
        assert first.password != second.password

    @pytest.mark.parametrize("port_min, port_max", [(0, 10), (2000, 1000), (1, 70000)])
    def test_bad_port_range(self, port_min: int, port_max: int) -> None:
        with pytest.raises(ValueError):
            ProxyProvisioner(port_min=port_min, port_max=port_max)


class TestProxyCredentials:

    def test_public_view_and_storage(self) -> None:
        credentials = ProxyCredentials(ip="1.2.3.4", port=8080, username="u", password="secret")

        assert credentials.public() == {"ip": "1.2.3.4", "port": 8080, "username": "u"}
        assert json.loads(credentials.to_json())["password"] == "secret"
