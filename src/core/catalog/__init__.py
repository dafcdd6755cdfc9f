# src/core/catalog/__init__.py
"""
Домен каталога: товары прокси, покупки и выдача доступов.
"""

from src.core.catalog.models import ProxyCredentials, ProxyProduct, PurchaseResult
from src.core.catalog.provisioner import ProxyProvisioner
from src.core.catalog.repository import CatalogRepository
from src.core.catalog.service import CatalogService

__all__ = [
    "ProxyCredentials",
    "ProxyProduct",
    "PurchaseResult",
    "ProxyProvisioner",
    "CatalogRepository",
    "CatalogService",
]
