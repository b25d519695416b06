"""
External APIs Infrastructure Module
====================================

Clients for upstream electricity price providers.
"""

from .price_api_client import (
    PriceAPIClient,
    ProviderDescriptor,
    build_default_providers
)
from .transforms import transform_ree_pvpc, transform_alternative

__all__ = [
    "PriceAPIClient",
    "ProviderDescriptor",
    "build_default_providers",
    "transform_ree_pvpc",
    "transform_alternative",
]
