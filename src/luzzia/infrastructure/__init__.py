"""
Infrastructure Layer
====================

External integrations and data access layer.
"""

from .influxdb import (
    get_influxdb_client,
    InfluxDBClientWrapper,
    QueryBuilder
)

from .external_apis import (
    PriceAPIClient,
    ProviderDescriptor,
    build_default_providers
)

__all__ = [
    "get_influxdb_client",
    "InfluxDBClientWrapper",
    "QueryBuilder",
    "PriceAPIClient",
    "ProviderDescriptor",
    "build_default_providers",
]
