"""
Price API Client (Infrastructure Layer)
=======================================

Asynchronous client for upstream electricity price providers with an
ordered provider chain:
- Providers are tried strictly in order (primary first)
- The first provider returning at least one valid entry wins
- If every provider fails, ``ProviderUnavailable`` aggregates all errors

Retries are NOT done here; the resilience executor wraps
``fetch_price_data`` as a whole.

Usage:
    from luzzia.infrastructure.external_apis import PriceAPIClient

    async with PriceAPIClient() as client:
        entries = await client.fetch_price_data()
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from luzzia.core.config import settings, Settings
from luzzia.core.exceptions import (
    DataIngestionError,
    InvalidProviderFormat,
    PriceAPIError,
    ProviderUnavailable
)
from luzzia.core.logging_config import log_api_call
from luzzia.domain.pricing.models import RawPriceEntry
from luzzia.infrastructure.external_apis.transforms import (
    transform_alternative,
    transform_ree_pvpc
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderDescriptor:
    """One upstream price provider: endpoint, auth and payload transform."""

    name: str
    url: str
    transform: Callable[[Any], List[RawPriceEntry]]
    api_key: Optional[str] = None
    bearer_token: Optional[str] = None

    def headers(self, user_agent: str) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": user_agent,
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        return headers


def build_default_providers(config: Optional[Settings] = None) -> List[ProviderDescriptor]:
    """
    Provider chain from settings: REE first, then the alternative API.

    Providers without a URL are left out of the chain.
    """
    config = config or settings
    candidates = [
        ProviderDescriptor(
            name="REE",
            url=config.REE_API_URL,
            transform=transform_ree_pvpc,
            api_key=config.REE_API_KEY,
            bearer_token=config.REE_BEARER_TOKEN,
        ),
        ProviderDescriptor(
            name="ALTERNATIVE_API",
            url=config.ALTERNATIVE_API_URL or "",
            transform=transform_alternative,
            api_key=config.ALTERNATIVE_API_KEY,
            bearer_token=config.ALTERNATIVE_BEARER_TOKEN,
        ),
    ]

    providers = []
    for provider in candidates:
        if provider.url:
            providers.append(provider)
        else:
            logger.debug(f"Provider {provider.name} has no URL configured, skipped")
    return providers


class PriceAPIClient:
    """
    Asynchronous client for the upstream price provider chain.

    Features:
    - Ordered primary/fallback providers
    - Optional ``X-API-Key`` / ``Authorization: Bearer`` headers per provider
    - Bounded request timeout
    - Structured API call logging
    """

    def __init__(
        self,
        providers: Optional[List[ProviderDescriptor]] = None,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            providers: Provider chain (defaults to ``build_default_providers()``)
            timeout: Request timeout in seconds (defaults to settings.HTTP_TIMEOUT_SECONDS)
            user_agent: User-Agent header (defaults to settings.HTTP_USER_AGENT)
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.providers = providers if providers is not None else build_default_providers()
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.user_agent = user_agent or settings.HTTP_USER_AGENT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport
        )
        logger.debug("✅ Price API client initialized")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("🔒 Price API client closed")

    async def fetch_price_data(self) -> List[RawPriceEntry]:
        """
        Fetch normalized prices from the first provider that succeeds.

        Raises:
            ProviderUnavailable: Every provider failed (or none configured)
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        errors: Dict[str, Exception] = {}

        for index, provider in enumerate(self.providers):
            role = "primary" if index == 0 else "fallback"
            logger.info(f"🔄 Fetching from {role} provider: {provider.name}")

            try:
                entries = await self._fetch_from_provider(provider)
            except (DataIngestionError, PriceAPIError) as e:
                logger.error(f"❌ Provider {provider.name} failed: {e}")
                errors[provider.name] = e
                continue

            logger.info(f"✅ Retrieved {len(entries)} prices from {provider.name}")
            return entries

        raise ProviderUnavailable(errors)

    async def _fetch_from_provider(self, provider: ProviderDescriptor) -> List[RawPriceEntry]:
        payload = await self._get_json(provider)

        entries = provider.transform(payload)
        if not entries:
            raise InvalidProviderFormat(provider.name, "no valid price entries in payload")

        return entries

    async def _get_json(self, provider: ProviderDescriptor) -> Any:
        """
        GET the provider URL and decode JSON.

        Raises:
            PriceAPIError: HTTP status error, or transport failure (status 0)
            InvalidProviderFormat: Body is not valid JSON
        """
        started = time.perf_counter()

        try:
            response = await self._client.get(
                provider.url,
                headers=provider.headers(self.user_agent)
            )
            elapsed_ms = (time.perf_counter() - started) * 1000
            log_api_call(
                logger,
                method="GET",
                url=provider.url,
                status_code=response.status_code,
                elapsed_ms=elapsed_ms,
                provider=provider.name
            )
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            raise PriceAPIError(
                provider.name, e.response.status_code, e.response.text[:200]
            ) from e

        except httpx.RequestError as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            log_api_call(
                logger,
                method="GET",
                url=provider.url,
                status_code=0,
                elapsed_ms=elapsed_ms,
                provider=provider.name,
                error=type(e).__name__
            )
            raise PriceAPIError(provider.name, 0, f"{type(e).__name__}: {e}") from e

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidProviderFormat(provider.name, f"response is not valid JSON: {e}") from e
