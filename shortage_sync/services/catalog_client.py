"""
Catalog Provider Client
Bulk drug-product listing plus per-product detail sub-resources
"""

import asyncio
from typing import List, Optional

import httpx
import pybreaker
import structlog

from shortage_sync.errors import FetchError, UpstreamUnavailableError
from shortage_sync.services.http_fetch import fetch_json, probe_content_length

logger = structlog.get_logger(__name__)

OPTIONAL_SUB_RESOURCES = ("activeingredient", "form", "route", "therapeuticclass")
STATUS_SUB_RESOURCE = "status"

# Provider default when the status resource answers without a value
DEFAULT_MARKET_STATUS = "MARKETED"


class CatalogProviderClient:
    """Unauthenticated client for the catalog provider"""

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        *,
        retries: int = 3,
        backoff_seconds: float = 2.0,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self.breaker = breaker

    @property
    def listing_url(self) -> str:
        return f"{self.base_url}/drugproduct/"

    async def _fetch(self, url: str, params: Optional[dict] = None):
        return await fetch_json(
            self.http,
            url,
            retries=self.retries,
            backoff_seconds=self.backoff_seconds,
            params=params,
            breaker=self.breaker,
        )

    async def probe_listing(self) -> Optional[int]:
        """Content-Length of the listing, used as the change fingerprint"""
        return await probe_content_length(self.http, self.listing_url)

    async def fetch_listing(self) -> List[dict]:
        """Full listing snapshot (tens of thousands of products)"""
        listing = await self._fetch(self.listing_url)
        if not isinstance(listing, list):
            raise FetchError(f"Unexpected listing payload from {self.listing_url}", url=self.listing_url)
        logger.info("catalog_listing_fetched", products=len(listing))
        return listing

    async def _fetch_optional(self, resource: str, drug_code: int) -> list:
        try:
            payload = await self._fetch(f"{self.base_url}/{resource}/", params={"id": str(drug_code)})
        except UpstreamUnavailableError:
            raise
        except FetchError as e:
            logger.warning("catalog_sub_resource_failed", resource=resource, drug_code=drug_code, error=str(e))
            return []
        if isinstance(payload, dict):
            return [payload]
        return payload or []

    async def fetch_status(self, drug_code: int) -> str:
        """
        Market status for one product.

        Raises:
            FetchError: status could not be fetched; the record must not be
                written with a guessed status
        """
        payload = await self._fetch(f"{self.base_url}/{STATUS_SUB_RESOURCE}/", params={"id": str(drug_code)})
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        if not payload:
            return DEFAULT_MARKET_STATUS
        return payload.get("status") or DEFAULT_MARKET_STATUS

    async def fetch_details(self, drug_code: int) -> dict:
        """
        All five sub-resources for one product, fetched concurrently.

        Returns:
            {"ingredients", "forms", "routes", "therapeutics", "status"}
        """
        ingredients, forms, routes, therapeutics, status = await asyncio.gather(
            *(self._fetch_optional(resource, drug_code) for resource in OPTIONAL_SUB_RESOURCES),
            self.fetch_status(drug_code),
        )
        return {
            "ingredients": ingredients,
            "forms": forms,
            "routes": routes,
            "therapeutics": therapeutics,
            "status": status,
        }
