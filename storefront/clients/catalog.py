from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Iterable

import httpx
from loguru import logger

from storefront.core.config import settings
from storefront.core.errors import InvalidAmount, NotFound, UpstreamProviderError
from storefront.core.metrics import PROVIDER_REQUESTS_TOTAL
from storefront.domain.money import Money, to_minor_units

PROVIDER = "catalog"


@dataclass(frozen=True, slots=True)
class CatalogProduct:
    id: str
    price: Money
    is_active: bool = True
    stock_quantity: int | None = None


def parse_product(data: dict[str, Any], currency: str = "EUR") -> CatalogProduct:
    try:
        price = to_minor_units(str(data["price"]), currency)
        stock = data.get("stock_quantity")
        return CatalogProduct(
            id=str(data["id"]),
            price=price,
            is_active=bool(data.get("is_active", True)),
            stock_quantity=int(stock) if stock is not None else None,
        )
    except (KeyError, TypeError, ValueError, InvalidAmount) as e:
        raise UpstreamProviderError(PROVIDER, f"catalog returned a bad product payload: {e}") from e


class CatalogClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.CATALOG_API_URL
        self.timeout = timeout or settings.CATALOG_TIMEOUT_SECONDS
        self._transport = transport

    def _count(self, status: str) -> None:
        PROVIDER_REQUESTS_TOTAL.labels(
            service=settings.SERVICE_NAME,
            provider=PROVIDER,
            operation="get_product",
            status=status,
        ).inc()

    async def fetch_product(self, product_id: str) -> CatalogProduct:
        self._count("attempt")
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.get(f"/products/{product_id}")
            except httpx.RequestError as e:
                self._count("connection_error")
                raise UpstreamProviderError(PROVIDER, f"connection error to catalog: {e}") from e

        if resp.status_code == 404:
            self._count("not_found")
            raise NotFound(f"Product {product_id} not found in catalog")

        if resp.status_code >= 400:
            self._count("http_error")
            raise UpstreamProviderError(PROVIDER, f"catalog error {resp.status_code}: {resp.text}")

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamProviderError(
                PROVIDER, f"catalog returned invalid JSON for product {product_id}"
            ) from e

        self._count("success")
        return parse_product(data, settings.CURRENCY)

    async def get_products(self, product_ids: Iterable[str]) -> dict[str, CatalogProduct]:
        """Fetch every product concurrently; products the catalog does not know are left out."""
        ids = list(dict.fromkeys(product_ids))
        results = await asyncio.gather(
            *[self.fetch_product(pid) for pid in ids],
            return_exceptions=True,
        )

        products: dict[str, CatalogProduct] = {}
        for pid, result in zip(ids, results):
            if isinstance(result, NotFound):
                logger.warning("Catalog has no product '{product_id}'", product_id=pid)
                continue
            if isinstance(result, Exception):
                logger.error(
                    "Failed to fetch product '{product_id}' from catalog: {error}",
                    product_id=pid,
                    error=str(result),
                )
                raise result
            products[pid] = result
        return products


catalog_client = CatalogClient()


def get_catalog_client() -> CatalogClient:
    return catalog_client
