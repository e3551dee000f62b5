# price_monitor/storage/catalog_client.py

"""HTTP client for the external product catalog service."""

import json
import logging
import time
from typing import Any

from curl_cffi import requests as curl_requests

from price_monitor.config.settings import Settings
from price_monitor.filters.product_validator import ProductValidator
from price_monitor.models.product import (
    MonitoredProduct,
    decimal_to_json,
    format_timestamp,
    utc_now,
)
from price_monitor.services.best_effort import call_best_effort

logger = logging.getLogger("price_monitor.catalog")


class CatalogError(RuntimeError):
    """The catalog service could not be read or written."""


class CatalogClient:
    """Reads the product list and writes price updates back.

    Network failures are retried ``MAX_RETRIES`` times with a linear
    back-off before the call is reported as failed.
    """

    def __init__(self, base_url: str | None = None) -> None:
        self.settings = Settings()
        self.base_url = (base_url or self.settings.CATALOG_API_URL).rstrip(
            "/"
        )
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )

    @property
    def products_url(self) -> str:
        return f"{self.base_url}/products"

    def _request(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None = None,
    ) -> curl_requests.Response | None:
        """Send a request with retries; ``None`` once retries run out."""
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.request(
                    method,  # type: ignore[arg-type]
                    url,
                    headers=self.settings.DEFAULT_HEADERS,
                    json=payload,
                    timeout=self.settings.REQUEST_TIMEOUT,
                )
                if 200 <= resp.status_code < 300:
                    return resp
                logger.warning(
                    "[catalog] %s %s returned HTTP %d on attempt %d",
                    method,
                    url,
                    resp.status_code,
                    attempt + 1,
                )
                # Client errors will not improve on retry
                if 400 <= resp.status_code < 500 and resp.status_code != 429:
                    return None
            except Exception as exc:
                logger.warning(
                    "[catalog] %s %s error on attempt %d: %s",
                    method,
                    url,
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
            time.sleep(self.settings.REQUEST_DELAY * (attempt + 1))
        return None

    def list_products(self) -> list[MonitoredProduct]:
        """Fetch every monitored product from the catalog.

        Accepts either ``{"products": [...]}`` or a bare list.  Rows
        that fail validation are logged and skipped.

        Raises:
            CatalogError: The catalog could not be reached or returned
                an unexpected shape.
        """
        resp = self._request("GET", self.products_url)
        if resp is None:
            raise CatalogError(
                f"Could not fetch products from {self.products_url}"
            )

        try:
            data: Any = json.loads(resp.text)
        except json.JSONDecodeError as exc:
            raise CatalogError("Catalog returned invalid JSON") from exc

        if isinstance(data, dict) and isinstance(data.get("products"), list):
            records = data["products"]
        elif isinstance(data, list):
            records = data
        else:
            raise CatalogError(
                f"Unexpected catalog response format: {type(data).__name__}"
            )

        products, errors = ProductValidator.validate(records)
        for error in errors:
            logger.warning("[catalog] Skipping malformed row: %s", error)
        logger.info("[catalog] Loaded %d products", len(products))
        return products

    @staticmethod
    def build_update(product: MonitoredProduct) -> dict[str, Any]:
        """Body for a price update: new price becomes current, history grows."""
        if product.new_price is None:
            raise ValueError(f"Product {product.id} has no new price")
        checked_at = product.last_checked or utc_now()
        history = product.history_with(product.new_price, checked_at)
        return {
            "id": product.id,
            "currentPrice": decimal_to_json(product.new_price),
            "priceHistory": [p.to_dict() for p in history],
            "lastChecked": format_timestamp(checked_at),
            "isOnOffer": product.is_on_offer,
            "originalPrice": decimal_to_json(product.original_price),
        }

    def update_product(self, product: MonitoredProduct) -> None:
        """Write one product's new price back to the catalog.

        Raises:
            CatalogError: The write was rejected or never got through.
        """
        resp = self._request(
            "PUT", self.products_url, self.build_update(product)
        )
        if resp is None:
            raise CatalogError(f"Failed to update product {product.id}")
        logger.info(
            "[catalog] Updated %s to %s", product.id, product.new_price
        )

    def update_prices(self, products: list[MonitoredProduct]) -> int:
        """Write back every product whose price changed.

        Each write is independent; a failure is logged and the rest
        still go through.  Returns the number of successful writes.
        """
        written = 0
        for product in products:
            if not product.price_changed:
                continue
            if call_best_effort(
                f"Catalog update for {product.id}",
                self.update_product,
                product,
            ):
                written += 1
        return written
