# price_monitor/filters/product_validator.py

"""Boundary validation of submitted product records."""

import logging
import math
from typing import Any
from urllib.parse import urlparse

from price_monitor.models.product import (
    MonitoredProduct,
    format_timestamp,
    utc_now,
)

logger = logging.getLogger("price_monitor.filters")


def normalise_record(
    record: dict[str, Any], index: int, now: str | None = None,
) -> dict[str, Any]:
    """Fill in the id and seed price history for a legacy catalog row.

    Rows saved before ids existed get ``<competitorName>-<index>``;
    rows without history get a single entry at their current price.
    """
    row = dict(record)
    if not row.get("id"):
        row["id"] = f"{row.get('competitorName', '')}-{index}"
    if not row.get("priceHistory"):
        row["priceHistory"] = [
            {
                "price": row.get("currentPrice"),
                "date": now or format_timestamp(utc_now()),
            }
        ]
    return row


def _is_number(value: Any) -> bool:
    """Finite JSON number; ``1e400`` parses to ``inf`` and is rejected."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _record_errors(record: Any) -> list[str]:
    """Return every problem with one raw product record."""
    if not isinstance(record, dict):
        return ["must be an object"]

    errors: list[str] = []
    name = record.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append("name must be a non-empty string")
    if not isinstance(record.get("competitorName"), str):
        errors.append("competitorName must be a string")

    url = record.get("url")
    parsed = urlparse(url) if isinstance(url, str) else None
    if parsed is None or parsed.scheme not in ("http", "https") or not parsed.netloc:
        errors.append("url must be an http(s) URL")

    price = record.get("currentPrice")
    if not _is_number(price):
        errors.append("currentPrice must be a number")
    elif price < 0:
        errors.append("currentPrice must not be negative")

    new_price = record.get("newPrice")
    if new_price is not None and not _is_number(new_price):
        errors.append("newPrice must be a number")
    return errors


class ProductValidator:
    """Turn raw product dicts into ``MonitoredProduct`` objects."""

    @staticmethod
    def validate(
        records: list[Any],
    ) -> tuple[list[MonitoredProduct], list[str]]:
        """Validate and parse *records*.

        Returns the valid products and one error message per rejected
        record (``"products[2]: url must be an http(s) URL"``).
        """
        errors: list[str] = []
        products: list[MonitoredProduct] = []
        now = format_timestamp(utc_now())

        for index, record in enumerate(records):
            problems = _record_errors(record)
            if problems:
                errors.extend(
                    f"products[{index}]: {p}" for p in problems
                )
                continue
            try:
                products.append(
                    MonitoredProduct.from_dict(
                        normalise_record(record, index, now)
                    )
                )
            except (KeyError, ValueError, TypeError) as exc:
                errors.append(f"products[{index}]: {exc}")

        if errors:
            logger.info(
                "Validation rejected %d product field(s)", len(errors)
            )
        return products, errors
