# price_monitor/models/price_change.py

"""Price reading and price change models."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from price_monitor.models.product import (
    MonitoredProduct,
    decimal_to_json,
    to_decimal,
)

_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class ExtractionResult:
    """A normalised price reading taken from one product page."""

    new_price: Decimal
    is_on_offer: bool = False
    original_price: Decimal | None = None


@dataclass(frozen=True)
class PriceChangeRecord:
    """Delta between a product's known price and its fresh reading."""

    product_id: str
    name: str
    url: str
    old_price: Decimal
    new_price: Decimal
    difference: Decimal
    percentage_change: Decimal | None
    is_on_offer: bool
    original_price: Decimal | None

    @property
    def is_increase(self) -> bool:
        return self.difference > 0

    def to_dict(self) -> dict[str, Any]:
        """Serialise for JSON responses, events and the notifier.

        ``percentageChange`` is a two-decimal string (``"20.00"``), or
        ``None`` when the old price was zero.
        """
        percentage = (
            f"{self.percentage_change:.2f}"
            if self.percentage_change is not None
            else None
        )
        return {
            "id": self.product_id,
            "name": self.name,
            "url": self.url,
            "oldPrice": decimal_to_json(self.old_price),
            "newPrice": decimal_to_json(self.new_price),
            "difference": decimal_to_json(self.difference),
            "percentageChange": percentage,
            "isOnOffer": self.is_on_offer,
            "originalPrice": decimal_to_json(self.original_price),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceChangeRecord":
        """Rebuild a record from its wire format.

        ``difference`` and ``percentageChange`` are recomputed from the
        two prices rather than trusted.
        """
        old_price = to_decimal(data.get("oldPrice"))
        new_price = to_decimal(data.get("newPrice"))
        if old_price is None or new_price is None:
            raise ValueError("oldPrice and newPrice are required")
        difference = new_price - old_price
        return cls(
            product_id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            url=str(data.get("url", "")),
            old_price=old_price,
            new_price=new_price,
            difference=difference,
            percentage_change=percentage_change(old_price, difference),
            is_on_offer=bool(data.get("isOnOffer", False)),
            original_price=to_decimal(data.get("originalPrice")),
        )


def percentage_change(
    old_price: Decimal, difference: Decimal,
) -> Decimal | None:
    """Return ``difference / old_price * 100`` rounded half-up to 2 places."""
    if old_price == 0:
        return None
    return (difference / old_price * 100).quantize(
        _TWO_PLACES, rounding=ROUND_HALF_UP
    )


def build_price_change(
    product: MonitoredProduct, reading: ExtractionResult,
) -> PriceChangeRecord | None:
    """Compare a reading against the product's current price.

    Returns ``None`` when the price is unchanged.
    """
    if reading.new_price == product.current_price:
        return None
    difference = reading.new_price - product.current_price
    return PriceChangeRecord(
        product_id=product.id,
        name=product.name,
        url=product.url,
        old_price=product.current_price,
        new_price=reading.new_price,
        difference=difference,
        percentage_change=percentage_change(
            product.current_price, difference
        ),
        is_on_offer=reading.is_on_offer,
        original_price=reading.original_price,
    )


def changes_to_dicts(
    changes: list[PriceChangeRecord],
) -> list[dict[str, Any]]:
    """Serialise a list of change records."""
    return [c.to_dict() for c in changes]
