# price_monitor/models/product.py

"""Monitored product model for inter-module data flow."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any


def to_decimal(value: Any) -> Decimal | None:
    """Convert a JSON number (or numeric string) to ``Decimal``.

    ``None`` and empty strings map to ``None``.  Floats go through
    ``str`` so ``120.1`` stays ``Decimal("120.1")``.  Infinities and
    NaN raise ``ValueError``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Not a price: {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a price: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a finite price: {value!r}")
    return result


def decimal_to_json(value: Decimal | None) -> float | int | None:
    """Render a Decimal as a plain JSON number."""
    if value is None:
        return None
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    """Render a datetime as ISO-8601 UTC with millisecond precision."""
    if value is None:
        return None
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PricePoint:
    """A single observed price for a product at a point in time."""

    price: Decimal
    date: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "price": decimal_to_json(self.price),
            "date": format_timestamp(self.date),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PricePoint":
        price = to_decimal(data.get("price"))
        date = parse_timestamp(data.get("date"))
        if price is None or date is None:
            raise ValueError(f"Incomplete price history entry: {data!r}")
        return cls(price=price, date=date)


@dataclass
class MonitoredProduct:
    """A competitor product whose price is being tracked.

    Owned by the external catalog; the orchestrator works on a
    transient copy for the duration of one monitoring run.
    """

    id: str
    name: str
    competitor_name: str
    url: str
    current_price: Decimal
    new_price: Decimal | None = None
    is_on_offer: bool = False
    original_price: Decimal | None = None
    last_checked: datetime | None = None
    price_history: list[PricePoint] = field(
        default_factory=lambda: list[PricePoint]()
    )

    def with_reading(
        self,
        new_price: Decimal,
        is_on_offer: bool,
        original_price: Decimal | None,
        checked_at: datetime,
    ) -> "MonitoredProduct":
        """Return a copy carrying a fresh price reading."""
        return replace(
            self,
            new_price=new_price,
            is_on_offer=is_on_offer,
            original_price=original_price,
            last_checked=checked_at,
            price_history=list(self.price_history),
        )

    def history_with(
        self, price: Decimal, observed_at: datetime,
    ) -> list[PricePoint]:
        """Return the price history extended by one observation.

        Entries stay in non-decreasing timestamp order: an observation
        older than the last entry is stamped with the last entry's time.
        """
        history = list(self.price_history)
        if history and observed_at < history[-1].date:
            observed_at = history[-1].date
        history.append(PricePoint(price=price, date=observed_at))
        return history

    @property
    def price_changed(self) -> bool:
        """True when a reading exists and differs from the current price."""
        return (
            self.new_price is not None
            and self.new_price != self.current_price
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the camelCase wire format used by the catalog."""
        return {
            "id": self.id,
            "name": self.name,
            "competitorName": self.competitor_name,
            "url": self.url,
            "currentPrice": decimal_to_json(self.current_price),
            "newPrice": decimal_to_json(self.new_price),
            "isOnOffer": self.is_on_offer,
            "originalPrice": decimal_to_json(self.original_price),
            "lastChecked": format_timestamp(self.last_checked),
            "priceHistory": [p.to_dict() for p in self.price_history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MonitoredProduct":
        """Build a product from its wire format.

        Raises ``ValueError``/``KeyError`` on malformed input; callers at
        the API boundary go through ``ProductValidator`` first.
        """
        current_price = to_decimal(data["currentPrice"])
        if current_price is None:
            raise ValueError("currentPrice is required")
        history = [
            PricePoint.from_dict(entry)
            for entry in data.get("priceHistory") or []
        ]
        history.sort(key=lambda p: p.date)
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            competitor_name=str(data.get("competitorName", "")),
            url=str(data["url"]),
            current_price=current_price,
            new_price=to_decimal(data.get("newPrice")),
            is_on_offer=bool(data.get("isOnOffer", False)),
            original_price=to_decimal(data.get("originalPrice")),
            last_checked=parse_timestamp(data.get("lastChecked")),
            price_history=history,
        )
