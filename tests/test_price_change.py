# tests/test_price_change.py

"""Tests for price change computation and serialisation."""

import unittest
from decimal import Decimal

from price_monitor.models.price_change import (
    ExtractionResult,
    PriceChangeRecord,
    build_price_change,
    percentage_change,
)
from price_monitor.models.product import MonitoredProduct


def _product(price: str) -> MonitoredProduct:
    return MonitoredProduct(
        id="p1",
        name="Kettle",
        competitor_name="Rival",
        url="https://shop.example/p1",
        current_price=Decimal(price),
    )


class TestBuildPriceChange(unittest.TestCase):
    """build_price_change arithmetic."""

    def test_same_price_no_record(self) -> None:
        """Equal prices (any scale) produce no record."""
        self.assertIsNone(
            build_price_change(
                _product("100.00"), ExtractionResult(Decimal("100"))
            )
        )

    def test_increase(self) -> None:
        """Difference and percentage are exact."""
        change = build_price_change(
            _product("100.00"), ExtractionResult(Decimal("120.00"))
        )
        assert change is not None
        self.assertEqual(change.difference, Decimal("20.00"))
        self.assertEqual(change.percentage_change, Decimal("20.00"))
        self.assertTrue(change.is_increase)

    def test_decrease(self) -> None:
        """Price drops give negative difference and percentage."""
        change = build_price_change(
            _product("80"), ExtractionResult(Decimal("60"))
        )
        assert change is not None
        self.assertEqual(change.difference, Decimal("-20"))
        self.assertEqual(change.percentage_change, Decimal("-25.00"))
        self.assertFalse(change.is_increase)

    def test_no_float_drift(self) -> None:
        """0.1 + 0.2 style amounts stay exact."""
        change = build_price_change(
            _product("0.10"), ExtractionResult(Decimal("0.30"))
        )
        assert change is not None
        self.assertEqual(change.difference, Decimal("0.20"))
        self.assertEqual(change.percentage_change, Decimal("200.00"))

    def test_percentage_rounds_half_up(self) -> None:
        """Percentages round to two places, half up."""
        self.assertEqual(
            percentage_change(Decimal("3"), Decimal("1")),
            Decimal("33.33"),
        )
        self.assertEqual(
            percentage_change(Decimal("8"), Decimal("0.0005")),
            Decimal("0.01"),
        )

    def test_zero_old_price(self) -> None:
        """A zero baseline has no percentage."""
        change = build_price_change(
            _product("0"), ExtractionResult(Decimal("10"))
        )
        assert change is not None
        self.assertIsNone(change.percentage_change)
        self.assertIsNone(change.to_dict()["percentageChange"])

    def test_offer_fields_carried(self) -> None:
        """Offer flag and original price come from the reading."""
        change = build_price_change(
            _product("100"),
            ExtractionResult(
                Decimal("90"), is_on_offer=True, original_price=Decimal("100")
            ),
        )
        assert change is not None
        self.assertTrue(change.is_on_offer)
        self.assertEqual(change.original_price, Decimal("100"))


class TestPriceChangeRecordWire(unittest.TestCase):
    """Serialisation to and from the JSON wire format."""

    def test_to_dict(self) -> None:
        """Field names and percentage string match the wire format."""
        change = build_price_change(
            _product("100.00"), ExtractionResult(Decimal("120.00"))
        )
        assert change is not None
        self.assertEqual(
            change.to_dict(),
            {
                "id": "p1",
                "name": "Kettle",
                "url": "https://shop.example/p1",
                "oldPrice": 100,
                "newPrice": 120,
                "difference": 20,
                "percentageChange": "20.00",
                "isOnOffer": False,
                "originalPrice": None,
            },
        )

    def test_from_dict_recomputes_delta(self) -> None:
        """Submitted difference/percentage are recomputed from prices."""
        change = PriceChangeRecord.from_dict(
            {
                "id": "p1",
                "name": "Kettle",
                "url": "https://shop.example/p1",
                "oldPrice": 50,
                "newPrice": 75.5,
                "difference": 999,
                "percentageChange": "bogus",
                "isOnOffer": True,
                "originalPrice": 80,
            }
        )
        self.assertEqual(change.difference, Decimal("25.5"))
        self.assertEqual(change.percentage_change, Decimal("51.00"))
        self.assertEqual(change.original_price, Decimal("80"))

    def test_from_dict_requires_prices(self) -> None:
        """Missing prices are rejected."""
        with self.assertRaises(ValueError):
            PriceChangeRecord.from_dict({"id": "p1", "oldPrice": 1})

    def test_records_are_immutable(self) -> None:
        """Change records cannot be modified after creation."""
        change = build_price_change(
            _product("1"), ExtractionResult(Decimal("2"))
        )
        assert change is not None
        with self.assertRaises(AttributeError):
            change.new_price = Decimal("3")  # type: ignore[misc]


if __name__ == "__main__":
    unittest.main()
