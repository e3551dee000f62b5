# tests/test_monitor_orchestrator.py

"""Tests for the monitoring pass orchestrator."""

import unittest
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from price_monitor.models.events import BroadcastEvent
from price_monitor.models.price_change import (
    ExtractionResult,
    PriceChangeRecord,
)
from price_monitor.models.product import MonitoredProduct
from price_monitor.scrapers.price_extractor import EngineLaunchError
from price_monitor.services.monitor_orchestrator import (
    MonitorOrchestrator,
    MonitorResult,
)
from price_monitor.storage.session_store import SessionStore

Reading = ExtractionResult | Exception | None


def _product(
    pid: str, price: str = "100.00", name: str | None = None,
) -> MonitoredProduct:
    """Create a minimal product whose URL is derived from its id."""
    return MonitoredProduct(
        id=pid,
        name=name or f"Product {pid}",
        competitor_name="Rival",
        url=f"https://shop.example/{pid}",
        current_price=Decimal(price),
    )


class FakeExtractor:
    """Async-context extractor returning canned readings by URL."""

    def __init__(
        self,
        readings: dict[str, Reading],
        log: list[str] | None = None,
    ) -> None:
        self.readings = readings
        self.log = log if log is not None else []
        self.entered = 0
        self.exited = 0

    async def __aenter__(self) -> "FakeExtractor":
        self.entered += 1
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.exited += 1

    async def extract(self, url: str) -> ExtractionResult | None:
        self.log.append(f"extract {url}")
        reading = self.readings.get(url)
        if isinstance(reading, Exception):
            raise reading
        return reading


class BrokenEngine:
    """Extractor whose browser never starts."""

    async def __aenter__(self) -> "BrokenEngine":
        raise EngineLaunchError("Failed to launch headless browser: boom")

    async def __aexit__(self, *exc_info: Any) -> None:
        raise AssertionError("exit must not run after a failed enter")

    async def extract(self, url: str) -> ExtractionResult | None:
        raise AssertionError("extract must not be called")


class _Recorder:
    """Event sink that keeps every event."""

    def __init__(self, log: list[str] | None = None) -> None:
        self.events: list[BroadcastEvent] = []
        self.log = log if log is not None else []

    def __call__(self, event: BroadcastEvent) -> None:
        self.events.append(event)
        self.log.append(
            f"{event.type} {event.payload.get('product', '')}".strip()
        )

    def of_type(self, kind: str) -> list[BroadcastEvent]:
        return [e for e in self.events if e.type == kind]


def _reading(price: str, offer: bool = False, original: str | None = None) -> ExtractionResult:
    return ExtractionResult(
        new_price=Decimal(price),
        is_on_offer=offer,
        original_price=Decimal(original) if original else None,
    )


class _OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):
    """Shared setup: fresh store, zero delay."""

    def setUp(self) -> None:
        self.store = SessionStore()

    def make(
        self,
        extractor: Any,
        notifier: Any = None,
        catalog: Any = None,
    ) -> MonitorOrchestrator:
        return MonitorOrchestrator(
            self.store,
            extractor_factory=lambda: extractor,
            notifier=notifier,
            catalog=catalog,
            delay=0.0,
        )


class TestPriceChanges(_OrchestratorTestCase):
    """Change detection and result aggregation."""

    async def test_regular_price_increase(self) -> None:
        """100.00 read as KES 120.00 gives a +20.00 / 20.00% change."""
        product = _product("a", "100.00")
        fake = FakeExtractor({product.url: _reading("120.00")})

        result = await self.make(fake).run([product], "s1")

        self.assertIsInstance(result, MonitorResult)
        self.assertEqual(len(result.price_changes), 1)
        change = result.price_changes[0]
        self.assertEqual(change.old_price, Decimal("100.00"))
        self.assertEqual(change.new_price, Decimal("120.00"))
        self.assertEqual(change.difference, Decimal("20.00"))
        self.assertEqual(change.to_dict()["percentageChange"], "20.00")
        self.assertFalse(change.is_on_offer)

    async def test_offer_price(self) -> None:
        """An offer reading carries is_on_offer and the original price."""
        product = _product("a", "100.00")
        fake = FakeExtractor(
            {product.url: _reading("90.00", offer=True, original="100.00")}
        )

        result = await self.make(fake).run([product], "s1")

        updated = result.updated_products[0]
        self.assertTrue(updated.is_on_offer)
        self.assertEqual(updated.original_price, Decimal("100.00"))
        self.assertEqual(updated.new_price, Decimal("90.00"))
        change = result.price_changes[0]
        self.assertTrue(change.is_on_offer)
        self.assertEqual(change.original_price, Decimal("100.00"))
        self.assertEqual(change.to_dict()["percentageChange"], "-10.00")

    async def test_unchanged_price_updates_without_change(self) -> None:
        """Same price: product updated, no change record."""
        product = _product("a", "100.00")
        fake = FakeExtractor({product.url: _reading("100")})

        result = await self.make(fake).run([product], "s1")

        self.assertEqual(len(result.updated_products), 1)
        self.assertEqual(result.price_changes, [])
        self.assertIsNotNone(result.updated_products[0].last_checked)

    async def test_updated_product_is_a_copy(self) -> None:
        """The input product is left untouched."""
        product = _product("a", "100.00")
        fake = FakeExtractor({product.url: _reading("150")})

        result = await self.make(fake).run([product], "s1")

        self.assertIsNone(product.new_price)
        self.assertIsNot(result.updated_products[0], product)
        self.assertEqual(result.updated_products[0].current_price, Decimal("100.00"))

    async def test_missing_price_skips_product(self) -> None:
        """No reading: product absent from updates, no change record."""
        product = _product("a")
        fake = FakeExtractor({product.url: None})

        result = await self.make(fake).run([product], "s1")

        self.assertTrue(result.ok)
        self.assertEqual(result.updated_products, [])
        self.assertEqual(result.price_changes, [])
        self.assertEqual(result.failed_products, ["a"])

    async def test_partial_failure_batch(self) -> None:
        """Product #2 timing out leaves 2 updates and a complete run."""
        products = [_product("a"), _product("b"), _product("c")]
        fake = FakeExtractor(
            {
                products[0].url: _reading("110"),
                products[1].url: None,
                products[2].url: _reading("100"),
            }
        )
        sink = _Recorder()

        result = await self.make(fake).run(products, "s1", sink)

        self.assertEqual(len(result.updated_products), 2)
        self.assertEqual(
            [p.id for p in result.updated_products], ["a", "c"]
        )
        progress = sink.of_type("progress")
        self.assertEqual(progress[-1].payload["completed"], 3)
        self.assertEqual(len(sink.of_type("complete")), 1)
        self.assertNotIn("error", self.store.get("s1"))

    async def test_extractor_exception_is_contained(self) -> None:
        """An unexpected extractor exception only skips that product."""
        products = [_product("a"), _product("b")]
        fake = FakeExtractor(
            {
                products[0].url: RuntimeError("page crashed"),
                products[1].url: _reading("101"),
            }
        )

        result = await self.make(fake).run(products, "s1")

        self.assertTrue(result.ok)
        self.assertEqual([p.id for p in result.updated_products], ["b"])
        self.assertEqual(fake.entered, 1)
        self.assertEqual(fake.exited, 1)

    async def test_uncomparable_price_skips_only_that_product(self) -> None:
        """A non-finite baseline fails its product; the batch carries on."""
        products = [_product("a", price="Infinity"), _product("b")]
        fake = FakeExtractor(
            {
                products[0].url: _reading("120"),
                products[1].url: _reading("120"),
            }
        )

        result = await self.make(fake).run(products, "s1")

        self.assertTrue(result.ok)
        self.assertEqual(result.failed_products, ["a"])
        self.assertEqual([p.id for p in result.updated_products], ["b"])
        self.assertEqual(len(result.price_changes), 1)
        self.assertEqual(fake.log[-1], f"extract {products[1].url}")
        self.assertIn("complete", self.store.get("s1"))

    async def test_empty_product_list(self) -> None:
        """Zero products still completes."""
        sink = _Recorder()
        result = await self.make(FakeExtractor({})).run([], "s1", sink)

        self.assertTrue(result.ok)
        self.assertEqual(result.total, 0)
        self.assertEqual(len(sink.of_type("complete")), 1)
        self.assertEqual(self.store.get("s1")["complete"]["total"], 0)


class TestEvents(_OrchestratorTestCase):
    """Ordering and content of emitted events."""

    async def test_progress_strictly_increasing_then_complete(self) -> None:
        """completed goes 0..N and every progress precedes complete."""
        products = [_product(str(i)) for i in range(4)]
        fake = FakeExtractor({p.url: _reading("100") for p in products})
        sink = _Recorder()

        await self.make(fake).run(products, "s1", sink)

        completed = [
            e.payload["completed"] for e in sink.of_type("progress")
        ]
        self.assertEqual(completed, [0, 1, 2, 3, 4])
        self.assertEqual(sink.events[-1].type, "complete")
        for e in sink.of_type("progress"):
            self.assertLessEqual(e.payload["completed"], e.payload["total"])

    async def test_progress_announced_before_extraction(self) -> None:
        """Observers see 'checking X' before X is extracted."""
        log: list[str] = []
        products = [_product("a", name="Kettle"), _product("b", name="Toaster")]
        fake = FakeExtractor(
            {p.url: _reading("100") for p in products}, log
        )
        sink = _Recorder(log)

        await self.make(fake).run(products, "s1", sink)

        self.assertEqual(
            log[:4],
            [
                "progress Kettle",
                "extract https://shop.example/a",
                "progress Toaster",
                "extract https://shop.example/b",
            ],
        )

    async def test_price_change_events_are_incremental(self) -> None:
        """Each change emits the running list so far."""
        products = [_product("a"), _product("b"), _product("c")]
        fake = FakeExtractor(
            {
                products[0].url: _reading("90"),
                products[1].url: _reading("100"),
                products[2].url: _reading("130"),
            }
        )
        sink = _Recorder()

        await self.make(fake).run(products, "s1", sink)

        sizes = [
            len(e.payload["priceChanges"])
            for e in sink.of_type("priceChange")
        ]
        self.assertEqual(sizes, [1, 2])
        complete = sink.of_type("complete")[0]
        self.assertEqual(complete.payload["total"], 3)
        self.assertEqual(len(complete.payload["priceChanges"]), 2)

    async def test_store_tracks_run(self) -> None:
        """The session store ends with progress, changes and summary."""
        products = [_product("a"), _product("b")]
        fake = FakeExtractor(
            {products[0].url: _reading("80"), products[1].url: None}
        )

        await self.make(fake).run(products, "s1")

        status = self.store.get("s1")
        self.assertEqual(
            status["progress"], {"product": None, "completed": 2, "total": 2}
        )
        self.assertEqual(len(status["priceChanges"]), 1)
        self.assertEqual(status["complete"]["total"], 2)
        self.assertEqual(status["complete"]["updated"], 1)
        self.assertEqual(status["complete"]["failed"], 1)

    async def test_failing_sink_does_not_abort(self) -> None:
        """An exploding event sink is logged, the run still completes."""
        product = _product("a")
        fake = FakeExtractor({product.url: _reading("120")})
        sink = MagicMock(side_effect=RuntimeError("socket closed"))

        result = await self.make(fake).run([product], "s1", sink)

        self.assertTrue(result.ok)
        self.assertEqual(len(result.price_changes), 1)
        self.assertIn("complete", self.store.get("s1"))


class TestRateLimit(_OrchestratorTestCase):
    """Fixed pause between products."""

    async def test_pause_between_products_only(self) -> None:
        """N products mean N-1 pauses, none before the first."""
        products = [_product(str(i)) for i in range(3)]
        fake = FakeExtractor({p.url: _reading("100") for p in products})
        orch = self.make(fake)
        pause = AsyncMock()
        orch._pause = pause  # type: ignore[method-assign]

        await orch.run(products, "s1")

        self.assertEqual(pause.await_count, 2)

    async def test_single_product_no_pause(self) -> None:
        """A one-product run never pauses."""
        product = _product("a")
        orch = self.make(FakeExtractor({product.url: _reading("1")}))
        pause = AsyncMock()
        orch._pause = pause  # type: ignore[method-assign]

        await orch.run([product], "s1")

        pause.assert_not_awaited()

    def test_default_delay_from_settings(self) -> None:
        """Without an override the delay is half a second."""
        orch = MonitorOrchestrator(SessionStore())
        self.assertEqual(orch._delay, 0.5)


class TestCollaborators(_OrchestratorTestCase):
    """Notifier and catalog follow the best-effort policy."""

    async def test_notifier_gets_full_change_list(self) -> None:
        """The notifier is called once with every change."""
        products = [_product("a"), _product("b")]
        fake = FakeExtractor(
            {products[0].url: _reading("90"), products[1].url: _reading("95")}
        )
        notifier = MagicMock()

        result = await self.make(fake, notifier=notifier).run(products, "s1")

        notifier.assert_called_once()
        sent: list[PriceChangeRecord] = notifier.call_args.args[0]
        self.assertEqual([c.product_id for c in sent], ["a", "b"])
        self.assertTrue(result.notified)

    async def test_notifier_skipped_without_changes(self) -> None:
        """No changes, no notification."""
        product = _product("a")
        notifier = MagicMock()
        fake = FakeExtractor({product.url: _reading("100.00")})

        await self.make(fake, notifier=notifier).run([product], "s1")

        notifier.assert_not_called()

    async def test_notifier_failure_does_not_change_outcome(self) -> None:
        """A failed notification is logged; results and complete stand."""
        product = _product("a")
        fake = FakeExtractor({product.url: _reading("120")})
        notifier = MagicMock(side_effect=ConnectionError("smtp down"))
        sink = _Recorder()

        result = await self.make(fake, notifier=notifier).run(
            [product], "s1", sink
        )

        self.assertTrue(result.ok)
        self.assertFalse(result.notified)
        self.assertEqual(len(result.price_changes), 1)
        self.assertEqual(len(sink.of_type("complete")), 1)

    async def test_catalog_write_back(self) -> None:
        """Updated products are handed to the catalog writer."""
        product = _product("a")
        fake = FakeExtractor({product.url: _reading("120")})
        catalog = MagicMock()

        result = await self.make(fake, catalog=catalog).run([product], "s1")

        catalog.update_prices.assert_called_once_with(result.updated_products)

    async def test_catalog_failure_is_contained(self) -> None:
        """A catalog outage does not fail the run."""
        product = _product("a")
        fake = FakeExtractor({product.url: _reading("120")})
        catalog = MagicMock()
        catalog.update_prices.side_effect = OSError("catalog unreachable")

        result = await self.make(fake, catalog=catalog).run([product], "s1")

        self.assertTrue(result.ok)
        self.assertIn("complete", self.store.get("s1"))


class TestEngineLaunchFailure(_OrchestratorTestCase):
    """A browser that will not start is fatal to the run."""

    async def test_error_recorded_and_no_complete(self) -> None:
        """The session gets an error; complete is never set or emitted."""
        sink = _Recorder()
        notifier = MagicMock()

        result = await self.make(BrokenEngine(), notifier=notifier).run(
            [_product("a")], "s1", sink
        )

        self.assertFalse(result.ok)
        self.assertIn("boom", result.error or "")
        self.assertEqual(result.updated_products, [])
        status = self.store.get("s1")
        self.assertIn("boom", status["error"])
        self.assertNotIn("complete", status)
        self.assertEqual(sink.of_type("complete"), [])
        notifier.assert_not_called()


class _CrashingEngine:
    """Extractor failing with a non-launch error at enter or exit."""

    def __init__(self, on_enter: bool) -> None:
        self.on_enter = on_enter

    async def __aenter__(self) -> "_CrashingEngine":
        if self.on_enter:
            raise RuntimeError("driver pipe closed")
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        raise RuntimeError("driver pipe closed")

    async def extract(self, url: str) -> ExtractionResult | None:
        return _reading("120")


class TestUnexpectedFailure(_OrchestratorTestCase):
    """Failures outside the per-product checks end the run cleanly."""

    async def test_enter_failure_sets_error(self) -> None:
        """run() returns an errored result instead of raising."""
        sink = _Recorder()
        result = await self.make(_CrashingEngine(on_enter=True)).run(
            [_product("a"), _product("b")], "s1", sink
        )

        self.assertFalse(result.ok)
        self.assertIn("driver pipe closed", result.error or "")
        status = self.store.get("s1")
        self.assertIn("driver pipe closed", status["error"])
        self.assertNotIn("complete", status)
        self.assertEqual(sink.of_type("complete"), [])

    async def test_exit_failure_discards_readings(self) -> None:
        """A teardown crash after scraping still marks the session failed."""
        notifier = MagicMock()
        result = await self.make(
            _CrashingEngine(on_enter=False), notifier=notifier
        ).run([_product("a")], "s1")

        self.assertFalse(result.ok)
        self.assertEqual(result.updated_products, [])
        self.assertEqual(result.price_changes, [])
        self.assertIn("error", self.store.get("s1"))
        notifier.assert_not_called()

    async def test_errored_session_expires(self) -> None:
        """The failed session is not kept forever."""
        store = SessionStore(retention=0.0)
        orchestrator = MonitorOrchestrator(
            store,
            extractor_factory=lambda: _CrashingEngine(on_enter=True),
            delay=0.0,
        )
        await orchestrator.run([_product("a")], "s1")
        self.assertEqual(store.get("s1"), {})

if __name__ == "__main__":
    unittest.main()
