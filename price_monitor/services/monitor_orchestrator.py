# price_monitor/services/monitor_orchestrator.py

"""Runs one monitoring pass over a product set."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from price_monitor.config.settings import Settings
from price_monitor.models.events import BroadcastEvent, EventSink
from price_monitor.models.price_change import (
    ExtractionResult,
    PriceChangeRecord,
    build_price_change,
    changes_to_dicts,
)
from price_monitor.models.product import MonitoredProduct, utc_now
from price_monitor.scrapers.price_extractor import (
    EngineLaunchError,
    PriceExtractor,
)
from price_monitor.services.best_effort import (
    call_best_effort,
    run_best_effort,
)
from price_monitor.storage.session_store import SessionStore

logger = logging.getLogger("price_monitor.orchestrator")


class Extractor(Protocol):
    """What the orchestrator needs from a price extractor."""

    async def __aenter__(self) -> "Extractor": ...

    async def __aexit__(self, *exc_info: Any) -> None: ...

    async def extract(self, url: str) -> ExtractionResult | None: ...


class CatalogWriter(Protocol):
    def update_prices(self, products: list[MonitoredProduct]) -> int: ...


Notifier = Callable[[list[PriceChangeRecord]], Any]


@dataclass
class MonitorResult:
    """Outcome of one monitoring run."""

    session_id: str
    total: int = 0
    updated_products: list[MonitoredProduct] = field(
        default_factory=lambda: list[MonitoredProduct]()
    )
    price_changes: list[PriceChangeRecord] = field(
        default_factory=lambda: list[PriceChangeRecord]()
    )
    failed_products: list[str] = field(
        default_factory=lambda: list[str]()
    )
    notified: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "updatedProducts": [
                p.to_dict() for p in self.updated_products
            ],
            "priceChanges": changes_to_dicts(self.price_changes),
        }


def _discard(event: BroadcastEvent) -> None:
    """Event sink used when nobody is listening."""


class MonitorOrchestrator:
    """Sequential extract, diff, emit pipeline for one session.

    Products are checked one at a time with a fixed pause between
    them, all through a single browser engine.  A product whose page
    fails is skipped; only a browser launch failure ends the run early,
    and that is reported through the session store, not raised.
    """

    def __init__(
        self,
        store: SessionStore,
        extractor_factory: Callable[[], Extractor] | None = None,
        notifier: Notifier | None = None,
        catalog: CatalogWriter | None = None,
        delay: float | None = None,
    ) -> None:
        self.settings = Settings()
        self.store = store
        self._extractor_factory: Callable[[], Extractor] = (
            extractor_factory or PriceExtractor
        )
        self._notifier = notifier
        self._catalog = catalog
        self._delay: float = (
            delay if delay is not None else self.settings.PRODUCT_DELAY
        )

    # ── Private helpers ──────────────────────────────────

    async def _pause(self) -> None:
        await asyncio.sleep(self._delay)

    def _emit(
        self,
        emit: EventSink,
        session_id: str,
        event: BroadcastEvent,
    ) -> None:
        """Record *event* in the session store, then hand it to *emit*."""
        payload = dict(event.payload)
        if event.type == "progress":
            self.store.update_progress(session_id, payload)
        elif event.type == "priceChange":
            self.store.update_price_changes(
                session_id, payload["priceChanges"]
            )
        call_best_effort(f"Emitting {event.type} event", emit, event)

    async def _check_product(
        self,
        extractor: Extractor,
        product: MonitoredProduct,
    ) -> ExtractionResult | None:
        try:
            return await extractor.extract(product.url)
        except Exception as exc:
            logger.error(
                "Unexpected error checking '%s' (%s): %s",
                product.name,
                product.url,
                exc,
                exc_info=True,
            )
            return None

    async def _scrape_all(
        self,
        extractor: Extractor,
        products: list[MonitoredProduct],
        emit: EventSink,
        result: MonitorResult,
    ) -> None:
        total = len(products)
        for index, product in enumerate(products):
            if index > 0:
                await self._pause()

            self._emit(
                emit,
                result.session_id,
                BroadcastEvent.progress(index, total, product.name),
            )

            reading = await self._check_product(extractor, product)
            if reading is None:
                logger.warning(
                    "No price for '%s', skipping this run", product.name
                )
                result.failed_products.append(product.id)
                continue

            try:
                change = build_price_change(product, reading)
            except (ArithmeticError, ValueError) as exc:
                logger.error(
                    "Cannot compare prices for '%s' (%s -> %s): %s",
                    product.name,
                    product.current_price,
                    reading.new_price,
                    exc,
                    exc_info=True,
                )
                result.failed_products.append(product.id)
                continue

            result.updated_products.append(
                product.with_reading(
                    new_price=reading.new_price,
                    is_on_offer=reading.is_on_offer,
                    original_price=reading.original_price,
                    checked_at=utc_now(),
                )
            )

            if change is not None:
                logger.info(
                    "Price change for '%s': %s -> %s",
                    product.name,
                    change.old_price,
                    change.new_price,
                )
                result.price_changes.append(change)
                self._emit(
                    emit,
                    result.session_id,
                    BroadcastEvent.price_change(result.price_changes),
                )

        self._emit(
            emit,
            result.session_id,
            BroadcastEvent.progress(total, total, None),
        )

    def _abort(self, result: MonitorResult, error: str) -> MonitorResult:
        """Mark the session failed; partial readings are discarded."""
        result.error = error
        result.updated_products.clear()
        result.price_changes.clear()
        self.store.set_error(result.session_id, error)
        return result

    # ── Entry point ──────────────────────────────────────

    async def run(
        self,
        products: list[MonitoredProduct],
        session_id: str,
        emit: EventSink | None = None,
    ) -> MonitorResult:
        """Check every product once and report what changed.

        Never raises for per-product, notification or catalog failures.
        A browser launch failure, or any other failure outside the
        per-product checks, sets the session ``error`` and returns a
        result with ``error`` set and no ``complete`` event.
        """
        sink: EventSink = emit or _discard
        result = MonitorResult(session_id=session_id, total=len(products))
        logger.info(
            "Session %s: checking %d product(s)", session_id, len(products)
        )

        try:
            async with self._extractor_factory() as extractor:
                await self._scrape_all(extractor, products, sink, result)
        except EngineLaunchError as exc:
            return self._abort(result, str(exc))
        except Exception as exc:
            logger.error(
                "Session %s aborted: %s", session_id, exc, exc_info=True
            )
            return self._abort(result, f"Monitoring run failed: {exc}")

        if result.price_changes and self._notifier is not None:
            result.notified = await run_best_effort(
                "Price change notification",
                self._notifier,
                list(result.price_changes),
            )

        if self._catalog is not None and result.updated_products:
            await run_best_effort(
                "Catalog write-back",
                self._catalog.update_prices,
                list(result.updated_products),
            )

        summary = BroadcastEvent.complete(result.total, result.price_changes)
        self.store.complete(
            session_id,
            {
                **summary.payload,
                "updated": len(result.updated_products),
                "failed": len(result.failed_products),
            },
        )
        call_best_effort("Emitting complete event", sink, summary)

        logger.info(
            "Session %s done: %d/%d updated, %d change(s), %d failed",
            session_id,
            len(result.updated_products),
            result.total,
            len(result.price_changes),
            len(result.failed_products),
        )
        return result
