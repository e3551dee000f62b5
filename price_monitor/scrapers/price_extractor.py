# price_monitor/scrapers/price_extractor.py

"""Headless-browser price extractor for competitor product pages."""

import json
import logging
import re
from decimal import Decimal, InvalidOperation
from types import TracebackType
from typing import Any

from bs4 import BeautifulSoup
from playwright.async_api import (
    Browser,
    BrowserContext,
    Playwright,
    async_playwright,
)
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from price_monitor.config.settings import Settings
from price_monitor.models.price_change import ExtractionResult


class EngineLaunchError(RuntimeError):
    """The headless browser engine could not be started."""


class PriceExtractor:
    """Render product pages in Chromium and read their price.

    One extractor owns one browser process for the lifetime of a
    monitoring batch::

        async with PriceExtractor() as extractor:
            reading = await extractor.extract(url)

    Each ``extract`` call gets its own browser context, which is closed
    before the call returns, so no DOM state leaks between products.
    """

    def __init__(
        self, selectors: dict[str, str] | None = None,
    ) -> None:
        self.logger = logging.getLogger("price_monitor.extractor")
        self.settings = Settings()
        self.selectors: dict[str, str] = (
            selectors if selectors is not None else self._load_selectors()
        )
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._price_pattern = re.compile(
            rf"{re.escape(self.settings.CURRENCY_CODE)}\s*"
            r"(\d[\d,]*(?:\.\d+)?)"
        )

    def _load_selectors(self) -> dict[str, str]:
        """Load the price CSS selectors from selectors.json."""
        with open(self.settings.SELECTORS_PATH) as f:
            selectors: dict[str, str] = json.load(f)
        return selectors

    # ── Engine lifecycle ─────────────────────────────────

    async def __aenter__(self) -> "PriceExtractor":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        """Launch the browser engine (no-op when already running).

        Raises:
            EngineLaunchError: Playwright or Chromium failed to start.
        """
        if self._browser is not None:
            return
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=True,
                args=self.settings.BROWSER_ARGS,
            )
        except Exception as exc:
            self.logger.error(
                "Headless browser failed to launch: %s",
                exc,
                exc_info=True,
            )
            await self.close()
            raise EngineLaunchError(
                f"Failed to launch headless browser: {exc}"
            ) from exc
        self.logger.info("Headless browser launched")

    async def close(self) -> None:
        """Tear down the browser and the Playwright driver."""
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None
        if browser is not None:
            try:
                await browser.close()
                self.logger.info("Headless browser closed")
            except Exception as exc:
                self.logger.warning(
                    "Error while closing browser: %s", exc, exc_info=True
                )
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as exc:
                self.logger.warning(
                    "Error while stopping Playwright: %s",
                    exc,
                    exc_info=True,
                )

    # ── Extraction ───────────────────────────────────────

    async def _render(self, url: str) -> str | None:
        """Load *url* in a fresh context and return the rendered HTML."""
        if self._browser is None:
            raise RuntimeError("PriceExtractor is not started")
        context: BrowserContext | None = None
        try:
            context = await self._browser.new_context(
                user_agent=self.settings.USER_AGENT,
                viewport=self.settings.VIEWPORT,  # type: ignore[arg-type]
            )
            page = await context.new_page()
            await page.goto(
                url,
                wait_until=self.settings.WAIT_UNTIL,  # type: ignore[arg-type]
                timeout=self.settings.NAVIGATION_TIMEOUT_MS,
            )
            html: str = await page.content()
            return html
        except PlaywrightTimeoutError:
            self.logger.warning(
                "Timed out after %dms loading %s",
                self.settings.NAVIGATION_TIMEOUT_MS,
                url,
            )
            return None
        except Exception as exc:
            self.logger.warning(
                "Failed to load %s: %s", url, exc, exc_info=True
            )
            return None
        finally:
            # Closing the context also closes its page
            if context is not None:
                try:
                    await context.close()
                except Exception as exc:
                    self.logger.warning(
                        "Error closing browser context for %s: %s",
                        url,
                        exc,
                    )

    async def extract(self, url: str) -> ExtractionResult | None:
        """Read the current price from a product page.

        Returns ``None`` when the page cannot be loaded in time or
        carries no parseable price; the caller treats that product as
        having no reading for this run.
        """
        html = await self._render(url)
        if html is None:
            return None
        result = self.parse_price_html(html)
        if result is None:
            self.logger.warning("No price found on %s", url)
        else:
            self.logger.debug(
                "Extracted %s from %s (offer=%s, original=%s)",
                result.new_price,
                url,
                result.is_on_offer,
                result.original_price,
            )
        return result

    def parse_price_html(self, html: str) -> ExtractionResult | None:
        """Apply the offer-then-regular price policy to rendered HTML.

        1. An offer badge means the page shows a discounted price next
           to a struck-through original.
        2. Otherwise the standard price node is read.
        3. Anything else is no reading.
        """
        soup = BeautifulSoup(html, "lxml")

        if soup.select_one(self.selectors["offer_indicator"]):
            offer_price = self.parse_price(
                self._node_text(soup, "offer_price")
            )
            if offer_price is None:
                return None
            return ExtractionResult(
                new_price=offer_price,
                is_on_offer=True,
                original_price=self.parse_price(
                    self._node_text(soup, "original_price")
                ),
            )

        regular_price = self.parse_price(
            self._node_text(soup, "regular_price")
        )
        if regular_price is None:
            return None
        return ExtractionResult(new_price=regular_price)

    def _node_text(self, soup: BeautifulSoup, key: str) -> str | None:
        node: Any = soup.select_one(self.selectors[key])
        if node is None:
            return None
        text: str = node.get_text(" ", strip=True)
        return text

    def parse_price(self, text: str | None) -> Decimal | None:
        """Extract a price from text like ``'KES 1,299.00'``."""
        if not text:
            return None
        match = self._price_pattern.search(text)
        if match is None:
            return None
        try:
            return Decimal(match.group(1).replace(",", ""))
        except InvalidOperation:
            return None
