# price_monitor/api/app.py

"""HTTP API: trigger a monitoring run, poll its status, stream events."""

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterator
from typing import Any

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from price_monitor.config.settings import Settings
from price_monitor.filters.product_validator import ProductValidator
from price_monitor.models.price_change import PriceChangeRecord
from price_monitor.notifications.email_notifier import EmailNotifier
from price_monitor.services.broadcaster import Broadcaster
from price_monitor.services.monitor_orchestrator import (
    CatalogWriter,
    Extractor,
    MonitorOrchestrator,
    Notifier,
)
from price_monitor.storage.session_store import SessionStore

logger = logging.getLogger("price_monitor.api")


def _error(message: str, status: int, **extra: Any) -> tuple[Response, int]:
    return jsonify({"error": message, **extra}), status


def create_app(
    store: SessionStore | None = None,
    broadcaster: Broadcaster | None = None,
    notifier: Notifier | None = None,
    catalog: CatalogWriter | None = None,
    extractor_factory: Callable[[], Extractor] | None = None,
) -> Flask:
    """Build the Flask app around one process-wide store and broadcaster.

    ``catalog`` enables write-back of changed prices after each run;
    ``extractor_factory`` replaces the Playwright extractor (tests).
    """
    app = Flask(__name__)
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    sessions = store if store is not None else SessionStore()
    hub = broadcaster if broadcaster is not None else Broadcaster()
    alert = notifier if notifier is not None else EmailNotifier()
    # Runs only send alerts automatically once mail is set up
    run_alert = alert if getattr(alert, "configured", True) else None
    if run_alert is None:
        logger.info("E-mail not configured, run alerts disabled")
    keepalive = Settings.STREAM_KEEPALIVE

    app.extensions["price_monitor"] = {
        "store": sessions,
        "broadcaster": hub,
        "notifier": alert,
    }

    @app.get("/api/health")
    def health() -> Response:
        return jsonify(
            {
                "status": "healthy",
                "service": "price_monitor",
                "observers": len(hub),
            }
        )

    @app.post("/api/scrape-prices")
    def scrape_prices() -> Any:
        body = request.get_json(silent=True) or {}
        raw_products = body.get("products")
        if not isinstance(raw_products, list):
            return _error("Products array is required", 400)

        products, errors = ProductValidator.validate(raw_products)
        if errors:
            return _error("Invalid product data", 400, details=errors)

        session_id = str(body.get("sessionId") or uuid.uuid4())
        orchestrator = MonitorOrchestrator(
            sessions,
            extractor_factory=extractor_factory,
            notifier=run_alert,
            catalog=catalog,
        )
        logger.info(
            "Scrape requested for %d products (session %s)",
            len(products),
            session_id,
        )
        # Each request thread drives its own event loop and browser
        result = asyncio.run(
            orchestrator.run(products, session_id, hub.publish)
        )
        if result.error is not None:
            return _error(result.error, 500, sessionId=session_id)

        return jsonify(
            {"success": True, "sessionId": session_id, **result.to_dict()}
        )

    @app.get("/api/scrape-status")
    def scrape_status() -> Any:
        session_id = request.args.get("sessionId")
        if not session_id:
            return _error("Session ID is required", 400)
        return jsonify(sessions.get(session_id))

    @app.get("/api/ws")
    def subscribe() -> Response:
        def stream() -> Iterator[str]:
            observer = hub.subscribe()
            try:
                yield ": connected\n\n"
                while True:
                    message = observer.receive(timeout=keepalive)
                    if message is None:
                        yield ": keep-alive\n\n"
                    else:
                        yield f"data: {message}\n\n"
            finally:
                # Runs when the client disconnects and the server
                # closes the generator
                observer.close()

        return Response(
            stream(),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/api/send-price-notification")
    def send_price_notification() -> Any:
        body = request.get_json(silent=True) or {}
        raw_changes = body.get("priceChanges")
        if not isinstance(raw_changes, list) or not raw_changes:
            return _error("Price changes array is required", 400)
        try:
            changes = [PriceChangeRecord.from_dict(c) for c in raw_changes]
        except (
            ValueError, TypeError, AttributeError, ArithmeticError,
        ) as exc:
            return _error(f"Invalid price change: {exc}", 400)

        try:
            alert(changes)
        except Exception as exc:
            logger.error(
                "Error sending price notification: %s", exc, exc_info=True
            )
            return _error(str(exc), 500)
        return jsonify({"success": True})

    return app
