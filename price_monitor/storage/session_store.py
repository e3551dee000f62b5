# price_monitor/storage/session_store.py

"""In-memory monitoring session status with a retention window."""

import copy
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

from price_monitor.config.settings import Settings

logger = logging.getLogger("price_monitor.sessions")


@dataclass
class SessionEntry:
    """Status of one monitoring session plus its expiry deadline."""

    status: dict[str, Any]
    expires_at: float | None = None


class SessionStore:
    """Process-wide ``session_id -> status`` map with lazy expiry.

    A status is a plain dict with any of ``progress``, ``priceChanges``,
    ``complete`` and ``error``.  Each write builds a new dict from the
    current one and swaps the entry under the lock, so a concurrent
    ``get`` never sees a half-applied update.

    Once a session finishes (``complete`` or ``set_error``) it is kept
    for ``Settings.SESSION_RETENTION`` seconds and then evicted on the
    next access.  Unfinished sessions have no deadline.
    """

    def __init__(self, retention: float | None = None) -> None:
        self._entries: dict[str, SessionEntry] = {}
        self._lock = threading.Lock()
        self._retention: float = (
            retention
            if retention is not None
            else Settings.SESSION_RETENTION
        )

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired(time.time())
            return len(self._entries)

    def get(self, session_id: str) -> dict[str, Any]:
        """Return a snapshot of the session status, ``{}`` if unknown."""
        with self._lock:
            self._evict_expired(time.time())
            entry = self._entries.get(session_id)
            if entry is None:
                return {}
            return copy.deepcopy(entry.status)

    def update_progress(
        self, session_id: str, progress: dict[str, Any],
    ) -> None:
        """Record the latest progress, creating the session if absent."""
        self._merge(session_id, {"progress": dict(progress)})

    def update_price_changes(
        self, session_id: str, price_changes: list[dict[str, Any]],
    ) -> None:
        """Replace the session's running list of price changes."""
        self._merge(session_id, {"priceChanges": list(price_changes)})

    def complete(
        self, session_id: str, summary: dict[str, Any],
    ) -> None:
        """Mark the session complete and start its retention window."""
        self._merge(session_id, {"complete": dict(summary)}, finish=True)
        logger.info(
            "Session %s complete, retained for %.0fs",
            session_id,
            self._retention,
        )

    def set_error(self, session_id: str, error: str) -> None:
        """Mark the session failed and start its retention window."""
        self._merge(session_id, {"error": error}, finish=True)
        logger.warning("Session %s failed: %s", session_id, error)

    def sweep(self) -> int:
        """Evict expired sessions now.

        Returns the number of sessions removed.
        """
        with self._lock:
            return self._evict_expired(time.time())

    def _merge(
        self,
        session_id: str,
        fields: dict[str, Any],
        finish: bool = False,
    ) -> None:
        now = time.time()
        with self._lock:
            self._evict_expired(now)
            current = self._entries.get(session_id)
            status = dict(current.status) if current else {}
            status.update(fields)
            expires_at = current.expires_at if current else None
            if finish and expires_at is None:
                expires_at = now + self._retention
            self._entries[session_id] = SessionEntry(
                status=status, expires_at=expires_at
            )

    def _evict_expired(self, now: float) -> int:
        """Remove finished sessions past their deadline (lock held)."""
        expired = [
            sid
            for sid, entry in self._entries.items()
            if entry.expires_at is not None and now >= entry.expires_at
        ]
        for sid in expired:
            del self._entries[sid]
        if expired:
            logger.debug("Evicted %d expired sessions", len(expired))
        return len(expired)
