# price_monitor/models/events.py

"""Broadcast event model relayed to live observers."""

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from price_monitor.models.price_change import (
    PriceChangeRecord,
    changes_to_dicts,
)

PROGRESS = "progress"
PRICE_CHANGE = "priceChange"
COMPLETE = "complete"

EVENT_TYPES: frozenset[str] = frozenset({PROGRESS, PRICE_CHANGE, COMPLETE})


@dataclass(frozen=True)
class BroadcastEvent:
    """A tagged progress/priceChange/complete message.

    Serialised flat, ``{"type": ..., **payload}``, which is the shape
    dashboard clients parse.
    """

    type: str
    payload: dict[str, Any] = field(
        default_factory=lambda: dict[str, Any]()
    )

    def __post_init__(self) -> None:
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.type!r}")

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def progress(
        cls, completed: int, total: int, product: str | None,
    ) -> "BroadcastEvent":
        return cls(
            PROGRESS,
            {"product": product, "completed": completed, "total": total},
        )

    @classmethod
    def price_change(
        cls, changes: list[PriceChangeRecord],
    ) -> "BroadcastEvent":
        return cls(PRICE_CHANGE, {"priceChanges": changes_to_dicts(changes)})

    @classmethod
    def complete(
        cls, total: int, changes: list[PriceChangeRecord],
    ) -> "BroadcastEvent":
        return cls(
            COMPLETE,
            {"total": total, "priceChanges": changes_to_dicts(changes)},
        )


class EventSink(Protocol):
    """Anything that accepts events emitted during a monitoring run."""

    def __call__(self, event: BroadcastEvent) -> None: ...
