# price_monitor/services/broadcaster.py

"""Fan-out of monitoring events to every connected observer."""

import logging
import queue
import threading
from types import TracebackType
from typing import Protocol

from price_monitor.config.settings import Settings
from price_monitor.models.events import BroadcastEvent

logger = logging.getLogger("price_monitor.broadcast")


class ObserverGone(Exception):
    """The observer's connection can no longer accept messages."""


class Observer(Protocol):
    """One live connection that receives serialised events."""

    def send(self, message: str) -> None:
        """Deliver *message* or raise if the connection is gone."""
        ...


class QueueObserver:
    """Observer backed by a bounded queue drained by a transport.

    The HTTP stream reads from :meth:`receive`; a consumer that stops
    reading fills the queue, and the next ``send`` raises
    :class:`ObserverGone` so the broadcaster drops it.
    """

    def __init__(
        self,
        broadcaster: "Broadcaster",
        maxsize: int | None = None,
    ) -> None:
        self._broadcaster = broadcaster
        self._queue: queue.Queue[str] = queue.Queue(
            maxsize=maxsize or Settings.SUBSCRIBER_QUEUE_SIZE
        )

    def send(self, message: str) -> None:
        try:
            self._queue.put_nowait(message)
        except queue.Full as exc:
            raise ObserverGone("observer queue is full") from exc

    def receive(self, timeout: float | None = None) -> str | None:
        """Next pending message, or ``None`` after *timeout* seconds."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._broadcaster.unsubscribe(self)

    def __enter__(self) -> "QueueObserver":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class Broadcaster:
    """Registry of connected observers with publish-to-all.

    Observers only receive events published while they are registered;
    there is no replay, late joiners poll the session store instead.
    """

    def __init__(self) -> None:
        self._observers: set[Observer] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)

    def add(self, observer: Observer) -> None:
        with self._lock:
            self._observers.add(observer)
        logger.info("Observer connected (%d active)", len(self))

    def unsubscribe(self, observer: Observer) -> None:
        """Remove *observer*; unknown observers are ignored."""
        with self._lock:
            removed = observer in self._observers
            self._observers.discard(observer)
        if removed:
            logger.info("Observer disconnected (%d active)", len(self))

    def subscribe(self, maxsize: int | None = None) -> QueueObserver:
        """Register and return a new queue-backed observer."""
        observer = QueueObserver(self, maxsize=maxsize)
        self.add(observer)
        return observer

    def publish(self, event: BroadcastEvent) -> int:
        """Send *event* to every observer; return how many received it.

        Observers that fail are dropped.  Publishing never raises.
        """
        message = event.to_json()
        with self._lock:
            targets = list(self._observers)

        delivered = 0
        for observer in targets:
            try:
                observer.send(message)
                delivered += 1
            except Exception as exc:
                logger.warning(
                    "Dropping observer after failed %s delivery: %s",
                    event.type,
                    exc,
                )
                self.unsubscribe(observer)

        logger.debug(
            "Broadcast %s to %d observer(s)", event.type, delivered
        )
        return delivered

    __call__ = publish
