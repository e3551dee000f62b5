# price_monitor/services/best_effort.py

"""Call-log-continue policy for collaborator side effects.

Notification delivery and catalog write-back must never invalidate an
otherwise successful monitoring run.  Both go through these helpers,
which log the failure with its traceback and report it as ``False``.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger("price_monitor.best_effort")


def call_best_effort(
    label: str,
    func: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> bool:
    """Run ``func(*args, **kwargs)``; return False instead of raising."""
    try:
        func(*args, **kwargs)
    except Exception as exc:
        logger.error("%s failed: %s", label, exc, exc_info=True)
        return False
    return True


async def run_best_effort(
    label: str,
    func: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> bool:
    """Async variant: blocking *func* runs in a worker thread."""
    try:
        await asyncio.to_thread(func, *args, **kwargs)
    except Exception as exc:
        logger.error("%s failed: %s", label, exc, exc_info=True)
        return False
    return True
