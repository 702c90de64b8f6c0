"""Race a blocking call against a timer.

Python cannot interrupt a library call that is stuck inside C code, so the
call runs on a one-shot daemon thread and the caller waits at most
``timeout`` seconds for it to hand back its outcome. When the timer wins the
worker is abandoned: it may still finish, but nobody reads its result. The
callables handed to ``race`` only return values and never write to state
shared with the caller. Daemon threads do not hold up interpreter exit.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional, TypeVar

from order_sheet.errors import AttemptTimedOut

logger = logging.getLogger(__name__)

T = TypeVar("T")


def race(fn: Callable[[], T], timeout: Optional[float], label: str = "operation") -> T:
    if timeout is None:
        return fn()

    outcome: queue.Queue = queue.Queue(maxsize=1)

    def run() -> None:
        try:
            outcome.put((True, fn()))
        except Exception as exc:  # noqa: BLE001 - re-raised by the caller
            outcome.put((False, exc))

    worker = threading.Thread(target=run, name=f"order-sheet-{label}", daemon=True)
    worker.start()
    try:
        finished, value = outcome.get(timeout=timeout)
    except queue.Empty:
        logger.warning("%s did not finish within %gs; abandoning it", label, timeout)
        raise AttemptTimedOut(label, timeout) from None

    if not finished:
        raise value
    return value
