"""Overdue Reminders -- Dispatch Engine.

Sends a batch of messages with at most ``concurrency_limit`` sends in
flight and returns one result per message, aligned by index.

Workers pull the next unclaimed index from a shared cursor rather than
working through fixed slices, so one slow send never stalls the rest of
a slice.  The cursor is the only shared mutable state; each result slot
is written only by the worker that claimed its index.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Sequence, TypeVar

from .models import DispatchResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

SendFn = Callable[[T], object]


class _Cursor:
    """Hands out 0..n-1 exactly once across threads."""

    def __init__(self, n: int) -> None:
        self._n = n
        self._next = 0
        self._lock = threading.Lock()

    def claim(self) -> int | None:
        with self._lock:
            if self._next >= self._n:
                return None
            idx = self._next
            self._next += 1
            return idx


def _send_one(send: SendFn, message, idx: int) -> DispatchResult:
    try:
        send(message)
    except Exception as exc:
        reason = str(exc) or type(exc).__name__
        logger.error("Send failed for message %d: %s", idx, reason)
        return DispatchResult(index=idx, ok=False, error=reason)
    logger.debug("Message %d sent", idx)
    return DispatchResult(index=idx, ok=True)


def dispatch(
    messages: Sequence[T],
    concurrency_limit: int,
    send: SendFn,
) -> list[DispatchResult]:
    """Send every message, at most *concurrency_limit* at a time.

    Args:
        messages: The batch, in order.
        concurrency_limit: Maximum sends in flight.  Must be at least 1.
        send: Called once per message; returning normally means accepted,
            raising means that message failed.

    Returns:
        ``results[i]`` describes ``messages[i]``.  Never raises for a
        failing send.

    Raises:
        ValueError: If *concurrency_limit* is below 1.
    """
    if concurrency_limit < 1:
        raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")

    total = len(messages)
    if total == 0:
        return []

    results: list[DispatchResult | None] = [None] * total
    cursor = _Cursor(total)

    def worker() -> None:
        while True:
            idx = cursor.claim()
            if idx is None:
                return
            results[idx] = _send_one(send, messages[idx], idx)

    workers = min(concurrency_limit, total)
    logger.info("Dispatching %d message(s) with %d worker(s)", total, workers)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dispatch") as pool:
        futures = [pool.submit(worker) for _ in range(workers)]
        wait(futures)
        for fut in futures:
            # worker() catches per-send errors; anything here is a bug
            fut.result()

    out = [r for r in results if r is not None]
    summary = summarize(out)
    logger.info("Dispatch complete: %d sent, %d failed", summary["sent"], summary["failed"])
    return out


def all_ok(results: Sequence[DispatchResult]) -> bool:
    """True when every message in the batch was accepted."""
    return all(r.ok for r in results)


def summarize(results: Sequence[DispatchResult]) -> dict[str, int]:
    """Counts for reporting: ``{"total", "sent", "failed"}``."""
    sent = sum(1 for r in results if r.ok)
    return {"total": len(results), "sent": sent, "failed": len(results) - sent}
