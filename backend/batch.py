"""Bounded-concurrency batch fetching for match and player lookups."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence, TypeVar

logger = logging.getLogger(__name__)

ID = TypeVar("ID")
T = TypeVar("T")


def fetch_all(ids: Sequence[ID], batch_size: int, fetch_one: Callable[[ID], T]) -> list[T]:
    """
    Call `fetch_one` for every id, `batch_size` at a time.

    Each batch runs concurrently and fully settles before the next one starts.
    Results keep the input order. This is best effort: an id whose fetch raises
    is logged and left out, and never stops its siblings or later batches.
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    results: list[T] = []
    if not ids:
        return results

    with ThreadPoolExecutor(max_workers=batch_size) as executor:
        for start in range(0, len(ids), batch_size):
            chunk = ids[start:start + batch_size]
            logger.debug("Fetching items %d-%d of %d", start + 1, start + len(chunk), len(ids))

            futures = [(item, executor.submit(fetch_one, item)) for item in chunk]
            for item, future in futures:
                try:
                    results.append(future.result())
                except Exception as exc:
                    logger.warning("Fetch failed for %r, skipping: %s", item, exc)

    logger.debug("Fetched %d/%d items", len(results), len(ids))
    return results
