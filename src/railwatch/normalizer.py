"""Concurrent polling of the agency adapters into one train collection."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import POLL_TIMEOUT, POLL_WORKERS
from .models import Train

logger = logging.getLogger(__name__)


def merge(snapshots: Iterable[Sequence[Train]], previous: Optional[Dict[str, Train]] = None) -> Tuple[Train, ...]:
    """
    Merge per-agency train lists into one collection with unique ids.

    A train whose previous version has a newer `updated` timestamp keeps the
    previous version, so an older snapshot never overwrites a fresher one.
    Duplicate ids within the incoming lists resolve the same way.

    Args:
        snapshots: Train lists, one per agency.
        previous: Last merged trains by id.

    Returns:
        Tuple of trains, in input order.
    """
    previous = previous or {}
    merged: Dict[str, Train] = {}
    for trains in snapshots:
        for train in trains:
            candidates = [t for t in (merged.get(train.id), previous.get(train.id)) if t is not None]
            best = train
            for other in candidates:
                if other.updated is not None and (best.updated is None or other.updated > best.updated):
                    best = other
            merged[train.id] = best
    return tuple(merged.values())


class TrainFeed:
    """
    Polls each agency adapter on a worker pool and keeps the merged result.

    A cycle waits for all adapters up to one shared deadline; a slow or
    failing agency contributes no trains for that cycle and does not affect
    the others. An adapter whose previous call is still running is not
    called again until it returns, so a hung upstream holds at most one
    worker.
    """

    def __init__(self, adapters: Sequence, timeout: float = POLL_TIMEOUT, workers: int = POLL_WORKERS):
        """
        Initialize the feed.

        Args:
            adapters: Objects with an `agency` attribute and a `get_trains()` method.
            timeout: Seconds to wait for the adapters per cycle.
            workers: Size of the worker pool; never fewer than one per adapter.
        """
        self.adapters = list(adapters)
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max(workers, len(self.adapters), 1), thread_name_prefix="railwatch"
        )
        self._lock = threading.Lock()
        self._trains: Tuple[Train, ...] = ()
        self._in_flight: Dict[int, Future] = {}

    def _submit(self, index: int, adapter) -> Optional[Future]:
        agency = getattr(adapter, "agency", type(adapter).__name__)
        pending = self._in_flight.get(index)
        if pending is not None and not pending.done():
            logger.warning(f"[{agency}] Previous poll still running; skipped this cycle")
            return None
        future = self._executor.submit(adapter.get_trains)
        self._in_flight[index] = future
        return future

    def poll(self) -> Tuple[Train, ...]:
        """Run one poll cycle across all adapters and return the merged trains."""
        futures = [(adapter, self._submit(i, adapter)) for i, adapter in enumerate(self.adapters)]
        # All adapters start together, so each gets the same deadline
        deadline = time.monotonic() + self.timeout

        snapshots: List[List[Train]] = []
        for adapter, future in futures:
            if future is None:
                snapshots.append([])
                continue
            agency = getattr(adapter, "agency", type(adapter).__name__)
            try:
                trains = future.result(timeout=max(deadline - time.monotonic(), 0))
            except FutureTimeoutError:
                logger.warning(f"[{agency}] Poll timed out after {self.timeout}s; no trains this cycle")
                trains = []
            except Exception as e:
                logger.error(f"[{agency}] Poll failed: {e}", exc_info=True)
                trains = []
            logger.debug(f"[{agency}] {len(trains)} trains this cycle")
            snapshots.append(trains)

        with self._lock:
            previous = {t.id: t for t in self._trains}
            self._trains = merge(snapshots, previous)
            return self._trains

    @property
    def trains(self) -> Tuple[Train, ...]:
        return self._trains

    def get_train(self, train_id: str) -> Optional[Train]:
        return next((t for t in self._trains if t.id == train_id), None)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
