"""Background re-spacing of sibling order keys.

A parent is queued after a write left one of its children with an over-long
key. The job rewrites every child key of that parent, preserving order, in its
own connection and transaction. Failures are retried, then logged and dropped:
an un-rescaled parent still sorts correctly.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import AbstractContextManager
from typing import Callable

from .config import rescale_attempts, rescale_backoff_seconds
from .db import get_connection, transaction
from .errors import ItemTreeError, RescaleFailed
from .ordering import rescale_plan
from .store import ItemStore

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], AbstractContextManager[sqlite3.Connection]]


def rescale_children(conn: sqlite3.Connection, parent_id: str) -> int:
    """Give every child of ``parent_id`` a fresh evenly spaced key."""
    with transaction(conn):
        store = ItemStore(conn)
        parent = store.find(parent_id, include_recycled=True)
        if parent is None:
            return 0
        children = store.get_children(parent.path, include_recycled=True)
        plan = rescale_plan(children)
        store.update_orders(plan)
    return len(plan)


class RescaleQueue:
    def __init__(
        self,
        *,
        attempts: int | None = None,
        backoff_seconds: float | None = None,
        connect: ConnectionFactory = get_connection,
    ) -> None:
        self.attempts = attempts if attempts is not None else rescale_attempts()
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else rescale_backoff_seconds()
        )
        self._connect = connect
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="itemtree-rescale")
        self._lock = threading.Lock()
        self._pending: set[str] = set()
        self._futures: list[Future[bool]] = []
        self.failures: list[RescaleFailed] = []

    def schedule(self, parent_id: str) -> bool:
        """Queue ``parent_id`` unless it is already waiting. Never blocks."""
        with self._lock:
            if parent_id in self._pending:
                return False
            self._pending.add(parent_id)
            self._futures = [future for future in self._futures if not future.done()]
            self._futures.append(self._executor.submit(self._run, parent_id))
        logger.debug("Scheduled rescale of children of %s", parent_id)
        return True

    def _run(self, parent_id: str) -> bool:
        with self._lock:
            self._pending.discard(parent_id)
        last_error = ""
        for attempt in range(1, self.attempts + 1):
            try:
                with self._connect() as conn:
                    count = rescale_children(conn, parent_id)
                logger.info("Rescaled %d children of %s", count, parent_id)
                return True
            except (sqlite3.Error, ItemTreeError, ValueError) as exc:
                last_error = str(exc)
                logger.warning(
                    "Rescale of %s failed (attempt %d/%d): %s",
                    parent_id,
                    attempt,
                    self.attempts,
                    exc,
                )
                if attempt < self.attempts:
                    time.sleep(self.backoff_seconds * attempt)
        failure = RescaleFailed(parent_id, last_error)
        self.failures.append(failure)
        logger.error(failure.message)
        return False

    def join(self, timeout: float | None = None) -> None:
        with self._lock:
            futures = list(self._futures)
        for future in futures:
            future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
