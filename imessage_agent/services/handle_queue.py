"""Per-handle job queues on a shared worker pool.

Each handle gets its own FIFO. At most one worker drains a given handle at
a time, so replies to one person are generated and sent strictly in order,
while different handles proceed in parallel.

``close()`` is cooperative: jobs already running finish (including any send
in progress); jobs still waiting are dropped.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)

Job = Callable[[], object]


class HandleQueues:
    def __init__(self, max_workers: int = 4) -> None:
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="handle")
        self._cond = threading.Condition()
        self._pending: Dict[str, Deque[Job]] = {}
        self._active: set[str] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, key: str, job: Job) -> bool:
        """Queue *job* behind earlier jobs for *key*. False once closed."""
        with self._cond:
            if self._closed:
                return False
            self._pending.setdefault(key, deque()).append(job)
            if key in self._active:
                return True
            self._active.add(key)
            self._executor.submit(self._drain, key)
        return True

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def depth(self) -> int:
        with self._cond:
            return sum(len(q) for q in self._pending.values())

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no handle has queued or running work."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._active, timeout=timeout)

    def close(self, wait: bool = True) -> None:
        with self._cond:
            self._closed = True
            dropped = sum(len(q) for q in self._pending.values())
        if dropped:
            logger.info("[QUEUE] Stopping; %d queued job(s) left for the next run", dropped)
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _drain(self, key: str) -> None:
        while True:
            with self._cond:
                queue = self._pending.get(key)
                if self._closed or not queue:
                    self._pending.pop(key, None)
                    self._active.discard(key)
                    self._cond.notify_all()
                    return
                job = queue.popleft()

            try:
                job()
            except Exception:
                logger.exception("[QUEUE] Job for %s raised", key)
