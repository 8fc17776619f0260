"""Background worker for document conversions.

A bounded thread pool: converters spawn processes and make blocking HTTP calls,
so attempts run off the request-handling threads. Each submitted attempt gets a
Future handle that stays addressable by job id until it finishes.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class ConversionWorker:
    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="convert")
        self._handles: Dict[str, Future] = {}
        self._lock = threading.Lock()
        logger.info("ConversionWorker initialized (max_workers=%d)", max_workers)

    def submit(self, job_id: str, fn: Callable[..., None], *args) -> Future:
        """Run `fn(*args)` in the pool and return its handle."""
        future = self._executor.submit(fn, *args)
        with self._lock:
            self._handles[job_id] = future
        future.add_done_callback(partial(self._finished, job_id))
        logger.debug("submitted background attempt for job %s", job_id)
        return future

    def handle(self, job_id: str) -> Optional[Future]:
        """Handle of the running attempt for `job_id`, if any."""
        with self._lock:
            return self._handles.get(job_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        logger.info("ConversionWorker stopped")

    def _finished(self, job_id: str, future: Future) -> None:
        with self._lock:
            if self._handles.get(job_id) is future:
                del self._handles[job_id]
        if future.cancelled():
            logger.warning("background attempt for job %s was cancelled", job_id)
            return
        exc = future.exception()
        if exc is not None:
            # the task maps its own errors to a failed job; anything here escaped that
            logger.error("background attempt for job %s raised: %s", job_id, exc, exc_info=exc)
