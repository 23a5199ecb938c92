"""
audit/recorder.py -- Fire-and-forget audit persistence.

record() hands the insert to a small thread pool and returns at once, so the
response is never held up by the audit write. A failed write is logged to
"blueink.audit" and dropped; it never reaches the client and is not retried.

close() is called from the app lifespan at shutdown and waits for queued
writes to finish.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor

from audit.models import AuditEntry
from audit.store import AuditStore

logger = logging.getLogger("blueink.audit")


class AuditRecorder:
    def __init__(self, store: AuditStore, max_workers: int = 2) -> None:
        self._store = store
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="audit")

    def record(self, entry: AuditEntry) -> Future:
        future = self._executor.submit(self._store.insert, entry)
        future.add_done_callback(self._log_failure(entry))
        return future

    @staticmethod
    def _log_failure(entry: AuditEntry):
        def callback(future: Future) -> None:
            exc = future.exception()
            if exc is not None:
                logger.error(
                    "Audit write failed for %s %s (status %s): %s",
                    entry.method,
                    entry.url,
                    entry.status,
                    exc,
                )

        return callback

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
