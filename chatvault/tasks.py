"""Background import jobs.

Imports run on a single worker thread so the caller (an HTTP handler or a
UI) stays responsive and at most one import touches the store at a time.
"""

import logging
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from typing import Optional

from .errors import ImportCancelled
from .ingest_chatgpt import ImportPipeline, ImportResult, ImportState

logger = logging.getLogger(__name__)


class ImportJob:
    """Handle on a submitted import.

    Cancelling is advisory: a job that has not started never runs, and a job
    that is already running finishes its transaction but its result is
    discarded (``result()`` raises ImportCancelled).
    """

    def __init__(self, future: Future, pipeline: ImportPipeline):
        self._future = future
        self._pipeline = pipeline
        self._cancelled = threading.Event()

    @property
    def state(self) -> ImportState:
        return self._pipeline.state

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> bool:
        """Returns True when the job was stopped before it started."""
        self._cancelled.set()
        stopped = self._future.cancel()
        logger.info("import job cancelled (%s)", "before start" if stopped else "result discarded")
        return stopped

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> ImportResult:
        try:
            result = self._future.result(timeout)
        except CancelledError as e:
            raise ImportCancelled("import was cancelled before it started") from e
        if self.cancelled:
            raise ImportCancelled("import was cancelled; its result was discarded")
        return result


class ImportRunner:
    def __init__(self, db_path=None):
        self.db_path = db_path
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="import")

    def submit(self, data: bytes, db_path=None) -> ImportJob:
        pipeline = ImportPipeline(db_path or self.db_path)
        future = self._executor.submit(pipeline.run, data)
        logger.info("import job submitted (%d bytes)", len(data or b""))
        return ImportJob(future, pipeline)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)


_runner = None
_runner_lock = threading.Lock()


def get_import_runner() -> ImportRunner:
    """Process-wide runner (initialized on first use)."""
    global _runner
    with _runner_lock:
        if _runner is None:
            _runner = ImportRunner()
        return _runner


def shutdown_import_runner(wait: bool = True):
    """Stop the process-wide runner; the next get_import_runner() starts a fresh one."""
    global _runner
    with _runner_lock:
        runner, _runner = _runner, None
    if runner is not None:
        runner.shutdown(wait=wait)
