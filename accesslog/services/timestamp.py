"""Background-refreshed timestamp shared by every access log line.

Formatting the current time for each request is wasted work when the
layout only has second resolution, so each middleware keeps one formatted
string and an APScheduler interval job rewrites it every 250 ms. Request
paths only ever read it.

There is a single writer (the job) and many readers; publishing is one
attribute assignment, which readers always observe either before or after,
so no lock is needed on the read path.
"""

import datetime
import logging
import threading
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from accesslog.utils.datetime_helpers import DEFAULT_TIME_FORMAT, format_timestamp, localnow

logger = logging.getLogger(__name__)

EXECUTOR_ALIAS = "accesslog"

# One scheduler thread per process, shared by all timestamp caches.
scheduler = BackgroundScheduler(
    executors={EXECUTOR_ALIAS: ThreadPoolExecutor(max_workers=1)},
    daemon=True,
)
# Per-run "Running job" INFO records stay out of the app's logs
logging.getLogger(f"apscheduler.executors.{EXECUTOR_ALIAS}").setLevel(logging.WARNING)
_scheduler_lock = threading.Lock()
_shut_down = False

REFRESH_INTERVAL_SECONDS = 0.25


def _ensure_scheduler_running():
    with _scheduler_lock:
        if scheduler.running:
            return
        if _shut_down:
            # The pool executor cannot be restarted once shut down
            logger.warning("Timestamp scheduler already shut down; timestamps will not refresh")
            return
        scheduler.start()
        logger.info("Timestamp scheduler started")


def stop_scheduler():
    """Shut down the shared scheduler at process exit.

    The refresh jobs normally live as long as the process (the scheduler
    thread is a daemon). Once stopped, the scheduler is not started again.
    """
    global _shut_down
    with _scheduler_lock:
        if scheduler.running:
            scheduler.shutdown(wait=False)
            _shut_down = True
            logger.info("Timestamp scheduler stopped")


class TimestampCache:
    """Holds the current time formatted with ``time_format``.

    ``clock`` returns the datetime to format; tests pass a frozen clock.
    """

    def __init__(
        self,
        time_format: str = DEFAULT_TIME_FORMAT,
        clock: Callable[[], datetime.datetime] = localnow,
    ):
        self.time_format = time_format
        self.clock = clock
        self._job_id: Optional[str] = None
        self._value = format_timestamp(self.clock(), self.time_format)

    def current(self) -> str:
        """Return the most recently published timestamp."""
        return self._value

    def refresh(self) -> str:
        """Reformat the clock's time and publish it."""
        value = format_timestamp(self.clock(), self.time_format)
        self._value = value
        return value

    @property
    def running(self) -> bool:
        return self._job_id is not None

    def start(self, interval_seconds: float = REFRESH_INTERVAL_SECONDS):
        """Register the refresh job. Calling it again is a no-op."""
        if self._job_id is not None:
            return
        job_id = f"accesslog-timestamp-{id(self):x}"
        scheduler.add_job(
            self.refresh,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=job_id,
            executor=EXECUTOR_ALIAS,
            name="Access log timestamp refresh",
            replace_existing=True,
            max_instances=1,  # Never overlap refreshes
            coalesce=True,
        )
        self._job_id = job_id
        _ensure_scheduler_running()
        logger.debug(f"Timestamp refresh job {job_id} every {interval_seconds}s")

    def stop(self):
        """Remove the refresh job. The last published value stays readable."""
        if self._job_id is None:
            return
        job = scheduler.get_job(self._job_id)
        if job is not None:
            job.remove()
        self._job_id = None
