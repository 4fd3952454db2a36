import logging
import threading
import time
from typing import Any, Callable, Optional

from services.errors import (
    JobAbortedError,
    JobFailedError,
    JobNotFoundError,
    JobTimeoutError,
    JobWaitCancelledError,
)

logger = logging.getLogger(__name__)

TERMINAL_STATES = frozenset({"SUCCESS", "FAILED", "ABORTED"})
DEFAULT_POLL_INTERVAL_MS = 3000


class JobWaiter:
    """Poll ``core.get_jobs`` until a middleware job reaches a terminal state.

    The waiter keeps no state between calls, so one instance can serve any
    number of concurrent waits. Abandoning a wait (timeout or cancel) only
    stops the polling; the job itself keeps running on the appliance.
    """

    def __init__(
        self,
        call: Callable[[str, list], Any],
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._call = call
        self._sleep = sleep
        self._clock = clock

    def get_jobs(self, filters: Optional[list] = None) -> list[dict[str, Any]]:
        return self._call("core.get_jobs", [filters or []]) or []

    def _fetch(self, job_id: Any) -> Optional[dict[str, Any]]:
        jobs = self.get_jobs([["id", "=", job_id]])
        return jobs[0] if jobs else None

    def wait(
        self,
        job_id: Any,
        timeout: float = 0,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        cancel: Optional[threading.Event] = None,
    ) -> dict[str, Any]:
        """Block until ``job_id`` finishes and return its record.

        ``timeout`` is in seconds; 0 waits indefinitely. The timeout and the
        cancel event are checked between polls, never during one.
        """
        if job_id is None or job_id == "":
            raise JobNotFoundError(job_id, f"invalid job id: {job_id!r}")

        interval = poll_interval_ms / 1000.0
        started = self._clock()

        while True:
            job = self._fetch(job_id)
            if job is None:
                raise JobNotFoundError(job_id, f"Job {job_id} not found")

            state = job.get("state")
            logger.debug("job %s state=%s progress=%s", job_id, state, job.get("progress"))

            if state == "SUCCESS":
                return job
            if state == "FAILED":
                raise JobFailedError(job_id, f"Job {job_id} failed: {job.get('error') or 'Unknown error'}", job)
            if state == "ABORTED":
                detail = job.get("error")
                msg = f"Job {job_id} was aborted: {detail}" if detail else f"Job {job_id} was aborted"
                raise JobAbortedError(job_id, msg, job)

            if cancel is not None:
                cancel.wait(interval)
                if cancel.is_set():
                    raise JobWaitCancelledError(job_id, f"Wait for job {job_id} cancelled", job)
            else:
                self._sleep(interval)

            if timeout > 0 and self._clock() - started > timeout:
                raise JobTimeoutError(job_id, f"Job {job_id} timed out after {timeout} seconds", job)
