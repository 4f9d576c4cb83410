"""
In-memory job registry.

The :class:`JobStore` owns every :class:`JobRecord`. Callers never hold on to
a record: reads return snapshots and writes go through :meth:`JobStore.update`,
so a record deleted by eviction or by the expiry sweep is simply a miss.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from threading import Lock
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from .models import JobStatus, JobView

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class JobRecord:
    """
    State of one topic-to-PDF request.

    Attributes:
        id: Unique job identifier (uuid4 string)
        status: Current pipeline status
        timestamp: Last time the job was created or read, epoch milliseconds
        title: Extracted paper title, set on completion
        url: Public URL of the uploaded PDF, set on completion
        message: Failure description, set on error
    """

    id: str
    status: JobStatus
    timestamp: int
    title: Optional[str] = None
    url: Optional[str] = None
    message: Optional[str] = None

    def to_view(self) -> JobView:
        return JobView(
            status=self.status,
            timestamp=self.timestamp,
            title=self.title,
            url=self.url,
            message=self.message,
        )


class JobStore:
    """
    Thread-safe mapping from job id to :class:`JobRecord`.

    Thread Safety:
        Every access holds a lock. A record has a single writer (its pipeline
        task) while any number of status handlers read it.
    """

    def __init__(self, clock: Callable[[], int] = _now_ms) -> None:
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = Lock()
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def create(self) -> str:
        job_id = str(uuid4())
        record = JobRecord(id=job_id, status=JobStatus.QUEUED, timestamp=self._clock())
        with self._lock:
            self._jobs[job_id] = record
        return job_id

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            record = self._jobs.get(job_id)
            return replace(record) if record else None

    def touch(self, job_id: str) -> Optional[JobRecord]:
        """Refresh the timestamp and return a snapshot, or None if unknown."""
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                return None
            record.timestamp = self._clock()
            return replace(record)

    def update(self, job_id: str, status: Optional[JobStatus] = None, **fields: Any) -> bool:
        """
        Apply changes to a job.

        Args:
            job_id: The job to update
            status: New status; must not move backwards
            **fields: Other record attributes (title, url, message)

        Returns:
            False when the job no longer exists (evicted or expired)

        Raises:
            ValueError: If ``status`` would move the job backwards, out of a
                terminal state, or to completed without passing finalizing
        """
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                logger.info(f"Job {job_id} no longer tracked; dropping update")
                return False

            if status is not None and status != record.status:
                backwards = record.status.is_terminal or status.rank < record.status.rank
                # Only a finished upload completes a job
                early_completion = status is JobStatus.COMPLETED and record.status is not JobStatus.FINALIZING
                if backwards or early_completion:
                    raise ValueError(f"Job {job_id} cannot move from {record.status.value} to {status.value}")
                record.status = status

            for key, value in fields.items():
                setattr(record, key, value)
            return True

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def sweep_expired(self, max_age_ms: int) -> List[str]:
        """
        Remove every job whose timestamp is older than ``max_age_ms``.

        Status is not considered: a job still running in the pipeline is
        removed too, and its later updates become no-ops.

        Returns:
            The removed job ids
        """
        now = self._clock()
        with self._lock:
            expired = [job_id for job_id, record in self._jobs.items() if now - record.timestamp > max_age_ms]
            for job_id in expired:
                del self._jobs[job_id]

        for job_id in expired:
            logger.info(f"Job {job_id} abandoned and removed from store")
        return expired
