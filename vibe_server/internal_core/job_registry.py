from __future__ import annotations

import logging
import time
import uuid
from threading import RLock
from typing import Dict, List, Optional

from .contracts import JobOutcome, JobRecord

logger = logging.getLogger(__name__)


class InMemoryJobRegistry:
    """
    Job id -> JobRecord store.

    Records are immutable values; every write swaps the whole record under the
    lock, so a concurrent `get` sees either the old or the new state.
    Terminal records older than `ttl_seconds` are evicted; records still
    processing are never evicted. `ttl_seconds <= 0` keeps everything.
    """

    def __init__(self, ttl_seconds: int = 0):
        self._ttl_seconds = ttl_seconds
        self._lock = RLock()
        self._jobs: Dict[str, JobRecord] = {}

    def create(self, model_name: str = "") -> str:
        self.cleanup_expired()
        now = time.time()
        with self._lock:
            job_id = uuid.uuid4().hex
            while job_id in self._jobs:
                job_id = uuid.uuid4().hex
            self._jobs[job_id] = JobRecord(
                job_id=job_id,
                status="processing",
                model_name=model_name,
                created_at=now,
                updated_at=now,
            )
        return job_id

    def write_terminal(self, job_id: str, outcome: JobOutcome) -> Optional[JobRecord]:
        now = time.time()
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                logger.warning("terminal write for unknown job_id=%s dropped", job_id)
                return None
            if current.is_terminal:
                logger.warning(
                    "job_id=%s already %s; overwriting with %s",
                    job_id,
                    current.status,
                    outcome.status,
                )
            record = current.model_copy(
                update={
                    "status": outcome.status,
                    "result": outcome.result,
                    "error": outcome.error,
                    "error_kind": outcome.error_kind,
                    "updated_at": now,
                    "finished_at": now,
                }
            )
            self._jobs[job_id] = record
        return record

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._jobs.get(job_id)

    def job_ids(self) -> List[str]:
        with self._lock:
            return list(self._jobs.keys())

    def counts(self) -> Dict[str, int]:
        out = {"processing": 0, "completed": 0, "failed": 0}
        with self._lock:
            for record in self._jobs.values():
                out[record.status] += 1
        return out

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def cleanup_expired(self) -> int:
        if self._ttl_seconds <= 0:
            return 0
        cutoff = time.time() - self._ttl_seconds
        with self._lock:
            expired = [
                job_id
                for job_id, record in self._jobs.items()
                if record.finished_at is not None and record.finished_at <= cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info("evicted %d finished jobs older than %ds", len(expired), self._ttl_seconds)
        return len(expired)
