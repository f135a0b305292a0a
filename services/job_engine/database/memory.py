"""
In-memory collaborators: used when no database is configured and in tests
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger

from ..errors import ConcurrentModification
from ..models import ActivityEvent, Job, JobStatus, ServiceKind, WorkerProfile
from .store import merge_upsert


class InMemoryJobStore:
    """Job records keyed by job_id with optimistic versioning"""

    def __init__(self, jobs: Optional[Iterable[Job]] = None):
        self._jobs: Dict[str, Job] = {job.job_id: job for job in (jobs or [])}
        self._lock = asyncio.Lock()

    async def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    async def get_jobs_for_order(self, order_id: str) -> List[Job]:
        jobs = [job for job in self._jobs.values() if job.order_id == order_id]
        return sorted(jobs, key=lambda job: (job.line_item_index, job.revision))

    async def upsert_jobs(self, jobs: List[Job]) -> List[Job]:
        async with self._lock:
            stored = []
            for job in jobs:
                existing = self._jobs.get(job.job_id)
                saved = job.model_copy(update={"version": 1}) if existing is None else merge_upsert(existing, job)
                self._jobs[job.job_id] = saved
                stored.append(saved)
            logger.debug(f"Upserted {len(stored)} jobs")
            return stored

    def _check_version(self, job: Job) -> None:
        current = self._jobs.get(job.job_id)
        if current is None or current.version != job.version:
            raise ConcurrentModification(
                f"Job {job.job_id} changed since it was read (expected version {job.version}, "
                f"found {current.version if current else 'none'})",
                subject=job.job_id,
            )

    async def save_jobs(self, jobs: List[Job]) -> List[Job]:
        async with self._lock:
            for job in jobs:
                self._check_version(job)
            saved = [job.model_copy(update={"version": job.version + 1}) for job in jobs]
            for job in saved:
                self._jobs[job.job_id] = job
            return saved

    async def supersede(self, old_job: Job, new_job: Job) -> Job:
        async with self._lock:
            self._check_version(old_job)
            if new_job.job_id in self._jobs:
                raise ConcurrentModification(f"Job {new_job.job_id} already exists", subject=new_job.job_id)

            self._jobs[old_job.job_id] = old_job.model_copy(update={
                "status": JobStatus.SUPERSEDED,
                "superseded_by": new_job.job_id,
                "version": old_job.version + 1,
            })
            inserted = new_job.model_copy(update={"version": 1})
            self._jobs[inserted.job_id] = inserted
            logger.debug(f"Job {old_job.job_id} superseded by {inserted.job_id}")
            return inserted


class InMemoryWorkerDirectory:
    """
    Worker profiles plus an optional eligibility table

    A worker without an eligibility entry may take any service; an entry limits
    them to the listed (service, tier) pairs, where tier None means every tier.
    """

    def __init__(self, workers: Optional[Iterable[WorkerProfile]] = None,
                 eligibility: Optional[Dict[str, Set[Tuple[ServiceKind, Optional[str]]]]] = None):
        self._workers: Dict[str, WorkerProfile] = {worker.worker_id: worker for worker in (workers or [])}
        self._eligibility = eligibility or {}

    def add_worker(self, worker: WorkerProfile, services: Optional[Set[Tuple[ServiceKind, Optional[str]]]] = None):
        self._workers[worker.worker_id] = worker
        if services is not None:
            self._eligibility[worker.worker_id] = services

    async def get_worker(self, worker_id: str) -> Optional[WorkerProfile]:
        return self._workers.get(worker_id)

    async def is_eligible(self, worker_id: str, service: ServiceKind, tier: str) -> bool:
        if worker_id not in self._workers:
            return False
        allowed = self._eligibility.get(worker_id)
        if allowed is None:
            return True
        return (service, tier) in allowed or (service, None) in allowed


class InMemoryActivityLog:
    """Append-only event list"""

    def __init__(self):
        self._events: List[ActivityEvent] = []

    async def record(self, event: ActivityEvent) -> None:
        self._events.append(event)
        logger.debug(f"Activity {event.event_type} for job {event.job_id}")

    @property
    def events(self) -> Tuple[ActivityEvent, ...]:
        return tuple(self._events)
