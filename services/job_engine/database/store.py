"""
Contracts for the external collaborators the engine talks to

The engine never owns storage. Job records, worker profiles and the activity
log live behind these protocols; the asyncpg adapters in connection.py and the
in-memory adapters in memory.py both implement them.
"""

from typing import List, Optional, Protocol

from ..models import ActivityEvent, Job, JobStatus, ServiceKind, WorkerProfile

# Fields owned by assignment/scheduling; a re-materialized job never overwrites them
ASSIGNMENT_FIELDS = (
    "assigned_worker_id",
    "scheduled_at",
    "status",
    "supersedes",
    "superseded_by",
)


class JobStore(Protocol):
    async def get_job(self, job_id: str) -> Optional[Job]:
        ...

    async def get_jobs_for_order(self, order_id: str) -> List[Job]:
        ...

    async def upsert_jobs(self, jobs: List[Job]) -> List[Job]:
        """Insert new jobs, refresh computed fields of existing ones (keyed by job_id)"""
        ...

    async def save_jobs(self, jobs: List[Job]) -> List[Job]:
        """All-or-nothing write; each job must still carry the version it was read at"""
        ...

    async def supersede(self, old_job: Job, new_job: Job) -> Job:
        """Mark old_job superseded by new_job and insert new_job in one step"""
        ...


class WorkerDirectory(Protocol):
    async def get_worker(self, worker_id: str) -> Optional[WorkerProfile]:
        ...

    async def is_eligible(self, worker_id: str, service: ServiceKind, tier: str) -> bool:
        ...


class ActivityLog(Protocol):
    async def record(self, event: ActivityEvent) -> None:
        """Append only; entries are never changed or removed"""
        ...


def merge_upsert(existing: Job, incoming: Job) -> Job:
    """
    Result of re-materializing a job that is already stored

    Computed fields come from the incoming job; assignment and lineage stay as
    stored. A reverted job comes back unassigned. Payout is kept while a
    worker holds the job since it may include the eco bonus.
    """
    keep = {name: getattr(existing, name) for name in ASSIGNMENT_FIELDS}

    if existing.status == JobStatus.REVERTED:
        keep.update(status=JobStatus.UNASSIGNED, assigned_worker_id=None, scheduled_at=None)
    elif existing.assigned_worker_id:
        keep.update(payout=existing.payout, payout_breakdown=existing.payout_breakdown)

    merged = incoming.model_copy(update={**keep, "version": existing.version})
    if merged == existing:
        return existing
    return merged.model_copy(update={"version": existing.version + 1})
