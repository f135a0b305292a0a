#!/usr/bin/env python3
"""
Reschedule Resolver - re-time a job, preferring its original worker

    Scheduled -> Rescheduled(retained)      worker active and eligible
              -> Rescheduled(reassigned)    worker inactive / not found / ineligible;
                                            new job left unassigned
              -> RescheduleRejected         job missing, terminal, timed out or
                                            changed concurrently

A reschedule never edits the job in place: it inserts a successor job with the
same order and line item (revision + 1) and marks the prior job superseded.
Choosing a substitute worker belongs to the external scheduler. Every attempt
is appended to the activity log.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple
import logging

from .audit import record_activity
from .database.store import ActivityLog, JobStore, WorkerDirectory
from .errors import JobEngineError, JobNotFound, JobTerminalState, RescheduleTimeout
from .models import ActivityEvent, Job, JobStatus, RescheduleOutcome, RescheduleReason
from .order_decomposer import derive_job_id

logger = logging.getLogger(__name__)


class RescheduleResolver:
    """
    Resolves reschedule requests against the job store and worker directory
    """

    def __init__(self, store: JobStore, workers: WorkerDirectory, activity_log: Optional[ActivityLog] = None,
                 timeout: float = 5.0):
        self.store = store
        self.workers = workers
        self.activity_log = activity_log
        self.timeout = timeout

    async def reschedule(self, job_id: str, new_time: datetime, reason: Optional[str] = None) -> RescheduleOutcome:
        """
        Reschedule a job to new_time

        Lookups and the store write share one time bound. On timeout nothing
        has been applied and RescheduleTimeout is raised.
        """
        try:
            outcome = await asyncio.wait_for(self._apply(job_id, new_time, reason), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Reschedule of job {job_id} timed out after {self.timeout}s; nothing applied")
            error = RescheduleTimeout(f"Reschedule of job {job_id} timed out after {self.timeout}s", subject=job_id)
            await self._record_rejection(job_id, new_time, reason, error)
            raise error
        except JobEngineError as e:
            logger.warning(f"Reschedule of job {job_id} rejected: {e.message}")
            await self._record_rejection(job_id, new_time, reason, e)
            raise

        recorded = await record_activity(self.activity_log, ActivityEvent(
            event_type="job_rescheduled",
            job_id=outcome.original_job_id,
            order_id=outcome.new_job.order_id if outcome.new_job else None,
            details={
                "new_job_id": outcome.new_job_id,
                "new_time": new_time.isoformat(),
                "retained_original_worker": outcome.retained_original_worker,
                "resolved_worker_id": outcome.resolved_worker_id,
                "reason": outcome.reason.value,
                "requested_reason": reason,
            },
        ), self.timeout)
        return outcome.model_copy(update={"audit_recorded": recorded})

    async def _record_rejection(self, job_id: str, new_time: datetime, reason: Optional[str],
                                error: JobEngineError) -> None:
        await record_activity(self.activity_log, ActivityEvent(
            event_type="reschedule_rejected",
            job_id=job_id,
            details={
                "error": error.code,
                "message": error.message,
                "new_time": new_time.isoformat(),
                "requested_reason": reason,
            },
        ), self.timeout)

    async def _apply(self, job_id: str, new_time: datetime, reason: Optional[str]) -> RescheduleOutcome:
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found", subject=job_id)
        if job.is_terminal:
            raise JobTerminalState(f"Job {job_id} is {job.status.value} and cannot be rescheduled", subject=job_id)

        retained, resolution = await self.resolve_worker(job)
        successor = self.successor(job, new_time, retained)
        stored = await self.store.supersede(job, successor)

        logger.info(f"Job {job_id} rescheduled as {stored.job_id} "
                    f"({'kept ' + job.assigned_worker_id if retained else resolution.value})")
        return RescheduleOutcome(
            original_job_id=job.job_id,
            new_job_id=stored.job_id,
            retained_original_worker=retained,
            resolved_worker_id=stored.assigned_worker_id,
            reason=resolution,
            requested_reason=reason,
            new_job=stored,
        )

    async def resolve_worker(self, job: Job) -> Tuple[bool, RescheduleReason]:
        """Whether the original worker keeps the job, and why"""
        worker_id = job.assigned_worker_id
        if not worker_id:
            return False, RescheduleReason.NO_PRIOR_WORKER

        worker = await self.workers.get_worker(worker_id)
        if worker is None:
            resolution = RescheduleReason.NOT_FOUND
        elif not worker.active:
            resolution = RescheduleReason.INACTIVE
        elif not await self.workers.is_eligible(worker_id, job.service, job.tier):
            resolution = RescheduleReason.INELIGIBLE
        else:
            return True, RescheduleReason.RETAINED

        logger.warning(f"Worker {worker_id} cannot keep job {job.job_id}: {resolution.value}")
        return False, resolution

    @staticmethod
    def successor(job: Job, new_time: datetime, retained: bool) -> Job:
        """The job that replaces `job`: same lineage, next revision, new schedule"""
        revision = job.revision + 1
        update = {
            "job_id": derive_job_id(job.order_id, job.line_item_index, revision),
            "revision": revision,
            "scheduled_at": new_time,
            "supersedes": job.job_id,
            "superseded_by": None,
            "version": 1,
        }

        if retained:
            update["status"] = JobStatus.ASSIGNED
        else:
            update.update(status=JobStatus.UNASSIGNED, assigned_worker_id=None)
            # The eco bonus belonged to the departing worker's preference
            breakdown = job.payout_breakdown
            if breakdown is not None and breakdown.eco_bonus > 0:
                update["payout_breakdown"] = breakdown.model_copy(update={
                    "eco_bonus": Decimal("0"),
                    "total": breakdown.total - breakdown.eco_bonus,
                })
                update["payout"] = breakdown.total - breakdown.eco_bonus

        return job.model_copy(update=update)
