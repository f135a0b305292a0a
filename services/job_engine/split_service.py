#!/usr/bin/env python3
"""
Split Service - applies decompositions to the job store

split_order      multi-service order -> one job per line item (upsert by job id)
schedule_order   any order -> its jobs; single-service orders become one job
revert_split     undo a split while every job is still unassigned
assign_job       give a job to a worker; the eco bonus is decided here
update_status    move a job along its status flow
"""

import asyncio
from typing import List, Optional
import logging

from .audit import record_activity
from .database.store import ActivityLog, JobStore, WorkerDirectory
from .errors import CollaboratorTimeout, JobNotFound, SplitNotAllowed, WorkerIneligible
from .models import ActivityEvent, Job, JobStatus, Order
from .order_decomposer import OrderDecomposer
from .status_flow import transition

logger = logging.getLogger(__name__)


class SplitService:
    """
    Order splitting and job assignment over the external job store
    """

    def __init__(self, decomposer: OrderDecomposer, store: JobStore,
                 workers: Optional[WorkerDirectory] = None,
                 activity_log: Optional[ActivityLog] = None,
                 timeout: float = 5.0):
        self.decomposer = decomposer
        self.store = store
        self.workers = workers
        self.activity_log = activity_log
        self.timeout = timeout

    async def _call(self, operation: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"{operation} timed out after {self.timeout}s")
            raise CollaboratorTimeout(f"{operation} timed out after {self.timeout}s; nothing was applied")

    async def _get_job(self, job_id: str) -> Job:
        job = await self._call(f"Loading job {job_id}", self.store.get_job(job_id))
        if job is None:
            raise JobNotFound(f"Job {job_id} not found", subject=job_id)
        return job

    async def split_order(self, order: Order) -> List[Job]:
        """Split a multi-service order; re-running it refreshes the same jobs"""
        line_items = self.decomposer.decompose(order)
        if not self.decomposer.is_splittable(line_items):
            raise SplitNotAllowed(
                f"Order {order.order_id} has {len(line_items)} service(s); only multi-service orders are split",
                subject=order.order_id,
            )
        return await self._store_jobs(order, line_items, "order_split")

    async def schedule_order(self, order: Order) -> List[Job]:
        """Jobs for any order: split when multi-service, one direct job otherwise"""
        line_items = self.decomposer.decompose(order)
        if not line_items:
            raise SplitNotAllowed(f"Order {order.order_id} has no services", subject=order.order_id)
        event_type = "order_split" if self.decomposer.is_splittable(line_items) else "order_scheduled"
        return await self._store_jobs(order, line_items, event_type)

    async def _store_jobs(self, order: Order, line_items, event_type: str) -> List[Job]:
        jobs = self.decomposer.materialize(order, line_items)
        stored = await self._call(f"Storing jobs for order {order.order_id}", self.store.upsert_jobs(jobs))

        await record_activity(self.activity_log, ActivityEvent(
            event_type=event_type,
            order_id=order.order_id,
            details={"job_ids": [job.job_id for job in stored], "total": str(order.total)},
        ), self.timeout)
        logger.info(f"Order {order.order_id}: {len(stored)} jobs stored ({event_type})")
        return stored

    async def revert_split(self, order_id: str) -> List[Job]:
        """
        Mark the order's split jobs reverted

        Refused once any job has moved past unassigned. Reverted jobs are kept
        for audit and come back unassigned if the order is split again.
        """
        jobs = await self._call(f"Loading jobs for order {order_id}", self.store.get_jobs_for_order(order_id))
        if not jobs:
            raise JobNotFound(f"No jobs found for order {order_id}", subject=order_id)

        progressed = [job for job in jobs if job.status not in (JobStatus.UNASSIGNED, JobStatus.REVERTED)]
        if progressed:
            raise SplitNotAllowed(
                f"Order {order_id} cannot be un-split: "
                + ", ".join(f"{job.job_id} is {job.status.value}" for job in progressed),
                subject=order_id,
            )

        pending = [job.model_copy(update={"status": JobStatus.REVERTED}) for job in jobs
                   if job.status == JobStatus.UNASSIGNED]
        if not pending:
            return jobs

        reverted = await self._call(f"Reverting split of order {order_id}", self.store.save_jobs(pending))
        await record_activity(self.activity_log, ActivityEvent(
            event_type="split_reverted",
            order_id=order_id,
            details={"job_ids": [job.job_id for job in reverted]},
        ), self.timeout)
        logger.info(f"Reverted split of order {order_id} ({len(reverted)} jobs)")
        return reverted

    async def assign_job(self, job_id: str, worker_id: str) -> Job:
        """Assign a worker and price the eco bonus against their eco preference"""
        if self.workers is None:
            raise WorkerIneligible("No worker directory configured", subject=worker_id)

        job = await self._get_job(job_id)
        assigned = transition(job, JobStatus.ASSIGNED)

        worker = await self._call(f"Looking up worker {worker_id}", self.workers.get_worker(worker_id))
        if worker is None or not worker.active:
            raise WorkerIneligible(f"Worker {worker_id} is missing or inactive", subject=worker_id)
        eligible = await self._call(f"Checking worker {worker_id}",
                                    self.workers.is_eligible(worker_id, job.service, job.tier))
        if not eligible:
            raise WorkerIneligible(f"Worker {worker_id} is not eligible for {job.service.value} {job.tier}",
                                   subject=worker_id)

        line_item = self.decomposer.line_item_for(job)
        payout = self.decomposer.payout_calculator.calculate(line_item, eco_eligible=worker.accepts_eco_jobs)
        assigned = assigned.model_copy(update={
            "assigned_worker_id": worker_id,
            "payout": payout.total,
            "payout_breakdown": payout,
        })

        saved = (await self._call(f"Assigning job {job_id}", self.store.save_jobs([assigned])))[0]
        await record_activity(self.activity_log, ActivityEvent(
            event_type="job_assigned",
            job_id=job_id,
            order_id=job.order_id,
            details={"worker_id": worker_id, "payout": str(payout.total), "eco_bonus": str(payout.eco_bonus)},
        ), self.timeout)
        logger.info(f"Job {job_id} assigned to {worker_id} (payout {payout.total})")
        return saved

    async def update_status(self, job_id: str, status: JobStatus) -> Job:
        job = await self._get_job(job_id)
        updated = transition(job, status)
        if updated.status in (JobStatus.DECLINED, JobStatus.REASSIGN, JobStatus.CANCELLED):
            updated = updated.model_copy(update={"assigned_worker_id": None})

        saved = (await self._call(f"Updating job {job_id}", self.store.save_jobs([updated])))[0]
        await record_activity(self.activity_log, ActivityEvent(
            event_type="status_changed",
            job_id=job_id,
            order_id=job.order_id,
            details={"from": job.status.value, "to": saved.status.value},
        ), self.timeout)
        return saved
