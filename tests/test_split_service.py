import asyncio
from decimal import Decimal

import pytest

from job_engine.database import InMemoryJobStore
from job_engine.errors import CollaboratorTimeout, JobNotFound, SplitNotAllowed, WorkerIneligible
from job_engine.models import JobStatus, ServiceKind
from job_engine.split_service import SplitService

from conftest import make_order

TWO_SERVICES = "Mobile Car Wash - Express Shine (Eco-friendly Products), Home Cleaning"


class SlowJobStore(InMemoryJobStore):
    async def upsert_jobs(self, jobs):
        await asyncio.sleep(1)
        return await super().upsert_jobs(jobs)


@pytest.fixture
def split_service(decomposer, store, workers, activity_log):
    return SplitService(decomposer, store, workers, activity_log, timeout=0.5)


class TestSplitOrder:

    @pytest.mark.asyncio
    async def test_split_stores_one_job_per_service(self, split_service, store, activity_log):
        jobs = await split_service.split_order(make_order(TWO_SERVICES))

        assert len(jobs) == 2
        assert await store.get_jobs_for_order("ORDER-1001") == jobs
        assert all(job.version == 1 for job in jobs)
        assert activity_log.events[-1].event_type == "order_split"
        assert activity_log.events[-1].details["job_ids"] == [job.job_id for job in jobs]

    @pytest.mark.asyncio
    async def test_resplit_is_idempotent(self, split_service, store):
        first = await split_service.split_order(make_order(TWO_SERVICES))
        second = await split_service.split_order(make_order(TWO_SERVICES))

        assert [job.job_id for job in first] == [job.job_id for job in second]
        assert [job.version for job in second] == [1, 1]
        assert len(await store.get_jobs_for_order("ORDER-1001")) == 2

    @pytest.mark.asyncio
    async def test_single_service_order_is_not_split(self, split_service, store):
        with pytest.raises(SplitNotAllowed):
            await split_service.split_order(make_order("Home Cleaning - Deep"))
        assert await store.get_jobs_for_order("ORDER-1001") == []

    @pytest.mark.asyncio
    async def test_schedule_single_service_order(self, split_service, activity_log):
        jobs = await split_service.schedule_order(make_order("Home Cleaning - Deep"))

        assert len(jobs) == 1
        assert jobs[0].price_share == Decimal("100.00")
        assert activity_log.events[-1].event_type == "order_scheduled"

    @pytest.mark.asyncio
    async def test_schedule_empty_order(self, split_service):
        with pytest.raises(SplitNotAllowed):
            await split_service.schedule_order(make_order(" "))

    @pytest.mark.asyncio
    async def test_slow_store_times_out(self, decomposer, workers, activity_log):
        service = SplitService(decomposer, SlowJobStore(), workers, activity_log, timeout=0.05)

        with pytest.raises(CollaboratorTimeout):
            await service.split_order(make_order(TWO_SERVICES))
        assert activity_log.events == ()


class TestRevertSplit:

    @pytest.mark.asyncio
    async def test_revert_while_unassigned(self, split_service, activity_log):
        await split_service.split_order(make_order(TWO_SERVICES))
        reverted = await split_service.revert_split("ORDER-1001")

        assert [job.status for job in reverted] == [JobStatus.REVERTED, JobStatus.REVERTED]
        assert activity_log.events[-1].event_type == "split_reverted"

    @pytest.mark.asyncio
    async def test_split_again_after_revert(self, split_service):
        await split_service.split_order(make_order(TWO_SERVICES))
        await split_service.revert_split("ORDER-1001")
        jobs = await split_service.split_order(make_order(TWO_SERVICES))

        assert all(job.status == JobStatus.UNASSIGNED for job in jobs)

    @pytest.mark.asyncio
    async def test_revert_refused_after_assignment(self, split_service, store):
        jobs = await split_service.split_order(make_order(TWO_SERVICES))
        await split_service.assign_job(jobs[0].job_id, "W-PLAIN")

        with pytest.raises(SplitNotAllowed):
            await split_service.revert_split("ORDER-1001")
        assert (await store.get_job(jobs[1].job_id)).status == JobStatus.UNASSIGNED

    @pytest.mark.asyncio
    async def test_revert_unknown_order(self, split_service):
        with pytest.raises(JobNotFound):
            await split_service.revert_split("ORDER-404")


class TestAssignJob:

    @pytest.mark.asyncio
    async def test_eco_bonus_for_eco_worker(self, split_service, activity_log):
        car_wash = (await split_service.split_order(make_order(TWO_SERVICES)))[0]
        assert car_wash.payout == Decimal("29")

        assigned = await split_service.assign_job(car_wash.job_id, "W-ACTIVE")

        assert assigned.status == JobStatus.ASSIGNED
        assert assigned.assigned_worker_id == "W-ACTIVE"
        assert assigned.payout == Decimal("34")
        assert assigned.version == 2
        assert activity_log.events[-1].event_type == "job_assigned"

    @pytest.mark.asyncio
    async def test_no_eco_bonus_for_opted_out_worker(self, split_service):
        car_wash = (await split_service.split_order(make_order(TWO_SERVICES)))[0]
        assigned = await split_service.assign_job(car_wash.job_id, "W-PLAIN")

        assert assigned.payout == Decimal("29")
        assert assigned.payout_breakdown.eco_bonus == Decimal("0")

    @pytest.mark.asyncio
    async def test_resplit_keeps_assignment_and_eco_payout(self, split_service):
        car_wash = (await split_service.split_order(make_order(TWO_SERVICES)))[0]
        await split_service.assign_job(car_wash.job_id, "W-ACTIVE")

        again = (await split_service.split_order(make_order(TWO_SERVICES)))[0]
        assert again.assigned_worker_id == "W-ACTIVE"
        assert again.status == JobStatus.ASSIGNED
        assert again.payout == Decimal("34")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("worker_id", ["W-INACTIVE", "W-MISSING"])
    async def test_inactive_or_missing_worker(self, split_service, worker_id):
        job = (await split_service.split_order(make_order(TWO_SERVICES)))[0]
        with pytest.raises(WorkerIneligible):
            await split_service.assign_job(job.job_id, worker_id)

    @pytest.mark.asyncio
    async def test_worker_not_eligible_for_service(self, split_service):
        jobs = await split_service.split_order(make_order(TWO_SERVICES))
        cleaning = [job for job in jobs if job.service == ServiceKind.HOME_CLEANING][0]
        car_wash = [job for job in jobs if job.service == ServiceKind.MOBILE_CAR_WASH][0]

        with pytest.raises(WorkerIneligible):
            await split_service.assign_job(cleaning.job_id, "W-CARWASH-ONLY")
        assert (await split_service.assign_job(car_wash.job_id, "W-CARWASH-ONLY")).status == JobStatus.ASSIGNED

    @pytest.mark.asyncio
    async def test_unknown_job(self, split_service):
        with pytest.raises(JobNotFound):
            await split_service.assign_job("JOB-NOPE", "W-ACTIVE")


class TestUpdateStatus:

    @pytest.mark.asyncio
    async def test_decline_releases_worker(self, split_service, activity_log):
        job = (await split_service.split_order(make_order(TWO_SERVICES)))[1]
        await split_service.assign_job(job.job_id, "W-PLAIN")

        declined = await split_service.update_status(job.job_id, JobStatus.DECLINED)

        assert declined.assigned_worker_id is None
        assert activity_log.events[-1].details == {"from": "assigned", "to": "declined"}
