"""
Job status flows

Car wash and home cleaning jobs follow the on-site flow; laundry jobs replace
the on-site leg with pickup, processing and delivery. Any non-terminal job may
be cancelled. Superseded and reverted are set by reschedule/revert, never by a
worker-facing transition.
"""

from typing import Dict, List
import logging

from .errors import InvalidStatusTransition, JobTerminalState
from .models import Job, JobStatus, ServiceKind, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

S = JobStatus

_ASSIGNMENT_FLOW: Dict[JobStatus, List[JobStatus]] = {
    S.UNASSIGNED: [S.ASSIGNED],
    S.ASSIGNED: [S.ACCEPTED, S.DECLINED],
    S.DECLINED: [S.REASSIGN],
    S.REASSIGN: [S.ASSIGNED],
}

GENERAL_FLOW: Dict[JobStatus, List[JobStatus]] = {
    **_ASSIGNMENT_FLOW,
    S.ACCEPTED: [S.EN_ROUTE],
    S.EN_ROUTE: [S.ARRIVED],
    S.ARRIVED: [S.IN_PROGRESS],
    S.IN_PROGRESS: [S.COMPLETED],
}

LAUNDRY_FLOW: Dict[JobStatus, List[JobStatus]] = {
    **_ASSIGNMENT_FLOW,
    S.ACCEPTED: [S.EN_ROUTE_TO_PICKUP],
    S.EN_ROUTE_TO_PICKUP: [S.ARRIVED_AT_PICKUP],
    S.ARRIVED_AT_PICKUP: [S.PICKED_UP],
    S.PICKED_UP: [S.IN_WASH],
    S.IN_WASH: [S.IN_DRY],
    S.IN_DRY: [S.FOLDING_IRONING],
    S.FOLDING_IRONING: [S.EN_ROUTE_TO_DELIVER],
    S.EN_ROUTE_TO_DELIVER: [S.ARRIVED_AT_DELIVERY],
    S.ARRIVED_AT_DELIVERY: [S.DELIVERED],
    S.DELIVERED: [S.COMPLETED],
}


def flow_for(service: ServiceKind) -> Dict[JobStatus, List[JobStatus]]:
    return LAUNDRY_FLOW if service == ServiceKind.LAUNDRY_SERVICE else GENERAL_FLOW


def next_statuses(service: ServiceKind, status: JobStatus) -> List[JobStatus]:
    if status in TERMINAL_STATUSES:
        return []
    return flow_for(service).get(status, []) + [S.CANCELLED]


def transition(job: Job, status: JobStatus) -> Job:
    """Return a copy of the job in the new status; the input job is left untouched"""
    status = JobStatus(status)

    if job.is_terminal:
        raise JobTerminalState(f"Job {job.job_id} is {job.status.value}", subject=job.job_id)

    allowed = next_statuses(job.service, job.status)
    if status not in allowed:
        raise InvalidStatusTransition(
            f"{job.service.value} job {job.job_id} cannot move from {job.status.value} to {status.value}",
            subject=job.job_id,
        )

    logger.info(f"Job {job.job_id}: {job.status.value} -> {status.value}")
    return job.model_copy(update={"status": status})
