from typing import Optional, List, Dict, Any
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum

from pydantic import Field

from .base import EngineModel
from .issues import RuleIssue
from .line_item import ServiceKind, AddOnSelection, PropertyAttributes
from .breakdowns import DurationBreakdown, PayoutBreakdown


class JobStatus(str, Enum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REASSIGN = "reassign"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    # Laundry pickup/processing/delivery legs
    EN_ROUTE_TO_PICKUP = "en_route_to_pickup"
    ARRIVED_AT_PICKUP = "arrived_at_pickup"
    PICKED_UP = "picked_up"
    IN_WASH = "in_wash"
    IN_DRY = "in_dry"
    FOLDING_IRONING = "folding_ironing"
    EN_ROUTE_TO_DELIVER = "en_route_to_deliver"
    ARRIVED_AT_DELIVERY = "arrived_at_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    SUPERSEDED = "superseded"
    REVERTED = "reverted"


TERMINAL_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.CANCELLED,
    JobStatus.SUPERSEDED,
    JobStatus.REVERTED,
})


class CrewAssignment(EngineModel):
    crew_type: str
    workers: int
    max_duration: int
    large_property: bool = False
    reason: str = ""


class Job(EngineModel):
    """A schedulable unit of work materialized from one line item"""

    job_id: str
    order_id: str
    line_item_index: int
    # 0 for the split itself, +1 per reschedule of the same line item
    revision: int = 0
    service: ServiceKind
    tier: str = ""
    add_ons: List[AddOnSelection] = Field(default_factory=list)
    attributes: Optional[PropertyAttributes] = None

    payout: Decimal = Decimal("0")
    payout_breakdown: Optional[PayoutBreakdown] = None
    # 0 with needs_review set when the line item could not be rated
    expected_duration_minutes: Optional[int] = None
    duration_breakdown: Optional[DurationBreakdown] = None
    price_share: Decimal = Decimal("0")

    assigned_worker_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    status: JobStatus = JobStatus.UNASSIGNED

    eco_requested: bool = False
    needs_review: bool = False
    issues: List[RuleIssue] = Field(default_factory=list)
    photo_requirements: List[str] = Field(default_factory=list)
    perks: List[str] = Field(default_factory=list)
    crew: Optional[CrewAssignment] = None

    supersedes: Optional[str] = None
    superseded_by: Optional[str] = None
    # Optimistic concurrency token owned by the store
    version: int = 1
    catalog_version: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class WorkerProfile(EngineModel):
    worker_id: str
    active: bool = True
    accepts_eco_jobs: bool = False
    display_name: Optional[str] = None


class RescheduleReason(str, Enum):
    RETAINED = "retained"
    INACTIVE = "inactive"
    NOT_FOUND = "not-found"
    INELIGIBLE = "ineligible-for-service"
    # The job had no worker to keep in the first place
    NO_PRIOR_WORKER = "no-prior-worker"


class RescheduleOutcome(EngineModel):
    original_job_id: str
    new_job_id: str
    retained_original_worker: bool
    resolved_worker_id: Optional[str] = None
    reason: RescheduleReason
    requested_reason: Optional[str] = None
    new_job: Optional[Job] = None
    audit_recorded: bool = True


class ActivityEvent(EngineModel):
    """Append-only audit entry"""

    event_type: str
    job_id: Optional[str] = None
    order_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = Field(default_factory=dict)
