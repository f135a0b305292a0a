"""
Records consumed and produced by the job engine
"""

from .base import EngineModel
from .issues import IssueCode, RuleIssue
from .line_item import (
    ServiceKind,
    PropertyType,
    LaundryBag,
    AddOnSelection,
    PropertyAttributes,
    ServiceLineItem,
    Order,
    normalize_property_type,
)
from .breakdowns import DurationBreakdown, AddOnPayout, PayoutBreakdown
from .job import (
    JobStatus,
    TERMINAL_STATUSES,
    CrewAssignment,
    Job,
    WorkerProfile,
    RescheduleReason,
    RescheduleOutcome,
    ActivityEvent,
)

__all__ = [
    'EngineModel', 'IssueCode', 'RuleIssue',
    'ServiceKind', 'PropertyType', 'LaundryBag', 'AddOnSelection', 'PropertyAttributes',
    'ServiceLineItem', 'Order', 'normalize_property_type',
    'DurationBreakdown', 'AddOnPayout', 'PayoutBreakdown',
    'JobStatus', 'TERMINAL_STATUSES', 'CrewAssignment', 'Job', 'WorkerProfile',
    'RescheduleReason', 'RescheduleOutcome', 'ActivityEvent',
]
