"""
Job engine: splits customer orders into schedulable jobs, estimates worker
payout and expected duration from versioned rule tables, and reschedules jobs
while preferring the originally assigned worker.
"""

from .rules import RuleCatalog, CatalogLoader
from .duration_estimator import DurationEstimator
from .payout_calculator import PayoutCalculator
from .descriptor_parser import DescriptorParser
from .order_decomposer import OrderDecomposer, derive_job_id, distribute_price
from .split_service import SplitService
from .reschedule_resolver import RescheduleResolver
from .status_flow import next_statuses, transition

__version__ = "1.0.0"

__all__ = [
    'RuleCatalog', 'CatalogLoader', 'DurationEstimator', 'PayoutCalculator', 'DescriptorParser',
    'OrderDecomposer', 'derive_job_id', 'distribute_price', 'SplitService', 'RescheduleResolver',
    'next_statuses', 'transition',
]
