"""
Activity log appends with a bounded wait
"""

import asyncio
from typing import Optional
import logging

from .database.store import ActivityLog
from .models import ActivityEvent

logger = logging.getLogger(__name__)


async def record_activity(activity_log: Optional[ActivityLog], event: ActivityEvent, timeout: float) -> bool:
    """
    Append an event to the activity log

    Returns False when the sink is missing, slow or failing. The operation being
    audited has already been applied at that point, so the failure is reported
    to the caller instead of raised.
    """
    if activity_log is None:
        return False

    try:
        await asyncio.wait_for(activity_log.record(event), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        logger.error(f"Activity log timed out after {timeout}s recording {event.event_type} for {event.job_id}")
    except Exception as e:
        logger.error(f"Activity log failed recording {event.event_type} for {event.job_id}: {e}")
    return False
