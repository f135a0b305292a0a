"""
Error taxonomy for the job engine.

Every error here is recoverable at the call site. Per-item problems during
decomposition are recorded on the affected line item instead of being raised,
so sibling items keep decomposing.
"""

from typing import Optional


class JobEngineError(Exception):
    """Base class for all job engine errors"""

    code = "job_engine_error"

    def __init__(self, message: str, subject: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.subject = subject

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "subject": self.subject}


class UnmodeledRule(JobEngineError):
    """Service/tier/add-on combination absent from the rule catalog"""

    code = "unmodeled_rule"


class UnparseableLineItem(JobEngineError):
    """Descriptor text did not match any known service grammar"""

    code = "unparseable_line_item"


class SplitNotAllowed(JobEngineError):
    """Single-service order, or a split revert attempted after progress"""

    code = "split_not_allowed"


class JobNotFound(JobEngineError):
    code = "job_not_found"


class JobTerminalState(JobEngineError):
    """Operation attempted on a completed, cancelled, superseded or reverted job"""

    code = "job_terminal_state"


class WorkerIneligible(JobEngineError):
    """Original worker disqualified; degrades to an unassigned reschedule"""

    code = "worker_ineligible"


class InvalidStatusTransition(JobEngineError):
    code = "invalid_status_transition"


class ConcurrentModification(JobEngineError):
    """The store rejected a write because the job version moved underneath us"""

    code = "concurrent_modification"


class CollaboratorTimeout(JobEngineError):
    """An external round-trip exceeded its bound; nothing was applied"""

    code = "collaborator_timeout"


class RescheduleTimeout(CollaboratorTimeout):
    code = "reschedule_timeout"
