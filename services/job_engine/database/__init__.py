from .store import JobStore, WorkerDirectory, ActivityLog, merge_upsert
from .memory import InMemoryJobStore, InMemoryWorkerDirectory, InMemoryActivityLog
from .connection import DatabaseConnection, PostgresJobStore, PostgresWorkerDirectory, PostgresActivityLog

__all__ = [
    'JobStore', 'WorkerDirectory', 'ActivityLog', 'merge_upsert',
    'InMemoryJobStore', 'InMemoryWorkerDirectory', 'InMemoryActivityLog',
    'DatabaseConnection', 'PostgresJobStore', 'PostgresWorkerDirectory', 'PostgresActivityLog',
]
