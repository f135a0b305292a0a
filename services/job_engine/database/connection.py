import json
from typing import Optional, List

import asyncpg
from loguru import logger

from ..errors import ConcurrentModification
from ..models import ActivityEvent, Job, JobStatus, ServiceKind, WorkerProfile
from .store import merge_upsert

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id              TEXT PRIMARY KEY,
    order_id            TEXT NOT NULL,
    line_item_index     INTEGER NOT NULL,
    revision            INTEGER NOT NULL DEFAULT 0,
    status              TEXT NOT NULL,
    assigned_worker_id  TEXT,
    version             INTEGER NOT NULL DEFAULT 1,
    payload             JSONB NOT NULL,
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS jobs_order_id_idx ON jobs (order_id);

CREATE TABLE IF NOT EXISTS workers (
    worker_id           TEXT PRIMARY KEY,
    display_name        TEXT,
    is_active           BOOLEAN NOT NULL DEFAULT true,
    accepts_eco_jobs    BOOLEAN NOT NULL DEFAULT false
);

-- No rows for a worker means no restriction; tier NULL covers every tier
CREATE TABLE IF NOT EXISTS worker_service_eligibility (
    worker_id           TEXT NOT NULL REFERENCES workers (worker_id),
    service             TEXT NOT NULL,
    tier                TEXT
);

CREATE TABLE IF NOT EXISTS job_activity_log (
    id                  BIGSERIAL PRIMARY KEY,
    event_type          TEXT NOT NULL,
    job_id              TEXT,
    order_id            TEXT,
    occurred_at         TIMESTAMPTZ NOT NULL,
    details             JSONB NOT NULL DEFAULT '{}'::jsonb
);
"""

UPSERT_JOB = """
INSERT INTO jobs (job_id, order_id, line_item_index, revision, status, assigned_worker_id, version, payload)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
ON CONFLICT (job_id) DO UPDATE SET
    status = EXCLUDED.status,
    assigned_worker_id = EXCLUDED.assigned_worker_id,
    version = EXCLUDED.version,
    payload = EXCLUDED.payload,
    updated_at = CURRENT_TIMESTAMP
"""

UPDATE_JOB = """
UPDATE jobs
SET status = $2, assigned_worker_id = $3, version = $4, payload = $5::jsonb, updated_at = CURRENT_TIMESTAMP
WHERE job_id = $1 AND version = $6
"""


def _row_to_job(row) -> Job:
    payload = row["payload"]
    job = Job.model_validate_json(payload) if isinstance(payload, str) else Job.model_validate(payload)
    # The version column is authoritative
    return job.model_copy(update={"version": row["version"]})


def _job_params(job: Job) -> tuple:
    return (
        job.job_id,
        job.order_id,
        job.line_item_index,
        job.revision,
        job.status.value,
        job.assigned_worker_id,
        job.version,
        job.model_dump_json(by_alias=True),
    )


class DatabaseConnection:
    """Database connection manager for the job engine"""

    def __init__(self, database_url: Optional[str] = None):
        self.connection_pool: Optional[asyncpg.Pool] = None
        self.database_url = database_url

    @property
    def available(self) -> bool:
        return self.connection_pool is not None

    async def initialize(self, command_timeout: float = 60):
        """Initialize database connection pool"""
        if not self.database_url:
            logger.warning("DATABASE_URL not set - running on in-memory collaborators")
            return
        try:
            self.connection_pool = await asyncpg.create_pool(
                self.database_url,
                min_size=1,
                max_size=10,
                command_timeout=command_timeout
            )
            async with self.connection_pool.acquire() as conn:
                await conn.execute(SCHEMA)
            logger.info("Job engine database connection pool initialized")
        except (OSError, ValueError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.warning(f"Failed to initialize database connection: {e}")
            logger.warning("Running without database - in-memory collaborators will be used")
            self.connection_pool = None

    async def close(self):
        """Close database connection pool"""
        if self.connection_pool:
            await self.connection_pool.close()
            logger.info("Job engine database connection pool closed")


class PostgresJobStore:
    """Job records in the jobs table; the full record lives in payload"""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    async def get_job(self, job_id: str) -> Optional[Job]:
        query = "SELECT version, payload FROM jobs WHERE job_id = $1"

        async with self.db.connection_pool.acquire() as conn:
            row = await conn.fetchrow(query, job_id)
            if row:
                return _row_to_job(row)
            return None

    async def get_jobs_for_order(self, order_id: str) -> List[Job]:
        query = """
        SELECT version, payload FROM jobs
        WHERE order_id = $1
        ORDER BY line_item_index ASC, revision ASC
        """

        async with self.db.connection_pool.acquire() as conn:
            rows = await conn.fetch(query, order_id)
            return [_row_to_job(row) for row in rows]

    async def upsert_jobs(self, jobs: List[Job]) -> List[Job]:
        if not jobs:
            return []

        async with self.db.connection_pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(
                    "SELECT version, payload FROM jobs WHERE job_id = ANY($1::text[]) FOR UPDATE",
                    [job.job_id for job in jobs],
                )
                existing = {job.job_id: job for job in (_row_to_job(row) for row in rows)}

                stored = []
                for job in jobs:
                    current = existing.get(job.job_id)
                    saved = job.model_copy(update={"version": 1}) if current is None else merge_upsert(current, job)
                    if saved is not current:
                        await conn.execute(UPSERT_JOB, *_job_params(saved))
                    stored.append(saved)

        logger.info(f"Upserted {len(stored)} jobs for order {jobs[0].order_id}")
        return stored

    async def _update(self, conn, job: Job) -> Job:
        saved = job.model_copy(update={"version": job.version + 1})
        result = await conn.execute(
            UPDATE_JOB, saved.job_id, saved.status.value, saved.assigned_worker_id, saved.version,
            saved.model_dump_json(by_alias=True), job.version,
        )
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        if result.split()[-1] != "1":
            raise ConcurrentModification(
                f"Job {job.job_id} changed since it was read (expected version {job.version})",
                subject=job.job_id,
            )
        return saved

    async def save_jobs(self, jobs: List[Job]) -> List[Job]:
        async with self.db.connection_pool.acquire() as conn:
            async with conn.transaction():
                return [await self._update(conn, job) for job in jobs]

    async def supersede(self, old_job: Job, new_job: Job) -> Job:
        superseded = old_job.model_copy(update={"status": JobStatus.SUPERSEDED, "superseded_by": new_job.job_id})
        inserted = new_job.model_copy(update={"version": 1})

        async with self.db.connection_pool.acquire() as conn:
            try:
                async with conn.transaction():
                    await self._update(conn, superseded)
                    await conn.execute(
                        """
                        INSERT INTO jobs (job_id, order_id, line_item_index, revision, status,
                                          assigned_worker_id, version, payload)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
                        """,
                        *_job_params(inserted),
                    )
            except asyncpg.UniqueViolationError:
                raise ConcurrentModification(f"Job {inserted.job_id} already exists", subject=inserted.job_id)

        logger.info(f"Job {old_job.job_id} superseded by {inserted.job_id}")
        return inserted


class PostgresWorkerDirectory:
    """Worker profiles and service eligibility"""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    async def get_worker(self, worker_id: str) -> Optional[WorkerProfile]:
        query = """
        SELECT worker_id, display_name, is_active, accepts_eco_jobs
        FROM workers
        WHERE worker_id = $1
        """

        async with self.db.connection_pool.acquire() as conn:
            row = await conn.fetchrow(query, worker_id)
            if row:
                return WorkerProfile(
                    worker_id=row["worker_id"],
                    display_name=row["display_name"],
                    active=row["is_active"],
                    accepts_eco_jobs=row["accepts_eco_jobs"],
                )
            return None

    async def is_eligible(self, worker_id: str, service: ServiceKind, tier: str) -> bool:
        query = """
        SELECT
            EXISTS (SELECT 1 FROM workers WHERE worker_id = $1) AS known,
            COUNT(e.worker_id) AS restrictions,
            COUNT(e.worker_id) FILTER (
                WHERE e.service = $2 AND (e.tier IS NULL OR e.tier = $3)
            ) AS matches
        FROM worker_service_eligibility e
        WHERE e.worker_id = $1
        """

        async with self.db.connection_pool.acquire() as conn:
            row = await conn.fetchrow(query, worker_id, service.value, tier)
            if not row or not row["known"]:
                return False
            return row["restrictions"] == 0 or row["matches"] > 0


class PostgresActivityLog:
    """Append-only audit trail"""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    async def record(self, event: ActivityEvent) -> None:
        query = """
        INSERT INTO job_activity_log (event_type, job_id, order_id, occurred_at, details)
        VALUES ($1, $2, $3, $4, $5::jsonb)
        """

        async with self.db.connection_pool.acquire() as conn:
            await conn.execute(
                query, event.event_type, event.job_id, event.order_id, event.occurred_at,
                json.dumps(event.details, default=str),
            )
        logger.debug(f"Recorded {event.event_type} for job {event.job_id}")
