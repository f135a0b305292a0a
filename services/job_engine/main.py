from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from typing import List, Dict, Any, Optional
from pydantic import Field
from datetime import datetime
from contextlib import asynccontextmanager
import logging

from .config import EngineSettings
from .database import (
    DatabaseConnection,
    InMemoryActivityLog,
    InMemoryJobStore,
    InMemoryWorkerDirectory,
    PostgresActivityLog,
    PostgresJobStore,
    PostgresWorkerDirectory,
)
from .database.store import ActivityLog, JobStore, WorkerDirectory
from .errors import (
    CollaboratorTimeout,
    ConcurrentModification,
    InvalidStatusTransition,
    JobEngineError,
    JobNotFound,
    JobTerminalState,
    SplitNotAllowed,
    UnmodeledRule,
    UnparseableLineItem,
    WorkerIneligible,
)
from .models import (
    CrewAssignment,
    DurationBreakdown,
    EngineModel,
    Job,
    JobStatus,
    Order,
    PayoutBreakdown,
    RescheduleOutcome,
    ServiceLineItem,
)
from .order_decomposer import OrderDecomposer
from .reschedule_resolver import RescheduleResolver
from .rules import CatalogLoader, RuleCatalog
from .split_service import SplitService

settings = EngineSettings.from_env()

# Configure logging to show INFO level messages
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='[JOB-ENGINE] %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class EngineComponents:
    """Catalog, collaborators and the services built on them"""

    def __init__(self, settings: EngineSettings, store: JobStore, workers: WorkerDirectory,
                 activity_log: Optional[ActivityLog] = None, catalog_loader: Optional[CatalogLoader] = None,
                 db: Optional[DatabaseConnection] = None):
        self.settings = settings
        self.store = store
        self.workers = workers
        self.activity_log = activity_log
        self.catalog_loader = catalog_loader or CatalogLoader(settings.catalog_path)
        self.db = db
        self._decomposer: Optional[OrderDecomposer] = None

    @property
    def catalog(self) -> RuleCatalog:
        return self.catalog_loader.get()

    @property
    def decomposer(self) -> OrderDecomposer:
        catalog = self.catalog
        # Rebuild when the catalog file was reloaded
        if self._decomposer is None or self._decomposer.catalog is not catalog:
            self._decomposer = OrderDecomposer(catalog)
        return self._decomposer

    @property
    def split_service(self) -> SplitService:
        return SplitService(self.decomposer, self.store, self.workers, self.activity_log,
                            timeout=self.settings.external_timeout)

    @property
    def resolver(self) -> RescheduleResolver:
        return RescheduleResolver(self.store, self.workers, self.activity_log,
                                  timeout=self.settings.external_timeout)


async def build_components(settings: EngineSettings) -> EngineComponents:
    db = DatabaseConnection(settings.database_url)
    await db.initialize()

    if db.available:
        return EngineComponents(settings, PostgresJobStore(db), PostgresWorkerDirectory(db),
                                PostgresActivityLog(db), db=db)

    return EngineComponents(settings, InMemoryJobStore(), InMemoryWorkerDirectory(), InMemoryActivityLog())


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.engine = await build_components(settings)
    catalog = app.state.engine.catalog
    logger.info(f"Job engine started with catalog {catalog.version} ({settings.catalog_path})")

    yield
    # Shutdown
    if app.state.engine.db:
        await app.state.engine.db.close()


app = FastAPI(
    title="Job Engine",
    description="Splits customer orders into schedulable jobs with payouts, durations and rescheduling",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_STATUS_CODES = [
    (JobNotFound, 404),
    (JobTerminalState, 409),
    (SplitNotAllowed, 409),
    (ConcurrentModification, 409),
    (InvalidStatusTransition, 409),
    (WorkerIneligible, 409),
    (UnmodeledRule, 422),
    (UnparseableLineItem, 422),
    (CollaboratorTimeout, 504),
]


def http_error(error: JobEngineError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.to_dict())
    return HTTPException(status_code=400, detail=error.to_dict())


def engine(request: Request) -> EngineComponents:
    return request.app.state.engine


class EstimateRequest(EngineModel):
    line_items: List[ServiceLineItem] = Field(default_factory=list)
    descriptor: Optional[str] = None
    eco_eligible: bool = False


class Estimate(EngineModel):
    line_item: ServiceLineItem
    duration: DurationBreakdown
    payout: PayoutBreakdown
    crew: Optional[CrewAssignment] = None


class DecomposeResult(EngineModel):
    order_id: str
    splittable: bool
    line_items: List[ServiceLineItem]
    jobs: List[Job]


class AssignRequest(EngineModel):
    worker_id: str


class StatusRequest(EngineModel):
    status: JobStatus


class RescheduleRequest(EngineModel):
    new_time: datetime
    reason: Optional[str] = None


@app.get("/health")
async def health_check(request: Request):
    components = engine(request)
    return {
        "status": "healthy",
        "service": "job-engine",
        "catalog_version": components.catalog.version,
        "database": bool(components.db and components.db.available),
    }


@app.get("/catalog")
async def get_catalog(request: Request, include_internal: bool = False):
    return engine(request).catalog.summary(include_internal=include_internal)


@app.get("/catalog/{service}/tiers")
async def get_tiers(request: Request, service: str, include_internal: bool = False) -> List[Dict[str, Any]]:
    """
    Tiers for one service kind

    Operator-only tiers (e.g. Rush laundry) are listed only with include_internal=true
    """
    catalog = engine(request).catalog
    kind = catalog.resolve_service(service)
    if kind is None:
        raise HTTPException(status_code=404, detail=f"Unknown service: {service}")

    return [
        {
            "name": tier.name,
            "displayName": tier.display_name or tier.name,
            "payout": str(tier.payout),
            "duration": tier.duration,
            "processingHours": tier.processing_hours,
            "public": tier.public,
        }
        for tier in catalog.tiers(kind, include_internal=include_internal)
    ]


@app.post("/estimate", response_model=List[Estimate])
async def estimate(request: Request, body: EstimateRequest):
    decomposer = engine(request).decomposer

    line_items = list(body.line_items)
    if body.descriptor:
        line_items.extend(decomposer.parser.parse(body.descriptor))
    if not line_items:
        raise HTTPException(status_code=400, detail="Provide lineItems or a descriptor")

    results = []
    for line_item in line_items:
        duration, payout = decomposer.estimate(line_item, eco_eligible=body.eco_eligible)
        crew = decomposer.enricher.crew_for(line_item, duration.adjusted_total if duration.rated else None)
        results.append(Estimate(line_item=line_item, duration=duration, payout=payout, crew=crew))
    return results


@app.post("/decompose", response_model=DecomposeResult)
async def decompose(request: Request, order: Order):
    """Preview of the split: nothing is stored"""
    decomposer = engine(request).decomposer
    line_items = decomposer.decompose(order)
    return DecomposeResult(
        order_id=order.order_id,
        splittable=decomposer.is_splittable(line_items),
        line_items=line_items,
        jobs=decomposer.materialize(order, line_items),
    )


@app.post("/orders/split", response_model=List[Job])
async def split_order(request: Request, order: Order):
    try:
        return await engine(request).split_service.split_order(order)
    except JobEngineError as e:
        raise http_error(e)


@app.post("/orders/schedule", response_model=List[Job])
async def schedule_order(request: Request, order: Order):
    try:
        return await engine(request).split_service.schedule_order(order)
    except JobEngineError as e:
        raise http_error(e)


@app.post("/orders/{order_id}/revert-split", response_model=List[Job])
async def revert_split(request: Request, order_id: str):
    try:
        return await engine(request).split_service.revert_split(order_id)
    except JobEngineError as e:
        raise http_error(e)


@app.get("/orders/{order_id}/jobs", response_model=List[Job])
async def get_order_jobs(request: Request, order_id: str):
    return await engine(request).store.get_jobs_for_order(order_id)


@app.get("/jobs/{job_id}", response_model=Job)
async def get_job(request: Request, job_id: str):
    job = await engine(request).store.get_job(job_id)
    if job is None:
        raise http_error(JobNotFound(f"Job {job_id} not found", subject=job_id))
    return job


@app.get("/jobs/{job_id}/duration-status")
async def get_duration_status(request: Request, job_id: str, actual_minutes: Optional[float] = None,
                              picked_up_at: Optional[datetime] = None):
    """Running time against the estimate; laundry jobs also report SLA time left"""
    components = engine(request)
    job = await components.store.get_job(job_id)
    if job is None:
        raise http_error(JobNotFound(f"Job {job_id} not found", subject=job_id))

    estimator = components.decomposer.estimator
    result = {
        "jobId": job.job_id,
        "expectedDurationMinutes": job.expected_duration_minutes,
        "status": estimator.duration_status(job.expected_duration_minutes, actual_minutes),
    }
    if picked_up_at is not None:
        result["laundry"] = estimator.laundry_time_remaining(job.tier, picked_up_at)
    return result


@app.post("/jobs/{job_id}/assign", response_model=Job)
async def assign_job(request: Request, job_id: str, body: AssignRequest):
    try:
        return await engine(request).split_service.assign_job(job_id, body.worker_id)
    except JobEngineError as e:
        raise http_error(e)


@app.post("/jobs/{job_id}/status", response_model=Job)
async def update_job_status(request: Request, job_id: str, body: StatusRequest):
    try:
        return await engine(request).split_service.update_status(job_id, body.status)
    except JobEngineError as e:
        raise http_error(e)


@app.post("/jobs/{job_id}/reschedule", response_model=RescheduleOutcome)
async def reschedule_job(request: Request, job_id: str, body: RescheduleRequest):
    try:
        return await engine(request).resolver.reschedule(job_id, body.new_time, body.reason)
    except JobEngineError as e:
        raise http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3004)
