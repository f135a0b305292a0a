"""
End-to-end tests against the FastAPI app with in-memory collaborators
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from job_engine.config import EngineSettings
from job_engine.database import InMemoryActivityLog, InMemoryJobStore
from job_engine.main import EngineComponents, app

ORDER = {
    "orderId": "ORDER-2001",
    "customerName": "Jordan Test",
    "servicesDescriptor": "Mobile Car Wash - Signature Shine (Clay Bar Treatment, Eco-friendly Products) [SUV], "
                          "Home Cleaning - Refresh Clean [2 bed, 1 bath, Apartment]",
    "total": "100.00",
    "createdAt": "2025-06-01T09:00:00Z",
}


@pytest_asyncio.fixture
async def client(workers):
    app.state.engine = EngineComponents(EngineSettings(), InMemoryJobStore(), workers, InMemoryActivityLog())
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestCatalogEndpoints:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["service"] == "job-engine"
        assert body["database"] is False

    @pytest.mark.asyncio
    async def test_internal_laundry_tiers_hidden_by_default(self, client):
        public = (await client.get("/catalog/Laundry Service/tiers")).json()
        internal = (await client.get("/catalog/laundry/tiers", params={"include_internal": "true"})).json()

        assert [tier["name"] for tier in public] == ["Standard Service", "Express Service"]
        assert {"Rush Service", "Same-Day Service"} <= {tier["name"] for tier in internal}

    @pytest.mark.asyncio
    async def test_unknown_service_tiers(self, client):
        response = await client.get("/catalog/Pool Cleaning/tiers")
        assert response.status_code == 404


class TestEstimate:

    @pytest.mark.asyncio
    async def test_estimate_from_descriptor(self, client):
        response = await client.post("/estimate", json={
            "descriptor": "Mobile Car Wash - Signature Shine (Clay Bar Treatment) [SUV]",
        })

        assert response.status_code == 200
        estimate = response.json()[0]
        assert estimate["duration"]["adjustedTotal"] == 60
        assert estimate["payout"]["total"] == "50"
        assert estimate["crew"]["crewType"] == "solo"

    @pytest.mark.asyncio
    async def test_estimate_needs_input(self, client):
        response = await client.post("/estimate", json={})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_decompose_preview_stores_nothing(self, client):
        response = await client.post("/decompose", json=ORDER)

        assert response.status_code == 200
        body = response.json()
        assert body["splittable"] is True
        assert [job["priceShare"] for job in body["jobs"]] == ["50.00", "50.00"]
        assert (await client.get("/orders/ORDER-2001/jobs")).json() == []


class TestOrderFlow:

    @pytest.mark.asyncio
    async def test_split_assign_reschedule(self, client):
        split = await client.post("/orders/split", json=ORDER)
        assert split.status_code == 200
        car_wash = split.json()[0]
        assert car_wash["status"] == "unassigned"

        assigned = await client.post(f"/jobs/{car_wash['jobId']}/assign", json={"workerId": "W-ACTIVE"})
        assert assigned.status_code == 200
        assert assigned.json()["payout"] == "59"

        rescheduled = await client.post(f"/jobs/{car_wash['jobId']}/reschedule", json={
            "newTime": "2025-06-03T14:00:00Z",
            "reason": "customer request",
        })
        assert rescheduled.status_code == 200
        outcome = rescheduled.json()
        assert outcome["retainedOriginalWorker"] is True
        assert outcome["reason"] == "retained"

        old_job = (await client.get(f"/jobs/{car_wash['jobId']}")).json()
        assert old_job["status"] == "superseded"
        assert old_job["supersededBy"] == outcome["newJobId"]

    @pytest.mark.asyncio
    async def test_single_service_split_is_conflict(self, client):
        response = await client.post("/orders/split", json={**ORDER, "servicesDescriptor": "Home Cleaning"})

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "split_not_allowed"

    @pytest.mark.asyncio
    async def test_ineligible_worker_is_conflict(self, client):
        cleaning = (await client.post("/orders/split", json=ORDER)).json()[1]
        response = await client.post(f"/jobs/{cleaning['jobId']}/assign", json={"workerId": "W-INACTIVE"})

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "worker_ineligible"

    @pytest.mark.asyncio
    async def test_invalid_status_transition(self, client):
        job = (await client.post("/orders/split", json=ORDER)).json()[0]
        response = await client.post(f"/jobs/{job['jobId']}/status", json={"status": "completed"})

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_missing_job(self, client):
        assert (await client.get("/jobs/JOB-NOPE")).status_code == 404
        response = await client.post("/jobs/JOB-NOPE/reschedule", json={"newTime": "2025-06-03T14:00:00Z"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_revert_split(self, client):
        await client.post("/orders/split", json=ORDER)
        response = await client.post("/orders/ORDER-2001/revert-split")

        assert response.status_code == 200
        assert {job["status"] for job in response.json()} == {"reverted"}

    @pytest.mark.asyncio
    async def test_duration_status(self, client):
        job = (await client.post("/orders/split", json=ORDER)).json()[0]
        response = await client.get(f"/jobs/{job['jobId']}/duration-status", params={"actual_minutes": 80})

        assert response.json()["status"] == "overdue"
