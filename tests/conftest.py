import os
import sys
from datetime import datetime, timezone
from decimal import Decimal

import pytest

# Add the services directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../services'))

from job_engine.database import InMemoryActivityLog, InMemoryJobStore, InMemoryWorkerDirectory
from job_engine.duration_estimator import DurationEstimator
from job_engine.models import (
    AddOnSelection,
    Order,
    PropertyAttributes,
    ServiceKind,
    ServiceLineItem,
    WorkerProfile,
)
from job_engine.order_decomposer import OrderDecomposer
from job_engine.payout_calculator import PayoutCalculator
from job_engine.rules import RuleCatalog


def make_item(service: ServiceKind, tier: str, add_ons=(), index: int = 0, **attributes) -> ServiceLineItem:
    return ServiceLineItem(
        service=service,
        tier=tier,
        add_ons=[AddOnSelection(name=name) if isinstance(name, str) else name for name in add_ons],
        attributes=PropertyAttributes(**attributes),
        original_index=index,
        original_indexes=[index],
    )


def make_order(descriptor: str, total: str = "100.00", order_id: str = "ORDER-1001") -> Order:
    return Order(
        order_id=order_id,
        customer_name="Jordan Test",
        services_descriptor=descriptor,
        total=Decimal(total),
        created_at=datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc),
    )


@pytest.fixture(scope="session")
def catalog():
    return RuleCatalog.default()


@pytest.fixture
def estimator(catalog):
    return DurationEstimator(catalog)


@pytest.fixture
def payout_calculator(catalog):
    return PayoutCalculator(catalog)


@pytest.fixture
def decomposer(catalog):
    return OrderDecomposer(catalog)


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def activity_log():
    return InMemoryActivityLog()


@pytest.fixture
def workers():
    return InMemoryWorkerDirectory([
        WorkerProfile(worker_id="W-ACTIVE", active=True, accepts_eco_jobs=True, display_name="Active Eco"),
        WorkerProfile(worker_id="W-PLAIN", active=True, accepts_eco_jobs=False),
        WorkerProfile(worker_id="W-INACTIVE", active=False),
        WorkerProfile(worker_id="W-CARWASH-ONLY", active=True),
    ], eligibility={
        "W-CARWASH-ONLY": {(ServiceKind.MOBILE_CAR_WASH, None)},
    })
