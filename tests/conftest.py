"""Pytest configuration and fixtures."""

import os
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

# Set test environment variables before importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STORE_BACKEND"] = "memory"
os.environ["SECURED"] = "false"
os.environ["DEBUG"] = "true"

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)
NOW_MS = int(NOW.timestamp() * 1000)


@pytest.fixture
def now_ms():
    """Fixed current time in epoch milliseconds."""
    return NOW_MS


@pytest.fixture
def clock():
    """Clock returning the fixed current time."""
    return lambda: NOW_MS


@pytest.fixture
def test_settings():
    """Provide test settings."""
    from usage_bridge.config import Settings, TrackedResource

    return Settings(
        bridge_type="services",
        cf_api_url="http://cf.test",
        auth_server_url="http://uaa.test",
        collector_url="http://collector.test",
        cf_client_id="cf-client",
        cf_client_secret="cf-secret",
        client_id="collector-client",
        client_secret="collector-secret",
        store_backend="memory",
        database_url="sqlite+aiosqlite:///:memory:",
        min_interval_time=10,
        max_interval_time=20,
        guid_min_age=60000,
        startup_retry_interval_seconds=0,
        services={"mongodb": TrackedResource(plans=["small", "medium"])},
    )


@pytest.fixture
def memory_store():
    """In-memory document store."""
    from usage_bridge.bridge.store import InMemoryDocumentStore

    return InMemoryDocumentStore()


@pytest_asyncio.fixture
async def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import StaticPool

    from usage_bridge.db import Base
    from usage_bridge.db import models  # noqa: F401

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    """Document store backed by the in-memory database."""
    from usage_bridge.bridge.store import SQLDocumentStore

    return SQLDocumentStore(session_factory)


@pytest.fixture
def service_event():
    """Factory for raw service usage events."""

    def make(
        guid="event-1",
        state="CREATED",
        label="mongodb",
        plan="small",
        org="org-1",
        age_ms=120000,
        instance="instance-1",
    ):
        created = NOW - timedelta(milliseconds=age_ms)
        return {
            "metadata": {
                "guid": guid,
                "created_at": created.isoformat().replace("+00:00", "Z"),
                "url": f"/v2/service_usage_events/{guid}",
            },
            "entity": {
                "state": state,
                "org_guid": org,
                "space_guid": "space-1",
                "space_name": "dev",
                "service_instance_guid": instance,
                "service_instance_name": "db",
                "service_instance_type": "managed_service_instance",
                "service_plan_guid": "plan-guid",
                "service_plan_name": plan,
                "service_guid": "service-guid",
                "service_label": label,
            },
        }

    return make


@pytest.fixture
def app_event():
    """Factory for raw application usage events."""

    def make(
        guid="app-event-1",
        state="STARTED",
        previous_state="STOPPED",
        memory=512,
        instances=2,
        previous_memory=256,
        previous_instances=1,
        age_ms=120000,
    ):
        created = NOW - timedelta(milliseconds=age_ms)
        return {
            "metadata": {
                "guid": guid,
                "created_at": created.isoformat().replace("+00:00", "Z"),
            },
            "entity": {
                "state": state,
                "previous_state": previous_state,
                "org_guid": "org-1",
                "space_guid": "space-1",
                "app_guid": "app-1",
                "memory_in_mb_per_instance": memory,
                "previous_memory_in_mb_per_instance": previous_memory,
                "instance_count": instances,
                "previous_instance_count": previous_instances,
            },
        }

    return make
