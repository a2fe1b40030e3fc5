"""
FleetWatch - Pytest Configuration and Fixtures

Shared fixtures for all tests:
- Configuration fixtures
- Controllable clocks
- Store, dispatcher, rate limiter and engine wired together in memory
"""

import os
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

# Set test environment
os.environ["FW_ENVIRONMENT"] = "dev"

TENANT_ID = "tenant-1"

# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def test_config() -> Any:
    """Get test configuration."""
    from fleetwatch.shared.config import get_config, reload_config

    # Ensure fresh config for tests
    reload_config("dev")
    return get_config("dev")


# =============================================================================
# Clock Fixtures
# =============================================================================


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    """Monotonic seconds counter for the rate limiter."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 15, 12, 0, tzinfo=UTC))


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


# =============================================================================
# Alerting Fixtures
# =============================================================================


@pytest.fixture
def store(test_config: Any, clock: FakeClock) -> Any:
    """In-memory store seeded with one recipient per role."""
    from fleetwatch.alerting.memory_store import InMemoryAlertStore
    from fleetwatch.alerting.models import TenantMember

    store = InMemoryAlertStore(test_config, clock=clock)
    store.add_member(
        TenantMember(user_id="owner-1", tenant_id=TENANT_ID, role="owner", email="o@example.com")
    )
    store.add_member(
        TenantMember(user_id="admin-1", tenant_id=TENANT_ID, role="admin", email="a@example.com")
    )
    store.add_member(TenantMember(user_id="viewer-1", tenant_id=TENANT_ID, role="viewer"))
    return store


@pytest.fixture
def dispatcher(store: Any, test_config: Any, clock: FakeClock) -> Any:
    from fleetwatch.alerting.dispatcher import NotificationDispatcher

    return NotificationDispatcher(store, test_config, clock=clock)


@pytest.fixture
def rate_limiter(test_config: Any, monotonic: FakeMonotonic) -> Generator[Any, None, None]:
    from fleetwatch.alerting.rate_limiter import RateLimiter

    limiter = RateLimiter(test_config, clock=monotonic, start_sweeper=False)
    yield limiter
    limiter.shutdown()


@pytest.fixture
def engine(
    store: Any, test_config: Any, dispatcher: Any, rate_limiter: Any, clock: FakeClock
) -> Generator[Any, None, None]:
    from fleetwatch.alerting.engine import AlertEngine

    with AlertEngine(
        store,
        test_config,
        dispatcher=dispatcher,
        rate_limiter=rate_limiter,
        clock=clock,
    ) as alert_engine:
        yield alert_engine


# =============================================================================
# Cleanup Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def cleanup_env() -> Generator[None, None, None]:
    """Clean up environment variables after each test."""
    original_env = os.environ.copy()
    yield
    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)
