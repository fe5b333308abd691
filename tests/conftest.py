"""
Pytest fixtures and configuration for SLA scheduler tests.

Provides:
- Mock Supabase client for isolated testing
- Manual clock, fake timers and an in-memory lock store
- Wired evaluator / notification service over the mock client
- Test client for the FastAPI host
"""
import re
import pytest
from datetime import datetime, timezone
from typing import Generator, Dict, Any, List
from uuid import uuid4

from fastapi.testclient import TestClient

from sla_scheduler.core.config import settings
from sla_scheduler.core.database import DocumentStore
from sla_scheduler.main import app
from sla_scheduler.services.locks import LockCoordinator
from sla_scheduler.services.notifications import NotificationService
from sla_scheduler.services.recipients import RoleDirectory
from sla_scheduler.services.scheduler import JobFailureMonitor, SlaScheduler
from sla_scheduler.services.sla_evaluator import SlaEvaluator

from tests.helpers import (
    FakeLockStore,
    FakeTimers,
    ManualClock,
    RecordingPushChannel,
    StubEvaluator,
    StubMaintenance,
)


# ==========================================
# MOCK SUPABASE RESPONSE & TABLE
# ==========================================

def _coerce(value: Any) -> Any:
    """Parse ISO timestamps so range filters compare chronologically."""
    if isinstance(value, str) and re.match(r"^\d{4}-\d{2}-\d{2}T", value):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return value
    return value


def _compare(row_value: Any, op: str, value: Any) -> bool:
    if row_value is None:
        return False
    left, right = _coerce(row_value), _coerce(value)
    if op == "lt":
        return left < right
    if op == "gt":
        return left > right
    if op == "lte":
        return left <= right
    return left >= right


class MockSupabaseResponse:
    """Mock response from Supabase operations."""

    def __init__(self, data: list = None, error: dict = None, count: int = None):
        self.data = data or []
        self.error = error
        self.count = count if count is not None else len(self.data)

    def execute(self):
        return self


class MockNotFilter:
    """Helper class to handle negated filters like .not_.is_()."""

    def __init__(self, table: "MockSupabaseTable"):
        self._table = table

    def is_(self, column: str, value: Any):
        self._table._filters.append(("not_is", column, value))
        return self._table

    def in_(self, column: str, values: list):
        self._table._filters.append(("not_in", column, values))
        return self._table


class MockSupabaseTable:
    """Mock Supabase table operations."""

    def __init__(self, table_name: str, mock_data: Dict[str, list], calls: List[tuple]):
        self.table_name = table_name
        self.mock_data = mock_data
        self.calls = calls
        self._filters = []
        self._order_by = None
        self._order_desc = False
        self._limit = None
        self._update_data = None
        self._delete = False

    def select(self, fields: str = "*", count: str = None):
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def neq(self, column: str, value: Any):
        self._filters.append(("neq", column, value))
        return self

    def in_(self, column: str, values: list):
        self._filters.append(("in", column, values))
        return self

    def is_(self, column: str, value: Any):
        """IS filter (for null checks)."""
        self._filters.append(("is", column, value))
        return self

    def lt(self, column: str, value: Any):
        self._filters.append(("lt", column, value))
        return self

    def gt(self, column: str, value: Any):
        self._filters.append(("gt", column, value))
        return self

    def lte(self, column: str, value: Any):
        self._filters.append(("lte", column, value))
        return self

    def gte(self, column: str, value: Any):
        self._filters.append(("gte", column, value))
        return self

    def ilike(self, column: str, pattern: str):
        self._filters.append(("ilike", column, pattern))
        return self

    @property
    def not_(self):
        return MockNotFilter(self)

    def order(self, column: str, desc: bool = False):
        self._order_by = column
        self._order_desc = desc
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def insert(self, data: Any):
        """Mock insert operation. A provided created_at is kept."""
        rows = data if isinstance(data, list) else [data]
        for row in rows:
            row.setdefault("id", str(uuid4()))
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.mock_data.setdefault(self.table_name, []).extend(rows)
        self.calls.append(("insert", self.table_name, rows))
        return MockSupabaseResponse(rows)

    def update(self, data: dict):
        self._update_data = data
        return self

    def delete(self):
        self._delete = True
        return self

    def _matches(self, row: dict) -> bool:
        for op, column, value in self._filters:
            if op == "eq" and row.get(column) != value:
                return False
            if op == "neq" and row.get(column) == value:
                return False
            if op == "in" and row.get(column) not in value:
                return False
            if op == "not_in" and row.get(column) in value:
                return False
            if op == "is" and value == "null" and row.get(column) is not None:
                return False
            if op == "not_is" and value == "null" and row.get(column) is None:
                return False
            if op in ("lt", "gt", "lte", "gte") and not _compare(row.get(column), op, value):
                return False
            if op == "ilike":
                fragment = value.strip("%").lower()
                if fragment not in str(row.get(column) or "").lower():
                    return False
        return True

    def execute(self):
        """Execute the query and return results."""
        table_data = self.mock_data.get(self.table_name, [])
        results = [row for row in table_data if self._matches(row)]

        if self._update_data is not None:
            for row in results:
                row.update(self._update_data)
            self.calls.append(("update", self.table_name, self._update_data))
            return MockSupabaseResponse(results)

        if self._delete:
            for row in results:
                table_data.remove(row)
            self.calls.append(("delete", self.table_name, len(results)))
            return MockSupabaseResponse(results)

        self.calls.append(("select", self.table_name, list(self._filters)))

        if self._order_by:
            results.sort(
                key=lambda row: (row.get(self._order_by) is None, row.get(self._order_by)),
                reverse=self._order_desc
            )
        if self._limit:
            results = results[:self._limit]

        return MockSupabaseResponse(results)


class MockSupabaseClientInner:
    """Mock inner Supabase client (the actual client with table() method)."""

    def __init__(self, mock_data: Dict[str, list], calls: List[tuple]):
        self.mock_data = mock_data
        self.calls = calls

    def table(self, table_name: str) -> MockSupabaseTable:
        return MockSupabaseTable(table_name, self.mock_data, self.calls)


class MockSupabaseClient:
    """
    Mock Supabase client wrapper (matches SupabaseClient class structure).
    This has a .client property that provides the actual table operations.
    """

    def __init__(self):
        self.mock_data: Dict[str, list] = {
            "employees": [],
            "approval_steps": [],
            "notifications": [],
            "mirvs": [],
            "job_orders": [],
            "material_requisitions": [],
            "gate_passes": [],
            "scrap_items": [],
            "surplus_items": [],
            "rfims": [],
            "inventory_lots": [],
            "refresh_tokens": [],
            "inventory_levels": [],
        }
        self.calls: List[tuple] = []
        self.client = MockSupabaseClientInner(self.mock_data, self.calls)

    def clear(self):
        """Clear all mock data."""
        for key in self.mock_data:
            self.mock_data[key] = []
        self.calls.clear()


# ==========================================
# FIXTURES
# ==========================================

@pytest.fixture(scope="function")
def fresh_mock_client() -> MockSupabaseClient:
    """Function-scoped fresh mock client (clean for each test)."""
    return MockSupabaseClient()


@pytest.fixture(scope="function")
def mock_data(fresh_mock_client) -> Dict[str, list]:
    """Access to the mock data store for direct manipulation."""
    return fresh_mock_client.mock_data


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def timers(clock) -> FakeTimers:
    return FakeTimers(clock)


@pytest.fixture
def lock_store(clock) -> FakeLockStore:
    return FakeLockStore(clock)


@pytest.fixture
def push_channel() -> RecordingPushChannel:
    return RecordingPushChannel()


@pytest.fixture
def store(fresh_mock_client) -> DocumentStore:
    return DocumentStore(db=fresh_mock_client)


@pytest.fixture
def notification_service(fresh_mock_client, push_channel, clock) -> NotificationService:
    return NotificationService(db=fresh_mock_client, push_channel=push_channel, clock=clock.now)


@pytest.fixture
def directory(fresh_mock_client) -> RoleDirectory:
    return RoleDirectory(db=fresh_mock_client)


@pytest.fixture
def evaluator(store, notification_service, directory, clock) -> SlaEvaluator:
    return SlaEvaluator(
        store=store,
        notifications=notification_service,
        directory=directory,
        clock=clock.now,
    )


@pytest.fixture
def add_employee(mock_data):
    """Factory fixture to create employees."""
    def _create(system_role: str, is_active: bool = True, employee_id: str = None) -> str:
        employee_id = employee_id or f"emp-{uuid4().hex[:8]}"
        mock_data["employees"].append({
            "id": employee_id,
            "full_name": f"{system_role} user",
            "system_role": system_role,
            "is_active": is_active,
        })
        return employee_id

    return _create


@pytest.fixture
def make_scheduler(clock, timers, lock_store):
    """
    Factory for schedulers wired to fakes.

    Schedulers built by one factory share the clock, timers and lock store,
    which is how two instances of the host process are simulated.
    """
    def _create(**overrides) -> SlaScheduler:
        options = dict(
            lock_coordinator=LockCoordinator(store=lock_store, holder_id=f"host-{uuid4().hex[:6]}"),
            timers=timers,
            evaluator=StubEvaluator(),
            maintenance=StubMaintenance(),
            job_monitor=JobFailureMonitor(failure_threshold=2),
        )
        options.update(overrides)
        return SlaScheduler(**options)

    return _create


@pytest.fixture(scope="function")
def client(monkeypatch) -> Generator[TestClient, None, None]:
    """Test client for the host with the scheduler left stopped."""
    monkeypatch.setattr(settings, "enable_scheduler", False)
    with TestClient(app) as test_client:
        yield test_client


# ==========================================
# MARKERS
# ==========================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated, fast)")
    config.addinivalue_line("markers", "integration: Integration tests (real timers / event loop)")
