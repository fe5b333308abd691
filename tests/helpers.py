"""
Test helper classes for the SLA scheduler.

Provides deterministic stand-ins for the moving parts:
- ManualClock: wall time that only moves when a test says so
- FakeTimers: TimerBackend driven by the manual clock
- FakeLockStore / FailingLockStore: in-memory lock store with TTLs
- RecordingPushChannel: captures broadcasts and per-user pushes
- StubEvaluator / StubMaintenance: recordable job actions
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from redis.exceptions import ConnectionError as RedisConnectionError


BASE_TIME = datetime(2025, 4, 14, 8, 0, 0, tzinfo=timezone.utc)


def iso(value: datetime) -> str:
    """Timestamp as stored in a Supabase row."""
    return value.isoformat()


class ManualClock:
    """Seconds elapsed since BASE_TIME, advanced explicitly."""

    def __init__(self, start: datetime = BASE_TIME):
        self.start = start
        self.t = 0.0

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.t)

    def advance(self, seconds: float) -> None:
        self.t += seconds


@dataclass
class FakeTimer:
    when: float
    seq: int
    callback: Callable[[], Awaitable[Any]]
    name: str
    cancelled: bool = False


class FakeTimers:
    """
    TimerBackend whose timers fire only inside advance().

    Callbacks are awaited in due order; a callback may arm new timers,
    which fire in the same advance() if they fall due before its end.
    """

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self._pending: List[FakeTimer] = []
        self._seq = 0
        self.shutdown_calls = 0

    def call_later(self, delay_seconds, callback, name=""):
        self._seq += 1
        timer = FakeTimer(self.clock.t + delay_seconds, self._seq, callback, name)
        self._pending.append(timer)
        return timer

    def cancel(self, handle: FakeTimer) -> None:
        handle.cancelled = True
        if handle in self._pending:
            self._pending.remove(handle)

    def shutdown(self) -> None:
        self.shutdown_calls += 1

    def pending_names(self) -> List[str]:
        return sorted(t.name for t in self._pending)

    def due_at(self, name: str) -> List[float]:
        return sorted(t.when for t in self._pending if t.name == name)

    async def advance(self, seconds: float) -> None:
        target = self.clock.t + seconds
        while True:
            due = [t for t in self._pending if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self._pending.remove(timer)
            self.clock.t = max(self.clock.t, timer.when)
            await timer.callback()
        self.clock.t = max(self.clock.t, target)


class FakeLockStore:
    """SET NX EX over a dict, expiring against the manual clock."""

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.entries: Dict[str, tuple] = {}
        self.attempts: List[str] = []
        self.closed = False

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        self.attempts.append(key)
        entry = self.entries.get(key)
        if entry and entry[1] > self.clock.t:
            return False
        self.entries[key] = (value, self.clock.t + ttl_seconds)
        return True

    async def close(self) -> None:
        self.closed = True

    def holder(self, key: str) -> Optional[str]:
        entry = self.entries.get(key)
        if entry and entry[1] > self.clock.t:
            return entry[0]
        return None


class FailingLockStore:
    """Lock store that is always unreachable."""

    def __init__(self, error: Exception = None):
        self.error = error or RedisConnectionError("Connection refused")
        self.attempts = 0

    async def set_if_absent(self, key, value, ttl_seconds):
        self.attempts += 1
        raise self.error

    async def close(self) -> None:
        raise self.error


class RecordingPushChannel:
    """PushChannel that keeps every message."""

    def __init__(self, fail_user_sends: bool = False):
        self.broadcasts: List[tuple] = []
        self.user_messages: List[tuple] = []
        self.fail_user_sends = fail_user_sends

    async def broadcast_to_role(self, role, event, payload):
        self.broadcasts.append((role, event, payload))

    async def send_to_user(self, user_id, event, payload):
        if self.fail_user_sends:
            raise ConnectionResetError("socket closed")
        self.user_messages.append((user_id, event, payload))


@dataclass
class StubEvaluator:
    """Stands in for SlaEvaluator inside scheduler tests."""
    calls: List[str] = field(default_factory=list)
    on_breach: Optional[Callable[[], Awaitable[Any]]] = None
    on_warning: Optional[Callable[[], Awaitable[Any]]] = None
    notifications: Any = field(default_factory=lambda: SimpleNamespace(push_channel=None))
    store: Any = None
    directory: Any = None

    async def check_sla_breaches(self):
        self.calls.append("sla_breach")
        if self.on_breach:
            return await self.on_breach()
        return {"mode": "breach", "rules_checked": 7, "notified": 0}

    async def check_sla_warnings(self):
        self.calls.append("sla_warning")
        if self.on_warning:
            return await self.on_warning()
        return {"mode": "warning", "rules_checked": 7, "notified": 0}


@dataclass
class StubMaintenance:
    calls: List[str] = field(default_factory=list)

    async def mark_expired_lots(self):
        self.calls.append("expired_lots")
        return {"expired_lots": 0}

    async def check_low_stock(self):
        self.calls.append("low_stock")
        return {"low_stock_items": 0}

    async def cleanup_expired_tokens(self):
        self.calls.append("token_cleanup")
        return {"deleted_tokens": 0}
