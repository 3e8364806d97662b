"""
Shared pytest fixtures: a hand-driven clock and a timer factory that fires
callbacks only when the test moves time forward.
"""

from datetime import datetime, timedelta, timezone

import pytest

from fraudguard.auth import (
    CollectingAuditSink,
    CollectingNotificationSink,
    InMemorySessionStore,
    Principal,
    Role,
    SessionLifecycleManager,
    StaticCredentialVerifier,
    load_settings,
)
from fraudguard.auth.scheduler import ExpiryScheduler


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeTimer:
    def __init__(self, due: datetime, callback):
        self.due = due
        self.callback = callback
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True


class FakeTimerFactory:
    """
    Timer factory bound to a ManualClock.

    ``advance`` moves the clock forward, firing due timers in order. Timers
    created by a firing callback are picked up in the same call.
    """

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.timers = []

    def __call__(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(self.clock() + timedelta(seconds=delay), callback)
        self.timers.append(timer)
        return timer

    def pending(self):
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    def advance(self, **kwargs) -> None:
        target = self.clock.now + timedelta(**kwargs)
        while True:
            due = [t for t in self.pending() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            if timer.due > self.clock.now:
                self.clock.now = timer.due
            timer.fired = True
            timer.callback()
        self.clock.now = target


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def timers(clock):
    return FakeTimerFactory(clock)


@pytest.fixture
def settings():
    # Default timing, with store retries fast enough for tests
    return load_settings(
        inactivity_timeout_seconds=30 * 60,
        warning_seconds=5 * 60,
        session_ttl_seconds=8 * 60 * 60,
        remember_me_ttl_seconds=30 * 24 * 60 * 60,
        renewal_window_seconds=30 * 60,
        store_retry_attempts=2,
        store_retry_backoff_seconds=0.001,
        store_retry_max_backoff_seconds=0.002,
        store_timeout_seconds=2.0,
    )


@pytest.fixture
def verifier(clock):
    verifier = StaticCredentialVerifier(max_attempts=3, clock=clock)
    verifier.add_account(
        "citizen@example.com", "citizen-pass",
        Principal(user_id="u-citizen", role=Role.CITIZEN, email="citizen@example.com"),
    )
    verifier.add_account(
        "officer@example.com", "officer-pass",
        Principal(user_id="u-officer", role=Role.OFFICER, email="officer@example.com"),
    )
    verifier.add_account(
        "admin@example.com", "admin-pass",
        Principal(user_id="u-admin", role=Role.ADMIN, email="admin@example.com"),
    )
    return verifier


@pytest.fixture
def audit():
    return CollectingAuditSink()


@pytest.fixture
def notifications():
    return CollectingNotificationSink()


@pytest.fixture
def store(clock):
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def make_manager(store, verifier, settings, audit, notifications, clock, timers):
    """Factory so tests can swap the store or settings."""
    managers = []

    def _make(store=store, settings=settings, verifier=verifier):
        scheduler = ExpiryScheduler(
            settings.warning_threshold, clock=clock, timer_factory=timers
        )
        manager = SessionLifecycleManager(
            store=store,
            verifier=verifier,
            settings=settings,
            scheduler=scheduler,
            audit_sink=audit,
            notification_sink=notifications,
            clock=clock,
        )
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        manager.shutdown()


@pytest.fixture
def manager(make_manager):
    return make_manager()
