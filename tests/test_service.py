"""Tests for the clone service and its background loop."""

import time

import pytest

from site_cloner.session.events import EventType
from site_cloner.session.models import (
    InvalidTransitionError,
    ResumeError,
    SessionNotFoundError,
    SessionStatus,
)
from site_cloner.session.recovery import RecoveryHandler
from site_cloner.session.runner import state_path
from site_cloner.session.service import CloneService

from conftest import ROOT, FakeFetcher, build_site


SLOW_URL = "https://example.com/models/chair.glb"


def wait_until(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while not predicate():
        if time.time() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.01)


class Fetchers:
    """Factory handing every execution its own gated fetcher."""

    def __init__(self, gate, slow=(SLOW_URL,)):
        self.gate = gate
        self.slow = slow
        self.created = []

    def __call__(self):
        fetcher = FakeFetcher(build_site(), slow=self.slow, gate=self.gate)
        self.created.append(fetcher)
        return fetcher

    def requested(self, index, url):
        return len(self.created) > index and url in self.created[index].requests


@pytest.fixture
def service_factory(config):
    services = []

    def make(fetchers):
        service = CloneService(config, fetcher_factory=fetchers).start()
        services.append(service)
        return service

    yield make

    for service in services:
        if service.running:
            service.shutdown(timeout=5)


def test_submit_runs_to_completion(service_factory, gate):
    gate.set()
    service = service_factory(Fetchers(gate))

    session = service.submit(ROOT)
    assert session.status is SessionStatus.STARTING

    result = service.wait(session.id, timeout=10)
    assert result is not None and result.success
    stored = service.store.get(session.id)
    assert stored.status is SessionStatus.COMPLETED
    assert stored.output_dir == service.config.session_dir(session.id)
    assert not service.is_running(session.id)


def test_sessions_get_separate_output_dirs(service_factory, gate):
    gate.set()
    service = service_factory(Fetchers(gate))
    first = service.submit(ROOT)
    second = service.submit(ROOT)
    service.wait(first.id, timeout=10)
    service.wait(second.id, timeout=10)
    assert first.output_dir != second.output_dir
    assert service.store.get(second.id).status is SessionStatus.COMPLETED


def test_submit_rejects_bad_urls(service_factory, gate):
    service = service_factory(Fetchers(gate))
    with pytest.raises(ValueError):
        service.submit("ftp://example.com/")
    assert service.store.list() == []


def test_submit_requires_running_service(config):
    with pytest.raises(RuntimeError):
        CloneService(config).submit(ROOT)


def test_pause_resume_and_cancel(service_factory, gate):
    """A paused session resumes once, then can be cancelled for good."""
    fetchers = Fetchers(gate)
    service = service_factory(fetchers)

    session = service.submit(ROOT)
    wait_until(lambda: fetchers.requested(0, SLOW_URL))

    paused = service.pause(session.id, timeout=5)
    assert paused.status is SessionStatus.INTERRUPTED
    assert not service.is_running(session.id)
    assert service.can_resume(paused)

    resumed = service.resume(session.id)
    assert resumed.status is SessionStatus.RESUMING
    assert resumed.resume_count == 1
    with pytest.raises(ResumeError):
        service.resume(session.id)

    wait_until(lambda: fetchers.requested(1, SLOW_URL))
    assert ROOT not in fetchers.created[1].requests

    cancelled = service.cancel(session.id, timeout=5)
    assert cancelled.status is SessionStatus.CANCELLED
    with pytest.raises(ResumeError, match="not interrupted"):
        service.resume(session.id)
    with pytest.raises(InvalidTransitionError):
        service.pause(session.id)


def test_resume_unknown_session(service_factory, gate):
    service = service_factory(Fetchers(gate))
    with pytest.raises(SessionNotFoundError):
        service.resume("00000000-0000-0000-0000-000000000000")


def test_shutdown_interrupts_and_restart_offers_resume(config, gate):
    """Sessions running at shutdown are resumable by the next process."""
    fetchers = Fetchers(gate)
    service = CloneService(config, fetcher_factory=fetchers).start()
    try:
        session = service.submit(ROOT)
        wait_until(lambda: fetchers.requested(0, SLOW_URL))
    finally:
        service.shutdown(timeout=5)

    assert not service.running
    stopped = service.store.get(session.id)
    assert stopped.status is SessionStatus.INTERRUPTED
    assert stopped.error == "Session interrupted by server shutdown"

    gate.set()
    restarted = CloneService(config, fetcher_factory=Fetchers(gate)).start()
    try:
        stored = restarted.store.get(session.id)
        assert stored.status is SessionStatus.INTERRUPTED
        assert restarted.can_resume(stored)

        restarted.resume(session.id)
        restarted.wait(session.id, timeout=10)
        assert restarted.store.get(session.id).status is SessionStatus.COMPLETED
    finally:
        restarted.shutdown(timeout=5)


def test_resume_with_unreadable_snapshot(service_factory, gate):
    """A corrupt snapshot refuses the resume and the session stays interrupted."""
    fetchers = Fetchers(gate)
    service = service_factory(fetchers)
    session = service.submit(ROOT)
    wait_until(lambda: fetchers.requested(0, SLOW_URL))
    service.pause(session.id, timeout=5)

    with open(state_path(session.output_dir), 'w') as f:
        f.write("{not json")

    with pytest.raises(ResumeError, match="Crawl snapshot could not be loaded"):
        service.resume(session.id)
    assert service.store.get(session.id).status is SessionStatus.INTERRUPTED
    assert not service.is_running(session.id)

    handler = RecoveryHandler(service.store, service.machine, service)
    reply = handler.handle({'type': 'resume_session', 'sessionId': session.id})
    assert [e.type for e in reply.events] == [EventType.SESSION_RESUME_FAILED]
    assert reply.events[0].payload['reason'].startswith("Crawl snapshot could not be loaded")
    assert service.store.get(session.id).status is SessionStatus.INTERRUPTED


def test_eviction_forgets_history_and_result(service_factory, gate):
    gate.set()
    service = service_factory(Fetchers(gate))
    session = service.submit(ROOT)
    service.wait(session.id, timeout=10)
    assert service.result(session.id) is not None
    assert service.bus.history(session.id)

    ended_at = service.store.get(session.id).ended_at
    evicted = service.evict_expired(ended_at + service.config.retention_seconds + 1)

    assert evicted == [session.id]
    assert session.id not in service.store
    assert service.bus.history(session.id) == []
    assert service.result(session.id) is None


def test_reset_forgets_result(service_factory, gate):
    gate.set()
    service = service_factory(Fetchers(gate))
    session = service.submit(ROOT)
    service.wait(session.id, timeout=10)

    service.reset(session.id)
    assert service.result(session.id) is None
    assert service.bus.history(session.id) == []
    with pytest.raises(SessionNotFoundError):
        service.reset(session.id)
