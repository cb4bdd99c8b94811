"""Tests for the session runner."""

import asyncio
import os
import threading

import pytest

from site_cloner.crawler.postprocess import MANIFEST, PostProcessor
from site_cloner.session.events import EventBus, EventType
from site_cloner.session.machine import SessionStateMachine
from site_cloner.session.models import SessionStatus
from site_cloner.session.runner import STOP_CANCEL, STOP_PAUSE, SessionRunner, state_path
from site_cloner.session.store import SessionStore

from conftest import ROOT, FakeFetcher, build_site


SLOW_URL = "https://example.com/models/chair.glb"


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def machine(bus):
    return SessionStateMachine(SessionStore(), bus)


def new_session(machine, config, url=ROOT):
    return machine.create(url, output_root=config.output_root)


def make_runner(session, machine, config, fetcher):
    return SessionRunner(session.id, machine, machine.store, config, fetcher_factory=lambda: fetcher)


async def wait_for_request(fetcher, url, timeout=5.0):
    loop = asyncio.get_event_loop()
    deadline = loop.time() + timeout
    while url not in fetcher.requests:
        if loop.time() > deadline:
            raise AssertionError(f"{url} was never requested")
        await asyncio.sleep(0.01)


async def wait_for_event(event, timeout=5.0):
    loop = asyncio.get_event_loop()
    deadline = loop.time() + timeout
    while not event.is_set():
        if loop.time() > deadline:
            raise AssertionError("event was never set")
        await asyncio.sleep(0.01)


@pytest.fixture
def held_rewrite(monkeypatch):
    """Hold post-processing inside its first step until ``release`` is set."""
    entered = threading.Event()
    release = threading.Event()
    rewrite = PostProcessor.rewrite_references

    def held(self):
        entered.set()
        release.wait(5)
        return rewrite(self)

    monkeypatch.setattr(PostProcessor, "rewrite_references", held)
    yield entered, release
    release.set()


def progress_values(bus, session_id):
    return [e.payload['progress'] for e in bus.history(session_id)
            if e.type is EventType.PROGRESS_UPDATE]


class TestRun:
    @pytest.mark.asyncio
    async def test_completes_session(self, machine, bus, config):
        """A full run ends in completed with the site rewritten on disk."""
        session = new_session(machine, config)
        runner = make_runner(session, machine, config, FakeFetcher(build_site()))

        result = await runner.run()

        stored = machine.store.get(session.id)
        assert stored.status is SessionStatus.COMPLETED
        assert stored.progress == 100.0
        assert stored.asset_count == 6
        assert stored.pages_visited == 3
        assert result.assets_downloaded == 6

        with open(os.path.join(stored.output_dir, "about", "index.html")) as f:
            assert "../assets/image/logo.png" in f.read()
        assert os.path.exists(os.path.join(stored.output_dir, "manifest.json"))

    @pytest.mark.asyncio
    async def test_event_order(self, machine, bus, config):
        """Progress only rises and assets are announced before completion."""
        session = new_session(machine, config)
        await make_runner(session, machine, config, FakeFetcher(build_site())).run()

        values = progress_values(bus, session.id)
        assert values == sorted(values)
        assert all(v <= 99.0 for v in values)
        assert any(90.0 <= v for v in values)

        events = bus.history(session.id)
        statuses = [e.payload['status'] for e in events if e.type is EventType.STATUS_UPDATE]
        assert statuses == ["starting", "crawling", "processing", "completed"]

        last_asset = max(i for i, e in enumerate(events) if e.type is EventType.ASSET_FOUND)
        assert events[-1].payload['status'] == "completed"
        assert last_asset < len(events) - 1

    @pytest.mark.asyncio
    async def test_root_failure_fails_session(self, machine, config):
        session = new_session(machine, config)
        result = await make_runner(session, machine, config, FakeFetcher({})).run()

        stored = machine.store.get(session.id)
        assert stored.status is SessionStatus.ERROR
        assert "Root page unreachable" in stored.error
        assert not result.success

    @pytest.mark.asyncio
    async def test_timeout(self, machine, config, gate):
        """A crawl that outlives the time limit ends in timeout."""
        config.session_timeout_seconds = 0.2
        session = new_session(machine, config)
        fetcher = FakeFetcher(build_site(), slow=[SLOW_URL], gate=gate)

        result = await make_runner(session, machine, config, fetcher).run()

        stored = machine.store.get(session.id)
        assert stored.status is SessionStatus.TIMEOUT
        assert "time limit" in stored.error
        assert result.error == stored.error

    @pytest.mark.asyncio
    async def test_timeout_stops_post_processing(self, machine, config, held_rewrite):
        """Nothing is written once a session has timed out during processing."""
        entered, release = held_rewrite
        config.session_timeout_seconds = 1.0
        session = new_session(machine, config)
        task = asyncio.ensure_future(make_runner(session, machine, config, FakeFetcher(build_site())).run())

        await wait_for_event(entered)
        await asyncio.sleep(1.3)
        assert not task.done()
        release.set()
        result = await task

        stored = machine.store.get(session.id)
        assert stored.status is SessionStatus.TIMEOUT
        assert not result.success
        assert not os.path.exists(os.path.join(stored.output_dir, MANIFEST))

    @pytest.mark.asyncio
    async def test_unreadable_snapshot_leaves_session_interrupted(self, machine, config):
        session = new_session(machine, config)
        machine.begin_crawling(session.id)
        machine.interrupt(session.id, "Session paused by user")
        os.makedirs(session.output_dir, exist_ok=True)
        with open(state_path(session.output_dir), 'w') as f:
            f.write("{not json")

        machine.begin_resume(session.id)
        fetcher = FakeFetcher(build_site())
        result = await make_runner(session, machine, config, fetcher).run(resume=True)

        stored = machine.store.get(session.id)
        assert stored.status is SessionStatus.INTERRUPTED
        assert stored.error.startswith("Crawl snapshot could not be loaded")
        assert result.error == stored.error
        assert fetcher.requests == []


class TestStop:
    @pytest.mark.asyncio
    async def test_pause_then_resume(self, machine, config, gate):
        """A paused session resumes from its snapshot without refetching the root."""
        session = new_session(machine, config)
        fetcher = FakeFetcher(build_site(), slow=[SLOW_URL], gate=gate)
        runner = make_runner(session, machine, config, fetcher)

        task = asyncio.ensure_future(runner.run())
        await wait_for_request(fetcher, SLOW_URL)
        runner.request_stop(STOP_PAUSE, "Session paused by user")
        await task

        paused = machine.store.get(session.id)
        assert paused.status is SessionStatus.INTERRUPTED
        assert paused.error == "Session paused by user"
        assert os.path.exists(state_path(paused.output_dir))
        progress_at_pause = paused.progress

        machine.begin_resume(session.id)
        second = FakeFetcher(build_site())
        await make_runner(session, machine, config, second).run(resume=True)

        stored = machine.store.get(session.id)
        assert stored.status is SessionStatus.COMPLETED
        assert stored.resume_count == 1
        assert stored.progress >= progress_at_pause
        assert ROOT not in second.requests
        assert SLOW_URL in second.requests

    @pytest.mark.asyncio
    async def test_cancel(self, machine, config, gate):
        session = new_session(machine, config)
        fetcher = FakeFetcher(build_site(), slow=[SLOW_URL], gate=gate)
        runner = make_runner(session, machine, config, fetcher)

        task = asyncio.ensure_future(runner.run())
        await wait_for_request(fetcher, SLOW_URL)
        runner.request_stop(STOP_CANCEL, "Session cancelled by user")
        result = await task

        assert machine.store.get(session.id).status is SessionStatus.CANCELLED
        assert result.error == "Session cancelled by user"

    @pytest.mark.asyncio
    async def test_stop_before_start(self, machine, config):
        """A stop requested before the run begins is applied without crawling."""
        session = new_session(machine, config)
        fetcher = FakeFetcher(build_site())
        runner = make_runner(session, machine, config, fetcher)

        runner.request_stop(STOP_PAUSE, "Session paused by user")
        await runner.run()

        assert machine.store.get(session.id).status is SessionStatus.INTERRUPTED
        assert fetcher.requests == []

    @pytest.mark.asyncio
    async def test_cancel_during_processing(self, machine, config, held_rewrite):
        """The final transition waits for post-processing to stop."""
        entered, release = held_rewrite
        session = new_session(machine, config)
        runner = make_runner(session, machine, config, FakeFetcher(build_site()))
        task = asyncio.ensure_future(runner.run())

        await wait_for_event(entered)
        runner.request_stop(STOP_CANCEL, "Session cancelled by user")
        await asyncio.sleep(0.1)
        assert not task.done()
        assert machine.store.get(session.id).status is SessionStatus.PROCESSING

        release.set()
        await task

        stored = machine.store.get(session.id)
        assert stored.status is SessionStatus.CANCELLED
        assert not os.path.exists(os.path.join(stored.output_dir, MANIFEST))
