import asyncio
import threading

import pytest

from conftest import raw_alert
from services.planner import plan_for_bounds
from services.radars import RadarPoint
from services.session import ViewportSession
from services.waze import AlertFetchOrchestrator, BoxResponse
from utils.geo import Bounds, Viewport

LONDON = Viewport(Bounds(north=51.52, south=51.50, west=-0.14, east=-0.10), 14)
PARIS = Viewport(Bounds(north=48.87, south=48.85, west=2.33, east=2.37), 14)


class RecordingFetch:
    def __init__(self, response=None):
        self.calls = []
        self.response = response or (lambda box, env: BoxResponse(200, alerts=[raw_alert("a1")]))

    def __call__(self, box, env):
        self.calls.append((box, env))
        return self.response(box, env)


def make_session(fetch, clock, **kwargs):
    orch = AlertFetchOrchestrator(fetch=fetch, clock=clock, env_mode="auto")
    return ViewportSession(orchestrator=orch, radars_source="", **kwargs)


async def cycle(session, viewport):
    task = session.start_cycle(viewport)
    if task is not None:
        await task


async def test_successful_cycle_publishes_clusters(clock):
    fetch = RecordingFetch(lambda box, env: BoxResponse(200, alerts=[
        raw_alert("a", lat=51.51, lng=-0.12, pub=1),
        raw_alert("b", lat=51.5101, lng=-0.12, pub=2),
        raw_alert("c", lat=51.60, lng=-0.12, pub=3),
    ]))
    session = make_session(fetch, clock)

    await cycle(session, LONDON)

    assert session.status is None
    assert session.rate_state.last_fetch_at == clock.now
    assert sorted(c.count for c in session.alert_clusters) == [1, 2]
    snap = session.snapshot()
    assert snap["count"] == 3
    pair = next(c for c in snap["clusters"] if c["count"] == 2)
    assert pair["primary"]["id"] == "b"


async def test_rate_limit_backs_off_without_network_calls(clock):
    fetch = RecordingFetch(lambda box, env: BoxResponse(429, retry_after="30"))
    session = make_session(fetch, clock)

    await cycle(session, LONDON)
    assert session.rate_state.backoff_until == clock.now + 30_000
    assert session.status == "Rate limited by alert feed; retrying in 30s"
    calls = len(fetch.calls)

    clock.advance(5000)
    await cycle(session, PARIS)
    assert len(fetch.calls) == calls
    assert session.status == "Rate limited; retrying in 25s"

    clock.advance(25_000)
    fetch.response = lambda box, env: BoxResponse(200, alerts=[])
    await cycle(session, PARIS)
    assert len(fetch.calls) > calls
    assert session.status is None


async def test_unchanged_query_issues_one_call(clock):
    fetch = RecordingFetch()
    session = make_session(fetch, clock)

    await cycle(session, LONDON)
    calls = len(fetch.calls)
    clock.advance(10_000)
    await cycle(session, LONDON)

    assert len(fetch.calls) == calls


async def test_throttle_skips_silently(clock):
    fetch = RecordingFetch()
    session = make_session(fetch, clock)

    await cycle(session, LONDON)
    calls = len(fetch.calls)
    clock.advance(1000)
    await cycle(session, PARIS)

    assert len(fetch.calls) == calls
    assert session.status is None


async def test_error_keeps_previous_markers(clock):
    fetch = RecordingFetch()
    session = make_session(fetch, clock)
    await cycle(session, LONDON)
    before = session.alert_clusters

    clock.advance(10_000)
    fetch.response = lambda box, env: BoxResponse(502, error="HTTP 502")
    await cycle(session, PARIS)

    assert session.alert_clusters is before
    assert session.status == "Alert fetch failed: HTTP 502"


async def test_superseded_cycle_never_publishes(clock):
    release = threading.Event()

    def response(box, env):
        if box.left < 0:  # London, west of Greenwich
            release.wait(5)
            return BoxResponse(200, alerts=[raw_alert("old")])
        return BoxResponse(200, alerts=[raw_alert("new")])

    session = make_session(RecordingFetch(response), clock)
    first = session.start_cycle(LONDON)
    await asyncio.sleep(0.05)
    second = session.start_cycle(PARIS)
    await second
    release.set()

    with pytest.raises(asyncio.CancelledError):
        await first
    await asyncio.sleep(0.05)
    assert [a.id for a in session.alerts] == ["new"]


async def test_same_tile_nudge_keeps_in_flight_cycle(clock):
    release = threading.Event()

    def response(box, env):
        release.wait(5)
        return BoxResponse(200, alerts=[raw_alert("x")])

    fetch = RecordingFetch(response)
    session = make_session(fetch, clock)

    first = session.start_cycle(LONDON)
    await asyncio.sleep(0.05)
    clock.advance(5000)
    # same tiles, so the query key is unchanged
    nudged = Viewport(Bounds(north=51.5201, south=51.5001, west=-0.1399, east=-0.0999), 14)
    assert session.start_cycle(nudged) is None

    release.set()
    await first
    assert [a.id for a in session.alerts] == ["x"]
    assert len(fetch.calls) == len(plan_for_bounds(LONDON.bounds, LONDON.zoom).request_boxes)
    assert session.status is None


async def test_cancelled_token_discards_late_results(clock):
    session = make_session(RecordingFetch(), clock)
    task = session.start_cycle(LONDON)
    session._cycle_token.cancel()

    await task

    assert session.alerts == []
    assert session.rate_state.last_fetch_at == 0


async def test_explicit_env_overrides_inference(clock):
    fetch = RecordingFetch()
    session = make_session(fetch, clock)

    await cycle(session, Viewport(PARIS.bounds, PARIS.zoom, env="na"))

    assert fetch.calls
    assert {env for _, env in fetch.calls} == {"na"}


async def test_auto_env_is_inferred_from_the_viewport(clock):
    fetch = RecordingFetch()
    session = make_session(fetch, clock)

    await cycle(session, PARIS)

    assert {env for _, env in fetch.calls} == {"row"}


async def test_view_changes_are_debounced(clock):
    fetch = RecordingFetch()
    session = make_session(fetch, clock, debounce_s=0.05)

    session.on_view_change(PARIS)
    await asyncio.sleep(0.01)
    session.on_view_change(LONDON)
    await asyncio.sleep(0.2)

    assert fetch.calls
    assert all(box.left < 0 for box, _ in fetch.calls)
    await session.close()


async def test_radar_view_follows_the_viewport(clock):
    radars = [RadarPoint("r1", 51.51, -0.12), RadarPoint("r2", 51.5101, -0.12),
              RadarPoint("far", 40.0, 3.0)]
    orch = AlertFetchOrchestrator(fetch=RecordingFetch(), clock=clock)
    session = ViewportSession(orchestrator=orch, radars_source="radars.csv",
                              radar_loader=lambda source: radars, debounce_s=10)
    session.start()
    await session._load_task

    view = session.refresh_radar_view(LONDON)
    assert view.total == 3
    assert not view.hidden
    assert [c.count for c in view.clusters] == [2]

    assert session.refresh_radar_view(Viewport(LONDON.bounds, 5)).hidden
    await session.close()


async def test_failed_dataset_load_leaves_it_empty(clock):
    def loader(source):
        raise FileNotFoundError(source)

    session = ViewportSession(orchestrator=AlertFetchOrchestrator(fetch=RecordingFetch(), clock=clock),
                              radars_source="missing.csv", radar_loader=loader)
    session.start()
    await session._load_task
    assert session.radars == ()
