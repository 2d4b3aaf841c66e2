"""
The live map session: debounced, cancelable alert refresh cycles plus the
radar view, all on one asyncio event loop.

Only the most recently started cycle may publish. Every write that happens
after an await re-checks the cycle's CancelToken first, so a superseded
cycle never touches shared state.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from config import (
    ALERT_CLUSTER_RADIUS_M,
    DEBOUNCE_S,
    RADAR_CLUSTER_RADIUS_M,
    RADAR_MAX_VISIBLE,
    RADAR_MIN_ZOOM,
    RADAR_PADDING_M,
    RADARS_SOURCE,
)
from services import ratelimit
from services.planner import plan_for_bounds
from services.radars import FilterResult, filter_viewport, load_radars
from services.waze import OK, AlertFetchOrchestrator, Alert
from utils.cluster import Cluster, cluster_points
from utils.geo import Viewport

log = logging.getLogger(__name__)


class CancelToken:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


def newest_alert(members):
    return max(members, key=lambda a: a.pub_millis if a.pub_millis is not None else -1)


def cluster_alerts(alerts, radius_m=ALERT_CLUSTER_RADIUS_M) -> List[Cluster]:
    return cluster_points(alerts, radius_m, position=lambda a: a.location,
                          key=lambda a: a.id, primary=newest_alert)


def cluster_radars(points, radius_m=RADAR_CLUSTER_RADIUS_M) -> List[Cluster]:
    return cluster_points(points, radius_m, position=lambda p: p.location, key=lambda p: p.id)


@dataclass
class RadarView:
    clusters: List[Cluster] = field(default_factory=list)
    too_many: bool = False
    hidden: bool = True
    total: int = 0


class ViewportSession:
    def __init__(self, orchestrator: Optional[AlertFetchOrchestrator] = None,
                 debounce_s: float = DEBOUNCE_S, radars_source: str = RADARS_SOURCE,
                 radar_loader=load_radars):
        self.orchestrator = orchestrator or AlertFetchOrchestrator()
        self.debounce_s = debounce_s
        self.rate_state = ratelimit.RateLimitState()

        # published state, replaced wholesale
        self.alerts: List[Alert] = []
        self.alert_clusters: List[Cluster] = []
        self.status: Optional[str] = None
        self.viewport: Optional[Viewport] = None

        self.radars = ()
        self.radar_view = RadarView()
        self._radars_source = radars_source
        self._radar_loader = radar_loader

        self._debounce_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._cycle_token: Optional[CancelToken] = None
        self._load_task: Optional[asyncio.Task] = None

    # -- static dataset --

    def start(self):
        if self._radars_source and self._load_task is None:
            self._load_task = asyncio.create_task(self._load_radars())

    async def _load_radars(self):
        try:
            radars = await asyncio.to_thread(self._radar_loader, self._radars_source)
        except (OSError, ValueError) as e:
            # requests' exceptions are OSErrors too
            log.warning("could not load radar dataset from %s: %s", self._radars_source, e)
            return
        self.radars = tuple(radars)
        if self.viewport is not None:
            self.refresh_radar_view(self.viewport)

    def refresh_radar_view(self, viewport: Viewport) -> RadarView:
        result: FilterResult = filter_viewport(
            self.radars, viewport, RADAR_PADDING_M, RADAR_MIN_ZOOM, RADAR_MAX_VISIBLE
        )
        self.radar_view = RadarView(
            clusters=cluster_radars(result.points),
            too_many=result.too_many,
            hidden=result.hidden,
            total=len(self.radars),
        )
        return self.radar_view

    # -- view changes --

    def on_view_change(self, viewport: Viewport):
        """Records the viewport and (re)arms the debounce timer for a fetch cycle."""
        self.viewport = viewport
        self.refresh_radar_view(viewport)
        if self._debounce_task is not None:
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._debounced(viewport))

    async def _debounced(self, viewport: Viewport):
        await asyncio.sleep(self.debounce_s)
        self.start_cycle(viewport)

    def start_cycle(self, viewport: Viewport) -> Optional[asyncio.Task]:
        """
        Gates a refresh for `viewport` and, when it may go out, starts it as a
        task that supersedes any cycle still in flight. Throttled or unchanged
        queries return None and leave the in-flight cycle to publish.
        """
        plan = plan_for_bounds(viewport.bounds, viewport.zoom)
        decision, env = self.orchestrator.begin(self.rate_state, plan, viewport)

        if decision.verdict == ratelimit.BACKOFF:
            self.status = f"Rate limited; retrying in {decision.cooldown_s}s"
            return None
        if not decision.allowed:
            return None

        if self._cycle_token is not None:
            self._cycle_token.cancel()
        if self._cycle_task is not None and not self._cycle_task.done():
            self._cycle_task.cancel()

        self.rate_state = decision.state
        token = CancelToken()
        self._cycle_token = token
        self._cycle_task = asyncio.create_task(self.run_cycle(plan, env, token))
        return self._cycle_task

    async def run_cycle(self, plan, env: str, token: CancelToken):
        outcome = await self.orchestrator.run(plan, env)
        if token.cancelled:
            log.debug("discarding results of a superseded cycle")
            return

        self.rate_state, outcome = self.orchestrator.settle(self.rate_state, outcome)
        if outcome.status == OK:
            self.alerts = outcome.alerts
            self.alert_clusters = cluster_alerts(outcome.alerts)
            self.status = None
        else:
            # previous markers stay visible
            self.status = outcome.message

    async def close(self):
        if self._cycle_token is not None:
            self._cycle_token.cancel()
        tasks = [t for t in (self._debounce_task, self._cycle_task, self._load_task) if t]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def snapshot(self) -> dict:
        return {
            "status": self.status,
            "count": len(self.alerts),
            "clusters": [c.to_dict(Alert.to_dict) for c in self.alert_clusters],
        }
