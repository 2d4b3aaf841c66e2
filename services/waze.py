"""
Live alert feed (Waze live map) client and fetch orchestration.

One refresh cycle issues one request per request box of a QueryPlan,
concurrently, and either publishes the merged, de-duplicated alerts or
classifies the failure as rate limited / error.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import requests

from config import ENV_MODE, HTTP_TIMEOUT_S, WAZE_URL, WAZE_USER_AGENT
from services import ratelimit
from utils.geo import GeoPoint, Viewport

log = logging.getLogger(__name__)

ENV_NORTH_AMERICA = "na"
ENV_REST_OF_WORLD = "row"
ENV_AUTO = "auto"
ENV_MODES = (ENV_AUTO, ENV_NORTH_AMERICA, ENV_REST_OF_WORLD)

OK = "ok"
RATE_LIMITED = "rate_limited"
ERROR = "error"


@dataclass(frozen=True)
class Alert:
    id: str
    type: str
    subtype: str
    location: GeoPoint
    uuid: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    pub_millis: Optional[int] = None

    def to_dict(self):
        return {
            "id": self.id,
            "uuid": self.uuid,
            "type": self.type,
            "subtype": self.subtype,
            "street": self.street,
            "city": self.city,
            "pubMillis": self.pub_millis,
            "lat": self.location.lat,
            "lng": self.location.lng,
        }


@dataclass
class BoxResponse:
    status: int
    alerts: list = field(default_factory=list)
    retry_after: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300


@dataclass
class CycleOutcome:
    status: str
    alerts: List[Alert] = field(default_factory=list)
    retry_after: Optional[str] = None
    message: Optional[str] = None


# Heuristic region tag from the viewport center; not authoritative geofencing
def resolve_env(mode: str, viewport: Viewport) -> str:
    if mode in (ENV_NORTH_AMERICA, ENV_REST_OF_WORLD):
        return mode
    c = viewport.bounds.center()
    if -170 <= c.lng <= -30 and 5 <= c.lat <= 85:
        return ENV_NORTH_AMERICA
    return ENV_REST_OF_WORLD


def _number(v) -> Optional[float]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return float(v) if math.isfinite(v) else None


def alert_identity(raw: dict, lat: float, lng: float) -> str:
    if raw.get("uuid"):
        return str(raw["uuid"])
    return f"{raw.get('type', 'ALERT')}-{lng}-{lat}-{raw.get('pubMillis')}"


def parse_alert(raw) -> Optional[Alert]:
    """Maps one feed entry to an Alert; None when it has no numeric location."""
    if not isinstance(raw, dict):
        return None
    loc = raw.get("location")
    if not isinstance(loc, dict):
        return None
    lng, lat = _number(loc.get("x")), _number(loc.get("y"))
    if lat is None or lng is None:
        return None

    pub = _number(raw.get("pubMillis"))
    return Alert(
        id=alert_identity(raw, lat, lng),
        uuid=raw.get("uuid"),
        type=raw.get("type") or "ALERT",
        subtype=raw.get("subtype") or "",
        street=raw.get("street"),
        city=raw.get("city"),
        pub_millis=int(pub) if pub is not None else None,
        location=GeoPoint(lat, lng),
    )


def fetch_box(box, env: str, timeout: float = HTTP_TIMEOUT_S) -> BoxResponse:
    """
    Blocking GET of the alerts inside one box. Never raises for HTTP status;
    transport problems come back as an error response with status 0.
    """
    params = {
        "types": "alerts",
        "env": env,
        "top": box.top,
        "bottom": box.bottom,
        "left": box.left,
        "right": box.right,
    }
    headers = {"User-Agent": WAZE_USER_AGENT, "Accept": "application/json"}
    try:
        r = requests.get(WAZE_URL, params=params, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        return BoxResponse(status=0, error=f"request failed: {e}")

    if r.status_code == 429:
        return BoxResponse(status=429, retry_after=r.headers.get("Retry-After"))
    if not 200 <= r.status_code < 300:
        return BoxResponse(status=r.status_code, error=f"HTTP {r.status_code}")
    try:
        data = r.json()
    except ValueError:
        return BoxResponse(status=r.status_code, error="invalid JSON from alert feed")

    alerts = data.get("alerts") if isinstance(data, dict) else None
    return BoxResponse(status=r.status_code, alerts=alerts if isinstance(alerts, list) else [])


def merge_alerts(responses: List[BoxResponse]) -> List[Alert]:
    """Flattens all boxes' alerts, drops invalid ones, de-dups by id (last seen wins)."""
    by_id: Dict[str, Alert] = {}
    skipped = 0
    for resp in responses:
        for raw in resp.alerts:
            alert = parse_alert(raw)
            if alert is None:
                skipped += 1
                continue
            by_id.pop(alert.id, None)
            by_id[alert.id] = alert
    if skipped:
        log.debug("skipped %d alert(s) without a usable location", skipped)
    return list(by_id.values())


def classify(responses: List[BoxResponse], now: int) -> CycleOutcome:
    limited = [r for r in responses if r.status == 429]
    if limited:
        # several boxes may be limited at once; honor the longest wait
        retry = max((r.retry_after for r in limited),
                    key=lambda v: ratelimit.retry_after_ms(v, now))
        return CycleOutcome(RATE_LIMITED, retry_after=retry)

    failed = [r for r in responses if not r.ok]
    if failed:
        return CycleOutcome(ERROR, message=failed[0].error)

    return CycleOutcome(OK, alerts=merge_alerts(responses))


class AlertFetchOrchestrator:
    """
    Runs alert refresh cycles against a RateLimitState.

    A cycle is split in two so the caller can adopt state between the steps:
    `begin` is synchronous and stamps the query key before anything is sent,
    `run` awaits the network and `settle` folds its outcome back into the
    state. A cancelled cycle simply never calls `settle`.
    """

    def __init__(self, fetch: Callable = fetch_box, clock: Callable[[], int] = ratelimit.now_ms,
                 env_mode: str = ENV_MODE):
        self._fetch = fetch
        self._clock = clock
        self.env_mode = env_mode

    def begin(self, state, plan, viewport: Viewport):
        env = resolve_env(viewport.env or self.env_mode, viewport)
        decision = ratelimit.gate(state, plan.request_boxes, env, self._clock())
        if decision.verdict != ratelimit.GO:
            log.debug("alert cycle skipped: %s", decision.verdict)
        return decision, env

    async def run(self, plan, env: str) -> CycleOutcome:
        responses = await asyncio.gather(
            *(asyncio.to_thread(self._fetch, box, env) for box in plan.request_boxes)
        )
        outcome = classify(list(responses), self._clock())
        if outcome.status == ERROR:
            log.warning("alert fetch failed: %s", outcome.message)
        return outcome

    def settle(self, state, outcome: CycleOutcome):
        now = self._clock()
        if outcome.status == RATE_LIMITED:
            state = ratelimit.record_rate_limited(state, outcome.retry_after, now)
            outcome.message = (
                f"Rate limited by alert feed; retrying in {ratelimit.cooldown_seconds(state, now)}s"
            )
        elif outcome.status == OK:
            state = ratelimit.record_success(state, now)
        else:
            outcome.message = f"Alert fetch failed: {outcome.message}"
        return state, outcome
