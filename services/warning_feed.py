import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import requests

from config import (
    DEFAULT_CENTER,
    DEFAULT_ZOOM,
    HTTP_TIMEOUT_S,
    WARNING_ZOOM,
    WARNINGS_AUTH_TOKEN,
    WARNINGS_POLL_INTERVAL_S,
    WARNINGS_URL,
)

log = logging.getLogger(__name__)


class FeedConfigError(RuntimeError):
    """The warning feed can't be queried as configured (e.g. no auth token)."""


@dataclass(frozen=True)
class WarningMessage:
    id: str
    user_id: object
    url: str
    point: tuple  # (lat, lng)
    created: object

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "url": self.url,
            "lat": self.point[0],
            "lng": self.point[1],
            "created": self.created,
        }


def warning_id(item: dict) -> str:
    return f"{item.get('userId')}-{item.get('url')}-{item.get('created')}"


def fetch_warning_messages(token: str = WARNINGS_AUTH_TOKEN, url: str = WARNINGS_URL,
                           timeout: float = HTTP_TIMEOUT_S) -> Optional[list]:
    """
    Raw warning list from the primary feed, or None when the feed answered
    with an error status.
    """
    if not token:
        raise FeedConfigError("missing X_AUTH token for the warning feed")
    r = requests.get(url, headers={"X-Auth": token}, timeout=timeout)
    if not r.ok:
        log.warning("warning feed returned HTTP %s %s", r.status_code, r.reason)
        return None
    data = r.json()
    return data if isinstance(data, list) else None


# Keep a "session" of current warnings: entries already shown keep their
# record, entries gone from the response are dropped
def merge_warnings(previous: Sequence[WarningMessage], items: list) -> List[WarningMessage]:
    prev_by_id: Dict[str, WarningMessage] = {w.id: w for w in previous}
    merged = []
    for item in items:
        if not isinstance(item, dict):
            continue
        point = item.get("point")
        if not isinstance(point, (list, tuple)) or len(point) != 2:
            continue
        wid = warning_id(item)
        merged.append(prev_by_id.get(wid) or WarningMessage(
            id=wid,
            user_id=item.get("userId"),
            url=item.get("url"),
            point=(point[0], point[1]),
            created=item.get("created"),
        ))
    return merged


def default_view(warnings: Sequence[WarningMessage]) -> dict:
    """Center on the first warning when there is one, else Europe-wide."""
    if warnings:
        lat, lng = warnings[0].point
        return {"center": [lat, lng], "zoom": WARNING_ZOOM}
    return {"center": list(DEFAULT_CENTER), "zoom": DEFAULT_ZOOM}


class WarningPoller:
    """Polls the primary warning feed on a fixed interval."""

    def __init__(self, fetch=fetch_warning_messages, interval_s: float = WARNINGS_POLL_INTERVAL_S):
        self._fetch = fetch
        self.interval_s = interval_s
        self.warnings: List[WarningMessage] = []

    async def poll_once(self) -> List[WarningMessage]:
        try:
            data = await asyncio.to_thread(self._fetch)
        except FeedConfigError as e:
            log.error("warning feed disabled: %s", e)
            return self.warnings
        except (requests.RequestException, ValueError) as e:
            log.warning("error fetching warning messages: %s", e)
            return self.warnings

        if data is not None:
            self.warnings = merge_warnings(self.warnings, data)
        return self.warnings

    async def run(self):
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval_s)
