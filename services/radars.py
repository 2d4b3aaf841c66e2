import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import requests
from shapely.geometry import Point
from shapely.prepared import prep

from config import HTTP_TIMEOUT_S
from utils.geo import GeoPoint, Viewport, bounds_geometry, pad_bounds

log = logging.getLogger(__name__)

_ID_RE = re.compile(r"\[([^\[\]]+)\]")
_DESC_RE = re.compile(r'"([^"]*)"')


@dataclass(frozen=True)
class RadarPoint:
    id: str
    lat: float
    lng: float
    desc: str = ""

    @property
    def location(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lng)

    def to_dict(self):
        return {"id": self.id, "lat": self.lat, "lng": self.lng, "desc": self.desc}


@dataclass(frozen=True)
class FilterResult:
    points: Tuple[RadarPoint, ...] = ()
    too_many: bool = False
    hidden: bool = False  # zoomed out past the floor


def parse_line(line: str) -> Optional[RadarPoint]:
    """
    Parses one `lng,lat,rest` dataset line, where rest holds an optional
    quoted description and a bracketed id. None when the line is unusable.
    """
    parts = line.strip().split(",", 2)
    if len(parts) < 3:
        return None
    try:
        lng, lat = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None

    rest = parts[2]
    ids = _ID_RE.findall(rest)
    if not ids or not ids[-1].strip():
        return None
    desc = _DESC_RE.search(rest)
    return RadarPoint(
        id=ids[-1].strip(),
        lat=lat,
        lng=lng,
        desc=desc.group(1).strip() if desc else "",
    )


def parse_radars(lines: Iterable[str]) -> List[RadarPoint]:
    # duplicate ids collapse to the last occurrence
    by_id: Dict[str, RadarPoint] = {}
    skipped = 0
    for line in lines:
        if not line.strip():
            continue
        pt = parse_line(line)
        if pt is None:
            skipped += 1
            continue
        by_id.pop(pt.id, None)
        by_id[pt.id] = pt
    if skipped:
        log.debug("skipped %d malformed radar line(s)", skipped)
    return list(by_id.values())


def load_radars(source: str, timeout: float = HTTP_TIMEOUT_S) -> List[RadarPoint]:
    """Reads the static dataset from a local file or an http(s) url."""
    if not source:
        return []
    if source.startswith(("http://", "https://")):
        r = requests.get(source, timeout=timeout)
        r.raise_for_status()
        text = r.text
    else:
        text = Path(source).read_text(encoding="utf-8")
    radars = parse_radars(text.splitlines())
    log.info("loaded %d radar point(s) from %s", len(radars), source)
    return radars


def filter_viewport(points: Iterable[RadarPoint], viewport: Viewport, padding_m: float,
                    min_zoom: float, max_visible: int) -> FilterResult:
    """
    Points inside the padded viewport, all or nothing.

    Below `min_zoom` nothing is shown. Once more than `max_visible` points
    match, the scan stops and reports `too_many` with no points at all rather
    than a misleading partial subset.
    """
    if viewport.zoom < min_zoom:
        return FilterResult(hidden=True)

    area = prep(bounds_geometry(pad_bounds(viewport.bounds, padding_m)))
    found = []
    for p in points:
        if area.covers(Point(p.lng, p.lat)):
            found.append(p)
            if len(found) > max_visible:
                return FilterResult(too_many=True)
    return FilterResult(points=tuple(found))
