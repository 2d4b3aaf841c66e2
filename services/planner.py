"""
Turns a map viewport into tile-aligned bounding-box queries.

Querying every visible tile separately multiplies request volume and trips the
feed's rate limiting, so each longitudinal span is fetched as one union box
snapped to tile edges. The per-tile boxes are kept only for the debug overlay.
"""
import logging
import math
import threading
from dataclasses import dataclass
from typing import List, Tuple

from cachetools import cached
from shapely.geometry import box, mapping

from config import MAX_TILES, MAX_ZOOM
from utils.cache import plan_cache
from utils.geo import (
    MAX_MERCATOR_LAT,
    Bounds,
    clamp_lat,
    lat_to_tile_y,
    lng_to_tile_x,
    normalize_lng,
    tile_x_to_lng,
    tile_y_to_lat,
)

log = logging.getLogger(__name__)

_EAST_EDGE = 179.999999
_SOUTH_EDGE = -MAX_MERCATOR_LAT + 1e-6


@dataclass(frozen=True)
class TileBox:
    top: float
    bottom: float
    left: float
    right: float

    def to_geojson(self):
        return mapping(box(self.left, self.bottom, self.right, self.top))


@dataclass(frozen=True)
class QueryPlan:
    request_boxes: Tuple[TileBox, ...]
    debug_boxes: Tuple[TileBox, ...]
    used_zoom: int

    def to_dict(self):
        return {
            "used_zoom": self.used_zoom,
            "request_boxes": [b.to_geojson() for b in self.request_boxes],
            "debug_boxes": [b.to_geojson() for b in self.debug_boxes],
        }


def lng_spans(west: float, east: float) -> List[Tuple[float, float]]:
    """Longitude spans to query; two when the viewport wraps the antimeridian."""
    if east - west >= 360:
        return [(-180.0, 180.0)]
    west, east = normalize_lng(west), normalize_lng(east)
    if west > east:
        return [(west, 180.0), (-180.0, east)]
    return [(west, east)]


def _tile_range(span, north, south, z):
    west, east = span
    if east == 180:
        east = _EAST_EDGE
    if south <= -MAX_MERCATOR_LAT:
        south = _SOUTH_EDGE
    return (
        lng_to_tile_x(west, z), lng_to_tile_x(east, z),
        lat_to_tile_y(north, z), lat_to_tile_y(south, z),
    )


def _tile_box(x0, x1, y0, y1, z) -> TileBox:
    # tile y grows southward, so y0 is the top edge
    return TileBox(
        top=tile_y_to_lat(y0, z),
        bottom=tile_y_to_lat(y1 + 1, z),
        left=tile_x_to_lng(x0, z),
        right=tile_x_to_lng(x1 + 1, z),
    )


def _plan_at(spans, north, south, z):
    ranges = [_tile_range(span, north, south, z) for span in spans]
    count = sum((x1 - x0 + 1) * (y1 - y0 + 1) for x0, x1, y0, y1 in ranges)
    return ranges, count


@cached(plan_cache, lock=threading.Lock())
def plan_queries(north: float, south: float, west: float, east: float, zoom: float) -> QueryPlan:
    """
    Builds the QueryPlan for a viewport.

    Starts at the viewport's rounded zoom (clamped to [0, MAX_ZOOM]) and steps
    down until the individual tiles covering every span fit in MAX_TILES.
    Pure and memoized: identical input yields the identical plan.
    """
    north, south = clamp_lat(north), clamp_lat(south)
    if south > north:
        north, south = south, north
    spans = lng_spans(west, east)

    z = max(0, min(MAX_ZOOM, math.floor(zoom + 0.5)))
    ranges, count = _plan_at(spans, north, south, z)
    while count > MAX_TILES and z > 0:
        z -= 1
        ranges, count = _plan_at(spans, north, south, z)

    request_boxes = []
    debug_boxes = []
    for x0, x1, y0, y1 in ranges:
        request_boxes.append(_tile_box(x0, x1, y0, y1, z))
        for x in range(x0, x1 + 1):
            for y in range(y0, y1 + 1):
                debug_boxes.append(_tile_box(x, x, y, y, z))

    log.debug("planned %d request box(es), %d tile(s) at z%d", len(request_boxes), count, z)
    return QueryPlan(tuple(request_boxes), tuple(debug_boxes), z)


def plan_for_bounds(bounds: Bounds, zoom: float) -> QueryPlan:
    return plan_queries(bounds.north, bounds.south, bounds.west, bounds.east, zoom)
