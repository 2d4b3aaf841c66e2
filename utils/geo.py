import math
from dataclasses import dataclass
from typing import Optional

from shapely.geometry import box
from shapely.ops import unary_union

EARTH_RADIUS_M = 6_371_000
MAX_MERCATOR_LAT = 85.05112878
METERS_PER_DEG_LAT = 111_320.0
MIN_COS_FACTOR = 0.15  # keeps longitude padding finite near the poles


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(frozen=True)
class Bounds:
    north: float
    south: float
    west: float
    east: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.west > self.east

    def center(self) -> GeoPoint:
        lat = (self.north + self.south) / 2
        width = self.east - self.west
        if self.crosses_antimeridian:
            width += 360
        return GeoPoint(lat, normalize_lng(self.west + width / 2))


@dataclass(frozen=True)
class Viewport:
    bounds: Bounds
    zoom: float
    env: Optional[str] = None  # explicit region mode, overrides the process default


# Great-circle distance in meters between two GeoPoints (spherical earth)
def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    lat1, lng1, lat2, lng2 = map(math.radians, [a.lat, a.lng, b.lat, b.lng])
    dlat, dlng = lat2 - lat1, lng2 - lng1
    h = math.sin(dlat/2)**2 + math.cos(lat1)*math.cos(lat2)*math.sin(dlng/2)**2
    # float overshoot can push h a hair past 1
    return 2*EARTH_RADIUS_M*math.asin(math.sqrt(min(1.0, h)))


# Maps any longitude into [-180, 180); an eastward 180 (180, 540, ...) stays 180 for display
def normalize_lng(lng: float) -> float:
    if lng > 0 and lng % 360 == 180:
        return 180.0
    return ((lng + 180) % 360) - 180


def clamp_lat(lat: float) -> float:
    return max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))


# Slippy-map tile math at integer zoom z (n = 2^z tiles per axis).
# Indices are clamped to [0, n-1] so edge coordinates never index past the grid.
def lng_to_tile_x(lng: float, z: int) -> int:
    n = 2 ** z
    x = math.floor((lng + 180) / 360 * n)
    return max(0, min(n - 1, x))


def lat_to_tile_y(lat: float, z: int) -> int:
    n = 2 ** z
    lat_rad = math.radians(clamp_lat(lat))
    y = math.floor((1 - math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad)) / math.pi) / 2 * n)
    return max(0, min(n - 1, y))


def tile_x_to_lng(x: int, z: int) -> float:
    return x / 2 ** z * 360 - 180


def tile_y_to_lat(y: int, z: int) -> float:
    t = math.pi * (1 - 2 * y / 2 ** z)
    return math.degrees(math.atan(math.sinh(t)))


# Expands bounds by `meters` on every side (linear degree padding).
# Longitude padding is scaled by the center latitude; the cosine factor is
# floored so the padding doesn't blow up near the poles.
def pad_bounds(bounds: Bounds, meters: float) -> Bounds:
    dlat = meters / METERS_PER_DEG_LAT
    cos_factor = max(math.cos(math.radians(bounds.center().lat)), MIN_COS_FACTOR)
    dlng = meters / (METERS_PER_DEG_LAT * cos_factor)

    north = min(90.0, bounds.north + dlat)
    south = max(-90.0, bounds.south - dlat)
    width = bounds.east - bounds.west
    if bounds.crosses_antimeridian:
        width += 360
    if width + 2 * dlng >= 360:
        return Bounds(north, south, -180.0, 180.0)
    return Bounds(north, south, normalize_lng(bounds.west - dlng), normalize_lng(bounds.east + dlng))


# Bounds as a shapely geometry in (lng, lat) space; an antimeridian-crossing
# region becomes the union of its two halves
def bounds_geometry(bounds: Bounds):
    if not bounds.crosses_antimeridian:
        return box(bounds.west, bounds.south, bounds.east, bounds.north)
    return unary_union([
        box(bounds.west, bounds.south, 180.0, bounds.north),
        box(-180.0, bounds.south, bounds.east, bounds.north),
    ])
