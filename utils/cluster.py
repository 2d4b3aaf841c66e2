"""Greedy single-linkage clustering of map points.

Points are seeded in a canonical (lat, lng, key) order, so the same input
always yields the same clusters. Each absorption pass is O(n^2); callers keep
per-viewport point counts small (see services.radars.filter_viewport).
"""
from dataclasses import dataclass
from typing import Callable, Generic, List, Sequence, TypeVar

from utils.geo import GeoPoint, haversine_m

T = TypeVar("T")


@dataclass(frozen=True)
class Cluster(Generic[T]):
    id: str
    center: GeoPoint
    count: int
    items: tuple
    primary: T

    def to_dict(self, item_to_dict: Callable[[T], dict]) -> dict:
        return {
            "id": self.id,
            "lat": self.center.lat,
            "lng": self.center.lng,
            "count": self.count,
            "primary": item_to_dict(self.primary),
            "items": [item_to_dict(i) for i in self.items],
        }


def first_member(members: Sequence[T]) -> T:
    return members[0]


def centroid(points: Sequence[GeoPoint]) -> GeoPoint:
    n = len(points)
    return GeoPoint(sum(p.lat for p in points) / n, sum(p.lng for p in points) / n)


def cluster_points(
    items: Sequence[T],
    radius_m: float,
    position: Callable[[T], GeoPoint],
    key: Callable[[T], str],
    primary: Callable[[Sequence[T]], T] = first_member,
) -> List[Cluster[T]]:
    """
    Groups items so that every member is within `radius_m` of at least one
    other member of its cluster, transitively.

    `position` and `key` read an item's location and identity; `primary`
    picks the representative shown in popups (first member by default).
    """
    def order(item):
        p = position(item)
        return (p.lat, p.lng, key(item))

    remaining = sorted(items, key=order)
    clusters: List[Cluster[T]] = []

    while remaining:
        seed = remaining.pop(0)
        members = [seed]
        member_pos = [position(seed)]

        absorbed = True
        while absorbed and remaining:
            absorbed = False
            keep = []
            for item in remaining:
                p = position(item)
                if any(haversine_m(p, m) <= radius_m for m in member_pos):
                    members.append(item)
                    member_pos.append(p)
                    absorbed = True
                else:
                    keep.append(item)
            remaining = keep

        clusters.append(Cluster(
            id=f"cluster-{key(seed)}",
            center=centroid(member_pos),
            count=len(members),
            items=tuple(members),
            primary=primary(members),
        ))

    return clusters
