from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Any, FrozenSet, Iterable, List, Optional, Tuple

from .geo import haversine_m, wrap_lng
from .lifecycle import LifecyclePolicy, DEFAULT_POLICY, prune
from .privacy import snap_to_grid
from .spatial import cell_for, center_of
from ..core.constants import PRIVACY_GRID_MAX_DECIMALS
from ..core.models import Message

@dataclass(frozen=True)
class Cluster:
    cell_id: str
    center: Tuple[float, float]
    member_ids: FrozenSet[str]
    count: int
    latest_timestamp: int
    cells: Tuple[str, ...] = ()
    label: Optional[str] = None

    def to_feature(self) -> Dict[str, Any]:
        # exported points sit on the coarsest allowed decimal grid
        lat, lng = snap_to_grid(self.center[0], self.center[1], PRIVACY_GRID_MAX_DECIMALS)
        return {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [lng, lat]},
            "properties": {
                "cell_id": self.cell_id,
                "count": self.count,
                "latest_timestamp": self.latest_timestamp,
                "cells": list(self.cells),
                "label": self.label,
            },
        }

@dataclass
class _Bucket:
    cell_id: str
    ids: List[str] = field(default_factory=list)
    latest: int = 0
    cities: Counter = field(default_factory=Counter)

def _label(cities: Counter) -> Optional[str]:
    if not cities:
        return None
    # most common, ties alphabetical
    return sorted(cities.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]

def _unwrap(lng: float, ref: float) -> float:
    """lng shifted by 360 to lie within 180 degrees of ref."""
    d = lng - ref
    if d > 180.0:
        return lng - 360.0
    if d < -180.0:
        return lng + 360.0
    return lng

def _sort_key(c: Cluster) -> Tuple[int, str]:
    return (-c.count, c.cell_id)

def aggregate(
    messages: Iterable[Message],
    resolution: int,
    merge_radius_m: Optional[float] = None,
    now: Optional[int] = None,
    policy: LifecyclePolicy = DEFAULT_POLICY,
) -> List[Cluster]:
    """
    Group top-level messages into one cluster per grid cell.

    Replies never enter an aggregate. With `now` set, messages that are not
    visible at `now` are dropped first. With merge_radius_m set, a hub merge
    pass runs over the cell clusters (see merge_hubs).

    Returns clusters sorted by count desc, then cell_id.
    """
    items = prune(messages, now, policy) if now is not None else list(messages)

    buckets: Dict[str, _Bucket] = {}
    for m in items:
        if m.is_reply:
            continue
        cid = cell_for(m.location.lat, m.location.lng, resolution)
        b = buckets.get(cid)
        if b is None:
            b = buckets[cid] = _Bucket(cid)
        b.ids.append(m.id)
        if m.created_at > b.latest:
            b.latest = m.created_at
        if m.city:
            b.cities[m.city] += 1

    clusters = [
        Cluster(
            cell_id=b.cell_id,
            center=center_of(b.cell_id),
            member_ids=frozenset(b.ids),
            count=len(b.ids),
            latest_timestamp=b.latest,
            cells=(b.cell_id,),
            label=_label(b.cities),
        )
        for b in buckets.values()
    ]
    clusters.sort(key=_sort_key)

    if merge_radius_m and merge_radius_m > 0 and len(clusters) > 1:
        labels = {b.cell_id: b.cities for b in buckets.values()}
        clusters = merge_hubs(clusters, merge_radius_m, labels)
    return clusters

def merge_hubs(
    clusters: List[Cluster],
    radius_m: float,
    cities_by_cell: Optional[Dict[str, Counter]] = None,
) -> List[Cluster]:
    """
    Greedy hub merge.

    Clusters are visited in (-count, cell_id) order; each one not yet absorbed
    anchors a hub and takes every other unabsorbed cluster whose center lies
    within radius_m of the anchor's center. The anchor keeps its cell_id; the
    hub center is the count-weighted mean of the merged cell centers, with
    longitudes taken relative to the anchor's.
    """
    ordered = sorted(clusters, key=_sort_key)
    absorbed = [False] * len(ordered)
    hubs: List[Cluster] = []

    for i, anchor in enumerate(ordered):
        if absorbed[i]:
            continue
        absorbed[i] = True
        group = [anchor]
        alat, alng = anchor.center
        for j in range(i + 1, len(ordered)):
            if absorbed[j]:
                continue
            clat, clng = ordered[j].center
            if haversine_m(alat, alng, clat, clng) <= radius_m:
                absorbed[j] = True
                group.append(ordered[j])

        if len(group) == 1:
            hubs.append(anchor)
            continue

        total = sum(c.count for c in group)
        lat = sum(c.center[0] * c.count for c in group) / total
        # longitudes averaged relative to the anchor so hubs can span the antimeridian
        lng = wrap_lng(sum(_unwrap(c.center[1], alng) * c.count for c in group) / total)
        members = frozenset().union(*(c.member_ids for c in group))
        cells = tuple(cid for c in group for cid in c.cells)
        cities: Counter = Counter()
        if cities_by_cell:
            for cid in cells:
                cities.update(cities_by_cell.get(cid) or {})
        hubs.append(Cluster(
            cell_id=anchor.cell_id,
            center=(lat, lng),
            member_ids=members,
            count=total,
            latest_timestamp=max(c.latest_timestamp for c in group),
            cells=cells,
            label=_label(cities) if cities_by_cell else anchor.label,
        ))

    hubs.sort(key=_sort_key)
    return hubs

def clusters_to_geojson(clusters: Iterable[Cluster]) -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": [c.to_feature() for c in clusters]}
