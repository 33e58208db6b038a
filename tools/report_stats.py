#!/usr/bin/env python3
"""
Cluster report over a snapshot file (as written by tools/seed_world.py).

Drops expired and hidden messages, aggregates the rest at the given zoom and
prints one line per cluster, largest first.

Usage:
    python tools/report_stats.py --snapshot snapshot.json --zoom 4
"""
import argparse
import sys
from collections import Counter
from pathlib import Path

from kaiku.core.config import load_config
from kaiku.core.models import Message
from kaiku.domain.cluster import aggregate, clusters_to_geojson
from kaiku.domain.lifecycle import Visibility, visibility_of
from kaiku.domain.spatial import resolution_for
from kaiku.utils.files import load_json, save_json
from kaiku.utils.time import now_ms

def main() -> int:
    parser = argparse.ArgumentParser(description="Report clusters in a Kaiku snapshot")
    parser.add_argument("--snapshot", default="snapshot.json")
    parser.add_argument("--config", default="config.json")
    parser.add_argument("--zoom", type=float, default=3.0)
    parser.add_argument("--top", type=int, default=25)
    parser.add_argument("--geojson", default=None, help="also write the clusters as GeoJSON")
    args = parser.parse_args()

    rows = load_json(Path(args.snapshot), [])
    if not rows:
        print(f"No messages in {args.snapshot}")
        return 1

    cfg = load_config(args.config)
    policy = cfg.lifecycle
    now = now_ms()
    messages = []
    for d in rows:
        try:
            messages.append(Message.from_dict(d))
        except (KeyError, TypeError, ValueError):
            print(f"invalid_row\t{d.get('id') if isinstance(d, dict) else None}")

    states = Counter(visibility_of(m, now, policy).value for m in messages)
    replies = sum(1 for m in messages if m.is_reply)

    res = resolution_for(args.zoom, cfg.zoom_steps)
    radius = cfg.hub_merge_radius_m if args.zoom < cfg.hub_max_zoom else 0.0
    clusters = aggregate(messages, res, radius, now=now, policy=policy)

    print(f"SNAPSHOT | rows={len(messages)} replies={replies} "
          f"active={states[Visibility.ACTIVE.value]} hidden={states[Visibility.HIDDEN.value]} "
          f"expired={states[Visibility.EXPIRED.value]}")
    print(f"CLUSTERS | zoom={args.zoom:g} resolution={res} merge_radius_m={radius:g} count={len(clusters)}")
    for c in clusters[:args.top]:
        lat, lng = c.center
        print(f"- {c.cell_id:<16} | n={c.count:<4} | {lat:8.3f}, {lng:8.3f} | cells={len(c.cells)} | {c.label or '-'}")

    if args.geojson:
        save_json(Path(args.geojson), clusters_to_geojson(clusters))
        print(f"Wrote {args.geojson}")
    return 0

if __name__ == "__main__":
    sys.exit(main())
