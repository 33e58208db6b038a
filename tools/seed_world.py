#!/usr/bin/env python3
"""
Generate a synthetic world snapshot: messages scattered around a few hub
cities, each location obfuscated the same way a real submission is.

The snapshot is a JSON list of Message.to_dict() rows. With --upload the rows
are also sent to the store configured in --config (store_url must be set).

Usage:
    python tools/seed_world.py --count 500 --out snapshot.json
    python tools/seed_world.py --count 50 --upload --config config.json
"""
import argparse
import random
import sys
import uuid
from pathlib import Path

from kaiku.core.config import load_config
from kaiku.core.errors import PersistenceFailure
from kaiku.core.models import Location, Message
from kaiku.adapters.store_api import RestMessageStore
from kaiku.domain.privacy import obfuscate
from kaiku.utils.files import save_json
from kaiku.utils.time import HOUR_MS, now_ms

CITIES = [
    ("Tokyo", 35.6762, 139.6503, "JP"),
    ("New York", 40.7128, -74.0060, "US"),
    ("Helsinki", 60.1699, 24.9384, "FI"),
    ("Berlin", 52.5200, 13.4050, "DE"),
    ("Rio de Janeiro", -22.9068, -43.1729, "BR"),
    ("Shanghai", 31.2304, 121.4737, "CN"),
]

TAGS = ["#traffic", "#news", "#weather", "#nightlife", "#food", "#help", "#random", "#event", "#music"]
WORDS = ["quiet", "rain", "again", "someone", "near", "station", "tonight", "coffee",
         "bridge", "market", "loud", "queue", "sunset", "tram", "park", "lost", "found"]

def make_text(rng: random.Random) -> str:
    text = " ".join(rng.choice(WORDS) for _ in range(rng.randint(3, 12))).capitalize() + "."
    if rng.random() > 0.6:
        text += " " + rng.choice(TAGS)
    return text

def generate(count: int, rng: random.Random, now: int, spread_m: float = 8000.0):
    out = []
    for _ in range(count):
        name, lat, lng, cc = rng.choice(CITIES)
        # spread around the city center, then the regular privacy displacement
        clat, clng = obfuscate(lat, lng, rng, 0.0, spread_m)
        olat, olng = obfuscate(clat, clng, rng)
        remote = rng.random() > 0.85
        origin = cc
        if remote and rng.random() > 0.5:
            origin = rng.choice([c for c in CITIES if c[3] != cc])[3]
        out.append(Message(
            id=str(uuid.UUID(int=rng.getrandbits(128), version=4)),
            text=make_text(rng),
            author_id=str(uuid.UUID(int=rng.getrandbits(128), version=4)),
            location=Location(olat, olng),
            created_at=now - rng.randint(0, 48 * HOUR_MS - 1),
            score=rng.randint(-4, 15),
            is_remote=remote,
            origin_region=origin if remote else None,
            city=name,
        ))
    return out

def main() -> int:
    parser = argparse.ArgumentParser(description="Generate a synthetic Kaiku snapshot")
    parser.add_argument("--count", type=int, default=500)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--out", default="snapshot.json")
    parser.add_argument("--upload", action="store_true")
    parser.add_argument("--config", default="config.json")
    args = parser.parse_args()

    rng = random.Random(args.seed)
    messages = generate(args.count, rng, now_ms())
    save_json(Path(args.out), [m.to_dict() for m in messages])
    print(f"Wrote {len(messages)} messages to {args.out}")

    if not args.upload:
        return 0
    cfg = load_config(args.config)
    if not cfg.store_url:
        print("store_url is not configured, nothing uploaded")
        return 1
    store = RestMessageStore.from_config(cfg)
    failed = 0
    for m in messages:
        try:
            store.submit(m)
        except PersistenceFailure as e:
            failed += 1
            print(f"upload failed\t{m.id}\t{e.detail}")
    print(f"Uploaded {len(messages) - failed} | failed {failed}")
    return 1 if failed else 0

if __name__ == "__main__":
    sys.exit(main())
