#!/usr/bin/env python3
# Kaiku engine: anonymous, location-bound, ephemeral messages.
#
# Files:
# - config.json           (tracked)  profile + overrides, see kaiku/core/config.py
# - session_state.json    (local)    actor id, votes, tombstones, rate window
# - logs/engine-DATE.log  (local)    one line per event
#
# Without store_url the engine runs against an in-process store (local mode).

import argparse

from kaiku.core.config import load_config
from kaiku.core.main_loop import run_loop

def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Kaiku aggregation engine")
    parser.add_argument("--config", default="config.json")
    parser.add_argument("--once", action="store_true", help="run a single cycle and exit")
    args = parser.parse_args()
    run_loop(load_config(args.config), one_shot=args.once)

if __name__ == "__main__":
    main()
