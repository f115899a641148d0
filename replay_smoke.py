#!/usr/bin/env python
"""
Smoke test for the tick replay engine.

This does NOT start the Flask server. It:
- Seeds a throwaway SQLite DB with ~2 minutes of synthetic 250ms ticks
- Runs a batch replay (ticks + 5s candles + metrics) over the data
- Streams the first seconds at 10x speed and reports the observed frame pacing
"""

from __future__ import annotations

import os
import tempfile
import time
from datetime import datetime, timedelta, timezone

from database import ConnectionPool, init_database
from replay.encoder import format_sse, run_batch, stream_events
from replay.scheduler import ReplayScheduler
from replay.store import TickStore
from replay.validation import parse_replay_config
from synthetic_ticks import generate_ticks


def _iso_z(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def main() -> int:
    start = datetime(2026, 1, 16, 14, 30, tzinfo=timezone.utc)
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = os.path.join(tmpdir, "smoke.db")
        init_database(db_path)
        pool = ConnectionPool(db_path, max_size=2)
        try:
            store = TickStore(pool)
            n = store.insert_ticks(generate_ticks("ES_SYNTH", 5000.0, 480, start_ts=start, seed=7))
            print(f"Seeded {n} ticks")

            cfg = parse_replay_config(
                {
                    "startTime": _iso_z(start),
                    "endTime": _iso_z(start + timedelta(minutes=2)),
                    "symbol": "ES_SYNTH",
                    "fps": "30",
                    "format": "both",
                    "candleInterval": "5s",
                    "includeMetrics": "true",
                    "batch": "true",
                }
            )
            result = run_batch(cfg, ReplayScheduler(cfg, store, paced=False).iter_frames())
            print(
                f"Batch: success={result['success']} frames_with_data={len(result['frames'])} "
                f"candles={len(result['candles'])} ticks={result['metrics']['ticksProcessed']}"
            )

            stream_cfg = parse_replay_config(
                {
                    "startTime": _iso_z(start),
                    "endTime": _iso_z(start + timedelta(seconds=5)),
                    "symbol": "ES_SYNTH",
                    "fps": "20",
                    "speed": "10",
                }
            )
            t0 = time.monotonic()
            kinds = {}
            for ev in stream_events(stream_cfg, ReplayScheduler(stream_cfg, store).iter_frames()):
                kinds[ev.kind] = kinds.get(ev.kind, 0) + 1
                if ev.kind == "complete":
                    print(format_sse(ev).strip())
            elapsed = time.monotonic() - t0
            expected = (kinds.get("frame", 0) - 1) * stream_cfg.frame_delay_s
            print(f"Stream events: {kinds}")
            print(f"Stream wall time: {elapsed:.3f}s (target ~{expected:.3f}s)")
        finally:
            pool.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
