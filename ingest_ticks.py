"""
Load tick samples into the local SQLite tick store.

CSV input needs a time column and a price column; the rest is optional:
  time | timestamp        ISO-8601 (UTC if no offset)
  last_price | price      trade price
  bid_price, ask_price    quote (optional)
  volume                  (optional, default 0)
  symbol                  (optional if --symbol is given)
  source                  (optional, default --source)

Usage:
  python ingest_ticks.py --csv ticks.csv --symbol AAPL
  python ingest_ticks.py --synthetic ES_SYNTH --n 14400 --start 2026-01-16T14:30:00Z --seed 7
"""

from __future__ import annotations

import argparse
import os
from typing import Iterator, Optional

import pandas as pd

from database import ConnectionPool, init_database
from replay.store import TickStore
from replay.types import Tick
from replay.validation import parse_timestamp
from synthetic_ticks import generate_ticks

_ALIASES = {
    "timestamp": "time",
    "ts": "time",
    "price": "last_price",
    "last": "last_price",
    "lastprice": "last_price",
    "bid": "bid_price",
    "bidprice": "bid_price",
    "ask": "ask_price",
    "askprice": "ask_price",
    "size": "volume",
}


def _normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    renamed = {}
    for c in df.columns:
        key = str(c).strip().lower()
        renamed[c] = _ALIASES.get(key, key)
    return df.rename(columns=renamed)


def ticks_from_frame(df: pd.DataFrame, *, symbol: Optional[str] = None, source: str = "csv") -> Iterator[Tick]:
    """Yield Ticks from a raw tick DataFrame, sorted by time (stable)."""
    df = _normalize_columns(df)
    missing = [c for c in ("time", "last_price") if c not in df.columns]
    if missing:
        raise ValueError(f"tick frame missing required columns: {missing}")
    if "symbol" not in df.columns and not symbol:
        raise ValueError("no symbol column; pass symbol=")

    ts = pd.to_datetime(df["time"], utc=True, format="ISO8601")
    t_us = (ts - pd.Timestamp("1970-01-01", tz="UTC")) // pd.Timedelta(microseconds=1)

    out = pd.DataFrame(
        {
            "time_us": t_us.astype("int64"),
            "symbol": (df["symbol"].astype(str) if "symbol" in df.columns and not symbol else symbol),
            "last_price": pd.to_numeric(df["last_price"], errors="coerce"),
            "bid_price": pd.to_numeric(df["bid_price"], errors="coerce") if "bid_price" in df.columns else None,
            "ask_price": pd.to_numeric(df["ask_price"], errors="coerce") if "ask_price" in df.columns else None,
            "volume": pd.to_numeric(df["volume"], errors="coerce").fillna(0.0) if "volume" in df.columns else 0.0,
            "source": df["source"].astype(str) if "source" in df.columns else source,
        }
    )
    out = out.dropna(subset=["last_price"]).sort_values("time_us", kind="stable")

    for row in out.itertuples(index=False):
        yield Tick(
            time_us=int(row.time_us),
            symbol=str(row.symbol).strip().upper(),
            last_price=float(row.last_price),
            volume=float(row.volume),
            bid_price=None if pd.isna(row.bid_price) else float(row.bid_price),
            ask_price=None if pd.isna(row.ask_price) else float(row.ask_price),
            source=str(row.source),
        )


def main() -> None:
    ap = argparse.ArgumentParser()
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--csv", dest="csv_path", help="Path to a tick CSV")
    src.add_argument("--synthetic", metavar="SYMBOL", help="Generate a synthetic random-walk series for SYMBOL")
    ap.add_argument("--symbol", help="Symbol for CSVs without a symbol column")
    ap.add_argument("--source", default="csv", help="Source tag stored with each tick (default: csv)")
    ap.add_argument("--db", default=os.environ.get("TICK_DB_PATH", "tick_data.db"), help="SQLite DB path")
    ap.add_argument("--n", type=int, default=14_400, help="Synthetic: number of ticks (default: 1h at 250ms)")
    ap.add_argument("--start", help="Synthetic: first tick time (ISO-8601, default now)")
    ap.add_argument("--price", type=float, default=5000.0, help="Synthetic: start price")
    ap.add_argument("--step-ms", type=int, default=250, help="Synthetic: spacing between ticks")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--batch", type=int, default=20_000, help="SQLite executemany batch size (default: 20000)")
    args = ap.parse_args()

    db_path = os.path.abspath(args.db)
    init_database(db_path)
    pool = ConnectionPool(db_path, max_size=1)
    store = TickStore(pool)
    try:
        if args.csv_path:
            csv_path = os.path.abspath(args.csv_path)
            if not os.path.exists(csv_path):
                raise FileNotFoundError(csv_path)
            df = pd.read_csv(csv_path)
            n = store.insert_ticks(
                ticks_from_frame(df, symbol=(args.symbol or "").upper() or None, source=args.source),
                batch_size=int(args.batch),
            )
        else:
            start_ts = parse_timestamp(args.start) if args.start else None
            if args.start and start_ts is None:
                raise SystemExit(f"--start is not an ISO-8601 timestamp: {args.start}")
            ticks = generate_ticks(
                args.synthetic,
                args.price,
                int(args.n),
                start_ts=start_ts,
                step_ms=int(args.step_ms),
                seed=args.seed,
            )
            n = store.insert_ticks(ticks, batch_size=int(args.batch))
        print(f"[OK] inserted {n:,} ticks into {db_path}")
    finally:
        pool.close()


if __name__ == "__main__":
    main()
