from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from database import ConnectionPool
from replay.errors import StoreError
from replay.types import Tick, iso_z_us, to_epoch_us

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000

_TICK_COLUMNS = "id, time_us, symbol, bid_price, ask_price, last_price, volume, source"


def _row_to_tick(row: Tuple[Any, ...]) -> Tick:
    (_id, t_us, sym, bid, ask, last, vol, src) = row
    return Tick(
        time_us=int(t_us),
        symbol=str(sym),
        bid_price=float(bid) if bid is not None else None,
        ask_price=float(ask) if ask is not None else None,
        last_price=float(last),
        volume=float(vol or 0.0),
        source=str(src or ""),
    )


@dataclass(frozen=True)
class TickCursor:
    """Resume point for a keyset scan: the last (time_us, id) already returned."""

    time_us: int
    row_id: int

    def encode(self) -> str:
        return f"{self.time_us}:{self.row_id}"

    @classmethod
    def decode(cls, raw: str) -> "TickCursor":
        t, _, i = (raw or "").partition(":")
        return cls(time_us=int(t), row_id=int(i))


class TickStore:
    """
    Time-indexed access to `tick_data`.

    Scans are keyset-paginated on (time_us, id): each page is one bounded
    indexed range read, and a scan can begin at any time point (seek) without
    reading what precedes it. A pooled connection is held only while a page
    is being read.
    """

    def __init__(self, pool: ConnectionPool, *, batch_size: int = DEFAULT_BATCH_SIZE):
        self.pool = pool
        self.batch_size = max(1, int(batch_size))

    def _query(self, sql: str, params: Iterable[Any]) -> List[Tuple[Any, ...]]:
        try:
            with self.pool.connection() as conn:
                cur = conn.cursor()
                cur.execute(sql, tuple(params))
                return cur.fetchall()
        except (sqlite3.Error, TimeoutError) as e:
            raise StoreError(f"tick store query failed: {e}") from e

    def _page(
        self,
        *,
        start_us: int,
        end_us: int,
        symbol: Optional[str],
        after: Optional[TickCursor],
        limit: int,
    ) -> List[Tuple[Any, ...]]:
        # Resumed pages seek straight to the cursor time; only same-instant
        # rows before the cursor id are filtered out.
        lower = start_us if after is None else max(start_us, after.time_us)
        where = ["time_us >= ?", "time_us < ?"]
        params: List[Any] = [lower, end_us]
        if symbol:
            where.append("symbol = ?")
            params.append(symbol)
        if after is not None:
            where.append("(time_us > ? OR id > ?)")
            params.extend([after.time_us, after.row_id])
        sql = (
            f"SELECT {_TICK_COLUMNS} FROM tick_data "
            f"WHERE {' AND '.join(where)} "
            "ORDER BY time_us ASC, id ASC LIMIT ?"
        )
        params.append(int(limit))
        return self._query(sql, params)

    def fetch_ticks(
        self,
        start: datetime,
        end: datetime,
        symbol: Optional[str] = None,
        *,
        batch_size: Optional[int] = None,
    ) -> Iterator[Tick]:
        """
        Yield ticks with start <= time < end in time order (ties by insertion).
        The iterator is lazy and single-use.
        """
        return self.scan(to_epoch_us(start), to_epoch_us(end), symbol, batch_size=batch_size)

    def scan(
        self,
        start_us: int,
        end_us: int,
        symbol: Optional[str] = None,
        *,
        batch_size: Optional[int] = None,
    ) -> Iterator[Tick]:
        size = max(1, int(batch_size or self.batch_size))
        after: Optional[TickCursor] = None
        pages = 0
        while True:
            rows = self._page(start_us=start_us, end_us=end_us, symbol=symbol, after=after, limit=size)
            pages += 1
            logger.debug("tick page %d: %d rows (symbol=%s, after=%s)", pages, len(rows), symbol, after)
            for row in rows:
                yield _row_to_tick(row)
            if len(rows) < size:
                return
            last = rows[-1]
            after = TickCursor(time_us=int(last[1]), row_id=int(last[0]))

    def page_ticks(
        self,
        start: datetime,
        end: datetime,
        symbol: Optional[str] = None,
        *,
        limit: int = 10_000,
        after: Optional[TickCursor] = None,
    ) -> Tuple[List[Tick], Optional[TickCursor]]:
        """One page of ticks plus the cursor for the next page (None when exhausted)."""
        rows = self._page(
            start_us=to_epoch_us(start),
            end_us=to_epoch_us(end),
            symbol=symbol,
            after=after,
            limit=int(limit) + 1,
        )
        has_more = len(rows) > limit
        rows = rows[:limit]
        nxt = None
        if has_more and rows:
            nxt = TickCursor(time_us=int(rows[-1][1]), row_id=int(rows[-1][0]))
        return [_row_to_tick(r) for r in rows], nxt

    def insert_ticks(self, ticks: Iterable[Tick], *, batch_size: int = 20_000) -> int:
        """Insert ticks, skipping (time, symbol, source) duplicates. Returns rows inserted."""
        sql = """
            INSERT OR IGNORE INTO tick_data
            (time_us, symbol, bid_price, ask_price, last_price, volume, source)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """
        n = 0
        buf: List[Tuple[Any, ...]] = []
        try:
            with self.pool.connection() as conn:
                cur = conn.cursor()

                def flush() -> None:
                    nonlocal n
                    before = conn.total_changes
                    cur.executemany(sql, buf)
                    conn.commit()
                    n += conn.total_changes - before
                    buf.clear()

                for t in ticks:
                    buf.append(
                        (t.time_us, t.symbol, t.bid_price, t.ask_price, t.last_price, t.volume, t.source)
                    )
                    if len(buf) >= batch_size:
                        flush()
                if buf:
                    flush()
        except (sqlite3.Error, TimeoutError) as e:
            raise StoreError(f"tick insert failed: {e}") from e
        return n

    def replay_info(self) -> Dict[str, Any]:
        rows = self._query(
            "SELECT COUNT(*), MIN(time_us), MAX(time_us) FROM tick_data",
            (),
        )
        total, lo, hi = rows[0] if rows else (0, None, None)
        symbols = [
            str(r[0])
            for r in self._query("SELECT DISTINCT symbol FROM tick_data ORDER BY symbol", ())
        ]
        return {
            "available": bool(total),
            "symbols": symbols,
            "dateRange": {
                "earliest": iso_z_us(lo) if lo is not None else None,
                "latest": iso_z_us(hi) if hi is not None else None,
            },
            "totalTicks": int(total or 0),
        }

    def replay_metadata(self, symbol: str, start: datetime, end: datetime) -> Optional[Dict[str, Any]]:
        """Summary of one symbol over [start, end); None when there is no data."""
        s_us, e_us = to_epoch_us(start), to_epoch_us(end)
        rows = self._query(
            """
            SELECT COUNT(*), MIN(time_us), MAX(time_us), MAX(last_price), MIN(last_price),
                   COUNT(DISTINCT time_us / 86400000000)
            FROM tick_data
            WHERE symbol = ? AND time_us >= ? AND time_us < ?
            """,
            (symbol, s_us, e_us),
        )
        count, lo, hi, high, low, days = rows[0]
        if not count:
            return None
        first = self._query(
            "SELECT last_price FROM tick_data WHERE symbol = ? AND time_us >= ? AND time_us < ? "
            "ORDER BY time_us ASC, id ASC LIMIT 1",
            (symbol, s_us, e_us),
        )
        last = self._query(
            "SELECT last_price FROM tick_data WHERE symbol = ? AND time_us >= ? AND time_us < ? "
            "ORDER BY time_us DESC, id DESC LIMIT 1",
            (symbol, s_us, e_us),
        )
        duration_s = (int(hi) - int(lo)) / 1_000_000
        return {
            "symbol": symbol,
            "startTime": iso_z_us(lo),
            "endTime": iso_z_us(hi),
            "tickCount": int(count),
            "tradingDays": int(days or 1),
            "avgTicksPerSecond": (int(count) / duration_s) if duration_s > 0 else 0.0,
            "priceRange": {
                "high": float(high),
                "low": float(low),
                "open": float(first[0][0]),
                "close": float(last[0][0]),
            },
        }
