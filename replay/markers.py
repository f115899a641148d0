"""
Execution-marker lookup.

Markers (trade entries/exits) live outside the replay engine. The scheduler
only needs a time-ranged read, so it depends on this narrow protocol rather
than on any trade storage.
"""

from __future__ import annotations

import bisect
from typing import Iterable, List, Optional, Protocol, Sequence

from replay.types import TradeMarker


class MarkerLookup(Protocol):
    def markers_between(
        self,
        symbol: str,
        start_us: int,
        end_us: int,
        trade_ids: Optional[Sequence[str]] = None,
    ) -> List[TradeMarker]:
        """Markers for `symbol` with start_us <= time < end_us, ordered by time."""
        ...


class StaticMarkerLookup:
    """In-memory lookup over a fixed marker list, keyed by symbol."""

    def __init__(self, markers_by_symbol: dict[str, Iterable[TradeMarker]]):
        self._by_symbol = {
            sym.upper(): sorted(ms, key=lambda m: m.time_us) for sym, ms in markers_by_symbol.items()
        }
        self._times = {sym: [m.time_us for m in ms] for sym, ms in self._by_symbol.items()}

    def markers_between(
        self,
        symbol: str,
        start_us: int,
        end_us: int,
        trade_ids: Optional[Sequence[str]] = None,
    ) -> List[TradeMarker]:
        sym = (symbol or "").upper()
        ms = self._by_symbol.get(sym, [])
        ts = self._times.get(sym, [])
        i0 = bisect.bisect_left(ts, start_us)
        i1 = bisect.bisect_left(ts, end_us)
        out = ms[i0:i1]
        if trade_ids is not None:
            wanted = set(trade_ids)
            out = [m for m in out if m.trade_id in wanted]
        return list(out)


class MarkerWindow:
    """Markers fetched once for a replay, sliced per frame with bisect."""

    def __init__(self, markers: Sequence[TradeMarker]):
        self._markers = list(markers)
        self._t = [m.time_us for m in self._markers]

    def between(self, start_us: int, end_us: int) -> List[TradeMarker]:
        i0 = bisect.bisect_left(self._t, start_us)
        i1 = bisect.bisect_left(self._t, end_us)
        return self._markers[i0:i1]
