from __future__ import annotations

from typing import Optional

from replay.types import ReplayMetrics, Tick


class MetricsAccumulator:
    """Cumulative replay stats; O(1) per tick and never revised backward."""

    def __init__(self) -> None:
        self._min: Optional[float] = None
        self._max: Optional[float] = None
        self._volume = 0.0
        self._count = 0
        self._open: Optional[float] = None
        self._last: Optional[float] = None
        self._spread: Optional[float] = None
        self._spread_sum = 0.0
        self._spread_n = 0

    def update(self, tick: Tick) -> None:
        price = float(tick.last_price)
        if self._open is None:
            self._open = price
        self._min = price if self._min is None else min(self._min, price)
        self._max = price if self._max is None else max(self._max, price)
        self._last = price
        self._volume += float(tick.volume or 0.0)
        self._count += 1

        bid, ask = tick.bid_price, tick.ask_price
        if bid is not None and ask is not None and bid > 0 and ask > 0:
            self._spread = ask - bid
            self._spread_sum += self._spread
            self._spread_n += 1

    def snapshot(self) -> ReplayMetrics:
        return ReplayMetrics(
            min_price=self._min,
            max_price=self._max,
            total_volume=self._volume,
            ticks_processed=self._count,
            open_price=self._open,
            last_price=self._last,
            avg_volume=(self._volume / self._count) if self._count else 0.0,
            bid_ask_spread=self._spread,
            avg_spread=(self._spread_sum / self._spread_n) if self._spread_n else None,
        )
