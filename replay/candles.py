"""
OHLCV aggregation over an ordered tick stream.

Buckets are epoch-aligned: key = floor(t / width) * width, in integer
microseconds, so the same tick always lands in the same bucket whatever the
replay window is.

The final bucket of a stream is always emitted. It carries `partial=True`
when the replay window cut it (bucket starts before the playback start or
ends after the window end), so consumers can tell a complete candle from a
clipped one.

Without a symbol filter the replay is a merged multi-instrument stream and a
bucket takes every tick in it; such candles carry `symbol=None`.
"""

from __future__ import annotations

import math
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from replay.errors import AggregationError
from replay.types import CANDLE_INTERVAL_SECONDS, US_PER_SECOND, Candle, Tick


def interval_seconds(interval: str) -> int:
    try:
        return CANDLE_INTERVAL_SECONDS[interval]
    except KeyError:
        raise AggregationError(f"unknown candle interval: {interval!r}") from None


def bucket_start_us(t_us: int, interval_s: int) -> int:
    step = int(interval_s) * US_PER_SECOND
    if step <= 0:
        raise AggregationError("candle interval must be > 0")
    return (int(t_us) // step) * step


class CandleAggregator:
    """
    Push-style OHLCV builder.

    `add(tick)` returns the previous candle when the tick opens a new bucket.
    `close_through(t_us)` emits the open candle once the clock has passed its
    end (no later tick can belong to it). `finish()` emits whatever is left.
    """

    def __init__(
        self,
        interval_s: int,
        *,
        window_start_us: Optional[int] = None,
        window_end_us: Optional[int] = None,
    ):
        if int(interval_s) <= 0:
            raise AggregationError("candle interval must be > 0")
        self.interval_s = int(interval_s)
        self.step_us = self.interval_s * US_PER_SECOND
        self.window_start_us = window_start_us
        self.window_end_us = window_end_us
        self.emitted = 0

        self._bucket: Optional[int] = None
        self._last_t: Optional[int] = None
        self._symbol: Optional[str] = None
        self._o = 0.0
        self._h = 0.0
        self._l = 0.0
        self._c = 0.0
        self._v = 0.0
        self._n = 0

    @property
    def has_open_bucket(self) -> bool:
        return self._bucket is not None

    def _is_partial(self, bucket: int) -> bool:
        if self.window_start_us is not None and bucket < self.window_start_us:
            return True
        if self.window_end_us is not None and bucket + self.step_us > self.window_end_us:
            return True
        return False

    def _emit(self) -> Candle:
        assert self._bucket is not None
        candle = Candle(
            interval_start_us=self._bucket,
            interval_s=self.interval_s,
            symbol=self._symbol,
            open=self._o,
            high=self._h,
            low=self._l,
            close=self._c,
            volume=self._v,
            tick_count=self._n,
            partial=self._is_partial(self._bucket),
        )
        self._bucket = None
        self._symbol = None
        self.emitted += 1
        return candle

    def add(self, tick: Tick) -> Optional[Candle]:
        price = float(tick.last_price)
        if not math.isfinite(price):
            raise AggregationError(f"non-finite price {tick.last_price!r} at {tick.time_us}")
        if self._last_t is not None and tick.time_us < self._last_t:
            raise AggregationError(
                f"tick at {tick.time_us} arrived after {self._last_t}; input must be time-ordered"
            )
        self._last_t = tick.time_us
        b = bucket_start_us(tick.time_us, self.interval_s)

        done: Optional[Candle] = None
        if self._bucket is not None and b != self._bucket:
            done = self._emit()

        vol = float(tick.volume or 0.0)
        if self._bucket is None:
            self._bucket = b
            self._symbol = tick.symbol
            self._o = self._h = self._l = self._c = price
            self._v = vol
            self._n = 1
            return done

        # Mixed-symbol replays aggregate across symbols; keep the label honest.
        if self._symbol != tick.symbol:
            self._symbol = None
        self._h = max(self._h, price)
        self._l = min(self._l, price)
        self._c = price
        self._v += vol
        self._n += 1
        return done

    def close_through(self, t_us: int) -> Optional[Candle]:
        if self._bucket is not None and self._bucket + self.step_us <= int(t_us):
            return self._emit()
        return None

    def finish(self) -> Optional[Candle]:
        if self._bucket is None:
            return None
        return self._emit()


def aggregate_candles(
    ticks: Iterable[Tick],
    interval: str,
    *,
    window_start_us: Optional[int] = None,
    window_end_us: Optional[int] = None,
) -> Iterator[Candle]:
    """Lazy, ordered candles for an ordered tick sequence."""
    agg = CandleAggregator(
        interval_seconds(interval),
        window_start_us=window_start_us,
        window_end_us=window_end_us,
    )
    for tick in ticks:
        done = agg.add(tick)
        if done is not None:
            yield done
    last = agg.finish()
    if last is not None:
        yield last


class TickFanOut:
    """
    Explicit tee: one upstream tick iterator, several consumers.

    Each tick is read from upstream exactly once and handed to every consumer
    in registration order, so the raw relay and the aggregator share a single
    store cursor. Consumers keep their own state and may emit at their own
    pace (the aggregator only emits on bucket boundaries).
    """

    def __init__(self, upstream: Iterable[Tick], consumers: Sequence[Callable[[Tick], None]]):
        self._upstream = iter(upstream)
        self._consumers: List[Callable[[Tick], None]] = list(consumers)
        self._pending: Optional[Tick] = None
        self._exhausted = False
        self.delivered = 0

    def _peek(self) -> Optional[Tick]:
        if self._pending is None and not self._exhausted:
            try:
                self._pending = next(self._upstream)
            except StopIteration:
                self._exhausted = True
        return self._pending

    def pump_until(self, t_us: int) -> int:
        """Deliver every upstream tick with time < t_us. Returns how many."""
        n = 0
        while True:
            tick = self._peek()
            if tick is None or tick.time_us >= t_us:
                return n
            self._pending = None
            for consume in self._consumers:
                consume(tick)
            n += 1
            self.delivered += 1

    @property
    def exhausted(self) -> bool:
        return self._peek() is None

    def close(self) -> None:
        close = getattr(self._upstream, "close", None)
        if close is not None:
            close()
        self._pending = None
        self._exhausted = True
