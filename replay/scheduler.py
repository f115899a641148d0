"""
Replay scheduler: turns an ordered tick scan into paced frames.

Two clocks:
- session clock: each frame covers a fixed 1/fps seconds of recorded time,
  whatever the speed;
- wall clock: frames are released (1/fps)/speed seconds apart.

Slice boundaries are integer microseconds measured from the playback start
(seekTo, or startTime), so a seeked replay and a replay that starts at the
seek point cut the data identically.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterator, List, Optional, Union

from replay.candles import CandleAggregator, TickFanOut
from replay.markers import MarkerLookup, MarkerWindow
from replay.metrics import MetricsAccumulator
from replay.store import TickStore
from replay.types import US_PER_SECOND, Candle, ReplayComplete, ReplayConfig, ReplayFrame, Tick

logger = logging.getLogger(__name__)

ReplayItem = Union[ReplayFrame, ReplayComplete]


def frame_count(span_us: int, fps: int) -> int:
    """Number of 1/fps slices needed to cover span_us (last slice may be short)."""
    if span_us <= 0:
        return 0
    return -(-(int(span_us) * int(fps)) // US_PER_SECOND)


def slice_bounds(play_start_us: int, end_us: int, fps: int, i: int) -> tuple[int, int]:
    s = play_start_us + (i * US_PER_SECOND) // fps
    e = play_start_us + ((i + 1) * US_PER_SECOND) // fps
    return s, min(e, end_us)


class Pacer:
    """
    Releases frame i no earlier than t0 + i * delay (absolute deadlines, so
    slow consumers don't accumulate drift). Waiting happens on an Event so a
    cancel wakes it immediately.
    """

    def __init__(
        self,
        delay_s: float,
        *,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.delay_s = max(0.0, float(delay_s))
        self.cancel_event = cancel_event or threading.Event()
        self.clock = clock
        self._t0: Optional[float] = None

    def wait_for(self, index: int) -> bool:
        """Block until frame `index` is due. Returns False if cancelled."""
        now = self.clock()
        if self._t0 is None:
            self._t0 = now
        remaining = self._t0 + index * self.delay_s - now
        if remaining > 0:
            if self.cancel_event.wait(remaining):
                return False
        return not self.cancel_event.is_set()


class ReplayScheduler:
    def __init__(
        self,
        config: ReplayConfig,
        store: TickStore,
        *,
        marker_lookup: Optional[MarkerLookup] = None,
        paced: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.store = store
        self.marker_lookup = marker_lookup
        self._cancel = threading.Event()
        self.pacer: Optional[Pacer] = (
            Pacer(config.frame_delay_s, cancel_event=self._cancel, clock=clock) if paced else None
        )
        self.frames_emitted = 0

        self._frame_ticks: List[Tick] = []
        self._frame_candles: List[Candle] = []

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _progress(self, slice_end_us: int) -> float:
        cfg = self.config
        span = cfg.end_us - cfg.start_us
        return round((slice_end_us - cfg.start_us) / span * 100.0, 6)

    def _markers(self, play_start_us: int) -> Optional[MarkerWindow]:
        cfg = self.config
        if not cfg.include_trade_markers or self.marker_lookup is None or not cfg.symbol:
            return None
        return MarkerWindow(self.marker_lookup.markers_between(cfg.symbol, play_start_us, cfg.end_us))

    def iter_frames(self) -> Iterator[ReplayItem]:
        """
        Yield one ReplayFrame per session slice, then one ReplayComplete.
        Closing the iterator (consumer gone) stops the scan and frees the cursor.
        """
        cfg = self.config
        play_start = cfg.play_start_us
        end_us = cfg.end_us
        n_frames = frame_count(end_us - play_start, cfg.fps)

        metrics = MetricsAccumulator() if cfg.include_metrics else None
        aggregator = (
            CandleAggregator(cfg.candle_interval_s, window_start_us=play_start, window_end_us=end_us)
            if cfg.wants_candles
            else None
        )

        consumers: List[Callable[[Tick], None]] = []
        if cfg.wants_ticks:
            consumers.append(self._relay_tick)
        if aggregator is not None:
            consumers.append(lambda t: self._collect(aggregator.add(t)))
        if metrics is not None:
            consumers.append(metrics.update)

        marker_window = self._markers(play_start)
        fan = TickFanOut(self.store.scan(play_start, end_us, cfg.symbol), consumers)

        logger.info(
            "replay start symbol=%s frames=%d fps=%d speed=%g format=%s seek=%s",
            cfg.symbol or "*", n_frames, cfg.fps, cfg.speed, cfg.format, cfg.seek_to is not None,
        )
        done = False
        try:
            for i in range(n_frames):
                s_us, e_us = slice_bounds(play_start, end_us, cfg.fps, i)
                self._frame_ticks = []
                self._frame_candles = []

                fan.pump_until(e_us)
                if aggregator is not None:
                    self._collect(aggregator.close_through(e_us))
                    if i == n_frames - 1:
                        self._collect(aggregator.finish())

                if self.pacer is not None and not self.pacer.wait_for(i):
                    logger.warning("replay cancelled after %d frames", self.frames_emitted)
                    return
                if self.cancelled:
                    return

                frame = ReplayFrame(
                    sequence_index=i,
                    slice_start_us=s_us,
                    slice_end_us=e_us,
                    virtual_time_offset_ms=(s_us - cfg.start_us) / 1000.0,
                    progress_percent=self._progress(e_us),
                    ticks=self._frame_ticks if cfg.wants_ticks else None,
                    candles=self._frame_candles if aggregator is not None else None,
                    metrics=metrics.snapshot() if metrics is not None else None,
                    trade_markers=marker_window.between(s_us, e_us) if marker_window is not None else None,
                )
                self.frames_emitted += 1
                yield frame

            logger.info(
                "replay complete frames=%d ticks=%d", self.frames_emitted, fan.delivered
            )
            done = True
            yield ReplayComplete(
                frames_emitted=self.frames_emitted,
                ticks_processed=fan.delivered,
                candles_emitted=aggregator.emitted if aggregator is not None else 0,
                end_us=end_us,
                metrics=metrics.snapshot() if metrics is not None else None,
            )
        except GeneratorExit:
            if not done:
                logger.warning("replay closed by consumer after %d frames", self.frames_emitted)
            raise
        finally:
            fan.close()

    def _relay_tick(self, tick: Tick) -> None:
        self._frame_ticks.append(tick)

    def _collect(self, candle: Optional[Candle]) -> None:
        if candle is not None:
            self._frame_candles.append(candle)
