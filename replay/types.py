from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple


ReplayFormat = Literal["ticks", "candles", "both"]
CandleInterval = Literal["1s", "5s", "15s", "30s", "1m", "5m", "15m", "30m", "1h", "4h", "1d"]
MarkerType = Literal["entry", "exit", "partial_exit", "stop_loss", "take_profit"]
MarkerSide = Literal["long", "short"]

REPLAY_FORMATS: Tuple[str, ...] = ("ticks", "candles", "both")

# Bucket widths in whole seconds.
CANDLE_INTERVAL_SECONDS: Dict[str, int] = {
    "1s": 1,
    "5s": 5,
    "15s": 15,
    "30s": 30,
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "4h": 14400,
    "1d": 86400,
}

US_PER_SECOND = 1_000_000
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_us(dt: datetime) -> int:
    """Exact epoch microseconds (no float round-trip)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - _EPOCH) // timedelta(microseconds=1)


def from_epoch_us(us: int) -> datetime:
    return _EPOCH + timedelta(microseconds=int(us))


def iso_z(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def iso_z_us(us: int) -> str:
    return iso_z(from_epoch_us(us))


@dataclass(frozen=True)
class Tick:
    """
    One stored price sample. `time_us` is epoch microseconds (UTC).
    """

    time_us: int
    symbol: str
    last_price: float
    volume: float = 0.0
    bid_price: Optional[float] = None
    ask_price: Optional[float] = None
    source: str = ""

    @property
    def time(self) -> datetime:
        return from_epoch_us(self.time_us)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": iso_z_us(self.time_us),
            "symbol": self.symbol,
            "bidPrice": self.bid_price,
            "askPrice": self.ask_price,
            "lastPrice": self.last_price,
            "volume": self.volume,
            "source": self.source,
        }


@dataclass(frozen=True)
class Candle:
    interval_start_us: int
    interval_s: int
    symbol: Optional[str]
    open: float
    high: float
    low: float
    close: float
    volume: float
    tick_count: int
    # True when the bucket was cut by the replay window (start or end).
    partial: bool = False

    @property
    def interval_end_us(self) -> int:
        return self.interval_start_us + self.interval_s * US_PER_SECOND

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intervalStart": iso_z_us(self.interval_start_us),
            "symbol": self.symbol,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "tickCount": self.tick_count,
            "partial": self.partial,
        }


@dataclass(frozen=True)
class ReplayMetrics:
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    total_volume: float = 0.0
    ticks_processed: int = 0
    open_price: Optional[float] = None
    last_price: Optional[float] = None
    avg_volume: float = 0.0
    bid_ask_spread: Optional[float] = None
    avg_spread: Optional[float] = None

    @property
    def price_change(self) -> float:
        if self.open_price is None or self.last_price is None:
            return 0.0
        return self.last_price - self.open_price

    @property
    def price_change_percent(self) -> float:
        if not self.open_price:
            return 0.0
        return self.price_change / self.open_price * 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minPrice": self.min_price,
            "maxPrice": self.max_price,
            "totalVolume": self.total_volume,
            "ticksProcessed": self.ticks_processed,
            "openPrice": self.open_price,
            "lastPrice": self.last_price,
            "priceChange": self.price_change,
            "priceChangePercent": self.price_change_percent,
            "avgVolume": self.avg_volume,
            "bidAskSpread": self.bid_ask_spread,
            "avgSpread": self.avg_spread,
        }


@dataclass(frozen=True)
class TradeMarker:
    time_us: int
    type: MarkerType
    side: MarkerSide
    price: float
    quantity: float
    trade_id: str
    pnl: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "time": iso_z_us(self.time_us),
            "type": self.type,
            "side": self.side,
            "price": self.price,
            "quantity": self.quantity,
            "tradeId": self.trade_id,
        }
        if self.pnl is not None:
            out["pnl"] = self.pnl
        return out


@dataclass(frozen=True)
class ReplayConfig:
    """
    Validated replay request. Build it with `replay.validation.parse_replay_config`.
    Times are tz-aware UTC datetimes.
    """

    start_time: datetime
    end_time: datetime
    symbol: Optional[str] = None
    fps: int = 60
    speed: float = 1.0
    format: ReplayFormat = "ticks"
    candle_interval: CandleInterval = "1m"
    include_metrics: bool = False
    seek_to: Optional[datetime] = None
    batch: bool = False
    include_trade_markers: bool = False

    @property
    def start_us(self) -> int:
        return to_epoch_us(self.start_time)

    @property
    def end_us(self) -> int:
        return to_epoch_us(self.end_time)

    @property
    def play_start_us(self) -> int:
        """Where playback (and the store scan) begins: seekTo when given."""
        return to_epoch_us(self.seek_to) if self.seek_to is not None else self.start_us

    @property
    def wants_ticks(self) -> bool:
        return self.format in ("ticks", "both")

    @property
    def wants_candles(self) -> bool:
        return self.format in ("candles", "both")

    @property
    def candle_interval_s(self) -> int:
        return CANDLE_INTERVAL_SECONDS[self.candle_interval]

    @property
    def frame_duration_s(self) -> float:
        return 1.0 / self.fps

    @property
    def frame_delay_s(self) -> float:
        """Wall-clock delay between frames."""
        return (1.0 / self.fps) / self.speed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startTime": iso_z(self.start_time),
            "endTime": iso_z(self.end_time),
            "symbol": self.symbol,
            "fps": self.fps,
            "speed": self.speed,
            "format": self.format,
            "candleInterval": self.candle_interval,
            "includeMetrics": self.include_metrics,
            "seekTo": iso_z(self.seek_to) if self.seek_to is not None else None,
            "batch": self.batch,
            "includeTradeMarkers": self.include_trade_markers,
        }


@dataclass(frozen=True)
class ReplayFrame:
    sequence_index: int
    slice_start_us: int
    slice_end_us: int
    # Session time from startTime to the slice start, in milliseconds.
    virtual_time_offset_ms: float
    progress_percent: float
    ticks: Optional[List[Tick]] = None
    candles: Optional[List[Candle]] = None
    metrics: Optional[ReplayMetrics] = None
    trade_markers: Optional[List[TradeMarker]] = None

    @property
    def is_empty(self) -> bool:
        return not self.ticks and not self.candles and not self.trade_markers

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "sequenceIndex": self.sequence_index,
            "timestamp": iso_z_us(self.slice_start_us),
            "sliceEnd": iso_z_us(self.slice_end_us),
            "virtualTimeOffset": self.virtual_time_offset_ms,
            "progressPercent": self.progress_percent,
        }
        if self.ticks is not None:
            out["ticks"] = [t.to_dict() for t in self.ticks]
        if self.candles is not None:
            out["candles"] = [c.to_dict() for c in self.candles]
        if self.metrics is not None:
            out["metrics"] = self.metrics.to_dict()
        if self.trade_markers is not None:
            out["tradeMarkers"] = [m.to_dict() for m in self.trade_markers]
        return out


@dataclass(frozen=True)
class ReplayComplete:
    """Terminal signal from the scheduler; never carries data."""

    frames_emitted: int
    ticks_processed: int
    candles_emitted: int
    end_us: int
    metrics: Optional[ReplayMetrics] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "done": True,
            "framesEmitted": self.frames_emitted,
            "ticksProcessed": self.ticks_processed,
            "candlesEmitted": self.candles_emitted,
            "endTime": iso_z_us(self.end_us),
        }
        if self.metrics is not None:
            out["metrics"] = self.metrics.to_dict()
        return out
