"""
Replay request validation.

Turns raw query parameters (strings, as Flask hands them over) into an
immutable `ReplayConfig`, or raises `ValidationError` naming the first bad
field. Nothing here touches the tick store.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Mapping, Optional

from replay.errors import ValidationError
from replay.types import CANDLE_INTERVAL_SECONDS, REPLAY_FORMATS, ReplayConfig

FPS_MIN = 1
FPS_MAX = 120
SPEED_MIN = 0.1
SPEED_MAX = 100.0

DEFAULT_FPS = 60
DEFAULT_SPEED = 1.0
DEFAULT_FORMAT = "ticks"
DEFAULT_CANDLE_INTERVAL = "1m"

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def _get(params: Mapping[str, str], name: str) -> str:
    raw = params.get(name)
    if raw is None:
        return ""
    return str(raw).strip()


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO timestamp (Z, offset, or naive-as-UTC) into aware UTC; None on failure."""
    s = (value or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _required_timestamp(params: Mapping[str, str], name: str) -> datetime:
    raw = _get(params, name)
    if not raw:
        raise ValidationError(name, f"{name} is required")
    dt = parse_timestamp(raw)
    if dt is None:
        raise ValidationError(name, f"{name} must be an ISO-8601 timestamp", value=raw)
    return dt


def _parse_bool(params: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _get(params, name).lower()
    if not raw:
        return default
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValidationError(name, f"{name} must be true or false", value=raw)


def _parse_fps(params: Mapping[str, str]) -> int:
    raw = _get(params, "fps")
    if not raw:
        return DEFAULT_FPS
    try:
        fps = int(raw)
    except ValueError:
        raise ValidationError("fps", "fps must be an integer", value=raw) from None
    if fps < FPS_MIN or fps > FPS_MAX:
        raise ValidationError("fps", f"fps must be between {FPS_MIN} and {FPS_MAX}", value=raw)
    return fps


def _parse_speed(params: Mapping[str, str]) -> float:
    raw = _get(params, "speed")
    if not raw:
        return DEFAULT_SPEED
    try:
        speed = float(raw)
    except ValueError:
        raise ValidationError("speed", "speed must be a number", value=raw) from None
    if not math.isfinite(speed) or speed < SPEED_MIN or speed > SPEED_MAX:
        raise ValidationError("speed", f"speed must be between {SPEED_MIN:g} and {SPEED_MAX:g}", value=raw)
    return speed


def parse_replay_config(params: Mapping[str, str]) -> ReplayConfig:
    """
    Validate raw replay parameters.

    Field order matters only for which error is reported first: time bounds,
    then playback rate, then output shape, then seek.
    """
    start = _required_timestamp(params, "startTime")
    end = _required_timestamp(params, "endTime")
    if start >= end:
        raise ValidationError("endTime", "startTime must be before endTime")

    fps = _parse_fps(params)
    speed = _parse_speed(params)

    fmt = _get(params, "format").lower() or DEFAULT_FORMAT
    if fmt not in REPLAY_FORMATS:
        raise ValidationError("format", f"format must be one of {', '.join(REPLAY_FORMATS)}", value=fmt)

    interval = _get(params, "candleInterval") or DEFAULT_CANDLE_INTERVAL
    if interval not in CANDLE_INTERVAL_SECONDS:
        raise ValidationError(
            "candleInterval",
            f"candleInterval must be one of {', '.join(CANDLE_INTERVAL_SECONDS)}",
            value=interval,
        )

    include_metrics = _parse_bool(params, "includeMetrics", False)
    include_markers = _parse_bool(params, "includeTradeMarkers", False)
    batch = _parse_bool(params, "batch", False)

    seek_to = None
    seek_raw = _get(params, "seekTo")
    if seek_raw:
        seek_to = parse_timestamp(seek_raw)
        if seek_to is None:
            raise ValidationError("seekTo", "seekTo must be an ISO-8601 timestamp", value=seek_raw)
        if seek_to < start or seek_to > end:
            raise ValidationError("seekTo", "seekTo must be within [startTime, endTime]", value=seek_raw)

    symbol = _get(params, "symbol").upper() or None

    return ReplayConfig(
        start_time=start,
        end_time=end,
        symbol=symbol,
        fps=fps,
        speed=speed,
        format=fmt,  # type: ignore[arg-type]
        candle_interval=interval,  # type: ignore[arg-type]
        include_metrics=include_metrics,
        seek_to=seek_to,
        batch=batch,
        include_trade_markers=include_markers,
    )
