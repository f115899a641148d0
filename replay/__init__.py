"""
Tick replay engine.

Design goals:
- Deterministic replay (same config -> same frames, candles and metrics)
- Two-clock model (session time per frame vs wall-clock pacing)
- One store scan per replay, fanned out to ticks / candles / metrics

This package is intentionally headless: it exposes plain Python objects that
the Flask app wraps with API endpoints.
"""

from replay.errors import AggregationError, ReplayError, StoreError, ValidationError
from replay.scheduler import ReplayScheduler
from replay.store import TickStore
from replay.types import (
    Candle,
    ReplayComplete,
    ReplayConfig,
    ReplayFrame,
    ReplayMetrics,
    Tick,
    TradeMarker,
)
from replay.validation import parse_replay_config

__all__ = [
    "AggregationError",
    "Candle",
    "ReplayComplete",
    "ReplayConfig",
    "ReplayError",
    "ReplayFrame",
    "ReplayMetrics",
    "ReplayScheduler",
    "StoreError",
    "Tick",
    "TickStore",
    "TradeMarker",
    "ValidationError",
    "parse_replay_config",
]
