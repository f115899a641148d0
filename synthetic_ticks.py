from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import numpy as np

from replay.types import Tick, to_epoch_us


def generate_ticks(
    symbol: str,
    start_price: float,
    n_ticks: int,
    *,
    start_ts: Optional[datetime] = None,
    step_ms: int = 250,
    vol: float = 0.0004,
    spread_bp: float = 1.0,
    mean_volume: float = 50.0,
    source: str = "synthetic",
    seed: Optional[int] = None,
) -> List[Tick]:
    """
    Generate a log-normal random-walk tick series at a fixed step (default 250ms).
    Deterministic for a given seed.
    """
    if n_ticks <= 0:
        return []
    rng = np.random.default_rng(seed)

    if start_ts is None:
        start_ts = datetime.now(timezone.utc).replace(microsecond=0)
    t0 = to_epoch_us(start_ts)
    step_us = int(step_ms) * 1000

    rets = rng.normal(0.0, vol, size=n_ticks)
    rets[0] = 0.0
    prices = float(start_price) * np.exp(np.cumsum(rets))
    half_spread = prices * (spread_bp / 10_000.0) / 2.0
    volumes = rng.poisson(mean_volume, size=n_ticks).astype(np.float64)

    sym = symbol.strip().upper()
    ticks: List[Tick] = []
    for i in range(n_ticks):
        p = round(float(prices[i]), 4)
        hs = float(half_spread[i])
        ticks.append(
            Tick(
                time_us=t0 + i * step_us,
                symbol=sym,
                last_price=p,
                volume=float(volumes[i]),
                bid_price=round(p - hs, 4),
                ask_price=round(p + hs, 4),
                source=source,
            )
        )
    return ticks
