from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import pytest

from database import ConnectionPool, init_database
from replay.store import TickStore
from replay.types import Tick, iso_z, to_epoch_us

T0 = datetime(2026, 1, 16, 14, 30, tzinfo=timezone.utc)


def _at(seconds: float) -> datetime:
    return T0 + timedelta(microseconds=int(round(seconds * 1_000_000)))


def make_tick(seconds: float, price: float, volume: float = 1.0, *, symbol: str = "AAPL", **kw) -> Tick:
    return Tick(
        time_us=to_epoch_us(_at(seconds)),
        symbol=symbol,
        last_price=price,
        volume=volume,
        **kw,
    )


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def iso():
    """iso(seconds) -> ISO-8601 Z string relative to T0."""
    return lambda seconds: iso_z(_at(seconds))


@pytest.fixture
def tick():
    return make_tick


@pytest.fixture
def pool(tmp_path):
    db_path = os.path.join(str(tmp_path), "ticks.db")
    init_database(db_path)
    p = ConnectionPool(db_path, max_size=4, timeout=1.0)
    yield p
    p.close()


@pytest.fixture
def store(pool):
    # Small pages so paging boundaries get exercised.
    return TickStore(pool, batch_size=3)


@pytest.fixture
def quarter_second_ticks(store):
    """AAPL ticks every 250ms over [0s, 3s): price 100 + i, volume i + 1."""
    ticks = [make_tick(i * 0.25, 100.0 + i, float(i + 1)) for i in range(12)]
    store.insert_ticks(ticks)
    return ticks


@pytest.fixture
def at():
    """at(seconds) -> aware datetime relative to T0."""
    return _at
