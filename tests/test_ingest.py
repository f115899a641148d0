import unittest
from datetime import datetime, timezone

import numpy as np
import pandas as pd

from ingest_ticks import ticks_from_frame
from replay.types import to_epoch_us
from synthetic_ticks import generate_ticks

START = datetime(2026, 1, 16, 14, 30, tzinfo=timezone.utc)


class TickFrameTests(unittest.TestCase):
    def test_aliases_sorting_and_optional_columns(self):
        df = pd.DataFrame(
            {
                "Timestamp": ["2026-01-16T14:30:00.500Z", "2026-01-16T14:30:00Z", "2026-01-16T09:30:01-05:00"],
                "Price": [101.0, 100.0, 102.0],
                "Size": [5, 10, None],
            }
        )
        ticks = list(ticks_from_frame(df, symbol="aapl"))
        self.assertEqual([t.last_price for t in ticks], [100.0, 101.0, 102.0])
        self.assertEqual(ticks[0].time_us, to_epoch_us(START))
        self.assertEqual(ticks[1].time_us, to_epoch_us(START) + 500_000)
        self.assertEqual(ticks[2].time_us, to_epoch_us(START) + 1_000_000)
        self.assertEqual([t.volume for t in ticks], [10.0, 5.0, 0.0])
        self.assertTrue(all(t.symbol == "AAPL" and t.source == "csv" for t in ticks))
        self.assertIsNone(ticks[0].bid_price)

    def test_symbol_column_and_quotes(self):
        df = pd.DataFrame(
            {
                "time": ["2026-01-16T14:30:00Z", "2026-01-16T14:30:00Z"],
                "symbol": ["msft", "aapl"],
                "last_price": [400.0, 200.0],
                "bid": [399.9, np.nan],
                "ask": [400.1, np.nan],
            }
        )
        ticks = list(ticks_from_frame(df, source="vendor"))
        # equal timestamps keep file order
        self.assertEqual([t.symbol for t in ticks], ["MSFT", "AAPL"])
        self.assertEqual((ticks[0].bid_price, ticks[0].ask_price), (399.9, 400.1))
        self.assertIsNone(ticks[1].bid_price)
        self.assertEqual(ticks[0].source, "vendor")

    def test_rows_without_price_are_dropped(self):
        df = pd.DataFrame({"time": ["2026-01-16T14:30:00Z", "2026-01-16T14:30:01Z"], "price": [None, 5.0]})
        ticks = list(ticks_from_frame(df, symbol="X"))
        self.assertEqual(len(ticks), 1)

    def test_missing_columns(self):
        with self.assertRaises(ValueError):
            list(ticks_from_frame(pd.DataFrame({"time": ["2026-01-16T14:30:00Z"]}), symbol="X"))
        with self.assertRaises(ValueError):
            list(ticks_from_frame(pd.DataFrame({"time": ["2026-01-16T14:30:00Z"], "price": [1.0]})))


class SyntheticTickTests(unittest.TestCase):
    def test_deterministic_for_seed(self):
        a = generate_ticks("es", 5000.0, 200, start_ts=START, seed=3)
        b = generate_ticks("es", 5000.0, 200, start_ts=START, seed=3)
        self.assertEqual(a, b)
        self.assertNotEqual(a, generate_ticks("es", 5000.0, 200, start_ts=START, seed=4))

    def test_shape(self):
        ticks = generate_ticks("es", 5000.0, 100, start_ts=START, step_ms=250, seed=1)
        self.assertEqual(len(ticks), 100)
        self.assertEqual(ticks[0].last_price, 5000.0)
        self.assertEqual(ticks[1].time_us - ticks[0].time_us, 250_000)
        self.assertTrue(all(t.symbol == "ES" for t in ticks))
        self.assertTrue(all(t.bid_price < t.last_price < t.ask_price for t in ticks))
        self.assertEqual(generate_ticks("es", 5000.0, 0), [])


if __name__ == "__main__":
    unittest.main()
