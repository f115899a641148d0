import unittest
from datetime import datetime, timezone

from replay.errors import ValidationError
from replay.validation import parse_replay_config

START = "2026-01-16T14:30:00Z"
END = "2026-01-16T14:31:00Z"


def _params(**overrides):
    params = {"startTime": START, "endTime": END}
    params.update(overrides)
    return params


class ReplayConfigDefaultsTests(unittest.TestCase):
    def test_defaults(self):
        cfg = parse_replay_config(_params())
        self.assertEqual(cfg.start_time, datetime(2026, 1, 16, 14, 30, tzinfo=timezone.utc))
        self.assertEqual(cfg.end_time, datetime(2026, 1, 16, 14, 31, tzinfo=timezone.utc))
        self.assertIsNone(cfg.symbol)
        self.assertEqual(cfg.fps, 60)
        self.assertEqual(cfg.speed, 1.0)
        self.assertEqual(cfg.format, "ticks")
        self.assertEqual(cfg.candle_interval, "1m")
        self.assertFalse(cfg.include_metrics)
        self.assertIsNone(cfg.seek_to)
        self.assertFalse(cfg.batch)

    def test_full_config(self):
        cfg = parse_replay_config(
            _params(
                symbol=" aapl ",
                fps="30",
                speed="2.5",
                format="both",
                candleInterval="5s",
                includeMetrics="true",
                seekTo="2026-01-16T14:30:30Z",
                batch="1",
            )
        )
        self.assertEqual(cfg.symbol, "AAPL")
        self.assertEqual(cfg.fps, 30)
        self.assertEqual(cfg.speed, 2.5)
        self.assertTrue(cfg.wants_ticks and cfg.wants_candles)
        self.assertEqual(cfg.candle_interval_s, 5)
        self.assertTrue(cfg.include_metrics)
        self.assertTrue(cfg.batch)
        self.assertEqual(cfg.seek_to, datetime(2026, 1, 16, 14, 30, 30, tzinfo=timezone.utc))

    def test_offsets_and_naive_times_normalize_to_utc(self):
        cfg = parse_replay_config({"startTime": "2026-01-16T09:30:00-05:00", "endTime": "2026-01-16T14:31:00"})
        self.assertEqual(cfg.start_time, datetime(2026, 1, 16, 14, 30, tzinfo=timezone.utc))
        self.assertEqual(cfg.end_time.tzinfo, timezone.utc)

    def test_fractional_seconds_of_any_precision(self):
        cfg = parse_replay_config(
            {"startTime": "2026-01-16T14:30:00.5Z", "endTime": "2026-01-16T14:31:00.12345Z", "seekTo": "2026-01-16T14:30:01.2Z"}
        )
        self.assertEqual(cfg.start_time, datetime(2026, 1, 16, 14, 30, 0, 500000, tzinfo=timezone.utc))
        self.assertEqual(cfg.end_time.microsecond, 123450)
        self.assertEqual(cfg.seek_to.microsecond, 200000)

    def test_frame_delay_scales_with_speed(self):
        cfg = parse_replay_config(_params(fps="60", speed="2"))
        self.assertAlmostEqual(cfg.frame_duration_s, 1 / 60)
        self.assertAlmostEqual(cfg.frame_delay_s, 1 / 120)

    def test_seek_bounds_are_inclusive(self):
        self.assertIsNotNone(parse_replay_config(_params(seekTo=START)).seek_to)
        self.assertIsNotNone(parse_replay_config(_params(seekTo=END)).seek_to)


class ReplayConfigRejectionTests(unittest.TestCase):
    def assertRejected(self, field, **overrides):
        with self.assertRaises(ValidationError) as ctx:
            parse_replay_config(_params(**overrides))
        self.assertEqual(ctx.exception.field, field)
        return ctx.exception

    def test_boundary_values(self):
        cases = [
            ("fps", {"fps": "0"}),
            ("fps", {"fps": "121"}),
            ("speed", {"speed": "0.05"}),
            ("speed", {"speed": "101"}),
            ("endTime", {"endTime": START}),
            ("endTime", {"startTime": END, "endTime": START}),
        ]
        for field, overrides in cases:
            with self.subTest(**overrides):
                self.assertRejected(field, **overrides)

    def test_accepts_range_edges(self):
        for overrides in ({"fps": "1"}, {"fps": "120"}, {"speed": "0.1"}, {"speed": "100"}):
            with self.subTest(**overrides):
                parse_replay_config(_params(**overrides))

    def test_missing_bounds(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_replay_config({"endTime": END})
        self.assertEqual(ctx.exception.field, "startTime")
        with self.assertRaises(ValidationError) as ctx:
            parse_replay_config({"startTime": START})
        self.assertEqual(ctx.exception.field, "endTime")

    def test_malformed_values(self):
        self.assertRejected("startTime", startTime="yesterday")
        self.assertRejected("fps", fps="60.5")
        self.assertRejected("speed", speed="fast")
        self.assertRejected("speed", speed="nan")
        self.assertRejected("format", format="bars")
        self.assertRejected("candleInterval", candleInterval="2m")
        self.assertRejected("includeMetrics", includeMetrics="maybe")
        self.assertRejected("batch", batch="2")

    def test_seek_outside_window(self):
        err = self.assertRejected("seekTo", seekTo="2026-01-16T14:29:59Z")
        self.assertEqual(err.to_dict()["field"], "seekTo")
        self.assertRejected("seekTo", seekTo="2026-01-16T14:31:00.000001Z")
        self.assertRejected("seekTo", seekTo="not-a-time")


if __name__ == "__main__":
    unittest.main()
