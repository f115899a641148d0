from __future__ import annotations

import json

from replay.encoder import SSE_TRANSPORT, ReplayEvent, encode_stream, format_sse, run_batch, stream_events
from replay.errors import StoreError
from replay.scheduler import ReplayScheduler
from replay.validation import parse_replay_config


def _parse_sse(payload: bytes):
    events = []
    for block in payload.decode("utf-8").split("\n\n"):
        if not block.strip():
            continue
        kind, data = None, None
        for line in block.split("\n"):
            if line.startswith("event: "):
                kind = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((kind, data))
    return events


def _content(frames):
    ticks, candles = [], []
    for f in frames:
        ticks.extend(f.get("ticks") or [])
        candles.extend(f.get("candles") or [])
    return ticks, candles


def _config(iso, **extra):
    params = {"startTime": iso(0), "endTime": iso(3), "fps": "120", "speed": "100"}
    params.update(extra)
    return parse_replay_config(params)


def test_format_sse_framing():
    wire = format_sse(ReplayEvent("frame", {"b": 1, "a": [1, 2]}))
    assert wire == 'event: frame\ndata: {"a":[1,2],"b":1}\n\n'
    assert ReplayEvent("error", {}).terminal
    assert not ReplayEvent("frame", {}).terminal


def test_transport_disables_buffering():
    assert SSE_TRANSPORT.mimetype == "text/event-stream"
    assert "no-cache" in SSE_TRANSPORT.headers["Cache-Control"]
    assert SSE_TRANSPORT.headers["X-Accel-Buffering"] == "no"
    assert SSE_TRANSPORT.direct_passthrough


def test_event_order(store, quarter_second_ticks, iso):
    cfg = _config(iso, fps="4")
    events = list(stream_events(cfg, ReplayScheduler(cfg, store, paced=False).iter_frames()))
    kinds = [e.kind for e in events]
    assert kinds[0] == "config"
    assert kinds[-1] == "complete"
    assert set(kinds[1:-1]) == {"frame"}
    assert len(kinds) == 2 + 12
    assert [e.data["sequenceIndex"] for e in events[1:-1]] == list(range(12))
    assert events[0].data["fps"] == 4
    assert events[-1].data["ticksProcessed"] == 12


def test_mid_stream_failure_becomes_error_event(iso):
    cfg = _config(iso)

    class Boom:
        def to_dict(self):
            return {"sequenceIndex": 0}

    def frames():
        yield Boom()
        raise StoreError("disk went away")

    events = list(stream_events(cfg, frames()))
    assert [e.kind for e in events] == ["config", "frame", "error"]
    assert events[-1].data["error"] == {"code": "store_error", "message": "disk went away"}


def test_unexpected_failure_is_reported_not_dropped(iso):
    cfg = _config(iso)

    def frames():
        raise RuntimeError("bug")
        yield  # pragma: no cover

    events = list(stream_events(cfg, frames()))
    assert [e.kind for e in events] == ["config", "error"]
    assert events[-1].data["error"]["code"] == "internal_error"


def test_closing_the_stream_closes_upstream(iso):
    cfg = _config(iso)
    state = {"closed": False}

    class Frame:
        def to_dict(self):
            return {}

    def frames():
        try:
            while True:
                yield Frame()
        finally:
            state["closed"] = True

    events = stream_events(cfg, frames())
    assert next(events).kind == "config"
    assert next(events).kind == "frame"
    events.close()
    assert state["closed"]


def test_batch_matches_streaming_content(store, quarter_second_ticks, iso):
    cfg = _config(iso, format="both", candleInterval="1s", includeMetrics="true")

    streamed = b"".join(encode_stream(stream_events(cfg, ReplayScheduler(cfg, store).iter_frames())))
    events = _parse_sse(streamed)
    stream_frames = [d for k, d in events if k == "frame"]
    assert events[-1][0] == "complete"

    batch = run_batch(cfg, ReplayScheduler(cfg, store, paced=False).iter_frames())
    assert batch["success"] is True

    assert _content(batch["frames"]) == _content(stream_frames)
    assert batch["candles"] == _content(stream_frames)[1]
    assert len(batch["candles"]) == 3
    assert batch["metrics"] == events[-1][1]["metrics"]
    assert batch["metrics"]["ticksProcessed"] == 12
    assert batch["complete"] == events[-1][1]

    # Empty frames are dropped but keep their place in the sequence.
    assert len(batch["frames"]) < len(stream_frames)
    kept = [f["sequenceIndex"] for f in batch["frames"]]
    assert kept == sorted(kept)
    by_index = {f["sequenceIndex"]: f for f in stream_frames}
    for f in batch["frames"]:
        assert f == by_index[f["sequenceIndex"]]


def test_encoding_is_deterministic(store, quarter_second_ticks, iso):
    cfg = _config(iso, format="both", candleInterval="1s", includeMetrics="true")

    def wire():
        return b"".join(encode_stream(stream_events(cfg, ReplayScheduler(cfg, store, paced=False).iter_frames())))

    assert wire() == wire()


def test_batch_without_candles_or_metrics_has_no_such_keys(store, quarter_second_ticks, iso):
    cfg = _config(iso)
    batch = run_batch(cfg, ReplayScheduler(cfg, store, paced=False).iter_frames())
    assert "candles" not in batch
    assert "metrics" not in batch
    assert sum(len(f["ticks"]) for f in batch["frames"]) == 12
    assert batch["config"]["startTime"] == iso(0)


def test_batch_runs_are_byte_identical(store, quarter_second_ticks, iso):
    cfg = _config(iso, format="both", candleInterval="1s", includeMetrics="true", batch="true")

    def once():
        out = run_batch(cfg, ReplayScheduler(cfg, store, paced=False).iter_frames())
        return json.dumps(out["candles"], sort_keys=True), json.dumps(out["metrics"], sort_keys=True), out

    candles_a, metrics_a, a = once()
    candles_b, metrics_b, b = once()
    assert candles_a == candles_b
    assert metrics_a == metrics_b
    assert json.dumps(a, sort_keys=True) == json.dumps(b, sort_keys=True)
    assert json.loads(candles_a)
