"""
Delivery of scheduler output.

The contract is a small event algebra (config / frame / complete / error);
`format_sse` is just one wire encoding of it. Streaming and batch both read
the same scheduler iterator, so the only thing batch mode skips is pacing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Literal, Optional

from replay.errors import ReplayError
from replay.types import ReplayComplete, ReplayConfig, ReplayFrame

logger = logging.getLogger(__name__)

EventKind = Literal["config", "frame", "complete", "error"]


@dataclass(frozen=True)
class ReplayEvent:
    kind: EventKind
    data: Dict[str, Any]

    @property
    def terminal(self) -> bool:
        return self.kind in ("complete", "error")


@dataclass(frozen=True)
class TransportConfig:
    """
    What the HTTP layer must honour for a replay stream: every event is
    flushed as soon as it is written, and no proxy may hold it back.
    """

    mimetype: str = "text/event-stream"
    headers: Dict[str, str] = field(
        default_factory=lambda: {
            "Cache-Control": "no-cache, no-transform",
            "X-Accel-Buffering": "no",
        }
    )
    direct_passthrough: bool = True


SSE_TRANSPORT = TransportConfig()


def _dumps(data: Dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), sort_keys=True)


def format_sse(event: ReplayEvent) -> str:
    return f"event: {event.kind}\ndata: {_dumps(event.data)}\n\n"


def stream_events(config: ReplayConfig, frames: Iterable[Any]) -> Iterator[ReplayEvent]:
    """
    config event, one frame event per frame as it arrives, then exactly one
    complete or error event. A ReplayError mid-stream becomes the error event;
    anything else is logged and reported the same way rather than cut short.
    """
    it = iter(frames)
    try:
        yield ReplayEvent("config", config.to_dict())
        for item in it:
            if isinstance(item, ReplayComplete):
                yield ReplayEvent("complete", item.to_dict())
                return
            yield ReplayEvent("frame", item.to_dict())
        # Scheduler stopped without completing (cancelled).
    except ReplayError as e:
        logger.error("replay stream failed: %s", e)
        yield ReplayEvent("error", {"error": e.to_dict()})
    except Exception as e:
        logger.exception("replay stream failed unexpectedly")
        yield ReplayEvent("error", {"error": {"code": "internal_error", "message": str(e)}})
    finally:
        close = getattr(it, "close", None)
        if close is not None:
            close()


def encode_stream(events: Iterable[ReplayEvent]) -> Iterator[bytes]:
    for ev in events:
        yield format_sse(ev).encode("utf-8")


def run_batch(config: ReplayConfig, frames: Iterable[Any]) -> Dict[str, Any]:
    """
    Drain the scheduler into one response.

    Frames with no ticks/candles/markers are left out of `frames`; the kept
    ones keep their sequenceIndex. Merged content is the same as a streaming
    run of the same config. Errors propagate to the caller.
    """
    kept: List[Dict[str, Any]] = []
    candles: List[Dict[str, Any]] = []
    complete: Optional[ReplayComplete] = None
    last_frame: Optional[ReplayFrame] = None
    for item in frames:
        if isinstance(item, ReplayComplete):
            complete = item
            break
        last_frame = item
        if item.candles:
            candles.extend(c.to_dict() for c in item.candles)
        if not item.is_empty:
            kept.append(item.to_dict())

    out: Dict[str, Any] = {
        "success": complete is not None,
        "config": config.to_dict(),
        "frames": kept,
    }
    if config.wants_candles:
        out["candles"] = candles
    if config.include_metrics:
        metrics = None
        if complete is not None and complete.metrics is not None:
            metrics = complete.metrics
        elif last_frame is not None:
            metrics = last_frame.metrics
        out["metrics"] = metrics.to_dict() if metrics is not None else None
    if complete is not None:
        out["complete"] = complete.to_dict()
    return out
