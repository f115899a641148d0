import atexit
import logging
from typing import Iterator, Optional

from flask import Flask, Response, current_app, jsonify, request

from config import AppConfig
from database import ConnectionPool, init_database
from replay.candles import aggregate_candles
from replay.encoder import SSE_TRANSPORT, encode_stream, run_batch, stream_events
from replay.errors import ReplayError, StoreError, ValidationError
from replay.markers import MarkerLookup
from replay.scheduler import ReplayItem, ReplayScheduler
from replay.store import TickCursor, TickStore
from replay.types import CANDLE_INTERVAL_SECONDS, to_epoch_us
from replay.validation import (
    DEFAULT_CANDLE_INTERVAL,
    FPS_MAX,
    FPS_MIN,
    SPEED_MAX,
    SPEED_MIN,
    parse_replay_config,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


def _bad_request(code: str, message: str, **extra):
    payload = {"error": {"code": code, "message": message}}
    if extra:
        payload["error"].update(extra)
    return jsonify(payload), 400


def _validation_error(e: ValidationError):
    return jsonify({"error": e.to_dict()}), 400


def _server_error(message: str, e: Exception):
    details = e.to_dict() if isinstance(e, ReplayError) else {"code": "internal_error", "message": str(e)}
    return jsonify({"error": message, "details": details}), 500


def _store() -> TickStore:
    return current_app.extensions["tick_store"]


def _marker_lookup() -> Optional[MarkerLookup]:
    return current_app.extensions.get("marker_lookup")


def _time_range(args):
    """Parse startTime/endTime for the non-replay endpoints; raises ValidationError."""
    out = []
    for name in ("startTime", "endTime"):
        raw = (args.get(name) or "").strip()
        if not raw:
            raise ValidationError(name, f"{name} is required")
        dt = parse_timestamp(raw)
        if dt is None:
            raise ValidationError(name, f"{name} must be an ISO-8601 timestamp", value=raw)
        out.append(dt)
    if out[0] >= out[1]:
        raise ValidationError("endTime", "startTime must be before endTime")
    return out[0], out[1]


def _prepend(first: ReplayItem, rest: Iterator[ReplayItem]) -> Iterator[ReplayItem]:
    try:
        yield first
        yield from rest
    finally:
        rest.close()


def api_replay():
    """
    Market replay.

    Streams `text/event-stream` (config, frame..., complete|error) unless
    batch=true, in which case the whole replay is returned as one JSON object.
    """
    try:
        cfg = parse_replay_config(request.args)
    except ValidationError as e:
        return _validation_error(e)

    scheduler = ReplayScheduler(cfg, _store(), marker_lookup=_marker_lookup(), paced=not cfg.batch)

    if cfg.batch:
        try:
            return jsonify(run_batch(cfg, scheduler.iter_frames()))
        except ReplayError as e:
            logger.error("batch replay failed: %s", e)
            return _server_error("Batch replay failed", e)
        except Exception as e:
            logger.exception("batch replay failed unexpectedly")
            return _server_error("Batch replay failed", e)

    # Produce the first frame before committing to a stream, so a store that
    # can't be read yields an error response instead of an empty stream.
    frames = scheduler.iter_frames()
    try:
        first = next(frames)
    except ReplayError as e:
        logger.error("replay failed before first frame: %s", e)
        return _server_error("Replay failed", e)
    except Exception as e:
        logger.exception("replay failed before first frame")
        return _server_error("Replay failed", e)

    events = stream_events(cfg, _prepend(first, frames))
    transport = SSE_TRANSPORT
    resp = Response(
        encode_stream(events),
        mimetype=transport.mimetype,
        headers=dict(transport.headers),
        direct_passthrough=transport.direct_passthrough,
    )
    return resp


def api_replay_info():
    try:
        info = _store().replay_info()
    except StoreError as e:
        return _server_error("Replay info unavailable", e)
    info.update(
        {
            "success": True,
            "capabilities": {
                "streaming": True,
                "batch": True,
                "candles": True,
                "metrics": True,
                "tradeMarkers": _marker_lookup() is not None,
                "speedControl": {"min": SPEED_MIN, "max": SPEED_MAX},
                "fpsControl": {"min": FPS_MIN, "max": FPS_MAX},
                "candleIntervals": list(CANDLE_INTERVAL_SECONDS),
            },
        }
    )
    return jsonify(info)


def api_replay_metadata():
    symbol = (request.args.get("symbol") or "").strip().upper()
    if not symbol:
        return _bad_request("missing_params", "symbol is required", field="symbol")
    try:
        start, end = _time_range(request.args)
    except ValidationError as e:
        return _validation_error(e)
    try:
        meta = _store().replay_metadata(symbol, start, end)
    except StoreError as e:
        return _server_error("Metadata query failed", e)
    if meta is None:
        return jsonify({"error": {"code": "no_data", "message": f"No tick data for {symbol} in range"}}), 404
    return jsonify({"success": True, "metadata": meta})


def api_replay_ticks():
    try:
        start, end = _time_range(request.args)
    except ValidationError as e:
        return _validation_error(e)
    cfg: AppConfig = current_app.config["REPLAY"]
    symbol = (request.args.get("symbol") or "").strip().upper() or None

    limit = request.args.get("limit", type=int) or cfg.ticks_default_limit
    limit = max(1, min(cfg.ticks_max_limit, int(limit)))

    after = None
    after_raw = (request.args.get("after") or "").strip()
    if after_raw:
        try:
            after = TickCursor.decode(after_raw)
        except ValueError:
            return _bad_request("invalid_param", "after must be a cursor returned by this endpoint", field="after")

    try:
        ticks, nxt = _store().page_ticks(start, end, symbol, limit=limit, after=after)
    except StoreError as e:
        return _server_error("Tick query failed", e)
    return jsonify(
        {
            "success": True,
            "query": {
                "startTime": request.args.get("startTime"),
                "endTime": request.args.get("endTime"),
                "symbol": symbol or "all",
                "limit": limit,
            },
            "pagination": {
                "returned": len(ticks),
                "hasMore": nxt is not None,
                "next": nxt.encode() if nxt is not None else None,
            },
            "ticks": [t.to_dict() for t in ticks],
        }
    )


def api_replay_candles():
    try:
        start, end = _time_range(request.args)
    except ValidationError as e:
        return _validation_error(e)
    interval = (request.args.get("candleInterval") or DEFAULT_CANDLE_INTERVAL).strip()
    if interval not in CANDLE_INTERVAL_SECONDS:
        return _validation_error(
            ValidationError("candleInterval", f"candleInterval must be one of {', '.join(CANDLE_INTERVAL_SECONDS)}", value=interval)
        )
    symbol = (request.args.get("symbol") or "").strip().upper() or None

    try:
        candles = [
            c.to_dict()
            for c in aggregate_candles(
                _store().fetch_ticks(start, end, symbol),
                interval,
                window_start_us=to_epoch_us(start),
                window_end_us=to_epoch_us(end),
            )
        ]
    except ReplayError as e:
        return _server_error("Candle query failed", e)
    return jsonify({"success": True, "symbol": symbol, "candleInterval": interval, "candles": candles})


def create_app(cfg: Optional[AppConfig] = None, *, marker_lookup: Optional[MarkerLookup] = None) -> Flask:
    cfg = cfg or AppConfig.from_env()
    app = Flask(__name__)
    app.config["REPLAY"] = cfg

    init_database(cfg.db_path)
    pool = ConnectionPool(cfg.db_path, max_size=cfg.pool_size, timeout=cfg.pool_timeout_s)
    atexit.register(pool.close)

    app.extensions["tick_pool"] = pool
    app.extensions["tick_store"] = TickStore(pool, batch_size=cfg.page_size)
    if marker_lookup is not None:
        app.extensions["marker_lookup"] = marker_lookup

    app.add_url_rule("/api/replay", "api_replay", api_replay)
    app.add_url_rule("/api/replay/info", "api_replay_info", api_replay_info)
    app.add_url_rule("/api/replay/metadata", "api_replay_metadata", api_replay_metadata)
    app.add_url_rule("/api/replay/ticks", "api_replay_ticks", api_replay_ticks)
    app.add_url_rule("/api/replay/candles", "api_replay_candles", api_replay_candles)
    return app


if __name__ == '__main__':
    settings = AppConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(settings)
    print("="*70)
    print("Starting Tick Replay Server...")
    print("="*70)
    print(f"Available routes:")
    with app.app_context():
        for rule in app.url_map.iter_rules():
            methods = ', '.join([m for m in rule.methods if m not in ['HEAD', 'OPTIONS']])
            print(f"  {methods:20} {rule}")
    print("="*70)
    print(f"\nServer running at: http://127.0.0.1:5000  (db: {settings.db_path})")
    print("="*70)
    print()
    app.run(debug=False, host='127.0.0.1', port=5000, threaded=True)
