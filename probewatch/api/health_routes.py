"""API routes for checks, raw observations and rollups.

Endpoints:
  GET /api/checks        — registry + latest observation + run state
  GET /api/observations  — raw rows in a time range
  GET /api/rollup        — min/avg/max/error buckets in contract order
  GET /api/metrics       — per-check series of bucket averages for charts
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from probewatch.health.rollup import InvalidParameter, rollup, window_resolution
from probewatch.health.store import StoreError
from probewatch.registry import ConfigError, parse_duration
from probewatch.registry.registry import check_to_dict

logger = logging.getLogger(__name__)

health_router = APIRouter()

DEFAULT_WINDOW = 3600.0  # seconds


def _duration(value: str, name: str) -> float:
    try:
        return parse_duration(value, name)
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _time_range(
    start: datetime | None, end: datetime | None, last: str | None,
) -> tuple[float, float]:
    """Resolve start/end/last query params into epoch seconds."""
    now = time.time()
    if last:
        return now - _duration(last, "last"), now
    end_ts = end.timestamp() if end else now
    start_ts = start.timestamp() if start else end_ts - DEFAULT_WINDOW
    if end_ts <= start_ts:
        raise HTTPException(status_code=400, detail="end must be after start")
    return start_ts, end_ts


# ── Checks ───────────────────────────────────────────────────────────────────


@health_router.get("/checks")
def list_checks(request: Request) -> dict[str, Any]:
    """List configured checks with latest observation and scheduler state."""
    registry = request.app.state.registry
    store = request.app.state.store
    scheduler = getattr(request.app.state, "scheduler", None)

    try:
        latest = store.latest()
    except StoreError as e:
        logger.error("Latest query failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e)) from e
    states = scheduler.snapshot() if scheduler else {}

    checks = []
    for check in registry:
        d = check_to_dict(check)
        obs = latest.get(check.name)
        d["latest"] = obs.to_dict() if obs else None
        d["run"] = states.get(check.name)
        checks.append(d)
    return {"checks": checks}


# ── Observations ─────────────────────────────────────────────────────────────


@health_router.get("/observations")
def list_observations(
    request: Request,
    check: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    last: str | None = None,
) -> dict[str, Any]:
    """Raw observations, oldest first."""
    store = request.app.state.store
    start_ts, end_ts = _time_range(start, end, last)
    try:
        rows = [obs.to_dict() for obs in store.query_range(start_ts, end_ts, check_name=check)]
    except StoreError as e:
        logger.error("Observation query failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {"start": start_ts, "end": end_ts, "observations": rows}


# ── Rollups ──────────────────────────────────────────────────────────────────


@health_router.get("/rollup")
def get_rollup(
    request: Request,
    window: str = "1h",
    bucket: str | None = None,
    check: str | None = None,
) -> dict[str, Any]:
    """Buckets ordered by (bucket_start, check_name, kind)."""
    store = request.app.state.store
    window_s = _duration(window, "window")
    bucket_s = _duration(bucket, "bucket") if bucket else window_resolution(window_s)
    now = time.time()
    try:
        buckets = rollup(store, window_s, bucket_s, now=now, check_name=check)
    except InvalidParameter as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except StoreError as e:
        logger.error("Rollup failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {
        "now": now,
        "window": window_s,
        "bucket_size": bucket_s,
        "buckets": [b.to_dict() for b in buckets.values()],
    }


@health_router.get("/metrics")
def get_metrics(
    request: Request,
    start: datetime | None = None,
    end: datetime | None = None,
    last: str | None = None,
) -> dict[str, Any]:
    """Series per (name, kind) of bucket averages, sized to the window."""
    store = request.app.state.store
    start_ts, end_ts = _time_range(start, end, last)
    window_s = end_ts - start_ts
    bucket_s = window_resolution(window_s)
    try:
        buckets = rollup(store, window_s, bucket_s, now=end_ts)
    except InvalidParameter as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except StoreError as e:
        logger.error("Metrics query failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e)) from e

    series: dict[tuple[str, str], dict[str, Any]] = {}
    for b in buckets.values():
        key = (b.check_name, b.kind.value)
        if key not in series:
            series[key] = {"name": b.check_name, "kind": b.kind.value, "values": []}
        value: dict[str, Any] = {"ts": b.bucket_start, "count": b.sample_count}
        if b.avg_ms is not None:
            value["ms"] = b.avg_ms
        if b.error_count:
            value["errors"] = b.error_count
        series[key]["values"].append(value)

    return {"bucket_size": bucket_s, "series": list(series.values())}
