"""Rollup engine — buckets stored observations into fixed windows.

Stateless: every call reads the store afresh, so results always reflect the
latest committed rows and two calls with no writes in between agree.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any

from probewatch.health.store import ResultStore
from probewatch.registry import CheckKind


class InvalidParameter(Exception):
    """Raised when window / bucket_size are contradictory."""


@dataclass(frozen=True)
class Bucket:
    """Summary of one check's observations in ``[bucket_start, bucket_start + size)``."""

    check_name: str
    kind: CheckKind
    bucket_start: int
    min_ms: int | None
    avg_ms: int | None
    max_ms: int | None
    sample_count: int
    error_count: int

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        return d


class _Acc:
    __slots__ = ("count", "errors", "total", "lo", "hi", "ok")

    def __init__(self) -> None:
        self.count = 0
        self.errors = 0
        self.ok = 0
        self.total = 0
        self.lo: int | None = None
        self.hi: int | None = None


def rollup(
    store: ResultStore,
    window: float,
    bucket_size: int,
    now: float | None = None,
    check_name: str | None = None,
) -> dict[tuple[str, int], Bucket]:
    """Aggregate observations in ``[now - window, now]`` by (check, bucket).

    Returns buckets keyed by ``(check_name, bucket_start)`` in
    ``(bucket_start, check_name, kind)`` order. Empty buckets are omitted.
    """
    if isinstance(bucket_size, bool) or bucket_size <= 0 or bucket_size != int(bucket_size):
        raise InvalidParameter(f"bucket_size must be a positive whole number of seconds, got {bucket_size!r}")
    if window < bucket_size:
        raise InvalidParameter(f"window ({window}s) must be >= bucket_size ({bucket_size}s)")
    bucket_size = int(bucket_size)
    now = time.time() if now is None else now

    groups: dict[tuple[int, str, str], _Acc] = {}
    for obs in store.query_range(now - window, now, check_name=check_name):
        start = int(obs.timestamp // bucket_size) * bucket_size
        key = (start, obs.check_name, obs.kind.value)
        acc = groups.get(key)
        if acc is None:
            acc = groups[key] = _Acc()
        acc.count += 1
        latency = obs.latency_ms
        if latency is None:
            acc.errors += 1
            continue
        acc.ok += 1
        acc.total += latency
        acc.lo = latency if acc.lo is None else min(acc.lo, latency)
        acc.hi = latency if acc.hi is None else max(acc.hi, latency)

    result: dict[tuple[str, int], Bucket] = {}
    # the store records each name under one kind, so (name, start) is unique
    for (start, name, kind), acc in sorted(groups.items()):
        result[(name, start)] = Bucket(
            check_name=name,
            kind=CheckKind(kind),
            bucket_start=start,
            min_ms=acc.lo,
            avg_ms=acc.total // acc.ok if acc.ok else None,
            max_ms=acc.hi,
            sample_count=acc.count,
            error_count=acc.errors,
        )
    return result


def window_resolution(window: float) -> int:
    """Default bucket size for a window: 1s up to 10 minutes, else 5s."""
    if window <= 600:
        return 1
    return 5
