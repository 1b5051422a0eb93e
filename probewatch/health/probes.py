"""Probe executors — one network measurement per call, no retries.

Supports: HTTP(S) GET, ICMP echo via the system ``ping`` binary.
Each probe maps ``(target, timeout) -> Outcome``; failures are returned, not raised.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import subprocess
import time
from collections.abc import Callable

import httpx

from probewatch.health.models import ErrorKind, Failure, Outcome, Success
from probewatch.registry import Check, CheckKind

logger = logging.getLogger(__name__)

ProbeFn = Callable[[str, float], Outcome]

_PING_TIME = re.compile(r"time[=<]\s*([\d.]+)\s*ms")
_PERMISSION_HINTS = ("operation not permitted", "permission denied")
_UNREACHABLE_HINTS = ("unreachable", "unknown host", "name or service not known", "temporary failure")


def _elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


# ── HTTP ─────────────────────────────────────────────────────────────────────


def probe_http(target: str, timeout: float) -> Outcome:
    """Single GET request. Any response status counts as a measurement.

    ``timeout`` bounds the whole request, not each socket operation, so a
    target trickling its response cannot hold the worker thread past it.
    Latency is time to response headers; the body is never read.
    """
    t0 = time.perf_counter()
    try:
        code = asyncio.run(asyncio.wait_for(_fetch_status(target, timeout), timeout=timeout))
        return Success(latency_ms=_elapsed_ms(t0), code=code)
    except (httpx.TimeoutException, asyncio.TimeoutError) as e:
        return Failure(ErrorKind.TIMEOUT, f"Timed out after {timeout:g}s: {type(e).__name__}")
    except (httpx.ProtocolError, httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
        return Failure(ErrorKind.PROTOCOL, f"{type(e).__name__}: {e}")
    except httpx.TransportError as e:
        return Failure(ErrorKind.CONNECTION, f"{type(e).__name__}: {e}")
    except httpx.HTTPError as e:
        return Failure(ErrorKind.PROTOCOL, f"{type(e).__name__}: {e}")


async def _fetch_status(target: str, timeout: float) -> int:
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=False) as client:
        async with client.stream("GET", target) as resp:
            return resp.status_code


# ── Ping ─────────────────────────────────────────────────────────────────────


def probe_ping(target: str, timeout: float) -> Outcome:
    """Single ICMP echo with ``timeout`` as the reply deadline."""
    deadline = max(1, math.ceil(timeout))
    cmd = ["ping", "-n", "-c", "1", "-W", str(deadline), target]
    t0 = time.perf_counter()
    try:
        completed = subprocess.run(
            cmd, capture_output=True, text=True, timeout=timeout + 1, check=False,
        )
    except subprocess.TimeoutExpired:
        return Failure(ErrorKind.TIMEOUT, f"No reply within {timeout:g}s")
    except OSError as e:
        # ping binary missing or not executable
        return Failure(ErrorKind.PERMISSION, f"Cannot run ping: {e}")

    wall_ms = _elapsed_ms(t0)
    output = f"{completed.stdout}\n{completed.stderr}".strip()
    lowered = output.lower()

    if completed.returncode == 0:
        match = _PING_TIME.search(completed.stdout)
        latency = int(float(match.group(1))) if match else wall_ms
        return Success(latency_ms=latency)

    if any(h in lowered for h in _PERMISSION_HINTS):
        return Failure(ErrorKind.PERMISSION, _last_line(output))
    if any(h in lowered for h in _UNREACHABLE_HINTS) or completed.returncode != 1:
        return Failure(ErrorKind.UNREACHABLE, _last_line(output) or f"ping exited {completed.returncode}")
    # exit 1 with no error text: the deadline passed without a reply
    return Failure(ErrorKind.TIMEOUT, f"No reply within {deadline}s")


def _last_line(text: str) -> str:
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    return lines[-1] if lines else ""


# Dispatcher
PROBES: dict[CheckKind, ProbeFn] = {
    CheckKind.HTTP: probe_http,
    CheckKind.PING: probe_ping,
}


def run_probe(check: Check, probes: dict[CheckKind, ProbeFn] | None = None) -> Outcome:
    """Run the probe matching the check's kind; ``probes`` overrides the defaults per kind."""
    probe = {**PROBES, **(probes or {})}[check.kind]
    outcome = probe(check.target, check.timeout)
    logger.debug("Probe %s -> %s", check, outcome)
    return outcome
