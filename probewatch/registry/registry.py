"""Check registry — loads checks.yaml and provides typed, validated checks.

Single source of truth for what gets probed.
The scheduler iterates it; the API lists it. Nothing mutates it after load.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60.0  # seconds
DEFAULT_TIMEOUT = 10.0  # seconds

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigError(Exception):
    """Raised when the check configuration is invalid. Fatal to startup."""


# ── Data models ──────────────────────────────────────────────────────────────


class CheckKind(str, Enum):
    HTTP = "http"
    PING = "ping"


@dataclass(frozen=True)
class Check:
    """A configured target probed periodically."""

    name: str
    kind: CheckKind
    target: str
    interval: float  # seconds
    timeout: float  # seconds
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12], compare=False)

    def __str__(self) -> str:
        return f"{self.name} ({self.kind.value})"


# ── Registry ─────────────────────────────────────────────────────────────────


class CheckRegistry:
    """Immutable, ordered set of checks."""

    def __init__(self, checks: tuple[Check, ...] = ()) -> None:
        self._checks = tuple(checks)
        self._by_name = {c.name: c for c in self._checks}

    @classmethod
    def from_file(cls, path: Path | str) -> "CheckRegistry":
        """Parse a checks.yaml file. Raises ``ConfigError`` on any problem."""
        path = Path(path)
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigError(f"Could not read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse config file {path}: {e}") from e

        registry = cls(load(raw or {}))
        logger.info("Loaded %d checks from %s", len(registry), path)
        return registry

    @property
    def checks(self) -> tuple[Check, ...]:
        return self._checks

    def get(self, name: str) -> Check | None:
        return self._by_name.get(name)

    def __iter__(self):
        return iter(self._checks)

    def __len__(self) -> int:
        return len(self._checks)

    def to_dict(self) -> list[dict[str, Any]]:
        """Serialize all checks for the API."""
        return [check_to_dict(c) for c in self._checks]


# ── Parsers ──────────────────────────────────────────────────────────────────


def load(config: dict[str, Any]) -> tuple[Check, ...]:
    """Validate a parsed configuration mapping into checks, in file order.

    Accepts a ``checks:`` list and the grouped ``http:`` / ``ping:`` form.
    File-wide ``interval`` and ``timeout`` act as per-check defaults.
    """
    if not isinstance(config, dict):
        raise ConfigError("Config must be a mapping")

    interval = parse_duration(config.get("interval", DEFAULT_INTERVAL), "interval")
    timeout = parse_duration(config.get("timeout", DEFAULT_TIMEOUT), "timeout")

    entries: list[dict[str, Any]] = []
    for entry in config.get("checks") or []:
        if not isinstance(entry, dict):
            raise ConfigError(f"Check entry must be a mapping, got: {entry!r}")
        entries.append(entry)

    # Grouped form: { http: { name: {url: ...} }, ping: { name: {host: ...} } }
    for group in ("http", "ping"):
        if not isinstance(config.get(group) or {}, dict):
            raise ConfigError(f"'{group}' must map check names to settings")
    for name, c in (config.get("http") or {}).items():
        c = _group_entry(name, c)
        entries.append({**c, "name": name, "kind": "http", "target": c.get("url", c.get("target"))})
    for name, c in (config.get("ping") or {}).items():
        c = _group_entry(name, c)
        entries.append({**c, "name": name, "kind": "ping", "target": c.get("host", c.get("target"))})

    checks: list[Check] = []
    seen: set[str] = set()
    for entry in entries:
        check = _parse_check(entry, interval, timeout)
        if check.name in seen:
            raise ConfigError(f"Duplicate check name: {check.name}")
        seen.add(check.name)
        checks.append(check)
    return tuple(checks)


def _parse_check(raw: dict[str, Any], default_interval: float, default_timeout: float) -> Check:
    name = str(raw.get("name") or "").strip()
    if not name:
        raise ConfigError(f"Check is missing a name: {raw!r}")

    kind_raw = raw.get("kind", raw.get("type"))
    try:
        kind = CheckKind(kind_raw)
    except ValueError:
        raise ConfigError(
            f"Check '{name}': unknown kind {kind_raw!r} (expected one of: http, ping)"
        ) from None

    target = str(raw.get("target") or "").strip()
    if not target:
        raise ConfigError(f"Check '{name}': target is required")
    if kind is CheckKind.HTTP:
        parts = urlsplit(target)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigError(f"Check '{name}': not an http(s) URL: {target}")

    interval = parse_duration(raw.get("interval", default_interval), f"{name}.interval")
    timeout = parse_duration(raw.get("timeout", default_timeout), f"{name}.timeout")

    return Check(name=name, kind=kind, target=target, interval=interval, timeout=timeout)


def parse_duration(value: Any, field_name: str = "duration") -> float:
    """Parse ``30``, ``"30s"``, ``"500ms"``, ``"1m30s"`` into positive seconds."""
    if isinstance(value, bool):
        raise ConfigError(f"{field_name}: not a duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().replace(" ", "")
        parts = _DURATION_PART.findall(text)
        if not parts or "".join(n + u for n, u in parts) != text:
            raise ConfigError(f"{field_name}: not a duration: {value!r}")
        seconds = sum(float(n) * _UNIT_SECONDS[u] for n, u in parts)
    else:
        raise ConfigError(f"{field_name}: not a duration: {value!r}")

    if seconds <= 0:
        raise ConfigError(f"{field_name}: must be greater than zero, got {value!r}")
    return seconds


def check_to_dict(c: Check) -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "kind": c.kind.value,
        "target": c.target,
        "interval": c.interval,
        "timeout": c.timeout,
    }


def _group_entry(name: str, raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Check '{name}': settings must be a mapping, got {raw!r}")
    return raw
