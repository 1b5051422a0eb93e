"""Observation model — one recorded outcome per completed probe."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from probewatch.registry import CheckKind


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION = "connection_error"
    PROTOCOL = "protocol_error"
    UNREACHABLE = "unreachable"
    PERMISSION = "permission_error"


@dataclass(frozen=True)
class Success:
    """The probe completed; ``code`` is the HTTP status for http checks."""

    latency_ms: int
    code: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.latency_ms, bool) or not isinstance(self.latency_ms, int) or self.latency_ms < 0:
            raise TypeError(f"latency_ms must be a non-negative int, got {self.latency_ms!r}")


@dataclass(frozen=True)
class Failure:
    """The probe did not complete."""

    error_kind: ErrorKind
    error_detail: str = ""


Outcome = Union[Success, Failure]


@dataclass(frozen=True)
class Observation:
    """A single completed probe attempt. Exactly one of success/failure."""

    check_name: str
    kind: CheckKind
    outcome: Outcome
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not isinstance(self.outcome, (Success, Failure)):
            raise TypeError(f"outcome must be Success or Failure, got {type(self.outcome).__name__}")

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Success)

    @property
    def latency_ms(self) -> int | None:
        return self.outcome.latency_ms if isinstance(self.outcome, Success) else None

    @property
    def code(self) -> int | None:
        return self.outcome.code if isinstance(self.outcome, Success) else None

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.outcome.error_kind if isinstance(self.outcome, Failure) else None

    @property
    def error(self) -> str | None:
        return self.outcome.error_detail if isinstance(self.outcome, Failure) else None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "check_name": self.check_name,
            "kind": self.kind.value,
            "timestamp": self.timestamp,
        }
        if isinstance(self.outcome, Success):
            d["latency_ms"] = self.outcome.latency_ms
            if self.outcome.code is not None:
                d["code"] = self.outcome.code
        else:
            d["error_kind"] = self.outcome.error_kind.value
            d["error"] = self.outcome.error_detail
        return d
