"""Health subsystem — probes, SQLite result store, rollups, scheduler."""

from .models import ErrorKind, Failure, Observation, Success
from .rollup import Bucket, InvalidParameter, rollup
from .scheduler import ProbeScheduler
from .store import ResultStore, StoreError
