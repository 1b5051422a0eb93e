"""probewatch — periodic HTTP/ping health probes with SQLite time series and rollups."""

__version__ = "0.1.0"
