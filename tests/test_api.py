"""Tests for the FastAPI query routes."""

from __future__ import annotations

import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml
from fastapi.testclient import TestClient

from conftest import err, ok
from probewatch.api.server import create_app
from probewatch.health.store import ResultStore, StoreError
from probewatch.registry import Check, CheckKind, CheckRegistry, ConfigError


@pytest.fixture
def registry() -> CheckRegistry:
    return CheckRegistry((
        Check(name="web", kind=CheckKind.HTTP, target="https://example.com", interval=30, timeout=5),
        Check(name="gw", kind=CheckKind.PING, target="10.0.0.1", interval=10, timeout=2),
    ))


@pytest.fixture
def client(registry: CheckRegistry, store: ResultStore) -> TestClient:
    """Client wired to a real store; lifespan is not run."""
    app = create_app()
    app.state.registry = registry
    app.state.store = store
    scheduler = MagicMock()
    scheduler.snapshot.return_value = {"web": {"state": "idle", "runs": 3}}
    app.state.scheduler = scheduler
    return TestClient(app)


class TestChecksEndpoint:
    def test_list_checks(self, client: TestClient, store: ResultStore) -> None:
        store.append(ok("web", time.time() - 1, 42))
        resp = client.get("/api/checks")
        assert resp.status_code == 200
        checks = {c["name"]: c for c in resp.json()["checks"]}
        assert set(checks) == {"web", "gw"}
        assert checks["web"]["latest"]["latency_ms"] == 42
        assert checks["web"]["run"] == {"state": "idle", "runs": 3}
        assert checks["gw"]["latest"] is None
        assert checks["gw"]["run"] is None


class TestObservationsEndpoint:
    def test_last(self, client: TestClient, store: ResultStore) -> None:
        now = time.time()
        store.append(ok("web", now - 5, 10))
        store.append(err("gw", now - 3))
        store.append(ok("web", now - 7200, 99))
        resp = client.get("/api/observations", params={"last": "1m"})
        assert resp.status_code == 200
        rows = resp.json()["observations"]
        assert [r["check_name"] for r in rows] == ["web", "gw"]
        assert rows[1]["error_kind"] == "timeout"
        assert "latency_ms" not in rows[1]

    def test_filter_by_check(self, client: TestClient, store: ResultStore) -> None:
        now = time.time()
        store.append(ok("web", now - 5, 10))
        store.append(err("gw", now - 3))
        resp = client.get("/api/observations", params={"last": "1m", "check": "gw"})
        assert [r["check_name"] for r in resp.json()["observations"]] == ["gw"]

    def test_end_before_start(self, client: TestClient) -> None:
        resp = client.get("/api/observations", params={
            "start": "2025-01-02T00:00:00Z", "end": "2025-01-01T00:00:00Z",
        })
        assert resp.status_code == 400

    def test_bad_duration(self, client: TestClient) -> None:
        resp = client.get("/api/observations", params={"last": "forever"})
        assert resp.status_code == 400

    def test_store_error_is_500(self, client: TestClient) -> None:
        client.app.state.store = MagicMock()
        client.app.state.store.query_range.side_effect = StoreError("database is locked")
        resp = client.get("/api/observations", params={"last": "1m"})
        assert resp.status_code == 500


class TestRollupEndpoint:
    def test_rollup(self, client: TestClient, store: ResultStore) -> None:
        now = time.time()
        for ms in (10, 20, 30):
            store.append(ok("web", now - 2, ms))
        resp = client.get("/api/rollup", params={"window": "1m", "bucket": "1m"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["bucket_size"] == 60
        buckets = data["buckets"]
        assert sum(b["sample_count"] for b in buckets) == 3
        assert all(b["error_count"] == 0 for b in buckets)
        assert min(b["min_ms"] for b in buckets) == 10

    def test_default_bucket_from_window(self, client: TestClient) -> None:
        resp = client.get("/api/rollup", params={"window": "5m"})
        assert resp.status_code == 200
        assert resp.json()["bucket_size"] == 1
        assert resp.json()["buckets"] == []

    def test_window_smaller_than_bucket(self, client: TestClient) -> None:
        resp = client.get("/api/rollup", params={"window": "5s", "bucket": "10s"})
        assert resp.status_code == 400

    def test_fractional_bucket(self, client: TestClient) -> None:
        resp = client.get("/api/rollup", params={"window": "1m", "bucket": "500ms"})
        assert resp.status_code == 400


class TestMetricsEndpoint:
    def test_series_shape(self, client: TestClient, store: ResultStore) -> None:
        now = time.time()
        store.append(ok("web", now - 30, 10))
        store.append(ok("web", now - 20, 20))
        store.append(err("gw", now - 10))
        resp = client.get("/api/metrics", params={"last": "2m"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["bucket_size"] == 1
        series = {(s["name"], s["kind"]): s for s in data["series"]}
        assert [v["ms"] for v in series[("web", "http")]["values"]] == [10, 20]
        gw = series[("gw", "ping")]["values"]
        assert gw[0]["errors"] == 1
        assert "ms" not in gw[0]

    def test_invalid_range(self, client: TestClient) -> None:
        resp = client.get("/api/metrics", params={
            "start": "2025-01-01T00:00:10Z", "end": "2025-01-01T00:00:00Z",
        })
        assert resp.status_code == 400


class TestLifespan:
    def test_startup_loads_config_and_serves(self, tmp_path: Path) -> None:
        checks_file = tmp_path / "checks.yaml"
        checks_file.write_text(yaml.dump({
            "checks": [{"name": "gw", "kind": "ping", "target": "10.0.0.1", "interval": 60}],
        }), encoding="utf-8")

        with patch("probewatch.api.server.settings") as mock_settings, \
                patch("probewatch.health.probes.subprocess.run") as mock_run:
            mock_settings.checks_file = str(checks_file)
            mock_settings.db_path = str(tmp_path / "data" / "checks.db")
            mock_settings.probe_workers = 0
            mock_run.side_effect = FileNotFoundError("ping")
            app = create_app()
            with TestClient(app) as client:
                resp = client.get("/api/checks")
                assert resp.status_code == 200
                assert [c["name"] for c in resp.json()["checks"]] == ["gw"]

    def test_invalid_config_is_fatal(self, tmp_path: Path) -> None:
        checks_file = tmp_path / "checks.yaml"
        checks_file.write_text(yaml.dump({
            "checks": [{"name": "gw", "kind": "smtp", "target": "mail.local"}],
        }), encoding="utf-8")

        with patch("probewatch.api.server.settings") as mock_settings:
            mock_settings.checks_file = str(checks_file)
            mock_settings.db_path = str(tmp_path / "checks.db")
            mock_settings.probe_workers = 0
            app = create_app()
            with pytest.raises(ConfigError):
                with TestClient(app):
                    pass

    def test_check_changed_kind_is_fatal(self, tmp_path: Path) -> None:
        db_path = tmp_path / "checks.db"
        old = ResultStore(db_path)
        old.append(ok("gw", 100.0, 5))
        old.close()
        checks_file = tmp_path / "checks.yaml"
        checks_file.write_text(yaml.dump({
            "checks": [{"name": "gw", "kind": "ping", "target": "10.0.0.1"}],
        }), encoding="utf-8")

        with patch("probewatch.api.server.settings") as mock_settings:
            mock_settings.checks_file = str(checks_file)
            mock_settings.db_path = str(db_path)
            mock_settings.probe_workers = 0
            app = create_app()
            with pytest.raises(ConfigError, match=r"gw \(http -> ping\)"):
                with TestClient(app):
                    pass
