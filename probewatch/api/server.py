"""FastAPI server for the probe agent."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from probewatch import __version__
from probewatch.api.health_routes import health_router
from probewatch.config import settings
from probewatch.health.scheduler import ProbeScheduler
from probewatch.health.store import ResultStore
from probewatch.registry import CheckRegistry, ConfigError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load checks, open the store and start probing on startup."""
    # ConfigError propagates: never run with a partially valid registry
    registry = CheckRegistry.from_file(settings.checks_file)
    app.state.registry = registry

    store = ResultStore(settings.db_path)
    recorded = store.kinds()
    changed = [c for c in registry if recorded.get(c.name, c.kind) is not c.kind]
    if changed:
        store.close()
        raise ConfigError(
            "Checks changed kind since their rows were stored: "
            + ", ".join(f"{c.name} ({recorded[c.name].value} -> {c.kind.value})" for c in changed)
        )
    app.state.store = store

    scheduler = ProbeScheduler(registry, store, max_workers=settings.probe_workers)
    app.state.scheduler = scheduler
    await scheduler.start()

    yield

    # Shutdown
    await scheduler.stop()
    store.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="probewatch",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api")

    return app


app = create_app()
