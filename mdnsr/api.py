from __future__ import annotations

from threading import Thread
from typing import Callable

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from . import db
from .api_models import AdvertisedHostModel, EventModel, HealthResponse, HostsResponse
from .supervisor import LoggingHostHandler, ProcessSupervisor


def create_app(
    supervisor: ProcessSupervisor,
    is_ready: Callable[[], bool],
    dry_run: LoggingHostHandler | None = None,
) -> FastAPI:
    """Status app. With ``dry_run`` set, /hosts lists the logged intents instead of live advertisers."""
    app = FastAPI(title="mDNS Ingress Reconciler")

    @app.get("/healthz", response_model=HealthResponse)
    def healthz() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/readyz", response_model=HealthResponse)
    def readyz():
        if not is_ready():
            return JSONResponse(status_code=503, content={"status": "syncing"})
        return HealthResponse(status="ok")

    @app.get("/hosts", response_model=HostsResponse)
    def hosts() -> HostsResponse:
        if dry_run is not None:
            return HostsResponse(
                address=supervisor.address,
                backend=supervisor.backend.name,
                dry_run=True,
                hosts=[AdvertisedHostModel(host=h, started_at=ts, alive=False) for h, ts in dry_run.hosts()],
            )
        entries = sorted(supervisor.registry.entries(), key=lambda e: e.host)
        return HostsResponse(
            address=supervisor.address,
            backend=supervisor.backend.name,
            hosts=[
                AdvertisedHostModel(
                    host=e.host,
                    started_at=e.started_at,
                    alive=bool(e.thread and e.thread.is_alive()),
                )
                for e in entries
            ],
        )

    @app.get("/events", response_model=list[EventModel])
    def events(limit: int = Query(50, ge=1, le=1000), host: str | None = None) -> list[EventModel]:
        return [EventModel(**row) for row in db.latest_events(limit=limit, host=host)]

    return app


class ApiServer:
    """uvicorn on a daemon thread so the main thread can own signal handling."""

    def __init__(self, app: FastAPI, host: str, port: int):
        # uvicorn skips its own signal handlers off the main thread.
        self.server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
        self._thr: Thread | None = None

    def start(self) -> None:
        self._thr = Thread(target=self.server.run, name="api", daemon=True)
        self._thr.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self.server.should_exit = True
        if self._thr:
            self._thr.join(timeout)
