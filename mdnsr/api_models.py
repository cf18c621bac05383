from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = Field(..., description="ok|syncing")


class AdvertisedHostModel(BaseModel):
    host: str = Field(..., description="Hostname being advertised")
    started_at: str = Field(..., description="UTC timestamp the host was registered")
    alive: bool = Field(..., description="Whether the advertiser thread is still running")


class HostsResponse(BaseModel):
    address: str
    backend: str
    dry_run: bool = Field(False, description="Hosts are only logged, nothing is advertised")
    hosts: list[AdvertisedHostModel]


class EventModel(BaseModel):
    id: int
    ts: str
    level: str
    host: str | None = None
    ingress: str | None = None
    message: str
