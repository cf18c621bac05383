from __future__ import annotations

import os
import sys
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def default_backend() -> str:
    # dns-sd ships with macOS; everything else is expected to run avahi-daemon.
    return "dns-sd" if sys.platform == "darwin" else "avahi"


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("MDNSR_DB_PATH", "mdnsr.db")
    annotation_key: str = os.getenv("MDNSR_ANNOTATION_KEY", "mdnscontroller/enabled")
    log_level: str = os.getenv("MDNSR_LOG_LEVEL", "INFO")

    # Kubernetes watch
    namespace: str | None = os.getenv("MDNSR_NAMESPACE")
    all_namespaces: bool = _env_bool("MDNSR_ALL_NAMESPACES", False)
    kubeconfig: str | None = os.getenv("MDNSR_KUBECONFIG")
    kube_context: str | None = os.getenv("MDNSR_KUBE_CONTEXT")
    resync_period_s: int = _env_int("MDNSR_RESYNC_PERIOD_S", 600)
    watch_timeout_s: int = _env_int("MDNSR_WATCH_TIMEOUT_S", 60)
    sync_timeout_s: int = _env_int("MDNSR_SYNC_TIMEOUT_S", 60)

    # Advertisement
    backend: str = os.getenv("MDNSR_BACKEND", default_backend())
    ip_address: str | None = os.getenv("MDNSR_IP_ADDRESS")
    service_type: str = os.getenv("MDNSR_SERVICE_TYPE", "_http._tcp")
    service_port: int = _env_int("MDNSR_SERVICE_PORT", 80)
    stop_grace_s: float = _env_float("MDNSR_STOP_GRACE_S", 5.0)

    # Status API (port 0 disables it)
    api_host: str = os.getenv("MDNSR_API_HOST", "127.0.0.1")
    api_port: int = _env_int("MDNSR_API_PORT", 8089)


settings = Settings()
