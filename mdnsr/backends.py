from __future__ import annotations

import shutil
import socket
import subprocess
from collections import deque
from threading import Thread
from typing import Protocol

from zeroconf import ServiceInfo, Zeroconf

from . import db
from .cancel import CancelScope
from .errors import BackendExited, BackendUnavailable
from .settings import Settings, settings

STDERR_TAIL_LINES = 20
STDERR_LINE_MAX = 500


class Backend(Protocol):
    name: str

    def advertise(self, host: str, address: str, scope: CancelScope) -> None:
        """Advertise ``host`` -> ``address`` until ``scope`` is cancelled.

        Returning or raising before cancellation means the advertiser died.
        """
        ...


class SubprocessBackend:
    """Keeps one advertiser process alive per call to ``advertise``.

    On cancellation the process gets SIGTERM, then SIGKILL after
    ``stop_grace_s``.
    """

    name = "subprocess"

    def __init__(self, stop_grace_s: float = 5.0, poll_interval_s: float = 0.5):
        self.stop_grace_s = stop_grace_s
        self.poll_interval_s = poll_interval_s

    def command(self, host: str, address: str) -> list[str]:
        raise NotImplementedError

    def advertise(self, host: str, address: str, scope: CancelScope) -> None:
        argv = self.command(host, address)
        if shutil.which(argv[0]) is None:
            raise BackendUnavailable(f"'{argv[0]}' not found on PATH")

        proc = subprocess.Popen(argv, stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
        db.log_event("INFO", f"Started {argv[0]} (pid {proc.pid})", host=host)
        tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        reader = Thread(target=_forward_stderr, args=(proc, argv[0], host, tail), name=f"stderr-{host}", daemon=True)
        reader.start()
        try:
            while not scope.wait(self.poll_interval_s):
                rc = proc.poll()
                if rc is not None:
                    reader.join(1.0)
                    if tail:
                        db.log_event("WARN", f"{argv[0]}: {' | '.join(tail)}", host=host)
                    raise BackendExited(host, rc)
        finally:
            self._stop(proc, host)
            reader.join(1.0)

    def _stop(self, proc: subprocess.Popen, host: str) -> None:
        if proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=self.stop_grace_s)
        except subprocess.TimeoutExpired:
            db.log_event("WARN", f"pid {proc.pid} ignored SIGTERM, killing", host=host)
            proc.kill()
            proc.wait()


def _forward_stderr(proc: subprocess.Popen, program: str, host: str, tail: deque[str]) -> None:
    """Drain the child's stderr for its whole life so it never blocks on a full pipe."""
    if proc.stderr is None:
        return
    try:
        for raw in proc.stderr:
            line = raw.decode(errors="replace").strip()
            if not line:
                continue
            line = line[:STDERR_LINE_MAX]
            tail.append(line)
            db.logger.info("%s[%s] %s: %s", program, proc.pid, host, line)
    except (OSError, ValueError) as e:
        db.logger.debug("stderr reader for %s stopped: %s", host, e)
    finally:
        proc.stderr.close()


class DnsSdBackend(SubprocessBackend):
    """macOS ``dns-sd -P``: registers a proxy service plus the host's A record."""

    name = "dns-sd"

    def __init__(self, service_type: str = "_http._tcp", port: int = 80, **kwargs):
        super().__init__(**kwargs)
        self.service_type = service_type
        self.port = port

    def command(self, host: str, address: str) -> list[str]:
        return ["dns-sd", "-P", host, self.service_type, "local", str(self.port), host, address]


class AvahiBackend(SubprocessBackend):
    """``avahi-publish -a -R``: publishes an address record through avahi-daemon."""

    name = "avahi"

    def command(self, host: str, address: str) -> list[str]:
        return ["avahi-publish", "-a", "-R", host, address]


class ZeroconfBackend:
    """In-process multicast responder built on python-zeroconf."""

    name = "zeroconf"

    def __init__(self, service_type: str = "_http._tcp", port: int = 80):
        self.service_type = service_type.rstrip(".")
        self.port = port

    def service_info(self, host: str, address: str) -> ServiceInfo:
        type_ = f"{self.service_type}.local."
        return ServiceInfo(
            type_,
            f"{host.replace('.', '-')}.{type_}",
            addresses=[socket.inet_aton(address)],
            port=self.port,
            server=host if host.endswith(".") else f"{host}.",
        )

    def advertise(self, host: str, address: str, scope: CancelScope) -> None:
        info = self.service_info(host, address)
        zc = Zeroconf()
        try:
            zc.register_service(info)
            scope.wait()
            zc.unregister_service(info)
        finally:
            zc.close()


class LogBackend:
    """Advertises nothing; holds the slot until cancelled. Useful for dry runs."""

    name = "log"

    def advertise(self, host: str, address: str, scope: CancelScope) -> None:
        db.log_event("INFO", f"[dry-run] would advertise {host} -> {address}", host=host)
        scope.wait()
        db.log_event("INFO", f"[dry-run] would withdraw {host}", host=host)


BACKENDS = ("dns-sd", "avahi", "zeroconf", "log")


def make_backend(name: str, cfg: Settings | None = None) -> Backend:
    cfg = cfg or settings
    if name == "dns-sd":
        return DnsSdBackend(service_type=cfg.service_type, port=cfg.service_port, stop_grace_s=cfg.stop_grace_s)
    if name == "avahi":
        return AvahiBackend(stop_grace_s=cfg.stop_grace_s)
    if name == "zeroconf":
        return ZeroconfBackend(service_type=cfg.service_type, port=cfg.service_port)
    if name == "log":
        return LogBackend()
    raise ValueError(f"Unknown backend '{name}'. Choose one of: {', '.join(BACKENDS)}")
