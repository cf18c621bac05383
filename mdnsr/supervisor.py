from __future__ import annotations

import time
from threading import Lock, Thread
from typing import Iterable

from . import db
from .backends import Backend
from .cancel import CancelScope
from .hosts import unique
from .runtime import AdvertisedHost, Registry


class ProcessSupervisor:
    """Runs one advertiser per hostname and keeps the Registry honest.

    ``on_hosts_added`` / ``on_hosts_removed`` make this a HostHandler for the
    Reconciler. Every advertiser runs on its own thread under a child of
    ``scope``, so cancelling ``scope`` stops all of them.
    """

    def __init__(self, scope: CancelScope, backend: Backend, address: str, registry: Registry | None = None):
        self.scope = scope
        self.backend = backend
        self.address = address
        self.registry = registry or Registry()
        self._threads_lock = Lock()
        self._threads: set[Thread] = set()

    def on_hosts_added(self, hosts: Iterable[str]) -> None:
        for host in unique(hosts):
            if self.scope.cancelled:
                db.log_event("WARN", "Supervisor is shutting down, not advertising", host=host)
                continue

            entry, created = self.registry.claim(host, self._new_entry)
            if not created:
                db.log_event("INFO", "Host already advertised, skipping", host=host)
                continue

            with self._threads_lock:
                self._threads.add(entry.thread)
            try:
                entry.thread.start()
            except RuntimeError as e:
                self.registry.release(host, entry)
                entry.scope.close()
                with self._threads_lock:
                    self._threads.discard(entry.thread)
                db.log_event("ERROR", f"Could not start advertiser: {e}", host=host)
                continue
            db.log_event("INFO", f"Advertising host at {self.address} via {self.backend.name}", host=host)

    def on_hosts_removed(self, hosts: Iterable[str]) -> None:
        for host in unique(hosts):
            entry = self.registry.remove(host)
            if entry is None:
                db.log_event("INFO", "Host not advertised, nothing to stop", host=host)
                continue
            db.log_event("INFO", "Stopping advertisement", host=host)

    def hosts(self) -> list[str]:
        return self.registry.hosts()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for advertiser threads to finish; True if all of them did."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._threads_lock:
            threads = list(self._threads)
        for t in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            t.join(remaining)
        with self._threads_lock:
            return not any(t.is_alive() for t in self._threads)

    def _new_entry(self, host: str) -> AdvertisedHost:
        # Called under the Registry lock: build only, start later.
        entry = AdvertisedHost(host=host, scope=self.scope.child(f"advertise:{host}"))
        entry.thread = Thread(target=self._run, args=(entry,), name=f"advertise-{host}", daemon=True)
        return entry

    def _run(self, entry: AdvertisedHost) -> None:
        host = entry.host
        try:
            self.backend.advertise(host, self.address, entry.scope)
            if not entry.scope.cancelled:
                db.log_event("WARN", "Advertiser returned without being cancelled", host=host)
        except Exception as e:
            if entry.scope.cancelled:
                db.log_event("INFO", f"Advertiser stopped: {type(e).__name__}: {e}", host=host)
            else:
                db.log_event("ERROR", f"Advertiser failed: {type(e).__name__}: {e}", host=host)
        finally:
            if self.registry.release(host, entry):
                db.log_event("INFO", "Cleared registry entry for exited advertiser", host=host)
            entry.scope.close()
            with self._threads_lock:
                self._threads.discard(entry.thread)


class LoggingHostHandler:
    """Dry-run HostHandler: records intents in the journal, advertises nothing.

    Keeps the hosts that would be advertised so the status API can show them.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._hosts: dict[str, str] = {}

    def on_hosts_added(self, hosts: Iterable[str]) -> None:
        hosts = list(hosts)
        db.log_event("INFO", f"ACTION: registering hosts {hosts}")
        with self._lock:
            for h in hosts:
                self._hosts.setdefault(h, db.utc_now())

    def on_hosts_removed(self, hosts: Iterable[str]) -> None:
        hosts = list(hosts)
        db.log_event("INFO", f"ACTION: unregistering hosts {hosts}")
        with self._lock:
            for h in hosts:
                self._hosts.pop(h, None)

    def hosts(self) -> list[tuple[str, str]]:
        """(host, first registered at), sorted by host."""
        with self._lock:
            return sorted(self._hosts.items())
