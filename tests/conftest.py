import os as _os
import sys
import threading

import pytest
from kubernetes.client import V1Ingress, V1IngressRule, V1IngressSpec, V1ObjectMeta

# Ensure project root is importable (so `import mdnsr` / `import cli` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from mdnsr import db  # noqa: E402
from mdnsr.settings import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def event_journal(tmp_path, monkeypatch):
    """Point the SQLite event journal at a per-test file."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "events.db")))
    db.init_db()
    yield


def make_ingress(name="web", hosts=(), enabled=True, namespace="default", annotations=None, resource_version="1"):
    """enabled: True -> "true", False -> no annotation, a string -> that literal value."""
    ann = dict(annotations or {})
    if enabled is True:
        ann["mdnscontroller/enabled"] = "true"
    elif isinstance(enabled, str):
        ann["mdnscontroller/enabled"] = enabled
    rules = [V1IngressRule(host=h) for h in hosts]
    return V1Ingress(
        metadata=V1ObjectMeta(name=name, namespace=namespace, annotations=ann or None, resource_version=resource_version),
        spec=V1IngressSpec(rules=rules),
    )


@pytest.fixture
def ingress():
    return make_ingress


class RecordingHandler:
    """HostHandler that records intents in call order."""

    def __init__(self):
        self.calls = []

    def on_hosts_added(self, hosts):
        self.calls.append(("added", list(hosts)))

    def on_hosts_removed(self, hosts):
        self.calls.append(("removed", list(hosts)))


class FakeBackend:
    """Backend that blocks until cancelled and records every start/stop."""

    name = "fake"

    def __init__(self):
        self.lock = threading.Lock()
        self.started = []
        self.cancelled = []
        self.running = {}
        self.fail = {}  # host -> exception raised right after start
        self.release = {}  # host -> Event; set it to make the advertiser return on its own
        self.started_event = threading.Condition(self.lock)

    def advertise(self, host, address, scope):
        with self.lock:
            self.started.append((host, address))
            self.running[host] = self.running.get(host, 0) + 1
            gate = self.release.setdefault(host, threading.Event())
            self.started_event.notify_all()
        try:
            if host in self.fail:
                raise self.fail[host]
            while not scope.wait(0.01):
                if gate.is_set():
                    return
            with self.lock:
                self.cancelled.append(host)
        finally:
            with self.lock:
                self.running[host] -= 1

    def wait_started(self, count, timeout=2.0):
        with self.lock:
            return self.started_event.wait_for(lambda: len(self.started) >= count, timeout)


@pytest.fixture
def recording_handler():
    return RecordingHandler()


@pytest.fixture
def fake_backend():
    return FakeBackend()
