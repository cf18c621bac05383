import time
from unittest.mock import MagicMock

import pytest
from kubernetes.client import V1IngressList, V1ListMeta
from kubernetes.client.exceptions import ApiException

from mdnsr.cancel import CancelScope
from mdnsr.kube import DeletedFinalStateUnknown, IngressWatcher, context_namespace, object_key
from mdnsr.reconciler import Reconciler


class Recorder:
    def __init__(self):
        self.calls = []

    def on_add(self, obj):
        self.calls.append(("add", obj))

    def on_update(self, old, new):
        self.calls.append(("update", old, new))

    def on_delete(self, obj):
        self.calls.append(("delete", obj))


class FakeWatch:
    """Stands in for kubernetes.watch.Watch, replaying canned events."""

    def __init__(self, events, on_exhausted=None):
        self.events = events
        self.on_exhausted = on_exhausted
        self.stopped = False
        self.stream_kwargs = None

    def stream(self, func, **kwargs):
        self.stream_kwargs = kwargs
        yield from self.events
        if self.on_exhausted:
            self.on_exhausted()

    def stop(self):
        self.stopped = True


def _list(items, rv="10"):
    return V1IngressList(items=items, metadata=V1ListMeta(resource_version=rv))


@pytest.fixture
def api():
    return MagicMock()


def test_object_key_includes_namespace(ingress):
    assert object_key(ingress(name="web", namespace="apps")) == "apps/web"
    assert object_key(ingress(name="web", namespace=None)) == "web"


def test_initial_list_adds_everything_and_opens_barrier(api, ingress):
    a, b = ingress(name="a", hosts=["a.local"]), ingress(name="b", hosts=["b.local"])
    api.list_namespaced_ingress.return_value = _list([a, b])
    rec = Recorder()
    w = IngressWatcher(rec, namespace="default", api=api)

    assert w.wait_for_sync(0) is False
    w.relist()

    assert rec.calls == [("add", a), ("add", b)]
    assert w.synced
    assert w.resource_version == "10"
    api.list_namespaced_ingress.assert_called_once_with(namespace="default")


def test_all_namespaces_uses_cluster_wide_list(api):
    api.list_ingress_for_all_namespaces.return_value = _list([])
    w = IngressWatcher(Recorder(), namespace=None, api=api)

    w.relist()

    api.list_ingress_for_all_namespaces.assert_called_once_with()
    assert w.synced


def test_relist_updates_known_and_tombstones_missing(api, ingress):
    a1 = ingress(name="a", hosts=["a.local"], resource_version="1")
    b1 = ingress(name="b", hosts=["b.local"], resource_version="1")
    a2 = ingress(name="a", hosts=["a2.local"], resource_version="2")
    api.list_namespaced_ingress.side_effect = [_list([a1, b1], "1"), _list([a2], "2")]
    rec = Recorder()
    w = IngressWatcher(rec, namespace="default", api=api)

    w.relist()
    rec.calls.clear()
    w.relist()

    assert rec.calls == [
        ("delete", DeletedFinalStateUnknown(key="default/b", obj=b1)),
        ("update", a1, a2),
    ]
    assert set(w.cache) == {"default/a"}


def test_dispatch_tracks_cache(api, ingress):
    rec = Recorder()
    w = IngressWatcher(rec, namespace="default", api=api)
    v1 = ingress(name="a", hosts=["a"], resource_version="5")
    v2 = ingress(name="a", hosts=["b"], resource_version="6")

    w.dispatch({"type": "ADDED", "object": v1})
    w.dispatch({"type": "MODIFIED", "object": v2})
    w.dispatch({"type": "DELETED", "object": v2})

    assert rec.calls == [("add", v1), ("update", v1, v2), ("delete", v2)]
    assert w.cache == {}
    assert w.resource_version == "6"


def test_modified_for_unknown_object_is_an_add(api, ingress):
    rec = Recorder()
    w = IngressWatcher(rec, namespace="default", api=api)
    ing = ingress(name="late")

    w.dispatch({"type": "MODIFIED", "object": ing})

    assert rec.calls == [("add", ing)]


def test_error_410_forces_relist(api):
    w = IngressWatcher(Recorder(), namespace="default", api=api)
    with pytest.raises(ApiException) as exc:
        w.dispatch({"type": "ERROR", "object": None, "raw_object": {"code": 410, "message": "too old"}})
    assert exc.value.status == 410


def test_event_without_metadata_is_dropped(api):
    rec = Recorder()
    w = IngressWatcher(rec, namespace="default", api=api)
    w.dispatch({"type": "ADDED", "object": {"weird": True}})
    assert rec.calls == []


def test_watch_once_streams_from_last_resource_version(api, ingress):
    ing = ingress(name="a", resource_version="11")
    fake = FakeWatch([{"type": "ADDED", "object": ing}])
    rec = Recorder()
    w = IngressWatcher(rec, namespace="default", api=api, watch_timeout_s=30, watch_factory=lambda: fake)
    w.resource_version = "10"
    w._last_list = time.monotonic()

    w.watch_once(CancelScope())

    assert rec.calls == [("add", ing)]
    assert fake.stopped
    assert fake.stream_kwargs == {"resource_version": "10", "timeout_seconds": 30, "namespace": "default"}
    assert w.resource_version == "11"


def test_run_lists_watches_and_stops_on_cancel(api, ingress):
    scope = CancelScope()
    listed = ingress(name="a", hosts=["a.local"])
    watched = ingress(name="b", hosts=["b.local"], resource_version="12")
    api.list_namespaced_ingress.return_value = _list([listed], "11")
    fake = FakeWatch([{"type": "ADDED", "object": watched}], on_exhausted=scope.cancel)
    rec = Recorder()
    w = IngressWatcher(rec, namespace="default", api=api, watch_factory=lambda: fake)

    w.run(scope)

    assert [c[0] for c in rec.calls] == ["add", "add"]
    assert w.synced
    assert fake.stopped


def test_run_survives_list_failure_and_retries(api, ingress):
    scope = CancelScope()
    ing = ingress(name="a")
    api.list_namespaced_ingress.side_effect = [ApiException(status=500, reason="boom"), _list([ing])]
    fake = FakeWatch([], on_exhausted=scope.cancel)
    rec = Recorder()
    w = IngressWatcher(rec, namespace="default", api=api, backoff_s=0, watch_factory=lambda: fake)

    w.run(scope)

    assert rec.calls == [("add", ing)]
    assert api.list_namespaced_ingress.call_count == 2


def test_watch_to_reconciler_end_to_end(api, ingress, recording_handler):
    scope = CancelScope()
    v1 = ingress(name="site", hosts=["a.local", "b.local"], resource_version="1")
    v2 = ingress(name="site", hosts=["b.local", "c.local"], resource_version="2")
    api.list_namespaced_ingress.return_value = _list([v1], "1")
    fake = FakeWatch(
        [{"type": "MODIFIED", "object": v2}, {"type": "DELETED", "object": v2}],
        on_exhausted=scope.cancel,
    )
    reconciler = Reconciler(recording_handler)
    reconciler.start()
    w = IngressWatcher(reconciler, namespace="default", api=api, watch_factory=lambda: fake)

    w.run(scope)
    reconciler.wait_idle()
    reconciler.stop()
    reconciler.join(2)

    assert recording_handler.calls == [
        ("added", ["a.local", "b.local"]),
        ("removed", ["a.local"]),
        ("added", ["c.local"]),
        ("removed", ["b.local", "c.local"]),
    ]


def test_context_namespace_falls_back_to_default(tmp_path):
    missing = tmp_path / "nope.yaml"
    assert context_namespace(str(missing)) == "default"


def test_context_namespace_reads_active_context(tmp_path):
    cfg = tmp_path / "config"
    cfg.write_text(
        """
apiVersion: v1
kind: Config
clusters:
- name: c
  cluster: {server: "https://127.0.0.1:6443"}
users:
- name: u
  user: {token: t}
contexts:
- name: dev
  context: {cluster: c, user: u, namespace: apps}
- name: other
  context: {cluster: c, user: u}
current-context: dev
"""
    )
    assert context_namespace(str(cfg)) == "apps"
    assert context_namespace(str(cfg), "other") == "default"
