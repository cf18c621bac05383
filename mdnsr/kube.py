from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Event, Thread
from typing import Any, Callable, Protocol

from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException

from . import db
from .cancel import CancelScope
from .settings import settings


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Delete notification for an object whose final state was never observed.

    Emitted when a relist finds an object gone that the watch did not report;
    ``obj`` is the last version seen.
    """

    key: str
    obj: Any


class IngressEventHandler(Protocol):
    def on_add(self, obj: Any) -> None: ...

    def on_update(self, old: Any, new: Any) -> None: ...

    def on_delete(self, obj: Any) -> None: ...


def object_key(obj: Any) -> str:
    meta = getattr(obj, "metadata", None)
    namespace = getattr(meta, "namespace", None)
    name = getattr(meta, "name", None) or "<unnamed>"
    return f"{namespace}/{name}" if namespace else name


def load_config(kubeconfig: str | None = None, context: str | None = None) -> None:
    """In-cluster config when running in a pod, kubeconfig otherwise."""
    if kubeconfig is None and context is None:
        try:
            config.load_incluster_config()
            return
        except config.ConfigException:
            pass
    config.load_kube_config(config_file=kubeconfig, context=context)


def context_namespace(kubeconfig: str | None = None, context: str | None = None) -> str:
    """Namespace of the selected kubeconfig context, "default" when it has none."""
    try:
        contexts, active = config.list_kube_config_contexts(config_file=kubeconfig)
    except (config.ConfigException, OSError):
        return "default"
    if context:
        active = next((c for c in contexts if c.get("name") == context), active)
    return ((active or {}).get("context") or {}).get("namespace") or "default"


class IngressWatcher:
    """List+watch of Ingress objects feeding an IngressEventHandler.

    Keeps a local cache keyed by namespace/name so updates carry the previous
    object, relists every ``resync_period_s`` (and after 410 Gone) and turns
    objects missing from a relist into DeletedFinalStateUnknown deletes.
    ``wait_for_sync`` is the readiness barrier: it opens after the first
    successful list has been delivered.
    """

    def __init__(
        self,
        handler: IngressEventHandler,
        namespace: str | None = None,
        api: client.NetworkingV1Api | None = None,
        resync_period_s: int = settings.resync_period_s,
        watch_timeout_s: int = settings.watch_timeout_s,
        backoff_s: float = 5.0,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
    ):
        self.handler = handler
        self.namespace = namespace or None
        self.api = api
        self.resync_period_s = max(1, int(resync_period_s))
        self.watch_timeout_s = max(1, int(watch_timeout_s))
        self.backoff_s = backoff_s
        self.watch_factory = watch_factory
        self.cache: dict[str, Any] = {}
        self.resource_version: str | None = None
        self._synced = Event()
        self._thr: Thread | None = None
        self._last_list = 0.0

    @property
    def synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_sync(self, timeout: float | None = None) -> bool:
        return self._synced.wait(timeout)

    def start(self, scope: CancelScope) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._thr = Thread(target=self.run, args=(scope,), name="ingress-watcher", daemon=True)
        self._thr.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thr:
            self._thr.join(timeout)

    def run(self, scope: CancelScope) -> None:
        db.log_event("INFO", f"Watching ingresses in {self.namespace or 'all namespaces'}")
        while not scope.cancelled:
            try:
                if self.resource_version is None or self._resync_due():
                    self.relist()
                self.watch_once(scope)
            except ApiException as e:
                if e.status == 410:
                    db.log_event("INFO", "Watch expired (410 Gone), relisting")
                    self.resource_version = None
                    continue
                db.log_event("ERROR", f"Ingress API error: {e.status} {e.reason}")
                scope.wait(self.backoff_s)
            except Exception as e:
                db.log_event("ERROR", f"Ingress watch failed: {type(e).__name__}: {e}")
                scope.wait(self.backoff_s)
        db.log_event("INFO", "Ingress watcher stopped")

    def _resync_due(self) -> bool:
        return time.monotonic() - self._last_list >= self.resync_period_s

    def _api(self) -> client.NetworkingV1Api:
        if self.api is None:
            self.api = client.NetworkingV1Api()
        return self.api

    def _list_func(self) -> tuple[Callable[..., Any], dict[str, Any]]:
        api = self._api()
        if self.namespace:
            return api.list_namespaced_ingress, {"namespace": self.namespace}
        return api.list_ingress_for_all_namespaces, {}

    def relist(self) -> None:
        """Full list; reconciles the cache and delivers the differences."""
        func, kwargs = self._list_func()
        result = func(**kwargs)
        fresh = {object_key(item): item for item in (result.items or [])}

        for key in [k for k in self.cache if k not in fresh]:
            last = self.cache.pop(key)
            self.handler.on_delete(DeletedFinalStateUnknown(key=key, obj=last))

        for key, item in fresh.items():
            old = self.cache.get(key)
            self.cache[key] = item
            if old is None:
                self.handler.on_add(item)
            else:
                self.handler.on_update(old, item)

        self.resource_version = getattr(result.metadata, "resource_version", None)
        self._last_list = time.monotonic()
        if not self._synced.is_set():
            self._synced.set()
            db.log_event("INFO", f"Ingress cache synced ({len(fresh)} objects)")

    def watch_once(self, scope: CancelScope) -> None:
        """Consume one watch stream until it times out, a resync is due or
        the scope is cancelled."""
        func, kwargs = self._list_func()
        timeout = min(self.watch_timeout_s, self.resync_period_s)
        w = self.watch_factory()
        try:
            for event in w.stream(func, resource_version=self.resource_version, timeout_seconds=timeout, **kwargs):
                if scope.cancelled or self._resync_due():
                    break
                self.dispatch(event)
        finally:
            w.stop()

    def dispatch(self, event: dict[str, Any]) -> None:
        kind = event.get("type")
        obj = event.get("object")

        if kind == "ERROR":
            raw = event.get("raw_object") or {}
            if raw.get("code") == 410:
                raise ApiException(status=410, reason="Gone")
            db.log_event("WARN", f"Watch error event: {raw.get('message', raw)}")
            return

        meta = getattr(obj, "metadata", None)
        if meta is None:
            db.logger.debug("Dropping watch event without metadata: %r", event)
            return
        self.resource_version = getattr(meta, "resource_version", None) or self.resource_version
        key = object_key(obj)

        if kind in ("ADDED", "MODIFIED"):
            old = self.cache.get(key)
            self.cache[key] = obj
            if old is None:
                self.handler.on_add(obj)
            else:
                self.handler.on_update(old, obj)
        elif kind == "DELETED":
            self.cache.pop(key, None)
            self.handler.on_delete(obj)
        else:
            db.logger.debug("Ignoring watch event of type %r", kind)
