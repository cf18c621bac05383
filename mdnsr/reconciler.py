from __future__ import annotations

from dataclasses import dataclass
from queue import Queue
from threading import Thread
from typing import Any, Iterable, Protocol, Union

from kubernetes.client import V1Ingress

from . import db
from .hosts import calculate_host_diff, extract, unique
from .kube import DeletedFinalStateUnknown, object_key
from .settings import settings


class HostHandler(Protocol):
    def on_hosts_added(self, hosts: list[str]) -> None: ...

    def on_hosts_removed(self, hosts: list[str]) -> None: ...


@dataclass(frozen=True)
class HostsAdded:
    hosts: tuple[str, ...]


@dataclass(frozen=True)
class HostsRemoved:
    hosts: tuple[str, ...]


Intent = Union[HostsAdded, HostsRemoved]


@dataclass(frozen=True)
class Snapshot:
    enabled: bool
    hosts: tuple[str, ...]


ABSENT = Snapshot(enabled=False, hosts=())


def snapshot(ingress: Any, annotation_key: str | None = None) -> Snapshot:
    enabled, hosts = extract(ingress, annotation_key)
    return Snapshot(enabled=enabled, hosts=tuple(hosts))


def transition(previous: Snapshot, current: Snapshot) -> list[Intent]:
    """Intents for one declaration moving from ``previous`` to ``current``.

    Removals always come before additions so a hostname moving between
    declarations is never claimed twice at once.
    """
    if not previous.enabled and not current.enabled:
        return []

    if not previous.enabled:
        hosts = unique(current.hosts)
        return [HostsAdded(tuple(hosts))] if hosts else []

    if not current.enabled:
        hosts = unique(previous.hosts)
        return [HostsRemoved(tuple(hosts))] if hosts else []

    added, removed = calculate_host_diff(previous.hosts, current.hosts)
    intents: list[Intent] = []
    if removed:
        intents.append(HostsRemoved(tuple(removed)))
    if added:
        intents.append(HostsAdded(tuple(added)))
    return intents


@dataclass(frozen=True)
class IngressAdded:
    obj: Any


@dataclass(frozen=True)
class IngressUpdated:
    old: Any
    new: Any


@dataclass(frozen=True)
class IngressDeleted:
    obj: Any


Notification = Union[IngressAdded, IngressUpdated, IngressDeleted]

_STOP = object()


def _as_ingress(obj: Any) -> V1Ingress | None:
    if isinstance(obj, DeletedFinalStateUnknown):
        obj = obj.obj
    return obj if isinstance(obj, V1Ingress) else None


class Reconciler:
    """Turns Ingress notifications into HostsAdded / HostsRemoved intents.

    ``on_add`` / ``on_update`` / ``on_delete`` only enqueue; a single worker
    thread drains the queue in order and calls the HostHandler, so the
    reconciler needs no lock of its own. ``handle`` processes one notification
    synchronously and returns the intents it applied.
    """

    def __init__(self, handler: HostHandler, annotation_key: str | None = None):
        self.handler = handler
        self.annotation_key = annotation_key or settings.annotation_key
        self._events: Queue = Queue()
        self._accepting = True
        self._thr: Thread | None = None

    # Watch adapter hooks

    def on_add(self, obj: Any) -> None:
        self._submit(IngressAdded(obj))

    def on_update(self, old: Any, new: Any) -> None:
        self._submit(IngressUpdated(old, new))

    def on_delete(self, obj: Any) -> None:
        self._submit(IngressDeleted(obj))

    def _submit(self, event: Notification) -> None:
        if not self._accepting:
            db.logger.debug("Reconciler stopped, dropping %s", type(event).__name__)
            return
        self._events.put(event)

    # Worker lifecycle

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._accepting = True
        self._thr = Thread(target=self._loop, name="reconciler", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        """Stop accepting notifications; queued ones are still processed."""
        self._accepting = False
        self._events.put(_STOP)

    def join(self, timeout: float | None = None) -> None:
        if self._thr:
            self._thr.join(timeout)

    def wait_idle(self) -> None:
        """Block until every queued notification has been handled."""
        self._events.join()

    def _loop(self) -> None:
        db.log_event("INFO", "Reconciler started")
        while True:
            event = self._events.get()
            try:
                if event is _STOP:
                    break
                self.handle(event)
            except Exception as e:
                db.log_event("ERROR", f"Reconciler failed to apply {type(event).__name__}: {type(e).__name__}: {e}")
            finally:
                self._events.task_done()
        db.log_event("INFO", "Reconciler stopped")

    # Transitions

    def handle(self, event: Notification) -> list[Intent]:
        if isinstance(event, IngressAdded):
            return self._handle_add(event.obj)
        if isinstance(event, IngressUpdated):
            return self._handle_update(event.old, event.new)
        if isinstance(event, IngressDeleted):
            return self._handle_delete(event.obj)
        db.logger.debug("Dropping unknown notification %r", event)
        return []

    def _handle_add(self, obj: Any) -> list[Intent]:
        ing = obj if isinstance(obj, V1Ingress) else None
        if ing is None:
            db.logger.debug("Dropping add of non-Ingress object %r", type(obj).__name__)
            return []
        current = snapshot(ing, self.annotation_key)
        intents = transition(ABSENT, current)
        if intents:
            db.log_event("INFO", f"Ingress added with enabled annotation, hosts={list(current.hosts)}", ingress=object_key(ing))
        return self._apply(intents)

    def _handle_update(self, old: Any, new: Any) -> list[Intent]:
        if not isinstance(old, V1Ingress) or not isinstance(new, V1Ingress):
            db.logger.debug("Dropping update with non-Ingress payload")
            return []
        previous = snapshot(old, self.annotation_key)
        current = snapshot(new, self.annotation_key)
        intents = transition(previous, current)
        if not intents:
            return []

        key = object_key(new)
        if not previous.enabled:
            db.log_event("INFO", f"Annotation enabled on existing ingress, hosts={list(current.hosts)}", ingress=key)
        elif not current.enabled:
            db.log_event("INFO", "Annotation disabled on existing ingress", ingress=key)
        else:
            added = [h for i in intents if isinstance(i, HostsAdded) for h in i.hosts]
            removed = [h for i in intents if isinstance(i, HostsRemoved) for h in i.hosts]
            db.log_event("INFO", f"Hosts updated, added={added} removed={removed}", ingress=key)
        return self._apply(intents)

    def _handle_delete(self, obj: Any) -> list[Intent]:
        ing = _as_ingress(obj)
        if ing is None:
            db.logger.debug("Dropping delete of non-Ingress object %r", type(obj).__name__)
            return []
        previous = snapshot(ing, self.annotation_key)
        intents = transition(previous, ABSENT)
        if intents:
            db.log_event("INFO", f"Ingress deleted, hosts={list(previous.hosts)}", ingress=object_key(ing))
        return self._apply(intents)

    def _apply(self, intents: Iterable[Intent]) -> list[Intent]:
        applied: list[Intent] = []
        for intent in intents:
            if isinstance(intent, HostsRemoved):
                self.handler.on_hosts_removed(list(intent.hosts))
            else:
                self.handler.on_hosts_added(list(intent.hosts))
            applied.append(intent)
        return applied
