from __future__ import annotations

from threading import Event, Lock


class CancelScope:
    """Cooperative cancellation token with parent/child propagation.

    Cancelling a scope cancels every child created from it. A child created
    from an already-cancelled parent starts out cancelled. Workers call
    ``wait()`` (or poll ``cancelled``) and are expected to wind down promptly.
    """

    def __init__(self, parent: CancelScope | None = None, name: str = "root"):
        self.name = name
        self._event = Event()
        self._lock = Lock()
        self._children: set[CancelScope] = set()
        self._parent = parent
        if parent is not None:
            parent._adopt(self)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"CancelScope({self.name!r}, {state})"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def child(self, name: str) -> CancelScope:
        return CancelScope(parent=self, name=name)

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for c in children:
            c.cancel()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or the timeout elapses; return ``cancelled``."""
        return self._event.wait(timeout)

    def close(self) -> None:
        """Detach from the parent once the owning work has finished."""
        if self._parent is not None:
            self._parent._release(self)

    def _adopt(self, child: CancelScope) -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.add(child)
                return
        child.cancel()

    def _release(self, child: CancelScope) -> None:
        with self._lock:
            self._children.discard(child)
