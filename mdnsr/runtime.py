from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock, Thread
from typing import Callable

from .cancel import CancelScope
from .db import utc_now


@dataclass(eq=False)
class AdvertisedHost:
    host: str
    scope: CancelScope
    thread: Thread | None = None
    started_at: str = field(default_factory=utc_now)


class Registry:
    """hostname -> AdvertisedHost, guarded by a single lock.

    Every method holds the lock only for the dict operation itself; nothing in
    here blocks on an advertiser.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self._entries: dict[str, AdvertisedHost] = {}

    def claim(self, host: str, make: Callable[[str], AdvertisedHost]) -> tuple[AdvertisedHost, bool]:
        """Return (entry, created). ``make`` is called under the lock only if
        no entry exists yet, so two concurrent claims never both create one."""
        with self.lock:
            existing = self._entries.get(host)
            if existing is not None:
                return existing, False
            entry = make(host)
            self._entries[host] = entry
            return entry, True

    def remove(self, host: str) -> AdvertisedHost | None:
        """Pop the entry and cancel its scope; None when nothing is running."""
        with self.lock:
            entry = self._entries.pop(host, None)
            if entry is not None:
                entry.scope.cancel()
            return entry

    def release(self, host: str, entry: AdvertisedHost) -> bool:
        """Delete ``entry`` only if it is still the current one for ``host``."""
        with self.lock:
            if self._entries.get(host) is entry:
                del self._entries[host]
                return True
            return False

    def get(self, host: str) -> AdvertisedHost | None:
        with self.lock:
            return self._entries.get(host)

    def hosts(self) -> list[str]:
        with self.lock:
            return sorted(self._entries)

    def entries(self) -> list[AdvertisedHost]:
        with self.lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def __contains__(self, host: object) -> bool:
        with self.lock:
            return host in self._entries
