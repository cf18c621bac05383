from __future__ import annotations


class MdnsrError(Exception):
    pass


class BackendUnavailable(MdnsrError):
    """The advertisement mechanism (binary or library) is not usable here."""


class BackendExited(MdnsrError):
    """An advertiser ended without being cancelled."""

    def __init__(self, host: str, returncode: int | None = None):
        self.host = host
        self.returncode = returncode
        detail = f" with code {returncode}" if returncode is not None else ""
        super().__init__(f"Advertiser for '{host}' exited{detail}")


class CacheSyncError(MdnsrError):
    """The watch adapter never produced a consistent initial view."""
