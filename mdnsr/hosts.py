from __future__ import annotations

from typing import Any, Iterable

from .settings import settings


def is_enabled(ingress: Any, annotation_key: str | None = None) -> bool:
    """True only when the enablement annotation is exactly the string "true"."""
    key = annotation_key or settings.annotation_key
    metadata = getattr(ingress, "metadata", None)
    annotations = getattr(metadata, "annotations", None) or {}
    return annotations.get(key) == "true"


def extract_hosts(ingress: Any) -> list[str]:
    """Collect the non-empty rule hosts in declaration order (duplicates kept)."""
    spec = getattr(ingress, "spec", None)
    rules = getattr(spec, "rules", None) or []
    hosts: list[str] = []
    for rule in rules:
        host = getattr(rule, "host", None)
        if host:
            hosts.append(host)
    return hosts


def extract(ingress: Any, annotation_key: str | None = None) -> tuple[bool, list[str]]:
    return is_enabled(ingress, annotation_key), extract_hosts(ingress)


def unique(hosts: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(hosts))


def calculate_host_diff(old: Iterable[str], new: Iterable[str]) -> tuple[list[str], list[str]]:
    """Return (added, removed) between two host lists using set membership.

    added:   present in ``new`` but not in ``old``
    removed: present in ``old`` but not in ``new``

    Both results are de-duplicated and keep first-seen order, which only
    matters for log readability.
    """
    old_list = unique(old)
    new_list = unique(new)
    old_set = set(old_list)
    new_set = set(new_list)

    added = [h for h in new_list if h not in old_set]
    removed = [h for h in old_list if h not in new_set]
    return added, removed
