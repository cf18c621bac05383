from __future__ import annotations

import ipaddress
import socket

import psutil

from . import db


def local_ipv4_addresses() -> list[str]:
    """Non-loopback IPv4 addresses of interfaces that are up."""
    addrs = psutil.net_if_addrs()
    stats = psutil.net_if_stats()
    out: list[str] = []
    for name, entries in addrs.items():
        st = stats.get(name)
        if st is not None and not st.isup:
            continue
        for a in entries:
            if a.family != socket.AF_INET:
                continue
            if ipaddress.ip_address(a.address).is_loopback:
                continue
            out.append(a.address)
    return out


def get_local_address_or(fallback: str | None) -> str | None:
    try:
        found = local_ipv4_addresses()
    except OSError as e:
        db.log_event("ERROR", f"Listing interface addresses failed: {e}")
        return fallback
    if not found:
        db.log_event("WARN", "No IPv4 addresses found")
        return fallback
    db.log_event("INFO", f"Using ip {found[0]} for mDNS")
    return found[0]


def validate_ipv4(address: str) -> str:
    ip = ipaddress.ip_address(address)
    if ip.version != 4:
        raise ValueError(f"'{address}' is not an IPv4 address")
    return str(ip)
