from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import time

import requests

from mdnsr import db, kube
from mdnsr.api import ApiServer, create_app
from mdnsr.backends import BACKENDS, make_backend
from mdnsr.cancel import CancelScope
from mdnsr.errors import CacheSyncError
from mdnsr.netaddr import get_local_address_or, validate_ipv4
from mdnsr.reconciler import Reconciler
from mdnsr.settings import settings
from mdnsr.supervisor import LoggingHostHandler, ProcessSupervisor


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Advertise annotated Ingress hosts over mDNS")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_run = sub.add_parser("run", help="Watch ingresses and advertise their hosts")
    s_run.add_argument("--ip-address", default=settings.ip_address, help="IPv4 to advertise (auto-detected if not set)")
    ns = s_run.add_mutually_exclusive_group()
    ns.add_argument("--namespace", "-n", default=None, help="Namespace to watch (default: kubeconfig context)")
    ns.add_argument("--all-namespaces", "-A", action="store_true", default=None)
    s_run.add_argument("--kubeconfig", default=settings.kubeconfig)
    s_run.add_argument("--context", default=settings.kube_context)
    s_run.add_argument("--backend", choices=BACKENDS, default=settings.backend)
    s_run.add_argument("--dry-run", action="store_true", help="Log host intents without starting advertisers")
    s_run.add_argument("--api-host", default=settings.api_host)
    s_run.add_argument("--api-port", type=int, default=settings.api_port, help="Status API port (0 disables)")
    s_run.add_argument("--sync-timeout", type=int, default=settings.sync_timeout_s, help="Seconds to wait for the initial ingress list")

    for name, help_text in (("hosts", "List advertised hosts of a running instance"), ("events", "Show recent events")):
        s = sub.add_parser(name, help=help_text)
        s.add_argument("--api", default=f"http://{settings.api_host}:{settings.api_port}", help="API base URL")
        if name == "events":
            s.add_argument("--limit", type=int, default=20)
            s.add_argument("--host", default=None)

    return p


def _resolve_namespace(args: argparse.Namespace) -> str | None:
    # Flags beat MDNSR_NAMESPACE / MDNSR_ALL_NAMESPACES.
    if args.all_namespaces:
        return None
    if args.namespace:
        return args.namespace
    if settings.all_namespaces:
        return None
    return settings.namespace or kube.context_namespace(args.kubeconfig, args.context)


def wait_for_sync(watcher: kube.IngressWatcher, scope: CancelScope, timeout: float) -> bool:
    """Block until the watcher has listed once. False if ``scope`` was cancelled first."""
    db.log_event("INFO", "Waiting for ingress cache to sync")
    deadline = time.monotonic() + max(1, timeout)
    while not watcher.wait_for_sync(0.5):
        if scope.cancelled:
            return False
        if time.monotonic() >= deadline:
            raise CacheSyncError(f"Ingress cache did not sync within {timeout}s")
    return True


def run(args: argparse.Namespace) -> int:
    db.init_db()

    try:
        kube.load_config(args.kubeconfig, args.context)
    except Exception as e:
        db.log_event("ERROR", f"Loading kubeconfig failed: {type(e).__name__}: {e}")
        return 1

    address = args.ip_address or get_local_address_or(None)
    if not address:
        db.log_event("ERROR", "No IPv4 address to advertise; pass --ip-address")
        return 1
    try:
        address = validate_ipv4(address)
        backend = make_backend(args.backend)
    except ValueError as e:
        db.log_event("ERROR", str(e))
        return 1

    namespace = _resolve_namespace(args)
    db.log_event("INFO", f"Starting controller (namespace={namespace or '*'}, backend={backend.name}, ip={address})")

    root = CancelScope(name="root")

    def _on_signal(signum, _frame) -> None:
        db.log_event("INFO", f"Received {signal.Signals(signum).name}, shutting down")
        root.cancel()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    supervisor = ProcessSupervisor(root.child("supervisor"), backend, address)
    dry_run = LoggingHostHandler() if args.dry_run else None
    reconciler = Reconciler(dry_run or supervisor)
    watcher = kube.IngressWatcher(
        reconciler,
        namespace=namespace,
        resync_period_s=settings.resync_period_s,
        watch_timeout_s=settings.watch_timeout_s,
    )

    api = None
    if args.api_port:
        api = ApiServer(create_app(supervisor, lambda: watcher.synced, dry_run=dry_run), args.api_host, args.api_port)
        api.start()

    reconciler.start()
    watcher.start(root)

    code = 0
    try:
        wait_for_sync(watcher, root, args.sync_timeout)
    except CacheSyncError as e:
        db.log_event("ERROR", str(e))
        code = 1

    if watcher.synced:
        db.log_event("INFO", "Controller synced and ready")
        root.wait()

    reconciler.stop()
    root.cancel()
    watcher.join(5)
    reconciler.join(5)
    if not supervisor.join(settings.stop_grace_s + 1):
        db.log_event("WARN", "Some advertisers did not stop in time")
    if api:
        api.stop()
    db.log_event("INFO", "Shut down")
    return code


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.cmd == "run":
        return run(args)

    base = args.api.rstrip("/")

    if args.cmd == "hosts":
        r = requests.get(f"{base}/hosts", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.host:
            params["host"] = args.host
        r = requests.get(f"{base}/events", params=params, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
