#!/usr/bin/env python3
"""netscope command line: run the API server or a one-off scan in the terminal."""

import argparse
import asyncio
import sys
import uuid

from netscope.base.config import get_config, setup_logging
from netscope.base.session import EventKind, SessionStatus, SessionStore
from netscope.data.db import Database
from netscope.engine.finalizer import ScanFinalizer
from netscope.engine.runner import ProcessRunner
from netscope.toolkit.nmap_args import (
    SCAN_PROFILES,
    apply_profile_defaults,
    build_nmap_args,
    validate_generated_args,
)
from netscope.toolkit.validation import validate_scan_config


def run_server(args):
    """Launch the API server."""
    from netscope.server.api import serve
    serve(port=args.port, host=args.host)


def run_scan(args):
    """Run one scan in-process, printing progress lines as they arrive."""
    setup_logging()
    config = apply_profile_defaults(
        {"target": args.target}, args.profile,
        default_host_timeout_seconds=get_config().scan.default_host_timeout_seconds,
    )
    allow_public = args.allow_public or get_config().scan.allow_public_targets
    errors, warnings = validate_scan_config(config, allow_public_targets=allow_public)
    for w in warnings:
        print(f"warning: {w.message}", file=sys.stderr)
    if errors:
        for e in errors:
            print(f"error: {e.field}: {e.message}", file=sys.stderr)
        return 2
    nmap_args = build_nmap_args(config)
    if not validate_generated_args(nmap_args):
        print("error: invalid or unsafe Nmap arguments detected", file=sys.stderr)
        return 2
    return asyncio.run(_headless_scan(config, nmap_args, save=args.save))


async def _headless_scan(config, args, save: bool = False) -> int:
    cfg = get_config()
    store = SessionStore(max_logs=cfg.session.max_logs)
    runner = ProcessRunner(
        store,
        executable=cfg.scan.nmap_path,
        timeout_margin_seconds=cfg.scan.timeout_margin_seconds,
        max_result_buffer_bytes=cfg.scan.max_result_buffer_bytes,
    )
    db = None
    scan_id = uuid.uuid4().hex
    if save:
        db = Database(str(cfg.storage.db_path))
        await db.init()
        await db.create_scan_record(scan_id, owner_id="local", target=config.target, profile=config.scan_profile)

    store.create_session(scan_id, config.target, config.scan_profile, "local")
    store.subscribe(scan_id, EventKind.LOG, lambda ev: print(ev.payload["message"]))
    store.subscribe(scan_id, EventKind.STATUS, lambda ev: print(f"[{ev.payload['status']}]"))

    print(f"nmap {' '.join(args)}")
    try:
        snapshot = await ScanFinalizer(store, runner, db).execute(scan_id, args, config.host_timeout_seconds)
    finally:
        if db is not None:
            await db.close()

    if snapshot is None or snapshot.status != SessionStatus.DONE:
        message = snapshot.error_message if snapshot is not None else "scan session lost"
        print(f"Scan failed: {message}", file=sys.stderr)
        return 1

    stats = snapshot.result["stats"]
    print(
        f"\nHosts: {stats['hostsUp']} up / {stats['totalHosts']} total, "
        f"open ports: {stats['totalOpenPorts']}, duration: {stats['durationSeconds']}s"
    )
    for host in snapshot.result["hosts"]:
        open_ports = [f"{p['port']}/{p['protocol']}" for p in host["ports"] if p["state"] == "open"]
        label = str(host["ip"]) + (f" ({host['hostname']})" if host["hostname"] else "")
        print(f"  {label}: risk={host['riskLevel']} ports={', '.join(open_ports) or '-'}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="netscope", description="NetScope scan dashboard backend")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", help="Bind address (default from NETSCOPE_API_HOST)")
    serve_parser.add_argument("--port", type=int, help="Port (default from NETSCOPE_API_PORT)")
    serve_parser.set_defaults(func=run_server)

    scan_parser = subparsers.add_parser("scan", help="Run a scan in the terminal")
    scan_parser.add_argument("target", help="IP, CIDR, range or hostname")
    scan_parser.add_argument("--profile", choices=SCAN_PROFILES, default="quick")
    scan_parser.add_argument("--allow-public", action="store_true", help="Permit public IPv4 targets")
    scan_parser.add_argument("--save", action="store_true", help="Record the scan in the history database")
    scan_parser.set_defaults(func=run_scan)

    args = parser.parse_args(argv)

    if hasattr(args, "func"):
        return args.func(args) or 0
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
