from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING
from uuid import UUID

import uvicorn
from dotenv import load_dotenv

from disputesync.adapters.vault import FernetSecretVault
from disputesync.adapters.web import create_app
from disputesync.app import (
    SyncApplication,
    acknowledge_alert,
    build_application,
    connect_from_file,
    list_alerts,
)
from disputesync.config import (
    ConfigurationError,
    configure_logging,
    connections_file_from_env,
    load_connection_specs,
    parse_level,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronise disputes with external systems")
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        help="Logging level (default: %(default)s)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Serve the webhook endpoint")
    serve.add_argument("--host", type=str, default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument(
        "--with-workers",
        action="store_true",
        help="Also run the event and outbound workers in the same process",
    )

    subparsers.add_parser("work", help="Run event/outbound workers, polling and sweeps")

    poll = subparsers.add_parser("poll", help="Poll connections once and process the results")
    poll.add_argument(
        "--connection",
        type=str,
        help="Only poll this connection id (defaults to every active connection)",
    )

    dispatch = subparsers.add_parser("dispatch", help="Run due outbound tasks once")
    dispatch.add_argument("--limit", type=int, help="Maximum number of tasks to run")

    subparsers.add_parser("sweep", help="Expire cases whose response deadline has passed")

    connect = subparsers.add_parser("connect", help="Create or update connections")
    connect.add_argument(
        "--file",
        type=Path,
        help="Connections TOML file (defaults to $DISPUTESYNC_CONNECTIONS_FILE)",
    )
    connect.add_argument(
        "connection_ids",
        nargs="*",
        help="Only (re)configure these connection ids",
    )

    disconnect = subparsers.add_parser("disconnect", help="Erase a connection's secrets")
    disconnect.add_argument("connection_id", type=str)

    reauthorize = subparsers.add_parser(
        "reauthorize", help="Reactivate a connection that needs re-authorization"
    )
    reauthorize.add_argument("connection_id", type=str)
    reauthorize.add_argument(
        "--file",
        type=Path,
        help="Reload the connection's secrets from this connections TOML file",
    )
    reauthorize.add_argument(
        "--refresh-token",
        type=str,
        help="Refresh token obtained from a new authorization-code consent",
    )

    alerts = subparsers.add_parser("alerts", help="List or acknowledge operator alerts")
    alerts.add_argument("--all", action="store_true", help="Include acknowledged alerts")
    alerts.add_argument("--ack", type=str, help="Acknowledge the alert with this id")

    subparsers.add_parser("generate-key", help="Print a new vault key")

    return parser.parse_args(list(argv))


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValueError(f"Invalid UUID: {value}") from exc


def _connections_file(value: Path | None) -> Path:
    if value is not None:
        return value
    from_env = connections_file_from_env()
    if not from_env:
        raise ValueError("Missing --file (or set DISPUTESYNC_CONNECTIONS_FILE)")
    return Path(from_env)


async def _with_application(
    application: SyncApplication,
    step: Callable[[SyncApplication], Awaitable[None]],
) -> None:
    try:
        await step(application)
    finally:
        await application.aclose()


async def _serve(application: SyncApplication, *, host: str, port: int, workers: bool) -> None:
    server = uvicorn.Server(
        uvicorn.Config(create_app(application.orchestrator), host=host, port=port)
    )
    if not workers:
        await server.serve()
        return
    stop = asyncio.Event()
    worker = asyncio.create_task(application.orchestrator.run_forever(stop))
    try:
        await server.serve()
    finally:
        stop.set()
        await worker


async def _work(application: SyncApplication) -> None:
    await application.orchestrator.run_forever()


async def _poll(application: SyncApplication, connection_id: str | None) -> None:
    orchestrator = application.orchestrator
    if connection_id is None:
        emitted = await orchestrator.poll_all()
    else:
        emitted = await orchestrator.poll_connection(connection_id)
    processed = await orchestrator.process_pending_events()
    log.info("Poll finished: emitted=%s, processed=%s", emitted, processed)


async def _dispatch(application: SyncApplication, limit: int | None) -> None:
    summary = await application.orchestrator.dispatch_due(limit=limit)
    log.info(
        "Dispatch finished: %s",
        ", ".join(f"{status}={count}" for status, count in sorted(summary.items())) or "idle",
    )


def _run_command(args: argparse.Namespace) -> None:  # noqa: C901
    if args.command == "generate-key":
        print(FernetSecretVault.generate_key())  # noqa: T201
        return

    application = build_application()
    orchestrator = application.orchestrator
    command = args.command
    if command == "serve":
        asyncio.run(
            _with_application(
                application,
                lambda app: _serve(
                    app, host=args.host, port=args.port, workers=args.with_workers
                ),
            )
        )
    elif command == "work":
        asyncio.run(_with_application(application, _work))
    elif command == "poll":
        asyncio.run(_with_application(application, lambda app: _poll(app, args.connection)))
    elif command == "dispatch":
        asyncio.run(_with_application(application, lambda app: _dispatch(app, args.limit)))
    elif command == "sweep":
        expired = orchestrator.sweep()
        log.info("Sweep finished: %d case(s) expired", len(expired))
    elif command == "connect":
        connections = connect_from_file(
            application, _connections_file(args.file), only=args.connection_ids
        )
        log.info("Configured %d connection(s)", len(connections))
    elif command == "disconnect":
        cancelled = orchestrator.disconnect(args.connection_id)
        log.info("Disconnected %s (%d task(s) cancelled)", args.connection_id, cancelled)
    elif command == "reauthorize":
        secrets = None
        if args.file is not None:
            specs = {spec.connection_id: spec for spec in load_connection_specs(args.file)}
            if args.connection_id not in specs:
                raise ValueError(f"{args.connection_id} is not defined in {args.file}")
            secrets = dict(specs[args.connection_id].secrets)
            secrets.pop("refresh_token", None)
        orchestrator.reauthorize(
            args.connection_id, secrets=secrets, refresh_token=args.refresh_token
        )
    elif command == "alerts":
        if args.ack:
            alert = acknowledge_alert(application, _parse_uuid(args.ack))
            log.info("Acknowledged alert %s", alert.id)
            return
        for alert in list_alerts(application, include_acknowledged=args.all):
            print(  # noqa: T201
                f"{alert.id} {alert.created_at:%Y-%m-%d %H:%M} {alert.level:<7} "
                f"{alert.scope}:{alert.ref} {alert.message}"
            )
    else:
        raise ValueError(f"Unsupported command: {command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        configure_logging(level=parse_level(parsed_args.log_level))
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        _run_command(parsed_args)
    except (ValueError, ConfigurationError):
        log.exception("Invalid invocation")
        sys.exit(2)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
