"""Propmarket process entry-point.

Usage:
    python -m propmarket [--log-level L] [--log-format F] cleanup [--dry-run] [--legacy-root]
    python -m propmarket set-status LISTING_ID STATUS [--note N] [--actor A] [--link L]
    python -m propmarket delete LISTING_ID [--no-sweep]

The operations themselves live in ``propmarket.media`` and
``propmarket.listings``; this module only parses arguments, configures
logging first so that every subsequent import already has a working logger,
and prints each command's result as JSON on stdout.

Exit codes: ``0`` success, ``1`` configuration error, ``2`` the operation was
rejected or failed (unknown listing, invalid status, store error or a store
call that timed out).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError

from propmarket.core import configure_logging, new_request_id
from propmarket.core.exceptions import ConfigError, PropmarketError
from propmarket.core.run_context import RunContext
from propmarket.core.settings import Settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="propmarket",
        description="Property marketplace maintenance commands.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    cleanup = commands.add_parser(
        "cleanup",
        help="Delete media objects that no listing claims.",
    )
    cleanup.add_argument(
        "--dry-run",
        action="store_true",
        help="Report orphans without deleting anything.",
    )
    cleanup.add_argument(
        "--legacy-root",
        action="store_true",
        help=(
            "Scan the whole bucket and match objects against every URL or "
            "media path stored in the database (fallback for pre-folder data)."
        ),
    )

    set_status = commands.add_parser("set-status", help="Change a listing's posting status.")
    set_status.add_argument("listing_id", metavar="LISTING_ID")
    set_status.add_argument("status", metavar="STATUS", help="pending|approved|rejected")
    set_status.add_argument("--note", default=None, help="Moderator note for the audit trail.")
    set_status.add_argument("--actor", default=None, help="Id of the admin making the change.")
    set_status.add_argument(
        "--link",
        default=None,
        help="Deep link for the owner notification (overrides the default).",
    )

    delete = commands.add_parser("delete", help="Delete a listing and sweep its media.")
    delete.add_argument("listing_id", metavar="LISTING_ID")
    delete.add_argument(
        "--no-sweep",
        action="store_true",
        help="Only queue the media sweep; leave it to the next cleanup run.",
    )
    return parser


async def _run_command(args: argparse.Namespace, settings: Settings) -> dict[str, Any]:
    """Execute the selected sub-command and return its JSON payload."""
    # Lazy import keeps startup fast when module is imported without running.
    from propmarket.app import open_app  # noqa: PLC0415
    from propmarket.core.converters import listing_to_payload  # noqa: PLC0415

    async with open_app(settings) as app:
        if args.command == "cleanup":
            ctx = RunContext(dry_run=args.dry_run)
            if args.legacy_root:
                legacy_report = await app.legacy_reconciler.run(ctx)
                return legacy_report.to_payload()
            report = await app.reconciler.run(ctx)
            return report.to_payload()

        if args.command == "set-status":
            listing = await app.service.change_status(
                args.listing_id,
                args.status,
                note=args.note,
                actor_id=args.actor,
                notification_link=args.link,
            )
            return listing_to_payload(listing)

        result = await app.service.delete_listing(args.listing_id, sweep_now=not args.no_sweep)
        return {
            "deleted": args.listing_id,
            "sweep": result.to_payload() if result is not None else None,
        }


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    # Configure logging BEFORE any other propmarket work so that every module
    # obtains a correctly-configured logger on first use.
    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"propmarket: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)
    request_id = new_request_id()
    logger.info("propmarket %s starting (request_id=%s)", args.command, request_id)

    try:
        settings = Settings()
    except ValidationError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    try:
        payload = asyncio.run(_run_command(args, settings))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except PropmarketError as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.exit(2)
    except TimeoutError:
        logger.error(
            "%s failed: blob store call exceeded %.1fs",
            args.command,
            settings.store_call_timeout_s,
        )
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(0)

    print(json.dumps(payload, indent=2, default=str))  # noqa: T201


if __name__ == "__main__":
    main()
