#!/usr/bin/env python3
"""
Run one ADR orchestration pass, or an operator action, and print the result.

Settings come from the packaged defaults, overlaid by --config and by the
ADR_DATABASE_URL / ADR_VENDOR_BASE_URL environment variables.

Usage:
    python3 scripts/run_orchestration.py [options]

Examples:
    # Full run (sync, create jobs, status check, credentials, scraping)
    python3 scripts/run_orchestration.py --accounts accounts.yaml

    # Only poll every outstanding job
    python3 scripts/run_orchestration.py --check-all-statuses

    # Cancel pending jobs whose billing window has passed
    python3 scripts/run_orchestration.py --finalize-stale

    # Create the tables first (local SQLite)
    ADR_DATABASE_URL=sqlite:///adr.db python3 scripts/run_orchestration.py --create-schema
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the ADR orchestration pipeline once and wait for it to finish.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML overlay.")
    parser.add_argument(
        "--accounts",
        type=Path,
        default=None,
        help="Account feed YAML for the sync step (sync is skipped without it).",
    )
    parser.add_argument("--requested-by", default="cli", help="Recorded on the run (default: cli).")
    parser.add_argument("--create-schema", action="store_true", help="Create tables before running.")
    parser.add_argument("--skip-sync", action="store_true")
    parser.add_argument("--skip-create-jobs", action="store_true")
    parser.add_argument("--skip-status-check", action="store_true")
    parser.add_argument("--skip-credentials", action="store_true")
    parser.add_argument("--skip-scraping", action="store_true")
    parser.add_argument(
        "--check-all-statuses",
        action="store_true",
        help="Only poll every outstanding job (operator status check).",
    )
    parser.add_argument(
        "--finalize-stale",
        action="store_true",
        help="Cancel pending jobs whose billing period has ended, then exit.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the run (default: no limit).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser.parse_args()


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main() -> int:
    args = _parse_args()

    import logging

    from adr_config import load_settings
    from adr_kernel.exceptions import AdrError
    from adr_kernel.logging_config import configure_logging
    from adr_orchestration.domain.types import StatusCheckMode
    from adr_orchestration.orchestrator import AdrOrchestrator
    from adr_orchestration.runner.types import RunRequest
    from adr_orchestration.services.account_sync import FileAccountFeed

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.accounts is not None and not args.accounts.is_file():
        print(f"ERROR: Account feed not found: {args.accounts}", file=sys.stderr)
        return 1

    try:
        settings = load_settings(args.config)
        orchestrator = AdrOrchestrator.from_settings(
            settings,
            account_feed=FileAccountFeed(args.accounts) if args.accounts else None,
            create_schema=args.create_schema,
        )

        if args.finalize_stale:
            _print_json(asdict(orchestrator.finalize_stale_jobs()))
            return 0

        if args.check_all_statuses:
            request = RunRequest.status_check_only(args.requested_by)
        else:
            request = RunRequest(
                requested_by=args.requested_by,
                run_sync=not args.skip_sync,
                run_create_jobs=not args.skip_create_jobs,
                run_status_check=not args.skip_status_check,
                run_credential_verification=not args.skip_credentials,
                run_scraping=not args.skip_scraping,
                status_check_mode=StatusCheckMode.CATCH_UP,
            )

        orchestrator.start()
        try:
            snapshot = orchestrator.run_and_wait(request, timeout=args.timeout)
        finally:
            orchestrator.stop()
    except AdrError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1

    _print_json({
        "request_id": snapshot.request_id,
        "status": snapshot.status.value,
        "error_message": snapshot.error_message,
        "results": asdict(snapshot.results),
    })
    return 0 if snapshot.status.value == "completed" else 2


if __name__ == "__main__":
    sys.exit(main())
