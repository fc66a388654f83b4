import argparse
import csv
import datetime
import json
import logging
import os
import sys
from typing import List, Optional

import pandas as pd
import requests

from graph_backend import M365Backend
from license_allocator import LicenseAllocator
from mailbox_readiness import ReadinessPoller
from provision_config import ARCHIVE_GATE_STATUS_TEXT, Settings, load_settings
from provision_errors import GraphError, InputError, SessionError
from provision_models import LICENSE_E1, LICENSE_E3, TEAMS, RunResult, UserRow
from provisioning import ProvisioningOrchestrator

logger = logging.getLogger("m365_provision")

# ---- Input columns (as exported from the migration workbook) ---- #
COL_SOURCE_UPN = "Source Users UPN"
COL_TARGET_UPN = "Target_UPN"
COL_DISPLAY_NAME = "Display name"
COL_JOB_TITLE = "Job title"
COL_DEPARTMENT = "Department"
COL_PASSWORD = "Password"
COL_LICENSE = "License"
COL_ARCHIVE = "Archive"

REQUIRED_COLUMNS = [COL_TARGET_UPN, COL_DISPLAY_NAME, COL_PASSWORD, COL_LICENSE]
OPTIONAL_COLUMNS = [COL_SOURCE_UPN, COL_JOB_TITLE, COL_DEPARTMENT, COL_ARCHIVE]

# Excel lookups leave these behind when a value could not be resolved
UNAVAILABLE = {"#N/A", "N/A"}
TRUTHY = {"yes", "y", "true", "1"}

REPORT_COLUMNS = ["Target_UPN", "DisplayName", "LicenseType", "Status", "Archive"]
SKIPPED_COLUMNS = ["Target_UPN", "Reason"]


def setup_logging(log_path: str, level: str = "INFO") -> None:
    """Console at the requested level, log file (appended) at DEBUG."""
    ensure_output_dirs(log_path)
    formatter = logging.Formatter(
        fmt="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(getattr(logging, level.upper()))
    console.setFormatter(formatter)
    root.addHandler(console)

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    # msal and urllib3 are chatty at DEBUG
    for noisy in ("msal", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _clean(value: Optional[str]) -> str:
    value = (value or "").strip()
    return "" if value in UNAVAILABLE else value


def load_users(path: str) -> List[UserRow]:
    """Read the input CSV and drop rows with blank or #N/A required fields."""
    if not os.path.exists(path):
        raise InputError(f"Input file not found: {path}")
    rows = []
    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            raise InputError(f"{path} is missing required columns: {missing}")
        # line 1 is the header
        for line, r in enumerate(reader, start=2):
            values = {c: _clean(r.get(c)) for c in REQUIRED_COLUMNS + OPTIONAL_COLUMNS}
            blank = [c for c in REQUIRED_COLUMNS if not values[c]]
            if blank:
                logger.warning(f"Dropping line {line}: missing {blank}")
                continue
            rows.append(UserRow(
                source_upn=values[COL_SOURCE_UPN],
                target_upn=values[COL_TARGET_UPN],
                display_name=values[COL_DISPLAY_NAME],
                job_title=values[COL_JOB_TITLE],
                department=values[COL_DEPARTMENT],
                password=values[COL_PASSWORD],
                license_type=values[COL_LICENSE],
                archive_requested=values[COL_ARCHIVE].lower() in TRUTHY,
                line=line,
            ))
    logger.info(f"Loaded {len(rows)} valid rows from {path}")
    return rows


def ensure_output_dirs(*paths: Optional[str]) -> None:
    for path in paths:
        parent = os.path.dirname(path) if path else ""
        if parent:
            os.makedirs(parent, exist_ok=True)


def write_reports(result: RunResult, report_path: str, skipped_path: str,
                  json_path: Optional[str] = None, what_if: bool = False) -> None:
    ensure_output_dirs(report_path, skipped_path, json_path)

    df = pd.DataFrame([o.to_report_row() for o in result.outcomes], columns=REPORT_COLUMNS)
    df.to_csv(report_path, index=False)
    logger.info(f"Report written: {report_path}")

    if result.skipped:
        skipped = pd.DataFrame([s.to_report_row() for s in result.skipped], columns=SKIPPED_COLUMNS)
        skipped.to_csv(skipped_path, index=False)
        logger.info(f"Skipped report written: {skipped_path}")
    elif os.path.exists(skipped_path):
        os.remove(skipped_path)
        logger.info(f"No users skipped, removed stale {skipped_path}")

    if json_path:
        with open(json_path, "w", encoding="utf-8") as jf:
            json.dump({
                "generated": datetime.datetime.now(datetime.timezone.utc).isoformat(),
                "what_if": what_if,
                "results": [o.to_report_row() for o in result.outcomes],
                "skipped": [s.to_report_row() for s in result.skipped],
                "pools": result.pools,
            }, jf, indent=2)
        logger.info(f"JSON report written: {json_path}")


def build_orchestrator(backend, settings: Settings, usage_location: Optional[str] = None,
                       legacy_archive_gate: bool = False) -> ProvisioningOrchestrator:
    allocator = LicenseAllocator.from_subscriptions(
        backend.list_license_pools(),
        {LICENSE_E1: settings.e1_sku, LICENSE_E3: settings.e3_sku, TEAMS: settings.teams_sku},
    )
    poller = ReadinessPoller(
        backend,
        timeout=settings.mailbox_wait_seconds,
        interval=settings.mailbox_poll_seconds,
        settle=settings.archive_settle_seconds,
    )
    return ProvisioningOrchestrator(
        backend,
        allocator,
        poller,
        usage_location=usage_location or settings.usage_location,
        legacy_archive_gate=legacy_archive_gate or settings.archive_gate == ARCHIVE_GATE_STATUS_TEXT,
    )


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Bulk-provision Microsoft 365 users, licenses and archives from CSV")
    ap.add_argument("--csv", required=True, help="Input CSV path")
    ap.add_argument("--report", default="out/provision_report.csv", help="Output CSV report path")
    ap.add_argument("--skipped", default="out/skipped_users.csv", help="Skipped (no license left) CSV path")
    ap.add_argument("--json", default=None, help="Optional JSON report path")
    ap.add_argument("--log", default="out/provision.log", help="Log file (appended)")
    ap.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    ap.add_argument("--usage-location", default=None, help="Override DEFAULT_USAGE_LOCATION")
    ap.add_argument("--legacy-archive-gate", action="store_true",
                    help="Decide archive eligibility from the status text, like older runs")
    ap.add_argument("--what-if", action="store_true", help="Dry run, no changes, just simulate actions")
    args = ap.parse_args(argv)

    setup_logging(args.log, args.log_level)

    try:
        settings = load_settings()
    except ValueError as e:
        logger.error(str(e))
        return 2
    missing = settings.missing()
    if missing:
        logger.error(f"Missing required environment variables: {missing}")
        return 2

    try:
        rows = load_users(args.csv)
    except InputError as e:
        logger.error(str(e))
        return 1

    backend = M365Backend.from_settings(settings, what_if=args.what_if)
    try:
        backend.connect()
    except SessionError as e:
        logger.error(f"Aborting, no rows processed: {e}")
        return 1

    try:
        orchestrator = build_orchestrator(backend, settings, args.usage_location, args.legacy_archive_gate)
    except (GraphError, requests.RequestException) as e:
        logger.error(f"Aborting, could not read license subscriptions: {e}")
        return 1
    result = orchestrator.run(rows)
    write_reports(result, args.report, args.skipped, args.json, what_if=args.what_if)
    logger.info(f"Summary: {result.summary()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
