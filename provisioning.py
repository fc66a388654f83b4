import logging
from typing import Iterable, Optional, Tuple

from license_allocator import LicenseAllocator
from mailbox_readiness import ReadinessPoller
from provision_models import (
    TEAMS,
    ArchiveState,
    LicenseOutcome,
    OutcomeRecord,
    RunResult,
    SkippedRecord,
    UserRow,
)

logger = logging.getLogger(__name__)

FAILED = "Failed"


def archive_gate(row: UserRow, license_outcome: LicenseOutcome) -> bool:
    return row.archive_requested and license_outcome is LicenseOutcome.ASSIGNED


def legacy_archive_gate(row: UserRow, status: str) -> bool:
    """Textual check kept for output compatibility with older runs."""
    return row.archive_requested and "assigned" in status.lower()


class ProvisioningOrchestrator:
    """Runs every row through exists-check, create, usage location, license and archive.

    Rows are processed strictly one after another. A row that raises is
    recorded as Failed and the batch moves on.
    """

    def __init__(self, backend, allocator: LicenseAllocator, poller: ReadinessPoller,
                 usage_location: str = "US", legacy_archive_gate: bool = False):
        self.backend = backend
        self.allocator = allocator
        self.poller = poller
        self.usage_location = usage_location
        self.legacy_archive_gate = legacy_archive_gate
        self.result = RunResult()

    def run(self, rows: Iterable[UserRow]) -> RunResult:
        logger.info(f"License pools at start: {self.allocator.snapshot()}")
        for row in rows:
            self.result.outcomes.append(self.process_row(row))
        self.result.pools = self.allocator.snapshot()
        logger.info(f"License pools at end: {self.result.pools}")
        return self.result

    def process_row(self, row: UserRow) -> OutcomeRecord:
        upn = row.target_upn
        logger.info(f"Processing {upn}")
        try:
            created, identity = self._ensure_identity(row)
            self.backend.set_region(upn, self.usage_location)
            logger.info(f"Usage location {self.usage_location} set for {upn}")
            status, license_outcome = self._assign_license(row, identity)
            archive_state = self._archive(row, status, license_outcome)
        except Exception as e:
            logger.error(f"Failed {upn}: {e}")
            return OutcomeRecord(upn, row.display_name, row.license_type, FAILED,
                                 ArchiveState.NOT_APPLICABLE, failed=True)
        logger.info(f"Done {upn}: {status}, archive {archive_state.value}")
        return OutcomeRecord(upn, row.display_name, row.license_type, status, archive_state,
                             created=created, license_outcome=license_outcome)

    def _ensure_identity(self, row: UserRow) -> Tuple[bool, dict]:
        """Returns (created_by_this_run, identity)."""
        identity = self.backend.find_identity(row.target_upn)
        if identity:
            logger.info(f"{row.target_upn} already exists, skipping creation")
            return False, identity
        identity = self.backend.create_identity(row)
        logger.info(f"Created {row.target_upn}")
        return True, identity or {}

    def _assign_license(self, row: UserRow, identity: dict) -> Tuple[str, LicenseOutcome]:
        key = row.license_key
        # statuses carry the tag as written in the input
        tag = row.license_type.strip()
        if not self.allocator.handles(key):
            logger.warning(f"Unknown license type '{row.license_type}' for {row.target_upn}")
            return f"Unknown license type: {row.license_type}", LicenseOutcome.UNKNOWN

        held = {lic.get("skuId") for lic in identity.get("assignedLicenses") or []}
        wanted = self.allocator.sku_ids_for(key)
        if wanted and all(sku and sku in held for sku in wanted):
            logger.info(f"{row.target_upn} already holds {key} + Teams, no seat taken")
            return f"{tag} + Teams already assigned", LicenseOutcome.ASSIGNED

        grant = self.allocator.try_allocate(key)
        if not grant.granted:
            reason = f"No {tag}/Teams license left"
            logger.warning(f"{reason} for {row.target_upn} "
                           f"({key}={self.allocator.available(key)}, {TEAMS}={self.allocator.available(TEAMS)})")
            self.result.skipped.append(SkippedRecord(row.target_upn, reason))
            return f"Skipped ({tag} license exhausted)", LicenseOutcome.SKIPPED

        self.backend.assign_licenses(row.target_upn, grant.sku_ids, [])
        logger.info(f"{key} + Teams assigned to {row.target_upn}")
        return f"{tag} + Teams assigned", LicenseOutcome.ASSIGNED

    def _archive(self, row: UserRow, status: str, license_outcome: LicenseOutcome) -> ArchiveState:
        upn = row.target_upn
        if not row.archive_requested:
            logger.debug(f"Archive not requested for {upn}")
            return ArchiveState.NOT_ENABLED
        if self.legacy_archive_gate:
            allowed = legacy_archive_gate(row, status)
        else:
            allowed = archive_gate(row, license_outcome)
        if not allowed:
            logger.info(f"Archive requested for {upn} but no license was assigned, skipping archive")
            return ArchiveState.NOT_ENABLED

        if self.backend.find_mailbox(upn):
            logger.info(f"{upn} already has a mailbox, skipping archive")
            return ArchiveState.NOT_ENABLED

        if getattr(self.backend, "what_if", False):
            logger.info(f"[what-if] Would wait for mailbox and enable archive for {upn}")
            return ArchiveState.NOT_ENABLED

        mailbox: Optional[dict] = self.poller.wait_for_mailbox(upn)
        if not mailbox:
            logger.warning(f"Mailbox for {upn} not found after {self.poller.timeout:.0f}s")
            return ArchiveState.NOT_FOUND_AFTER_TIMEOUT

        self.backend.enable_archive(upn)
        logger.info(f"Archive enabled for {upn}")
        self.poller.settle_delay()
        try:
            self.backend.enable_auto_expanding_archive(upn)
        except Exception as e:
            logger.warning(f"Auto-expanding archive not enabled for {upn}: {e}")
            return ArchiveState.ENABLED
        logger.info(f"Auto-expanding archive enabled for {upn}")
        return ArchiveState.ENABLED_AUTO_EXPANDING
