from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

LICENSE_E1 = "E1"
LICENSE_E3 = "E3"
TEAMS = "Teams"


class ArchiveState(Enum):
    """Archive column values as written to the report"""
    NOT_ENABLED = "Not Enabled"
    ENABLED = "Enabled"
    ENABLED_AUTO_EXPANDING = "Enabled + AutoExpanding"
    NOT_FOUND_AFTER_TIMEOUT = "Mailbox Not Found (Timeout)"
    NOT_APPLICABLE = "N/A"


class LicenseOutcome(Enum):
    ASSIGNED = "assigned"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class UserRow:
    """One validated input row"""
    source_upn: str
    target_upn: str
    display_name: str
    job_title: str
    department: str
    password: str
    license_type: str
    archive_requested: bool = False
    line: int = 0

    @property
    def mail_nickname(self) -> str:
        return self.target_upn.split("@")[0]

    @property
    def license_key(self) -> str:
        return self.license_type.strip().upper()


@dataclass(frozen=True)
class OutcomeRecord:
    target_upn: str
    display_name: str
    license_type: str
    status: str
    archive_state: ArchiveState
    created: bool = False
    license_outcome: LicenseOutcome = LicenseOutcome.UNKNOWN
    failed: bool = False

    def to_report_row(self) -> Dict[str, Any]:
        return {
            "Target_UPN": self.target_upn,
            "DisplayName": self.display_name,
            "LicenseType": self.license_type,
            "Status": self.status,
            "Archive": self.archive_state.value,
        }


@dataclass(frozen=True)
class SkippedRecord:
    target_upn: str
    reason: str

    def to_report_row(self) -> Dict[str, Any]:
        return {"Target_UPN": self.target_upn, "Reason": self.reason}


@dataclass
class RunResult:
    """Everything the report writer needs at the end of a run"""
    outcomes: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    pools: Dict[str, int] = field(default_factory=dict)

    def summary(self) -> Dict[str, int]:
        counts = {
            "processed": len(self.outcomes),
            "created": 0,
            "existing": 0,
            "assigned": 0,
            "exhausted": len(self.skipped),
            "unknown_license": 0,
            "failed": 0,
        }
        for outcome in self.outcomes:
            if outcome.failed:
                counts["failed"] += 1
                continue
            counts["created" if outcome.created else "existing"] += 1
            if outcome.license_outcome is LicenseOutcome.ASSIGNED:
                counts["assigned"] += 1
            elif outcome.license_outcome is LicenseOutcome.UNKNOWN:
                counts["unknown_license"] += 1
        return counts
