import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

GRAPH = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
EXCHANGE = "https://outlook.office365.com/adminapi/beta"
EXCHANGE_SCOPES = ["https://outlook.office365.com/.default"]

# SKU part numbers as reported by GET https://graph.microsoft.com/v1.0/subscribedSkus
DEFAULT_E1_SKU = "STANDARDPACK"
DEFAULT_E3_SKU = "ENTERPRISEPACK"
DEFAULT_TEAMS_SKU = "Microsoft_Teams_Enterprise_New"

ARCHIVE_GATE_OUTCOME = "outcome"
ARCHIVE_GATE_STATUS_TEXT = "status-text"


@dataclass
class Settings:
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    usage_location: str = "US"
    e1_sku: str = DEFAULT_E1_SKU
    e3_sku: str = DEFAULT_E3_SKU
    teams_sku: str = DEFAULT_TEAMS_SKU
    mailbox_wait_seconds: int = 8 * 60
    mailbox_poll_seconds: int = 30
    archive_settle_seconds: int = 2 * 60
    archive_gate: str = ARCHIVE_GATE_OUTCOME

    def missing(self) -> List[str]:
        """Names of required variables that are not set."""
        required = [
            (self.tenant_id, "TENANT_ID"),
            (self.client_id, "CLIENT_ID"),
            (self.client_secret, "CLIENT_SECRET"),
        ]
        return [name for value, name in required if not value]


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer number of seconds, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum} seconds, got {value}")
    return value


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Read settings from .env (if present) and the process environment."""
    load_dotenv(env_file)
    gate = os.getenv("ARCHIVE_GATE", ARCHIVE_GATE_OUTCOME).strip().lower()
    if gate not in (ARCHIVE_GATE_OUTCOME, ARCHIVE_GATE_STATUS_TEXT):
        raise ValueError(f"ARCHIVE_GATE must be '{ARCHIVE_GATE_OUTCOME}' or '{ARCHIVE_GATE_STATUS_TEXT}', got {gate!r}")
    return Settings(
        tenant_id=os.getenv("TENANT_ID", ""),
        client_id=os.getenv("CLIENT_ID", ""),
        client_secret=os.getenv("CLIENT_SECRET", ""),
        usage_location=os.getenv("DEFAULT_USAGE_LOCATION", "US"),
        e1_sku=os.getenv("E1_SKU", DEFAULT_E1_SKU),
        e3_sku=os.getenv("E3_SKU", DEFAULT_E3_SKU),
        teams_sku=os.getenv("TEAMS_SKU", DEFAULT_TEAMS_SKU),
        mailbox_wait_seconds=_int_env("MAILBOX_WAIT_SECONDS", 8 * 60),
        mailbox_poll_seconds=_int_env("MAILBOX_POLL_SECONDS", 30, minimum=1),
        archive_settle_seconds=_int_env("ARCHIVE_SETTLE_SECONDS", 2 * 60),
        archive_gate=gate,
    )
