"""
Test doubles: an in-memory tenant, a simulated clock and row/pool builders.
"""

from license_allocator import LicenseAllocator, LicensePool
from provision_errors import CreationError, MailboxError
from provision_models import LICENSE_E1, LICENSE_E3, TEAMS, UserRow


# ===================
# SIMULATED CLOCK
# ===================

class FakeClock:
    """Monotonic clock whose sleep() just advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ===================
# FAKE TENANT
# ===================

class FakeBackend:
    """In-memory stand-in for M365Backend that records every call."""

    def __init__(self, clock: FakeClock = None):
        self.clock = clock
        self.users = {}
        self.mailboxes = {}
        self.licenses = {}
        self.regions = {}
        self.archives = set()
        self.auto_expanding = set()
        self.calls = []
        self.what_if = False
        # upn -> clock time at which the mailbox becomes visible
        self.mailbox_ready_at = {}
        self.fail_create = set()
        self.fail_assign = set()
        self.fail_archive = set()
        self.fail_auto_expanding = set()

    def add_user(self, upn: str, mailbox: bool = False):
        self.users[upn] = {"id": f"id-{upn}", "userPrincipalName": upn}
        if mailbox:
            self.mailboxes[upn] = {"UserPrincipalName": upn}

    def find_identity(self, upn):
        self.calls.append(("find_identity", upn))
        return self.users.get(upn)

    def create_identity(self, row):
        self.calls.append(("create_identity", row.target_upn))
        if row.target_upn in self.fail_create:
            raise CreationError(f"Could not create {row.target_upn}: 400 Bad Request")
        self.users[row.target_upn] = {"id": f"id-{row.target_upn}", "userPrincipalName": row.target_upn}
        return self.users[row.target_upn]

    def set_region(self, upn, code):
        self.calls.append(("set_region", upn))
        self.regions[upn] = code

    def list_license_pools(self):
        return []

    def assign_licenses(self, upn, add_skus, remove_skus):
        self.calls.append(("assign_licenses", upn))
        if upn in self.fail_assign:
            raise RuntimeError("POST assignLicense failed: 400")
        self.licenses.setdefault(upn, []).extend(add_skus)
        assigned = self.users[upn].setdefault("assignedLicenses", [])
        assigned.extend({"skuId": sku, "disabledPlans": []} for sku in add_skus)

    def find_mailbox(self, upn):
        self.calls.append(("find_mailbox", upn))
        ready_at = self.mailbox_ready_at.get(upn)
        if ready_at is not None and self.clock is not None and self.clock() >= ready_at:
            self.mailboxes[upn] = {"UserPrincipalName": upn}
        return self.mailboxes.get(upn)

    def enable_archive(self, upn):
        self.calls.append(("enable_archive", upn))
        if upn in self.fail_archive:
            raise MailboxError(f"Could not enable archive for {upn}")
        self.archives.add(upn)

    def enable_auto_expanding_archive(self, upn):
        self.calls.append(("enable_auto_expanding_archive", upn))
        if upn in self.fail_auto_expanding:
            raise MailboxError(f"Could not enable auto-expanding archive for {upn}")
        self.auto_expanding.add(upn)

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


def make_row(upn: str = "jane.doe@contoso.com", license_type: str = LICENSE_E3,
             archive: bool = False, **overrides) -> UserRow:
    values = dict(
        source_upn=upn.replace("contoso", "fabrikam"),
        target_upn=upn,
        display_name="Jane Doe",
        job_title="Analyst",
        department="Finance",
        password="Welcome#2024",
        license_type=license_type,
        archive_requested=archive,
    )
    values.update(overrides)
    return UserRow(**values)


def make_allocator(e1: int = 5, e3: int = 5, teams: int = 10) -> LicenseAllocator:
    return LicenseAllocator([
        LicensePool(LICENSE_E1, "sku-e1", e1),
        LicensePool(LICENSE_E3, "sku-e3", e3),
        LicensePool(TEAMS, "sku-teams", teams),
    ])


