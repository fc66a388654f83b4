import logging
from typing import Dict, List, Optional

import requests
from msal import ConfidentialClientApplication

from provision_config import EXCHANGE, EXCHANGE_SCOPES, GRAPH, GRAPH_SCOPES, Settings
from provision_errors import AssignmentError, CreationError, GraphError, MailboxError, SessionError
from provision_models import UserRow

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60


class TokenSession:
    """Client-credentials session for one Microsoft 365 API surface.

    msal caches the token in memory and refreshes it when it expires, so
    every request asks it for a token instead of holding one.
    """

    def __init__(self, name: str, tenant_id: str, client_id: str, client_secret: str,
                 scopes: List[str], app=None, http=None):
        self.name = name
        self.scopes = scopes
        self.app = app or ConfidentialClientApplication(
            client_id,
            authority=f"https://login.microsoftonline.com/{tenant_id}",
            client_credential=client_secret,
        )
        self.http = http or requests.Session()

    def token(self) -> str:
        result = self.app.acquire_token_for_client(self.scopes)
        if "access_token" not in result:
            raise SessionError(
                f"{self.name} token acquisition failed: "
                f"{result.get('error')} {result.get('error_description', '')}".strip()
            )
        return result["access_token"]

    def connect(self) -> None:
        self.token()
        logger.info(f"Connected to {self.name}")

    def request(self, method: str, url: str, params: Optional[dict] = None,
                body: Optional[dict] = None) -> dict:
        headers = {"Authorization": f"Bearer {self.token()}"}
        if body is not None:
            headers["Content-Type"] = "application/json"
        r = self.http.request(method, url, headers=headers, params=params, json=body,
                              timeout=REQUEST_TIMEOUT)
        if r.status_code >= 400:
            raise GraphError(method, url, r.status_code, r.text)
        return r.json() if r.text else {}

    def get(self, url: str, params: Optional[dict] = None) -> dict:
        return self.request("GET", url, params=params)

    def post(self, url: str, body: dict) -> dict:
        return self.request("POST", url, body=body)

    def patch(self, url: str, body: dict) -> dict:
        return self.request("PATCH", url, body=body)


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


def _user_url(upn: str) -> str:
    # guest UPNs carry #EXT#, which would otherwise end the path as a fragment
    quoted = requests.utils.quote(upn, safe="@")
    return f"{GRAPH}/users/{quoted}"


class M365Backend:
    """Directory operations go to Graph, mailbox operations to Exchange Online.

    With what_if=True every mutating call is logged and skipped.
    """

    def __init__(self, graph: TokenSession, exchange: TokenSession, tenant_id: str,
                 what_if: bool = False):
        self.graph = graph
        self.exchange = exchange
        self.tenant_id = tenant_id
        self.what_if = what_if

    @classmethod
    def from_settings(cls, settings: Settings, what_if: bool = False) -> "M365Backend":
        graph = TokenSession("Microsoft Graph", settings.tenant_id, settings.client_id,
                             settings.client_secret, GRAPH_SCOPES)
        exchange = TokenSession("Exchange Online", settings.tenant_id, settings.client_id,
                                settings.client_secret, EXCHANGE_SCOPES)
        return cls(graph, exchange, settings.tenant_id, what_if=what_if)

    def connect(self) -> None:
        """Authenticate both surfaces; raises SessionError on the first failure."""
        for session in (self.graph, self.exchange):
            try:
                session.connect()
            except SessionError:
                raise
            except Exception as e:
                raise SessionError(f"Could not connect to {session.name}: {e}") from e

    # ---- directory ---- #

    def find_identity(self, upn: str) -> Optional[dict]:
        data = self.graph.get(f"{GRAPH}/users", params={
            "$filter": f"userPrincipalName eq '{_odata_quote(upn)}'",
            "$select": "id,userPrincipalName,assignedLicenses",
        })
        users = data.get("value") or []
        return users[0] if users else None

    def create_identity(self, row: UserRow) -> dict:
        body = {
            "accountEnabled": True,
            "displayName": row.display_name,
            "mailNickname": row.mail_nickname,
            "userPrincipalName": row.target_upn,
            "passwordProfile": {
                "forceChangePasswordNextSignIn": True,
                "password": row.password,
            },
        }
        if row.department:
            body["department"] = row.department
        if row.job_title:
            body["jobTitle"] = row.job_title
        if self.what_if:
            logger.info(f"[what-if] Would create {row.target_upn}")
            return {"id": f"whatif-{row.target_upn}", "userPrincipalName": row.target_upn}
        try:
            return self.graph.post(f"{GRAPH}/users", body)
        except GraphError as e:
            raise CreationError(f"Could not create {row.target_upn}: {e}") from e

    def set_region(self, upn: str, code: str) -> None:
        if self.what_if:
            logger.info(f"[what-if] Would set usageLocation={code} on {upn}")
            return
        self.graph.patch(_user_url(upn), {"usageLocation": code})

    def list_license_pools(self) -> List[Dict]:
        data = self.graph.get(f"{GRAPH}/subscribedSkus")
        pools = []
        for sku in data.get("value", []):
            pools.append({
                "skuPartNumber": sku.get("skuPartNumber"),
                "skuId": sku.get("skuId"),
                "totalUnits": (sku.get("prepaidUnits") or {}).get("enabled", 0),
                "consumedUnits": sku.get("consumedUnits", 0),
            })
        return pools

    def assign_licenses(self, upn: str, add_skus: List[str], remove_skus: List[str]) -> None:
        body = {
            "addLicenses": [{"skuId": sku, "disabledPlans": []} for sku in add_skus],
            "removeLicenses": list(remove_skus),
        }
        if self.what_if:
            logger.info(f"[what-if] Would assign {add_skus} to {upn}")
            return
        try:
            self.graph.post(f"{_user_url(upn)}/assignLicense", body)
        except GraphError as e:
            raise AssignmentError(f"Could not assign licenses to {upn}: {e}") from e

    # ---- mailbox ---- #

    def _cmdlet(self, name: str, parameters: dict) -> dict:
        url = f"{EXCHANGE}/{self.tenant_id}/InvokeCommand"
        return self.exchange.post(url, {"CmdletInput": {"CmdletName": name, "Parameters": parameters}})

    def find_mailbox(self, upn: str) -> Optional[dict]:
        try:
            data = self._cmdlet("Get-Mailbox", {"Identity": upn})
        except GraphError as e:
            if e.status_code == 404 or "couldn't be found" in e.text:
                return None
            raise
        mailboxes = data.get("value") or []
        return mailboxes[0] if mailboxes else None

    def enable_archive(self, upn: str) -> None:
        if self.what_if:
            logger.info(f"[what-if] Would enable archive for {upn}")
            return
        try:
            self._cmdlet("Enable-Mailbox", {"Identity": upn, "Archive": True})
        except GraphError as e:
            raise MailboxError(f"Could not enable archive for {upn}: {e}") from e

    def enable_auto_expanding_archive(self, upn: str) -> None:
        if self.what_if:
            logger.info(f"[what-if] Would enable auto-expanding archive for {upn}")
            return
        try:
            self._cmdlet("Enable-Mailbox", {"Identity": upn, "AutoExpandingArchive": True})
        except GraphError as e:
            raise MailboxError(f"Could not enable auto-expanding archive for {upn}: {e}") from e
