# ================================================================
# File     : client.py
# Purpose  : Microsoft Graph API read-only client, one per tenant
# Notes    : Read-only: GET with pagination,
#            retries on transient errors only.
#            - Auto-refresh token on 401
#            - Proactive refresh if token expires in <5 minutes
#            - No interactive prompts: tenants run unattended
# ================================================================

import time
import msal
import requests
from typing import Dict, Any, List, Optional

from core.errors import GraphRequestError, GraphTransientError, TenantAuthError
from core.utils import fncPrintMessage, fncRetry

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"
DEFAULT_AUTHORITY = "https://login.microsoftonline.com"
REQUEST_TIMEOUT = 60

# Retry transport hiccups and 5xx; 4xx are answers, not accidents
RETRYABLE = (GraphTransientError, requests.ConnectionError, requests.Timeout)


class GraphClient:
    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        tenant_name: Optional[str] = None,
        authority: str = DEFAULT_AUTHORITY,
    ):
        self.tenant_name = tenant_name or tenant_id
        if not all([tenant_id, client_id, client_secret]):
            raise TenantAuthError(self.tenant_name, "Missing tenant_id, client_id or client_secret")

        self.tenant_id = tenant_id
        self.client_id = client_id

        # Application scope (app-only). The app needs RoleManagement.Read.Directory + Directory.Read.All.
        self.scope = ["https://graph.microsoft.com/.default"]
        self.authority = f"{authority.rstrip('/')}/{tenant_id}"

        fncPrintMessage(f"[{self.tenant_name}] Initialising Microsoft Graph (read-only) client...", "debug")

        try:
            self.app = msal.ConfidentialClientApplication(
                client_id=client_id,
                client_credential=client_secret,
                authority=self.authority,
            )
        except ValueError as ex:
            # msal validates the authority eagerly
            raise TenantAuthError(self.tenant_name, "Invalid authority", cause=ex) from ex

        self.token: str = ""
        self._token_expires_on: int = 0  # epoch seconds
        self._set_token(self._acquire_token())
        self._session = requests.Session()

        fncPrintMessage(f"[{self.tenant_name}] GraphClient initialised (read-only).", "debug")

    # ---------- Token helpers ----------

    def _acquire_token(self) -> Dict[str, Any]:
        """Acquire a token using MSAL (silent -> client creds). Returns MSAL result dict."""
        fncPrintMessage(f"[{self.tenant_name}] Requesting Microsoft Graph access token...", "debug")
        result = self.app.acquire_token_silent(self.scope, account=None)
        if not result:
            result = self.app.acquire_token_for_client(scopes=self.scope)
        if "access_token" not in result:
            raise TenantAuthError(
                self.tenant_name,
                f"MSAL authentication failed: {result.get('error_description', 'Unknown error')}",
            )
        return result

    def _set_token(self, msal_result: Dict[str, Any]) -> None:
        self.token = msal_result["access_token"]
        try:
            self._token_expires_on = int(msal_result.get("expires_on") or 0)
        except (TypeError, ValueError):
            self._token_expires_on = 0
        if not self._token_expires_on:
            self._token_expires_on = int(time.time()) + int(msal_result.get("expires_in", 3600))

    def _ensure_fresh_token(self) -> None:
        now = int(time.time())
        if now >= (self._token_expires_on - 300):  # <5 minutes remaining
            fncPrintMessage(f"[{self.tenant_name}] Refreshing access token (nearing expiry)...", "debug")
            self._set_token(self._acquire_token())

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    # ---------- HTTP handling ----------

    def _send(self, method: str, url: str, params=None, json_body=None) -> requests.Response:
        return self._session.request(method, url, headers=self._auth_headers(), params=params,
                                     json=json_body, timeout=REQUEST_TIMEOUT)

    def _handle_response(self, response: requests.Response, method: str, url: str,
                         params=None, json_body=None, _retried: bool = False) -> Dict[str, Any]:
        status = response.status_code

        if status == 200:
            return response.json()

        # Rate limit
        if status == 429:
            retry_after = int(response.headers.get("Retry-After", 5))
            fncPrintMessage(f"[{self.tenant_name}] Rate limit hit. Sleeping for {retry_after}s...", "warn")
            time.sleep(retry_after)
            resp = self._send(method, url, params, json_body)
            return self._handle_response(resp, method, url, params, json_body, _retried)

        # Unauthorized (refresh and retry once)
        if status == 401 and not _retried:
            fncPrintMessage(f"[{self.tenant_name}] Access token rejected, attempting refresh.", "warn")
            self._set_token(self._acquire_token())
            resp = self._send(method, url, params, json_body)
            return self._handle_response(resp, method, url, params, json_body, _retried=True)

        if status == 401:
            raise TenantAuthError(self.tenant_name, f"Unauthorized (401) after token refresh: {response.text[:300]}")

        if status >= 500:
            raise GraphTransientError(status, url, response.text)

        if status >= 400:
            fncPrintMessage(f"[{self.tenant_name}] Graph API Error [{status}] -> {response.text[:300]}", "debug")
            raise GraphRequestError(status, url, response.text)

        # 2xx other than 200 (e.g. 204)
        try:
            return response.json()
        except ValueError:
            return {"status": status, "text": response.text}

    def _request(self, method: str, url: str, params: Optional[Dict[str, Any]] = None,
                 json_body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self._ensure_fresh_token()
        resp = self._send(method, url, params, json_body)
        return self._handle_response(resp, method, url, params, json_body)

    # ---------- Public API ----------

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Single-page GET. Use get_all for collections."""
        url = f"{GRAPH_ROOT}/{endpoint.strip().lstrip('/')}"
        fncPrintMessage(f"GET {url}", "debug")
        return fncRetry(lambda: self._request("GET", url, params=params), exceptions=RETRYABLE)

    def get_all(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Retrieve all items from a paginated Graph endpoint.
        Returns a flat list of items (value); a single object comes back as [obj].
        """
        url = f"{GRAPH_ROOT}/{endpoint.strip().lstrip('/')}"
        fncPrintMessage(f"GET (all pages) {url}", "debug")

        data = fncRetry(lambda: self._request("GET", url, params=params), exceptions=RETRYABLE)
        if isinstance(data, dict) and "value" not in data:
            return [data]
        if not isinstance(data, dict):
            return []

        items: List[Dict[str, Any]] = list(data.get("value", []))
        next_link = data.get("@odata.nextLink")
        while next_link:
            fncPrintMessage(f"Following nextLink -> {next_link}", "debug")
            link = next_link
            page = fncRetry(lambda: self._request("GET", link), exceptions=RETRYABLE)
            if not isinstance(page, dict):
                break
            items.extend(page.get("value", []))
            next_link = page.get("@odata.nextLink")
        return items
