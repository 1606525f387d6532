"""WHM (cPanel) control-panel client."""

import base64
from typing import Any, Optional

import httpx
import structlog

from provisioner.services.protocols import Account, AccountDetails, CollaboratorError

logger = structlog.get_logger(__name__)


def _split_domains(value: Any) -> tuple[str, ...]:
    """WHM returns domain lists either as arrays or comma-separated strings."""
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(d.strip() for d in value.split(",") if d.strip())
    return tuple(str(d) for d in value)


def _to_account(raw: dict[str, Any]) -> Account:
    return Account(
        username=raw.get("user", ""),
        domain=raw.get("domain", ""),
        email=raw.get("email") or None,
        plan=raw.get("plan") or None,
        suspended=bool(raw.get("suspended")),
        addon_domains=_split_domains(raw.get("addon_domains")),
        parked_domains=_split_domains(raw.get("parked_domains")),
        sub_domains=_split_domains(raw.get("sub_domains")),
    )


class WhmClient:
    """
    Talks to the WHM `/json-api` endpoints.

    Authenticates with an API token (`WHM user:token`) when one is given,
    otherwise with HTTP basic auth.
    """

    def __init__(
        self,
        host: str,
        username: str,
        api_token: Optional[str] = None,
        password: Optional[str] = None,
        port: int = 2087,
        use_ssl: bool = True,
        verify_ssl: bool = False,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if api_token:
            auth = f"WHM {username}:{api_token}"
        elif password:
            token = base64.b64encode(f"{username}:{password}".encode()).decode()
            auth = f"Basic {token}"
        else:
            raise ValueError("Either API token or password must be provided")

        scheme = "https" if use_ssl else "http"
        self.base_url = f"{scheme}://{host}:{port}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": auth},
            timeout=timeout,
            verify=verify_ssl,
            transport=transport,
        )

    async def _get(self, path: str, **params: Any) -> dict[str, Any]:
        try:
            response = await self._client.get(path, params=params or None)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CollaboratorError(
                f"WHM API error: {e.response.status_code}", code="WHM_API_ERROR"
            ) from e
        except httpx.HTTPError as e:
            raise CollaboratorError(
                f"WHM request failed: {str(e) or type(e).__name__}",
                code="REQUEST_FAILED",
            ) from e
        return response.json()

    @staticmethod
    def _check_result(data: dict[str, Any], fallback: str) -> dict[str, Any]:
        results = data.get("result") or []
        if results and results[0].get("status") == 1:
            return results[0]
        message = (results[0].get("statusmsg") if results else None) or data.get(
            "error"
        )
        raise CollaboratorError(message or fallback, code="WHM_API_ERROR")

    async def test_connection(self) -> None:
        data = await self._get("/json-api/version")
        logger.info("whm_connection_ok", host=self.base_url, version=data.get("version"))

    async def list_accounts(self, search: Optional[str] = None) -> list[Account]:
        params = {"search": search, "searchtype": "domain"} if search else {}
        data = await self._get("/json-api/listaccts", **params)
        if "acct" not in data:
            raise CollaboratorError("Invalid accounts list response", code="WHM_API_ERROR")
        return [_to_account(raw) for raw in data.get("acct") or []]

    async def account_exists(self, domain: str) -> bool:
        accounts = await self.list_accounts()
        exists = any(account.serves(domain) for account in accounts)
        logger.debug("whm_domain_checked", domain=domain, exists=exists)
        return exists

    async def find_account_by_key(self, domain: str) -> Optional[Account]:
        """Account whose main domain is `domain`, else one serving it as an alias."""
        accounts = await self.list_accounts(search=domain)
        for account in accounts:
            if account.domain == domain:
                return account
        for account in accounts:
            if account.serves(domain):
                return account
        return None

    async def create_account(self, details: AccountDetails) -> dict[str, Any]:
        form: dict[str, Any] = {
            "domain": details.domain,
            "username": details.username,
            "password": details.password,
            "savepkg": 0,
            "featurelist": "default",
            "maxftp": "unlimited",
            "maxlst": "unlimited",
        }
        if details.email:
            form["contactemail"] = details.email
        if details.plan:
            form["plan"] = details.plan
        form.update(details.extra)

        try:
            response = await self._client.post("/json-api/createacct", data=form)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CollaboratorError(
                f"WHM request failed: {str(e) or type(e).__name__}",
                code="REQUEST_FAILED",
            ) from e

        result = self._check_result(response.json(), "Unknown error from WHM API")
        logger.info(
            "whm_account_created", domain=details.domain, username=details.username
        )
        return {
            "domain": details.domain,
            "username": details.username,
            "message": result.get("statusmsg"),
        }

    async def delete_account(self, username: str) -> dict[str, Any]:
        data = await self._get("/json-api/removeacct", user=username)
        result = self._check_result(data, "Unknown deletion error")
        logger.info("whm_account_deleted", username=username)
        return {
            "username": username,
            "message": result.get("statusmsg") or "Account deleted successfully",
        }

    async def aclose(self) -> None:
        await self._client.aclose()
