import httpx
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from ravkav_bridge.api.exceptions import UpstreamAuthError, UpstreamError, UpstreamTransportError
from ravkav_bridge.config.settings import Settings, settings
from ravkav_bridge.config.logging import get_logger
from ravkav_bridge.models.session import Session
from ravkav_bridge.services.auth_flow import AuthFlow, LoginResult

TRANSPORT_FAILURE_STATUS = 500


class UpstreamResult(BaseModel):
    """Result record for one upstream call. Never raised, always returned."""
    success: bool
    http_status: int
    data: Any = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    detail: Any = None


def normalize_detail(detail: Any) -> List[str]:
    if isinstance(detail, (list, tuple)):
        return [str(item) for item in detail]
    return [str(detail)]


class UpstreamClient:
    LOGIN_PATH = "/api/o/login/"
    ISSUE_VERIFICATION_CODE_PATH = "/api/o/issue-verification-code/"
    TRANSACTIONS_PATH = "/api/transaction/"

    def __init__(self, config: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = config or settings
        self.base_url = self.settings.upstream_base_url.rstrip("/")
        self.timeout = httpx.Timeout(self.settings.upstream_timeout_seconds)
        self._transport = transport
        self.logger = get_logger("upstream.client")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self.settings.upstream_headers,
            transport=self._transport,
        )

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Issue a request, raising ``UpstreamError`` for anything but 2xx."""
        self.logger.debug("Making upstream request", method=method, path=path)
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            message = str(e) or e.__class__.__name__
            raise UpstreamTransportError(message, upstream_status=None) from e

        if response.is_success:
            return response

        detail = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("detail")

        if detail:
            raise UpstreamAuthError(normalize_detail(detail),
                                    upstream_status=response.status_code, detail=detail)
        raise UpstreamTransportError(
            f"Request failed with status code {response.status_code}",
            upstream_status=response.status_code,
        )

    async def _request(self, method: str, path: str, **kwargs) -> UpstreamResult:
        try:
            response = await self._send(method, path, **kwargs)
        except UpstreamError as e:
            status = e.upstream_status or TRANSPORT_FAILURE_STATUS
            self.logger.warning("Upstream request failed",
                                method=method,
                                path=path,
                                http_status=status,
                                error_type=e.__class__.__name__,
                                errors=e.messages)
            return UpstreamResult(success=False, http_status=status, data=[],
                                  errors=e.messages, detail=e.detail)

        try:
            data = response.json()
        except ValueError:
            data = response.text
        self.logger.info("Upstream request succeeded", method=method, path=path,
                         http_status=response.status_code)
        return UpstreamResult(success=True, http_status=response.status_code, data=data)

    async def login(self, session: Session) -> LoginResult:
        """Run the login state machine for ``session``; see ``AuthFlow``."""
        return await AuthFlow(self).login(session)

    async def request_login(self, session: Session) -> UpstreamResult:
        payload: Dict[str, Any] = {
            "username": session.identifier,
            "password": session.secret,
        }
        if session.verification_code:
            payload["verification_code"] = session.verification_code
        return await self._request(
            "POST", self.LOGIN_PATH, json=payload,
            headers={"accept": "application/json", "referer": f"{self.base_url}/he/store/login"},
        )

    async def issue_verification_code(self, session: Session) -> UpstreamResult:
        """Ask the portal to send a code to the user's registered contact.

        Leaves the session untouched; the caller decides the status change.
        """
        return await self._request(
            "POST", self.ISSUE_VERIFICATION_CODE_PATH,
            json={"username": session.identifier, "password": session.secret},
            headers={"accept": "application/json", "referer": f"{self.base_url}/he/store/login"},
        )

    async def fetch_transactions(self, session: Session, start_date: Optional[str] = None,
                                 end_date: Optional[str] = None) -> UpstreamResult:
        """Fetch charged transactions, optionally bounded by creation date.

        The session should be authenticated; without a token the portal
        answers with an authorization error, which is returned as-is.
        """
        params: Dict[str, Any] = {
            "billing_status": self.settings.transactions_billing_status,
            "page_size": self.settings.transactions_page_size,
        }
        if start_date:
            params["created_since"] = start_date
        if end_date:
            params["created_until"] = end_date

        headers = {
            "accept": "*/*",
            "referer": f"{self.base_url}/he/store/account/transaction-history?billingStatus=charged",
        }
        if session.access_token:
            headers["authorization"] = f"Bearer {session.access_token}"

        return await self._request("GET", self.TRANSACTIONS_PATH, params=params, headers=headers)
