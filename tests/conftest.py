import asyncio
import json
from pathlib import Path
import httpx
import pytest
import pytest_asyncio
from PyPDF2 import PdfWriter
from ravkav_bridge.api.main import create_app
from ravkav_bridge.clients.ravkav_client import UpstreamClient
from ravkav_bridge.config.settings import Settings
from ravkav_bridge.services.session_store import InMemorySessionStore

BASE_URL = "https://portal.test"
ACCESS_TOKEN = "access-token-abc"
REFRESH_TOKEN = "refresh-token-xyz"
VALID_CODE = "123456"


def write_pdf(path: Path, pages: int = 1, width: float = 100) -> Path:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=width, height=100)
    with open(path, "wb") as f:
        writer.write(f)
    return path


def make_transactions(count: int):
    return [
        {
            "id": index,
            "purchase_approval_link": f"{BASE_URL}/approval/{index}",
            "period_description": f"{index}/8/2025",
        }
        for index in range(1, count + 1)
    ]


class FakePortal:
    """Stand-in for the portal's REST API, served through httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.password = "x"
        self.verification_required = True
        self.valid_code = VALID_CODE
        self.issue_status = 200
        self.transactions = make_transactions(3)
        self.login_response = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == UpstreamClient.LOGIN_PATH:
            if self.login_response is not None:
                return self.login_response
            body = json.loads(request.content)
            if body.get("password") != self.password:
                return httpx.Response(400, json={"detail": "invalid_credentials"})
            code = body.get("verification_code")
            if self.verification_required and code is None:
                return httpx.Response(400, json={"detail": "verification_required"})
            if self.verification_required and code != self.valid_code:
                return httpx.Response(400, json={"detail": "invalid_verification_code"})
            return httpx.Response(200, json={"access_token": ACCESS_TOKEN, "refresh_token": REFRESH_TOKEN})

        if path == UpstreamClient.ISSUE_VERIFICATION_CODE_PATH:
            if self.issue_status != 200:
                return httpx.Response(self.issue_status, json={"detail": "too_many_requests"})
            return httpx.Response(200, json={"status": "sent"})

        if path == UpstreamClient.TRANSACTIONS_PATH:
            if request.headers.get("authorization") != f"Bearer {ACCESS_TOKEN}":
                return httpx.Response(401, json={"detail": "Authentication credentials were not provided."})
            return httpx.Response(200, json={"count": len(self.transactions), "results": self.transactions})

        return httpx.Response(404, json={"detail": "Not found."})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_to(self, path: str):
        return [r for r in self.requests if r.url.path == path]


class FakeRenderer:
    """Writes blank-page PDFs instead of driving a browser.

    Each URL's pages get a distinct width so merged page order can be checked.
    """

    def __init__(self, fail_urls=(), pages_per_url=None):
        self.fail_urls = set(fail_urls)
        self.pages_per_url = pages_per_url or {}
        self.calls = []
        self.active = 0
        self.max_active = 0

    def width_for(self, url: str) -> float:
        return 100 + int(url.rsplit("/", 1)[-1])

    async def render(self, url: str, destination: Path) -> Path:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            self.calls.append((url, destination))
            await asyncio.sleep(0)
            if url in self.fail_urls:
                raise RuntimeError(f"net::ERR_CONNECTION_REFUSED at {url}")
            write_pdf(destination, self.pages_per_url.get(url, 1), self.width_for(url))
            return destination
        finally:
            self.active -= 1


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        upstream_base_url=BASE_URL,
        pdf_storage_dir=str(tmp_path / "pdfs"),
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def portal():
    return FakePortal()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def upstream_client(test_settings, portal):
    return UpstreamClient(test_settings, transport=portal.transport)


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def app(test_settings, session_store, upstream_client, renderer):
    return create_app(test_settings, store=session_store, client=upstream_client, renderer=renderer)


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
