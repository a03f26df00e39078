from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env file
# Try multiple paths to find .env file
import pathlib
project_root = pathlib.Path(__file__).parent.parent.parent.parent
env_paths = [
    project_root / ".env",
    pathlib.Path.cwd() / ".env",
    pathlib.Path(".env")
]

for env_path in env_paths:
    if env_path.exists():
        load_dotenv(env_path)
        break

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/139.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    debug: bool = Field(default=False)

    # Upstream portal
    upstream_base_url: str = Field(default="https://ravkavonline.co.il")
    upstream_timeout_seconds: float = Field(default=30.0)
    upstream_accept_language: str = Field(default="he")
    upstream_user_agent: str = Field(default=DEFAULT_USER_AGENT)
    upstream_client_version: str = Field(
        default="sw=ravkav-web id=null version=null d=87ad43702ce240c8b19cdd79ed677489"
    )
    transactions_page_size: int = Field(default=1000)
    transactions_billing_status: str = Field(default="charged")

    # PDF export
    pdf_storage_dir: str = Field(default="./pdfs")
    export_continue_on_error: bool = Field(default=False)
    browser_headless: bool = Field(default=True)
    browser_args: List[str] = Field(default_factory=lambda: ["--no-sandbox"])
    browser_executable_path: Optional[str] = Field(default=None)
    render_timeout_seconds: float = Field(default=60.0)
    pdf_page_format: str = Field(default="A4")

    # Sessions live for the process lifetime unless a TTL is configured
    session_ttl_seconds: Optional[float] = Field(default=None)

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_dir: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(
        env_file=[str(p) for p in env_paths if p.exists()],
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def upstream_headers(self) -> dict:
        """Headers the web client sends with every upstream request."""
        return {
            "accept-language": self.upstream_accept_language,
            "content-type": "application/json",
            "origin": self.upstream_base_url.rstrip("/"),
            "user-agent": self.upstream_user_agent,
            "x-ravkav-version": self.upstream_client_version,
        }


settings = Settings()
