"""Headless-browser rendering of approval pages to PDF."""
from pathlib import Path
from typing import Optional, Protocol
from playwright.async_api import async_playwright
from ravkav_bridge.config.settings import Settings, settings
from ravkav_bridge.config.logging import get_logger

logger = get_logger("export.renderer")


class PageRenderer(Protocol):
    async def render(self, url: str, destination: Path) -> Path:
        """Render ``url`` and write it as a PDF to ``destination``."""
        ...


class PlaywrightRenderer:
    """Launches a fresh Chromium per render and closes it before returning."""

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or settings

    def _launch_options(self) -> dict:
        options = {
            "headless": self.settings.browser_headless,
            "args": list(self.settings.browser_args),
        }
        if self.settings.browser_executable_path:
            options["executable_path"] = self.settings.browser_executable_path
        return options

    async def render(self, url: str, destination: Path) -> Path:
        timeout_ms = self.settings.render_timeout_seconds * 1000
        async with async_playwright() as p:
            browser = await p.chromium.launch(**self._launch_options())
            try:
                page = await browser.new_page()
                logger.debug("Navigating to approval page", url=url)
                await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
                await page.pdf(path=str(destination), format=self.settings.pdf_page_format)
                logger.debug("PDF saved", path=str(destination))
            finally:
                await browser.close()
        return destination
