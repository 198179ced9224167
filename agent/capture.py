"""
Page capture via Playwright.

Classes:
    PageCapture      – headless browser session (async context manager)
    ExtractedContent – structural text pulled from the loaded page

Usage:
    async with PageCapture() as session:
        snapshot, content = await session.capture("https://example.com")

or the one-shot helper `capture(url, timeout)`, which opens and always closes
its own session.
"""

import logging
import os
import time
from dataclasses import asdict, dataclass, field

from playwright.async_api import (
    Browser,
    Error as PWError,
    Page,
    TimeoutError as PWTimeout,
    async_playwright,
)

from models.errors import CaptureError

logger = logging.getLogger(__name__)

HEADLESS: bool = os.getenv("HEADLESS", "true").lower() == "true"
CAPTURE_TIMEOUT: float = float(os.getenv("CAPTURE_TIMEOUT", "30"))

VIEWPORT = {"width": 1280, "height": 800}
JPEG_QUALITY = 60

# Per selector class; bounds the prompt size
MAX_SAMPLES = 5

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
]

# Keeps only trimmed, non-empty texts, then caps each class
_EXTRACT_SCRIPT = """
(limit) => {
    const texts = (selector) =>
        Array.from(document.querySelectorAll(selector))
            .map(el => (el.innerText || el.textContent || "").trim())
            .filter(Boolean)
            .slice(0, limit);

    return {
        title: (document.title || "").trim(),
        headings: texts("h1, h2, h3"),
        buttons: texts("button, a"),
        forms: texts("label"),
    };
}
"""


@dataclass
class ExtractedContent:
    title: str = ""
    headings: list[str] = field(default_factory=list)
    buttons: list[str] = field(default_factory=list)
    forms: list[str] = field(default_factory=list)

    @classmethod
    def from_page_data(cls, data: dict, limit: int = MAX_SAMPLES) -> "ExtractedContent":
        """Re-apply trimming and the per-class cap to whatever the page returned."""

        def clean(values) -> list[str]:
            out = [str(v).strip() for v in values or [] if v is not None]
            return [v for v in out if v][:limit]

        return cls(
            title=str(data.get("title") or "").strip(),
            headings=clean(data.get("headings")),
            buttons=clean(data.get("buttons")),
            forms=clean(data.get("forms")),
        )

    def to_dict(self) -> dict:
        return asdict(self)


class PageCapture:
    """
    One isolated browser session. The browser and the Playwright driver are
    released on every exit path, including a failed launch.
    """

    def __init__(self, headless: bool = HEADLESS):
        self.headless = headless
        self._pw = None
        self._browser: Browser | None = None
        self.page: Page | None = None

    async def __aenter__(self) -> "PageCapture":
        try:
            self._pw = await async_playwright().start()
            self._browser = await self._pw.chromium.launch(
                headless=self.headless,
                args=_LAUNCH_ARGS,
            )
            context = await self._browser.new_context(viewport=VIEWPORT)
            self.page = await context.new_page()
        except PWError as exc:
            await self.close()
            raise CaptureError(f"Browser launch failed: {exc}", reason="launch") from exc
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *_) -> None:
        await self.close()

    async def close(self) -> None:
        browser, self._browser = self._browser, None
        pw, self._pw = self._pw, None
        self.page = None
        try:
            if browser:
                await browser.close()
        except PWError as exc:
            logger.warning("Browser close failed", extra={"error": str(exc)})
        finally:
            if pw:
                await pw.stop()

    async def capture(
        self, url: str, timeout: float = CAPTURE_TIMEOUT
    ) -> tuple[bytes, ExtractedContent]:
        """Load *url*, wait for network idle, snapshot and extract."""
        if self.page is None:
            raise CaptureError("Capture session is not open", reason="launch")

        started = time.monotonic()
        try:
            await self.page.goto(url, wait_until="networkidle", timeout=timeout * 1000)
        except PWTimeout as exc:
            raise CaptureError(
                f"Timed out after {timeout:g}s waiting for {url} to load",
                reason="timeout",
            ) from exc
        except PWError as exc:
            raise CaptureError(f"Navigation to {url} failed: {exc}", reason="navigation") from exc

        try:
            snapshot = await self.page.screenshot(type="jpeg", quality=JPEG_QUALITY)
            data = await self.page.evaluate(_EXTRACT_SCRIPT, MAX_SAMPLES)
        except PWError as exc:
            raise CaptureError(f"Could not read {url}: {exc}", reason="extraction") from exc

        content = ExtractedContent.from_page_data(data if isinstance(data, dict) else {})
        logger.info(
            "Page captured",
            extra={
                "url": url,
                "snapshot_bytes": len(snapshot),
                "headings": len(content.headings),
                "buttons": len(content.buttons),
                "forms": len(content.forms),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return snapshot, content


async def capture(url: str, timeout: float = CAPTURE_TIMEOUT) -> tuple[bytes, ExtractedContent]:
    async with PageCapture() as session:
        return await session.capture(url, timeout)
