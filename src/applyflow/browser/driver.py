from __future__ import annotations

import logging
from typing import Any, Protocol

from playwright.async_api import Browser, Playwright, async_playwright

from applyflow.config import Settings

logger = logging.getLogger(__name__)


class ElementHandle(Protocol):
    async def get_attribute(self, name: str) -> str | None: ...

    async def is_visible(self) -> bool: ...

    async def text_content(self) -> str | None: ...

    async def evaluate(self, expression: str) -> Any: ...


class Page(Protocol):
    """The subset of a browser page the automation core talks to.

    Method names follow Playwright's async ``Page`` so a real page satisfies it
    without wrapping; tests substitute in-memory fakes.
    """

    @property
    def url(self) -> str: ...

    async def goto(self, url: str, *, wait_until: str = ...) -> Any: ...

    async def wait_for_load_state(self, state: str = ...) -> None: ...

    async def title(self) -> str: ...

    async def query_selector(self, selector: str) -> ElementHandle | None: ...

    async def query_selector_all(self, selector: str) -> list[ElementHandle]: ...

    async def click(self, selector: str) -> None: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def set_input_files(self, selector: str, files: str) -> None: ...

    async def check(self, selector: str) -> None: ...

    async def is_checked(self, selector: str) -> bool: ...

    async def select_option(self, selector: str, *, value: str | None = ..., label: str | None = ...) -> Any: ...

    async def screenshot(self, *, path: str, full_page: bool = ...) -> Any: ...

    async def close(self) -> None: ...


class BrowserDriver(Protocol):
    async def new_page(self) -> Page: ...


class PlaywrightDriver:
    """Chromium via Playwright; one browser process shared by every page it opens."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        if self._browser is not None:
            return
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self.settings.browser_headless,
                args=["--no-sandbox", "--disable-setuid-sandbox"],
            )
        except Exception:
            logger.exception("Failed to launch chromium")
            await self._playwright.stop()
            self._playwright = None
            raise
        logger.info("Browser started headless=%s", self.settings.browser_headless)

    async def new_page(self) -> Page:
        if self._browser is None:
            await self.start()
        assert self._browser is not None
        page = await self._browser.new_page(
            user_agent=self.settings.browser_user_agent,
            viewport=self.settings.viewport,
        )
        page.set_default_timeout(self.settings.browser_timeout_ms)
        return page

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self) -> "PlaywrightDriver":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
