from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from applyflow.browser.driver import Page

logger = logging.getLogger(__name__)


class ScreenshotRecorder:
    def __init__(self, directory: Path, *, full_page: bool = True):
        self.directory = Path(directory)
        self.full_page = full_page

    def path_for(self, label: str) -> Path:
        ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
        return self.directory / f"{label}_{ts}.png"

    async def capture(self, page: Page, label: str) -> str | None:
        """Save a screenshot and return its path, or None if the driver refused."""
        path = self.path_for(label)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=self.full_page)
        except Exception as exc:
            logger.warning("Screenshot %s failed: %s", label, exc)
            return None
        return str(path)
