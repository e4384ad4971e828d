from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from applyflow.browser.driver import ElementHandle, Page

logger = logging.getLogger(__name__)

StrategyKind = Literal["css", "text", "has_text"]

_HAS_TEXT = re.compile(r'^(?P<tag>[a-zA-Z][\w-]*)?:has-text\("(?P<text>.*)"\)$')


@dataclass(frozen=True, slots=True)
class LocatorStrategy:
    kind: StrategyKind
    pattern: str
    tag: str = ""

    @classmethod
    def parse(cls, raw: str) -> "LocatorStrategy":
        raw = raw.strip()
        if raw.startswith("text="):
            return cls(kind="text", pattern=raw[len("text="):])
        match = _HAS_TEXT.match(raw)
        if match:
            return cls(kind="has_text", pattern=match.group("text"), tag=match.group("tag") or "")
        return cls(kind="css", pattern=raw)

    @property
    def selector(self) -> str:
        if self.kind == "text":
            return f"text={self.pattern}"
        if self.kind == "has_text":
            return f'{self.tag}:has-text("{self.pattern}")'
        return self.pattern


@dataclass(frozen=True, slots=True)
class LocatorMatch:
    strategy: LocatorStrategy
    element: ElementHandle
    text: str

    @property
    def selector(self) -> str:
        return self.strategy.selector


def parse_strategies(*groups: Iterable[str]) -> list[LocatorStrategy]:
    """Parse selector lists in priority order, dropping later duplicates."""
    seen: set[str] = set()
    strategies: list[LocatorStrategy] = []
    for group in groups:
        for raw in group:
            strategy = LocatorStrategy.parse(raw)
            if strategy.selector in seen:
                continue
            seen.add(strategy.selector)
            strategies.append(strategy)
    return strategies


async def find_first_actionable(page: Page, strategies: Iterable[LocatorStrategy]) -> LocatorMatch | None:
    """Return the first strategy whose element exists, is visible, and has text.

    Evaluation stops at the first hit. A strategy that raises (bad selector
    syntax, detached element) counts as a miss.
    """
    for strategy in strategies:
        try:
            element = await page.query_selector(strategy.selector)
            if element is None:
                continue
            if not await element.is_visible():
                continue
            text = (await element.text_content() or "").strip()
            if not text:
                continue
            return LocatorMatch(strategy=strategy, element=element, text=text)
        except Exception as exc:
            logger.debug("Locator %s failed: %s", strategy.selector, exc)
    return None


async def find_present(page: Page, strategies: Iterable[LocatorStrategy]) -> list[LocatorStrategy]:
    """Return every strategy that resolves to at least one element."""
    present: list[LocatorStrategy] = []
    for strategy in strategies:
        try:
            if await page.query_selector(strategy.selector) is not None:
                present.append(strategy)
        except Exception as exc:
            logger.debug("Locator %s failed: %s", strategy.selector, exc)
    return present
