from __future__ import annotations

import logging
from dataclasses import dataclass

from applyflow.browser.driver import Page
from applyflow.browser.locators import LocatorStrategy, find_present
from applyflow.browser.screenshots import ScreenshotRecorder
from applyflow.types import CaptchaDetection, CaptchaKind, JobBoardProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CaptchaPass:
    kind: CaptchaKind
    label: str
    confidence: float
    selectors: tuple[str, ...] = ()
    phrases: tuple[str, ...] = ()

    async def run(self, page: Page) -> list[str]:
        indicators: list[str] = []
        element_hits = await find_present(page, [LocatorStrategy.parse(s) for s in self.selectors])
        indicators.extend(f"{self.label} element found: {hit.selector}" for hit in element_hits)

        phrase_hits = await find_present(page, [LocatorStrategy(kind="text", pattern=p) for p in self.phrases])
        indicators.extend(f'{self.label} text found: "{hit.pattern}"' for hit in phrase_hits)
        return indicators


RECAPTCHA = CaptchaPass(
    kind="recaptcha",
    label="reCAPTCHA",
    confidence=0.95,
    selectors=(
        'iframe[src*="recaptcha"]',
        'div[class*="recaptcha"]',
        'div[id*="recaptcha"]',
        ".g-recaptcha",
        "[data-sitekey]",
        'iframe[title*="reCAPTCHA"]',
    ),
    phrases=("verify you are human", "complete the reCAPTCHA", "i'm not a robot", "click to verify"),
)

HCAPTCHA = CaptchaPass(
    kind="hcaptcha",
    label="hCaptcha",
    confidence=0.95,
    selectors=(
        'iframe[src*="hcaptcha"]',
        'div[class*="hcaptcha"]',
        'div[id*="hcaptcha"]',
        ".h-captcha",
        '[data-sitekey*="hcaptcha"]',
    ),
)

CLOUDFLARE = CaptchaPass(
    kind="cloudflare",
    label="Cloudflare",
    confidence=0.9,
    selectors=(
        'div[class*="cf-challenge"]',
        'div[id*="cf-challenge"]',
        ".cf-challenge-running",
        ".cf-challenge-success",
        'iframe[src*="cloudflare"]',
    ),
    phrases=("checking your browser", "cloudflare", "ddos protection", "please wait"),
)

TURNSTILE = CaptchaPass(
    kind="turnstile",
    label="Turnstile",
    confidence=0.95,
    selectors=(
        'iframe[src*="turnstile"]',
        'div[class*="turnstile"]',
        'div[id*="turnstile"]',
        ".cf-turnstile",
        '[data-sitekey*="turnstile"]',
    ),
)

GENERIC = CaptchaPass(
    kind="unknown",
    label="Generic CAPTCHA",
    confidence=0.7,
    phrases=(
        "verify you're human",
        "complete the captcha",
        "prove you are human",
        "security check",
        "human verification",
        "captcha",
        "verification required",
    ),
)

SPECIFIC_PASSES: tuple[CaptchaPass, ...] = (RECAPTCHA, HCAPTCHA, CLOUDFLARE, TURNSTILE)


def board_pass(board: JobBoardProfile) -> CaptchaPass | None:
    """Build a pass from a job board's own CAPTCHA hints, or None when it has none."""
    hints = board.selectors.captcha
    selectors = tuple(dict.fromkeys([*hints.iframe_selectors, *hints.indicators]))
    if not selectors:
        return None
    return CaptchaPass(kind="unknown", label=f"{board.name} CAPTCHA", confidence=0.8, selectors=selectors)


class CaptchaDetector:
    def __init__(
        self,
        screenshots: ScreenshotRecorder,
        *,
        passes: tuple[CaptchaPass, ...] = SPECIFIC_PASSES,
        fallback: CaptchaPass = GENERIC,
    ):
        self.screenshots = screenshots
        self.passes = passes
        self.fallback = fallback

    async def inspect(self, page: Page, board: JobBoardProfile | None = None) -> CaptchaDetection:
        """Run the passes against an already loaded page.

        The first pass with any indicator decides the result. The board's own
        hints run after every specific pass came back empty, and the generic
        text pass runs last.
        """
        detection = CaptchaDetection(page_url=page.url)
        pass_errors: list[str] = []

        remaining = list(self.passes)
        hinted = board_pass(board) if board is not None else None
        if hinted is not None:
            remaining.append(hinted)
        remaining.append(self.fallback)
        for captcha_pass in remaining:
            if await self._run_pass(captcha_pass, page, detection, pass_errors):
                break

        detection.indicators.extend(pass_errors)
        if detection.detected:
            logger.info("CAPTCHA %s detected on %s", detection.kind, detection.page_url)
            detection.screenshot_path = await self.screenshots.capture(page, "captcha_detected")
        return detection

    async def _run_pass(
        self,
        captcha_pass: CaptchaPass,
        page: Page,
        detection: CaptchaDetection,
        pass_errors: list[str],
    ) -> bool:
        try:
            indicators = await captcha_pass.run(page)
        except Exception as exc:
            logger.warning("%s check failed on %s: %s", captcha_pass.label, detection.page_url, exc)
            pass_errors.append(f"{captcha_pass.label} check error: {exc}")
            return False
        if not indicators:
            return False
        detection.detected = True
        detection.kind = captcha_pass.kind
        detection.confidence = captcha_pass.confidence
        detection.indicators = indicators
        return True
