from __future__ import annotations

import logging

from applyflow.browser.captcha import CaptchaDetector
from applyflow.browser.detector import (
    GENERIC_NEXT_SELECTORS,
    GENERIC_SUBMIT_SELECTORS,
    FormDetector,
)
from applyflow.browser.driver import BrowserDriver, Page
from applyflow.browser.job_boards import JobBoardRegistry
from applyflow.browser.locators import find_first_actionable, parse_strategies
from applyflow.browser.mapper import apply_mappings, map_fields
from applyflow.browser.screenshots import ScreenshotRecorder
from applyflow.config import Settings
from applyflow.types import (
    ApplicantProfile,
    CaptchaDetection,
    DetectionResult,
    FillResult,
    JobBoardProfile,
)

logger = logging.getLogger(__name__)


class AutomationService:
    """Page-level automation for one job URL at a time.

    Every public operation opens its own page on the injected driver and
    closes it before returning. Failures surface in the returned result's
    ``errors``/``warnings`` rather than as exceptions.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        settings: Settings,
        *,
        registry: JobBoardRegistry | None = None,
    ):
        self.driver = driver
        self.settings = settings
        self.registry = registry or JobBoardRegistry()
        self.screenshots = ScreenshotRecorder(
            settings.screenshot_dir,
            full_page=settings.browser_full_page_screenshots,
        )
        self.detector = FormDetector(self.screenshots)
        self.captcha = CaptchaDetector(self.screenshots)

    def board_for(self, url: str, board: JobBoardProfile | None = None) -> JobBoardProfile | None:
        return board or self.registry.resolve(url)

    async def detect_job_page(self, url: str, *, board: JobBoardProfile | None = None) -> DetectionResult:
        page: Page | None = None
        try:
            page = await self.driver.new_page()
            return await self.detector.detect(page, url, self.board_for(url, board))
        except Exception as exc:
            logger.exception("Job page detection failed for %s", url)
            return DetectionResult(page_url=url, errors=[f"Detection failed: {exc}"])
        finally:
            await self._close(page)

    async def detect_captcha(self, url: str, *, board: JobBoardProfile | None = None) -> CaptchaDetection:
        page: Page | None = None
        try:
            page = await self.driver.new_page()
            await page.goto(url, wait_until="networkidle")
            return await self.captcha.inspect(page, self.board_for(url, board))
        except Exception as exc:
            logger.warning("CAPTCHA detection failed for %s: %s", url, exc)
            return CaptchaDetection(page_url=url, indicators=[f"Detection error: {exc}"])
        finally:
            await self._close(page)

    async def auto_fill_form(
        self,
        url: str,
        profile: ApplicantProfile,
        resume_path: str | None = None,
        *,
        submit: bool = False,
        board: JobBoardProfile | None = None,
    ) -> FillResult:
        board = self.board_for(url, board)
        result = FillResult()
        page: Page | None = None
        try:
            page = await self.driver.new_page()
            opened = DetectionResult(page_url=url)
            navigated = await self.detector.open_application(page, url, board, opened)
            result.screenshots.extend(opened.screenshots)
            result.errors.extend(opened.errors)
            if not navigated:
                return result
            if not opened.apply_control_found:
                result.errors.append("No apply button found")
                return result
            result.warnings.extend(opened.warnings)

            await self._fill_pages(page, board, profile, resume_path, submit, result)
            result.success = True
        except Exception as exc:
            logger.exception("Auto-fill failed for %s", url)
            result.errors.append(f"Auto-fill failed: {exc}")
        finally:
            await self._close(page)
        return result

    async def _fill_pages(
        self,
        page: Page,
        board: JobBoardProfile | None,
        profile: ApplicantProfile,
        resume_path: str | None,
        submit: bool,
        result: FillResult,
    ) -> None:
        navigation = board.selectors.navigation if board else None
        next_strategies = parse_strategies(navigation.next_button if navigation else [], GENERIC_NEXT_SELECTORS)
        submit_strategies = parse_strategies(
            navigation.submit_button if navigation else [], GENERIC_SUBMIT_SELECTORS
        )

        for page_number in range(1, self.settings.max_form_pages + 1):
            fields = await self.detector.enumerate_fields(page)
            mappings = map_fields(fields, profile, resume_path)
            filled = await apply_mappings(page, mappings)
            result.filled_fields.extend(filled.filled_fields)
            result.unfilled_fields.extend(filled.unfilled_fields)
            result.errors.extend(filled.errors)
            result.warnings.extend(filled.warnings)
            result.pages_visited = page_number
            logger.info(
                "Form page %d: %d/%d mapped fields filled",
                page_number,
                len(filled.filled_fields),
                len(mappings),
            )

            shot = await self.screenshots.capture(page, f"filled_page_{page_number}")
            if shot:
                result.screenshots.append(shot)

            submit_control = await find_first_actionable(page, submit_strategies)
            if submit_control is not None:
                result.final_page_url = page.url
                if submit:
                    await page.click(submit_control.selector)
                    await page.wait_for_load_state("networkidle")
                    result.submitted = True
                    result.final_page_url = page.url
                    done = await self.screenshots.capture(page, "submission_complete")
                    if done:
                        result.screenshots.append(done)
                return

            next_control = await find_first_actionable(page, next_strategies)
            if next_control is None:
                result.warnings.append("No submit button found, may need manual submission")
                return
            await page.click(next_control.selector)
            await page.wait_for_load_state("networkidle")

        result.warnings.append(
            f"Stopped after {self.settings.max_form_pages} form pages without reaching a submit button"
        )

    @staticmethod
    async def _close(page: Page | None) -> None:
        if page is None:
            return
        try:
            await page.close()
        except Exception as exc:
            logger.debug("Ignoring page close failure: %s", exc)
