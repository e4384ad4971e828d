from __future__ import annotations

import logging

from applyflow.browser.driver import ElementHandle, Page
from applyflow.browser.locators import LocatorMatch, find_first_actionable, parse_strategies
from applyflow.browser.screenshots import ScreenshotRecorder
from applyflow.types import DetectionResult, FieldKind, FormField, JobBoardProfile

logger = logging.getLogger(__name__)

GENERIC_APPLY_SELECTORS: tuple[str, ...] = (
    'button[data-testid*="apply"]',
    'button[class*="apply"]',
    'a[href*="apply"]',
    'button:has-text("Apply")',
    'a:has-text("Apply")',
    'button:has-text("Apply Now")',
    'a:has-text("Apply Now")',
    'button:has-text("Apply for this job")',
    'a:has-text("Apply for this job")',
    '[data-testid="apply-button"]',
    ".apply-button",
    "#apply-button",
    'button[aria-label*="apply" i]',
    'a[aria-label*="apply" i]',
)

GENERIC_NEXT_SELECTORS: tuple[str, ...] = (
    'button:has-text("Next")',
    'button:has-text("Continue")',
    'button:has-text("Proceed")',
    'button:has-text("Next Step")',
    'a:has-text("Next")',
    'a:has-text("Continue")',
    '[data-testid*="next"]',
    '[class*="next"]',
    'button[aria-label*="next" i]',
    'a[aria-label*="next" i]',
)

GENERIC_SUBMIT_SELECTORS: tuple[str, ...] = (
    'button:has-text("Submit")',
    'button:has-text("Apply")',
    'button:has-text("Send Application")',
    'button:has-text("Submit Application")',
    'input[type="submit"]',
    '[data-testid*="submit"]',
    '[class*="submit"]',
    'button[aria-label*="submit" i]',
    'button[aria-label*="apply" i]',
)

# Enumeration order is part of the contract: same page, same field order.
FIELD_KIND_SELECTORS: tuple[str, ...] = (
    'input[type="text"]',
    'input[type="email"]',
    'input[type="tel"]',
    'input[type="password"]',
    "textarea",
    "select",
    'input[type="file"]',
    'input[type="checkbox"]',
    'input[type="radio"]',
)

_TYPE_KINDS: dict[str, FieldKind] = {
    "email": "email",
    "tel": "phone",
    "file": "file",
    "checkbox": "checkbox",
    "radio": "radio",
}
_TAG_KINDS: dict[str, FieldKind] = {
    "textarea": "textarea",
    "select": "select",
}


def infer_kind(type_attr: str | None, tag_name: str) -> FieldKind:
    kind = _TYPE_KINDS.get((type_attr or "").lower())
    if kind:
        return kind
    return _TAG_KINDS.get(tag_name.lower(), "text")


def build_selector(*, tag_name: str, element_id: str = "", name: str = "", classes: str = "") -> str:
    if element_id:
        return f"#{element_id}"
    if name:
        return f'[name="{name}"]'
    class_part = "".join(f".{cls}" for cls in classes.split())
    return class_part or tag_name.lower()


async def classify_element(page: Page, element: ElementHandle) -> FormField | None:
    """Turn one input element into a FormField, or None if probing it fails."""
    try:
        tag_name = str(await element.evaluate("el => el.tagName.toLowerCase()"))
        type_attr = await element.get_attribute("type")
        name = await element.get_attribute("name") or ""
        element_id = await element.get_attribute("id") or ""
        placeholder = await element.get_attribute("placeholder") or ""
        classes = await element.get_attribute("class") or ""
        required = await element.get_attribute("required") is not None

        label = ""
        if element_id:
            label_element = await page.query_selector(f'label[for="{element_id}"]')
            if label_element is not None:
                label = (await label_element.text_content() or "").strip()

        return FormField(
            kind=infer_kind(type_attr, tag_name),
            name=name or element_id or "unnamed",
            id=element_id or None,
            placeholder=placeholder or None,
            label=label or None,
            required=required,
            selector=build_selector(tag_name=tag_name, element_id=element_id, name=name, classes=classes),
        )
    except Exception as exc:
        logger.warning("Skipping form element that could not be analysed: %s", exc)
        return None


class FormDetector:
    def __init__(self, screenshots: ScreenshotRecorder):
        self.screenshots = screenshots

    async def locate_apply_control(self, page: Page, profile: JobBoardProfile | None) -> LocatorMatch | None:
        board_selectors = profile.selectors.apply_button if profile else []
        strategies = parse_strategies(board_selectors, GENERIC_APPLY_SELECTORS)
        return await find_first_actionable(page, strategies)

    async def enumerate_fields(self, page: Page) -> list[FormField]:
        fields: list[FormField] = []
        for selector in FIELD_KIND_SELECTORS:
            try:
                elements = await page.query_selector_all(selector)
            except Exception as exc:
                logger.warning("Field enumeration failed for %s: %s", selector, exc)
                continue
            for element in elements:
                field = await classify_element(page, element)
                if field is not None:
                    fields.append(field)
        return fields

    async def open_application(
        self,
        page: Page,
        url: str,
        profile: JobBoardProfile | None,
        result: DetectionResult,
    ) -> bool:
        """Navigate, screenshot, find and click the apply control.

        Returns False only when navigation itself failed. Apply-control misses
        and click failures are recorded on ``result`` as warnings.
        """
        try:
            await page.goto(url, wait_until="networkidle")
        except Exception as exc:
            logger.warning("Navigation to %s failed: %s", url, exc)
            result.errors.append(f"Navigation failed: {exc}")
            return False

        result.page_url = page.url
        try:
            result.page_title = await page.title()
        except Exception as exc:
            result.warnings.append(f"Could not read page title: {exc}")

        initial = await self.screenshots.capture(page, "initial_page")
        if initial:
            result.screenshot_path = initial
            result.screenshots.append(initial)

        match = await self.locate_apply_control(page, profile)
        if match is None:
            result.warnings.append("No apply button found")
            return True

        result.apply_control_found = True
        result.apply_control_selector = match.selector
        try:
            await page.click(match.selector)
            await page.wait_for_load_state("networkidle")
        except Exception as exc:
            result.warnings.append(f"Failed to click apply button: {exc}")
            return True

        after_click = await self.screenshots.capture(page, "after_apply_click")
        if after_click:
            result.screenshots.append(after_click)
        result.page_url = page.url
        return True

    async def detect(self, page: Page, url: str, profile: JobBoardProfile | None) -> DetectionResult:
        result = DetectionResult(page_url=url)
        if not await self.open_application(page, url, profile, result):
            return result

        result.fields = await self.enumerate_fields(page)
        result.success = True
        logger.info(
            "Detected %d fields on %s (apply control %s)",
            len(result.fields),
            result.page_url,
            "found" if result.apply_control_found else "missing",
        )
        return result
