from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from applyflow.types import (
    CaptchaSelectors,
    JobBoardProfile,
    JobBoardSelectors,
    NavigationSelectors,
    RateLimit,
)

logger = logging.getLogger(__name__)

GENERIC_PROFILE_ID = "generic"


def _named_fields(
    prefix: str,
    *,
    first_name: str = "firstName",
    last_name: str = "lastName",
    phone: str = "phoneNumber",
    linkedin: str = "linkedinUrl",
    resume: str = "resume-upload",
    cover_letter: str = "coverLetter",
) -> dict[str, list[str]]:
    """Per-field selector candidates for boards that use ``name`` plus a test attribute."""
    return {
        "first_name": [f'input[name="{first_name}"]', f'input[{prefix}="{first_name}"]'],
        "last_name": [f'input[name="{last_name}"]', f'input[{prefix}="{last_name}"]'],
        "email": ['input[name="email"]', 'input[type="email"]', f'input[{prefix}="email"]'],
        "phone": [f'input[name="{phone}"]', 'input[type="tel"]', f'input[{prefix}="{phone}"]'],
        "location": ['input[name="location"]', f'input[{prefix}="location"]'],
        "linkedin": [f'input[name="{linkedin}"]', f'input[{prefix}="{linkedin}"]'],
        "portfolio": ['input[name="website"]', f'input[{prefix}="website"]'],
        "resume_upload": ['input[type="file"][accept*="pdf"]', f'input[{prefix}="{resume}"]'],
        "cover_letter": [f'textarea[name="{cover_letter}"]', f'textarea[{prefix}="{cover_letter}"]'],
    }


def default_profiles() -> list[JobBoardProfile]:
    return [
        JobBoardProfile(
            id="linkedin",
            name="LinkedIn Easy Apply",
            domain_pattern=r"linkedin\.com",
            captcha_likelihood="medium",
            navigation_style="modal",
            selectors=JobBoardSelectors(
                apply_button=[
                    'button[data-control-name="jobdetails_topcard_inapply"]',
                    'button:has-text("Easy Apply")',
                    ".jobs-apply-button",
                    '[data-testid="apply-button"]',
                ],
                form_container=[".jobs-easy-apply-modal", ".jobs-apply-modal", '[data-testid="apply-modal"]'],
                fields=_named_fields("data-testid"),
                navigation=NavigationSelectors(
                    next_button=[
                        'button:has-text("Next")',
                        'button[data-testid="next-button"]',
                        ".jobs-easy-apply-footer button:last-child",
                    ],
                    submit_button=[
                        'button:has-text("Submit")',
                        'button[data-testid="submit-button"]',
                        ".jobs-easy-apply-footer button:last-child",
                    ],
                    back_button=['button:has-text("Back")', 'button[data-testid="back-button"]'],
                ),
                captcha=CaptchaSelectors(
                    indicators=["text=verify you're human", "text=complete the security check"],
                    iframe_selectors=['iframe[src*="recaptcha"]', 'iframe[src*="hcaptcha"]'],
                ),
            ),
            quirks=[
                "Modal-based application flow",
                "May require LinkedIn profile completion",
                'Sometimes shows "Easy Apply" vs regular apply button',
                "Resume upload may be pre-populated from LinkedIn profile",
            ],
            rate_limit=RateLimit(max_per_hour=5, max_per_day=20, min_delay_seconds=30, max_delay_seconds=120),
        ),
        JobBoardProfile(
            id="indeed",
            name="Indeed Quick Apply",
            domain_pattern=r"indeed\.com",
            captcha_likelihood="low",
            navigation_style="single_page",
            selectors=JobBoardSelectors(
                apply_button=[
                    'button:has-text("Quick Apply")',
                    'button:has-text("Apply Now")',
                    '[data-testid="apply-button"]',
                    ".jobsearch-ApplyButton",
                ],
                form_container=[".jobsearch-ApplyModal", ".indeed-apply-modal", '[data-testid="apply-modal"]'],
                fields=_named_fields("data-testid"),
                navigation=NavigationSelectors(
                    next_button=['button:has-text("Next")', 'button[data-testid="next-button"]'],
                    submit_button=['button:has-text("Submit Application")', 'button[data-testid="submit-button"]'],
                    back_button=['button:has-text("Back")', 'button[data-testid="back-button"]'],
                ),
                captcha=CaptchaSelectors(
                    indicators=["text=verify you're human", "text=security check"],
                    iframe_selectors=['iframe[src*="recaptcha"]'],
                ),
            ),
            quirks=[
                "Single-page application form",
                "May redirect to external company site",
                "Resume upload often required",
                "Location field may be auto-filled from profile",
            ],
            rate_limit=RateLimit(max_per_hour=10, max_per_day=50, min_delay_seconds=20, max_delay_seconds=90),
        ),
        JobBoardProfile(
            id="greenhouse",
            name="Greenhouse",
            domain_pattern=r"boards\.greenhouse\.io|greenhouse\.io",
            captcha_likelihood="high",
            navigation_style="multi_step",
            selectors=JobBoardSelectors(
                apply_button=['button:has-text("Apply for this job")', 'a:has-text("Apply")', ".apply-button"],
                form_container=[".application-form", ".greenhouse-application", 'form[action*="greenhouse"]'],
                fields={
                    "first_name": ['input[name="first_name"]', 'input[id="first_name"]', 'input[name="firstname"]'],
                    "last_name": ['input[name="last_name"]', 'input[id="last_name"]', 'input[name="lastname"]'],
                    "email": ['input[name="email"]', 'input[type="email"]', 'input[name="email_address"]'],
                    "phone": ['input[name="phone"]', 'input[type="tel"]', 'input[name="phone_number"]'],
                    "location": ['input[name="location"]', 'input[name="city"]'],
                    "linkedin": ['input[name="linkedin_url"]', 'input[name="linkedin"]'],
                    "portfolio": ['input[name="website"]', 'input[name="portfolio_url"]'],
                    "resume_upload": ['input[type="file"][accept*="pdf"]', 'input[name="resume"]'],
                    "cover_letter": ['textarea[name="cover_letter"]', 'textarea[name="coverletter"]'],
                },
                navigation=NavigationSelectors(
                    next_button=[
                        'button:has-text("Next")',
                        'button:has-text("Continue")',
                        'input[type="submit"][value="Next"]',
                    ],
                    submit_button=['button:has-text("Submit Application")', 'input[type="submit"][value="Submit"]'],
                    back_button=['button:has-text("Back")', 'a:has-text("Back")'],
                ),
                captcha=CaptchaSelectors(
                    indicators=["text=verify you're human", "text=security check", ".g-recaptcha"],
                    iframe_selectors=['iframe[src*="recaptcha"]', 'iframe[src*="hcaptcha"]'],
                ),
            ),
            quirks=[
                "Multi-step application process",
                "High CAPTCHA likelihood",
                "May require company-specific questions",
                "Often has custom application fields",
            ],
            rate_limit=RateLimit(max_per_hour=3, max_per_day=10, min_delay_seconds=60, max_delay_seconds=180),
        ),
        JobBoardProfile(
            id="lever",
            name="Lever",
            domain_pattern=r"jobs\.lever\.co|lever\.co",
            captcha_likelihood="medium",
            navigation_style="single_page",
            selectors=JobBoardSelectors(
                apply_button=['button:has-text("Apply for this job")', 'a:has-text("Apply")', ".lever-apply-button"],
                form_container=[".application-form", ".lever-application", 'form[action*="lever"]'],
                fields={
                    "first_name": ['input[name="firstName"]', 'input[id="firstName"]'],
                    "last_name": ['input[name="lastName"]', 'input[id="lastName"]'],
                    "email": ['input[name="email"]', 'input[type="email"]'],
                    "phone": ['input[name="phone"]', 'input[type="tel"]'],
                    "location": ['input[name="location"]'],
                    "linkedin": ['input[name="linkedinUrl"]'],
                    "portfolio": ['input[name="website"]'],
                    "resume_upload": ['input[type="file"][accept*="pdf"]'],
                    "cover_letter": ['textarea[name="coverLetter"]'],
                },
                navigation=NavigationSelectors(
                    next_button=['button:has-text("Next")', 'button:has-text("Continue")'],
                    submit_button=['button:has-text("Submit Application")', 'input[type="submit"]'],
                    back_button=['button:has-text("Back")'],
                ),
                captcha=CaptchaSelectors(
                    indicators=["text=verify you're human"],
                    iframe_selectors=['iframe[src*="recaptcha"]'],
                ),
            ),
            quirks=["Single-page application", "May have company-specific questions", "Resume upload required"],
            rate_limit=RateLimit(max_per_hour=5, max_per_day=20, min_delay_seconds=30, max_delay_seconds=120),
        ),
        JobBoardProfile(
            id="workday",
            name="Workday",
            domain_pattern=r"workday\.com|myworkdayjobs\.com",
            captcha_likelihood="high",
            navigation_style="multi_step",
            selectors=JobBoardSelectors(
                apply_button=[
                    'button:has-text("Apply")',
                    'a:has-text("Apply")',
                    '[data-automation-id="apply-button"]',
                ],
                form_container=[
                    ".WDApplicationForm",
                    ".workday-application",
                    'form[data-automation-id="application-form"]',
                ],
                fields=_named_fields("data-automation-id", phone="phone", resume="resume"),
                navigation=NavigationSelectors(
                    next_button=['button:has-text("Next")', 'button[data-automation-id="next-button"]'],
                    submit_button=['button:has-text("Submit")', 'button[data-automation-id="submit-button"]'],
                    back_button=['button:has-text("Back")', 'button[data-automation-id="back-button"]'],
                ),
                captcha=CaptchaSelectors(
                    indicators=["text=verify you're human", "text=security check"],
                    iframe_selectors=['iframe[src*="recaptcha"]', 'iframe[src*="hcaptcha"]'],
                ),
            ),
            quirks=[
                "Complex multi-step process",
                "High CAPTCHA likelihood",
                "May require account creation",
                "Company-specific application fields",
            ],
            rate_limit=RateLimit(max_per_hour=2, max_per_day=5, min_delay_seconds=120, max_delay_seconds=300),
        ),
        JobBoardProfile(
            id=GENERIC_PROFILE_ID,
            name="Generic Forms",
            domain_pattern=r".*",
            captcha_likelihood="low",
            navigation_style="single_page",
            selectors=JobBoardSelectors(
                apply_button=[
                    'button:has-text("Apply")',
                    'button:has-text("Submit")',
                    'input[type="submit"]',
                    'a:has-text("Apply")',
                ],
                form_container=["form", ".application-form", ".job-application"],
                fields={
                    "first_name": ['input[name*="first"]', 'input[id*="first"]', 'input[placeholder*="first"]'],
                    "last_name": ['input[name*="last"]', 'input[id*="last"]', 'input[placeholder*="last"]'],
                    "email": ['input[type="email"]', 'input[name*="email"]', 'input[id*="email"]'],
                    "phone": ['input[type="tel"]', 'input[name*="phone"]', 'input[id*="phone"]'],
                    "location": ['input[name*="location"]', 'input[name*="city"]', 'input[id*="location"]'],
                    "linkedin": ['input[name*="linkedin"]', 'input[id*="linkedin"]'],
                    "portfolio": ['input[name*="website"]', 'input[name*="portfolio"]', 'input[id*="website"]'],
                    "resume_upload": ['input[type="file"][accept*="pdf"]', 'input[name*="resume"]', 'input[name*="cv"]'],
                    "cover_letter": ['textarea[name*="cover"]', 'textarea[id*="cover"]', 'textarea[name*="letter"]'],
                },
                navigation=NavigationSelectors(
                    next_button=[
                        'button:has-text("Next")',
                        'button:has-text("Continue")',
                        'input[type="submit"][value*="Next"]',
                    ],
                    submit_button=['button:has-text("Submit")', 'input[type="submit"]', 'button:has-text("Apply")'],
                    back_button=['button:has-text("Back")', 'a:has-text("Back")'],
                ),
                captcha=CaptchaSelectors(
                    indicators=["text=verify you're human", "text=complete the captcha", "text=security check"],
                    iframe_selectors=['iframe[src*="recaptcha"]', 'iframe[src*="hcaptcha"]', 'iframe[src*="captcha"]'],
                ),
            ),
            quirks=["Fallback for unknown job boards", "Uses generic selectors", "May not work for complex forms"],
            rate_limit=RateLimit(max_per_hour=8, max_per_day=30, min_delay_seconds=30, max_delay_seconds=120),
        ),
    ]


class JobBoardRegistry:
    """Job-board profiles keyed by id, resolved against job URLs in registration order."""

    def __init__(self, profiles: Iterable[JobBoardProfile] | None = None):
        self._profiles: dict[str, JobBoardProfile] = {}
        self._patterns: dict[str, re.Pattern[str]] = {}
        for profile in default_profiles() if profiles is None else profiles:
            self.register(profile)

    def register(self, profile: JobBoardProfile) -> None:
        # dict keeps the first insertion position when an id is overwritten
        self._patterns[profile.id] = re.compile(profile.domain_pattern, re.IGNORECASE)
        self._profiles[profile.id] = profile

    def get(self, board_id: str) -> JobBoardProfile | None:
        return self._profiles.get(board_id)

    def list_profiles(self) -> list[JobBoardProfile]:
        return list(self._profiles.values())

    def enabled_profiles(self) -> list[JobBoardProfile]:
        return [profile for profile in self._profiles.values() if profile.enabled]

    def set_enabled(self, board_id: str, enabled: bool) -> JobBoardProfile:
        profile = self._profiles.get(board_id)
        if profile is None:
            raise KeyError(board_id)
        updated = profile.model_copy(update={"enabled": enabled})
        self._profiles[board_id] = updated
        logger.info("Job board %s %s", board_id, "enabled" if enabled else "disabled")
        return updated

    def resolve(self, url: str) -> JobBoardProfile | None:
        for board_id, profile in self._profiles.items():
            if profile.enabled and self._patterns[board_id].search(url):
                return profile
        return None
