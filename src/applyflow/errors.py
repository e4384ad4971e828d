from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from applyflow.types import CaptchaDetection


class ApplyflowError(Exception):
    """Base class for errors raised by applyflow."""


class AutomationError(ApplyflowError):
    """A single job's automation pipeline failed (navigation, detection, fill, submit)."""


class CaptchaDetectedError(AutomationError):
    def __init__(self, detection: "CaptchaDetection"):
        super().__init__(f"CAPTCHA detected: {detection.kind}")
        self.detection = detection


class MissingDataError(ApplyflowError, LookupError):
    """A job record, job URL, or applicant profile needed by an operation is absent."""
