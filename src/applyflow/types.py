from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FieldKind = Literal["text", "email", "phone", "file", "checkbox", "radio", "select", "textarea"]
CaptchaKind = Literal["recaptcha", "hcaptcha", "cloudflare", "turnstile", "unknown"]
CaptchaLikelihood = Literal["low", "medium", "high"]
NavigationStyle = Literal["single_page", "multi_step", "modal"]
BatchStatus = Literal["pending", "running", "paused", "stopped", "completed", "failed"]
LogLevel = Literal["info", "warning", "error", "success"]


def utcnow() -> datetime:
    return datetime.now(UTC)


def _check_unit_interval(value: float) -> float:
    if value < 0 or value > 1:
        raise ValueError("confidence must be between 0 and 1")
    return value


class FormField(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: FieldKind = "text"
    name: str
    id: str | None = None
    placeholder: str | None = None
    label: str | None = None
    required: bool = False
    selector: str
    value: str | None = None


class DetectionResult(BaseModel):
    success: bool = False
    apply_control_found: bool = False
    apply_control_selector: str | None = None
    fields: list[FormField] = Field(default_factory=list)
    page_title: str = ""
    page_url: str = ""
    screenshot_path: str | None = None
    screenshots: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class FieldMapping(BaseModel):
    field: FormField
    profile_field: str
    value: str
    confidence: float = 0.0

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, value: float) -> float:
        return _check_unit_interval(value)


class FillResult(BaseModel):
    success: bool = False
    filled_fields: list[FieldMapping] = Field(default_factory=list)
    unfilled_fields: list[FormField] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    screenshots: list[str] = Field(default_factory=list)
    final_page_url: str | None = None
    submitted: bool = False
    pages_visited: int = 0


class CaptchaDetection(BaseModel):
    detected: bool = False
    kind: CaptchaKind = "unknown"
    confidence: float = 0.0
    indicators: list[str] = Field(default_factory=list)
    screenshot_path: str | None = None
    page_url: str = ""
    detected_at: datetime = Field(default_factory=utcnow)

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, value: float) -> float:
        return _check_unit_interval(value)


class ApplicantProfile(BaseModel):
    name: str
    email: str
    phone: str = ""
    location: str = ""
    linkedin: str = ""
    portfolio: str = ""

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else ""

    @property
    def last_name(self) -> str:
        return " ".join(self.name.split()[1:])


class RateLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_per_hour: int
    max_per_day: int
    min_delay_seconds: float
    max_delay_seconds: float

    @model_validator(mode="after")
    def validate_delays(self) -> "RateLimit":
        if self.min_delay_seconds < 0 or self.max_delay_seconds < self.min_delay_seconds:
            raise ValueError("rate limit delays must satisfy 0 <= min <= max")
        return self


class NavigationSelectors(BaseModel):
    model_config = ConfigDict(frozen=True)

    next_button: list[str] = Field(default_factory=list)
    submit_button: list[str] = Field(default_factory=list)
    back_button: list[str] = Field(default_factory=list)


class CaptchaSelectors(BaseModel):
    model_config = ConfigDict(frozen=True)

    indicators: list[str] = Field(default_factory=list)
    iframe_selectors: list[str] = Field(default_factory=list)


class JobBoardSelectors(BaseModel):
    model_config = ConfigDict(frozen=True)

    apply_button: list[str] = Field(default_factory=list)
    form_container: list[str] = Field(default_factory=list)
    fields: dict[str, list[str]] = Field(default_factory=dict)
    navigation: NavigationSelectors = Field(default_factory=NavigationSelectors)
    captcha: CaptchaSelectors = Field(default_factory=CaptchaSelectors)


class JobBoardProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    domain_pattern: str
    enabled: bool = True
    captcha_likelihood: CaptchaLikelihood = "low"
    navigation_style: NavigationStyle = "single_page"
    selectors: JobBoardSelectors = Field(default_factory=JobBoardSelectors)
    quirks: list[str] = Field(default_factory=list)
    rate_limit: RateLimit


class BatchSettings(BaseModel):
    max_applications: int = 0
    delay_min_seconds: float = 30.0
    delay_max_seconds: float = 120.0
    auto_submit: bool = False
    stop_on_error: bool = False
    retry_attempts: int = 0
    dry_run: bool = False
    enabled_board_ids: list[str] = Field(default_factory=list)

    @field_validator("max_applications", "retry_attempts")
    @classmethod
    def validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("value must not be negative")
        return value

    @model_validator(mode="after")
    def validate_delays(self) -> "BatchSettings":
        if self.delay_min_seconds < 0:
            raise ValueError("delay_min_seconds must not be negative")
        if self.delay_max_seconds < self.delay_min_seconds:
            raise ValueError("delay_max_seconds must be >= delay_min_seconds")
        return self


class BoardBreakdown(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    average_time_seconds: float = 0.0


class BatchResults(BaseModel):
    success_rate: float = 0.0
    average_time_per_job_seconds: float = 0.0
    total_time_seconds: float = 0.0
    common_failures: list[str] = Field(default_factory=list)
    job_board_breakdown: dict[str, BoardBreakdown] = Field(default_factory=dict)


class BatchLog(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    level: LogLevel = "info"
    message: str
    job_id: int | None = None
    details: dict[str, Any] | None = None


_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running", "failed"}),
    "running": frozenset({"paused", "stopped", "completed", "failed"}),
    "paused": frozenset({"running", "stopped", "failed"}),
    "stopped": frozenset(),
    "completed": frozenset(),
    "failed": frozenset(),
}


class InvalidTransitionError(ValueError):
    pass


class BatchSession(BaseModel):
    id: str
    status: BatchStatus = "pending"
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    skipped_jobs: int = 0
    current_job_id: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    settings: BatchSettings = Field(default_factory=BatchSettings)
    results: BatchResults = Field(default_factory=BatchResults)
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.status]

    def can_transition(self, target: BatchStatus) -> bool:
        return target in _TRANSITIONS[self.status]

    def transition(self, target: BatchStatus) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(f"cannot move batch session from {self.status} to {target}")
        self.status = target


class SessionProgress(BaseModel):
    session_id: str
    status: BatchStatus
    percentage: float = 0.0
    current_job_id: int | None = None
    estimated_remaining_seconds: float = 0.0
    logs: list[BatchLog] = Field(default_factory=list)


class BatchEvent(BaseModel):
    type: Literal["log", "session"]
    session_id: str
    log: BatchLog | None = None
    session: BatchSession | None = None
