from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from applyflow.types import BatchSettings, BatchStatus


class JobCreateRequest(BaseModel):
    url: str = Field(min_length=1)
    company: str = ""
    position: str = ""
    notes: str = ""


class JobResponse(BaseModel):
    id: int
    company: str
    position: str
    url: str
    domain: str
    status: str
    notes: str


class JobStatusRequest(BaseModel):
    status: Literal["queued", "applied", "interviewing", "rejected", "offer"]


class JobBoardEnabledRequest(BaseModel):
    enabled: bool


class AutofillRequest(BaseModel):
    resume_path: str | None = None
    submit: bool = False


class AutomationLogResponse(BaseModel):
    id: int
    job_id: int
    application_id: int | None
    action: str
    status: str
    details: dict[str, Any]
    screenshot_path: str
    created_at: datetime | None


class ManualAssistCreateRequest(BaseModel):
    application_id: int | None = None
    captcha_detected: bool = False
    captcha_type: str = ""
    screenshot_path: str | None = None
    form_url: str = ""


class ManualAssistStatusRequest(BaseModel):
    status: Literal["pending", "completed", "failed", "manual_completed"]


class ManualAssistResponse(BaseModel):
    id: int
    job_id: int
    application_id: int | None
    captcha_detected: bool
    captcha_type: str
    screenshot_path: str
    form_url: str
    prefill: dict[str, Any]
    status: str
    completed_at: datetime | None


class BatchCreateRequest(BaseModel):
    job_ids: list[int] = Field(min_length=1)
    settings: BatchSettings = Field(default_factory=BatchSettings)


class BatchCreateResponse(BaseModel):
    session_id: str
    status: BatchStatus


class BatchControlResponse(BaseModel):
    session_id: str
    changed: bool
    status: BatchStatus
