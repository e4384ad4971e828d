from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.orm import Session

from applyflow.db.models import (
    ApplicantProfileRecord,
    Application,
    AutomationLog,
    Job,
    ManualAssistSession,
)
from applyflow.types import ApplicantProfile

JOB_STATUSES = {"queued", "applied", "interviewing", "rejected", "offer"}
AUTOMATION_ACTIONS = {"detect", "fill_form", "captcha", "submit"}
AUTOMATION_STATUSES = {"success", "failed", "error"}
MANUAL_ASSIST_STATUSES = {"pending", "completed", "failed", "manual_completed"}


class Repository:
    def __init__(self, session: Session):
        self.session = session

    def create_job(self, *, url: str, company: str = "", position: str = "", notes: str = "") -> Job:
        job = Job(url=url, domain=urlparse(url).netloc, company=company, position=position, notes=notes)
        self.session.add(job)
        self.session.commit()
        self.session.refresh(job)
        return job

    def get_job(self, job_id: int) -> Job | None:
        return self.session.get(Job, job_id)

    def list_jobs(self, limit: int = 50) -> list[Job]:
        statement = select(Job).order_by(Job.id.asc()).limit(limit)
        return list(self.session.scalars(statement).all())

    def update_job_status(self, job_id: int, status: str) -> Job:
        if status not in JOB_STATUSES:
            raise ValueError(f"unsupported job status '{status}'")
        job = self.session.get(Job, job_id)
        if not job:
            raise ValueError(f"job {job_id} not found")
        job.status = status
        self.session.commit()
        self.session.refresh(job)
        return job

    def get_applicant_profile(self) -> ApplicantProfileRecord | None:
        return self.session.scalar(select(ApplicantProfileRecord).order_by(ApplicantProfileRecord.id.asc()))

    def save_applicant_profile(self, values: dict[str, Any]) -> ApplicantProfileRecord:
        existing = self.get_applicant_profile()
        if existing:
            for key, value in values.items():
                setattr(existing, key, value)
            obj = existing
        else:
            obj = ApplicantProfileRecord(**values)
            self.session.add(obj)

        self.session.commit()
        self.session.refresh(obj)
        return obj

    def get_applicant(self) -> ApplicantProfile | None:
        record = self.get_applicant_profile()
        if record is None:
            return None
        return ApplicantProfile(
            name=record.name,
            email=record.email,
            phone=record.phone,
            location=record.location,
            linkedin=record.linkedin,
            portfolio=record.portfolio,
        )

    def create_application(self, *, job_id: int, tailored_resume_path: str = "", status: str = "applied") -> Application:
        application = Application(job_id=job_id, tailored_resume_path=tailored_resume_path, status=status)
        self.session.add(application)
        self.session.commit()
        self.session.refresh(application)
        return application

    def get_latest_application(self, job_id: int) -> Application | None:
        statement = (
            select(Application).where(Application.job_id == job_id).order_by(Application.id.desc()).limit(1)
        )
        return self.session.scalar(statement)

    def get_resume_path(self, job_id: int) -> str | None:
        application = self.get_latest_application(job_id)
        if application and application.tailored_resume_path:
            return application.tailored_resume_path
        return None

    def mark_applied(self, job_id: int) -> Job:
        job = self.update_job_status(job_id, "applied")
        application = self.get_latest_application(job_id)
        if application is None:
            application = Application(job_id=job_id)
            self.session.add(application)
        application.status = "applied"
        application.applied_at = datetime.now(UTC)
        self.session.commit()
        return job

    def save_automation_log(
        self,
        *,
        job_id: int,
        action: str,
        status: str,
        details: dict[str, Any] | None = None,
        screenshot_path: str | None = None,
        application_id: int | None = None,
    ) -> AutomationLog:
        if action not in AUTOMATION_ACTIONS:
            raise ValueError(f"unsupported automation action '{action}'")
        if status not in AUTOMATION_STATUSES:
            raise ValueError(f"unsupported automation status '{status}'")
        log = AutomationLog(
            job_id=job_id,
            application_id=application_id,
            action=action,
            status=status,
            details_json=details or {},
            screenshot_path=screenshot_path or "",
        )
        self.session.add(log)
        self.session.commit()
        self.session.refresh(log)
        return log

    def list_automation_logs(self, job_id: int) -> list[AutomationLog]:
        statement = select(AutomationLog).where(AutomationLog.job_id == job_id).order_by(AutomationLog.id.desc())
        return list(self.session.scalars(statement).all())

    def create_manual_assist_session(
        self,
        *,
        job_id: int,
        application_id: int | None = None,
        captcha_detected: bool = False,
        captcha_type: str = "",
        screenshot_path: str | None = None,
        form_url: str = "",
        prefill: dict[str, Any] | None = None,
    ) -> ManualAssistSession:
        item = ManualAssistSession(
            job_id=job_id,
            application_id=application_id,
            captcha_detected=captcha_detected,
            captcha_type=captcha_type,
            screenshot_path=screenshot_path or "",
            form_url=form_url,
            prefill_json=prefill or {},
        )
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def update_manual_assist_status(self, session_id: int, status: str) -> ManualAssistSession:
        if status not in MANUAL_ASSIST_STATUSES:
            raise ValueError(f"unsupported manual assist status '{status}'")
        item = self.session.get(ManualAssistSession, session_id)
        if not item:
            raise ValueError(f"manual assist session {session_id} not found")
        item.status = status
        if status != "pending":
            item.completed_at = datetime.now(UTC)
        self.session.commit()
        self.session.refresh(item)
        return item

    def list_manual_assist_sessions(self, job_id: int) -> list[ManualAssistSession]:
        statement = (
            select(ManualAssistSession)
            .where(ManualAssistSession.job_id == job_id)
            .order_by(ManualAssistSession.id.desc())
        )
        return list(self.session.scalars(statement).all())
