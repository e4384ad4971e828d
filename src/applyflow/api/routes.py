from __future__ import annotations

import logging
import re
from contextlib import aclosing

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from applyflow.api.deps import get_db
from applyflow.api.schemas import (
    AutofillRequest,
    AutomationLogResponse,
    BatchControlResponse,
    BatchCreateRequest,
    BatchCreateResponse,
    JobBoardEnabledRequest,
    JobCreateRequest,
    JobResponse,
    JobStatusRequest,
    ManualAssistCreateRequest,
    ManualAssistResponse,
    ManualAssistStatusRequest,
)
from applyflow.browser.engine import AutomationService
from applyflow.browser.job_boards import JobBoardRegistry
from applyflow.core.batch import BatchSessionManager
from applyflow.core.runtime import get_automation_service, get_batch_manager, get_registry
from applyflow.db.models import AutomationLog, Job, ManualAssistSession
from applyflow.db.repositories import Repository
from applyflow.types import (
    ApplicantProfile,
    BatchEvent,
    BatchResults,
    BatchSession,
    CaptchaDetection,
    DetectionResult,
    FillResult,
    JobBoardProfile,
    SessionProgress,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


def _job_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        company=job.company,
        position=job.position,
        url=job.url,
        domain=job.domain,
        status=job.status,
        notes=job.notes,
    )


def _log_response(row: AutomationLog) -> AutomationLogResponse:
    return AutomationLogResponse(
        id=row.id,
        job_id=row.job_id,
        application_id=row.application_id,
        action=row.action,
        status=row.status,
        details=row.details_json or {},
        screenshot_path=row.screenshot_path,
        created_at=row.created_at,
    )


def _manual_assist_response(row: ManualAssistSession) -> ManualAssistResponse:
    return ManualAssistResponse(
        id=row.id,
        job_id=row.job_id,
        application_id=row.application_id,
        captcha_detected=row.captcha_detected,
        captcha_type=row.captcha_type,
        screenshot_path=row.screenshot_path,
        form_url=row.form_url,
        prefill=row.prefill_json or {},
        status=row.status,
        completed_at=row.completed_at,
    )


def _job_with_url(repo: Repository, job_id: int) -> Job:
    job = repo.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if not job.url:
        raise HTTPException(status_code=400, detail="Job has no URL")
    return job


def _require_applicant(repo: Repository) -> ApplicantProfile:
    applicant = repo.get_applicant()
    if applicant is None:
        raise HTTPException(status_code=400, detail="Applicant profile not found. Complete your profile first.")
    return applicant


def _session_or_404(manager: BatchSessionManager, session_id: str) -> BatchSession:
    session = manager.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Batch session not found")
    return session


@router.post("/jobs", response_model=JobResponse)
def create_job(payload: JobCreateRequest, db: Session = Depends(get_db)) -> JobResponse:
    repo = Repository(db)
    job = repo.create_job(url=payload.url, company=payload.company, position=payload.position, notes=payload.notes)
    return _job_response(job)


@router.get("/jobs", response_model=list[JobResponse])
def list_jobs(limit: int = 50, db: Session = Depends(get_db)) -> list[JobResponse]:
    repo = Repository(db)
    return [_job_response(job) for job in repo.list_jobs(limit=limit)]


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(job_id: int, db: Session = Depends(get_db)) -> JobResponse:
    job = Repository(db).get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(job)


@router.post("/jobs/{job_id}/status", response_model=JobResponse)
def update_job_status(job_id: int, payload: JobStatusRequest, db: Session = Depends(get_db)) -> JobResponse:
    repo = Repository(db)
    if repo.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(repo.update_job_status(job_id, payload.status))


@router.put("/applicant", response_model=ApplicantProfile)
def save_applicant(payload: ApplicantProfile, db: Session = Depends(get_db)) -> ApplicantProfile:
    repo = Repository(db)
    repo.save_applicant_profile(payload.model_dump())
    return _require_applicant(repo)


@router.get("/applicant", response_model=ApplicantProfile)
def get_applicant(db: Session = Depends(get_db)) -> ApplicantProfile:
    applicant = Repository(db).get_applicant()
    if applicant is None:
        raise HTTPException(status_code=404, detail="Applicant profile not found")
    return applicant


@router.get("/job-boards", response_model=list[JobBoardProfile])
def list_job_boards(registry: JobBoardRegistry = Depends(get_registry)) -> list[JobBoardProfile]:
    return registry.list_profiles()


@router.get("/job-boards/resolve", response_model=JobBoardProfile | None)
def resolve_job_board(url: str, registry: JobBoardRegistry = Depends(get_registry)) -> JobBoardProfile | None:
    return registry.resolve(url)


@router.get("/job-boards/{board_id}", response_model=JobBoardProfile)
def get_job_board(board_id: str, registry: JobBoardRegistry = Depends(get_registry)) -> JobBoardProfile:
    profile = registry.get(board_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Job board not found")
    return profile


@router.put("/job-boards/{board_id}", response_model=JobBoardProfile)
def save_job_board(
    board_id: str,
    payload: JobBoardProfile,
    registry: JobBoardRegistry = Depends(get_registry),
) -> JobBoardProfile:
    if payload.id != board_id:
        raise HTTPException(status_code=400, detail="Job board id does not match the URL")
    try:
        registry.register(payload)
    except re.error as exc:
        raise HTTPException(status_code=400, detail=f"Invalid domain pattern: {exc}") from exc
    return payload


@router.post("/job-boards/{board_id}/enabled", response_model=JobBoardProfile)
def set_job_board_enabled(
    board_id: str,
    payload: JobBoardEnabledRequest,
    registry: JobBoardRegistry = Depends(get_registry),
) -> JobBoardProfile:
    try:
        return registry.set_enabled(board_id, payload.enabled)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Job board not found") from exc


@router.post("/automation/jobs/{job_id}/detect", response_model=DetectionResult)
async def detect_job_page(
    job_id: int,
    db: Session = Depends(get_db),
    automation: AutomationService = Depends(get_automation_service),
) -> DetectionResult:
    repo = Repository(db)
    job = _job_with_url(repo, job_id)
    result = await automation.detect_job_page(job.url)
    repo.save_automation_log(
        job_id=job_id,
        action="detect",
        status="success" if result.success else "failed",
        details=result.model_dump(mode="json"),
        screenshot_path=result.screenshot_path,
    )
    return result


@router.post("/automation/jobs/{job_id}/autofill", response_model=FillResult)
async def autofill_job(
    job_id: int,
    payload: AutofillRequest | None = None,
    db: Session = Depends(get_db),
    automation: AutomationService = Depends(get_automation_service),
) -> FillResult:
    payload = payload or AutofillRequest()
    repo = Repository(db)
    job = _job_with_url(repo, job_id)
    applicant = _require_applicant(repo)
    resume_path = payload.resume_path or repo.get_resume_path(job_id) or automation.settings.default_resume_path
    application = repo.get_latest_application(job_id)

    result = await automation.auto_fill_form(job.url, applicant, resume_path, submit=payload.submit)
    repo.save_automation_log(
        job_id=job_id,
        application_id=application.id if application else None,
        action="submit" if payload.submit else "fill_form",
        status="success" if result.success else "failed",
        details=result.model_dump(mode="json"),
        screenshot_path=result.screenshots[-1] if result.screenshots else None,
    )
    if result.submitted:
        repo.mark_applied(job_id)
    return result


@router.post("/automation/jobs/{job_id}/captcha", response_model=CaptchaDetection)
async def detect_captcha(
    job_id: int,
    db: Session = Depends(get_db),
    automation: AutomationService = Depends(get_automation_service),
) -> CaptchaDetection:
    repo = Repository(db)
    job = _job_with_url(repo, job_id)
    detection = await automation.detect_captcha(job.url)
    repo.save_automation_log(
        job_id=job_id,
        action="captcha",
        status="success",
        details=detection.model_dump(mode="json"),
        screenshot_path=detection.screenshot_path,
    )
    return detection


@router.get("/automation/jobs/{job_id}/logs", response_model=list[AutomationLogResponse])
def list_automation_logs(job_id: int, db: Session = Depends(get_db)) -> list[AutomationLogResponse]:
    repo = Repository(db)
    if repo.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return [_log_response(row) for row in repo.list_automation_logs(job_id)]


@router.post("/automation/jobs/{job_id}/manual-assist", response_model=ManualAssistResponse)
def create_manual_assist(
    job_id: int,
    payload: ManualAssistCreateRequest,
    db: Session = Depends(get_db),
) -> ManualAssistResponse:
    repo = Repository(db)
    job = repo.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    applicant = repo.get_applicant()
    item = repo.create_manual_assist_session(
        job_id=job_id,
        application_id=payload.application_id,
        captcha_detected=payload.captcha_detected,
        captcha_type=payload.captcha_type,
        screenshot_path=payload.screenshot_path,
        form_url=payload.form_url or job.url,
        prefill=applicant.model_dump() if applicant else None,
    )
    return _manual_assist_response(item)


@router.get("/automation/jobs/{job_id}/manual-assist", response_model=list[ManualAssistResponse])
def list_manual_assist(job_id: int, db: Session = Depends(get_db)) -> list[ManualAssistResponse]:
    repo = Repository(db)
    return [_manual_assist_response(row) for row in repo.list_manual_assist_sessions(job_id)]


@router.post("/automation/manual-assist/{session_id}/status", response_model=ManualAssistResponse)
def update_manual_assist(
    session_id: int,
    payload: ManualAssistStatusRequest,
    db: Session = Depends(get_db),
) -> ManualAssistResponse:
    repo = Repository(db)
    try:
        item = repo.update_manual_assist_status(session_id, payload.status)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _manual_assist_response(item)


@router.post("/batch/sessions", response_model=BatchCreateResponse)
async def create_batch_session(
    payload: BatchCreateRequest,
    manager: BatchSessionManager = Depends(get_batch_manager),
) -> BatchCreateResponse:
    unknown = [board_id for board_id in payload.settings.enabled_board_ids if manager.registry.get(board_id) is None]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown job boards: {', '.join(unknown)}")
    session_id = await manager.start_session(payload.job_ids, payload.settings)
    session = _session_or_404(manager, session_id)
    return BatchCreateResponse(session_id=session_id, status=session.status)


@router.get("/batch/sessions", response_model=list[BatchSession])
async def list_batch_sessions(manager: BatchSessionManager = Depends(get_batch_manager)) -> list[BatchSession]:
    return manager.list_sessions()


@router.get("/batch/sessions/{session_id}", response_model=BatchSession)
async def get_batch_session(
    session_id: str,
    manager: BatchSessionManager = Depends(get_batch_manager),
) -> BatchSession:
    return _session_or_404(manager, session_id)


@router.get("/batch/sessions/{session_id}/progress", response_model=SessionProgress)
async def get_batch_progress(
    session_id: str,
    manager: BatchSessionManager = Depends(get_batch_manager),
) -> SessionProgress:
    progress = manager.get_progress(session_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Batch session not found")
    return progress


@router.get("/batch/sessions/{session_id}/results", response_model=BatchResults)
async def get_batch_results(
    session_id: str,
    manager: BatchSessionManager = Depends(get_batch_manager),
) -> BatchResults:
    results = manager.get_results(session_id)
    if results is None:
        raise HTTPException(status_code=404, detail="Batch session not found")
    return results


@router.post("/batch/sessions/{session_id}/pause", response_model=BatchControlResponse)
async def pause_batch_session(
    session_id: str,
    manager: BatchSessionManager = Depends(get_batch_manager),
) -> BatchControlResponse:
    _session_or_404(manager, session_id)
    changed = manager.pause_session(session_id)
    return BatchControlResponse(session_id=session_id, changed=changed, status=manager.get_session(session_id).status)


@router.post("/batch/sessions/{session_id}/resume", response_model=BatchControlResponse)
async def resume_batch_session(
    session_id: str,
    manager: BatchSessionManager = Depends(get_batch_manager),
) -> BatchControlResponse:
    _session_or_404(manager, session_id)
    changed = manager.resume_session(session_id)
    return BatchControlResponse(session_id=session_id, changed=changed, status=manager.get_session(session_id).status)


@router.post("/batch/sessions/{session_id}/stop", response_model=BatchControlResponse)
async def stop_batch_session(
    session_id: str,
    manager: BatchSessionManager = Depends(get_batch_manager),
) -> BatchControlResponse:
    _session_or_404(manager, session_id)
    changed = manager.stop_session(session_id)
    return BatchControlResponse(session_id=session_id, changed=changed, status=manager.get_session(session_id).status)


@router.websocket("/batch/sessions/{session_id}/stream")
async def stream_batch_session(
    websocket: WebSocket,
    session_id: str,
    manager: BatchSessionManager = Depends(get_batch_manager),
) -> None:
    await websocket.accept()
    session = manager.get_session(session_id)
    if session is None:
        await websocket.close(code=4404)
        return

    snapshot = BatchEvent(type="session", session_id=session_id, session=session.model_copy(deep=True))
    await websocket.send_json(snapshot.model_dump(mode="json"))
    if session.is_terminal:
        await websocket.close()
        return

    try:
        async with aclosing(manager.event_bus.subscribe(session_id)) as events:
            async for event in events:
                await websocket.send_json(event.model_dump(mode="json"))
                if event.session is not None and event.session.is_terminal:
                    break
    except WebSocketDisconnect:
        logger.debug("Batch stream client for %s disconnected", session_id)
        return
    await websocket.close()
