from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from applyflow.browser.engine import AutomationService
from applyflow.browser.job_boards import JobBoardRegistry
from applyflow.config import Settings, get_settings
from applyflow.core.events import EventBus
from applyflow.db.repositories import Repository
from applyflow.db.session import SessionLocal
from applyflow.errors import AutomationError, CaptchaDetectedError, MissingDataError
from applyflow.types import (
    ApplicantProfile,
    BatchEvent,
    BatchLog,
    BatchResults,
    BatchSession,
    BatchSettings,
    BoardBreakdown,
    CaptchaDetection,
    FillResult,
    JobBoardProfile,
    LogLevel,
    SessionProgress,
    utcnow,
)

logger = logging.getLogger(__name__)

UNKNOWN_BOARD = "unknown"
COMMON_FAILURE_LIMIT = 5

Sleep = Callable[[float], Awaitable[Any]]

_LOG_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class QueuedJob:
    id: int
    url: str
    company: str
    position: str


@dataclass
class JobOutcome:
    job_id: int
    board_id: str
    success: bool
    seconds: float
    error: str | None = None


@dataclass
class _SessionState:
    session: BatchSession
    job_ids: list[int]
    logs: deque[BatchLog]
    resume: asyncio.Event = field(default_factory=asyncio.Event)
    outcomes: list[JobOutcome] = field(default_factory=list)
    task: asyncio.Task[None] | None = None


class BatchSessionManager:
    """Runs batches of job applications as cancellable asyncio tasks.

    Each session processes its jobs strictly in input order. ``pause_session``
    and ``stop_session`` take effect at the next job boundary; the job in
    flight always finishes. All methods must be called from the event loop
    that runs the sessions.
    """

    def __init__(
        self,
        automation: AutomationService | None = None,
        *,
        registry: JobBoardRegistry | None = None,
        event_bus: EventBus | None = None,
        settings: Settings | None = None,
        session_factory: sessionmaker[Session] = SessionLocal,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.automation = automation
        self.registry = registry or (automation.registry if automation else JobBoardRegistry())
        self.event_bus = event_bus or EventBus()
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._sessions: dict[str, _SessionState] = {}

    async def start_session(self, job_ids: list[int], settings: BatchSettings | None = None) -> str:
        session = BatchSession(
            id=uuid.uuid4().hex,
            total_jobs=len(job_ids),
            settings=settings or BatchSettings(),
        )
        state = _SessionState(
            session=session,
            job_ids=list(job_ids),
            logs=deque(maxlen=self.settings.batch_max_log_entries),
        )
        state.resume.set()
        self._sessions[session.id] = state

        session.transition("running")
        session.started_at = utcnow()
        self._emit_session(state)
        state.task = asyncio.create_task(self._run(state), name=f"batch-{session.id}")
        logger.info("Batch session %s started with %d jobs", session.id, len(job_ids))
        return session.id

    async def wait(self, session_id: str) -> BatchSession | None:
        state = self._sessions.get(session_id)
        if state is None:
            return None
        if state.task is not None:
            await asyncio.shield(state.task)
        return state.session

    def pause_session(self, session_id: str) -> bool:
        state = self._sessions.get(session_id)
        if state is None or state.session.status != "running":
            return False
        state.session.transition("paused")
        state.resume.clear()
        self._log(state, "info", "Batch processing paused by user")
        self._emit_session(state)
        return True

    def resume_session(self, session_id: str) -> bool:
        state = self._sessions.get(session_id)
        if state is None or state.session.status != "paused":
            return False
        state.session.transition("running")
        state.resume.set()
        self._log(state, "info", "Batch processing resumed by user")
        self._emit_session(state)
        return True

    def stop_session(self, session_id: str) -> bool:
        state = self._sessions.get(session_id)
        if state is None or state.session.status not in {"running", "paused"}:
            return False
        state.session.transition("stopped")
        state.resume.set()
        self._log(state, "info", "Batch processing stopped by user")
        self._emit_session(state)
        return True

    def get_session(self, session_id: str) -> BatchSession | None:
        state = self._sessions.get(session_id)
        return state.session if state else None

    def list_sessions(self) -> list[BatchSession]:
        return [state.session for state in self._sessions.values()]

    def get_logs(self, session_id: str) -> list[BatchLog]:
        state = self._sessions.get(session_id)
        return list(state.logs) if state else []

    def get_results(self, session_id: str) -> BatchResults | None:
        state = self._sessions.get(session_id)
        return state.session.results if state else None

    def get_progress(self, session_id: str) -> SessionProgress | None:
        state = self._sessions.get(session_id)
        if state is None:
            return None
        session = state.session
        done = session.completed_jobs + session.failed_jobs + session.skipped_jobs
        percentage = (done / session.total_jobs) * 100 if session.total_jobs else 0.0

        timed = [outcome.seconds for outcome in state.outcomes]
        remaining_jobs = 0 if session.is_terminal else max(session.total_jobs - done, 0)
        average = sum(timed) / len(timed) if timed else 0.0
        return SessionProgress(
            session_id=session.id,
            status=session.status,
            percentage=round(percentage, 2),
            current_job_id=session.current_job_id,
            estimated_remaining_seconds=round(average * remaining_jobs, 2),
            logs=list(state.logs),
        )

    async def _run(self, state: _SessionState) -> None:
        session = state.session
        try:
            await self._process_all(state)
        except Exception as exc:
            logger.exception("Batch session %s failed", session.id)
            session.error = str(exc)
            session.completed_at = utcnow()
            if session.can_transition("failed"):
                session.transition("failed")
            self._log(state, "error", f"Batch processing failed: {exc}")
            self._emit_session(state)

    async def _process_all(self, state: _SessionState) -> None:
        session = state.session
        settings = session.settings
        self._log(state, "info", "Batch processing started", details={"total_jobs": session.total_jobs})

        for index, job_id in enumerate(state.job_ids):
            if not await self._checkpoint(state):
                break
            if settings.max_applications and session.completed_jobs >= settings.max_applications:
                self._log(state, "info", f"Reached max applications ({settings.max_applications}), ending batch")
                break

            session.current_job_id = job_id
            job = await asyncio.to_thread(self._load_job, job_id)
            if job is None:
                self._skip(state, f"Job {job_id} not found, skipping", level="warning")
                continue

            board = self.registry.resolve(job.url) if job.url else None
            if board is not None and not self._board_allowed(board, settings):
                self._skip(state, f"Job board {board.name} not enabled, skipping job {job_id}", job_id=job_id)
                continue

            self._log(state, "info", f"Processing job {job_id}: {job.company} - {job.position}", job_id=job_id)
            self._emit_session(state)
            started = time.monotonic()
            error = await self._attempt(state, job, board)
            elapsed = time.monotonic() - started

            board_id = board.id if board else UNKNOWN_BOARD
            state.outcomes.append(
                JobOutcome(job_id=job_id, board_id=board_id, success=error is None, seconds=elapsed, error=error)
            )

            if error is None:
                session.completed_jobs += 1
                self._log(
                    state,
                    "success",
                    f"Job {job_id} completed successfully",
                    job_id=job_id,
                    details={"processing_time": round(elapsed, 3)},
                )
                self._emit_session(state)
                if index < len(state.job_ids) - 1 and not settings.dry_run:
                    delay = self._delay_for(board, settings)
                    self._log(state, "info", f"Waiting {delay:.1f}s before next job (rate limiting)")
                    await self._sleep(delay)
                continue

            session.failed_jobs += 1
            self._log(state, "error", f"Job {job_id} failed: {error}", job_id=job_id)
            self._emit_session(state)
            if settings.stop_on_error:
                self._log(state, "error", "Stopping batch due to error (stop_on_error enabled)")
                break

        session.completed_at = utcnow()
        session.results = self._compute_results(state)
        if session.status != "stopped":
            if session.status == "paused":
                session.transition("running")
            session.transition("completed")
        session.current_job_id = None
        stopped = session.status == "stopped"
        self._log(
            state,
            "info" if stopped else "success",
            "Batch processing stopped" if stopped else "Batch processing completed",
            details={
                "total": session.total_jobs,
                "completed": session.completed_jobs,
                "failed": session.failed_jobs,
                "skipped": session.skipped_jobs,
            },
        )
        self._emit_session(state)

    async def _checkpoint(self, state: _SessionState) -> bool:
        """Block while paused. False means the session was stopped."""
        session = state.session
        if session.status == "paused":
            self._log(state, "info", "Batch processing paused")
        while session.status == "paused":
            await state.resume.wait()
        return session.status != "stopped"

    async def _attempt(self, state: _SessionState, job: QueuedJob, board: JobBoardProfile | None) -> str | None:
        attempts = state.session.settings.retry_attempts + 1
        for attempt in range(1, attempts + 1):
            try:
                await self._process_job(state, job, board)
                return None
            except (CaptchaDetectedError, MissingDataError) as exc:
                return str(exc)
            except AutomationError as exc:
                error = str(exc)
            except Exception as exc:
                logger.exception("Unexpected failure processing job %s", job.id)
                error = str(exc) or exc.__class__.__name__
            if attempt < attempts:
                self._log(
                    state,
                    "warning",
                    f"Job {job.id} attempt {attempt}/{attempts} failed: {error}; retrying",
                    job_id=job.id,
                )
        return error

    async def _process_job(self, state: _SessionState, job: QueuedJob, board: JobBoardProfile | None) -> None:
        """Run detect, CAPTCHA check and auto-fill for one job, raising on the first failed stage."""
        settings = state.session.settings
        if not job.url:
            raise MissingDataError(f"Job {job.id} has no URL")

        if board is not None:
            rate = board.rate_limit
            logger.info("Rate limiting: %s (%d/hour, %d/day)", board.name, rate.max_per_hour, rate.max_per_day)
        if settings.dry_run:
            self._log(state, "info", f"Dry run: would process job {job.id}", job_id=job.id)
            return

        automation = self._require_automation()
        applicant, resume_path = await asyncio.to_thread(self._load_applicant, job.id)

        detection = await automation.detect_job_page(job.url, board=board)
        if not detection.success:
            raise AutomationError(f"Failed to detect job page: {', '.join(detection.errors)}")

        captcha = await automation.detect_captcha(job.url, board=board)
        if captcha.detected:
            await asyncio.to_thread(self._record_manual_assist, job, captcha, applicant)
            raise CaptchaDetectedError(captcha)

        fill = await automation.auto_fill_form(
            job.url,
            applicant,
            resume_path,
            submit=settings.auto_submit,
            board=board,
        )
        if not fill.success:
            raise AutomationError(f"Auto-fill failed: {', '.join(fill.errors)}")

        if settings.auto_submit:
            if not fill.submitted:
                raise AutomationError("Submission failed: no submit control found")
            await asyncio.to_thread(self._record_submission, job, fill)
            self._log(state, "info", f"Submitted application for job {job.id}", job_id=job.id)

    def _require_automation(self) -> AutomationService:
        if self.automation is None:
            raise AutomationError("No browser automation service configured")
        return self.automation

    def _load_job(self, job_id: int) -> QueuedJob | None:
        with self._session_factory() as db:
            job = Repository(db).get_job(job_id)
            if job is None:
                return None
            return QueuedJob(id=job.id, url=job.url or "", company=job.company, position=job.position)

    def _load_applicant(self, job_id: int) -> tuple[ApplicantProfile, str | None]:
        with self._session_factory() as db:
            repo = Repository(db)
            applicant = repo.get_applicant()
            if applicant is None:
                raise MissingDataError("Applicant profile is not set up")
            resume_path = repo.get_resume_path(job_id) or self.settings.default_resume_path
        return applicant, resume_path

    def _record_manual_assist(self, job: QueuedJob, captcha: CaptchaDetection, applicant: ApplicantProfile) -> None:
        with self._session_factory() as db:
            repo = Repository(db)
            repo.create_manual_assist_session(
                job_id=job.id,
                captcha_detected=True,
                captcha_type=captcha.kind,
                screenshot_path=captcha.screenshot_path,
                form_url=captcha.page_url or job.url,
                prefill=applicant.model_dump(),
            )
            repo.save_automation_log(
                job_id=job.id,
                action="captcha",
                status="failed",
                details=captcha.model_dump(mode="json"),
                screenshot_path=captcha.screenshot_path,
            )

    def _record_submission(self, job: QueuedJob, fill: FillResult) -> None:
        with self._session_factory() as db:
            repo = Repository(db)
            repo.mark_applied(job.id)
            latest = repo.get_latest_application(job.id)
            repo.save_automation_log(
                job_id=job.id,
                application_id=latest.id if latest else None,
                action="submit",
                status="success",
                details={
                    "final_page_url": fill.final_page_url,
                    "filled": len(fill.filled_fields),
                    "pages_visited": fill.pages_visited,
                },
                screenshot_path=fill.screenshots[-1] if fill.screenshots else None,
            )

    def _board_allowed(self, board: JobBoardProfile, settings: BatchSettings) -> bool:
        return board.id in settings.enabled_board_ids

    def _delay_for(self, board: JobBoardProfile | None, settings: BatchSettings) -> float:
        if board is not None:
            return self._rng.uniform(board.rate_limit.min_delay_seconds, board.rate_limit.max_delay_seconds)
        spread = settings.delay_max_seconds - settings.delay_min_seconds
        return settings.delay_min_seconds + self._rng.uniform(0, spread)

    def _compute_results(self, state: _SessionState) -> BatchResults:
        session = state.session
        processed = session.completed_jobs + session.failed_jobs
        total_time = 0.0
        if session.started_at and session.completed_at:
            total_time = (session.completed_at - session.started_at).total_seconds()

        breakdown: dict[str, BoardBreakdown] = {}
        successful_times: dict[str, list[float]] = {}
        for outcome in state.outcomes:
            entry = breakdown.setdefault(outcome.board_id, BoardBreakdown())
            entry.total += 1
            if outcome.success:
                entry.successful += 1
                successful_times.setdefault(outcome.board_id, []).append(outcome.seconds)
            else:
                entry.failed += 1
        for board_id, times in successful_times.items():
            breakdown[board_id].average_time_seconds = round(sum(times) / len(times), 3)

        failures = Counter(outcome.error for outcome in state.outcomes if outcome.error)
        return BatchResults(
            success_rate=round((session.completed_jobs / processed) * 100, 2) if processed else 0.0,
            average_time_per_job_seconds=round(total_time / processed, 3) if processed else 0.0,
            total_time_seconds=round(total_time, 3),
            common_failures=[message for message, _ in failures.most_common(COMMON_FAILURE_LIMIT)],
            job_board_breakdown=breakdown,
        )

    def _skip(self, state: _SessionState, message: str, *, level: LogLevel = "info", job_id: int | None = None) -> None:
        state.session.skipped_jobs += 1
        self._log(state, level, message, job_id=job_id)
        self._emit_session(state)

    def _log(
        self,
        state: _SessionState,
        level: LogLevel,
        message: str,
        *,
        job_id: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        entry = BatchLog(level=level, message=message, job_id=job_id, details=details)
        state.logs.append(entry)
        logger.log(_LOG_LEVELS[level], "[batch %s] %s", state.session.id, message)
        self.event_bus.publish(BatchEvent(type="log", session_id=state.session.id, log=entry))

    def _emit_session(self, state: _SessionState) -> None:
        self.event_bus.publish(
            BatchEvent(type="session", session_id=state.session.id, session=state.session.model_copy(deep=True))
        )
