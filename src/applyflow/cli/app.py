from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
import uvicorn
from pydantic import BaseModel, ValidationError

from applyflow.api.app import create_app
from applyflow.browser.driver import PlaywrightDriver
from applyflow.browser.engine import AutomationService
from applyflow.browser.job_boards import JobBoardRegistry
from applyflow.config import get_settings
from applyflow.core.batch import BatchSessionManager
from applyflow.db.init import init_database
from applyflow.db.models import Job
from applyflow.db.repositories import Repository
from applyflow.db.session import SessionLocal
from applyflow.logging_config import configure_logging
from applyflow.types import ApplicantProfile, BatchSettings

app = typer.Typer(help="applyflow CLI")
jobs_app = typer.Typer(help="Job registry commands")
applicant_app = typer.Typer(help="Applicant profile used to fill forms")
boards_app = typer.Typer(help="Job-board profiles")
batch_app = typer.Typer(help="Batch application sessions")

app.add_typer(jobs_app, name="jobs")
app.add_typer(applicant_app, name="applicant")
app.add_typer(boards_app, name="boards")
app.add_typer(batch_app, name="batch")

_INITIALIZED = False

ResultT = TypeVar("ResultT", bound=BaseModel)


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


def _echo_model(model: BaseModel) -> None:
    typer.echo(json.dumps(model.model_dump(mode="json"), indent=2))


def _job_payload(job: Job) -> dict:
    return {
        "id": job.id,
        "company": job.company,
        "position": job.position,
        "domain": job.domain,
        "url": job.url,
        "status": job.status,
        "created_at": job.created_at.isoformat() if job.created_at else None,
    }


def _require_job_url(repo: Repository, job_id: int) -> str:
    job = repo.get_job(job_id)
    if job is None:
        raise typer.BadParameter(f"job {job_id} not found")
    if not job.url:
        raise typer.BadParameter(f"job {job_id} has no URL")
    return job.url


def _with_automation(action: Callable[[AutomationService], Awaitable[ResultT]]) -> ResultT:
    settings = get_settings()

    async def _run() -> ResultT:
        driver = PlaywrightDriver(settings)
        try:
            return await action(AutomationService(driver, settings))
        finally:
            await driver.close()

    return asyncio.run(_run())


@app.command("init")
def init_cmd() -> None:
    """Initialize database and data directories."""
    configure_logging()
    result = init_database()
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@jobs_app.command("add")
def jobs_add(
    url: str = typer.Option(..., "--url"),
    company: str = typer.Option("", "--company"),
    position: str = typer.Option("", "--position"),
    notes: str = typer.Option("", "--notes"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        job = Repository(db).create_job(url=url, company=company, position=position, notes=notes)
        typer.echo(json.dumps(_job_payload(job), indent=2))


@jobs_app.command("list")
def jobs_list(limit: int = typer.Option(20, "--limit")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        jobs = Repository(db).list_jobs(limit=limit)
        typer.echo(json.dumps([_job_payload(job) for job in jobs], indent=2))


@applicant_app.command("set")
def applicant_set(
    name: str = typer.Option(..., "--name"),
    email: str = typer.Option(..., "--email"),
    phone: str = typer.Option("", "--phone"),
    location: str = typer.Option("", "--location"),
    linkedin: str = typer.Option("", "--linkedin"),
    portfolio: str = typer.Option("", "--portfolio"),
) -> None:
    configure_logging()
    ensure_initialized()
    profile = ApplicantProfile(
        name=name,
        email=email,
        phone=phone,
        location=location,
        linkedin=linkedin,
        portfolio=portfolio,
    )
    with SessionLocal() as db:
        Repository(db).save_applicant_profile(profile.model_dump())
    _echo_model(profile)


@applicant_app.command("show")
def applicant_show() -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        profile = Repository(db).get_applicant()
    if profile is None:
        typer.echo("No applicant profile saved. Run `applyflow applicant set` first.", err=True)
        raise typer.Exit(code=1)
    _echo_model(profile)


@boards_app.command("list")
def boards_list(enabled_only: bool = typer.Option(False, "--enabled-only")) -> None:
    configure_logging()
    registry = JobBoardRegistry()
    profiles = registry.enabled_profiles() if enabled_only else registry.list_profiles()
    typer.echo(
        json.dumps(
            [
                {
                    "id": profile.id,
                    "name": profile.name,
                    "domain_pattern": profile.domain_pattern,
                    "enabled": profile.enabled,
                    "captcha_likelihood": profile.captcha_likelihood,
                    "navigation_style": profile.navigation_style,
                }
                for profile in profiles
            ],
            indent=2,
        )
    )


@boards_app.command("resolve")
def boards_resolve(url: str = typer.Option(..., "--url")) -> None:
    configure_logging()
    profile = JobBoardRegistry().resolve(url)
    if profile is None:
        typer.echo(json.dumps(None))
        return
    _echo_model(profile)


@app.command("detect")
def detect_cmd(job_id: int = typer.Option(..., "--job-id")) -> None:
    """Open the job page, click Apply and list the form fields found."""
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        repo = Repository(db)
        url = _require_job_url(repo, job_id)
        result = _with_automation(lambda service: service.detect_job_page(url))
        repo.save_automation_log(
            job_id=job_id,
            action="detect",
            status="success" if result.success else "failed",
            details=result.model_dump(mode="json"),
            screenshot_path=result.screenshot_path,
        )
    _echo_model(result)


@app.command("captcha")
def captcha_cmd(job_id: int = typer.Option(..., "--job-id")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        repo = Repository(db)
        url = _require_job_url(repo, job_id)
        detection = _with_automation(lambda service: service.detect_captcha(url))
        repo.save_automation_log(
            job_id=job_id,
            action="captcha",
            status="success",
            details=detection.model_dump(mode="json"),
            screenshot_path=detection.screenshot_path,
        )
    _echo_model(detection)


@app.command("autofill")
def autofill_cmd(
    job_id: int = typer.Option(..., "--job-id"),
    resume: str | None = typer.Option(None, "--resume"),
    submit: bool = typer.Option(False, "--submit/--no-submit"),
) -> None:
    """Fill the job's application form from the saved applicant profile."""
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    with SessionLocal() as db:
        repo = Repository(db)
        url = _require_job_url(repo, job_id)
        applicant = repo.get_applicant()
        if applicant is None:
            raise typer.BadParameter("applicant profile not found; run `applyflow applicant set` first")
        resume_path = resume or repo.get_resume_path(job_id) or settings.default_resume_path
        result = _with_automation(
            lambda service: service.auto_fill_form(url, applicant, resume_path, submit=submit)
        )
        repo.save_automation_log(
            job_id=job_id,
            action="submit" if submit else "fill_form",
            status="success" if result.success else "failed",
            details=result.model_dump(mode="json"),
            screenshot_path=result.screenshots[-1] if result.screenshots else None,
        )
        if result.submitted:
            repo.mark_applied(job_id)
    _echo_model(result)


@batch_app.command("run")
def batch_run(
    job_ids: list[int] = typer.Option(..., "--job-id"),
    boards: list[str] = typer.Option([], "--board", help="Only process jobs on these boards (default: all enabled)"),
    max_applications: int = typer.Option(0, "--max-applications"),
    delay_min: float | None = typer.Option(None, "--delay-min"),
    delay_max: float | None = typer.Option(None, "--delay-max"),
    retry_attempts: int = typer.Option(0, "--retries"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    auto_submit: bool = typer.Option(False, "--auto-submit"),
    stop_on_error: bool = typer.Option(False, "--stop-on-error"),
) -> None:
    """Process the given jobs sequentially and print the finished session."""
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    registry = JobBoardRegistry()
    unknown = [board_id for board_id in boards if registry.get(board_id) is None]
    if unknown:
        raise typer.BadParameter(f"unknown job boards: {', '.join(unknown)}")
    try:
        batch_settings = BatchSettings(
            max_applications=max_applications,
            delay_min_seconds=settings.batch_default_delay_min_seconds if delay_min is None else delay_min,
            delay_max_seconds=settings.batch_default_delay_max_seconds if delay_max is None else delay_max,
            auto_submit=auto_submit,
            stop_on_error=stop_on_error,
            retry_attempts=retry_attempts,
            dry_run=dry_run,
            enabled_board_ids=boards or [profile.id for profile in registry.enabled_profiles()],
        )
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    async def _run() -> None:
        driver = PlaywrightDriver(settings)
        manager = BatchSessionManager(
            AutomationService(driver, settings, registry=registry),
            registry=registry,
            settings=settings,
        )
        try:
            session_id = await manager.start_session(job_ids, batch_settings)
            session = await manager.wait(session_id)
        finally:
            await driver.close()
        if session is not None:
            _echo_model(session)

    asyncio.run(_run())


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)
