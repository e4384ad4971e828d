import asyncio
from collections.abc import Callable

from applyflow.browser.job_boards import JobBoardRegistry
from applyflow.core.batch import BatchSessionManager
from applyflow.core.events import EventBus
from applyflow.db.repositories import Repository
from applyflow.db.session import SessionLocal
from applyflow.types import (
    BatchSettings,
    CaptchaDetection,
    DetectionResult,
    FillResult,
    JobBoardProfile,
    RateLimit,
)


class _FakeAutomation:
    def __init__(
        self,
        *,
        failures: dict[str, int] | None = None,
        captcha_urls: set[str] | None = None,
        submits: bool = True,
        on_fill: Callable[[str], None] | None = None,
    ):
        self.registry = JobBoardRegistry()
        self.failures = dict(failures or {})
        self.captcha_urls = captcha_urls or set()
        self.submits = submits
        self.on_fill = on_fill
        self.calls: list[tuple[str, str]] = []

    async def detect_job_page(self, url, *, board=None) -> DetectionResult:
        self.calls.append(("detect", url))
        if self.failures.get(url, 0) > 0:
            self.failures[url] -= 1
            return DetectionResult(page_url=url, errors=["Navigation failed: timeout"])
        return DetectionResult(success=True, apply_control_found=True, page_url=url)

    async def detect_captcha(self, url, *, board=None) -> CaptchaDetection:
        self.calls.append(("captcha", url))
        if url in self.captcha_urls:
            return CaptchaDetection(detected=True, kind="recaptcha", confidence=0.95, page_url=url)
        return CaptchaDetection(page_url=url)

    async def auto_fill_form(self, url, profile, resume_path=None, *, submit=False, board=None) -> FillResult:
        self.calls.append(("fill", url))
        if self.on_fill is not None:
            self.on_fill(url)
        return FillResult(success=True, submitted=submit and self.submits, final_page_url=url, pages_visited=1)


class _RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


def _add_jobs(*urls: str) -> list[int]:
    with SessionLocal() as db:
        repo = Repository(db)
        return [repo.create_job(url=url, company="Acme", position=f"Engineer {i}").id for i, url in enumerate(urls)]


def _add_applicant() -> None:
    with SessionLocal() as db:
        Repository(db).save_applicant_profile({"name": "Ada Lovelace", "email": "ada@example.com"})


def _manager(automation=None, **kwargs) -> BatchSessionManager:
    kwargs.setdefault("sleep", _RecordingSleep())
    return BatchSessionManager(automation, **kwargs)


def _run_session(manager: BatchSessionManager, job_ids: list[int], settings: BatchSettings):
    async def scenario():
        session_id = await manager.start_session(job_ids, settings)
        return await manager.wait(session_id)

    return asyncio.run(scenario())


ALL_BOARDS = [profile.id for profile in JobBoardRegistry().list_profiles()]


def _fast(**overrides) -> BatchSettings:
    values = {"delay_min_seconds": 0, "delay_max_seconds": 0, "enabled_board_ids": ALL_BOARDS}
    values.update(overrides)
    return BatchSettings(**values)


def test_all_jobs_complete_with_rate_limited_delays() -> None:
    _add_applicant()
    job_ids = _add_jobs(
        "https://www.linkedin.com/jobs/view/1",
        "https://www.linkedin.com/jobs/view/2",
        "https://www.linkedin.com/jobs/view/3",
    )
    automation = _FakeAutomation()
    sleep = _RecordingSleep()
    manager = _manager(automation, sleep=sleep)

    session = _run_session(manager, job_ids, _fast())

    assert session.status == "completed"
    assert session.completed_jobs == 3
    assert session.failed_jobs == 0
    assert session.results.success_rate == 100.0
    assert session.completed_at is not None
    assert session.results.total_time_seconds >= 0
    assert len(sleep.delays) == 2
    assert all(30 <= delay <= 120 for delay in sleep.delays)
    breakdown = session.results.job_board_breakdown["linkedin"]
    assert (breakdown.total, breakdown.successful, breakdown.failed) == (3, 3, 0)
    assert [kind for kind, _ in automation.calls[:3]] == ["detect", "captcha", "fill"]


def test_stop_on_error_leaves_remaining_jobs_untouched() -> None:
    _add_applicant()
    urls = ["https://example.com/a", "https://example.com/b", "https://example.com/c"]
    job_ids = _add_jobs(*urls)
    automation = _FakeAutomation(failures={urls[1]: 5})
    manager = _manager(automation)

    session = _run_session(manager, job_ids, _fast(stop_on_error=True))

    assert session.status == "completed"
    assert (session.completed_jobs, session.failed_jobs, session.skipped_jobs) == (1, 1, 0)
    assert all(url != urls[2] for _, url in automation.calls)
    assert session.results.success_rate == 50.0
    assert session.results.common_failures == ["Failed to detect job page: Navigation failed: timeout"]
    messages = [log.message for log in manager.get_logs(session.id)]
    assert "Stopping batch due to error (stop_on_error enabled)" in messages


def test_failures_without_stop_on_error_continue() -> None:
    _add_applicant()
    urls = ["https://example.com/a", "https://example.com/b", "https://example.com/c"]
    job_ids = _add_jobs(*urls)
    manager = _manager(_FakeAutomation(failures={urls[0]: 5}))

    session = _run_session(manager, job_ids, _fast())

    assert (session.completed_jobs, session.failed_jobs) == (2, 1)
    generic = session.results.job_board_breakdown["generic"]
    assert (generic.total, generic.successful, generic.failed) == (3, 2, 1)


def test_pause_and_resume_reach_the_same_outcome() -> None:
    _add_applicant()
    job_ids = _add_jobs("https://example.com/a", "https://example.com/b")
    automation = _FakeAutomation()
    manager = _manager(automation)

    async def scenario():
        session_id = await manager.start_session(job_ids, _fast())
        assert manager.pause_session(session_id) is True
        for _ in range(5):
            await asyncio.sleep(0)
        paused = manager.get_session(session_id).status
        calls_while_paused = len(automation.calls)
        assert manager.pause_session(session_id) is False
        assert manager.resume_session(session_id) is True
        session = await manager.wait(session_id)
        return paused, calls_while_paused, session

    paused, calls_while_paused, session = asyncio.run(scenario())

    assert paused == "paused"
    assert calls_while_paused == 0
    assert session.status == "completed"
    assert session.completed_jobs == 2


def test_stop_while_paused_ends_session_as_stopped() -> None:
    _add_applicant()
    job_ids = _add_jobs("https://example.com/a", "https://example.com/b")
    automation = _FakeAutomation()
    manager = _manager(automation)

    async def scenario():
        session_id = await manager.start_session(job_ids, _fast())
        manager.pause_session(session_id)
        await asyncio.sleep(0)
        assert manager.stop_session(session_id) is True
        assert manager.resume_session(session_id) is False
        return await manager.wait(session_id)

    session = asyncio.run(scenario())

    assert session.status == "stopped"
    assert session.completed_jobs == 0
    assert session.completed_at is not None
    assert automation.calls == []


def test_control_calls_on_unknown_sessions_are_no_ops() -> None:
    manager = _manager()

    assert manager.pause_session("missing") is False
    assert manager.resume_session("missing") is False
    assert manager.stop_session("missing") is False
    assert manager.get_progress("missing") is None
    assert manager.get_results("missing") is None


def test_board_filter_skips_unlisted_boards() -> None:
    _add_applicant()
    job_ids = _add_jobs("https://www.linkedin.com/jobs/view/1", "https://unknown-domain.com/jobs/2")
    automation = _FakeAutomation()
    manager = _manager(automation)

    session = _run_session(manager, job_ids, _fast(enabled_board_ids=["linkedin"]))

    assert session.skipped_jobs == 1
    assert session.completed_jobs == 1
    assert {url for _, url in automation.calls} == {"https://www.linkedin.com/jobs/view/1"}


def test_empty_board_list_skips_every_resolved_job() -> None:
    _add_applicant()
    job_ids = _add_jobs("https://www.linkedin.com/jobs/view/1", "https://unknown-domain.com/jobs/2")
    automation = _FakeAutomation()
    manager = _manager(automation)

    session = _run_session(manager, job_ids, _fast(enabled_board_ids=[]))

    assert session.status == "completed"
    assert (session.completed_jobs, session.skipped_jobs) == (0, 2)
    assert automation.calls == []


def test_stop_during_a_job_finishes_it_and_visits_nothing_else() -> None:
    _add_applicant()
    urls = ["https://example.com/a", "https://example.com/b", "https://example.com/c"]
    job_ids = _add_jobs(*urls)
    manager = _manager()

    def stop_on_first(url: str) -> None:
        if url == urls[0]:
            (session,) = manager.list_sessions()
            assert manager.stop_session(session.id) is True

    automation = _FakeAutomation(on_fill=stop_on_first)
    manager.automation = automation

    session = _run_session(manager, job_ids, _fast())

    assert session.status == "stopped"
    assert (session.completed_jobs, session.failed_jobs, session.skipped_jobs) == (1, 0, 0)
    assert {url for _, url in automation.calls} == {urls[0]}
    assert session.completed_at is not None
    messages = [log.message for log in manager.get_logs(session.id)]
    assert f"Job {job_ids[0]} completed successfully" in messages
    assert messages[-1] == "Batch processing stopped"
    assert "Batch processing completed" not in messages


def test_stop_on_error_at_the_first_job() -> None:
    _add_applicant()
    urls = ["https://example.com/a", "https://example.com/b", "https://example.com/c"]
    job_ids = _add_jobs(*urls)
    automation = _FakeAutomation(failures={urls[0]: 5})
    manager = _manager(automation)

    session = _run_session(manager, job_ids, _fast(stop_on_error=True))

    assert session.status == "completed"
    assert (session.completed_jobs, session.failed_jobs, session.skipped_jobs) == (0, 1, 0)
    assert {url for _, url in automation.calls} == {urls[0]}
    assert session.results.success_rate == 0.0


def test_jobs_without_a_board_use_settings_delays() -> None:
    _add_applicant()
    job_ids = _add_jobs("https://example.com/a", "https://example.com/b")
    automation = _FakeAutomation()
    automation.registry = JobBoardRegistry([])
    sleep = _RecordingSleep()
    manager = _manager(automation, sleep=sleep)

    session = _run_session(
        manager,
        job_ids,
        BatchSettings(delay_min_seconds=5, delay_max_seconds=5, enabled_board_ids=["linkedin"]),
    )

    assert session.completed_jobs == 2
    assert sleep.delays == [5.0]
    assert "unknown" in session.results.job_board_breakdown


def test_missing_job_is_skipped() -> None:
    _add_applicant()
    job_ids = _add_jobs("https://example.com/a")
    manager = _manager(_FakeAutomation())

    session = _run_session(manager, [9999, *job_ids], _fast())

    assert session.skipped_jobs == 1
    assert session.completed_jobs == 1
    assert any(log.message == "Job 9999 not found, skipping" for log in manager.get_logs(session.id))


def test_retry_turns_a_transient_failure_into_success() -> None:
    _add_applicant()
    url = "https://example.com/flaky"
    job_ids = _add_jobs(url)
    automation = _FakeAutomation(failures={url: 1})
    manager = _manager(automation)

    session = _run_session(manager, job_ids, _fast(retry_attempts=1))

    assert session.completed_jobs == 1
    assert session.failed_jobs == 0
    warnings = [log for log in manager.get_logs(session.id) if log.level == "warning"]
    assert len(warnings) == 1
    assert "retrying" in warnings[0].message


def test_dry_run_never_touches_the_browser() -> None:
    job_ids = _add_jobs("https://example.com/a", "https://example.com/b", "https://example.com/c")
    sleep = _RecordingSleep()
    manager = _manager(None, sleep=sleep)

    session = _run_session(manager, job_ids, BatchSettings(dry_run=True, enabled_board_ids=ALL_BOARDS))

    assert session.status == "completed"
    assert session.completed_jobs == 3
    assert sleep.delays == []
    assert manager.get_progress(session.id).percentage == 100.0
    dry_logs = [log for log in manager.get_logs(session.id) if log.message.startswith("Dry run")]
    assert len(dry_logs) == 3


def test_max_applications_ends_the_loop() -> None:
    _add_applicant()
    job_ids = _add_jobs("https://example.com/a", "https://example.com/b", "https://example.com/c")
    automation = _FakeAutomation()
    manager = _manager(automation)

    session = _run_session(manager, job_ids, _fast(max_applications=1))

    assert session.completed_jobs == 1
    assert session.status == "completed"
    assert len([call for call in automation.calls if call[0] == "detect"]) == 1


def test_board_rate_limits_are_logged_not_enforced() -> None:
    _add_applicant()
    acme = JobBoardProfile(
        id="acme",
        name="Acme Careers",
        domain_pattern=r"acme\.test",
        rate_limit=RateLimit(max_per_hour=1, max_per_day=1, min_delay_seconds=0, max_delay_seconds=0),
    )
    automation = _FakeAutomation()
    automation.registry = JobBoardRegistry([acme])
    job_ids = _add_jobs("https://acme.test/jobs/1", "https://acme.test/jobs/2")
    manager = _manager(automation)

    session = _run_session(manager, job_ids, _fast(enabled_board_ids=["acme"]))

    assert (session.completed_jobs, session.skipped_jobs) == (2, 0)
    assert session.results.job_board_breakdown["acme"].successful == 2


def test_captcha_creates_manual_assist_session() -> None:
    _add_applicant()
    url = "https://example.com/protected"
    job_ids = _add_jobs(url)
    manager = _manager(_FakeAutomation(captcha_urls={url}))

    session = _run_session(manager, job_ids, _fast())

    assert session.failed_jobs == 1
    assert session.results.common_failures == ["CAPTCHA detected: recaptcha"]
    with SessionLocal() as db:
        assists = Repository(db).list_manual_assist_sessions(job_ids[0])
        assert len(assists) == 1
        assert assists[0].captcha_type == "recaptcha"
        assert assists[0].status == "pending"
        assert assists[0].prefill_json["email"] == "ada@example.com"


def test_captcha_is_not_retried() -> None:
    _add_applicant()
    url = "https://example.com/protected"
    job_ids = _add_jobs(url)
    automation = _FakeAutomation(captcha_urls={url})
    manager = _manager(automation)

    session = _run_session(manager, job_ids, _fast(retry_attempts=2))

    assert session.failed_jobs == 1
    assert [kind for kind, _ in automation.calls].count("captcha") == 1
    with SessionLocal() as db:
        assert len(Repository(db).list_manual_assist_sessions(job_ids[0])) == 1


def test_auto_submit_marks_job_applied() -> None:
    _add_applicant()
    job_ids = _add_jobs("https://example.com/a")
    manager = _manager(_FakeAutomation())

    session = _run_session(manager, job_ids, _fast(auto_submit=True))

    assert session.completed_jobs == 1
    with SessionLocal() as db:
        repo = Repository(db)
        assert repo.get_job(job_ids[0]).status == "applied"
        logs = repo.list_automation_logs(job_ids[0])
        assert [(log.action, log.status) for log in logs] == [("submit", "success")]
        assert repo.get_latest_application(job_ids[0]).applied_at is not None


def test_auto_submit_without_a_submit_click_fails() -> None:
    _add_applicant()
    job_ids = _add_jobs("https://example.com/a")
    manager = _manager(_FakeAutomation(submits=False))

    session = _run_session(manager, job_ids, _fast(auto_submit=True))

    assert session.failed_jobs == 1


def test_missing_applicant_profile_fails_the_job() -> None:
    job_ids = _add_jobs("https://example.com/a")
    manager = _manager(_FakeAutomation())

    session = _run_session(manager, job_ids, _fast())

    assert session.failed_jobs == 1
    assert session.results.common_failures == ["Applicant profile is not set up"]


def test_loop_crash_marks_session_failed() -> None:
    def broken_factory():
        raise RuntimeError("database unavailable")

    manager = _manager(_FakeAutomation(), session_factory=broken_factory)

    session = _run_session(manager, [1], _fast())

    assert session.status == "failed"
    assert session.error == "database unavailable"


def test_events_follow_session_lifecycle() -> None:
    bus = EventBus()
    job_ids = _add_jobs("https://example.com/a")
    manager = _manager(None, event_bus=bus)
    statuses: list[str] = []

    async def scenario():
        original_publish = bus.publish

        def record(event):
            if event.type == "session":
                statuses.append(event.session.status)
            original_publish(event)

        bus.publish = record
        session_id = await manager.start_session(job_ids, BatchSettings(dry_run=True, enabled_board_ids=ALL_BOARDS))
        return await manager.wait(session_id)

    session = asyncio.run(scenario())

    assert session.status == "completed"
    assert statuses[0] == "running"
    assert statuses[-1] == "completed"
