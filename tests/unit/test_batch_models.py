import pytest
from pydantic import ValidationError

from applyflow.types import BatchSession, BatchSettings, FieldMapping, FormField, InvalidTransitionError


def test_session_lifecycle_transitions() -> None:
    session = BatchSession(id="s1")

    session.transition("running")
    session.transition("paused")
    session.transition("running")
    session.transition("completed")

    assert session.is_terminal is True


@pytest.mark.parametrize("terminal", ["completed", "stopped", "failed"])
def test_terminal_states_have_no_exits(terminal: str) -> None:
    session = BatchSession(id="s1", status=terminal)

    for target in ("pending", "running", "paused", "stopped", "completed", "failed"):
        assert session.can_transition(target) is False
    with pytest.raises(InvalidTransitionError):
        session.transition("running")


def test_paused_can_stop_but_pending_cannot_pause() -> None:
    assert BatchSession(id="s1", status="paused").can_transition("stopped") is True
    assert BatchSession(id="s1", status="pending").can_transition("paused") is False
    assert BatchSession(id="s1", status="pending").can_transition("failed") is True


def test_batch_settings_validation() -> None:
    with pytest.raises(ValidationError):
        BatchSettings(delay_min_seconds=10, delay_max_seconds=5)
    with pytest.raises(ValidationError):
        BatchSettings(retry_attempts=-1)
    with pytest.raises(ValidationError):
        BatchSettings(max_applications=-3)

    assert BatchSettings(delay_min_seconds=0, delay_max_seconds=0).delay_max_seconds == 0


def test_mapping_confidence_bounds() -> None:
    form_field = FormField(name="email", selector="#email")

    with pytest.raises(ValidationError):
        FieldMapping(field=form_field, profile_field="email", value="a@b.c", confidence=1.2)
