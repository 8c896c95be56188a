"""Unit tests for the import job state machine."""

import pytest

from geoimport.exceptions import InvalidStageTransitionError
from geoimport.models import ProcessingStage as S
from geoimport.stages import (
    STAGE_TASKS,
    is_valid_transition,
    next_stage_after,
    task_for_stage,
    validate_transition,
)


@pytest.mark.parametrize(
    "from_stage,to_stage",
    [
        (S.ANALYZE_DUPLICATES, S.DETECT_SCHEMA),
        (S.VALIDATE_SCHEMA, S.AWAIT_APPROVAL),
        (S.VALIDATE_SCHEMA, S.GEOCODE_BATCH),
        (S.AWAIT_APPROVAL, S.CREATE_SCHEMA_VERSION),
        (S.CREATE_EVENTS, S.GEOCODE_EVENTS),
        (S.CREATE_EVENTS, S.COMPLETED),
        (S.DETECT_SCHEMA, S.DETECT_SCHEMA),
    ],
)
def test_valid_transitions(from_stage, to_stage):
    assert is_valid_transition(from_stage, to_stage)


@pytest.mark.parametrize(
    "from_stage,to_stage",
    [
        (S.ANALYZE_DUPLICATES, S.CREATE_EVENTS),
        (S.AWAIT_APPROVAL, S.GEOCODE_BATCH),
        (S.COMPLETED, S.ANALYZE_DUPLICATES),
        (S.FAILED, S.DETECT_SCHEMA),
    ],
)
def test_invalid_transitions(from_stage, to_stage):
    assert not is_valid_transition(from_stage, to_stage)
    with pytest.raises(InvalidStageTransitionError, match="Invalid stage transition"):
        validate_transition(from_stage, to_stage)


def test_any_non_completed_stage_can_fail():
    assert is_valid_transition(S.GEOCODE_BATCH, S.FAILED)
    assert is_valid_transition(S.AWAIT_APPROVAL, S.FAILED)
    assert not is_valid_transition(S.COMPLETED, S.FAILED)


def test_await_approval_has_no_task():
    assert task_for_stage(S.AWAIT_APPROVAL) is None
    assert task_for_stage(S.COMPLETED) is None
    assert task_for_stage(S.CREATE_EVENTS) == "create_events_job"


def test_every_task_stage_has_a_transition_into_it():
    reachable = {S.ANALYZE_DUPLICATES}
    for from_stage in S:
        for to_stage in S:
            if from_stage != to_stage and is_valid_transition(from_stage, to_stage):
                reachable.add(to_stage)
    assert set(STAGE_TASKS) <= reachable


class TestNextStageAfter:
    def test_nothing_succeeded_restarts_duplicates(self):
        assert next_stage_after(None) == S.ANALYZE_DUPLICATES

    def test_resumes_after_last_success(self):
        assert next_stage_after(S.DETECT_SCHEMA) == S.VALIDATE_SCHEMA
        assert next_stage_after(S.CREATE_SCHEMA_VERSION) == S.GEOCODE_BATCH
        assert next_stage_after(S.GEOCODE_BATCH) == S.CREATE_EVENTS

    def test_approval_is_never_skipped(self):
        assert next_stage_after(S.VALIDATE_SCHEMA) == S.VALIDATE_SCHEMA
        assert next_stage_after(S.AWAIT_APPROVAL) == S.VALIDATE_SCHEMA
