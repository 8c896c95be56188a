"""Import job state machine: valid transitions and the task that runs each stage."""

from typing import Optional

from geoimport.exceptions import InvalidStageTransitionError
from geoimport.models import ProcessingStage

__all__ = [
    "VALID_STAGE_TRANSITIONS",
    "STAGE_TASKS",
    "BATCH_STAGES",
    "STAGE_ORDER",
    "TERMINAL_STAGES",
    "is_valid_transition",
    "validate_transition",
    "task_for_stage",
    "next_stage_after",
]

S = ProcessingStage

VALID_STAGE_TRANSITIONS: dict[ProcessingStage, frozenset[ProcessingStage]] = {
    S.DETECT_DATASET: frozenset({S.ANALYZE_DUPLICATES}),
    S.ANALYZE_DUPLICATES: frozenset({S.DETECT_SCHEMA}),
    S.DETECT_SCHEMA: frozenset({S.VALIDATE_SCHEMA}),
    S.VALIDATE_SCHEMA: frozenset({S.AWAIT_APPROVAL, S.GEOCODE_BATCH}),
    S.AWAIT_APPROVAL: frozenset({S.CREATE_SCHEMA_VERSION}),
    S.CREATE_SCHEMA_VERSION: frozenset({S.GEOCODE_BATCH}),
    S.GEOCODE_BATCH: frozenset({S.CREATE_EVENTS}),
    S.CREATE_EVENTS: frozenset({S.COMPLETED, S.GEOCODE_EVENTS}),
    S.GEOCODE_EVENTS: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
}

# Stage -> task (Dagster job) that performs it. Stages absent here queue nothing.
STAGE_TASKS: dict[ProcessingStage, str] = {
    S.ANALYZE_DUPLICATES: "analyze_duplicates_job",
    S.DETECT_SCHEMA: "detect_schema_job",
    S.VALIDATE_SCHEMA: "validate_schema_job",
    S.CREATE_SCHEMA_VERSION: "create_schema_version_job",
    S.GEOCODE_BATCH: "geocode_batch_job",
    S.CREATE_EVENTS: "create_events_job",
    S.GEOCODE_EVENTS: "geocode_events_job",
}

BATCH_STAGES = frozenset({S.DETECT_SCHEMA, S.CREATE_EVENTS})

STAGE_ORDER: list[ProcessingStage] = [
    S.DETECT_DATASET,
    S.ANALYZE_DUPLICATES,
    S.DETECT_SCHEMA,
    S.VALIDATE_SCHEMA,
    S.AWAIT_APPROVAL,
    S.CREATE_SCHEMA_VERSION,
    S.GEOCODE_BATCH,
    S.CREATE_EVENTS,
    S.GEOCODE_EVENTS,
    S.COMPLETED,
]

TERMINAL_STAGES = frozenset({S.COMPLETED, S.FAILED})


def is_valid_transition(from_stage: ProcessingStage, to_stage: ProcessingStage) -> bool:
    if from_stage == to_stage:
        return True
    if to_stage == S.FAILED:
        return from_stage != S.COMPLETED
    return to_stage in VALID_STAGE_TRANSITIONS.get(from_stage, frozenset())


def validate_transition(from_stage: ProcessingStage, to_stage: ProcessingStage) -> None:
    if not is_valid_transition(from_stage, to_stage):
        raise InvalidStageTransitionError(from_stage.value, to_stage.value)


def task_for_stage(stage: ProcessingStage) -> Optional[str]:
    return STAGE_TASKS.get(stage)


def next_stage_after(stage: Optional[ProcessingStage]) -> ProcessingStage:
    """
    Stage to resume from after ``stage`` succeeded.

    Used by error recovery; approval is never skipped, so a job whose last
    success was validation resumes at validation.
    """
    if stage is None:
        return S.ANALYZE_DUPLICATES
    if stage in (S.VALIDATE_SCHEMA, S.AWAIT_APPROVAL):
        return S.VALIDATE_SCHEMA
    index = STAGE_ORDER.index(stage) if stage in STAGE_ORDER else -1
    for candidate in STAGE_ORDER[index + 1:]:
        if candidate in STAGE_TASKS:
            return candidate
    return S.ANALYZE_DUPLICATES
