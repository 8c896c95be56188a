# =============================================================================
# Schema Ops - detection, validation, approval and versioning
# =============================================================================
# detect-schema folds one batch per execution into the persisted builder
# state and re-queues itself; validate-schema diffs the result against the
# dataset's current schema version and either auto-approves it or parks the
# job at await-approval for a human.
# =============================================================================

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dagster import Field, OpExecutionContext, op

from geoimport.models import (
    Dataset,
    ImportJob,
    PipelineSettings,
    ProcessingStage,
    QuotaType,
    SchemaValidation,
    SchemaVersion,
    StructuralSchema,
)
from geoimport.quota import enforce_quota
from geoimport.readers import read_batch
from geoimport.recovery import ErrorClassification
from geoimport.schema_builder import (
    ProgressiveSchemaBuilder,
    SchemaBuilderConfig,
    apply_overrides,
    detect_field_mappings,
)
from geoimport.schema_diff import (
    approval_reason,
    compare_schemas,
    generate_change_summary,
    requires_approval,
)
from geoimport.transforms import apply_transforms
from .common_ops import (
    STAGE_OP_CONFIG,
    load_dataset,
    load_import_file,
    local_import_file,
    queue_stage,
    run_stage,
)


__all__ = [
    "detect_schema_op",
    "validate_schema_op",
    "approve_schema_op",
    "reject_schema_op",
    "create_schema_version_op",
]


def _builder_config(dataset: Dataset) -> SchemaBuilderConfig:
    return SchemaBuilderConfig(
        enum_threshold=dataset.schema_config.enum_threshold,
        enum_mode=dataset.schema_config.enum_mode,
    )


# =============================================================================
# detect-schema
# =============================================================================

def _detect_schema(
    mongodb,
    minio,
    import_job_id: str,
    batch_number: int,
    settings: PipelineSettings,
    log,
) -> Dict[str, Any]:
    """
    Core logic for one schema detection batch.

    A full batch re-queues the next batch number. A short or empty batch is
    the end of the sheet: the schema is finalized, field mappings are
    detected and the job moves to validate-schema.
    """

    def handle(job: ImportJob) -> Dict[str, Any]:
        dataset = load_dataset(mongodb, job.dataset_id)
        batch_size = settings.schema_detection_batch_size

        if batch_number < job.progress.schema_batches:
            log.info(f"Batch {batch_number} of import job {job.import_job_id} already folded in; skipping")
            return {"status": "skipped", "reason": "batch already processed"}

        import_file = load_import_file(mongodb, job.import_file_id)
        start_row = batch_number * batch_size
        with local_import_file(minio, import_file, log) as local_path:
            rows = read_batch(local_path, import_file.mime_type, job.sheet_index, start_row, batch_size)

        skip_rows = job.duplicates.row_numbers()
        unique_rows = [
            apply_transforms(row, dataset.import_transforms)
            for offset, row in enumerate(rows)
            if start_row + offset not in skip_rows
        ]

        builder = ProgressiveSchemaBuilder(job.schema_builder_state, _builder_config(dataset))
        result = builder.process_batch(unique_rows)
        if result.schema_changed:
            log.info(f"Schema changed in batch {batch_number}: {len(result.changes)} change(s)")

        if len(rows) == batch_size:
            mongodb.update_import_job(
                job.import_job_id,
                {
                    "schema_builder_state": builder.get_state().model_dump(),
                    "progress.schema_batches": batch_number + 1,
                },
            )
            queue_stage(mongodb, job.import_job_id, ProcessingStage.DETECT_SCHEMA, log, batch_number + 1)
            return {
                "status": "batch_processed",
                "batch_number": batch_number,
                "rows": len(rows),
                "unique_rows": len(unique_rows),
            }

        builder.finalize()
        state = builder.get_state()
        schema = builder.get_schema()
        mappings = apply_overrides(
            detect_field_mappings(state.field_stats, dataset.language),
            dataset.field_mapping_overrides,
        )
        mongodb.advance_import_job(
            job,
            ProcessingStage.VALIDATE_SCHEMA,
            {
                "schema_builder_state": state.model_dump(),
                "detected_schema": schema.to_json_schema(),
                "detected_field_mappings": mappings.model_dump(),
                "progress.schema_batches": batch_number + 1,
            },
        )
        queue_stage(mongodb, job.import_job_id, ProcessingStage.VALIDATE_SCHEMA, log)
        log.info(
            f"Schema detection finished for import job {job.import_job_id}: "
            f"{len(schema.fields)} fields over {state.record_count} records"
        )
        return {"status": "completed", "batch_number": batch_number, **builder.get_summary()}

    return run_stage(
        mongodb, import_job_id, ProcessingStage.DETECT_SCHEMA,
        owner=f"detect-schema:{import_job_id}:{batch_number}",
        lease_seconds=settings.lease_seconds,
        log=log,
        handler=handle,
    )


# =============================================================================
# Schema versions
# =============================================================================

def _create_schema_version(
    mongodb,
    job: ImportJob,
    auto_approved: bool,
    approved_by: Optional[str],
    log,
) -> int:
    builder = ProgressiveSchemaBuilder(job.schema_builder_state)
    version = SchemaVersion(
        dataset_id=job.dataset_id,
        version_number=mongodb.get_next_schema_version_number(job.dataset_id),
        schema_doc=job.detected_schema or {},
        field_metadata=builder.field_metadata(),
        auto_approved=auto_approved,
        approved_by=approved_by,
        import_sources=[job.import_job_id],
    )
    mongodb.insert_schema_version(version)
    log.info(
        f"Created schema version {version.version_number} for dataset {job.dataset_id} "
        f"({'auto-approved' if auto_approved else f'approved by {approved_by}'})"
    )
    return version.version_number


# =============================================================================
# validate-schema
# =============================================================================

def _validate_schema(
    mongodb,
    import_job_id: str,
    settings: PipelineSettings,
    log,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Core logic for the schema gate.

    Checks the per-import and total event quotas against the unique row
    count, diffs the detected schema against the current version and either
    parks the job at await-approval or creates/links a version and moves on
    to geocoding.
    """
    now = now or datetime.now(timezone.utc)

    def handle(job: ImportJob) -> Dict[str, Any]:
        dataset = load_dataset(mongodb, job.dataset_id)
        if job.detected_schema is None:
            raise RuntimeError("No detected schema to validate")

        user = mongodb.get_user(job.user_id)
        usage = mongodb.get_usage(job.user_id)
        unique_rows = max(0, job.progress.total - len(job.duplicates.row_numbers()))
        enforce_quota(user, usage, QuotaType.EVENTS_PER_IMPORT, unique_rows, now)
        enforce_quota(user, usage, QuotaType.TOTAL_EVENTS, unique_rows, now)

        detected = StructuralSchema.from_json_schema(job.detected_schema)
        current_version = mongodb.get_latest_schema_version(dataset.dataset_id)
        current = StructuralSchema.from_json_schema(current_version.schema_doc) if current_version else None

        comparison = compare_schemas(current, detected)
        needs_approval = requires_approval(comparison, dataset.schema_config)
        validation = SchemaValidation(
            is_compatible=not comparison.has_breaking_changes,
            breaking_changes=comparison.breaking_changes,
            new_fields=comparison.new_fields,
            requires_approval=needs_approval,
            approval_reason=approval_reason(comparison, dataset.schema_config),
            change_summary=generate_change_summary(comparison),
        )

        if needs_approval:
            mongodb.advance_import_job(
                job, ProcessingStage.AWAIT_APPROVAL, {"schema_validation": validation.model_dump()}
            )
            log.info(
                f"Import job {job.import_job_id} awaits schema approval: {validation.approval_reason}"
            )
            return {"status": "awaiting_approval", "reason": validation.approval_reason}

        if comparison.changes or current_version is None:
            version_number = _create_schema_version(mongodb, job, auto_approved=True, approved_by=None, log=log)
        else:
            version_number = current_version.version_number
            mongodb.link_import_to_schema_version(dataset.dataset_id, version_number, job.import_job_id)

        mongodb.advance_import_job(
            job,
            ProcessingStage.GEOCODE_BATCH,
            {"schema_validation": validation.model_dump(), "dataset_schema_version": version_number},
        )
        queue_stage(mongodb, job.import_job_id, ProcessingStage.GEOCODE_BATCH, log)
        return {
            "status": "approved",
            "schema_version": version_number,
            "changes": len(comparison.changes),
        }

    return run_stage(
        mongodb, import_job_id, ProcessingStage.VALIDATE_SCHEMA,
        owner=f"validate-schema:{import_job_id}",
        lease_seconds=settings.lease_seconds,
        log=log,
        handler=handle,
    )


# =============================================================================
# await-approval decisions
# =============================================================================

def _approve_schema(
    mongodb,
    import_job_id: str,
    approved_by: Optional[str],
    settings: PipelineSettings,
    log,
) -> Dict[str, Any]:
    """Record a human approval and hand the job to create-schema-version."""

    def handle(job: ImportJob) -> Dict[str, Any]:
        validation = job.schema_validation or SchemaValidation()
        validation.approved = True
        validation.approved_by = approved_by
        validation.approved_at = datetime.now(timezone.utc)
        mongodb.advance_import_job(
            job, ProcessingStage.CREATE_SCHEMA_VERSION, {"schema_validation": validation.model_dump()}
        )
        queue_stage(mongodb, job.import_job_id, ProcessingStage.CREATE_SCHEMA_VERSION, log)
        log.info(f"Schema for import job {job.import_job_id} approved by {approved_by or 'system'}")
        return {"status": "approved", "approved_by": approved_by}

    return run_stage(
        mongodb, import_job_id, ProcessingStage.AWAIT_APPROVAL,
        owner=f"approve-schema:{import_job_id}",
        lease_seconds=settings.lease_seconds,
        log=log,
        handler=handle,
    )


def _reject_schema(
    mongodb,
    import_job_id: str,
    reason: str,
    rejected_by: Optional[str],
    log,
) -> Dict[str, Any]:
    """Fail a job parked at await-approval. Rejection is a decision, not an error."""
    job = mongodb.get_import_job(import_job_id)
    if job is None:
        raise RuntimeError(f"Import job not found: {import_job_id}")
    if job.stage != ProcessingStage.AWAIT_APPROVAL:
        log.info(f"Import job {import_job_id} is at '{job.stage.value}', not awaiting approval; skipping")
        return {"status": "skipped", "reason": f"stage is {job.stage.value}"}

    validation = job.schema_validation or SchemaValidation()
    validation.approved = False
    validation.approved_by = rejected_by
    validation.approved_at = datetime.now(timezone.utc)
    mongodb.update_import_job(import_job_id, {"schema_validation": validation.model_dump()})
    mongodb.fail_import_job(
        import_job_id,
        f"Schema rejected: {reason}",
        stage=ProcessingStage.AWAIT_APPROVAL.value,
        classification=ErrorClassification.USER_ACTION.value,
    )
    log.info(f"Schema for import job {import_job_id} rejected by {rejected_by or 'system'}: {reason}")
    return {"status": "rejected", "reason": reason}


# =============================================================================
# create-schema-version
# =============================================================================

def _create_approved_schema_version(
    mongodb,
    import_job_id: str,
    settings: PipelineSettings,
    log,
) -> Dict[str, Any]:
    def handle(job: ImportJob) -> Dict[str, Any]:
        if not (job.schema_validation and job.schema_validation.approved):
            raise RuntimeError("Schema has not been approved")
        version_number = _create_schema_version(
            mongodb, job, auto_approved=False, approved_by=job.schema_validation.approved_by, log=log
        )
        mongodb.advance_import_job(
            job, ProcessingStage.GEOCODE_BATCH, {"dataset_schema_version": version_number}
        )
        queue_stage(mongodb, job.import_job_id, ProcessingStage.GEOCODE_BATCH, log)
        return {"status": "created", "schema_version": version_number}

    return run_stage(
        mongodb, import_job_id, ProcessingStage.CREATE_SCHEMA_VERSION,
        owner=f"create-schema-version:{import_job_id}",
        lease_seconds=settings.lease_seconds,
        log=log,
        handler=handle,
    )


# =============================================================================
# Ops
# =============================================================================

@op(
    config_schema=STAGE_OP_CONFIG,
    required_resource_keys={"mongodb", "minio"},
)
def detect_schema_op(context: OpExecutionContext) -> dict:
    """Fold one batch of rows into the import job's schema builder state."""
    return _detect_schema(
        mongodb=context.resources.mongodb,
        minio=context.resources.minio,
        import_job_id=context.op_config["import_job_id"],
        batch_number=context.op_config["batch_number"],
        settings=PipelineSettings(),
        log=context.log,
    )


@op(
    config_schema=STAGE_OP_CONFIG,
    required_resource_keys={"mongodb"},
)
def validate_schema_op(context: OpExecutionContext) -> dict:
    """Diff the detected schema against the dataset's current version."""
    return _validate_schema(
        mongodb=context.resources.mongodb,
        import_job_id=context.op_config["import_job_id"],
        settings=PipelineSettings(),
        log=context.log,
    )


@op(
    config_schema={
        "import_job_id": Field(str, description="Import job awaiting approval"),
        "approved_by": Field(str, is_required=False, description="Approving user"),
    },
    required_resource_keys={"mongodb"},
)
def approve_schema_op(context: OpExecutionContext) -> dict:
    """Approve the pending schema of an import job."""
    return _approve_schema(
        mongodb=context.resources.mongodb,
        import_job_id=context.op_config["import_job_id"],
        approved_by=context.op_config.get("approved_by"),
        settings=PipelineSettings(),
        log=context.log,
    )


@op(
    config_schema={
        "import_job_id": Field(str, description="Import job awaiting approval"),
        "reason": Field(str, default_value="Rejected by reviewer", is_required=False),
        "rejected_by": Field(str, is_required=False, description="Rejecting user"),
    },
    required_resource_keys={"mongodb"},
)
def reject_schema_op(context: OpExecutionContext) -> dict:
    """Reject the pending schema of an import job, failing the job."""
    return _reject_schema(
        mongodb=context.resources.mongodb,
        import_job_id=context.op_config["import_job_id"],
        reason=context.op_config["reason"],
        rejected_by=context.op_config.get("rejected_by"),
        log=context.log,
    )


@op(
    config_schema=STAGE_OP_CONFIG,
    required_resource_keys={"mongodb"},
)
def create_schema_version_op(context: OpExecutionContext) -> dict:
    """Persist the approved schema as a new immutable version."""
    return _create_approved_schema_version(
        mongodb=context.resources.mongodb,
        import_job_id=context.op_config["import_job_id"],
        settings=PipelineSettings(),
        log=context.log,
    )
