# =============================================================================
# Duplicate Ops - analyze-duplicates stage
# =============================================================================
# Streams the whole sheet once to find internal and external duplicates
# before any schema or geocoding work is done.
# =============================================================================

from typing import Any, Dict

from dagster import OpExecutionContext, op

from geoimport.duplicates import DuplicateAnalyzer
from geoimport.models import Duplicates, DuplicateSummary, PipelineSettings, ProcessingStage
from geoimport.readers import iter_batches
from geoimport.transforms import apply_transforms
from .common_ops import (
    STAGE_OP_CONFIG,
    load_dataset,
    load_import_file,
    local_import_file,
    queue_stage,
    run_stage,
)


__all__ = ["analyze_duplicates_op"]


def _analyze_duplicates(
    mongodb,
    minio,
    import_job_id: str,
    settings: PipelineSettings,
    log,
) -> Dict[str, Any]:
    """
    Core logic for duplicate analysis.

    Args:
        mongodb: MongoDBResource instance
        minio: MinIOResource instance
        import_job_id: Import job to process
        settings: Pipeline tunables (batch size, lease)
        log: Logger instance (context.log)

    Returns:
        Duplicate summary dict, or a skip marker
    """

    def handle(job) -> Dict[str, Any]:
        dataset = load_dataset(mongodb, job.dataset_id)

        if not dataset.deduplication_config.enabled:
            log.info(f"Deduplication disabled for dataset {dataset.dataset_id}; skipping analysis")
            duplicates = Duplicates(
                strategy="disabled",
                summary=DuplicateSummary(total_rows=job.progress.total, unique_rows=job.progress.total),
            )
        else:
            import_file = load_import_file(mongodb, job.import_file_id)
            analyzer = DuplicateAnalyzer(
                dataset.dataset_id,
                dataset.id_strategy,
                lambda ids: mongodb.find_existing_event_ids(dataset.dataset_id, ids),
            )
            with local_import_file(minio, import_file, log) as local_path:
                for start_row, rows in iter_batches(
                    local_path, import_file.mime_type, job.sheet_index, settings.duplicate_analysis_batch_size
                ):
                    analyzer.add_rows([apply_transforms(r, dataset.import_transforms) for r in rows], start_row)
            duplicates = analyzer.result()

        summary = duplicates.summary
        mongodb.advance_import_job(
            job,
            ProcessingStage.DETECT_SCHEMA,
            {
                "duplicates": duplicates.model_dump(),
                "progress.total": summary.total_rows,
                "progress.duplicates_skipped": len(duplicates.row_numbers()),
            },
        )
        queue_stage(mongodb, job.import_job_id, ProcessingStage.DETECT_SCHEMA, log)
        log.info(
            f"Duplicate analysis for import job {job.import_job_id}: "
            f"{summary.unique_rows}/{summary.total_rows} unique rows"
        )
        return {"status": "analyzed", **summary.model_dump()}

    return run_stage(
        mongodb, import_job_id, ProcessingStage.ANALYZE_DUPLICATES,
        owner=f"analyze-duplicates:{import_job_id}",
        lease_seconds=settings.lease_seconds,
        log=log,
        handler=handle,
    )


@op(
    config_schema=STAGE_OP_CONFIG,
    required_resource_keys={"mongodb", "minio"},
)
def analyze_duplicates_op(context: OpExecutionContext) -> dict:
    """Find internal and external duplicate rows for one import job."""
    return _analyze_duplicates(
        mongodb=context.resources.mongodb,
        minio=context.resources.minio,
        import_job_id=context.op_config["import_job_id"],
        settings=PipelineSettings(),
        log=context.log,
    )
