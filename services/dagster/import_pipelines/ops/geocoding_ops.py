# =============================================================================
# Geocoding Ops - geocode-batch and geocode-events stages
# =============================================================================
# geocode-batch resolves every unique address of a sheet before events are
# created. geocode-events is the post-creation pass for events that were
# persisted without a location; its failures never fail the import job.
# =============================================================================

from typing import Any, Dict

from dagster import OpExecutionContext, op

from geoimport.geocoding import extract_addresses, failure_report, geocode_unique_addresses
from geoimport.models import ImportJob, PipelineSettings, ProcessingStage
from geoimport.readers import iter_batches
from geoimport.transforms import apply_transforms
from .common_ops import (
    STAGE_OP_CONFIG,
    complete_import_job,
    load_dataset,
    load_import_file,
    local_import_file,
    queue_stage,
    run_stage,
)


__all__ = ["geocode_batch_op", "geocode_events_op"]


def _geocode_batch(
    mongodb,
    minio,
    geocoder,
    import_job_id: str,
    settings: PipelineSettings,
    log,
) -> Dict[str, Any]:
    """
    Core logic for pre-creation geocoding.

    Each unique trimmed address is looked up once. Individual failures are
    recorded in the summary; the stage fails only when every lookup failed.

    Returns:
        Geocoding summary dict, or a skip marker
    """

    def handle(job: ImportJob) -> Dict[str, Any]:
        address_path = job.detected_field_mappings.location_path
        if not address_path:
            summary = {"skipped": True, "reason": "No address field detected"}
            mongodb.advance_import_job(job, ProcessingStage.CREATE_EVENTS, {"geocoding_summary": summary})
            queue_stage(mongodb, job.import_job_id, ProcessingStage.CREATE_EVENTS, log)
            log.info(f"No address field for import job {job.import_job_id}; geocoding skipped")
            return {"status": "skipped", "reason": summary["reason"]}

        dataset = load_dataset(mongodb, job.dataset_id)
        import_file = load_import_file(mongodb, job.import_file_id)
        skip_rows = job.duplicates.row_numbers()

        def numbered_rows(path: str):
            for start_row, rows in iter_batches(
                path, import_file.mime_type, job.sheet_index, settings.event_creation_batch_size
            ):
                for offset, row in enumerate(rows):
                    yield start_row + offset, apply_transforms(row, dataset.import_transforms)

        with local_import_file(minio, import_file, log) as local_path:
            extraction = extract_addresses(numbered_rows(local_path), address_path, skip_rows)

        log.info(
            f"Extracted {len(extraction.addresses)} unique addresses from "
            f"{extraction.rows_with_address} rows for import job {job.import_job_id}"
        )

        cached = mongodb.get_cached_geocodes(extraction.addresses)
        outcome = geocode_unique_addresses(
            extraction.addresses,
            geocoder.geocode,
            cached=cached,
            max_workers=settings.geocoding_max_workers,
        )
        if outcome.all_failed:
            raise RuntimeError(failure_report(outcome.failures))

        fresh = {a: r for a, r in outcome.results.items() if a not in cached}
        if fresh:
            mongodb.cache_geocodes(fresh)

        summary = {
            **outcome.summary,
            "rows_with_address": extraction.rows_with_address,
            "rows_without_address": extraction.rows_without_address,
        }
        mongodb.advance_import_job(
            job,
            ProcessingStage.CREATE_EVENTS,
            {
                "geocoding_results": {a: r.model_dump() for a, r in outcome.results.items()},
                "geocoding_summary": summary,
            },
        )
        queue_stage(mongodb, job.import_job_id, ProcessingStage.CREATE_EVENTS, log)
        return {"status": "geocoded", **summary}

    return run_stage(
        mongodb, import_job_id, ProcessingStage.GEOCODE_BATCH,
        owner=f"geocode-batch:{import_job_id}",
        lease_seconds=settings.lease_seconds,
        log=log,
        handler=handle,
    )


def _geocode_events(
    mongodb,
    geocoder,
    import_job_id: str,
    settings: PipelineSettings,
    log,
) -> Dict[str, Any]:
    """
    Core logic for post-creation geocoding.

    Every pending event is marked attempted whatever the outcome, so a later
    run never retries the same address for the same event.
    """

    def handle(job: ImportJob) -> Dict[str, Any]:
        events = mongodb.find_events_needing_geocoding(job.import_job_id)
        addresses = [e.geocoding_info.original_address for e in events]

        cached = mongodb.get_cached_geocodes(addresses)
        outcome = geocode_unique_addresses(
            addresses, geocoder.geocode, cached=cached, max_workers=settings.geocoding_max_workers
        )
        fresh = {a: r for a, r in outcome.results.items() if a not in cached}
        if fresh:
            mongodb.cache_geocodes(fresh)

        geocoded = 0
        for event in events:
            result = outcome.results.get(event.geocoding_info.original_address)
            if result is not None:
                mongodb.set_event_geocoded(event.dataset_id, event.unique_id, result)
                geocoded += 1
            else:
                mongodb.mark_event_geocoding_attempted(event.dataset_id, event.unique_id)

        if geocoded:
            mongodb.increment_progress(job.import_job_id, {"geocoded_rows": geocoded})
        log.info(
            f"Post-creation geocoding for import job {job.import_job_id}: "
            f"{geocoded}/{len(events)} events located, {len(outcome.failures)} addresses failed"
        )
        outcome_summary = complete_import_job(mongodb, job, log)
        return {**outcome_summary, "events_geocoded": geocoded, "events_pending": len(events)}

    return run_stage(
        mongodb, import_job_id, ProcessingStage.GEOCODE_EVENTS,
        owner=f"geocode-events:{import_job_id}",
        lease_seconds=settings.lease_seconds,
        log=log,
        handler=handle,
    )


@op(
    config_schema=STAGE_OP_CONFIG,
    required_resource_keys={"mongodb", "minio", "geocoder"},
)
def geocode_batch_op(context: OpExecutionContext) -> dict:
    """Geocode the unique addresses of an import job's sheet."""
    return _geocode_batch(
        mongodb=context.resources.mongodb,
        minio=context.resources.minio,
        geocoder=context.resources.geocoder,
        import_job_id=context.op_config["import_job_id"],
        settings=PipelineSettings(),
        log=context.log,
    )


@op(
    config_schema=STAGE_OP_CONFIG,
    required_resource_keys={"mongodb", "geocoder"},
)
def geocode_events_op(context: OpExecutionContext) -> dict:
    """Geocode events that were created without a location, then complete the job."""
    return _geocode_events(
        mongodb=context.resources.mongodb,
        geocoder=context.resources.geocoder,
        import_job_id=context.op_config["import_job_id"],
        settings=PipelineSettings(),
        log=context.log,
    )
