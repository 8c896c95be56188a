# =============================================================================
# Intake Ops - Dataset detection
# =============================================================================
# First stage for every accepted import file: list its sheets, map each
# sheet to a dataset and create one import job per sheet.
# =============================================================================

import math
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from dagster import Field, OpExecutionContext, op

from geoimport.models import (
    Dataset,
    ImportFile,
    ImportFileStatus,
    ImportJob,
    ProcessingStage,
    Progress,
    QuotaType,
    UsageType,
)
from geoimport.quota import enforce_quota
from geoimport.readers import CSV_SHEET_NAME, SheetInfo, list_sheets
from .common_ops import load_import_file, local_import_file, queue_stage


__all__ = ["detect_datasets_op"]

DEFAULT_DATASET_NAME = "Imported Data"


def _find_or_create_dataset(mongodb, catalog_id: Optional[str], name: str, log) -> Dataset:
    dataset = mongodb.find_dataset_by_name(catalog_id, name)
    if dataset is not None:
        log.info(f"Reusing dataset '{name}' ({dataset.dataset_id})")
        return dataset

    dataset = Dataset(dataset_id=uuid.uuid4().hex, name=name, catalog_id=catalog_id)
    mongodb.insert_dataset(dataset)
    log.info(f"Created dataset '{name}' ({dataset.dataset_id})")
    return dataset


def _resolve_dataset(mongodb, import_file: ImportFile, sheet: SheetInfo, sheet_count: int, log) -> Optional[Dataset]:
    """
    Dataset for one sheet, or None when the sheet should be skipped.

    Raises:
        RuntimeError: If a configured dataset does not exist
    """
    mapping = import_file.dataset_mapping

    if mapping and mapping.mode == "single" and mapping.single_dataset_id:
        dataset = mongodb.get_dataset(mapping.single_dataset_id)
        if dataset is None:
            raise RuntimeError(f"Configured dataset not found: {mapping.single_dataset_id}")
        return dataset

    if mapping and mapping.mode == "multiple":
        match = next(
            (
                m for m in mapping.sheet_mappings
                if m.sheet_identifier in (sheet.name, str(sheet.index))
            ),
            None,
        )
        if match is None:
            log.info(f"No mapping found for sheet '{sheet.name}', skipping")
            return None
        dataset = mongodb.get_dataset(match.dataset_id)
        if dataset is None:
            if match.skip_if_missing:
                log.info(f"Dataset {match.dataset_id} for sheet '{sheet.name}' missing, skipping")
                return None
            raise RuntimeError(f"Configured dataset not found for sheet {sheet.name}")
        return dataset

    if sheet_count == 1 or sheet.name == CSV_SHEET_NAME:
        name = Path(import_file.original_name).stem if import_file.original_name else DEFAULT_DATASET_NAME
    else:
        name = sheet.name
    return _find_or_create_dataset(mongodb, import_file.catalog_id, name, log)


def _detect_datasets(
    mongodb,
    minio,
    import_file_id: str,
    log,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Core logic for dataset detection.

    Args:
        mongodb: MongoDBResource instance
        minio: MinIOResource instance
        import_file_id: Import file to process
        log: Logger instance (context.log)

    Returns:
        Dict with import_file_id, sheets_detected and import_job_ids

    Raises:
        RuntimeError: If the file cannot be read, a quota is exceeded or a
            configured dataset is missing; the import file is marked failed
    """
    now = now or datetime.now(timezone.utc)
    import_file = load_import_file(mongodb, import_file_id)
    mongodb.update_import_file(import_file_id, {"status": ImportFileStatus.PARSING.value})

    try:
        user = mongodb.get_user(import_file.user_id)
        size_mb = math.ceil(import_file.file_size / (1024 * 1024))
        enforce_quota(user, mongodb.get_usage(import_file.user_id), QuotaType.FILE_SIZE_MB, size_mb, now)

        with local_import_file(minio, import_file, log) as local_path:
            sheets = list_sheets(local_path, import_file.mime_type)

        if not sheets:
            raise RuntimeError("No valid sheets found in file")
        log.info(
            f"Detected {len(sheets)} sheet(s) in import file {import_file_id}: "
            f"{[(s.name, s.row_count) for s in sheets]}"
        )

        job_ids = []
        for sheet in sheets:
            dataset = _resolve_dataset(mongodb, import_file, sheet, len(sheets), log)
            if dataset is None:
                continue

            enforce_quota(user, mongodb.get_usage(import_file.user_id), QuotaType.IMPORT_JOBS_PER_DAY, 1, now)
            job = ImportJob(
                import_job_id=uuid.uuid4().hex,
                import_file_id=import_file_id,
                dataset_id=dataset.dataset_id,
                sheet_index=sheet.index,
                user_id=import_file.user_id,
                stage=ProcessingStage.ANALYZE_DUPLICATES,
                progress=Progress(total=sheet.row_count),
            )
            mongodb.insert_import_job(job)
            mongodb.increment_usage(import_file.user_id, UsageType.IMPORT_JOBS_TODAY, 1, now)
            queue_stage(mongodb, job.import_job_id, ProcessingStage.ANALYZE_DUPLICATES, log)
            job_ids.append(job.import_job_id)
            log.info(
                f"Created import job {job.import_job_id} for sheet '{sheet.name}' "
                f"-> dataset {dataset.dataset_id}"
            )

        mongodb.update_import_file(
            import_file_id,
            {
                "status": ImportFileStatus.PROCESSING.value,
                "datasets_count": len(sheets),
                "jobs": job_ids,
            },
        )
        return {"import_file_id": import_file_id, "sheets_detected": len(sheets), "import_job_ids": job_ids}

    except Exception as e:
        log.error(f"Dataset detection failed for import file {import_file_id}: {e}")
        mongodb.update_import_file(
            import_file_id,
            {"status": ImportFileStatus.FAILED.value, "error_log": str(e)},
        )
        raise RuntimeError(f"Dataset detection failed for import file {import_file_id}: {e}") from e


@op(
    config_schema={"import_file_id": Field(str, description="Import file to process")},
    required_resource_keys={"mongodb", "minio"},
)
def detect_datasets_op(context: OpExecutionContext) -> dict:
    """
    Detect the sheets of an import file and create one import job per sheet.

    Returns:
        Dict with import_file_id, sheets_detected and import_job_ids
    """
    return _detect_datasets(
        mongodb=context.resources.mongodb,
        minio=context.resources.minio,
        import_file_id=context.op_config["import_file_id"],
        log=context.log,
    )
