"""MongoDB Resource - Document store for import jobs, files, events and schedules."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from functools import cached_property
from typing import Any, ClassVar, Dict, Iterable, Optional

from dagster import ConfigurableResource
from pydantic import Field
from pymongo import MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import OperationFailure

from geoimport.models import (
    DAILY_QUOTAS,
    Dataset,
    Event,
    GeocodingResult,
    ImportFile,
    ImportFileStatus,
    ImportJob,
    JobError,
    ProcessingStage,
    ScheduledImport,
    ScheduleStatus,
    SchemaVersion,
    UsageType,
    User,
    UserUsage,
)
from geoimport.quota import is_stale_daily_usage
from geoimport.stages import validate_transition

__all__ = ["MongoDBResource"]


class MongoDBResource(ConfigurableResource):
    """
    Dagster resource for the import pipeline's document store.

    All cross-batch pipeline state lives here, so every stage execution
    loads what it needs, does one unit of work and writes back. Documents
    are keyed by their own string ids (``import_job_id``, ``dataset_id``...)
    rather than by ObjectId.
    """

    connection_string: str = Field(..., description="MongoDB connection URI")
    database: str = Field("geo_events", description="MongoDB database name")

    IMPORT_JOBS: ClassVar[str] = "import-jobs"
    IMPORT_FILES: ClassVar[str] = "import-files"
    EVENTS: ClassVar[str] = "events"
    DATASETS: ClassVar[str] = "datasets"
    DATASET_SCHEMAS: ClassVar[str] = "dataset-schemas"
    SCHEDULED_IMPORTS: ClassVar[str] = "scheduled-imports"
    USERS: ClassVar[str] = "users"
    USER_USAGE: ClassVar[str] = "user-usage"
    GEOCODING_CACHE: ClassVar[str] = "geocoding-cache"
    PIPELINE_TASKS: ClassVar[str] = "pipeline-tasks"

    @cached_property
    def _client(self) -> MongoClient:
        return MongoClient(self.connection_string)

    def _get_db(self) -> Database:
        return self._client[self.database]

    def _get_collection(self, name: str) -> Collection:
        return self._get_db()[name]

    @staticmethod
    def _strip_object_id(doc: Dict) -> Dict:
        stripped = dict(doc)
        stripped.pop("_id", None)
        return stripped

    # ------------------------------------------------------------------
    # Import job operations
    # ------------------------------------------------------------------

    def insert_import_job(self, job: ImportJob) -> str:
        """
        Persist a new import job.

        Note: Uses model_dump() WITHOUT mode="json" so datetimes are stored
        as BSON dates.
        """
        self._get_collection(self.IMPORT_JOBS).insert_one(job.model_dump())
        return job.import_job_id

    def get_import_job(self, import_job_id: str) -> ImportJob | None:
        document = self._get_collection(self.IMPORT_JOBS).find_one({"import_job_id": import_job_id})
        if not document:
            return None
        return ImportJob(**self._strip_object_id(document))

    def update_import_job(self, import_job_id: str, fields: Dict[str, Any]) -> None:
        update_doc = dict(fields)
        update_doc["updated_at"] = datetime.now(timezone.utc)
        self._get_collection(self.IMPORT_JOBS).update_one(
            {"import_job_id": import_job_id}, {"$set": update_doc}
        )

    def advance_import_job(
        self,
        job: ImportJob,
        to_stage: ProcessingStage,
        fields: Dict[str, Any] | None = None,
    ) -> None:
        """
        Move a job to ``to_stage``, recording its current stage as the last
        successful one.

        Raises:
            InvalidStageTransitionError: If the transition is not allowed
        """
        validate_transition(job.stage, to_stage)
        update_doc = dict(fields or {})
        update_doc["stage"] = to_stage.value
        if to_stage != job.stage and to_stage != ProcessingStage.FAILED:
            update_doc["last_successful_stage"] = job.stage.value
        if to_stage == ProcessingStage.COMPLETED:
            update_doc["completed_at"] = datetime.now(timezone.utc)
        self.update_import_job(job.import_job_id, update_doc)
        job.stage = to_stage

    def fail_import_job(
        self,
        import_job_id: str,
        error: str,
        stage: Optional[str] = None,
        classification: Optional[str] = None,
    ) -> None:
        """Mark a job failed and append a stage-level error entry."""
        entry = JobError(row=None, error=error, stage=stage)
        self._get_collection(self.IMPORT_JOBS).update_one(
            {"import_job_id": import_job_id},
            {
                "$set": {
                    "stage": ProcessingStage.FAILED.value,
                    "error_classification": classification,
                    "updated_at": datetime.now(timezone.utc),
                },
                "$push": {"errors": entry.model_dump()},
            },
        )

    def increment_progress(self, import_job_id: str, counters: Dict[str, int]) -> None:
        increments = {f"progress.{name}": amount for name, amount in counters.items() if amount}
        if not increments:
            return
        self._get_collection(self.IMPORT_JOBS).update_one(
            {"import_job_id": import_job_id},
            {"$inc": increments, "$set": {"updated_at": datetime.now(timezone.utc)}},
        )

    def commit_event_batch(
        self,
        import_job_id: str,
        batch_number: int,
        counters: Dict[str, int],
        errors: list[JobError],
    ) -> bool:
        """
        Record one event batch in a single write: counters, row errors and
        the batch cursor move together.

        Only matches while ``progress.event_batches`` still equals
        ``batch_number``, so a batch is counted at most once. Returns False
        when the batch had already been committed.
        """
        update: Dict[str, Any] = {
            "$set": {
                "progress.event_batches": batch_number + 1,
                "updated_at": datetime.now(timezone.utc),
            },
        }
        increments = {f"progress.{name}": amount for name, amount in counters.items() if amount}
        if increments:
            update["$inc"] = increments
        if errors:
            update["$push"] = {"errors": {"$each": [e.model_dump() for e in errors]}}
        result = self._get_collection(self.IMPORT_JOBS).update_one(
            {"import_job_id": import_job_id, "progress.event_batches": batch_number}, update
        )
        return result.modified_count == 1

    def find_import_jobs_for_file(self, import_file_id: str) -> list[ImportJob]:
        cursor = self._get_collection(self.IMPORT_JOBS).find({"import_file_id": import_file_id})
        return [ImportJob(**self._strip_object_id(doc)) for doc in cursor]

    def find_failed_import_jobs(self, max_retries: int, limit: int = 100) -> list[ImportJob]:
        """Failed, possibly recoverable jobs that have not been scheduled for a retry yet."""
        cursor = self._get_collection(self.IMPORT_JOBS).find(
            {
                "stage": ProcessingStage.FAILED.value,
                "next_retry_at": None,
                "retry_attempts": {"$lt": max_retries},
                "error_classification": {"$nin": ["permanent", "user-action"]},
            }
        ).limit(limit)
        return [ImportJob(**self._strip_object_id(doc)) for doc in cursor]

    def find_retry_due_import_jobs(self, now: datetime, limit: int = 10) -> list[ImportJob]:
        cursor = (
            self._get_collection(self.IMPORT_JOBS)
            .find({"stage": ProcessingStage.FAILED.value, "next_retry_at": {"$ne": None, "$lte": now}})
            .sort("next_retry_at", 1)
            .limit(limit)
        )
        return [ImportJob(**self._strip_object_id(doc)) for doc in cursor]

    # ------------------------------------------------------------------
    # Lease operations
    # ------------------------------------------------------------------

    def acquire_lease(
        self,
        import_job_id: str,
        owner: str,
        seconds: int,
        now: datetime | None = None,
    ) -> str | None:
        """
        Atomically take the advisory lease on an import job.

        Returns the lease token, or None when another execution holds an
        unexpired lease (or the job does not exist).
        """
        now = now or datetime.now(timezone.utc)
        token = uuid.uuid4().hex
        document = self._get_collection(self.IMPORT_JOBS).find_one_and_update(
            {
                "import_job_id": import_job_id,
                "$or": [{"lease": None}, {"lease.expires_at": {"$lte": now}}],
            },
            {
                "$set": {
                    "lease": {
                        "token": token,
                        "owner": owner,
                        "expires_at": now + timedelta(seconds=seconds),
                    }
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        return token if document else None

    def release_lease(self, import_job_id: str, token: str) -> None:
        self._get_collection(self.IMPORT_JOBS).update_one(
            {"import_job_id": import_job_id, "lease.token": token},
            {"$set": {"lease": None}},
        )

    def clear_expired_leases(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        result = self._get_collection(self.IMPORT_JOBS).update_many(
            {"lease.expires_at": {"$lte": now}},
            {"$set": {"lease": None}},
        )
        return result.modified_count

    # ------------------------------------------------------------------
    # Import file operations
    # ------------------------------------------------------------------

    def insert_import_file(self, import_file: ImportFile) -> str:
        self._get_collection(self.IMPORT_FILES).insert_one(import_file.model_dump())
        return import_file.import_file_id

    def get_import_file(self, import_file_id: str) -> ImportFile | None:
        document = self._get_collection(self.IMPORT_FILES).find_one({"import_file_id": import_file_id})
        if not document:
            return None
        return ImportFile(**self._strip_object_id(document))

    def update_import_file(self, import_file_id: str, fields: Dict[str, Any]) -> None:
        self._get_collection(self.IMPORT_FILES).update_one(
            {"import_file_id": import_file_id}, {"$set": dict(fields)}
        )

    def find_completed_file_by_hash(self, catalog_id: str, content_hash: str) -> ImportFile | None:
        """Most recent completed import file in a catalog with the given content hash."""
        document = self._get_collection(self.IMPORT_FILES).find_one(
            {
                "catalog_id": catalog_id,
                "url_fetch.content_hash": content_hash,
                "status": ImportFileStatus.COMPLETED.value,
            },
            sort=[("created_at", -1)],
        )
        if not document:
            return None
        return ImportFile(**self._strip_object_id(document))

    # ------------------------------------------------------------------
    # Dataset & schema version operations
    # ------------------------------------------------------------------

    def insert_dataset(self, dataset: Dataset) -> str:
        self._get_collection(self.DATASETS).insert_one(dataset.model_dump())
        return dataset.dataset_id

    def get_dataset(self, dataset_id: str) -> Dataset | None:
        document = self._get_collection(self.DATASETS).find_one({"dataset_id": dataset_id})
        if not document:
            return None
        return Dataset(**self._strip_object_id(document))

    def find_dataset_by_name(self, catalog_id: Optional[str], name: str) -> Dataset | None:
        document = self._get_collection(self.DATASETS).find_one({"catalog_id": catalog_id, "name": name})
        if not document:
            return None
        return Dataset(**self._strip_object_id(document))

    def get_latest_schema_version(self, dataset_id: str) -> SchemaVersion | None:
        document = self._get_collection(self.DATASET_SCHEMAS).find_one(
            {"dataset_id": dataset_id},
            sort=[("version_number", -1)],
        )
        if not document:
            return None
        return SchemaVersion(**self._strip_object_id(document))

    def get_next_schema_version_number(self, dataset_id: str) -> int:
        latest = self.get_latest_schema_version(dataset_id)
        if not latest:
            return 1
        return latest.version_number + 1

    def insert_schema_version(self, version: SchemaVersion) -> int:
        """Schema versions are immutable; only ``import_sources`` grows afterwards."""
        self._get_collection(self.DATASET_SCHEMAS).insert_one(version.model_dump())
        return version.version_number

    def link_import_to_schema_version(self, dataset_id: str, version_number: int, import_job_id: str) -> None:
        self._get_collection(self.DATASET_SCHEMAS).update_one(
            {"dataset_id": dataset_id, "version_number": version_number},
            {"$addToSet": {"import_sources": import_job_id}},
        )
        self.update_import_job(import_job_id, {"dataset_schema_version": version_number})

    # ------------------------------------------------------------------
    # Event operations
    # ------------------------------------------------------------------

    def find_existing_event_ids(self, dataset_id: str, unique_ids: list[str]) -> Dict[str, str]:
        """Map of unique_id -> stored event id for ids already present in the dataset."""
        if not unique_ids:
            return {}
        cursor = self._get_collection(self.EVENTS).find(
            {"dataset_id": dataset_id, "unique_id": {"$in": list(unique_ids)}},
            projection={"_id": 1, "unique_id": 1},
        )
        return {doc["unique_id"]: str(doc["_id"]) for doc in cursor}

    def upsert_events(self, events: Iterable[Event]) -> tuple[int, list[tuple[Event, str]]]:
        """
        Insert events keyed by (dataset_id, unique_id).

        Existing events are left untouched, so re-running a batch after a
        crash does not duplicate or overwrite them. A write rejected by the
        server only fails its own event; connection errors propagate.

        Returns:
            (events stored for their import job, [(event, error message), ...])
            An event already written by an earlier run of the same import job
            counts as stored.
        """
        collection = self._get_collection(self.EVENTS)
        stored = 0
        failed: list[tuple[Event, str]] = []
        for event in events:
            try:
                existing = collection.find_one_and_update(
                    {"dataset_id": event.dataset_id, "unique_id": event.unique_id},
                    {"$setOnInsert": event.model_dump()},
                    projection={"import_job_id": 1},
                    upsert=True,
                    return_document=ReturnDocument.BEFORE,
                )
            except OperationFailure as e:
                failed.append((event, str(e)))
                continue
            if existing is None or existing.get("import_job_id") == event.import_job_id:
                stored += 1
        return stored, failed

    def find_events_needing_geocoding(self, import_job_id: str) -> list[Event]:
        cursor = self._get_collection(self.EVENTS).find(
            {
                "import_job_id": import_job_id,
                "location": None,
                "geocoding_info.original_address": {"$ne": None},
                "geocoding_info.attempted": {"$ne": True},
            }
        )
        return [Event(**self._strip_object_id(doc)) for doc in cursor]

    def count_events_needing_geocoding(self, import_job_id: str) -> int:
        return self._get_collection(self.EVENTS).count_documents(
            {
                "import_job_id": import_job_id,
                "location": None,
                "geocoding_info.original_address": {"$ne": None},
                "geocoding_info.attempted": {"$ne": True},
            }
        )

    def set_event_geocoded(self, dataset_id: str, unique_id: str, result: GeocodingResult) -> None:
        self._get_collection(self.EVENTS).update_one(
            {"dataset_id": dataset_id, "unique_id": unique_id},
            {
                "$set": {
                    "location": {"latitude": result.latitude, "longitude": result.longitude},
                    "coordinate_source": {"type": "geocoded", "confidence": result.confidence},
                    "geocoding_info.normalized_address": result.normalized_address,
                    "geocoding_info.provider": result.provider,
                    "geocoding_info.confidence": result.confidence,
                    "geocoding_info.attempted": True,
                }
            },
        )

    def mark_event_geocoding_attempted(self, dataset_id: str, unique_id: str) -> None:
        self._get_collection(self.EVENTS).update_one(
            {"dataset_id": dataset_id, "unique_id": unique_id},
            {"$set": {"geocoding_info.attempted": True}},
        )

    # ------------------------------------------------------------------
    # Geocoding cache operations
    # ------------------------------------------------------------------

    def get_cached_geocodes(self, addresses: list[str]) -> Dict[str, GeocodingResult]:
        if not addresses:
            return {}
        cursor = self._get_collection(self.GEOCODING_CACHE).find({"address": {"$in": list(addresses)}})
        return {doc["address"]: GeocodingResult(**doc["result"]) for doc in cursor}

    def cache_geocodes(self, results: Dict[str, GeocodingResult]) -> None:
        collection = self._get_collection(self.GEOCODING_CACHE)
        now = datetime.now(timezone.utc)
        for address, result in results.items():
            collection.update_one(
                {"address": address},
                {"$set": {"address": address, "result": result.model_dump(), "cached_at": now}},
                upsert=True,
            )

    # ------------------------------------------------------------------
    # Scheduled import operations
    # ------------------------------------------------------------------

    def insert_scheduled_import(self, schedule: ScheduledImport) -> str:
        self._get_collection(self.SCHEDULED_IMPORTS).insert_one(schedule.model_dump())
        return schedule.scheduled_import_id

    def get_scheduled_import(self, scheduled_import_id: str) -> ScheduledImport | None:
        document = self._get_collection(self.SCHEDULED_IMPORTS).find_one(
            {"scheduled_import_id": scheduled_import_id}
        )
        if not document:
            return None
        return ScheduledImport(**self._strip_object_id(document))

    def find_enabled_scheduled_imports(self, limit: int = 1000) -> list[ScheduledImport]:
        cursor = self._get_collection(self.SCHEDULED_IMPORTS).find({"enabled": True}).limit(limit)
        return [ScheduledImport(**self._strip_object_id(doc)) for doc in cursor]

    def find_stuck_scheduled_imports(self, cutoff: datetime) -> list[ScheduledImport]:
        cursor = self._get_collection(self.SCHEDULED_IMPORTS).find(
            {"last_status": ScheduleStatus.RUNNING.value, "last_run": {"$lt": cutoff}}
        )
        return [ScheduledImport(**self._strip_object_id(doc)) for doc in cursor]

    def update_scheduled_import(self, scheduled_import_id: str, fields: Dict[str, Any]) -> None:
        self._get_collection(self.SCHEDULED_IMPORTS).update_one(
            {"scheduled_import_id": scheduled_import_id}, {"$set": dict(fields)}
        )

    # ------------------------------------------------------------------
    # User & usage operations
    # ------------------------------------------------------------------

    def get_user(self, user_id: Optional[str]) -> User | None:
        if not user_id:
            return None
        document = self._get_collection(self.USERS).find_one({"user_id": user_id})
        if not document:
            return None
        return User(**self._strip_object_id(document))

    def get_usage(self, user_id: Optional[str]) -> UserUsage | None:
        if not user_id:
            return None
        document = self._get_collection(self.USER_USAGE).find_one({"user_id": user_id})
        if not document:
            return None
        return UserUsage(**self._strip_object_id(document))

    def increment_usage(
        self,
        user_id: Optional[str],
        usage_type: UsageType,
        amount: int = 1,
        now: datetime | None = None,
    ) -> None:
        """
        Increment a usage counter, first zeroing daily counters left over
        from a previous UTC day.
        """
        if not user_id:
            return
        now = now or datetime.now(timezone.utc)
        collection = self._get_collection(self.USER_USAGE)

        usage = self.get_usage(user_id)
        if is_stale_daily_usage(usage, now):
            reset = {u.value: 0 for u in DAILY_QUOTAS.values()}
            reset["last_reset_date"] = now
            collection.update_one({"user_id": user_id}, {"$set": reset}, upsert=True)

        collection.update_one(
            {"user_id": user_id},
            {"$inc": {usage_type.value: amount}, "$set": {"updated_at": now}},
            upsert=True,
        )

    # ------------------------------------------------------------------
    # Task queue operations
    # ------------------------------------------------------------------

    def enqueue_task(self, task: str, task_input: Dict[str, Any]) -> str:
        """Fire-and-forget enqueue; ``task_queue_sensor`` turns tasks into runs."""
        task_id = uuid.uuid4().hex
        self._get_collection(self.PIPELINE_TASKS).insert_one(
            {
                "task_id": task_id,
                "task": task,
                "input": dict(task_input),
                "status": "pending",
                "created_at": datetime.now(timezone.utc),
                "dispatched_at": None,
            }
        )
        return task_id

    def claim_pending_tasks(self, limit: int = 50) -> list[Dict[str, Any]]:
        """Oldest pending tasks, each atomically marked dispatched."""
        collection = self._get_collection(self.PIPELINE_TASKS)
        claimed = []
        for _ in range(limit):
            document = collection.find_one_and_update(
                {"status": "pending"},
                {"$set": {"status": "dispatched", "dispatched_at": datetime.now(timezone.utc)}},
                sort=[("created_at", 1)],
                return_document=ReturnDocument.AFTER,
            )
            if not document:
                break
            claimed.append(self._strip_object_id(document))
        return claimed
