"""Bulk migration of source-system records into ACTO entities.

One existence query covers the whole input, then the records that are not
there yet are created in bounded waves. How a source record maps onto an
ACTO record is up to the caller.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from acto_mcp.data.access import DataAccess
from acto_mcp.rpc.client import extract_id

logger = structlog.get_logger(__name__)

EntityMapper = Callable[[dict[str, Any]], dict[str, Any]]
ProgressCallback = Callable[[int, int], None]


@dataclass
class MigrationResult:
    """Summary of one entity migration."""

    entity: str
    migrated: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    id_map: dict[str, Any] = field(default_factory=dict)
    details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "success": self.success,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "errors": self.errors,
            "id_map": self.id_map,
            "details": self.details,
        }


async def migrate_entities(
    access: DataAccess,
    source_entities: Sequence[dict[str, Any]],
    entity: str,
    map_entity: EntityMapper,
    duplicate_field: str = "Name",
    source_id_field: str = "Id",
    id_field: str = "Id",
    concurrency: int | None = None,
    skip: Callable[[dict[str, Any]], bool] | None = None,
    on_progress: ProgressCallback | None = None,
    auth_token: str | None = None,
) -> MigrationResult:
    """Migrate `source_entities` into `entity`, skipping ones that already exist.

    Records are matched on `duplicate_field` of the mapped record. Source
    records sharing a duplicate key are created once and all map to the same
    target id.
    """
    result = MigrationResult(entity=entity)
    total = len(source_entities)
    done = 0

    def progress() -> None:
        nonlocal done
        done += 1
        if on_progress:
            on_progress(done, total)

    # Map everything up front so one query can check for existing records
    pending: dict[str, list[str]] = {}
    records: dict[str, dict[str, Any]] = {}
    for source in source_entities:
        source_id = str(source.get(source_id_field))

        if skip and skip(source):
            result.skipped += 1
            result.details.append(
                {"source_id": source_id, "status": "skipped", "reason": "Excluded"}
            )
            progress()
            continue

        try:
            mapped = map_entity(source)
        except (KeyError, TypeError, ValueError) as e:
            result.errors.append({"source_id": source_id, "error": f"Mapping failed: {e}"})
            progress()
            continue

        key = mapped.get(duplicate_field)
        if key is None or key == "":
            result.errors.append(
                {"source_id": source_id, "error": f"Missing {duplicate_field}"}
            )
            progress()
            continue

        key = str(key)
        pending.setdefault(key, []).append(source_id)
        records.setdefault(key, mapped)

    if not pending:
        return result

    # Original values keep their type in the filter; string keys are only for lookup
    existing = await access.batch_check_existing(
        entity,
        duplicate_field,
        [mapped[duplicate_field] for mapped in records.values()],
        id_field=id_field,
        auth_token=auth_token,
    )

    to_create: list[str] = []
    for key, source_ids in pending.items():
        target_id = existing.get(key)
        if target_id is None:
            to_create.append(key)
            continue
        for source_id in source_ids:
            result.id_map[source_id] = target_id
            result.skipped += 1
            result.details.append({
                "source_id": source_id,
                "target_id": target_id,
                "status": "skipped",
                "reason": "Already exists",
            })
            progress()

    outcomes = await access.create_batch(
        entity,
        [records[key] for key in to_create],
        concurrency=concurrency,
        auth_token=auth_token,
    )

    for key, outcome in zip(to_create, outcomes):
        first, *duplicates = pending[key]
        if not outcome.ok:
            for source_id in pending[key]:
                result.errors.append({"source_id": source_id, "error": str(outcome.error)})
                progress()
            continue

        target_id = extract_id(outcome.value, id_field)
        if target_id is None:
            logger.warning("created_without_id", entity=entity, source_id=first)
        result.id_map[first] = target_id
        result.migrated += 1
        result.details.append({"source_id": first, "target_id": target_id, "status": "created"})
        progress()

        for source_id in duplicates:
            result.id_map[source_id] = target_id
            result.skipped += 1
            result.details.append({
                "source_id": source_id,
                "target_id": target_id,
                "status": "skipped",
                "reason": "Duplicate in source",
            })
            progress()

    logger.info(
        "entities_migrated",
        entity=entity,
        migrated=result.migrated,
        skipped=result.skipped,
        errors=len(result.errors),
    )
    return result
