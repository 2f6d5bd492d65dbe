"""Ingest Service - Idempotent merge-upsert of legacy records into the cloud store

Each record is written to the document keyed by (collection, externalId).
Existing fields not present in the record are kept, fields present are
overwritten (last writer wins). Replaying the same batch therefore produces the
same stored documents; only lastSyncedAt moves.

Writes are bounded by a ceiling below the store's atomic batch limit. Records
past the ceiling are not written and are reported back as remaining, so the
caller knows to send them again.

Usage:
    response = await ingest_records(
        db, PatientRecord, records, ceiling=settings.BRIDGE_WRITE_CEILING, source="avimark"
    )
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Sequence

from sqlalchemy import insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from vetbridge.models import Collection, SyncedDocument
from vetbridge.schemas.bridge import (
    BridgeRecord,
    CalendarEventRecord,
    ClientRecord,
    IngestResponse,
    PatientRecord,
)

logger = logging.getLogger(__name__)


def _age_in_months(birth_date: date, today: date) -> int:
    months = (today.year - birth_date.year) * 12 + (today.month - birth_date.month)
    return max(months, 0)


async def _load_documents(db: AsyncSession, collection: str, external_ids: set[str]) -> dict[str, SyncedDocument]:
    """Load existing documents of one collection by key"""
    if not external_ids:
        return {}
    result = await db.execute(
        select(SyncedDocument).where(
            SyncedDocument.collection == collection,
            SyncedDocument.external_id.in_(external_ids),
        )
    )
    return {doc.external_id: doc for doc in result.scalars().all()}


async def _display_names(db: AsyncSession, collection: Collection, external_ids: set[str]) -> dict[str, str]:
    """Resolve display names of already-synced owners/patients for denormalized fields"""
    documents = await _load_documents(db, collection.value, {i for i in external_ids if i})
    names: dict[str, str] = {}
    for external_id, doc in documents.items():
        data = doc.data or {}
        name = data.get("fullName") if collection == Collection.CLIENTS else data.get("name")
        if name:
            names[external_id] = name
    return names


def _patient_fields(record: PatientRecord, owners: dict[str, str]) -> dict[str, Any]:
    fields: dict[str, Any] = {"id": record.external_id}
    if record.owner_id:
        fields["owner"] = owners.get(record.owner_id, f"Client #{record.owner_id}")
    return fields


def _age_fields(birth_date: Any, today: date) -> dict[str, int]:
    """age / age_months derived from the document's birthDate, whatever sync last set it"""
    try:
        born = date.fromisoformat(str(birth_date)[:10]) if birth_date else None
    except ValueError:
        born = None
    if born is None:
        return {"age": 0, "age_months": 0}
    months = _age_in_months(born, today)
    return {"age": months // 12, "age_months": months % 12}


def _client_fields(record: ClientRecord) -> dict[str, Any]:
    return {
        "id": record.external_id,
        "fullName": f"{record.first_name} {record.last_name}".strip(),
    }


def _calendar_fields(record: CalendarEventRecord, patients: dict[str, str]) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "id": record.external_id,
        "classification": "Consultation",
        "note": record.title or "Synced Appointment",
        "vector": "clinic",
    }
    if record.patient_id:
        fields["patientName"] = patients.get(record.patient_id, f"Patient #{record.patient_id}")
    if record.start:
        fields["date"] = record.start.strftime("%Y-%m-%d")
        fields["time"] = record.start.strftime("%H:%M")
    return fields


# Applied only when the stored document does not have the field yet
_CREATE_DEFAULTS: dict[str, dict[str, Any]] = {
    Collection.PATIENTS.value: {"status": "Active", "image": ""},
    Collection.CALENDAR_EVENTS.value: {"status": "scheduled"},
    Collection.CLIENTS.value: {},
}


def _with_derived(collection: str, data: dict[str, Any], now: datetime) -> dict[str, Any]:
    if collection == Collection.PATIENTS.value:
        data.update(_age_fields(data.get("birthDate"), now.date()))
    return data


_CONFLICT_AWARE_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


async def _insert_if_absent(db: AsyncSession, values: dict[str, Any]) -> bool:
    """INSERT a new document; False when a concurrent ingest created the key first"""
    dialect_insert = _CONFLICT_AWARE_INSERTS.get(db.get_bind().dialect.name)
    if dialect_insert is None:
        stmt = insert(SyncedDocument).values(**values)
    else:
        stmt = (
            dialect_insert(SyncedDocument)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["collection", "external_id"])
        )
    result = await db.execute(stmt)
    return result.rowcount == 1


def _merge_into(doc: SyncedDocument, fields: dict[str, Any], deleted: bool, source: str, now: datetime) -> None:
    """Overlay incoming fields on a stored document, keeping fields the record does not carry"""
    merged = dict(doc.data or {})
    for key, value in _CREATE_DEFAULTS.get(doc.collection, {}).items():
        merged.setdefault(key, value)
    merged.update(fields)
    # Reassign so the JSON column is flagged dirty
    doc.data = _with_derived(doc.collection, merged, now)
    doc.deleted = deleted
    doc.source = source
    doc.last_synced_at = now


async def ingest_records(
    db: AsyncSession,
    record_type: type[BridgeRecord],
    records: Sequence[BridgeRecord],
    *,
    ceiling: int,
    source: str,
    now: datetime | None = None,
) -> IngestResponse:
    """Merge-upsert records into their collection, at most `ceiling` writes

    Args:
        db: Database session
        record_type: Record class (decides the collection and derived fields)
        records: Validated records in submission order
        ceiling: Maximum writes committed by this call
        source: Producer tag stamped on every document
        now: Sync timestamp (defaults to current UTC time)

    Returns:
        IngestResponse with the exact number of writes committed and the number left over

    Raises:
        SQLAlchemyError: If the batch cannot be committed (nothing is written)
    """
    now = now or datetime.now(timezone.utc)
    collection = record_type.collection
    accepted = list(records[:ceiling])
    remaining = len(records) - len(accepted)

    existing = await _load_documents(db, collection, {r.external_id for r in accepted})

    owners: dict[str, str] = {}
    patients: dict[str, str] = {}
    if record_type is PatientRecord:
        owners = await _display_names(db, Collection.CLIENTS, {r.owner_id for r in accepted})
    elif record_type is CalendarEventRecord:
        patients = await _display_names(db, Collection.PATIENTS, {r.patient_id for r in accepted})

    synced_at = now.isoformat()
    for record in accepted:
        fields = {k: v for k, v in record.to_wire().items() if v is not None}
        if isinstance(record, PatientRecord):
            fields.update(_patient_fields(record, owners))
        elif isinstance(record, CalendarEventRecord):
            fields.update(_calendar_fields(record, patients))
        elif isinstance(record, ClientRecord):
            fields.update(_client_fields(record))
        fields["lastSyncedAt"] = synced_at
        fields["source"] = source

        doc = existing.get(record.external_id)
        if doc is None:
            created = await _insert_if_absent(
                db,
                {
                    "collection": collection,
                    "external_id": record.external_id,
                    "data": _with_derived(collection, {**_CREATE_DEFAULTS.get(collection, {}), **fields}, now),
                    "deleted": record.deleted,
                    "source": source,
                    "last_synced_at": now,
                },
            )
            if created:
                continue
            # Written by another ingest (or earlier in this batch) since the documents were loaded
            doc = await db.get(SyncedDocument, (collection, record.external_id), populate_existing=True)
            existing[record.external_id] = doc
        _merge_into(doc, fields, record.deleted, source, now)

    await db.commit()

    if remaining:
        logger.warning(
            f"Write ceiling reached for {collection}: wrote {len(accepted)}, {remaining} records left for next call"
        )
    else:
        logger.info(f"Upserted {len(accepted)} documents into {collection}")

    return IngestResponse(success=True, count=len(accepted), remaining=remaining)
