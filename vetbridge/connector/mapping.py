"""Legacy record mapping - dBase rows → bridge record DTOs

Each synced legacy table has a TableSpec naming its file, its primary key
column and the function turning a LegacyRecord into the wire DTO. Tables are
listed in sync order: clients before patients (owner names), patients before
calendar events (patient names).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from vetbridge.connector.dbf import LegacyRecord
from vetbridge.schemas.bridge import BridgeRecord, CalendarEventRecord, ClientRecord, PatientRecord

logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def map_client(record: LegacyRecord) -> ClientRecord:
    return ClientRecord(
        external_id=_text(record.get("CLIENT_ID")),
        first_name=_text(record.get("FIRST_NAME")),
        last_name=_text(record.get("LAST_NAME")),
        phone=_text(record.get("PHONE")),
        email=_text(record.get("EMAIL")),
        deleted=record.deleted,
    )


def map_patient(record: LegacyRecord) -> PatientRecord:
    return PatientRecord(
        external_id=_text(record.get("PATIENT_ID")),
        name=_text(record.get("NAME")),
        species=_text(record.get("SPECIES")),
        breed=_text(record.get("BREED")),
        birth_date=record.get("BIRTHDATE"),
        owner_id=_text(record.get("CLIENT_ID")) or None,
        deleted=record.deleted,
    )


def map_calendar_event(record: LegacyRecord) -> CalendarEventRecord:
    return CalendarEventRecord(
        external_id=_text(record.get("APPT_ID")),
        patient_id=_text(record.get("PATIENT_ID")) or None,
        start=record.get("START_TIME"),
        title=_text(record.get("NOTE")) or "Appointment",
        status=_text(record.get("STATUS")) or "Scheduled",
        deleted=record.deleted,
    )


@dataclass(frozen=True)
class TableSpec:
    """How one legacy table is synced"""

    file_name: str
    record_type: type[BridgeRecord]
    key_field: str
    mapper: Callable[[LegacyRecord], BridgeRecord]

    @property
    def entity(self) -> str:
        return self.record_type.entity


TABLES: tuple[TableSpec, ...] = (
    TableSpec("Client.dbf", ClientRecord, "CLIENT_ID", map_client),
    TableSpec("Patient.dbf", PatientRecord, "PATIENT_ID", map_patient),
    TableSpec("Schedule.dbf", CalendarEventRecord, "APPT_ID", map_calendar_event),
)


@dataclass
class MappedTable:
    """DTOs ready to send, plus how many rows could not be mapped"""

    records: list[BridgeRecord] = field(default_factory=list)
    skipped: int = 0


def map_records(table: TableSpec, rows: Iterable[LegacyRecord]) -> MappedTable:
    """Map a table's rows, one DTO per primary key

    Rows without a primary key, or that fail validation, are skipped and
    counted. When a key repeats, the later row wins, except that a tombstone
    never replaces a live row.
    """
    by_key: dict[str, BridgeRecord] = {}
    skipped = 0
    for index, row in enumerate(rows):
        if not _text(row.get(table.key_field)):
            logger.warning(f"{table.file_name} row {index} has no {table.key_field}, skipping")
            skipped += 1
            continue
        try:
            record = table.mapper(row)
        except ValidationError as e:
            logger.error(f"{table.file_name} row {index} cannot be mapped: {e}")
            skipped += 1
            continue

        current = by_key.get(record.external_id)
        if current is not None and record.deleted and not current.deleted:
            continue
        by_key[record.external_id] = record

    if skipped:
        logger.warning(f"{table.file_name}: {skipped} rows skipped")
    return MappedTable(records=list(by_key.values()), skipped=skipped)
