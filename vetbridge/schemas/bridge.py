"""Bridge Pydantic Schemas - Wire format shared by the connector and the ingest API

Record DTOs form a tagged union over the legacy entities. All of them share the
envelope {externalId, deleted}; the cloud side adds lastSyncedAt and source on
write. Unknown fields are kept (extra="allow") so they merge into the stored
document untouched.
"""

from datetime import date, datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _parse_iso(value: Any) -> Any:
    """Accept ISO dates or datetimes (with optional trailing Z)"""
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return datetime.fromisoformat(value)
    return value


class BridgeRecord(BaseModel):
    """Common envelope for every record sent through the bridge"""

    entity: ClassVar[str]
    collection: ClassVar[str]
    payload_field: ClassVar[str]

    external_id: str = Field(..., min_length=1, max_length=100, description="Legacy primary key")
    deleted: bool = Field(False, description="Legacy tombstone flag")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    @field_validator("external_id", mode="before")
    @classmethod
    def strip_external_id(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    def to_wire(self) -> dict[str, Any]:
        """Serialize using the camelCase wire names"""
        return self.model_dump(mode="json", by_alias=True)


class PatientRecord(BridgeRecord):
    """Patient (animal) from Patient.dbf"""

    entity: ClassVar[str] = "patients"
    collection: ClassVar[str] = "patients"
    payload_field: ClassVar[str] = "patients"

    name: str = ""
    species: str = ""
    breed: str = ""
    birth_date: date | None = None
    owner_id: str | None = None
    status: str | None = None

    @field_validator("birth_date", mode="before")
    @classmethod
    def parse_birth_date(cls, value: Any) -> Any:
        parsed = _parse_iso(value)
        if isinstance(parsed, datetime):
            return parsed.date()
        return parsed


class ClientRecord(BridgeRecord):
    """Client (owner) from Client.dbf"""

    entity: ClassVar[str] = "clients"
    collection: ClassVar[str] = "clients"
    payload_field: ClassVar[str] = "clients"

    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    email: str = ""


class CalendarEventRecord(BridgeRecord):
    """Appointment from Schedule.dbf"""

    entity: ClassVar[str] = "calendar"
    collection: ClassVar[str] = "calendar_events"
    payload_field: ClassVar[str] = "events"

    patient_id: str | None = None
    start: datetime | None = None
    title: str = "Appointment"
    status: str | None = None

    @field_validator("start", mode="before")
    @classmethod
    def parse_start(cls, value: Any) -> Any:
        parsed = _parse_iso(value)
        if isinstance(parsed, date) and not isinstance(parsed, datetime):
            return datetime(parsed.year, parsed.month, parsed.day)
        return parsed


class IngestResponse(BaseModel):
    """Result of one ingest call

    count is exactly the number of writes committed. remaining > 0 tells the
    caller the write ceiling cut the call short.
    """

    success: bool = True
    count: int = Field(..., ge=0, description="Records written in this call")
    remaining: int = Field(0, ge=0, description="Submitted records not written (ceiling reached)")


class QueueCommandResponse(BaseModel):
    """A mailbox command as returned to the poller"""

    id: str
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: str
    attempts: int = 0
    created_at: datetime | None = None
    fetched_at: datetime | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PendingExportsResponse(BaseModel):
    """Page of commands claimed by this fetch"""

    commands: list[QueueCommandResponse] = []


class CommandAckRequest(BaseModel):
    """Execution outcome reported by the poller"""

    status: Literal["done", "failed"]
    error: str | None = Field(None, max_length=2000)


class CommandAckResponse(BaseModel):
    """Command state after an acknowledgement"""

    id: str
    status: str
    completed_at: datetime | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ErrorResponse(BaseModel):
    """Error body returned by every bridge failure path"""

    error: str
