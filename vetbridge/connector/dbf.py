"""dBase Table Reader - Parse legacy fixed-width .dbf tables

Layout of a dBase III / FoxBase table:

    [32-byte header]       version, last update (YYMMDD), record count (uint32 LE),
                           header length (uint16 LE), record length (uint16 LE)
    [32-byte descriptors]  one per field: name (11 bytes, NUL padded), type tag,
                           4 reserved bytes, length, decimal count, 14 reserved bytes
    [0x0D]                 end of descriptors (FoxPro may add a backlink area after it)
    [records]              start at header length; each is one deletion flag byte
                           (' ' live, '*' deleted) followed by the fixed-width fields
    [0x1A]                 optional end-of-file marker

Tables are only ever read from a snapshot copy, never from the live data
directory.

Usage:
    table = read_table(shadow_dir / "Patient.dbf")
    for record in table:          # reopens the file on every iteration
        print(record["PATIENT_ID"], record.deleted)
"""

import logging
import os
import struct
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Sequence

from vetbridge.connector.errors import MalformedHeader, MalformedValue, TruncatedFile, UnsupportedFieldType

logger = logging.getLogger(__name__)

HEADER_SIZE = 32
DESCRIPTOR_SIZE = 32
DESCRIPTOR_TERMINATOR = 0x0D
EOF_MARKER = b"\x1a"
LIVE_FLAG = b" "
DELETED_FLAG = b"*"
DBASE_III = 0x03

# C character, N numeric, F float, D date, L logical, I 32-bit integer
SUPPORTED_TYPES = frozenset("CNFDLI")

DEFAULT_ENCODING = "latin-1"


@dataclass(frozen=True)
class FieldDescriptor:
    """One column of a dBase table"""

    name: str
    type: str
    length: int
    decimal_count: int = 0


@dataclass(frozen=True)
class TableHeader:
    """Parsed table header"""

    version: int
    last_update: date | None
    record_count: int
    header_length: int
    record_length: int
    fields: tuple[FieldDescriptor, ...]

    @property
    def data_length(self) -> int:
        """Bytes the header promises for the record area"""
        return self.record_count * self.record_length


@dataclass(frozen=True)
class LegacyRecord:
    """One decoded row: field name → typed value, plus the tombstone flag"""

    values: Mapping[str, Any] = field(default_factory=dict)
    deleted: bool = False

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)


def _parse_descriptor(raw: bytes) -> FieldDescriptor:
    try:
        name = raw[:11].split(b"\x00", 1)[0].decode("ascii").strip()
    except UnicodeDecodeError:
        raise MalformedHeader(f"Field name is not ASCII: {raw[:11]!r}")
    if not name:
        raise MalformedHeader("Field descriptor with empty name")

    type_tag = chr(raw[11]).upper()
    length = raw[16]
    decimal_count = raw[17]

    if type_tag not in SUPPORTED_TYPES:
        raise UnsupportedFieldType(f"Field {name} has unsupported type {type_tag!r}")
    if length == 0:
        raise MalformedHeader(f"Field {name} has zero length")
    if type_tag == "I" and length != 4:
        raise MalformedHeader(f"Integer field {name} must be 4 bytes, not {length}")
    return FieldDescriptor(name=name, type=type_tag, length=length, decimal_count=decimal_count)


def _parse_header(raw: bytes, file_size: int, path: Path) -> TableHeader:
    if len(raw) < HEADER_SIZE:
        raise MalformedHeader(f"{path}: file is {len(raw)} bytes, shorter than the {HEADER_SIZE}-byte header")

    version = raw[0]
    record_count, header_length, record_length = struct.unpack("<IHH", raw[4:12])
    try:
        last_update = date(1900 + raw[1], raw[2], raw[3])
    except ValueError:
        last_update = None

    if header_length < HEADER_SIZE + 1:
        raise MalformedHeader(f"{path}: header length {header_length} is too small")
    if file_size < header_length:
        raise TruncatedFile(f"{path}: header length is {header_length} bytes but file has {file_size} bytes")

    fields: list[FieldDescriptor] = []
    offset = HEADER_SIZE
    while True:
        if offset >= header_length:
            raise MalformedHeader(f"{path}: field descriptors are not terminated")
        if raw[offset] == DESCRIPTOR_TERMINATOR:
            break
        if offset + DESCRIPTOR_SIZE > header_length:
            raise MalformedHeader(f"{path}: field descriptor overruns the header")
        fields.append(_parse_descriptor(raw[offset : offset + DESCRIPTOR_SIZE]))
        offset += DESCRIPTOR_SIZE

    if not fields:
        raise MalformedHeader(f"{path}: table has no fields")
    expected_length = 1 + sum(f.length for f in fields)
    if record_length != expected_length:
        raise MalformedHeader(
            f"{path}: record length {record_length} does not match field lengths ({expected_length})"
        )

    return TableHeader(
        version=version,
        last_update=last_update,
        record_count=record_count,
        header_length=header_length,
        record_length=record_length,
        fields=tuple(fields),
    )


class DbfTable:
    """Lazy, restartable view over one .dbf file

    The header is read and validated on construction. Iterating opens the file
    again each time, so the same snapshot file always yields the same sequence.
    """

    def __init__(self, path: str | os.PathLike, encoding: str = DEFAULT_ENCODING):
        self.path = Path(path)
        self.encoding = encoding
        self.header = self._read_header()

    @property
    def fields(self) -> tuple[FieldDescriptor, ...]:
        return self.header.fields

    def __len__(self) -> int:
        return self.header.record_count

    def __repr__(self) -> str:
        return f"<DbfTable(path={self.path}, records={self.header.record_count}, fields={len(self.fields)})>"

    def _read_header(self) -> TableHeader:
        with open(self.path, "rb") as fh:
            file_size = os.fstat(fh.fileno()).st_size
            head = fh.read(HEADER_SIZE)
            if len(head) < HEADER_SIZE:
                raise MalformedHeader(f"{self.path}: file is {len(head)} bytes, shorter than the header")
            header_length = struct.unpack("<H", head[8:10])[0]
            raw = head + fh.read(max(header_length - HEADER_SIZE, 0))
        header = _parse_header(raw, file_size, self.path)
        self._check_size(header, file_size)
        return header

    def _check_size(self, header: TableHeader, file_size: int) -> None:
        needed = header.header_length + header.data_length
        if file_size < needed:
            raise TruncatedFile(
                f"{self.path}: header promises {header.record_count} records ({needed} bytes) "
                f"but file has {file_size} bytes"
            )

    def __iter__(self) -> Iterator[LegacyRecord]:
        header = self.header
        with open(self.path, "rb") as fh:
            self._check_size(header, os.fstat(fh.fileno()).st_size)
            fh.seek(header.header_length)
            for index in range(header.record_count):
                raw = fh.read(header.record_length)
                if len(raw) < header.record_length:
                    raise TruncatedFile(f"{self.path}: record {index} is incomplete ({len(raw)} bytes)")
                yield self._decode_record(raw, index)

    def _decode_record(self, raw: bytes, index: int) -> LegacyRecord:
        flag = raw[:1]
        if flag == DELETED_FLAG:
            deleted = True
        elif flag == LIVE_FLAG:
            deleted = False
        else:
            raise MalformedValue(f"{self.path}: record {index} has unknown deletion flag {flag!r}")

        values: dict[str, Any] = {}
        offset = 1
        for descriptor in self.header.fields:
            chunk = raw[offset : offset + descriptor.length]
            offset += descriptor.length
            try:
                values[descriptor.name] = self._decode_value(descriptor, chunk)
            except (ValueError, UnicodeDecodeError) as e:
                raise MalformedValue(f"{self.path}: record {index} field {descriptor.name}: {e}") from e
        return LegacyRecord(values=values, deleted=deleted)

    def _decode_value(self, descriptor: FieldDescriptor, chunk: bytes) -> Any:
        if descriptor.type == "C":
            return chunk.decode(self.encoding).strip(" \x00")

        if descriptor.type == "I":
            return struct.unpack("<i", chunk)[0]

        text = chunk.decode("ascii").strip(" \x00")

        if descriptor.type in ("N", "F"):
            if not text:
                return None
            if descriptor.decimal_count == 0 and "." not in text:
                return int(text)
            return float(text)

        if descriptor.type == "D":
            if not text or text == "00000000":
                return None
            return datetime.strptime(text, "%Y%m%d").date()

        # Logical
        flag = text.upper()
        if flag in ("T", "Y"):
            return True
        if flag in ("F", "N"):
            return False
        if flag in ("", "?"):
            return None
        raise ValueError(f"invalid logical value {text!r}")


def read_table(path: str | os.PathLike, encoding: str = DEFAULT_ENCODING) -> DbfTable:
    """Open a legacy table for reading

    Raises:
        MalformedHeader: Header or field descriptors are invalid
        TruncatedFile: File is shorter than the header promises
        UnsupportedFieldType: A field uses a type this reader cannot decode
    """
    return DbfTable(path, encoding=encoding)


def _encode_value(descriptor: FieldDescriptor, value: Any, encoding: str) -> bytes:
    length = descriptor.length
    if descriptor.type == "C":
        return ("" if value is None else str(value)).encode(encoding)[:length].ljust(length, b" ")
    if descriptor.type == "I":
        return struct.pack("<i", int(value or 0))
    if descriptor.type in ("N", "F"):
        if value is None:
            return b" " * length
        if descriptor.decimal_count:
            text = f"{float(value):.{descriptor.decimal_count}f}"
        else:
            text = str(int(value))
        if len(text) > length:
            raise ValueError(f"Value {value!r} does not fit field {descriptor.name} ({length} chars)")
        return text.rjust(length).encode("ascii")
    if descriptor.type == "D":
        if value is None:
            return b" " * length
        return value.strftime("%Y%m%d").encode("ascii").ljust(length, b" ")
    # Logical
    text = "?" if value is None else ("T" if value else "F")
    return text.encode("ascii").ljust(length, b" ")


def write_table(
    path: str | os.PathLike,
    fields: Sequence[FieldDescriptor],
    records: Iterable[LegacyRecord | Mapping[str, Any]],
    encoding: str = DEFAULT_ENCODING,
    last_update: date | None = None,
) -> Path:
    """Write a dBase III table (mock data and fixtures)

    Mappings are written as live records; LegacyRecord keeps its deleted flag.
    """
    path = Path(path)
    for descriptor in fields:
        if descriptor.type not in SUPPORTED_TYPES:
            raise UnsupportedFieldType(f"Field {descriptor.name} has unsupported type {descriptor.type!r}")
        if len(descriptor.name.encode("ascii")) > 10:
            raise ValueError(f"Field name {descriptor.name} is longer than 10 characters")

    rows = [r if isinstance(r, LegacyRecord) else LegacyRecord(values=r) for r in records]
    header_length = HEADER_SIZE + DESCRIPTOR_SIZE * len(fields) + 1
    record_length = 1 + sum(f.length for f in fields)
    stamp = last_update or date.today()

    with open(path, "wb") as fh:
        fh.write(
            struct.pack(
                "<BBBBIHH20x",
                DBASE_III,
                stamp.year - 1900,
                stamp.month,
                stamp.day,
                len(rows),
                header_length,
                record_length,
            )
        )
        for descriptor in fields:
            fh.write(
                struct.pack(
                    "<11sc4xBB14x",
                    descriptor.name.encode("ascii"),
                    descriptor.type.encode("ascii"),
                    descriptor.length,
                    descriptor.decimal_count,
                )
            )
        fh.write(bytes([DESCRIPTOR_TERMINATOR]))
        for row in rows:
            fh.write(DELETED_FLAG if row.deleted else LIVE_FLAG)
            for descriptor in fields:
                fh.write(_encode_value(descriptor, row.get(descriptor.name), encoding))
        fh.write(EOF_MARKER)

    logger.debug(f"Wrote {len(rows)} records to {path}")
    return path
