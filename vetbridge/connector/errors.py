"""Connector exception hierarchy

ConnectorError
├── SnapshotError            snapshot of the live data directory failed
│   ├── SourceNotFound
│   ├── SnapshotFacilityUnavailable
│   ├── SnapshotFailed       helper exited non-zero, or staging could not be written/swapped
│   ├── SnapshotTimeout
│   └── PartialCopy          some files could not be copied consistently
├── TableFormatError         legacy table cannot be parsed (fatal for that table)
│   ├── MalformedHeader
│   ├── TruncatedFile
│   ├── UnsupportedFieldType
│   └── MalformedValue
└── BridgeClientError        talking to the cloud bridge failed
    ├── Unauthorized         bad/missing API key, aborts the whole cycle
    ├── PayloadRejected      400/422 for one chunk
    └── TransportFailure     network/5xx after retries
"""


class ConnectorError(Exception):
    """Base class for connector failures"""


class SnapshotError(ConnectorError):
    """Snapshot of the legacy data directory failed; nothing in the destination is usable"""


class SourceNotFound(SnapshotError):
    pass


class SnapshotFacilityUnavailable(SnapshotError):
    pass


class SnapshotFailed(SnapshotError):
    """Snapshot helper exited non-zero, or the staging directory could not be prepared or promoted"""

    def __init__(self, message: str, returncode: int | None = None, stdout: str = "", stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def __str__(self) -> str:
        detail = (self.stderr or self.stdout).strip()
        base = super().__str__()
        return f"{base}: {detail}" if detail else base


class SnapshotTimeout(SnapshotError):
    pass


class PartialCopy(SnapshotError):
    """Some files could not be copied"""

    def __init__(self, message: str, failed_files: list[str]):
        super().__init__(message)
        self.failed_files = failed_files


class TableFormatError(ConnectorError):
    """Legacy table file is not a readable dBase table"""


class MalformedHeader(TableFormatError):
    pass


class TruncatedFile(TableFormatError):
    pass


class UnsupportedFieldType(TableFormatError):
    pass


class MalformedValue(TableFormatError):
    pass


class BridgeClientError(ConnectorError):
    """Cloud bridge request failed"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class Unauthorized(BridgeClientError):
    pass


class PayloadRejected(BridgeClientError):
    pass


class TransportFailure(BridgeClientError):
    pass
