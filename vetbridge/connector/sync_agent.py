"""Outbound Sync Agent - Push legacy records to the cloud ingest endpoint

Records are sent in chunks no larger than the configured batch size, which is
kept below the cloud store's atomic write limit. Every chunk carries an
Idempotency-Key derived from its content; the endpoint merges by externalId, so
resending a chunk (retry, or the next cycle) never duplicates anything.

Failure handling per chunk:
- Unauthorized      → raised, the whole cycle stops
- PayloadRejected   → chunk counted as rejected, later chunks still sent
- TransportFailure  → this and all later records deferred to the next cycle
- fewer applied than sent (write ceiling) → the rest deferred to the next cycle
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from vetbridge.config import ConnectorSettings
from vetbridge.connector.client import BridgeClient, json_object
from vetbridge.connector.errors import PayloadRejected, TransportFailure
from vetbridge.schemas.bridge import BridgeRecord

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of syncing one entity"""

    entity: str
    submitted: int = 0
    applied: int = 0
    deferred: int = 0
    rejected: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """True when every submitted record was written"""
        return self.deferred == 0 and self.rejected == 0


def idempotency_key(entity: str, payload: list[dict[str, Any]]) -> str:
    """Stable key for a chunk: same records → same key"""
    canonical = json.dumps({"entity": entity, "records": payload}, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class OutboundSyncAgent:
    """Sends mapped records to POST /api/bridge/{entity}"""

    def __init__(self, settings: ConnectorSettings, client: BridgeClient):
        self.batch_size = settings.BATCH_SIZE
        self.client = client

    async def _send_chunk(self, record_type: type[BridgeRecord], chunk: Sequence[BridgeRecord]) -> int:
        payload = [record.to_wire() for record in chunk]
        response = await self.client.request(
            "POST",
            record_type.entity,
            json={record_type.payload_field: payload},
            headers={"Idempotency-Key": idempotency_key(record_type.entity, payload)},
        )
        count = json_object(response).get("count", 0)
        if not isinstance(count, int) or isinstance(count, bool):
            raise TransportFailure(f"Bridge answered {record_type.entity} with an unusable count: {count!r}")
        return count

    async def sync(self, record_type: type[BridgeRecord], records: Sequence[BridgeRecord]) -> SyncReport:
        """Push records of one entity

        Args:
            record_type: Record class (decides the endpoint and payload field)
            records: Records to send, in order

        Returns:
            SyncReport with applied/deferred/rejected counts

        Raises:
            Unauthorized: API key rejected, nothing further should be sent this cycle
        """
        entity = record_type.entity
        report = SyncReport(entity=entity, submitted=len(records))

        for start in range(0, len(records), self.batch_size):
            chunk = records[start : start + self.batch_size]
            try:
                applied = await self._send_chunk(record_type, chunk)
            except PayloadRejected as e:
                logger.error(f"Chunk {start}-{start + len(chunk)} of {entity} rejected: {e}")
                report.rejected += len(chunk)
                report.errors.append(str(e))
                continue
            except TransportFailure as e:
                report.deferred += len(records) - start
                report.errors.append(str(e))
                logger.error(f"Giving up on {entity} for this cycle, {report.deferred} records deferred: {e}")
                break

            report.applied += applied
            if applied < len(chunk):
                report.deferred += len(records) - start - applied
                logger.warning(f"Bridge applied {applied} of {len(chunk)} {entity}; {report.deferred} deferred")
                break

        logger.info(
            f"Synced {entity}: {report.applied}/{report.submitted} applied, "
            f"{report.deferred} deferred, {report.rejected} rejected"
        )
        return report
