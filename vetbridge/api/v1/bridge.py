"""Bridge Endpoints - Legacy practice-management connector API

Called by the on-premise connector, never by end users. Every endpoint uses
API key authentication (x-api-key header) against BRIDGE_API_KEY.

- POST /api/bridge/patients, /clients, /calendar: merge-upsert legacy records
- GET  /api/bridge/pending-exports: claim queued cloud → legacy commands
- POST /api/bridge/commands/{command_id}/ack: report command outcome

Errors are returned as {"error": "..."} (see exception handlers in main.py).
"""

import logging
import secrets
from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vetbridge.config import Settings, get_settings
from vetbridge.database import get_db
from vetbridge.models import CommandStatus
from vetbridge.schemas.bridge import (
    BridgeRecord,
    CalendarEventRecord,
    ClientRecord,
    CommandAckRequest,
    CommandAckResponse,
    ErrorResponse,
    IngestResponse,
    PatientRecord,
    PendingExportsResponse,
    QueueCommandResponse,
)
from vetbridge.services.ingest_service import ingest_records
from vetbridge.services.mailbox_service import (
    CommandNotFoundError,
    CommandStateError,
    acknowledge_command,
    claim_pending_commands,
    requeue_expired_claims,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bridge", tags=["bridge"])

ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}


async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    x_api_key: Annotated[str | None, Header(alias="x-api-key")] = None,
) -> str:
    """Verify the connector's shared secret

    Args:
        settings: Bridge settings
        x_api_key: API key from x-api-key header

    Returns:
        API key if valid

    Raises:
        401: If the key is missing, wrong, or no key is configured
    """
    if not settings.BRIDGE_API_KEY:
        logger.error("BRIDGE_API_KEY not configured - rejecting bridge request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    if not x_api_key or not secrets.compare_digest(x_api_key.encode(), settings.BRIDGE_API_KEY.encode()):
        logger.warning("Invalid or missing bridge API key")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    return x_api_key


async def _parse_records(request: Request, record_type: type[BridgeRecord]) -> list[BridgeRecord]:
    """Decode and validate the entity array before anything is written"""
    field = record_type.payload_field
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload: body must be JSON")

    items = body.get(field) if isinstance(body, dict) else None
    if not isinstance(items, list):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid payload: {field} must be an array",
        )

    records: list[BridgeRecord] = []
    for index, item in enumerate(items):
        try:
            records.append(record_type.model_validate(item))
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid payload: {field}[{index}].{location}: {first['msg']}",
            )
    return records


async def _ingest(
    request: Request,
    record_type: type[BridgeRecord],
    db: AsyncSession,
    settings: Settings,
) -> IngestResponse:
    records = await _parse_records(request, record_type)
    idempotency_key = request.headers.get("idempotency-key")
    logger.info(
        f"Bridge ingest {record_type.entity}: {len(records)} records (idempotency_key={idempotency_key or '-'})"
    )

    try:
        return await ingest_records(
            db,
            record_type,
            records,
            ceiling=settings.BRIDGE_WRITE_CEILING,
            source=settings.BRIDGE_SOURCE_TAG,
        )
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Error syncing {record_type.entity}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post(
    "/patients",
    response_model=IngestResponse,
    responses=ERROR_RESPONSES,
    summary="Upsert patients from the legacy database",
)
async def sync_patients(
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> IngestResponse:
    """Merge-upsert `{patients: [...]}` keyed by externalId"""
    return await _ingest(request, PatientRecord, db, settings)


@router.post(
    "/clients",
    response_model=IngestResponse,
    responses=ERROR_RESPONSES,
    summary="Upsert clients (owners) from the legacy database",
)
async def sync_clients(
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> IngestResponse:
    """Merge-upsert `{clients: [...]}` keyed by externalId"""
    return await _ingest(request, ClientRecord, db, settings)


@router.post(
    "/calendar",
    response_model=IngestResponse,
    responses=ERROR_RESPONSES,
    summary="Upsert calendar events from the legacy database",
)
async def sync_calendar(
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> IngestResponse:
    """Merge-upsert `{events: [...]}` keyed by externalId"""
    return await _ingest(request, CalendarEventRecord, db, settings)


@router.get(
    "/pending-exports",
    response_model=PendingExportsResponse,
    responses=ERROR_RESPONSES,
    summary="Claim pending cloud → legacy commands",
)
async def pending_exports(
    api_key: Annotated[str, Depends(verify_api_key)],
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> PendingExportsResponse:
    """Return up to MAILBOX_PAGE_SIZE pending commands and mark them fetched

    Expired claims are released first so commands stranded by a crashed
    poller become visible again.
    """
    try:
        await requeue_expired_claims(
            db,
            claim_timeout=timedelta(seconds=settings.MAILBOX_CLAIM_TIMEOUT_SECONDS),
            max_attempts=settings.MAILBOX_MAX_ATTEMPTS,
        )
        commands = await claim_pending_commands(db, limit=settings.MAILBOX_PAGE_SIZE)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Error fetching export commands: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return PendingExportsResponse(commands=[QueueCommandResponse.model_validate(c) for c in commands])


@router.post(
    "/commands/{command_id}/ack",
    response_model=CommandAckResponse,
    responses={
        **ERROR_RESPONSES,
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    },
    summary="Acknowledge execution of a command",
)
async def ack_command(
    command_id: str,
    ack: CommandAckRequest,
    api_key: Annotated[str, Depends(verify_api_key)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CommandAckResponse:
    """Move a fetched command to done or failed

    Raises:
        404: Unknown command
        409: Command never fetched, or already finished with a different outcome
    """
    try:
        command = await acknowledge_command(db, command_id, CommandStatus(ack.status), ack.error)
    except CommandNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except CommandStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Error acknowledging command {command_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return CommandAckResponse.model_validate(command)
