"""Mailbox Service - Durable cloud → on-premise command queue

The on-premise connector cannot be reached from the cloud, so commands are
queued here and claimed by polling.

Status Flow:
1. enqueue_command(): new command is pending
2. claim_pending_commands(): pending → fetched, one page per poll
3. acknowledge_command(): fetched → done | failed, reported by the poller
4. requeue_expired_claims(): fetched for too long → pending (or failed once
   the attempt budget is spent)

Claims are conditional updates guarded by status = 'pending', so two pollers
racing for the same page never both receive a command. Delivery is
at-least-once: a command whose claim expires is handed out again, which is why
executors on the connector side must be idempotent.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vetbridge.models import TERMINAL_STATUSES, BridgeCommand, CommandStatus

logger = logging.getLogger(__name__)


class CommandNotFoundError(LookupError):
    """Raised when a command id does not exist"""


class CommandStateError(ValueError):
    """Raised when a requested transition conflicts with the stored status"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def enqueue_command(db: AsyncSession, command_type: str, payload: dict[str, Any] | None = None) -> BridgeCommand:
    """Queue a new command for the on-premise connector

    Args:
        db: Database session
        command_type: Command type understood by the connector (e.g., "export_appointment")
        payload: Command arguments

    Returns:
        The persisted pending command
    """
    command = BridgeCommand(
        type=command_type,
        payload=payload or {},
        status=CommandStatus.PENDING.value,
        attempts=0,
        created_at=_utcnow(),
    )
    db.add(command)
    await db.commit()
    await db.refresh(command)
    logger.info(f"Queued bridge command {command.id} ({command_type})")
    return command


async def select_pending_ids(db: AsyncSession, limit: int) -> list[str]:
    """Oldest pending command ids, without claiming them"""
    result = await db.execute(
        select(BridgeCommand.id)
        .where(BridgeCommand.status == CommandStatus.PENDING.value)
        .order_by(BridgeCommand.created_at, BridgeCommand.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    return list(result.scalars().all())


async def claim_commands(db: AsyncSession, command_ids: list[str], now: datetime | None = None) -> list[str]:
    """Move the given commands from pending to fetched

    Each update is guarded by status = 'pending'; ids another poller claimed
    first are skipped. Does not commit.

    Returns:
        Ids this call actually claimed
    """
    now = now or _utcnow()
    claimed: list[str] = []
    for command_id in command_ids:
        result = await db.execute(
            update(BridgeCommand)
            .where(
                BridgeCommand.id == command_id,
                BridgeCommand.status == CommandStatus.PENDING.value,
            )
            .values(
                status=CommandStatus.FETCHED.value,
                fetched_at=now,
                attempts=BridgeCommand.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            claimed.append(command_id)
    return claimed


async def _load_commands(db: AsyncSession, command_ids: list[str]) -> list[BridgeCommand]:
    if not command_ids:
        return []
    result = await db.execute(
        select(BridgeCommand)
        .where(BridgeCommand.id.in_(command_ids))
        .order_by(BridgeCommand.created_at, BridgeCommand.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def claim_pending_commands(db: AsyncSession, *, limit: int, now: datetime | None = None) -> list[BridgeCommand]:
    """Claim up to `limit` pending commands for one poll

    The whole page is claimed in one transaction.

    Args:
        db: Database session
        limit: Page size
        now: Claim timestamp (defaults to current UTC time)

    Returns:
        Claimed commands, oldest first (empty list if none pending)
    """
    candidate_ids = await select_pending_ids(db, limit)
    claimed_ids = await claim_commands(db, candidate_ids, now)
    await db.commit()

    if len(claimed_ids) < len(candidate_ids):
        logger.info(f"{len(candidate_ids) - len(claimed_ids)} commands were claimed by another poller")
    if claimed_ids:
        logger.info(f"Claimed {len(claimed_ids)} bridge commands")
    return await _load_commands(db, claimed_ids)


async def requeue_expired_claims(
    db: AsyncSession,
    *,
    claim_timeout: timedelta,
    max_attempts: int,
    now: datetime | None = None,
) -> tuple[int, int]:
    """Release claims that were never acknowledged

    A command stuck in fetched past `claim_timeout` goes back to pending, or to
    failed when it has already been claimed `max_attempts` times.

    Returns:
        (requeued, failed) counts
    """
    now = now or _utcnow()
    cutoff = now - claim_timeout
    expired = (
        BridgeCommand.status == CommandStatus.FETCHED.value,
        BridgeCommand.fetched_at < cutoff,
    )

    failed = await db.execute(
        update(BridgeCommand)
        .where(*expired, BridgeCommand.attempts >= max_attempts)
        .values(
            status=CommandStatus.FAILED.value,
            completed_at=now,
            error=f"Claim expired after {max_attempts} attempts",
        )
        .execution_options(synchronize_session=False)
    )
    requeued = await db.execute(
        update(BridgeCommand)
        .where(*expired, BridgeCommand.attempts < max_attempts)
        .values(
            status=CommandStatus.PENDING.value,
            fetched_at=None,
            error="Claim expired before acknowledgement",
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    counts = (requeued.rowcount or 0, failed.rowcount or 0)
    if any(counts):
        logger.warning(f"Expired bridge command claims: {counts[0]} requeued, {counts[1]} failed")
    return counts


async def acknowledge_command(
    db: AsyncSession,
    command_id: str,
    status: CommandStatus,
    error: str | None = None,
    now: datetime | None = None,
) -> BridgeCommand:
    """Record the execution outcome of a claimed command

    Repeating the same terminal acknowledgement is a no-op. A late
    acknowledgement for a command whose claim already expired (back in pending
    with at least one attempt) is still accepted, since the connector did run
    it. A command that was never fetched cannot be acknowledged.

    Raises:
        CommandNotFoundError: Unknown command id
        CommandStateError: Command never fetched, or already finished with a different outcome
    """
    now = now or _utcnow()
    command = await db.get(BridgeCommand, command_id, populate_existing=True)
    if command is None:
        raise CommandNotFoundError(f"Command {command_id} not found")

    if command.status == status.value:
        return command
    if command.status in {s.value for s in TERMINAL_STATUSES}:
        raise CommandStateError(f"Command {command_id} is already {command.status}")
    if command.status == CommandStatus.PENDING.value and command.attempts == 0:
        raise CommandStateError(f"Command {command_id} has not been fetched")

    result = await db.execute(
        update(BridgeCommand)
        .where(
            BridgeCommand.id == command_id,
            or_(
                BridgeCommand.status == CommandStatus.FETCHED.value,
                and_(BridgeCommand.status == CommandStatus.PENDING.value, BridgeCommand.attempts > 0),
            ),
        )
        .values(status=status.value, completed_at=now, error=error)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    refreshed = await _load_commands(db, [command_id])
    command = refreshed[0]
    if result.rowcount != 1 and command.status != status.value:
        raise CommandStateError(f"Command {command_id} is already {command.status}")

    logger.info(f"Bridge command {command_id} acknowledged as {status.value}")
    return command
