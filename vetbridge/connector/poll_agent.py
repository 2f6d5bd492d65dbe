"""Inbound Poll Agent - Execute cloud → legacy commands from the mailbox

The legacy host has no public endpoint, so commands are pulled:

1. GET /api/bridge/pending-exports claims a page of commands (status fetched)
2. each command runs through a CommandExecutor
3. POST /api/bridge/commands/{id}/ack reports done or failed

If the agent dies between 1 and 3 the command stays fetched until its claim
expires on the cloud side and is handed out again. Executors must therefore
be idempotent.
"""

import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from vetbridge.connector.client import BridgeClient, json_object
from vetbridge.connector.errors import BridgeClientError, TransportFailure
from vetbridge.schemas.bridge import PendingExportsResponse, QueueCommandResponse

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class CommandExecutor(ABC):
    """Runs one mailbox command against the legacy environment"""

    @abstractmethod
    def execute(self, command: QueueCommandResponse) -> None:
        """Execute the command; raise to report it as failed"""


class ImportQueueExecutor(CommandExecutor):
    """Safe mode: drop each command as a JSON file into the import queue

    The legacy application (or an operator) imports these files; the live
    tables are never written directly. The file name depends only on the
    command id, so running a command twice rewrites the same file.
    """

    def __init__(self, import_dir: str | os.PathLike):
        self.import_dir = Path(import_dir)

    def path_for(self, command: QueueCommandResponse) -> Path:
        safe_id = _UNSAFE_CHARS.sub("_", command.id)
        safe_type = _UNSAFE_CHARS.sub("_", command.type)
        return self.import_dir / f"cmd_{safe_id}_{safe_type}.json"

    def execute(self, command: QueueCommandResponse) -> None:
        self.import_dir.mkdir(parents=True, exist_ok=True)
        target = self.path_for(command)
        partial = target.with_name(target.name + ".tmp")
        partial.write_text(json.dumps(command.model_dump(mode="json", by_alias=True), indent=2), encoding="utf-8")
        os.replace(partial, target)
        logger.info(f"Command {command.id} saved to import queue: {target.name}")


@dataclass
class PollReport:
    """Outcome of one mailbox poll"""

    fetched: int = 0
    done: int = 0
    failed: int = 0
    unacknowledged: int = 0
    errors: list[str] = field(default_factory=list)


class InboundPollAgent:
    """Polls the command mailbox and acknowledges every command it runs"""

    def __init__(self, client: BridgeClient, executor: CommandExecutor):
        self.client = client
        self.executor = executor

    async def fetch_commands(self) -> list[QueueCommandResponse]:
        """Claim the next page of pending commands

        Raises:
            Unauthorized: API key rejected
            TransportFailure: Mailbox unreachable after retries, or answered with an unusable body
        """
        response = await self.client.request("GET", "pending-exports")
        try:
            return PendingExportsResponse.model_validate(json_object(response)).commands
        except ValidationError as e:
            raise TransportFailure(f"Mailbox returned malformed commands: {e}", status_code=response.status_code) from e

    async def acknowledge(self, command_id: str, status: str, error: str | None = None) -> None:
        """Report a command's outcome"""
        body = {"status": status}
        if error:
            body["error"] = error[:2000]
        await self.client.request("POST", f"commands/{command_id}/ack", json=body)

    async def poll_once(self) -> PollReport:
        """Fetch, execute and acknowledge one page of commands"""
        report = PollReport()
        commands = await self.fetch_commands()
        report.fetched = len(commands)
        if not commands:
            logger.info("No pending commands from cloud.")
            return report

        logger.info(f"Found {len(commands)} pending commands.")
        for command in commands:
            error: str | None = None
            try:
                await asyncio.to_thread(self.executor.execute, command)
                outcome = "done"
                report.done += 1
            except Exception as e:
                logger.error(f"Command {command.id} ({command.type}) failed: {e}", exc_info=True)
                outcome = "failed"
                error = str(e) or type(e).__name__
                report.failed += 1
                report.errors.append(f"{command.id}: {error}")

            try:
                await self.acknowledge(command.id, outcome, error)
            except BridgeClientError as e:
                # Stays fetched on the cloud side until the claim expires
                logger.error(f"Could not acknowledge command {command.id}: {e}")
                report.unacknowledged += 1
                report.errors.append(f"{command.id}: ack failed: {e}")

        return report
