"""Unit Tests for the inbound poll agent and the import-queue executor"""

import json

import httpx
import pytest

from vetbridge.connector.client import BridgeClient
from vetbridge.connector.errors import TransportFailure, Unauthorized
from vetbridge.connector.poll_agent import CommandExecutor, ImportQueueExecutor, InboundPollAgent
from vetbridge.schemas.bridge import QueueCommandResponse

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def _command(command_id: str, command_type: str = "export_appointment") -> dict:
    return {
        "id": command_id,
        "type": command_type,
        "payload": {"appointmentId": "A001"},
        "status": "fetched",
        "attempts": 1,
        "createdAt": "2026-10-19T08:00:00Z",
        "fetchedAt": "2026-10-19T08:05:00Z",
    }


class FakeMailbox:
    """Serves one page of commands and records acknowledgements"""

    def __init__(self, commands: list[dict], ack_status: int = 200, fetch_status: int = 200):
        self.commands = commands
        self.ack_status = ack_status
        self.fetch_status = fetch_status
        self.acks: dict[str, dict] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/pending-exports"):
            if self.fetch_status != 200:
                return httpx.Response(self.fetch_status, json={"error": "Unauthorized"})
            return httpx.Response(200, json={"commands": self.commands})
        command_id = request.url.path.split("/")[-2]
        self.acks[command_id] = json.loads(request.content)
        if self.ack_status != 200:
            return httpx.Response(self.ack_status, json={"error": "Command not found"})
        return httpx.Response(200, json={"id": command_id, "status": self.acks[command_id]["status"]})


class RecordingExecutor(CommandExecutor):
    def __init__(self, fail_ids: tuple[str, ...] = ()):
        self.fail_ids = fail_ids
        self.executed: list[str] = []

    def execute(self, command: QueueCommandResponse) -> None:
        self.executed.append(command.id)
        if command.id in self.fail_ids:
            raise RuntimeError("legacy import rejected the appointment")


@pytest.fixture
def make_agent(connector_settings):
    def make(mailbox: FakeMailbox, executor: CommandExecutor) -> InboundPollAgent:
        http = httpx.AsyncClient(transport=httpx.MockTransport(mailbox))
        return InboundPollAgent(BridgeClient(connector_settings, http), executor)

    return make


class TestPollOnce:
    async def test_executes_and_acknowledges_each_command(self, make_agent):
        mailbox = FakeMailbox([_command("c1"), _command("c2")])
        executor = RecordingExecutor()

        report = await make_agent(mailbox, executor).poll_once()

        assert executor.executed == ["c1", "c2"]
        assert mailbox.acks == {"c1": {"status": "done"}, "c2": {"status": "done"}}
        assert (report.fetched, report.done, report.failed) == (2, 2, 0)

    async def test_failed_execution_is_acknowledged_as_failed(self, make_agent):
        mailbox = FakeMailbox([_command("c1"), _command("c2")])
        executor = RecordingExecutor(fail_ids=("c1",))

        report = await make_agent(mailbox, executor).poll_once()

        assert mailbox.acks["c1"]["status"] == "failed"
        assert "legacy import rejected" in mailbox.acks["c1"]["error"]
        assert mailbox.acks["c2"] == {"status": "done"}
        assert (report.done, report.failed) == (1, 1)

    async def test_empty_mailbox(self, make_agent):
        mailbox = FakeMailbox([])
        report = await make_agent(mailbox, RecordingExecutor()).poll_once()
        assert report.fetched == 0
        assert mailbox.acks == {}

    async def test_ack_failure_is_counted_not_raised(self, make_agent):
        mailbox = FakeMailbox([_command("c1")], ack_status=404)
        report = await make_agent(mailbox, RecordingExecutor()).poll_once()

        assert report.done == 1
        assert report.unacknowledged == 1
        assert report.errors

    async def test_unauthorized_fetch_raises(self, make_agent):
        mailbox = FakeMailbox([_command("c1")], fetch_status=401)
        executor = RecordingExecutor()

        with pytest.raises(Unauthorized):
            await make_agent(mailbox, executor).poll_once()
        assert executor.executed == []

    async def test_non_json_mailbox_page(self, make_agent):
        executor = RecordingExecutor()
        agent = make_agent(lambda request: httpx.Response(200, text="<html>proxy</html>"), executor)

        with pytest.raises(TransportFailure, match="non-JSON body"):
            await agent.poll_once()
        assert executor.executed == []

    async def test_malformed_commands(self, make_agent):
        executor = RecordingExecutor()
        agent = make_agent(lambda request: httpx.Response(200, json={"commands": [{"id": "c1"}]}), executor)

        with pytest.raises(TransportFailure, match="malformed commands"):
            await agent.poll_once()
        assert executor.executed == []


class TestImportQueueExecutor:
    async def test_writes_command_file(self, tmp_path):
        executor = ImportQueueExecutor(tmp_path / "queue")
        command = QueueCommandResponse.model_validate(_command("c1"))

        executor.execute(command)

        target = tmp_path / "queue" / "cmd_c1_export_appointment.json"
        data = json.loads(target.read_text(encoding="utf-8"))
        assert data["id"] == "c1"
        assert data["payload"] == {"appointmentId": "A001"}

    async def test_rerun_overwrites_same_file(self, tmp_path):
        """Redelivery of a command produces the same single file"""
        executor = ImportQueueExecutor(tmp_path / "queue")
        command = QueueCommandResponse.model_validate(_command("c1"))

        executor.execute(command)
        executor.execute(command)

        assert [p.name for p in (tmp_path / "queue").iterdir()] == ["cmd_c1_export_appointment.json"]

    async def test_unsafe_characters_are_replaced(self, tmp_path):
        executor = ImportQueueExecutor(tmp_path)
        command = QueueCommandResponse.model_validate(_command("../../etc", "export/x"))
        assert executor.path_for(command).parent == tmp_path
        assert "/" not in executor.path_for(command).name
