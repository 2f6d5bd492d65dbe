"""Integration Tests for the bridge ingest endpoints

Runs the FastAPI app in-process against a SQLite database.
"""

from datetime import date, datetime, timezone

import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tests.fixtures import patient_payload
from vetbridge.config import get_settings
from vetbridge.main import app
from vetbridge.models import SyncedDocument
from vetbridge.schemas.bridge import PatientRecord
from vetbridge.services import ingest_service
from vetbridge.services.ingest_service import ingest_records

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


async def _documents(session_factory, collection: str) -> dict[str, SyncedDocument]:
    async with session_factory() as session:
        result = await session.execute(select(SyncedDocument).where(SyncedDocument.collection == collection))
        return {doc.external_id: doc for doc in result.scalars().all()}


async def _count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(SyncedDocument))).scalar_one()


class TestAuthentication:
    async def test_missing_key(self, client: AsyncClient, session_factory):
        response = await client.post("/api/bridge/patients", json={"patients": patient_payload(3)})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Unauthorized"}
        assert await _count(session_factory) == 0

    async def test_wrong_key(self, client: AsyncClient, session_factory):
        response = await client.post(
            "/api/bridge/patients", json={"patients": patient_payload(3)}, headers={"x-api-key": "nope"}
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert await _count(session_factory) == 0

    async def test_unconfigured_key_rejects_everything(self, client: AsyncClient, bridge_settings):
        app.dependency_overrides[get_settings] = lambda: bridge_settings.model_copy(update={"BRIDGE_API_KEY": None})

        response = await client.post(
            "/api/bridge/patients", json={"patients": patient_payload(1)}, headers={"x-api-key": ""}
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestPayloadValidation:
    async def test_entity_array_required(self, client: AsyncClient, api_headers, session_factory):
        response = await client.post("/api/bridge/patients", json={"patients": {"externalId": "P1"}}, headers=api_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"].startswith("Invalid payload")
        assert await _count(session_factory) == 0

    async def test_wrong_field_name(self, client: AsyncClient, api_headers):
        response = await client.post("/api/bridge/calendar", json={"patients": []}, headers=api_headers)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "events" in response.json()["error"]

    async def test_body_not_json(self, client: AsyncClient, api_headers):
        response = await client.post(
            "/api/bridge/clients", content=b"{not json", headers={**api_headers, "content-type": "application/json"}
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_one_invalid_record_rejects_batch(self, client: AsyncClient, api_headers, session_factory):
        records = patient_payload(3)
        records[1]["externalId"] = ""

        response = await client.post("/api/bridge/patients", json={"patients": records}, headers=api_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "patients[1]" in response.json()["error"]
        assert await _count(session_factory) == 0

    async def test_empty_array(self, client: AsyncClient, api_headers):
        response = await client.post("/api/bridge/patients", json={"patients": []}, headers=api_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"success": True, "count": 0, "remaining": 0}


class TestUpsert:
    async def test_replay_is_idempotent(self, client: AsyncClient, api_headers, session_factory):
        """Sending the same batch twice leaves the same documents"""
        body = {"patients": patient_payload(5)}

        first = await client.post("/api/bridge/patients", json=body, headers=api_headers)
        before = {k: {f: v for f, v in d.data.items() if f != "lastSyncedAt"}
                  for k, d in (await _documents(session_factory, "patients")).items()}
        second = await client.post("/api/bridge/patients", json=body, headers=api_headers)
        after = {k: {f: v for f, v in d.data.items() if f != "lastSyncedAt"}
                 for k, d in (await _documents(session_factory, "patients")).items()}

        assert first.json() == {"success": True, "count": 5, "remaining": 0}
        assert second.json() == {"success": True, "count": 5, "remaining": 0}
        assert before == after
        assert await _count(session_factory) == 5

    async def test_write_ceiling(self, client: AsyncClient, api_headers, session_factory):
        """600 records: 490 written, 110 reported back"""
        records = patient_payload(600)

        response = await client.post("/api/bridge/patients", json={"patients": records}, headers=api_headers)

        assert response.json() == {"success": True, "count": 490, "remaining": 110}
        assert await _count(session_factory) == 490

        rest = await client.post("/api/bridge/patients", json={"patients": records[490:]}, headers=api_headers)
        assert rest.json()["count"] == 110
        assert await _count(session_factory) == 600

    async def test_configured_ceiling(self, client: AsyncClient, api_headers, bridge_settings, session_factory):
        app.dependency_overrides[get_settings] = lambda: bridge_settings.model_copy(
            update={"BRIDGE_WRITE_CEILING": 2}
        )
        response = await client.post("/api/bridge/patients", json={"patients": patient_payload(5)}, headers=api_headers)

        assert response.json() == {"success": True, "count": 2, "remaining": 3}
        assert set(await _documents(session_factory, "patients")) == {"P0000", "P0001"}

    async def test_merge_keeps_cloud_only_fields(self, client: AsyncClient, api_headers, session_factory):
        """Fields edited in the cloud survive a later sync"""
        await client.post(
            "/api/bridge/patients",
            json={"patients": [{"externalId": "P1", "name": "Buddy", "species": "Canine"}]},
            headers=api_headers,
        )
        async with session_factory() as session:
            doc = await session.get(SyncedDocument, ("patients", "P1"))
            doc.data = {**doc.data, "image": "https://cdn.example.com/buddy.png", "status": "Deceased", "notes": "x"}
            await session.commit()

        await client.post(
            "/api/bridge/patients",
            json={"patients": [{"externalId": "P1", "name": "Buddy II", "species": "Canine"}]},
            headers=api_headers,
        )

        data = (await _documents(session_factory, "patients"))["P1"].data
        assert data["name"] == "Buddy II"
        assert data["image"] == "https://cdn.example.com/buddy.png"
        assert data["status"] == "Deceased"
        assert data["notes"] == "x"

    async def test_unknown_fields_are_stored(self, client: AsyncClient, api_headers, session_factory):
        await client.post(
            "/api/bridge/clients",
            json={"clients": [{"externalId": "CL1", "firstName": "Ann", "loyaltyTier": "gold"}]},
            headers=api_headers,
        )
        assert (await _documents(session_factory, "clients"))["CL1"].data["loyaltyTier"] == "gold"

    async def test_tombstone(self, client: AsyncClient, api_headers, session_factory):
        """A deleted legacy record is kept as a flagged document, not removed"""
        await client.post("/api/bridge/patients", json={"patients": patient_payload(1)}, headers=api_headers)
        tombstone = {**patient_payload(1)[0], "deleted": True}

        response = await client.post("/api/bridge/patients", json={"patients": [tombstone]}, headers=api_headers)

        assert response.json()["count"] == 1
        doc = (await _documents(session_factory, "patients"))["P0000"]
        assert doc.deleted is True
        assert doc.data["deleted"] is True
        assert doc.data["name"] == "Pet 0"

    async def test_sync_metadata(self, client: AsyncClient, api_headers, session_factory):
        await client.post("/api/bridge/patients", json={"patients": patient_payload(1)}, headers=api_headers)

        doc = (await _documents(session_factory, "patients"))["P0000"]
        assert doc.source == "avimark"
        assert doc.data["source"] == "avimark"
        assert doc.data["lastSyncedAt"]


class TestDerivedFields:
    async def test_patient_owner_resolved_from_clients(self, client: AsyncClient, api_headers, session_factory):
        await client.post(
            "/api/bridge/clients",
            json={"clients": [{"externalId": "CL001", "firstName": "John", "lastName": "Doe"}]},
            headers=api_headers,
        )
        await client.post(
            "/api/bridge/patients",
            json={"patients": [
                {"externalId": "P001", "name": "Buddy", "ownerId": "CL001", "birthDate": "2018-01-01"},
                {"externalId": "P002", "name": "Rex", "ownerId": "CL999"},
            ]},
            headers=api_headers,
        )

        patients = await _documents(session_factory, "patients")
        assert patients["P001"].data["owner"] == "John Doe"
        assert patients["P001"].data["age"] >= 8
        assert patients["P001"].data["status"] == "Active"
        assert patients["P002"].data["owner"] == "Client #CL999"
        assert patients["P002"].data["age"] == 0

    async def test_calendar_event_fields(self, client: AsyncClient, api_headers, session_factory):
        await client.post(
            "/api/bridge/patients", json={"patients": [{"externalId": "P001", "name": "Buddy"}]}, headers=api_headers
        )
        response = await client.post(
            "/api/bridge/calendar",
            json={"events": [{"externalId": "A001", "patientId": "P001", "start": "2023-10-27T09:30:00Z",
                              "title": "Annual Checkup"}]},
            headers=api_headers,
        )

        assert response.json()["count"] == 1
        event = (await _documents(session_factory, "calendar_events"))["A001"].data
        assert event["patientName"] == "Buddy"
        assert event["date"] == "2023-10-27"
        assert event["time"] == "09:30"
        assert event["note"] == "Annual Checkup"
        assert event["status"] == "scheduled"


class TestStoreFailure:
    async def test_commit_failure_rolls_back(self, client: AsyncClient, api_headers, session_factory, monkeypatch):
        async def failing_commit(self):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(AsyncSession, "commit", failing_commit)

        response = await client.post("/api/bridge/patients", json={"patients": patient_payload(3)}, headers=api_headers)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "database is locked" in response.json()["error"]
        assert await _count(session_factory) == 0


class TestConcurrentCreation:
    async def test_document_created_after_load_is_merged(self, session_factory, monkeypatch):
        """Two first-time ingests of one key: the later one merges instead of failing"""
        async with session_factory() as first:
            await ingest_records(
                first, PatientRecord, [PatientRecord(external_id="P1", name="Buddy", species="Canine")],
                ceiling=490, source="avimark",
            )
        async with session_factory() as session:
            doc = await session.get(SyncedDocument, ("patients", "P1"))
            doc.data = {**doc.data, "image": "https://cdn.example.com/buddy.png"}
            await session.commit()

        async def load_before_other_writer(db, collection, external_ids):
            return {}

        monkeypatch.setattr(ingest_service, "_load_documents", load_before_other_writer)

        async with session_factory() as second:
            response = await ingest_records(
                second, PatientRecord, [PatientRecord(external_id="P1", name="Buddy II")],
                ceiling=490, source="avimark",
            )

        assert response.count == 1
        data = (await _documents(session_factory, "patients"))["P1"].data
        assert data["name"] == "Buddy II"
        assert data["image"] == "https://cdn.example.com/buddy.png"

    async def test_duplicate_key_in_one_batch(self, client: AsyncClient, api_headers, session_factory):
        response = await client.post(
            "/api/bridge/patients",
            json={"patients": [{"externalId": "P1", "name": "Buddy", "species": "Canine"},
                               {"externalId": "P1", "name": "Buddy II"}]},
            headers=api_headers,
        )

        assert response.json()["count"] == 2
        assert await _count(session_factory) == 1
        data = (await _documents(session_factory, "patients"))["P1"].data
        assert data["name"] == "Buddy II"


class TestAgeDerivation:
    NOW = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)

    async def _ingest(self, db, **fields):
        await ingest_records(
            db, PatientRecord, [PatientRecord(external_id="P1", name="Buddy", **fields)],
            ceiling=490, source="avimark", now=self.NOW,
        )
        return (await db.get(SyncedDocument, ("patients", "P1"), populate_existing=True)).data

    async def test_age_from_birth_date(self, db_session):
        data = await self._ingest(db_session, birth_date=date(2018, 1, 1))
        assert (data["age"], data["age_months"]) == (8, 9)

    async def test_missing_birth_date_keeps_stored_date_and_age(self, db_session):
        """A sync without BIRTHDATE keeps the stored date, and age stays consistent with it"""
        await self._ingest(db_session, birth_date=date(2018, 1, 1))

        data = await self._ingest(db_session)

        assert data["birthDate"] == "2018-01-01"
        assert (data["age"], data["age_months"]) == (8, 9)

    async def test_no_birth_date_at_all(self, db_session):
        data = await self._ingest(db_session)
        assert (data["age"], data["age_months"]) == (0, 0)
