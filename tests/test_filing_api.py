"""HTTP tests for the filing wizard API."""

from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from factories import FlakyBackend, create_individual, primary_answers
from filing_portal.config.settings import DatabaseSettings
from filing_portal.persistence.memory import InMemoryFilingBackend
from filing_portal.persistence.sql_backend import SqlFilingBackend
from filing_portal.web.app import create_app
from filing_portal.web.filing_api import WizardSessions
from filing_portal.wizard.phases import Phase


@pytest.fixture
def client(settings):
    app = create_app(backend=InMemoryFilingBackend(), settings=settings)
    with TestClient(app) as test_client:
        yield test_client


def create_filing(client, **payload):
    payload.setdefault("owner_id", "user-1")
    payload.setdefault("tax_year", 2025)
    response = client.post("/api/filings", json=payload)
    assert response.status_code == 201
    return response.json()


def send(client, filing_id, command_type, **fields):
    return client.post(f"/api/filings/{filing_id}/commands", json={"type": command_type, **fields})


class TestHealth:

    def test_health(self, client, settings):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": settings.version}


class TestFilings:

    def test_create_and_get(self, client):
        created = create_filing(client, jurisdiction="ON")

        assert created["status"] == "DRAFT"
        assert created["kind"] == "INDIVIDUAL"
        assert created["reference_number"] is None

        response = client.get(f"/api/filings/{created['id']}")
        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    def test_unknown_filing_is_404(self, client):
        response = client.get(f"/api/filings/{uuid4()}")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "NOT_FOUND"
        assert body["retryable"] is False

    def test_invalid_kind_is_422(self, client):
        response = client.post("/api/filings", json={"owner_id": "user-1", "kind": "PARTNERSHIP"})
        assert response.status_code == 422


class TestCommands:

    def test_view_starts_the_wizard(self, client):
        filing = create_filing(client)

        response = client.get(f"/api/filings/{filing['id']}/view")

        assert response.status_code == 200
        view = response.json()
        assert view["phase"] == "PRIMARY_ACTIVE"
        assert view["step"] == 1
        assert view["current_section"]["id"] == "personal_info"
        assert view["pricing"]["currency"] == "CAD"

    def test_single_filer_to_submission(self, client):
        filing = create_filing(client)
        filing_id = filing["id"]

        assert send(client, filing_id, "INIT").status_code == 200
        send(client, filing_id, "ANSWER", answers=primary_answers())
        response = send(client, filing_id, "COMPLETE_PHASE")
        assert response.json()["state"]["phase"] == "REVIEW"

        response = send(client, filing_id, "SUBMIT")

        assert response.status_code == 200
        body = response.json()
        assert body["state"]["phase"] == "SUBMITTED"
        assert body["view"]["status"] == "UNDER_REVIEW"
        assert body["view"]["reference_number"].startswith("JJ-")
        stored = client.get(f"/api/filings/{filing_id}").json()
        assert stored["total_price"] == "169.49"

    def test_validation_errors_come_back_as_200(self, client):
        filing = create_filing(client)
        send(client, filing["id"], "INIT")

        response = send(client, filing["id"], "NEXT_SECTION")

        assert response.status_code == 200
        state = response.json()["state"]
        assert state["section_index"] == 0
        assert "personalInfo.firstName" in state["errors"]

    def test_illegal_command_is_409(self, client):
        filing = create_filing(client)
        send(client, filing["id"], "INIT")

        response = send(client, filing["id"], "SUBMIT")

        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_STATE"

    def test_command_before_init_is_409(self, client):
        filing = create_filing(client)
        response = send(client, filing["id"], "NEXT_SECTION")
        assert response.status_code == 409

    def test_unknown_command_type_is_422(self, client):
        filing = create_filing(client)
        response = send(client, filing["id"], "JUMP_TO_END")
        assert response.status_code == 422

    def test_commands_for_unknown_filing_are_404(self, client):
        response = send(client, uuid4(), "INIT")
        assert response.status_code == 404

    def test_go_to_role_payload(self, client):
        filing = create_filing(client)
        send(client, filing["id"], "INIT")
        send(client, filing["id"], "ANSWER", answers=primary_answers())

        response = send(client, filing["id"], "GO_TO_ROLE", role="primary", section_index=3)

        assert response.status_code == 200
        assert response.json()["view"]["current_section"]["id"] == "income"


class TestTransportFailures:

    def test_backend_outage_is_503(self, settings):
        backend = FlakyBackend()
        app = create_app(backend=backend, settings=settings)
        with TestClient(app) as client:
            filing = create_filing(client)
            backend.fail("get_filing")

            response = send(client, filing["id"], "INIT")

        assert response.status_code == 503
        body = response.json()
        assert body["error_code"] == "SERVICE_UNAVAILABLE"
        assert body["retryable"] is True

    def test_outage_during_navigation_is_a_notice(self, settings):
        backend = FlakyBackend()
        app = create_app(backend=backend, settings=settings)
        with TestClient(app) as client:
            filing = create_filing(client)
            send(client, filing["id"], "INIT")
            backend.fail("update_answers", times=5)
            send(client, filing["id"], "ANSWER", answers=primary_answers())

            response = send(client, filing["id"], "NEXT_SECTION")

        assert response.status_code == 200
        state = response.json()["state"]
        assert state["section_index"] == 0
        assert state["notice"]["kind"] == "transport"
        assert state["notice"]["retryable"] is True


class TestSessions:

    def test_unknown_filings_open_no_session(self, client):
        for _ in range(5):
            assert send(client, uuid4(), "INIT").status_code == 404
        assert client.get(f"/api/filings/{uuid4()}/view").status_code == 404

        assert len(client.app.state.wizard_sessions) == 0

    def test_session_is_dropped_after_submission(self, client):
        filing = create_filing(client)
        filing_id = filing["id"]
        sessions = client.app.state.wizard_sessions

        send(client, filing_id, "INIT")
        send(client, filing_id, "ANSWER", answers=primary_answers())
        send(client, filing_id, "COMPLETE_PHASE")
        assert UUID(filing_id) in sessions

        assert send(client, filing_id, "SUBMIT").status_code == 200
        assert UUID(filing_id) not in sessions

        # a later look opens the submitted filing read-only and lets it go again
        view = client.get(f"/api/filings/{filing_id}/view").json()
        assert view["phase"] == "SUBMITTED"
        assert UUID(filing_id) not in sessions

    @pytest.mark.asyncio
    async def test_least_recently_used_session_is_closed(self, backend, settings):
        sessions = WizardSessions(backend, max_sessions=2, settings=settings)
        first, _ = await create_individual(backend)
        second, _ = await create_individual(backend)
        third, _ = await create_individual(backend)

        wizard = await sessions.open(first.id)
        await sessions.open(second.id)
        assert await sessions.open(first.id) is wizard
        await sessions.open(third.id)

        assert len(sessions) == 2
        assert first.id in sessions
        assert second.id not in sessions

    @pytest.mark.asyncio
    async def test_closed_session_keeps_its_answers(self, backend, settings):
        sessions = WizardSessions(backend, max_sessions=1, settings=settings)
        first, _ = await create_individual(backend)
        second, _ = await create_individual(backend)

        wizard = await sessions.open(first.id)
        await wizard.dispatch({"type": "INIT"})
        await wizard.dispatch({"type": "ANSWER", "answers": {"personalInfo.firstName": "Grace"}})
        await sessions.open(second.id)

        records = await backend.list_person_records(first.id)
        assert records[0].answers["personalInfo.firstName"] == "Grace"
        resumed = await sessions.open(first.id)
        assert resumed is not wizard
        assert resumed.state.phase == Phase.IDLE


class TestDatabaseBackend:

    def test_sql_backend_is_the_default(self, settings):
        sql_settings = settings.model_copy(update={"database": DatabaseSettings(url="sqlite+aiosqlite:///:memory:")})
        app = create_app(settings=sql_settings)

        assert isinstance(app.state.backend, SqlFilingBackend)
        with TestClient(app) as client:
            filing = create_filing(client)
            assert client.get(f"/api/filings/{filing['id']}").status_code == 200
            view = client.get(f"/api/filings/{filing['id']}/view").json()
            assert view["current_section"]["id"] == "personal_info"

    def test_filings_survive_a_restart(self, settings, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'data' / 'filings.db'}"
        sql_settings = settings.model_copy(update={"database": DatabaseSettings(url=url)})

        with TestClient(create_app(settings=sql_settings)) as client:
            filing = create_filing(client)
            send(client, filing["id"], "INIT")
            send(client, filing["id"], "ANSWER", answers=primary_answers())

        assert (tmp_path / "data" / "filings.db").exists()
        with TestClient(create_app(settings=sql_settings)) as client:
            stored = client.get(f"/api/filings/{filing['id']}")
            assert stored.status_code == 200
            view = client.get(f"/api/filings/{filing['id']}/view").json()

        assert view["current_section"]["id"] == "personal_info"
        assert view["completion"][0]["missing_fields"] == 0
