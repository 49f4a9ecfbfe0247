"""
HTTP API tests: health probes, group state and collaboration statistics.
"""

import httpx
import pytest
import pytest_asyncio
import socketio
from fastapi.testclient import TestClient

from formsync.collaboration.server import CollaborationServer
from formsync.db.database import create_engine_for_url

from conftest import FakeSocketIO


@pytest_asyncio.fixture
async def api_client(server):
    transport = httpx.ASGITransport(app=server.create_api())
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestHealthEndpoints:
    """Test suite for health probes."""

    @pytest.mark.asyncio
    async def test_basic_health(self, api_client, test_settings):
        response = await api_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == test_settings.app_name

    @pytest.mark.asyncio
    async def test_detailed_health_reports_components(self, api_client):
        response = await api_client.get("/health/detailed")

        assert response.status_code == 200
        checks = response.json()["checks"]
        assert checks["database"]["status"] == "healthy"
        assert checks["database"]["dialect"] == "sqlite"
        assert "memory_usage_percent" in checks["system"]
        assert checks["realtime"]["active_connections"] == 0

    @pytest.mark.asyncio
    async def test_stopped_sweeper_degrades_health(self, api_client):
        response = await api_client.get("/health/detailed")

        data = response.json()
        assert data["checks"]["lock_sweeper"]["status"] == "stopped"
        assert data["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_readiness_and_liveness(self, api_client):
        readiness = await api_client.get("/health/readiness")
        liveness = await api_client.get("/health/liveness")

        assert readiness.status_code == 200
        assert readiness.json()["status"] == "ready"
        assert liveness.json()["status"] == "alive"

    @pytest.mark.asyncio
    async def test_readiness_fails_without_database(self, test_settings, tmp_path):
        # A path whose parent directory does not exist cannot be opened
        engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'db.sqlite'}")
        server = CollaborationServer(settings=test_settings, engine=engine, sio=FakeSocketIO())
        transport = httpx.ASGITransport(app=server.create_api())

        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/health/readiness")

        await engine.dispose()
        assert response.status_code == 503
        assert response.json()["error"]["error_code"] == "HTTP_ERROR"


class TestGroupState:
    """Test suite for GET /api/groups/{code}/state."""

    @pytest.mark.asyncio
    async def test_state_reflects_live_collaboration(self, api_client, alice, bob, seeded):
        await alice.join()
        await bob.join()
        await alice.emit("lock-field", {"groupCode": "ABC123", "fieldId": "name"})
        await alice.emit("field-update", {"groupCode": "ABC123", "fieldId": "name", "value": "Ada"})

        response = await api_client.get("/api/groups/ABC123/state", headers=bearer(seeded.tokens["bob"]))

        assert response.status_code == 200
        data = response.json()
        assert data["groupName"] == "Team Alpha"
        assert data["formTitle"] == "Trip registration"
        assert data["activeUsers"] == ["alice@example.com", "bob@example.com"]
        assert data["formData"] == {"name": "Ada"}
        assert data["locks"]["name"]["userEmail"] == "alice@example.com"
        assert data["locks"]["name"]["userId"] == seeded.users["alice"].id

    @pytest.mark.asyncio
    async def test_unknown_group_is_404(self, api_client, seeded):
        response = await api_client.get("/api/groups/NOPE/state", headers=bearer(seeded.tokens["bob"]))

        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_inactive_group_is_410(self, api_client, store, seeded):
        await store.set_group_active("ABC123", False)

        response = await api_client.get("/api/groups/ABC123/state", headers=bearer(seeded.tokens["bob"]))

        assert response.status_code == 410

    @pytest.mark.asyncio
    async def test_invalid_token_is_401(self, api_client, seeded):
        response = await api_client.get("/api/groups/ABC123/state", headers=bearer("not-a-token"))

        assert response.status_code == 401


class TestCollaborationStats:
    """Test suite for GET /api/collaboration/stats."""

    @pytest.mark.asyncio
    async def test_admin_sees_statistics(self, api_client, alice, seeded):
        await alice.join()

        response = await api_client.get("/api/collaboration/stats", headers=bearer(seeded.tokens["alice"]))

        assert response.status_code == 200
        data = response.json()
        assert data["connections"]["active_connections"] == 1
        assert data["connections"]["rooms"] == {"ABC123": 1}
        assert data["events"]["events_processed"] == 1
        assert data["sweeper"]["running"] is False

    @pytest.mark.asyncio
    async def test_non_admin_is_forbidden(self, api_client, seeded):
        response = await api_client.get("/api/collaboration/stats", headers=bearer(seeded.tokens["bob"]))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_credentials(self, api_client, seeded):
        response = await api_client.get("/api/collaboration/stats")

        assert response.status_code in (401, 403)


class TestApplicationLifecycle:
    """The full ASGI application with a real Socket.IO server in front."""

    def test_lifespan_starts_and_stops_sweeper(self, test_settings, database_url):
        engine = create_engine_for_url(database_url)
        server = CollaborationServer(settings=test_settings, engine=engine)

        assert isinstance(server.sio, socketio.AsyncServer)

        with TestClient(server.create_asgi_app()) as client:
            assert server.sweeper.running is True

            response = client.get("/health/detailed")
            assert response.status_code == 200
            assert response.json()["checks"]["lock_sweeper"]["status"] == "healthy"

        assert server.sweeper.running is False
