"""
Tests for the application wiring: health, root, metrics and exception handlers.
"""

from unittest.mock import patch

from fastapi import APIRouter

from guitar_dice.config import settings
from guitar_dice.exceptions import DatabaseError, StorageError


class TestHealth:
    """Tests for GET /health."""

    async def test_healthy(self, async_client):
        response = await async_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["timestamp"]

    async def test_database_down(self, app, async_client):
        from sqlalchemy.exc import OperationalError

        from guitar_dice.db.session import get_read_db

        class BrokenSession:
            async def execute(self, *args, **kwargs):
                raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        async def broken_db():
            yield BrokenSession()

        app.dependency_overrides[get_read_db] = broken_db

        response = await async_client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestRootAndMetrics:
    async def test_root(self, async_client):
        response = await async_client.get("/")

        assert response.json() == {
            "service": settings.api_title,
            "version": settings.api_version,
            "status": "running",
        }

    async def test_metrics_exposed(self, async_client):
        await async_client.get("/")

        response = await async_client.get("/metrics")

        assert response.status_code == 200
        assert "guitar_dice_http_requests_total" in response.text

    async def test_metrics_disabled(self, async_client):
        with patch.object(settings, "metrics_enabled", False):
            response = await async_client.get("/metrics")

        assert response.status_code == 404


class TestExceptionHandlers:
    """Service errors escaping a route are mapped to JSON without internals."""

    @staticmethod
    def add_failing_route(app, path: str, exc: Exception) -> None:
        router = APIRouter()

        @router.get(path)
        async def fail() -> None:
            raise exc

        app.include_router(router)

    async def test_database_error_is_generic_500(self, app, async_client):
        self.add_failing_route(app, "/__test/db-error", DatabaseError("password=hunter2"))

        response = await async_client.get("/__test/db-error")

        assert response.status_code == 500
        assert response.json() == {"message": "Database operation failed"}

    async def test_other_service_error_is_generic_500(self, app, async_client):
        self.add_failing_route(app, "/__test/storage-error", StorageError("disk full"))

        response = await async_client.get("/__test/storage-error")

        assert response.status_code == 500
        assert response.json() == {"message": "Internal error"}

    async def test_unknown_route(self, async_client):
        response = await async_client.get("/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"message": "Not Found"}

    async def test_validation_errors_are_400(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        response = await async_client.get("/api/chat/history", params={"limit": 0})

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Invalid request data"
        assert body["errors"][0]["loc"] == ["query", "limit"]
