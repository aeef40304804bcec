"""Tests for the health check endpoint."""

from unittest.mock import patch

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


class TestHealthCheck:
    """Tests for GET /health."""

    async def test_scheduler_stopped(self, client: AsyncClient):
        """The background scheduler is not started under the test client."""
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "scheduler": "stopped"}

    async def test_scheduler_running(self, client: AsyncClient):
        with patch("crmflow.main.is_scheduler_running", return_value=True):
            response = await client.get("/health")

        assert response.json()["scheduler"] == "running"

    async def test_health_needs_no_session(self, client: AsyncClient):
        response = await client.get("/health", cookies={"session_id": "garbage"})

        assert response.status_code == 200
