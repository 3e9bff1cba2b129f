"""Tests for the /health/ endpoint."""

from unittest.mock import patch

from django.db import DatabaseError


class TestHealthCheck:
    def test_healthy(self, db, client):
        response = client.get("/health/")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
        }

    def test_database_down(self, db, client):
        """
        A database failure makes the service unhealthy.

        Why it matters: Load balancers must stop routing to an instance
        that cannot read or write conversations.
        """
        with patch("core.views.connection.cursor", side_effect=DatabaseError("gone")):
            response = client.get("/health/")

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"
