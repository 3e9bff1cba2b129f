"""
Test configuration and fixtures for accounts tests.

Usage:
    def test_example(user, authenticated_client):
        response = authenticated_client.get("/api/v1/auth/me/")
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from accounts.tests.factories import AdminUserFactory, UserFactory


@pytest.fixture
def user(db):
    """Create a general user with a known password."""
    return UserFactory(password="TestPass123!")


@pytest.fixture
def admin(db):
    """Create a directory administrator."""
    return AdminUserFactory()


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


@pytest.fixture
def authenticated_client(user):
    """API client authenticated as `user` with a JWT access token."""
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client


@pytest.fixture
def admin_client(admin):
    """API client authenticated as a directory administrator."""
    client = APIClient()
    refresh = RefreshToken.for_user(admin)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client
