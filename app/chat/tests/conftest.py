"""
Test configuration and fixtures for chat tests.

This module provides:
- User fixtures with different group roles
- Conversation fixtures (direct and group)
- API client helpers for authenticated requests

Usage:
    def test_example(group, client_for, creator):
        client = client_for(creator)
        response = client.get(f"/api/v1/chat/conversations/{group.id}/")
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from accounts.tests.factories import UserFactory
from chat.tests.factories import DirectConversationFactory, GroupConversationFactory


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def creator(db):
    """User who creates the test group."""
    return UserFactory(display_name="Creator")


@pytest.fixture
def admin_member(db):
    """User holding the admin role in the test group."""
    return UserFactory(display_name="Admin Member")


@pytest.fixture
def member(db):
    """Plain member of the test group."""
    return UserFactory(display_name="Member")


@pytest.fixture
def outsider(db):
    """User who is not a participant in any test conversation."""
    return UserFactory(display_name="Outsider")


@pytest.fixture
def alice(db):
    return UserFactory(display_name="Alice")


@pytest.fixture
def bob(db):
    return UserFactory(display_name="Bob")


# =============================================================================
# Conversation Fixtures
# =============================================================================


@pytest.fixture
def group(creator, admin_member, member):
    """
    Group with a creator, one admin and one member.

    Provides the full role hierarchy for permission testing.
    """
    return GroupConversationFactory(
        created_by=creator,
        title="Test Group",
        admins=[admin_member],
        members=[member],
    )


@pytest.fixture
def direct(alice, bob):
    """Direct conversation between alice and bob."""
    return DirectConversationFactory(user1=alice, user2=bob)


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def client_for():
    """
    Build an API client authenticated as the given user.

    Usage:
        client = client_for(member)
    """

    def _make(user):
        client = APIClient()
        refresh = RefreshToken.for_user(user)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
        return client

    return _make


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()
