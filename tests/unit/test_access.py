"""
Unit tests for the access control resolver.

Covers the capability rules (owner, collaborator roles, public, denied)
and that resolution always reads the store, never the cache.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from contextlib import nullcontext

from planhub.exceptions import ForbiddenError, NotFoundError
from planhub.models.entities import Collaborator, Planner
from planhub.services.access import DENIED, OWNER, AccessControlResolver, capabilities_for


@pytest.fixture
def private_planner():
    return Planner(id="p1", owner_id="owner", title="Private")


@pytest.fixture
def public_planner():
    return Planner(id="p2", owner_id="owner", title="Public", is_public=True)


class TestCapabilitiesFor:
    """Test the pure capability rules."""

    def test_owner_has_everything(self, private_planner):
        caps = capabilities_for(private_planner, "owner", None)

        assert caps.role == OWNER
        assert all([
            caps.can_view, caps.can_edit, caps.can_share,
            caps.can_manage_collaborators, caps.can_archive, caps.can_delete,
        ])

    def test_owner_wins_over_collaborator_record(self, private_planner):
        caps = capabilities_for(private_planner, "owner", "viewer")
        assert caps.role == OWNER
        assert caps.can_delete

    def test_viewer_can_only_view(self, private_planner):
        caps = capabilities_for(private_planner, "u2", "viewer")

        assert caps.role == "viewer"
        assert caps.can_view
        assert not caps.can_edit
        assert not caps.can_share
        assert not caps.can_delete

    def test_editor_can_edit_but_not_delete(self, private_planner):
        caps = capabilities_for(private_planner, "u2", "editor")

        assert caps.can_edit
        assert not caps.can_share
        assert not caps.can_manage_collaborators
        assert not caps.can_archive
        assert not caps.can_delete

    def test_admin_can_share_but_not_delete_or_archive(self, private_planner):
        caps = capabilities_for(private_planner, "u2", "admin")

        assert caps.can_edit
        assert caps.can_share
        assert caps.can_manage_collaborators
        assert not caps.can_archive
        assert not caps.can_delete

    def test_public_planner_grants_view(self, public_planner):
        caps = capabilities_for(public_planner, "stranger", None)

        assert caps.role == "viewer"
        assert caps.can_view
        assert not caps.can_edit

    def test_collaborator_role_beats_public_view(self, public_planner):
        caps = capabilities_for(public_planner, "u2", "editor")
        assert caps.can_edit

    def test_private_planner_without_grant_is_denied(self, private_planner):
        caps = capabilities_for(private_planner, "stranger", None)

        assert caps == DENIED
        assert not caps.can_view

    def test_to_dict(self, private_planner):
        data = capabilities_for(private_planner, "u2", "viewer").to_dict()
        assert data["role"] == "viewer"
        assert data["can_view"] is True
        assert data["can_delete"] is False


@pytest.fixture
def resolver():
    """Resolver over mocked repositories."""
    planners = MagicMock()
    planners.collection = "planners"
    planners.store = MagicMock()
    planners.store.get = AsyncMock()
    planners.store_errors = MagicMock(side_effect=lambda *args: nullcontext())
    planners.get = AsyncMock()

    collaborators = MagicMock()
    collaborators.get = AsyncMock(return_value=None)

    return AccessControlResolver(planners, collaborators), planners, collaborators


class TestAccessControlResolver:
    """Test resolution against the store."""

    @pytest.mark.asyncio
    async def test_resolve_reads_store_not_cache(self, resolver):
        access, planners, collaborators = resolver
        planners.store.get.return_value = {"id": "p1", "owner_id": "owner", "title": "P"}

        planner, caps = await access.resolve("p1", "owner")

        assert planner.id == "p1"
        assert caps.role == OWNER
        planners.store.get.assert_awaited_once_with("planners", "p1")
        planners.get.assert_not_called()
        collaborators.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_resolve_uses_collaborator_record(self, resolver):
        access, planners, collaborators = resolver
        planners.store.get.return_value = {"id": "p1", "owner_id": "owner", "title": "P"}
        collaborators.get.return_value = Collaborator(planner_id="p1", user_id="u2", role="editor")

        _, caps = await access.resolve("p1", "u2")

        assert caps.role == "editor"
        collaborators.get.assert_awaited_once_with("p1", "u2")

    @pytest.mark.asyncio
    async def test_missing_planner_raises_not_found(self, resolver):
        access, planners, _ = resolver
        planners.store.get.return_value = None

        with pytest.raises(NotFoundError):
            await access.resolve("missing", "owner")

    @pytest.mark.asyncio
    async def test_require_without_view_is_forbidden(self, resolver):
        access, planners, _ = resolver
        planners.store.get.return_value = {"id": "p1", "owner_id": "owner", "title": "P"}

        with pytest.raises(ForbiddenError):
            await access.require("p1", "stranger", "can_view")

    @pytest.mark.asyncio
    async def test_require_missing_capability_is_forbidden(self, resolver):
        access, planners, collaborators = resolver
        planners.store.get.return_value = {"id": "p1", "owner_id": "owner", "title": "P"}
        collaborators.get.return_value = Collaborator(planner_id="p1", user_id="u2", role="viewer")

        with pytest.raises(ForbiddenError) as exc_info:
            await access.require("p1", "u2", "can_edit")

        assert exc_info.value.details["required"] == "can_edit"
        assert exc_info.value.details["role"] == "viewer"

    @pytest.mark.asyncio
    async def test_require_returns_planner_and_capabilities(self, resolver):
        access, planners, collaborators = resolver
        planners.store.get.return_value = {"id": "p1", "owner_id": "owner", "title": "P"}
        collaborators.get.return_value = Collaborator(planner_id="p1", user_id="u2", role="admin")

        planner, caps = await access.require("p1", "u2", "can_share")

        assert planner.owner_id == "owner"
        assert caps.can_share
