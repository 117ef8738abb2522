"""
Unit tests for the cache-invalidation cascade.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from planhub.cache.invalidation import CASCADE, CacheInvalidator, cascade_keys, render
from planhub.models.entities import Activity, Section


@pytest.fixture
def activity_doc():
    return {"id": "a1", "section_id": "s1", "planner_id": "p1", "title": "Write"}


@pytest.fixture
def mock_cache():
    cache = MagicMock()
    cache.enabled = True
    cache.delete_many = AsyncMock(return_value=True)
    return cache


class TestRender:
    def test_formats_fields(self):
        assert render("section-stats:{section_id}", {"section_id": "s1"}) == "section-stats:s1"

    def test_missing_field_skips_template(self):
        assert render("shared-planners:{user_id}", {"planner_id": "p1"}) is None
        assert render("shared-planners:{user_id}", {"user_id": ""}) is None


class TestCascadeKeys:
    """Test the closure computed per entity type."""

    def test_activity_write(self, activity_doc):
        keys = cascade_keys("activity", activity_doc)

        assert keys == [
            "activity:a1",
            "section-activities:s1",
            "section-stats:s1",
            "planner-stats:p1",
        ]

    def test_activity_model_and_dict_agree(self, activity_doc):
        model = Activity(**activity_doc)
        assert cascade_keys("activity", model) == cascade_keys("activity", activity_doc)

    def test_section_write_does_not_drop_activity_list(self):
        keys = cascade_keys("section", {"id": "s1", "planner_id": "p1"})

        assert "section:s1" in keys
        assert "section-stats:s1" in keys
        assert "planner-sections:p1" in keys
        assert "planner-stats:p1" in keys
        assert "planner:p1" in keys
        assert "section-activities:s1" not in keys

    def test_section_delete_includes_children(self):
        section = Section(id="s1", planner_id="p1", title="S")
        children = {"activity": [
            {"id": "a1", "section_id": "s1", "planner_id": "p1"},
            {"id": "a2", "section_id": "s1", "planner_id": "p1"},
        ]}

        keys = cascade_keys("section", section, deleted=True, children=children)

        assert "section-activities:s1" in keys
        assert "activity:a1" in keys
        assert "activity:a2" in keys

    def test_planner_delete_includes_descendants(self):
        planner = {"id": "p1", "owner_id": "u1"}
        children = {
            "section": [{"id": "s1", "planner_id": "p1"}],
            "activity": [{"id": "a1", "section_id": "s1", "planner_id": "p1"}],
            "collaborator": [{"planner_id": "p1", "user_id": "u2"}],
        }

        keys = cascade_keys("planner", planner, deleted=True, children=children)

        assert set(keys) >= {
            "planner:p1", "planner-stats:p1", "planner-sections:p1", "user-planners:u1",
            "section:s1", "section-stats:s1", "section-activities:s1",
            "activity:a1", "shared-planners:u2",
        }

    def test_children_ignored_on_write(self):
        keys = cascade_keys(
            "section", {"id": "s1", "planner_id": "p1"},
            children={"activity": [{"id": "a1"}]},
        )
        assert "activity:a1" not in keys

    def test_collaborator_grant(self):
        keys = cascade_keys("collaborator", {"planner_id": "p1", "user_id": "u2"})
        assert keys == ["planner:p1", "shared-planners:u2"]

    def test_no_duplicates(self):
        keys = cascade_keys("planner", {"id": "p1", "owner_id": "u1"})
        assert len(keys) == len(set(keys))

    def test_every_entity_has_a_rule(self):
        assert set(CASCADE) == {"activity", "section", "planner", "collaborator", "time_entry"}


class TestCacheInvalidator:
    """Test applying the cascade to a cache client."""

    @pytest.mark.asyncio
    async def test_invalidate_deletes_in_one_call(self, mock_cache, activity_doc):
        invalidator = CacheInvalidator(mock_cache)

        keys = await invalidator.invalidate("activity", activity_doc)

        mock_cache.delete_many.assert_awaited_once_with(keys)
        assert len(keys) == 4

    @pytest.mark.asyncio
    async def test_invalidate_scopes_groups_by_parent(self, mock_cache):
        invalidator = CacheInvalidator(mock_cache)
        docs = [
            {"id": "a1", "section_id": "s1", "planner_id": "p1"},
            {"id": "a2", "section_id": "s1", "planner_id": "p1"},
            {"id": "a3", "section_id": "s2", "planner_id": "p1"},
        ]

        scopes = await invalidator.invalidate_scopes("activity", docs)

        assert len(scopes) == 2
        assert sorted(len(ids) for ids in scopes.values()) == [1, 2]
        mock_cache.delete_many.assert_awaited_once()
        deleted = mock_cache.delete_many.await_args.args[0]
        assert deleted.count("section-activities:s1") == 1
        assert "activity:a3" in deleted

    @pytest.mark.asyncio
    async def test_cache_failure_never_raises(self, mock_cache, activity_doc):
        mock_cache.delete_many = AsyncMock(return_value=False)
        invalidator = CacheInvalidator(mock_cache)

        keys = await invalidator.invalidate("activity", activity_doc)

        assert keys

    @pytest.mark.asyncio
    async def test_unknown_entity_is_logged_not_raised(self, mock_cache):
        invalidator = CacheInvalidator(mock_cache)

        assert await invalidator.invalidate("unknown", {"id": "x"}) == []
        mock_cache.delete_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_disabled_cache_is_skipped(self, mock_cache, activity_doc):
        mock_cache.enabled = False
        invalidator = CacheInvalidator(mock_cache)

        await invalidator.invalidate("activity", activity_doc)

        mock_cache.delete_many.assert_not_called()
