"""
Unit tests for bulk and reorder coordination.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock

from planhub.database.exceptions import DatabaseConnectionError
from planhub.exceptions import StoreError, ValidationError
from planhub.models.entities import Activity, Planner, Section
from planhub.services.coordinator import ScopeLocks


async def seed(services, sections=2, per_section=2):
    """Planner with sections s0..sN each holding activities at orders 0..M."""
    planner = Planner(owner_id="owner-1", title="Bulk")
    section_models = [Section(planner_id=planner.id, title=f"S{i}", order=i) for i in range(sections)]
    activities = [
        Activity(section_id=s.id, planner_id=planner.id, title=f"A{i}", order=i)
        for s in section_models
        for i in range(per_section)
    ]
    await services.planners_repo.create_with_sections(planner, section_models, activities)
    return planner, section_models, activities


class TestScopeLocks:
    @pytest.mark.asyncio
    async def test_same_scope_serializes(self):
        locks = ScopeLocks()
        events = []

        async def worker(name):
            async with locks.hold("activity-scope:s1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_multiple_scopes_released(self):
        locks = ScopeLocks()

        async with locks.hold("x", "y", "x"):
            assert locks.lock("x").locked()
            assert locks.lock("y").locked()

        assert not locks.lock("x").locked()
        assert not locks.lock("y").locked()


class TestReorder:
    """Test reorder validation and writes."""

    @pytest.mark.asyncio
    async def test_swap_orders(self, services):
        _, sections, activities = await seed(services, sections=1)
        a0, a1 = activities

        result = await services.coordinator.reorder(
            "activity", sections[0].id, [{"id": a0.id, "order": 1}, {"id": a1.id, "order": 0}]
        )

        listed = await services.activities_repo.list_by_parent(sections[0].id)
        assert [a.id for a in listed] == [a1.id, a0.id]
        assert result.to_dict()["success_count"] == 2
        assert result.parents == [sections[0].id]

    @pytest.mark.asyncio
    async def test_reorder_is_idempotent(self, services):
        _, sections, activities = await seed(services, sections=1)
        items = [{"id": activities[0].id, "order": 5}, {"id": activities[1].id, "order": 3}]

        await services.coordinator.reorder("activity", sections[0].id, items)
        await services.coordinator.reorder("activity", sections[0].id, items)

        docs = await services.store.get_many("activities", [a.id for a in activities])
        assert [d["order"] for d in docs] == [5, 3]

    @pytest.mark.asyncio
    async def test_foreign_item_rejected(self, services):
        _, sections, activities = await seed(services)
        other_section_item = activities[2]

        with pytest.raises(ValidationError):
            await services.coordinator.reorder(
                "activity", sections[0].id, [{"id": other_section_item.id, "order": 9}]
            )

        doc = await services.store.get("activities", other_section_item.id)
        assert doc["order"] == 0

    @pytest.mark.asyncio
    async def test_collision_with_omitted_sibling_rejected(self, services):
        _, sections, activities = await seed(services, sections=1)

        with pytest.raises(ValidationError):
            await services.coordinator.reorder("activity", sections[0].id, [{"id": activities[0].id, "order": 1}])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("items", [
        [],
        [{"id": "a", "order": 1}, {"id": "a", "order": 2}],
        [{"id": "a", "order": 1}, {"id": "b", "order": 1}],
        [{"id": "a", "order": -1}],
        [{"id": "a", "order": "1"}],
    ])
    async def test_malformed_items_rejected(self, services, items):
        with pytest.raises(ValidationError):
            await services.coordinator.reorder("activity", "s1", items)

    @pytest.mark.asyncio
    async def test_unsupported_entity(self, services):
        with pytest.raises(ValidationError):
            await services.coordinator.reorder("planner", "u1", [{"id": "p", "order": 0}])


class TestBulkOperations:
    """Test atomic bulk writes and grouped invalidation."""

    @pytest.mark.asyncio
    async def test_bulk_update_skips_missing(self, services):
        _, _, activities = await seed(services)
        ids = [activities[0].id, "ghost", activities[3].id]

        result = await services.coordinator.bulk_update("activity", ids, {"priority": "high"})

        assert result.succeeded == [activities[0].id, activities[3].id]
        assert result.skipped == [{"id": "ghost", "reason": "not found"}]
        assert len(result.parents) == 2
        for activity_id in result.succeeded:
            assert (await services.store.get("activities", activity_id))["priority"] == "high"

    @pytest.mark.asyncio
    async def test_bulk_update_per_document_fields(self, services):
        _, _, activities = await seed(services, sections=1, per_section=2)
        ids = [a.id for a in activities]

        await services.coordinator.bulk_update(
            "activity", ids, {"priority": "low"},
            per_document=lambda doc: {"title": doc["title"] + "!"},
        )

        for activity in activities:
            doc = await services.store.get("activities", activity.id)
            assert doc["title"] == activity.title + "!"
            assert doc["priority"] == "low"

    @pytest.mark.asyncio
    async def test_bulk_delete_holds_child_scopes(self, services):
        _, sections, _ = await seed(services, sections=2, per_section=1)
        held = []
        original = services.coordinator.locks.hold

        def spy(*scopes):
            held.extend(scopes)
            return original(*scopes)

        services.coordinator.locks.hold = spy
        await services.coordinator.bulk_delete("section", [sections[0].id])

        assert services.coordinator.scope("activity", sections[0].id) in held
        assert services.coordinator.scope("section", sections[0].planner_id) in held

    @pytest.mark.asyncio
    async def test_bulk_update_rejects_immutable_fields(self, services):
        _, _, activities = await seed(services)

        with pytest.raises(ValidationError):
            await services.coordinator.bulk_update("activity", [activities[0].id], {"section_id": "x"})

    @pytest.mark.asyncio
    async def test_one_invalidation_per_scope(self, services):
        _, sections, activities = await seed(services, sections=2, per_section=3)
        spy = AsyncMock(wraps=services.invalidator.invalidate_scopes)
        services.coordinator.invalidator.invalidate_scopes = spy

        result = await services.coordinator.bulk_delete("activity", [a.id for a in activities])

        spy.assert_awaited_once()
        assert spy.await_args.kwargs["deleted"] is True
        assert sorted(result.parents) == sorted(s.id for s in sections)
        assert await services.activities_repo.count_in_section(sections[0].id) == 0

    @pytest.mark.asyncio
    async def test_bulk_delete_sections_removes_children(self, services):
        _, sections, activities = await seed(services)

        await services.coordinator.bulk_delete("section", [sections[0].id])

        assert await services.store.get("activities", activities[0].id) is None
        assert await services.store.get("activities", activities[2].id) is not None

    @pytest.mark.asyncio
    async def test_before_write_aborts(self, services):
        _, sections, _ = await seed(services)

        async def refuse(docs):
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            await services.coordinator.bulk_delete("section", [sections[0].id], before_write=refuse)

        assert await services.store.get("sections", sections[0].id) is not None

    @pytest.mark.asyncio
    async def test_failed_batch_invalidates_nothing(self, services):
        _, sections, activities = await seed(services)
        spy = AsyncMock()
        services.coordinator.invalidator.invalidate_scopes = spy
        services.store.atomic_batch = AsyncMock(side_effect=DatabaseConnectionError("down"))

        with pytest.raises(StoreError):
            await services.coordinator.bulk_update("activity", [activities[0].id], {"priority": "low"})

        spy.assert_not_called()

    @pytest.mark.asyncio
    async def test_batch_size_limit(self, services):
        services.coordinator.max_batch_size = 2

        with pytest.raises(ValidationError):
            await services.coordinator.bulk_delete("activity", ["a", "b", "c"])
