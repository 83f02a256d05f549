"""
Tests for product and sprint backlog operations.
"""
import pytest

from autotrack.infrastructure.exceptions import InvalidTransition, NotFound, ValidationFailure
from autotrack.models.backlog import (
    BacklogItemCreate,
    BacklogItemUpdate,
    BacklogStatus,
    PriorityLevel,
)

from tests.conftest import TODAY


def _item(title="Item", level=PriorityLevel.MEDIUM, points=3, **kw) -> BacklogItemCreate:
    return BacklogItemCreate(title=title, project_id="proj", priority_level=level, story_points=points, **kw)


class TestProductBacklog:

    @pytest.mark.asyncio
    async def test_new_items_rank_last_within_level(self, backlog_service):
        first = await backlog_service.create_item(_item("First"))
        second = await backlog_service.create_item(_item("Second"))
        critical = await backlog_service.create_item(_item("Critical", PriorityLevel.CRITICAL))

        assert (first.priority_rank, second.priority_rank, critical.priority_rank) == (1, 2, 1)

    @pytest.mark.asyncio
    async def test_ordered_by_level_then_rank(self, backlog_service):
        await backlog_service.create_item(_item("Low", PriorityLevel.LOW))
        await backlog_service.create_item(_item("Medium A"))
        await backlog_service.create_item(_item("Critical", PriorityLevel.CRITICAL))
        await backlog_service.create_item(_item("Medium B"))

        items = await backlog_service.get_product_backlog("proj")

        assert [i.title for i in items] == ["Critical", "Medium A", "Medium B", "Low"]

    @pytest.mark.asyncio
    async def test_changing_level_reranks(self, backlog_service):
        await backlog_service.create_item(_item("High", PriorityLevel.HIGH))
        item = await backlog_service.create_item(_item("Promoted"))

        updated = await backlog_service.update_item(item.id, BacklogItemUpdate(priority_level=PriorityLevel.HIGH))

        assert updated.priority_level == PriorityLevel.HIGH
        assert updated.priority_rank == 2

    @pytest.mark.asyncio
    async def test_reorder(self, backlog_service):
        a = await backlog_service.create_item(_item("A"))
        b = await backlog_service.create_item(_item("B"))
        c = await backlog_service.create_item(_item("C"))

        await backlog_service.reorder("proj", [c.id, a.id, b.id])

        items = await backlog_service.get_product_backlog("proj")
        assert [i.title for i in items] == ["C", "A", "B"]

    @pytest.mark.asyncio
    async def test_reorder_rejects_duplicates(self, backlog_service):
        a = await backlog_service.create_item(_item("A"))
        with pytest.raises(ValidationFailure):
            await backlog_service.reorder("proj", [a.id, a.id])

    @pytest.mark.asyncio
    async def test_reorder_rejects_foreign_items(self, backlog_service, seed):
        foreign = await seed.item(project_id="other")
        with pytest.raises(ValidationFailure):
            await backlog_service.reorder("proj", [foreign])


class TestSprintBacklog:

    @pytest.mark.asyncio
    async def test_move_to_sprint_and_back(self, backlog_service, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY, end_date=TODAY)
        item_id = await seed.item()

        scheduled = await backlog_service.move_to_sprint(item_id, sprint_id)
        assert scheduled.status == BacklogStatus.SPRINT_BACKLOG
        assert scheduled.moved_to_sprint_at is not None
        assert [i.id for i in await backlog_service.get_sprint_backlog(sprint_id)] == [item_id]

        returned = await backlog_service.move_to_product_backlog(item_id)
        assert returned.status == BacklogStatus.PRODUCT_BACKLOG
        assert returned.sprint_id is None

    @pytest.mark.asyncio
    async def test_capacity_is_enforced(self, backlog_service, seed):
        sprint_id = await seed.sprint(status="upcoming", start_date=TODAY, end_date=TODAY, planned_velocity=5)
        await seed.item(sprint_id=sprint_id, status="sprint_backlog", story_points=3)
        item_id = await seed.item(story_points=3)

        with pytest.raises(ValidationFailure) as exc:
            await backlog_service.move_to_sprint(item_id, sprint_id)

        assert exc.value.details["committed"] == 3
        assert (await backlog_service.get_item(item_id)).status == BacklogStatus.PRODUCT_BACKLOG

    @pytest.mark.asyncio
    async def test_closed_sprint_refuses_items(self, backlog_service, seed):
        sprint_id = await seed.sprint(status="completed", start_date=TODAY, end_date=TODAY)
        item_id = await seed.item()

        with pytest.raises(ValidationFailure):
            await backlog_service.move_to_sprint(item_id, sprint_id)

    @pytest.mark.asyncio
    async def test_only_product_backlog_items_can_be_scheduled(self, backlog_service, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY, end_date=TODAY)
        item_id = await seed.item(status="completed")

        with pytest.raises(InvalidTransition):
            await backlog_service.move_to_sprint(item_id, sprint_id)

    @pytest.mark.asyncio
    async def test_unknown_sprint(self, backlog_service, database):
        with pytest.raises(NotFound):
            await backlog_service.get_sprint_backlog("missing")


class TestItemStatus:

    @pytest.mark.asyncio
    async def test_start_then_complete(self, backlog_service, seed):
        item_id = await seed.item(status="sprint_backlog")

        await backlog_service.start_item(item_id)
        done = await backlog_service.complete_item(item_id)

        assert done.status == BacklogStatus.COMPLETED
        assert done.completed_at is not None

    @pytest.mark.asyncio
    async def test_start_requires_sprint_backlog(self, backlog_service, seed):
        item_id = await seed.item()
        with pytest.raises(InvalidTransition):
            await backlog_service.start_item(item_id)

    @pytest.mark.asyncio
    async def test_archived_items_are_hidden_and_frozen(self, backlog_service, seed):
        item_id = await seed.item()

        await backlog_service.archive_item(item_id)

        assert await backlog_service.get_product_backlog("proj") == []
        with pytest.raises(ValidationFailure):
            await backlog_service.update_item(item_id, BacklogItemUpdate(title="Too late"))
        with pytest.raises(InvalidTransition):
            await backlog_service.archive_item(item_id)


class TestReporting:

    @pytest.mark.asyncio
    async def test_velocity_per_sprint(self, backlog_service, seed):
        sprint_id = await seed.sprint(status="completed", start_date=TODAY, end_date=TODAY)
        await seed.item(sprint_id=sprint_id, status="completed", story_points=5)
        await seed.item(sprint_id=sprint_id, status="completed", story_points=8)
        await seed.item(sprint_id=sprint_id, status="in_progress", story_points=13)

        velocity = await backlog_service.get_velocity_data("proj")

        assert len(velocity) == 1
        assert (velocity[0].item_count, velocity[0].total_story_points) == (2, 13)

    @pytest.mark.asyncio
    async def test_analytics(self, backlog_service, seed):
        await seed.item(priority_level="high", story_points=5)
        await seed.item(status="archived", story_points=2)

        analytics = await backlog_service.get_backlog_analytics("proj")

        assert analytics.total_items == 2
        assert analytics.total_story_points == 7
        assert analytics.status_breakdown["archived"] == 1
        assert analytics.priority_breakdown["high"] == 1
        assert analytics.priority_breakdown["critical"] == 0

    @pytest.mark.asyncio
    async def test_search_matches_title_and_description(self, backlog_service, seed):
        await seed.item(title="Login page")
        await seed.item(title="Export", description="CSV export after LOGIN")
        await seed.item(title="Unrelated")

        found = await backlog_service.search("proj", "login")

        assert sorted(i.title for i in found) == ["Export", "Login page"]
        assert await backlog_service.search("proj", "   ") == []
