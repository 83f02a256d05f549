"""
Tests for SprintService: sweeps, explicit transitions and membership.
"""
import asyncio
from datetime import timedelta

import pytest

from autotrack.db.models import BacklogItemModel, SprintModel, TaskModel
from autotrack.infrastructure.exceptions import (
    InvalidTransition,
    NotFound,
    ReconciliationFailure,
    ValidationFailure,
)
from autotrack.models.notification import NotificationType
from autotrack.models.progress import SprintHealth
from autotrack.models.sprint import DispositionPolicy, SprintCreate, SprintStatus, SprintUpdate
from autotrack.services.backlog_reconciler import BacklogReconciler
from autotrack.services.sprint_service import SprintService

from tests.conftest import TODAY

DAY = timedelta(days=1)


class TestDailySweep:

    @pytest.mark.asyncio
    async def test_activates_and_completes_by_date(self, sprint_service, seed):
        due = await seed.sprint(status="upcoming", start_date=TODAY, end_date=TODAY + 9 * DAY)
        early = await seed.sprint(status="upcoming", start_date=TODAY + DAY, end_date=TODAY + 9 * DAY)
        ended = await seed.sprint(status="active", start_date=TODAY - 10 * DAY, end_date=TODAY - DAY)
        running = await seed.sprint(status="active", start_date=TODAY - 5 * DAY, end_date=TODAY)

        result = await sprint_service.run_daily_sweep()

        assert result.processed == 2
        assert result.transitioned == 2
        assert result.failure_count == 0
        assert (await seed.get(SprintModel, due)).status == "active"
        assert (await seed.get(SprintModel, early)).status == "upcoming"
        completed = await seed.get(SprintModel, ended)
        assert completed.status == "completed"
        assert completed.completed_at is not None
        assert (await seed.get(SprintModel, running)).status == "active"

    @pytest.mark.asyncio
    async def test_bad_sprint_does_not_abort_sweep(self, sprint_service, seed):
        broken = await seed.sprint(status="upcoming", start_date=TODAY - DAY, end_date=TODAY - 3 * DAY)
        good = await seed.sprint(status="upcoming", start_date=TODAY - DAY, end_date=TODAY + 5 * DAY)

        result = await sprint_service.run_daily_sweep()

        assert result.processed == 2
        assert result.transitioned == 1
        assert [f.sprint_id for f in result.failed] == [broken]
        assert (await seed.get(SprintModel, good)).status == "active"
        assert (await seed.get(SprintModel, broken)).status == "upcoming"

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, sprint_service, seed):
        await seed.sprint(status="upcoming", start_date=TODAY, end_date=TODAY + 5 * DAY)

        first = await sprint_service.run_daily_sweep()
        second = await sprint_service.run_daily_sweep()

        assert first.transitioned == 1
        assert second.processed == 0

    @pytest.mark.asyncio
    async def test_sweep_leaves_tasks_alone(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY - 10 * DAY, end_date=TODAY - DAY)
        task_id = await seed.task(sprint_id=sprint_id, status="in_progress")

        await sprint_service.run_daily_sweep()

        task = await seed.get(TaskModel, task_id)
        assert task.sprint_id == sprint_id
        assert task.status == "in_progress"

    @pytest.mark.asyncio
    async def test_activation_notifies_creator(self, sprint_service, notifications, seed):
        await seed.sprint(status="upcoming", start_date=TODAY, end_date=TODAY + 5 * DAY, created_by="alice")

        await sprint_service.run_daily_sweep()

        sent = await notifications.list_notifications(user="alice")
        assert [n.type for n in sent] == [NotificationType.SPRINT_STARTED]

    @pytest.mark.asyncio
    async def test_overdue_sprint_reads_off_track_until_swept(self, sprint_service, progress_service, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY - 10 * DAY, end_date=TODAY - DAY)
        for n in range(10):
            await seed.task(sprint_id=sprint_id, status="done" if n < 8 else "in_progress")

        progress = await progress_service.get_sprint_progress(sprint_id)
        assert progress.completion_percentage == 80.0
        assert progress.is_overdue is True
        assert progress.sprint_health == SprintHealth.OFF_TRACK

        result = await sprint_service.run_daily_sweep()

        assert (result.processed, result.transitioned) == (1, 1)
        assert (await seed.get(SprintModel, sprint_id)).status == "completed"
        assert (await progress_service.get_sprint_progress(sprint_id)).status == SprintStatus.COMPLETED


class TestStartSprint:

    @pytest.mark.asyncio
    async def test_early_start(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="upcoming", start_date=TODAY + 3 * DAY, end_date=TODAY + 10 * DAY)

        sprint = await sprint_service.start_sprint(sprint_id)

        assert sprint.status == SprintStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_second_start_fails(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="upcoming", start_date=TODAY + 3 * DAY, end_date=TODAY + 10 * DAY)
        await sprint_service.start_sprint(sprint_id)

        with pytest.raises(InvalidTransition):
            await sprint_service.start_sprint(sprint_id)

    @pytest.mark.asyncio
    async def test_refuses_second_active_sprint_in_project(self, sprint_service, seed):
        await seed.sprint(status="active", start_date=TODAY - DAY, end_date=TODAY + DAY)
        sprint_id = await seed.sprint(status="upcoming", start_date=TODAY + 3 * DAY, end_date=TODAY + 10 * DAY)

        with pytest.raises(InvalidTransition):
            await sprint_service.start_sprint(sprint_id)
        assert (await seed.get(SprintModel, sprint_id)).status == "upcoming"

    @pytest.mark.asyncio
    async def test_concurrent_starts_leave_one_active_sprint(self, sprint_service, seed):
        first = await seed.sprint(status="upcoming", start_date=TODAY + 3 * DAY, end_date=TODAY + 10 * DAY)
        second = await seed.sprint(status="upcoming", start_date=TODAY + 11 * DAY, end_date=TODAY + 20 * DAY)

        results = await asyncio.gather(
            sprint_service.start_sprint(first),
            sprint_service.start_sprint(second),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidTransition)
        statuses = [(await seed.get(SprintModel, s)).status for s in (first, second)]
        assert sorted(statuses) == ["active", "upcoming"]
        assert (await sprint_service.get_active_sprint("proj")) is not None

    @pytest.mark.asyncio
    async def test_missing_sprint(self, sprint_service, database):
        with pytest.raises(NotFound):
            await sprint_service.start_sprint("nope")


class TestCompleteSprint:

    @pytest.mark.asyncio
    async def test_complete_moves_unfinished_work_to_backlog(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY - 5 * DAY, end_date=TODAY + 5 * DAY)
        open_task = await seed.task(sprint_id=sprint_id, status="in_progress")
        done_task = await seed.task(sprint_id=sprint_id, status="done")
        open_item = await seed.item(sprint_id=sprint_id, status="sprint_backlog")

        sprint = await sprint_service.complete_sprint(sprint_id, notes="Went fine")

        assert sprint.status == SprintStatus.COMPLETED
        assert sprint.retrospective_notes == "Went fine"
        moved = await seed.get(TaskModel, open_task)
        assert (moved.status, moved.sprint_id) == ("backlog", None)
        kept = await seed.get(TaskModel, done_task)
        assert (kept.status, kept.sprint_id) == ("done", sprint_id)
        item = await seed.get(BacklogItemModel, open_item)
        assert (item.status, item.sprint_id) == ("product_backlog", None)

    @pytest.mark.asyncio
    async def test_complete_requires_active(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="upcoming", start_date=TODAY + DAY, end_date=TODAY + 5 * DAY)

        with pytest.raises(InvalidTransition):
            await sprint_service.complete_sprint(sprint_id)

    @pytest.mark.asyncio
    async def test_cascade_not_accepted_on_completion(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY - DAY, end_date=TODAY + DAY)

        with pytest.raises(ValidationFailure):
            await sprint_service.complete_sprint(sprint_id, policy=DispositionPolicy.CASCADE_DELETE_TASKS)
        assert (await seed.get(SprintModel, sprint_id)).status == "active"

    @pytest.mark.asyncio
    async def test_reconciliation_failure_leaves_everything_unchanged(self, clock, test_settings, notifications, seed):
        class ExplodingReconciler(BacklogReconciler):
            async def reconcile(self, session, sprint_id, policy, *, unfinished_only=False):
                await super().reconcile(session, sprint_id, policy, unfinished_only=unfinished_only)
                raise RuntimeError("disk on fire")

        service = SprintService(
            clock=clock, settings=test_settings, notifications=notifications, reconciler=ExplodingReconciler()
        )
        sprint_id = await seed.sprint(status="active", start_date=TODAY - DAY, end_date=TODAY + DAY)
        task_id = await seed.task(sprint_id=sprint_id, status="todo")

        with pytest.raises(ReconciliationFailure) as exc:
            await service.complete_sprint(sprint_id)

        assert exc.value.kind == "reconciliation_failure"
        assert (await seed.get(SprintModel, sprint_id)).status == "active"
        task = await seed.get(TaskModel, task_id)
        assert (task.status, task.sprint_id) == ("todo", sprint_id)

    @pytest.mark.asyncio
    async def test_assignment_waits_for_completion(self, clock, test_settings, notifications, seed):
        assignments = []

        class SlowReconciler(BacklogReconciler):
            async def reconcile(self, session, sprint_id, policy, *, unfinished_only=False):
                assignments.append(asyncio.ensure_future(service.assign_task_to_sprint(late_task, sprint_id)))
                await asyncio.sleep(0.05)
                assignments.append(assignments[0].done())
                return await super().reconcile(session, sprint_id, policy, unfinished_only=unfinished_only)

        service = SprintService(
            clock=clock, settings=test_settings, notifications=notifications, reconciler=SlowReconciler()
        )
        sprint_id = await seed.sprint(status="active", start_date=TODAY - DAY, end_date=TODAY + DAY)
        late_task = await seed.task(status="done")

        await service.complete_sprint(sprint_id)

        assignment, finished_early = assignments
        assert finished_early is False
        with pytest.raises(ValidationFailure):
            await assignment
        task = await seed.get(TaskModel, late_task)
        assert (task.status, task.sprint_id) == ("done", None)

    @pytest.mark.asyncio
    async def test_unassign_policy_keeps_status(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY - DAY, end_date=TODAY + DAY)
        task_id = await seed.task(sprint_id=sprint_id, status="in_progress")

        await sprint_service.complete_sprint(sprint_id, policy=DispositionPolicy.UNASSIGN)

        task = await seed.get(TaskModel, task_id)
        assert (task.status, task.sprint_id) == ("in_progress", None)


class TestCancelSprint:

    @pytest.mark.asyncio
    async def test_cancel_upcoming(self, sprint_service, notifications, seed):
        sprint_id = await seed.sprint(status="upcoming", start_date=TODAY + DAY, end_date=TODAY + 5 * DAY)

        sprint = await sprint_service.cancel_sprint(sprint_id)

        assert sprint.status == SprintStatus.CANCELLED
        sent = await notifications.list_notifications(user="owner")
        assert sent[0].type == NotificationType.SPRINT_CANCELLED

    @pytest.mark.asyncio
    async def test_cannot_cancel_completed(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="completed", start_date=TODAY - 9 * DAY, end_date=TODAY - DAY)

        with pytest.raises(InvalidTransition):
            await sprint_service.cancel_sprint(sprint_id)


class TestDeleteSprint:

    @pytest.mark.asyncio
    async def test_move_to_backlog_clears_every_reference(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY - DAY, end_date=TODAY + DAY)
        todo = await seed.task(sprint_id=sprint_id, status="todo")
        doing = await seed.task(sprint_id=sprint_id, status="in_progress")
        done = await seed.task(sprint_id=sprint_id, status="done")

        result = await sprint_service.delete_sprint(sprint_id, DispositionPolicy.MOVE_TO_BACKLOG)

        assert result.tasks_moved == 2
        for task_id in (todo, doing):
            task = await seed.get(TaskModel, task_id)
            assert (task.status, task.sprint_id) == ("backlog", None)
        finished = await seed.get(TaskModel, done)
        assert (finished.status, finished.sprint_id) == ("done", None)
        with pytest.raises(NotFound):
            await sprint_service.get_sprint(sprint_id)

    @pytest.mark.asyncio
    async def test_cascade_removes_work_items(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="completed", start_date=TODAY - 9 * DAY, end_date=TODAY - DAY)
        task_id = await seed.task(sprint_id=sprint_id, status="done")
        item_id = await seed.item(sprint_id=sprint_id, status="sprint_backlog")

        result = await sprint_service.delete_sprint(sprint_id, DispositionPolicy.CASCADE_DELETE_TASKS)

        assert (result.tasks_deleted, result.items_deleted) == (1, 1)
        assert await seed.get(TaskModel, task_id) is None

    @pytest.mark.asyncio
    async def test_delete_missing(self, sprint_service, database):
        with pytest.raises(NotFound):
            await sprint_service.delete_sprint("nope", DispositionPolicy.UNASSIGN)


class TestReminderSweep:

    @pytest.mark.asyncio
    async def test_reminds_once_per_day(self, sprint_service, notifications, clock, seed):
        sprint_id = await seed.sprint(
            status="active", start_date=TODAY - 8 * DAY, end_date=TODAY + DAY, created_by="alice"
        )
        await seed.task(sprint_id=sprint_id, status="todo", assignee="bob")

        first = await sprint_service.run_reminder_sweep()
        second = await sprint_service.run_reminder_sweep()

        assert first.notified == 1
        assert second.notified == 0
        assert len(await notifications.list_notifications(user="alice")) == 1
        bob = await notifications.list_notifications(user="bob")
        assert [n.type for n in bob] == [NotificationType.SPRINT_ENDING]
        assert (await seed.get(SprintModel, sprint_id)).last_reminder_date == TODAY

        clock.today = TODAY + DAY
        third = await sprint_service.run_reminder_sweep()
        assert third.notified == 1
        assert len(await notifications.list_notifications(user="alice")) == 2

    @pytest.mark.asyncio
    async def test_skips_sprints_outside_window(self, sprint_service, seed):
        await seed.sprint(status="active", start_date=TODAY - DAY, end_date=TODAY + 10 * DAY)

        result = await sprint_service.run_reminder_sweep()

        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_skips_fully_done_sprint(self, sprint_service, notifications, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY - 8 * DAY, end_date=TODAY + DAY)
        await seed.task(sprint_id=sprint_id, status="done")

        result = await sprint_service.run_reminder_sweep()

        assert result.processed == 1
        assert result.notified == 0
        assert await notifications.list_notifications(user="owner") == []


class TestCreateAndUpdate:

    def _data(self, **kw):
        values = dict(
            name="Sprint 1", start_date=TODAY, end_date=TODAY + 13 * DAY,
            project_id="proj", created_by="owner",
        )
        values.update(kw)
        return SprintCreate(**values)

    @pytest.mark.asyncio
    async def test_create_inside_window_is_active(self, sprint_service):
        sprint = await sprint_service.create_sprint(self._data())
        assert sprint.status == SprintStatus.ACTIVE
        assert sprint.duration_days == 13

    @pytest.mark.asyncio
    async def test_create_future_is_upcoming(self, sprint_service):
        sprint = await sprint_service.create_sprint(self._data(start_date=TODAY + DAY))
        assert sprint.status == SprintStatus.UPCOMING

    @pytest.mark.asyncio
    async def test_end_in_past_rejected(self, sprint_service):
        with pytest.raises(ValidationFailure):
            await sprint_service.create_sprint(self._data(start_date=TODAY - 5 * DAY, end_date=TODAY - DAY))

    @pytest.mark.asyncio
    async def test_overlap_rejected(self, sprint_service):
        await sprint_service.create_sprint(self._data())
        with pytest.raises(ValidationFailure):
            await sprint_service.create_sprint(self._data(start_date=TODAY + 5 * DAY, end_date=TODAY + 20 * DAY))

    @pytest.mark.asyncio
    async def test_other_project_may_overlap(self, sprint_service):
        await sprint_service.create_sprint(self._data())
        other = await sprint_service.create_sprint(self._data(project_id="other"))
        assert other.project_id == "other"

    def test_start_after_end_rejected_by_schema(self):
        with pytest.raises(ValueError):
            self._data(start_date=TODAY + DAY, end_date=TODAY)

    @pytest.mark.asyncio
    async def test_update_revalidates_dates(self, sprint_service):
        sprint = await sprint_service.create_sprint(self._data())
        with pytest.raises(ValidationFailure):
            await sprint_service.update_sprint(sprint.id, SprintUpdate(end_date=TODAY - DAY))

    @pytest.mark.asyncio
    async def test_update_name(self, sprint_service):
        sprint = await sprint_service.create_sprint(self._data())
        updated = await sprint_service.update_sprint(sprint.id, SprintUpdate(name="Renamed"))
        assert updated.name == "Renamed"
        assert updated.updated_at is not None


class TestMembership:

    @pytest.mark.asyncio
    async def test_assign_backlog_task_becomes_todo(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="upcoming", start_date=TODAY + DAY, end_date=TODAY + 5 * DAY)
        task_id = await seed.task(status="backlog")

        task = await sprint_service.assign_task_to_sprint(task_id, sprint_id)

        assert task.sprint_id == sprint_id
        assert task.status.value == "todo"

    @pytest.mark.asyncio
    async def test_cannot_assign_to_cancelled_sprint(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="cancelled", start_date=TODAY + DAY, end_date=TODAY + 5 * DAY)
        task_id = await seed.task(status="backlog")

        with pytest.raises(ValidationFailure):
            await sprint_service.assign_task_to_sprint(task_id, sprint_id)

    @pytest.mark.asyncio
    async def test_cannot_assign_across_projects(self, sprint_service, seed):
        sprint_id = await seed.sprint(project_id="other", start_date=TODAY + DAY, end_date=TODAY + 5 * DAY)
        task_id = await seed.task(status="backlog")

        with pytest.raises(ValidationFailure):
            await sprint_service.assign_task_to_sprint(task_id, sprint_id)

    @pytest.mark.asyncio
    async def test_remove_returns_task_to_backlog(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY - DAY, end_date=TODAY + 5 * DAY)
        task_id = await seed.task(sprint_id=sprint_id, status="in_progress")

        task = await sprint_service.remove_task_from_sprint(task_id, sprint_id)

        assert task.sprint_id is None
        assert task.status.value == "backlog"

    @pytest.mark.asyncio
    async def test_remove_from_another_sprint_is_refused(self, sprint_service, seed):
        sprint_id = await seed.sprint(status="active", start_date=TODAY - DAY, end_date=TODAY + 5 * DAY)
        other_id = await seed.sprint(status="upcoming", start_date=TODAY + 6 * DAY, end_date=TODAY + 9 * DAY)
        task_id = await seed.task(sprint_id=sprint_id, status="in_progress")

        with pytest.raises(ValidationFailure):
            await sprint_service.remove_task_from_sprint(task_id, other_id)

        task = await seed.get(TaskModel, task_id)
        assert (task.status, task.sprint_id) == ("in_progress", sprint_id)
