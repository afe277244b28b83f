"""
Reconciliation of a client-submitted Project/Goal/Task snapshot.

The client is authoritative for anything it can match by id and anything it
sends without an id is created. Entities the client omits are never deleted,
and ids the server cannot match under the expected parent are skipped.
Every write of one reconciliation runs inside a single store transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from focusflow.crud import resolve_completed_at
from focusflow.db import DbClient, EntityStore, GoalRecord, TaskRecord, utc
from focusflow.queries import ProjectView, list_projects
from focusflow.schemas import SyncGoal, SyncProject, SyncRequest, SyncTask
from focusflow.types import EntityKind

logger = logging.getLogger(__name__)


@dataclass
class SyncCounts:
    projects: int = 0
    goals: int = 0
    tasks: int = 0


@dataclass
class SyncConflict:
    """A matched entity the server changed after the client's watermark."""

    entity: str
    id: str
    server_updated_at: datetime


@dataclass
class SyncResults:
    created: SyncCounts = field(default_factory=SyncCounts)
    updated: SyncCounts = field(default_factory=SyncCounts)
    conflicts: list[SyncConflict] = field(default_factory=list)


@dataclass
class SyncOutcome:
    sync_results: SyncResults
    server_state: list[ProjectView]
    synced_at: datetime


class _Reconciliation:
    def __init__(self, tx: EntityStore, last_synced_at: Optional[datetime]):
        self.tx = tx
        self.last_synced_at = utc(last_synced_at)
        self.results = SyncResults()

    def _note_overwrite(self, kind: EntityKind, record) -> None:
        if self.last_synced_at is None:
            return
        if record.updated_at > self.last_synced_at:
            self.results.conflicts.append(
                SyncConflict(
                    entity=kind.value, id=record.id, server_updated_at=record.updated_at
                )
            )

    def _task_values(self, task: SyncTask, previous: Optional[TaskRecord]) -> dict:
        return {
            "name": task.name,
            "completed": task.completed,
            "urgency": task.urgency,
            "todays_focus": task.todays_focus,
            "completed_at": resolve_completed_at(
                task.completed,
                previous=previous,
                now=self.tx.clock.now(),
                requested=utc(task.completed_at),
            ),
        }

    def _create_task(self, goal_id: str, task: SyncTask) -> None:
        self.tx.create(
            EntityKind.TASK, {"goal_id": goal_id, **self._task_values(task, None)}
        )
        self.results.created.tasks += 1

    def _create_goal(self, project_id: str, goal: SyncGoal) -> None:
        record = self.tx.create(
            EntityKind.GOAL, {"project_id": project_id, "name": goal.name}
        )
        self.results.created.goals += 1
        # Client ids under a freshly created parent are not trusted.
        for task in goal.tasks:
            self._create_task(record.id, task)

    def _create_project(self, project: SyncProject) -> None:
        record = self.tx.create(EntityKind.PROJECT, {"name": project.name})
        self.results.created.projects += 1
        for goal in project.goals:
            self._create_goal(record.id, goal)

    def _merge_task(self, server_tasks: dict[str, TaskRecord], goal_id: str, task: SyncTask) -> None:
        if not task.id:
            self._create_task(goal_id, task)
            return
        existing = server_tasks.get(task.id)
        if existing is None:
            logger.warning("Skipping unknown task %s under goal %s", task.id, goal_id)
            return
        self._note_overwrite(EntityKind.TASK, existing)
        self.tx.update(EntityKind.TASK, existing.id, self._task_values(task, existing))
        self.results.updated.tasks += 1

    def _merge_goal(self, server_goals: dict[str, GoalRecord], project_id: str, goal: SyncGoal) -> None:
        if not goal.id:
            self._create_goal(project_id, goal)
            return
        existing = server_goals.get(goal.id)
        if existing is None:
            logger.warning("Skipping unknown goal %s under project %s", goal.id, project_id)
            return
        if existing.name != goal.name:
            self._note_overwrite(EntityKind.GOAL, existing)
            self.tx.update(EntityKind.GOAL, existing.id, {"name": goal.name})
            self.results.updated.goals += 1
        server_tasks = {
            t.id: t for t in self.tx.list(EntityKind.TASK, {"goal_id": existing.id})
        }
        for task in goal.tasks:
            self._merge_task(server_tasks, existing.id, task)

    def merge_project(self, project: SyncProject) -> None:
        if not project.id:
            self._create_project(project)
            return
        existing = self.tx.get(EntityKind.PROJECT, project.id)
        if existing is None:
            logger.warning("Skipping unknown project %s", project.id)
            return
        if existing.name != project.name:
            self._note_overwrite(EntityKind.PROJECT, existing)
            self.tx.update(EntityKind.PROJECT, existing.id, {"name": project.name})
            self.results.updated.projects += 1
        server_goals = {
            g.id: g for g in self.tx.list(EntityKind.GOAL, {"project_id": existing.id})
        }
        for goal in project.goals:
            self._merge_goal(server_goals, existing.id, goal)


def reconcile(db: DbClient, payload: SyncRequest) -> SyncOutcome:
    """
    Merge ``payload`` into the store and return the refreshed hierarchy.

    Any failure rolls the whole merge back; re-running the same snapshot is
    safe for entities that already carry matching ids.
    """
    with db.transaction() as tx:
        run = _Reconciliation(tx, payload.last_synced_at)
        for project in payload.projects:
            run.merge_project(project)
        server_state = list_projects(tx)
        synced_at = tx.clock.now()

    results = run.results
    logger.info(
        "Sync complete: created %d/%d/%d updated %d/%d/%d conflicts %d",
        results.created.projects,
        results.created.goals,
        results.created.tasks,
        results.updated.projects,
        results.updated.goals,
        results.updated.tasks,
        len(results.conflicts),
    )
    return SyncOutcome(sync_results=results, server_state=server_state, synced_at=synced_at)
