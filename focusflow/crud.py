"""
Create/update/soft-delete operations behind the simple per-entity endpoints.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from focusflow.db import DbClient, TaskRecord
from focusflow.errors import ValidationError
from focusflow.queries import (
    GoalView,
    ProjectView,
    TaskView,
    get_goal,
    get_project,
    get_task,
)
from focusflow.types import EntityKind, Urgency

logger = logging.getLogger(__name__)


def resolve_completed_at(
    completed: bool,
    *,
    previous: Optional[TaskRecord],
    now: datetime,
    requested: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Completion timestamp for a task that ends up with ``completed``.

    ``completed_at`` is set exactly while the task is completed. An explicit
    ``requested`` value wins; otherwise an already-completed task keeps its
    timestamp and a fresh completion is stamped with ``now``.
    """
    if not completed:
        return None
    if requested is not None:
        return requested
    if previous is not None and previous.completed and previous.completed_at:
        return previous.completed_at
    return now


def _require_changes(values: Dict[str, Any]) -> None:
    if not values:
        raise ValidationError("No fields to update")


def create_project(db: DbClient, values: Dict[str, Any]) -> ProjectView:
    with db.transaction() as tx:
        project = tx.create(EntityKind.PROJECT, {"name": values["name"]})
        logger.info("Created project %s", project.id)
        return get_project(tx, project.id)


def update_project(db: DbClient, project_id: str, values: Dict[str, Any]) -> ProjectView:
    _require_changes(values)
    with db.transaction() as tx:
        tx.update(EntityKind.PROJECT, project_id, values)
        return get_project(tx, project_id)


def delete_project(db: DbClient, project_id: str) -> None:
    deleted_at = db.soft_delete_cascade(EntityKind.PROJECT, project_id)
    logger.info("Soft-deleted project %s at %s", project_id, deleted_at.isoformat())


def create_goal(db: DbClient, values: Dict[str, Any]) -> GoalView:
    with db.transaction() as tx:
        goal = tx.create(
            EntityKind.GOAL,
            {"project_id": values["project_id"], "name": values["name"]},
        )
        logger.info("Created goal %s under project %s", goal.id, goal.project_id)
        return get_goal(tx, goal.id)


def update_goal(db: DbClient, goal_id: str, values: Dict[str, Any]) -> GoalView:
    _require_changes(values)
    with db.transaction() as tx:
        tx.update(EntityKind.GOAL, goal_id, values)
        return get_goal(tx, goal_id)


def delete_goal(db: DbClient, goal_id: str) -> None:
    deleted_at = db.soft_delete_cascade(EntityKind.GOAL, goal_id)
    logger.info("Soft-deleted goal %s at %s", goal_id, deleted_at.isoformat())


def create_task(db: DbClient, values: Dict[str, Any]) -> TaskView:
    completed = bool(values.get("completed") or False)
    with db.transaction() as tx:
        task = tx.create(
            EntityKind.TASK,
            {
                "goal_id": values["goal_id"],
                "name": values["name"],
                "urgency": values.get("urgency") or Urgency.MEDIUM,
                "todays_focus": bool(values.get("todays_focus") or False),
                "completed": completed,
                "completed_at": resolve_completed_at(
                    completed, previous=None, now=tx.clock.now()
                ),
            },
        )
        logger.info("Created task %s under goal %s", task.id, task.goal_id)
        return get_task(tx, task.id)


def update_task(db: DbClient, task_id: str, values: Dict[str, Any]) -> TaskView:
    values = {key: value for key, value in values.items() if value is not None}
    _require_changes(values)
    with db.transaction() as tx:
        existing = tx.get(EntityKind.TASK, task_id)
        if existing is not None and "completed" in values:
            values["completed_at"] = resolve_completed_at(
                values["completed"], previous=existing, now=tx.clock.now()
            )
        # A missing task is reported by the store.
        tx.update(EntityKind.TASK, task_id, values)
        return get_task(tx, task_id)


def delete_task(db: DbClient, task_id: str) -> None:
    db.soft_delete_cascade(EntityKind.TASK, task_id)
    logger.info("Soft-deleted task %s", task_id)
