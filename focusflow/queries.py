"""
Read paths over the entity store: filtered and ordered listings, the
today's-focus view, and goal statistics computed at read time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from focusflow.db import EntityStore, GoalRecord, OrderBy, ProjectRecord, TaskRecord
from focusflow.errors import NotFoundError
from focusflow.types import EntityKind, Urgency

TASK_ORDER = (
    OrderBy("todays_focus", descending=True),
    OrderBy("completed"),
    OrderBy("created_at", descending=True),
)
TODAYS_FOCUS_ORDER = (
    OrderBy("completed"),
    OrderBy("urgency", descending=True),
    OrderBy("created_at", descending=True),
)
CREATION_ORDER = (OrderBy("created_at"),)


@dataclass
class GoalView:
    goal: GoalRecord
    tasks: list[TaskRecord] = field(default_factory=list)
    project: Optional[ProjectRecord] = None

    @property
    def completed_count(self) -> int:
        return sum(1 for task in self.tasks if task.completed)

    @property
    def total_count(self) -> int:
        return len(self.tasks)


@dataclass
class ProjectView:
    project: ProjectRecord
    goals: list[GoalView] = field(default_factory=list)


@dataclass
class TaskView:
    task: TaskRecord
    goal: Optional[GoalRecord] = None
    project: Optional[ProjectRecord] = None


def _goal_views(db: EntityStore, goals: list[GoalRecord]) -> list[GoalView]:
    if not goals:
        return []
    wanted = {goal.id for goal in goals}
    by_goal: dict[str, list[TaskRecord]] = {goal_id: [] for goal_id in wanted}
    # One scan of the live task set keeps the per-goal ordering.
    for task in db.list(EntityKind.TASK, order=TASK_ORDER):
        if task.goal_id in wanted:
            by_goal[task.goal_id].append(task)
    return [GoalView(goal=goal, tasks=by_goal[goal.id]) for goal in goals]


def list_projects(db: EntityStore) -> list[ProjectView]:
    """Return every live project with its live goals and tasks."""
    with db.transaction() as tx:
        projects = tx.list(EntityKind.PROJECT, order=CREATION_ORDER)
        goals = tx.list(EntityKind.GOAL, order=CREATION_ORDER)
        views = {project.id: ProjectView(project=project) for project in projects}
        for goal_view in _goal_views(tx, [g for g in goals if g.project_id in views]):
            views[goal_view.goal.project_id].goals.append(goal_view)
        return list(views.values())


def get_project(db: EntityStore, project_id: str) -> ProjectView:
    with db.transaction() as tx:
        project = tx.get(EntityKind.PROJECT, project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        goals = tx.list(
            EntityKind.GOAL, {"project_id": project_id}, order=CREATION_ORDER
        )
        return ProjectView(project=project, goals=_goal_views(tx, goals))


def list_goals(db: EntityStore, project_id: Optional[str] = None) -> list[GoalView]:
    filters = {"project_id": project_id} if project_id else None
    with db.transaction() as tx:
        goals = tx.list(EntityKind.GOAL, filters, order=CREATION_ORDER)
        projects = {p.id: p for p in tx.list(EntityKind.PROJECT)}
        views = _goal_views(tx, goals)
        for view in views:
            view.project = projects.get(view.goal.project_id)
        return views


def get_goal(db: EntityStore, goal_id: str) -> GoalView:
    with db.transaction() as tx:
        goal = tx.get(EntityKind.GOAL, goal_id)
        if goal is None:
            raise NotFoundError("Goal", goal_id)
        tasks = tx.list(EntityKind.TASK, {"goal_id": goal_id}, order=TASK_ORDER)
        project = tx.get(EntityKind.PROJECT, goal.project_id)
        return GoalView(goal=goal, tasks=tasks, project=project)


def _with_context(db: EntityStore, tasks: list[TaskRecord]) -> list[TaskView]:
    goals = {g.id: g for g in db.list(EntityKind.GOAL)}
    projects = {p.id: p for p in db.list(EntityKind.PROJECT)}
    views = []
    for task in tasks:
        goal = goals.get(task.goal_id)
        project = projects.get(goal.project_id) if goal else None
        views.append(TaskView(task=task, goal=goal, project=project))
    return views


def list_tasks(
    db: EntityStore,
    *,
    goal_id: Optional[str] = None,
    urgency: Optional[Urgency] = None,
    todays_focus: Optional[bool] = None,
    completed: Optional[bool] = None,
) -> list[TaskView]:
    filters = {
        name: value
        for name, value in (
            ("goal_id", goal_id),
            ("urgency", urgency),
            ("todays_focus", todays_focus),
            ("completed", completed),
        )
        if value is not None
    }
    with db.transaction() as tx:
        return _with_context(tx, tx.list(EntityKind.TASK, filters, order=TASK_ORDER))


def todays_focus_tasks(db: EntityStore) -> list[TaskView]:
    with db.transaction() as tx:
        tasks = tx.list(
            EntityKind.TASK, {"todays_focus": True}, order=TODAYS_FOCUS_ORDER
        )
        return _with_context(tx, tasks)


def get_task(db: EntityStore, task_id: str) -> TaskView:
    with db.transaction() as tx:
        task = tx.get(EntityKind.TASK, task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return _with_context(tx, [task])[0]
