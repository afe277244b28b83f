"""
Pydantic schemas for the FocusFlow API. Fields are snake_case in Python and
camelCase on the wire.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from focusflow.queries import GoalView, ProjectView, TaskView
from focusflow.types import Urgency

T = TypeVar("T")

PROJECT_NAME_MAX = 255
GOAL_NAME_MAX = 255
TASK_NAME_MAX = 500


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(CamelModel, Generic[T]):
    success: bool = True
    data: T


# Requests


class ProjectCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=PROJECT_NAME_MAX)


class ProjectUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=PROJECT_NAME_MAX)


class GoalCreate(CamelModel):
    project_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=GOAL_NAME_MAX)


class GoalUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=GOAL_NAME_MAX)
    project_id: Optional[str] = Field(None, min_length=1)


class TaskCreate(CamelModel):
    # Accepted from clients that echo local ids, never used.
    id: Optional[str] = None
    goal_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=TASK_NAME_MAX)
    urgency: Optional[Urgency] = None
    todays_focus: Optional[bool] = None
    completed: Optional[bool] = None


class TaskUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=TASK_NAME_MAX)
    urgency: Optional[Urgency] = None
    todays_focus: Optional[bool] = None
    completed: Optional[bool] = None
    goal_id: Optional[str] = Field(None, min_length=1)


class SyncTask(CamelModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=TASK_NAME_MAX)
    completed: bool
    urgency: Urgency
    todays_focus: bool
    completed_at: Optional[datetime] = None


class SyncGoal(CamelModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=GOAL_NAME_MAX)
    tasks: list[SyncTask] = Field(default_factory=list)


class SyncProject(CamelModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=PROJECT_NAME_MAX)
    goals: list[SyncGoal] = Field(default_factory=list)


class SyncRequest(CamelModel):
    projects: list[SyncProject]
    last_synced_at: Optional[datetime] = None


# Responses


class ProjectSummary(CamelModel):
    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None


class GoalSummary(CamelModel):
    id: str
    project_id: str
    name: str
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None
    project: Optional[ProjectSummary] = None


class TaskOut(CamelModel):
    id: str
    goal_id: str
    name: str
    completed: bool
    urgency: Urgency
    todays_focus: bool
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class TaskDetail(TaskOut):
    goal: Optional[GoalSummary] = None


class GoalOut(GoalSummary):
    tasks: list[TaskOut] = Field(default_factory=list)
    completed_count: int = 0
    total_count: int = 0


class ProjectOut(ProjectSummary):
    goals: list[GoalOut] = Field(default_factory=list)


class SyncCountsOut(CamelModel):
    projects: int = 0
    goals: int = 0
    tasks: int = 0


class SyncConflictOut(CamelModel):
    entity: str
    id: str
    server_updated_at: datetime


class SyncResultsOut(CamelModel):
    created: SyncCountsOut
    updated: SyncCountsOut
    conflicts: list[SyncConflictOut] = Field(default_factory=list)


class SyncData(CamelModel):
    sync_results: SyncResultsOut
    server_state: list[ProjectOut]
    synced_at: datetime


class HealthOut(CamelModel):
    status: str
    timestamp: datetime
    uptime: float
    environment: str
    database: str
    version: str


def goal_out(view: GoalView) -> GoalOut:
    payload = asdict(view.goal)
    payload["tasks"] = [asdict(task) for task in view.tasks]
    payload["completed_count"] = view.completed_count
    payload["total_count"] = view.total_count
    if view.project is not None:
        payload["project"] = asdict(view.project)
    return GoalOut.model_validate(payload)


def project_out(view: ProjectView) -> ProjectOut:
    payload = asdict(view.project)
    payload["goals"] = [goal_out(goal) for goal in view.goals]
    return ProjectOut.model_validate(payload)


def task_out(view: TaskView) -> TaskDetail:
    payload = asdict(view.task)
    if view.goal is not None:
        goal = asdict(view.goal)
        if view.project is not None:
            goal["project"] = asdict(view.project)
        payload["goal"] = goal
    return TaskDetail.model_validate(payload)
