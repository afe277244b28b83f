"""
HTTP routes for the FocusFlow API.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from focusflow import __version__, crud, queries
from focusflow.config import get_settings
from focusflow.db import DbClient
from focusflow.dependencies import get_db_client
from focusflow.schemas import (
    ApiResponse,
    GoalCreate,
    GoalOut,
    GoalUpdate,
    HealthOut,
    ProjectCreate,
    ProjectOut,
    ProjectUpdate,
    SyncData,
    SyncRequest,
    TaskCreate,
    TaskDetail,
    TaskUpdate,
    goal_out,
    project_out,
    task_out,
)
from focusflow.sync import reconcile
from focusflow.types import Urgency

logger = logging.getLogger(__name__)

router = APIRouter()

_started_at = time.monotonic()


def ok(data) -> dict:
    return {"success": True, "data": data}


def _changes(payload) -> dict:
    return payload.model_dump(exclude_unset=True, exclude_none=True)


@router.get("/health", response_model=ApiResponse[HealthOut])
def health(db: DbClient = Depends(get_db_client)):
    return ok(
        HealthOut(
            status="ok",
            timestamp=datetime.now(timezone.utc),
            uptime=time.monotonic() - _started_at,
            environment=get_settings().environment,
            database="connected" if db.ping() else "disconnected",
            version=__version__,
        )
    )


@router.post("/sync", response_model=ApiResponse[SyncData])
def sync(payload: SyncRequest, db: DbClient = Depends(get_db_client)):
    """
    Reconcile a client snapshot and return the refreshed server state.
    """
    outcome = reconcile(db, payload)
    return ok(
        SyncData.model_validate(
            {
                "sync_results": asdict(outcome.sync_results),
                "server_state": [project_out(view) for view in outcome.server_state],
                "synced_at": outcome.synced_at,
            }
        )
    )


# Projects


@router.get("/projects", response_model=ApiResponse[list[ProjectOut]])
def list_projects(db: DbClient = Depends(get_db_client)):
    return ok([project_out(view) for view in queries.list_projects(db)])


@router.get("/projects/{project_id}", response_model=ApiResponse[ProjectOut])
def get_project(project_id: str, db: DbClient = Depends(get_db_client)):
    return ok(project_out(queries.get_project(db, project_id)))


@router.post("/projects", response_model=ApiResponse[ProjectOut], status_code=201)
def create_project(payload: ProjectCreate, db: DbClient = Depends(get_db_client)):
    return ok(project_out(crud.create_project(db, payload.model_dump())))


@router.put("/projects/{project_id}", response_model=ApiResponse[ProjectOut])
def update_project(
    project_id: str, payload: ProjectUpdate, db: DbClient = Depends(get_db_client)
):
    view = crud.update_project(db, project_id, _changes(payload))
    return ok(project_out(view))


@router.delete("/projects/{project_id}", status_code=204, response_class=Response)
def delete_project(project_id: str, db: DbClient = Depends(get_db_client)):
    crud.delete_project(db, project_id)
    return Response(status_code=204)


# Goals


@router.get("/goals", response_model=ApiResponse[list[GoalOut]])
def list_goals(
    project_id: Optional[str] = Query(None, alias="projectId"),
    db: DbClient = Depends(get_db_client),
):
    return ok([goal_out(view) for view in queries.list_goals(db, project_id)])


@router.get("/goals/{goal_id}", response_model=ApiResponse[GoalOut])
def get_goal(goal_id: str, db: DbClient = Depends(get_db_client)):
    return ok(goal_out(queries.get_goal(db, goal_id)))


@router.post("/goals", response_model=ApiResponse[GoalOut], status_code=201)
def create_goal(payload: GoalCreate, db: DbClient = Depends(get_db_client)):
    return ok(goal_out(crud.create_goal(db, payload.model_dump())))


@router.put("/goals/{goal_id}", response_model=ApiResponse[GoalOut])
def update_goal(goal_id: str, payload: GoalUpdate, db: DbClient = Depends(get_db_client)):
    return ok(goal_out(crud.update_goal(db, goal_id, _changes(payload))))


@router.delete("/goals/{goal_id}", status_code=204, response_class=Response)
def delete_goal(goal_id: str, db: DbClient = Depends(get_db_client)):
    crud.delete_goal(db, goal_id)
    return Response(status_code=204)


# Tasks


@router.get("/tasks/today", response_model=ApiResponse[list[TaskDetail]])
def todays_tasks(db: DbClient = Depends(get_db_client)):
    return ok([task_out(view) for view in queries.todays_focus_tasks(db)])


@router.get("/tasks", response_model=ApiResponse[list[TaskDetail]])
def list_tasks(
    goal_id: Optional[str] = Query(None, alias="goalId"),
    urgency: Optional[Urgency] = Query(None),
    todays_focus: Optional[bool] = Query(None, alias="todaysFocus"),
    completed: Optional[bool] = Query(None),
    db: DbClient = Depends(get_db_client),
):
    views = queries.list_tasks(
        db,
        goal_id=goal_id,
        urgency=urgency,
        todays_focus=todays_focus,
        completed=completed,
    )
    return ok([task_out(view) for view in views])


@router.get("/tasks/{task_id}", response_model=ApiResponse[TaskDetail])
def get_task(task_id: str, db: DbClient = Depends(get_db_client)):
    return ok(task_out(queries.get_task(db, task_id)))


@router.post("/tasks", response_model=ApiResponse[TaskDetail], status_code=201)
def create_task(payload: TaskCreate, db: DbClient = Depends(get_db_client)):
    values = payload.model_dump(exclude={"id"})
    return ok(task_out(crud.create_task(db, values)))


@router.put("/tasks/{task_id}", response_model=ApiResponse[TaskDetail])
def update_task(task_id: str, payload: TaskUpdate, db: DbClient = Depends(get_db_client)):
    return ok(task_out(crud.update_task(db, task_id, _changes(payload))))


@router.delete("/tasks/{task_id}", status_code=204, response_class=Response)
def delete_task(task_id: str, db: DbClient = Depends(get_db_client)):
    crud.delete_task(db, task_id)
    return Response(status_code=204)
