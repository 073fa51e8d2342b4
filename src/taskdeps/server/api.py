"""HTTP adapter over :class:`TaskService`.

The adapter trusts the calling infrastructure to have authenticated the
request already: the acting user is read from the ``X-Actor-Id`` and
``X-Actor-Role`` headers.  Each engine error kind maps to one HTTP status.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from ..config import EngineConfig, load_engine_config
from ..engine.model import Actor, UserRole
from ..engine.service import TaskService
from ..errors import ForbiddenError, TaskDepsError
from ..logging_setup import configure_logging


ERROR_STATUS: dict[str, int] = {
    "not_found": 404,
    "validation_error": 422,
    "self_dependency": 409,
    "duplicate_dependency": 409,
    "cyclic_dependency": 409,
    "dependencies_incomplete": 409,
    "forbidden": 403,
    "concurrent_modification_conflict": 409,
}


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class CreateTaskRequest(BaseModel):
    description: str
    owner_id: Optional[str] = None
    status: Optional[str] = None
    progress: Optional[int] = None
    due_date: Optional[str] = None


class AddDependencyRequest(BaseModel):
    depends_on: str


class CreateUserRequest(BaseModel):
    username: str
    email: str = ""
    role: str = "member"
    password_hash: str = ""


class TaskResponse(BaseModel):
    task: dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


class DependentsResponse(BaseModel):
    task_id: str
    dependents: list[str]
    transitive: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id header")
    try:
        role = UserRole(x_actor_role or UserRole.MEMBER.value)
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown actor role {x_actor_role!r}") from None
    return Actor(user_id=x_actor_id, role=role)


def create_task_router(service: TaskService) -> APIRouter:
    """Create the task/dependency router bound to *service*."""
    router = APIRouter(prefix="/api", tags=["tasks"])

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @router.get("/tasks", response_model=TaskListResponse)
    async def list_tasks(
        status: Optional[str] = Query(None),
        owner_id: Optional[str] = Query(None),
    ) -> TaskListResponse:
        tasks = service.list_tasks(status=status, owner_id=owner_id)
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    @router.post("/tasks", response_model=TaskResponse, status_code=201)
    async def create_task(body: CreateTaskRequest, actor: Actor = Depends(get_actor)) -> TaskResponse:
        owner = body.owner_id or actor.user_id
        if owner != actor.user_id and not actor.is_admin:
            raise ForbiddenError(
                f"User {actor.user_id} may not create tasks for {owner}",
                user_id=actor.user_id,
                owner_id=owner,
            )
        task = service.create_task(
            owner,
            body.description,
            status=body.status,
            progress=body.progress,
            due_date=body.due_date,
        )
        return TaskResponse(task=task.to_dict())

    @router.get("/tasks/{task_id}", response_model=TaskResponse)
    async def get_task(task_id: str) -> TaskResponse:
        return TaskResponse(task=service.get_task(task_id).to_dict())

    @router.patch("/tasks/{task_id}", response_model=TaskResponse)
    async def update_task(
        task_id: str,
        patch: dict[str, Any],
        actor: Actor = Depends(get_actor),
    ) -> TaskResponse:
        task = service.update_task(task_id, actor, patch)
        return TaskResponse(task=task.to_dict())

    @router.delete("/tasks/{task_id}")
    async def delete_task(task_id: str, actor: Actor = Depends(get_actor)) -> dict[str, str]:
        service.delete_task(task_id, actor)
        return {"status": "deleted"}

    @router.get("/tasks/{task_id}/effective-status")
    async def get_effective_status(task_id: str) -> dict[str, str]:
        return {"task_id": task_id, "effective_status": service.effective_status(task_id).value}

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    @router.get("/tasks/{task_id}/dependencies", response_model=TaskListResponse)
    async def list_dependencies(task_id: str) -> TaskListResponse:
        data = [t.to_dict() for t in service.list_dependencies(task_id)]
        return TaskListResponse(tasks=data, total=len(data))

    @router.post("/tasks/{task_id}/dependencies", status_code=201)
    async def add_dependency(
        task_id: str,
        body: AddDependencyRequest,
        actor: Actor = Depends(get_actor),
    ) -> dict[str, Any]:
        edge = service.add_dependency(task_id, body.depends_on, actor)
        return {"dependency": edge.to_dict()}

    @router.delete("/tasks/{task_id}/dependencies/{dep_id}")
    async def remove_dependency(
        task_id: str,
        dep_id: str,
        actor: Actor = Depends(get_actor),
    ) -> dict[str, Any]:
        removed = service.remove_dependency(task_id, dep_id, actor)
        return {"status": "ok", "removed": removed}

    @router.get("/tasks/{task_id}/dependents", response_model=DependentsResponse)
    async def list_dependents(task_id: str, transitive: bool = Query(False)) -> DependentsResponse:
        if transitive:
            ids = service.transitive_dependents(task_id)
        else:
            ids = [t.id for t in service.list_dependents(task_id)]
        return DependentsResponse(task_id=task_id, dependents=ids, transitive=transitive)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @router.get("/users")
    async def list_users() -> dict[str, Any]:
        return {"users": [u.to_public_dict() for u in service.list_users()]}

    @router.post("/users", status_code=201)
    async def create_user(body: CreateUserRequest, actor: Actor = Depends(get_actor)) -> dict[str, Any]:
        user = service.create_user(
            actor,
            body.username,
            email=body.email,
            role=body.role,
            password_hash=body.password_hash,
        )
        return {"user": user.to_public_dict()}

    return router


def create_app(state_dir: Path, config: Optional[EngineConfig] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        state_dir: Directory holding the entity store.
        config: Engine configuration; loaded from *state_dir* when omitted.

    Returns:
        Configured FastAPI app.
    """
    if config is None:
        config, err = load_engine_config(state_dir)
        if err:
            logger.warning("Failed to load config: {}", err)
    configure_logging(config.log_level)

    service = TaskService.open(state_dir, config)
    app = FastAPI(
        title="taskdeps",
        description="Task dependency and status consistency engine",
        version="1.0.0",
    )
    app.state.service = service

    @app.exception_handler(TaskDepsError)
    async def _engine_error(request: Request, exc: TaskDepsError) -> JSONResponse:
        status = ERROR_STATUS.get(exc.kind, 400)
        return JSONResponse(status_code=status, content=exc.to_dict())

    app.include_router(create_task_router(service))
    return app
