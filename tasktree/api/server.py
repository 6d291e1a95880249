"""
HTTP API for TaskTree.

Exposes MoveNode as POST /api/tasks/reorder, the project list as GET
/api/projects, and for each project its flat task list (GET
/api/projects/{project_id}/tree) and activity log (GET
/api/projects/{project_id}/activity). Move errors keep the MoveNode response
body and are mapped onto HTTP status codes.
"""

from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from tasktree.api.move_handler import MoveNodeHandler
from tasktree.api.schemas import (
    ActivityResponse,
    ErrorCode,
    MoveNodeRequest,
    MoveNodeResponse,
    ProjectsResponse,
    TreeResponse,
)
from tasktree.config import Config
from tasktree.database import DatabaseManager, get_database_manager
from tasktree.logging_config import get_logger
from tasktree.services.activity_service import ActivityService
from tasktree.services.project_service import ProjectService
from tasktree.services.task_service import ProjectNotFoundError, TaskService

logger = get_logger(__name__)

STATUS_BY_ERROR_CODE = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CROSS_SCOPE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.CYCLE_REJECTED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.TRANSPORT_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

router = APIRouter(prefix="/api")


def get_handler(request: Request) -> MoveNodeHandler:
    return request.app.state.move_handler


def get_db_manager(request: Request) -> DatabaseManager:
    return request.app.state.db_manager


@router.post("/tasks/reorder", response_model=MoveNodeResponse)
async def reorder_task(
    payload: MoveNodeRequest,
    x_user_id: Optional[str] = Header(default=None),
    handler: MoveNodeHandler = Depends(get_handler),
) -> JSONResponse:
    """Move a task among its siblings or underneath another parent."""
    response = await handler.move_node(payload, actor_id=x_user_id)

    status_code = status.HTTP_200_OK
    if not response.success and response.error is not None:
        status_code = STATUS_BY_ERROR_CODE.get(response.error.code, status.HTTP_400_BAD_REQUEST)

    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json", by_alias=True),
    )


@router.get("/projects/{project_id}/tree", response_model=TreeResponse)
async def get_project_tree(
    project_id: UUID,
    db_manager: DatabaseManager = Depends(get_db_manager),
) -> JSONResponse:
    """Return every task of a project, parents before children."""
    try:
        async with db_manager.get_session() as session:
            store = await TaskService(session).get_tree(project_id)
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    tree = TreeResponse(project_id=project_id, nodes=[node for node, _ in store.walk()])
    return JSONResponse(content=tree.model_dump(mode="json", by_alias=True))


@router.get("/projects", response_model=ProjectsResponse)
async def list_projects(db_manager: DatabaseManager = Depends(get_db_manager)) -> JSONResponse:
    """Return every project, oldest first."""
    async with db_manager.get_session() as session:
        projects = await ProjectService(session).get_all_projects()

    body = ProjectsResponse(projects=projects)
    return JSONResponse(content=body.model_dump(mode="json", by_alias=True))


@router.get("/projects/{project_id}/activity", response_model=ActivityResponse)
async def get_project_activity(
    project_id: UUID,
    limit: int = Query(default=50, ge=1, le=500),
    db_manager: DatabaseManager = Depends(get_db_manager),
) -> JSONResponse:
    """Return the most recent activity entries of a project, newest first."""
    async with db_manager.get_session() as session:
        if await ProjectService(session).get_project_by_id(project_id) is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Project with id {project_id} not found",
            )
        activities = await ActivityService(session).get_for_project(project_id, limit=limit)

    body = ActivityResponse(project_id=project_id, activities=activities)
    return JSONResponse(content=body.model_dump(mode="json", by_alias=True))

def create_app(
    db_manager: Optional[DatabaseManager] = None,
    handler: Optional[MoveNodeHandler] = None,
    config: Optional[Config] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        db_manager: Database manager, the global one if not given. It is
            initialized on startup unless it already is, and closed on
            shutdown only in that case.
        handler: MoveNode handler, built from config if not given
        config: Configuration, loaded from the default location if not given

    Returns:
        FastAPI application
    """
    config = config or Config()
    if db_manager is None:
        db_manager = get_database_manager(config.get_database_config()['url'])

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_database = not db_manager.is_initialized
        if owns_database:
            await db_manager.initialize()
        async with db_manager.get_session() as session:
            await ProjectService(session).ensure_default_project()
        logger.info("TaskTree API started")
        yield
        if owns_database:
            await db_manager.close()
        logger.info("TaskTree API stopped")

    app = FastAPI(title="TaskTree", lifespan=lifespan)
    app.state.db_manager = db_manager
    app.state.move_handler = handler or MoveNodeHandler.from_config(db_manager, config)
    app.include_router(router)
    return app
