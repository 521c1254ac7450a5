"""
FastAPI integration API for the portfolio dashboard
Serves merged portfolio data and the Project Server write-back routes
Port: 3001 by default (API_PORT)
"""

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Any, Dict, Optional
from datetime import datetime, timezone
import logging

from portfolio_system.api.auth import build_verifier, require_principal
from portfolio_system.core.config import get_config
from portfolio_system.core.error_handler import ErrorHandler
from portfolio_system.core.errors import IntegrationError, NotConfigured, NotFound
from portfolio_system.core.section_logger import ErrorCodes, ps_logger
from portfolio_system.portfolio_data.service import PortfolioDataService
from portfolio_system.portfolio_data.write_back import WriteBackService
from portfolio_system.project_server.client import ProjectServerClient
from portfolio_system.ps_bridge.client import BridgeClient

logger = logging.getLogger(__name__)


# Pydantic models
# Required fields are checked by WriteBackService so callers get its 400 messages
class CacheInvalidateRequest(BaseModel):
    key: Optional[str] = None

class TaskUpdateRequest(BaseModel):
    percentComplete: Optional[float] = None
    fixedCost: Optional[float] = None

class ScheduleUpdateRequest(BaseModel):
    finishDate: Optional[str] = None

class ResourceAssignRequest(BaseModel):
    resourceId: Optional[str] = None
    taskId: Optional[str] = None
    resourceName: Optional[str] = None
    taskName: Optional[str] = None
    projectName: Optional[str] = None

class AssignAllBody(BaseModel):
    projectAssignments: Any = None

class ActionRequest(BaseModel):
    type: Optional[str] = None
    params: Optional[Dict[str, Any]] = None


def create_app(data_service: PortfolioDataService, write_back: WriteBackService,
               verifier=None, ps_client=None, config=None) -> FastAPI:
    """Wire an app around already-built services"""
    config = config or get_config()

    app = FastAPI(title="Portfolio Integration API", version="1.0.0")
    app.state.verifier = verifier or build_verifier(config)

    # Enable CORS for the dashboard dev servers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(IntegrationError)
    async def integration_error_handler(request: Request, exc: IntegrationError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "service": "portfolio-api",
            "psLive": data_service.is_live(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    api = APIRouter(prefix="/api", dependencies=[Depends(require_principal)])

    # ---- Portfolio reads ----

    @api.get("/projects")
    def list_projects():
        return data_service.get_projects()

    @api.get("/projects/{project_id}")
    def get_project(project_id: str):
        project = data_service.get_project_by_id(project_id)
        if project is None:
            raise NotFound("Project not found")
        return project

    @api.get("/portfolio")
    def portfolio():
        return data_service.get_portfolio()

    @api.get("/strategy")
    def strategy():
        return data_service.get_strategy()

    @api.get("/risks")
    def risks():
        return data_service.get_risks_with_summary()

    @api.get("/pm-scores")
    def pm_scores():
        return data_service.get_pm_scores()

    @api.get("/alerts")
    def alerts():
        return data_service.get_alerts()

    # ---- Project Server integration ----

    @api.get("/ps/status")
    def ps_status():
        connected = ps_client.test_connection() if ps_client is not None else False
        return {**data_service.get_status(), "connected": connected, "serverUrl": config.PS_URL}

    @api.post("/ps/cache/invalidate")
    def invalidate_cache(body: Optional[CacheInvalidateRequest] = None):
        key = body.key if body else None
        data_service.invalidate_cache(key)
        return {
            "success": True,
            "message": f"Cache key '{key}' invalidated" if key else "All cache cleared",
        }

    @api.post("/ps/tasks/{project_id}/{task_id}/update")
    def update_task(project_id: str, task_id: str, body: TaskUpdateRequest):
        return write_back.update_task(
            project_id, task_id,
            percent_complete=body.percentComplete,
            fixed_cost=body.fixedCost,
        )

    @api.post("/ps/projects/{project_id}/schedule")
    def update_schedule(project_id: str, body: ScheduleUpdateRequest):
        return write_back.update_schedule(project_id, body.finishDate)

    @api.post("/ps/projects/{project_id}/resources")
    def assign_resource(project_id: str, body: ResourceAssignRequest):
        return write_back.assign_resource(
            project_id,
            resource_id=body.resourceId,
            task_id=body.taskId,
            resource_name=body.resourceName,
            task_name=body.taskName,
            project_name=body.projectName,
        )

    @api.post("/ps/assign-all")
    def assign_all(body: AssignAllBody):
        return write_back.assign_all(body.projectAssignments)

    @api.get("/ps/bridge/health")
    def bridge_health():
        return write_back.bridge_health()

    @api.get("/ps/resources")
    def list_resources():
        if ps_client is None:
            raise NotConfigured("Project Server not configured")
        return [resource.to_dict() for resource in ps_client.list_resources()]

    # ---- Assistant actions ----

    @api.post("/chat/execute")
    def execute_action(body: ActionRequest):
        """Execute a write-back action the user confirmed in the assistant"""
        return write_back.execute_action(body.type, body.params)

    app.include_router(api)
    return app


def build_app(config=None) -> FastAPI:
    """Build clients and services from configuration"""
    config = config or get_config()
    error_handler = ErrorHandler(debug_mode=getattr(config, 'DEBUG', False))

    ps_client = ProjectServerClient.from_config(config) if config.ps_live() else None
    if ps_client is not None:
        connected = ps_client.test_connection()
        code = ErrorCodes.PS_CONNECTION_OK if connected else ErrorCodes.PS_CONNECTION_FAILED
        ps_logger.log_info(
            code,
            f"Project Server: {'Connected to ' + config.PS_URL if connected else 'Unreachable (using static data)'}",
        )

    data_service = PortfolioDataService.from_config(config, ps_client=ps_client, error_handler=error_handler)
    write_back = WriteBackService(
        ps_client=ps_client,
        data_service=data_service,
        bridge=BridgeClient.from_config(config),
        error_handler=error_handler,
    )
    return create_app(data_service, write_back, ps_client=ps_client, config=config)


def main():
    import uvicorn

    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    for issue in config.validate_config():
        logger.warning(f"Config: {issue}")
    logger.info(f"Configuration: {config.get_summary()}")

    uvicorn.run(build_app(config), host=config.API_HOST, port=config.API_PORT)


if __name__ == "__main__":
    main()
