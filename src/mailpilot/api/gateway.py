"""API Gateway - FastAPI application for inbound mail, action links and activity."""

import logging
import os
import threading
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, List, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mailpilot import __version__
from mailpilot.actions.schemas import ConfirmationResult
from mailpilot.api.schemas import ErrorResponse, InboundMessageRequest, InboundResponse
from mailpilot.api.service import InboundProcessingService
from mailpilot.common.exceptions import MailPilotException
from mailpilot.core.types import AgentRole
from mailpilot.governance.audit import AgentStep
from mailpilot.monitoring import MetricsSummary

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("mailpilot_api")


class ServiceManager:
    """Thread-safe service singleton manager."""

    _instance: Optional[InboundProcessingService] = None
    _lock = threading.Lock()
    _initialized = False

    @classmethod
    def get_service(cls) -> InboundProcessingService:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = InboundProcessingService.from_config()
                    cls._initialized = True
                    logger.info("InboundProcessingService initialized")
        return cls._instance

    @classmethod
    def shutdown(cls) -> None:
        with cls._lock:
            if cls._instance is not None:
                cls._instance.shutdown()
                cls._instance = None
                cls._initialized = False
                logger.info("InboundProcessingService shutdown complete")


def get_service() -> InboundProcessingService:
    """FastAPI dependency for the processing service."""
    return ServiceManager.get_service()


# Error code -> HTTP status
STATUS_BY_CODE = {
    "CONFIRMATION_INVALID": 403,
    "CONFIRMATION_EXPIRED": 410,
    "ACTION_NOT_FOUND": 404,
    "INVALID_TRANSITION": 409,
    "DELIBERATION_EXHAUSTED": 422,
    "CONFIG_ERROR": 500,
}


def get_cors_origins() -> List[str]:
    """Allowed CORS origins from MAILPILOT_CORS_ORIGINS (comma-separated)."""
    origins_env = os.environ.get("MAILPILOT_CORS_ORIGINS", "")
    if origins_env:
        return [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    return []


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("MailPilot API Gateway starting up...")
    yield
    logger.info("MailPilot API Gateway shutting down...")
    ServiceManager.shutdown()

    from mailpilot.orchestration.deliberation import shutdown_executor
    shutdown_executor()

    logger.info("MailPilot API Gateway shutdown complete")


environment = os.environ.get("MAILPILOT_ENVIRONMENT", "development")
enable_docs_default = "false" if environment == "production" else "true"
enable_docs = os.environ.get("MAILPILOT_ENABLE_DOCS", enable_docs_default).lower() == "true"

app = FastAPI(
    title="MailPilot API Gateway",
    description="Turns inbound email into confirmed, auditable actions.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if enable_docs else None,
    redoc_url="/redoc" if enable_docs else None,
)

cors_origins = get_cors_origins()
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["POST", "GET"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(MailPilotException)
async def mailpilot_error_handler(request: Request, exc: MailPilotException) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    status_code = STATUS_BY_CODE.get(exc.code, 400)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        exc.message,
        extra={"request_id": request_id, "error_code": exc.code},
    )
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=exc.code.lower(),
            message=exc.message,
            request_id=request_id,
            details=exc.details,
        ).model_dump(mode="json"),
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    logger.warning(
        "Validation error",
        extra={"request_id": request_id, "error": str(exc)}
    )
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="validation_error",
            message=str(exc),
            request_id=request_id,
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Logs the full exception but returns a sanitized message."""
    request_id = getattr(request.state, "request_id", None)
    logger.exception(
        "Unexpected error",
        extra={"request_id": request_id, "error_type": type(exc).__name__}
    )
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="internal_error",
            message="An unexpected error occurred",
            request_id=request_id,
        ).model_dump(),
    )


# =============================================================================
# MIDDLEWARE
# =============================================================================

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to each request for tracing."""
    request_id = f"req_{uuid4().hex[:12]}"
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.post(
    "/inbound",
    response_model=InboundResponse,
    responses={
        400: {"description": "Invalid request", "model": ErrorResponse},
        422: {"description": "No usable agent vote", "model": ErrorResponse},
    },
    summary="Process an inbound email",
)
def process_inbound(
    request: InboundMessageRequest,
    service: InboundProcessingService = Depends(get_service),
) -> InboundResponse:
    logger.info("Processing inbound message", extra={"message_id": request.message_id})
    return service.process(request.to_domain())


@app.get(
    "/a/{token}",
    response_model=ConfirmationResult,
    responses={
        403: {"description": "Invalid signature", "model": ErrorResponse},
        410: {"description": "Link expired", "model": ErrorResponse},
    },
    summary="Show the action behind a signed link",
)
def view_action_link(
    token: str,
    service: InboundProcessingService = Depends(get_service),
) -> ConfirmationResult:
    return service.state_machine.inspect(token)


@app.post(
    "/a/{token}",
    response_model=ConfirmationResult,
    responses={
        403: {"description": "Invalid signature", "model": ErrorResponse},
        410: {"description": "Link expired", "model": ErrorResponse},
    },
    summary="Perform the transition a signed link authorizes",
)
def follow_action_link(
    token: str,
    service: InboundProcessingService = Depends(get_service),
) -> ConfirmationResult:
    result = service.state_machine.handle(token)
    logger.info(
        "Action link followed",
        extra={"action_id": result.action_id, "outcome": result.outcome.value},
    )
    return result


@app.get("/activity", response_model=List[AgentStep], summary="List recent agent steps")
def list_activity(
    deliberation_id: Optional[str] = None,
    role: Optional[AgentRole] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    service: InboundProcessingService = Depends(get_service),
) -> List[AgentStep]:
    return service.step_log.list_steps(deliberation_id=deliberation_id, role=role, limit=limit)


@app.get("/activity/metrics", response_model=MetricsSummary, summary="Deliberation metrics")
def activity_metrics(
    since: Optional[datetime] = None,
    limit: int = Query(default=500, ge=1, le=10000),
    service: InboundProcessingService = Depends(get_service),
) -> MetricsSummary:
    return service.metrics.compute(since=since, limit=limit)


@app.get("/activity/{step_id}", response_model=AgentStep, summary="Agent step detail")
def get_activity(
    step_id: str,
    service: InboundProcessingService = Depends(get_service),
) -> AgentStep:
    step = service.step_log.get_step(step_id)
    if step is None:
        raise HTTPException(status_code=404, detail="step_not_found")
    return step


@app.get("/health")
async def health_check() -> dict:
    return {"status": "healthy", "service": "mailpilot-gateway"}


@app.get("/ready")
async def readiness_check() -> dict:
    """Returns 503 until the service singleton is initialized."""
    if not ServiceManager._initialized:
        raise HTTPException(status_code=503, detail="not_ready")
    return {"status": "ready", "service": "mailpilot-gateway"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mailpilot.api.gateway:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
