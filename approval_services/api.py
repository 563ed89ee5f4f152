"""
HTTP surface of the template approval workflow.

Routes (prefix ``/api/v1``):
    POST /template_approval/{template_id}           submit for approval
    POST /template_approval/{template_id}/approve   approve current stage
    POST /template_approval/{template_id}/reject    reject current stage
    GET  /template_approval/{template_id}           approval with stages
    GET  /template_logs/{template_id}               paged audit log
    GET  /health                                    liveness + database

The caller identity arrives in the ``X-User-Id`` / ``X-User-Email``
headers, set by the gateway that authenticated the request.  Workflow
errors map to responses through ``register_exception_handlers``; the
error body is ``{"error": <code>, "message": <text>}``.
"""

from __future__ import annotations

import time
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import Actor
from approval_kernel.exceptions import ApprovalWorkflowError
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.selectors.template_log_selector import TemplateLogSelector
from approval_kernel.services.lifecycle_manager import ApprovalLifecycleManager
from approval_services.schemas import (
    ApprovalResponse,
    AuditEntryResponse,
    DecisionRequest,
    ErrorResponse,
    HealthResponse,
    SubmitApprovalRequest,
    SubmitApprovalResponse,
    TemplateLogListResponse,
)

logger = get_logger("services.api")

router = APIRouter(prefix="/api/v1", tags=["template-approval"])


# =============================================================================
# Dependencies
# =============================================================================

def get_actor(
    x_user_id: UUID = Header(...),
    x_user_email: str = Header(...),
) -> Actor:
    """The authenticated caller, as forwarded by the gateway."""
    return Actor(user_id=x_user_id, email=x_user_email.strip().lower())


def get_manager(request: Request) -> ApprovalLifecycleManager:
    return request.app.state.container.lifecycle_manager


def _bind_request(request: Request, actor: Actor | None = None, template_id: UUID | None = None):
    return LogContext.bind(
        correlation_id=request.headers.get("x-correlation-id"),
        template_id=str(template_id) if template_id else None,
        actor_id=str(actor.user_id) if actor else None,
    )


# =============================================================================
# Template approval
# =============================================================================

@router.post(
    "/template_approval/{template_id}",
    response_model=SubmitApprovalResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def submit_for_approval(
    template_id: UUID,
    body: SubmitApprovalRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    manager: ApprovalLifecycleManager = Depends(get_manager),
):
    with _bind_request(request, actor, template_id):
        approval_id = manager.submit(
            template_id,
            body.priority,
            body.approver,
            body.reviewer,
            actor=actor,
            notes=body.notes,
        )
    return SubmitApprovalResponse(approval_id=approval_id, template_id=template_id)


@router.post(
    "/template_approval/{template_id}/approve",
    response_model=ApprovalResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def approve_template(
    template_id: UUID,
    request: Request,
    body: DecisionRequest | None = None,
    actor: Actor = Depends(get_actor),
    manager: ApprovalLifecycleManager = Depends(get_manager),
):
    with _bind_request(request, actor, template_id):
        view = manager.approve(template_id, actor, notes=body.notes if body else None)
    return ApprovalResponse.model_validate(view)


@router.post(
    "/template_approval/{template_id}/reject",
    response_model=ApprovalResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def reject_template(
    template_id: UUID,
    request: Request,
    body: DecisionRequest | None = None,
    actor: Actor = Depends(get_actor),
    manager: ApprovalLifecycleManager = Depends(get_manager),
):
    with _bind_request(request, actor, template_id):
        view = manager.reject(template_id, actor, notes=body.notes if body else None)
    return ApprovalResponse.model_validate(view)


@router.get(
    "/template_approval/{template_id}",
    response_model=ApprovalResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_template_approval(
    template_id: UUID,
    manager: ApprovalLifecycleManager = Depends(get_manager),
):
    return ApprovalResponse.model_validate(manager.get_approval(template_id))


# =============================================================================
# Audit log
# =============================================================================

@router.get("/template_logs/{template_id}", response_model=TemplateLogListResponse)
def list_template_logs(
    template_id: UUID,
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    session_factory = request.app.state.container.session_factory
    with session_scope(session_factory) as session:
        result = TemplateLogSelector(session).list_for_template(
            template_id, skip=(page - 1) * limit, limit=limit,
        )
    return TemplateLogListResponse(
        items=[AuditEntryResponse.model_validate(e) for e in result.entries],
        total=result.total,
        page=page,
        limit=limit,
    )


# =============================================================================
# Health
# =============================================================================

@router.get("/health", response_model=HealthResponse)
def health(request: Request):
    container = request.app.state.container
    db_status = "connected"
    try:
        with session_scope(container.session_factory) as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health_check_db_failed")
        db_status = "disconnected"

    scheduler = container.scheduler
    payload = HealthResponse(
        status="ok" if db_status == "connected" else "error",
        db=db_status,
        uptime_seconds=round(time.monotonic() - request.app.state.started_monotonic, 3),
        timestamp=container.clock.now(),
        scheduler_running=bool(scheduler and scheduler.is_running),
        last_sweep_at=scheduler.last_sweep_at if scheduler else None,
    )
    status_code = 200 if db_status == "connected" else 500
    return JSONResponse(status_code=status_code, content=payload.model_dump(mode="json"))


# =============================================================================
# Error mapping
# =============================================================================

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApprovalWorkflowError)
    async def workflow_error_handler(request: Request, exc: ApprovalWorkflowError):
        log = logger.error if exc.http_status >= 500 else logger.info
        log(
            "workflow_request_failed",
            extra={
                "path": request.url.path,
                "error_code": exc.code,
                "http_status": exc.http_status,
            },
        )
        return JSONResponse(
            status_code=exc.http_status,
            content={"error": exc.code, "message": str(exc)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "error": "INVALID_INPUT",
                "message": "Request validation failed",
                "details": details,
            },
        )
