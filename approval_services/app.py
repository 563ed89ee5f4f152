"""
Application wiring for the template approval workflow service.

``build_container()`` turns ``WorkflowSettings`` into a ready-to-use set of
collaborators: database engine and session factory, the auth-service
clients, the lifecycle manager, the escalation scanner and its scheduler.
``create_app()`` mounts the API and ties the scheduler to the process
lifecycle: started on startup, stopped on shutdown.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from fastapi import FastAPI
from sqlalchemy.orm import Session, sessionmaker

from approval_batch.scheduler import EscalationSweepScheduler
from approval_config import WorkflowSettings, get_active_settings
from approval_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import configure_logging, get_logger
from approval_kernel.services.escalation_scanner import EscalationScanner
from approval_kernel.services.lifecycle_manager import ApprovalLifecycleManager
from approval_services.api import register_exception_handlers, router
from approval_services.clients import (
    EscalationMatrixClient,
    NotificationClient,
    UserDirectoryClient,
)
from approval_services.document_store import SqlDocumentStore

logger = get_logger("services.app")


@dataclass
class WorkflowContainer:
    """Everything a running service needs, built once per process."""

    session_factory: sessionmaker[Session]
    lifecycle_manager: ApprovalLifecycleManager
    scanner: EscalationScanner
    scheduler: EscalationSweepScheduler | None
    clock: Clock
    start_scheduler: bool = True
    closeables: list[Any] = field(default_factory=list)

    def close(self) -> None:
        for resource in self.closeables:
            resource.close()


def build_container(settings: WorkflowSettings, clock: Clock | None = None) -> WorkflowContainer:
    clock = clock or SystemClock()
    configure_logging(level=settings.logging.level)

    init_engine_from_url(
        settings.database.url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
    )
    create_tables()

    session_factory = get_session_factory()
    auth = settings.auth_service
    rules = EscalationMatrixClient.from_settings(auth)
    users = UserDirectoryClient.from_settings(auth)
    notifications = NotificationClient.from_settings(auth)

    manager = ApprovalLifecycleManager(
        session_factory=session_factory,
        rule_provider=rules,
        user_directory=users,
        dispatcher=notifications,
        document_store=SqlDocumentStore(clock),
        clock=clock,
    )
    scanner = EscalationScanner(
        session_factory=session_factory,
        user_directory=users,
        dispatcher=notifications,
        system_actor_id=settings.escalation.system_actor_id,
        clock=clock,
    )
    scheduler = EscalationSweepScheduler(
        scanner,
        interval_seconds=settings.escalation.sweep_interval_seconds,
        clock=clock,
    )
    return WorkflowContainer(
        session_factory=session_factory,
        lifecycle_manager=manager,
        scanner=scanner,
        scheduler=scheduler,
        clock=clock,
        start_scheduler=settings.escalation.enabled,
        closeables=[rules, users, notifications],
    )


def create_app(container: WorkflowContainer | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        container: Pre-built collaborators (tests).  When omitted the
            container is built from ``get_active_settings()`` on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.container is None:
            app.state.container = build_container(get_active_settings())
        active: WorkflowContainer = app.state.container
        app.state.started_monotonic = time.monotonic()

        if active.scheduler is not None and active.start_scheduler:
            active.scheduler.start()
        logger.info("approval_service_started")

        yield

        if active.scheduler is not None:
            active.scheduler.stop()
        active.close()
        logger.info("approval_service_stopped")

    app = FastAPI(
        title="Template Approval Workflow",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container
    app.state.started_monotonic = time.monotonic()
    app.include_router(router)
    register_exception_handlers(app)
    return app
