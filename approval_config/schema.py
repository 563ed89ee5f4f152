"""
Configuration schema (``approval_config.schema``).

Responsibility
--------------
Frozen dataclasses describing the workflow engine's runtime settings:
database connection, the auth service that hosts the escalation matrix,
user directory and notification endpoints, the escalation sweep, and
logging.

Architecture position
---------------------
**Config layer** -- pure data.  No I/O.  Instances are produced by
``approval_config.loader`` and handed to the service wiring in
``approval_services.app`` and ``scripts/``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class AuthServiceSettings:
    """The auth service hosts the escalation matrix, users and notifications."""

    base_url: str
    api_key: str = ""
    timeout_seconds: float = 5.0
    escalation_matrix_path: str = "/escalation_matrix/"
    escalation_matrix_limit: int = 20
    user_lookup_path: str = "/users/by-email"
    notification_path: str = "/notification/"


@dataclass(frozen=True)
class EscalationSettings:
    """Escalation sweep schedule.

    ``system_actor_id`` is recorded as ``performed_by`` on ESCALATED audit
    entries.
    """

    sweep_interval_seconds: float = 60.0
    enabled: bool = True
    system_actor_id: UUID = UUID("00000000-0000-0000-0000-000000000000")


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class WorkflowSettings:
    """Root settings object."""

    database: DatabaseSettings
    auth_service: AuthServiceSettings
    escalation: EscalationSettings = field(default_factory=EscalationSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
