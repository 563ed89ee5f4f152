"""
approval_config -- single public entrypoint for workflow settings.

Responsibility:
    Provides runtime settings through ``get_active_settings()``.  Service
    wiring and scripts read configuration only through this function;
    the kernel never imports from ``approval_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configured YAML file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``KeyError`` / ``ValueError`` -- a required key is missing or a
      value cannot be parsed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from approval_config.loader import load_settings
from approval_config.schema import (
    AuthServiceSettings,
    DatabaseSettings,
    EscalationSettings,
    LoggingSettings,
    WorkflowSettings,
)

_logger = logging.getLogger("approval_kernel.config")

_active: WorkflowSettings | None = None
_lock = threading.Lock()


def get_active_settings(path: Path | None = None) -> WorkflowSettings:
    """Load (once) and return the active settings."""
    global _active
    with _lock:
        if _active is None:
            _active = load_settings(path)
            _logger.info(
                "workflow_settings_loaded",
                extra={
                    "auth_service": _active.auth_service.base_url,
                    "sweep_interval_seconds": _active.escalation.sweep_interval_seconds,
                    "sweep_enabled": _active.escalation.enabled,
                },
            )
        return _active


def reset_settings() -> None:
    """Forget the cached settings.  FOR TESTING ONLY."""
    global _active
    with _lock:
        _active = None


__all__ = [
    "AuthServiceSettings",
    "DatabaseSettings",
    "EscalationSettings",
    "LoggingSettings",
    "WorkflowSettings",
    "get_active_settings",
    "load_settings",
    "reset_settings",
]
