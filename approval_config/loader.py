"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the YAML settings file and parses it into the frozen dataclasses of
``approval_config.schema``, then applies environment-variable overrides
for deployment-specific values (URLs, secrets, schedule).

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unparseable values (bad number, bad UUID, bad boolean)  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Mapping
from uuid import UUID

import yaml

from approval_config.schema import (
    AuthServiceSettings,
    DatabaseSettings,
    EscalationSettings,
    LoggingSettings,
    WorkflowSettings,
)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_PATH_ENV = "APPROVAL_WORKFLOW_CONFIG"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"Cannot parse boolean from {value!r}")


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    return DatabaseSettings(
        url=data["url"],
        echo=parse_bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
    )


def parse_auth_service(data: dict[str, Any]) -> AuthServiceSettings:
    return AuthServiceSettings(
        base_url=data["base_url"],
        api_key=data.get("api_key") or "",
        timeout_seconds=float(data.get("timeout_seconds", 5.0)),
        escalation_matrix_path=data.get("escalation_matrix_path", "/escalation_matrix/"),
        escalation_matrix_limit=int(data.get("escalation_matrix_limit", 20)),
        user_lookup_path=data.get("user_lookup_path", "/users/by-email"),
        notification_path=data.get("notification_path", "/notification/"),
    )


def parse_escalation(data: dict[str, Any]) -> EscalationSettings:
    defaults = EscalationSettings()
    interval = float(data.get("sweep_interval_seconds", defaults.sweep_interval_seconds))
    if interval <= 0:
        raise ValueError(f"sweep_interval_seconds must be positive, got {interval}")
    actor = data.get("system_actor_id")
    return EscalationSettings(
        sweep_interval_seconds=interval,
        enabled=parse_bool(data.get("enabled", True)),
        system_actor_id=UUID(str(actor)) if actor else defaults.system_actor_id,
    )


def parse_settings(data: dict[str, Any]) -> WorkflowSettings:
    """Parse the root settings mapping."""
    return WorkflowSettings(
        database=parse_database(data["database"]),
        auth_service=parse_auth_service(data["auth_service"]),
        escalation=parse_escalation(data.get("escalation") or {}),
        logging=LoggingSettings(
            level=str((data.get("logging") or {}).get("level", "INFO")).upper(),
        ),
    )


def apply_env_overrides(
    settings: WorkflowSettings,
    environ: Mapping[str, str],
) -> WorkflowSettings:
    """
    Overlay deployment values from the environment.

    Recognized variables: DATABASE_URL, AUTH_SERVICE_BASE_URL,
    INTERSERVICE_API_KEY, INTERSERVICE_TIMEOUT_SECONDS,
    ESCALATION_SWEEP_INTERVAL_SECONDS, ESCALATION_SWEEP_ENABLED,
    ESCALATION_SYSTEM_ACTOR_ID, LOG_LEVEL.
    """
    database = settings.database
    if environ.get("DATABASE_URL"):
        database = replace(database, url=environ["DATABASE_URL"])

    auth = settings.auth_service
    if environ.get("AUTH_SERVICE_BASE_URL"):
        auth = replace(auth, base_url=environ["AUTH_SERVICE_BASE_URL"])
    if environ.get("INTERSERVICE_API_KEY"):
        auth = replace(auth, api_key=environ["INTERSERVICE_API_KEY"])
    if environ.get("INTERSERVICE_TIMEOUT_SECONDS"):
        auth = replace(auth, timeout_seconds=float(environ["INTERSERVICE_TIMEOUT_SECONDS"]))

    escalation = settings.escalation
    if environ.get("ESCALATION_SWEEP_INTERVAL_SECONDS"):
        interval = float(environ["ESCALATION_SWEEP_INTERVAL_SECONDS"])
        if interval <= 0:
            raise ValueError(
                f"ESCALATION_SWEEP_INTERVAL_SECONDS must be positive, got {interval}"
            )
        escalation = replace(escalation, sweep_interval_seconds=interval)
    if environ.get("ESCALATION_SWEEP_ENABLED"):
        escalation = replace(
            escalation, enabled=parse_bool(environ["ESCALATION_SWEEP_ENABLED"]),
        )
    if environ.get("ESCALATION_SYSTEM_ACTOR_ID"):
        escalation = replace(
            escalation, system_actor_id=UUID(environ["ESCALATION_SYSTEM_ACTOR_ID"]),
        )

    logging_settings = settings.logging
    if environ.get("LOG_LEVEL"):
        logging_settings = replace(logging_settings, level=environ["LOG_LEVEL"].upper())

    return WorkflowSettings(
        database=database,
        auth_service=auth,
        escalation=escalation,
        logging=logging_settings,
    )


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> WorkflowSettings:
    """
    Load settings from YAML and apply environment overrides.

    The file is ``path`` if given, else ``$APPROVAL_WORKFLOW_CONFIG``, else
    the packaged ``defaults.yaml``.
    """
    env = os.environ if environ is None else environ
    if path is None:
        path = Path(env[CONFIG_PATH_ENV]) if env.get(CONFIG_PATH_ENV) else DEFAULT_CONFIG_PATH
    return apply_env_overrides(parse_settings(load_yaml_file(path)), env)
