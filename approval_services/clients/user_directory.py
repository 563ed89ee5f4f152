"""
UserDirectoryClient -- resolve an email to a user via the auth service.

``GET {base}/users/by-email?email=...``: 200 with ``{"data": {"id", "email",
"name"}}`` (or the bare object), 404 when no such user.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import httpx

from approval_kernel.domain.approval import UserRecord
from approval_kernel.logging_config import get_logger
from approval_services.clients.base import InterServiceClient

logger = get_logger("services.clients.user_directory")


class UserDirectoryClient(InterServiceClient):
    dependency_name = "user_directory"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 5.0,
        transport: httpx.BaseTransport | None = None,
        path: str = "/users/by-email",
    ):
        super().__init__(base_url, api_key, timeout_seconds, transport)
        self._path = path

    @classmethod
    def from_settings(cls, settings, transport=None, **kwargs):
        return super().from_settings(
            settings, transport=transport, path=settings.user_lookup_path, **kwargs,
        )

    def find_by_email(self, email: str) -> UserRecord | None:
        response = self._get_checked(self._path, params={"email": email})
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "user_lookup_rejected",
                extra={"status_code": response.status_code, "email": email},
            )
            return None

        body = self._json(response)
        payload: Any = body.get("data", body) if isinstance(body, dict) else None
        if not isinstance(payload, dict) or not payload.get("id"):
            return None
        try:
            user_id = UUID(str(payload["id"]))
        except ValueError:
            logger.warning("user_lookup_malformed_id", extra={"email": email})
            return None
        return UserRecord(
            user_id=user_id,
            email=payload.get("email") or email,
            name=payload.get("name"),
        )
