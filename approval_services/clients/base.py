"""
InterServiceClient -- shared HTTP plumbing for calls to the auth service.

Every call carries the ``x-api-key`` inter-service header and a bounded
timeout.  Subclasses decide how failures map onto the workflow's
contracts: lookups raise ``DependencyFailureError`` when the service is
unreachable, notifications log and swallow.
"""

from __future__ import annotations

from typing import Any

import httpx

from approval_config.schema import AuthServiceSettings
from approval_kernel.exceptions import DependencyFailureError
from approval_kernel.logging_config import get_logger

logger = get_logger("services.clients")


class InterServiceClient:
    """Synchronous httpx client bound to one upstream service."""

    dependency_name = "auth_service"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
            headers={
                "Accept": "application/json",
                "x-api-key": api_key,
            },
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: AuthServiceSettings,
        transport: httpx.BaseTransport | None = None,
        **kwargs: Any,
    ):
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            timeout_seconds=settings.timeout_seconds,
            transport=transport,
            **kwargs,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _get_checked(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """GET that turns transport errors and 5xx into DependencyFailureError."""
        try:
            response = self._client.get(path, params=params)
        except httpx.TransportError as exc:
            logger.warning(
                "interservice_request_failed",
                extra={
                    "dependency": self.dependency_name,
                    "path": path,
                    "error": f"{type(exc).__name__}: {exc}",
                },
            )
            raise DependencyFailureError(self.dependency_name, str(exc) or type(exc).__name__) from exc

        if response.status_code >= 500:
            logger.warning(
                "interservice_server_error",
                extra={
                    "dependency": self.dependency_name,
                    "path": path,
                    "status_code": response.status_code,
                },
            )
            raise DependencyFailureError(
                self.dependency_name, f"HTTP {response.status_code} from {path}",
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None
