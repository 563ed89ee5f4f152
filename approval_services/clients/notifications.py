"""
NotificationClient -- fire-and-forget delivery of workflow notifications.

``POST {base}/notification/`` with ``{"type", "templateId", "sendTo",
"fromUser"}``.  Timeouts, transport errors and error responses are logged
and swallowed; ``create()`` never raises.
"""

from __future__ import annotations

import httpx

from approval_kernel.domain.approval import NotificationEvent
from approval_kernel.logging_config import get_logger
from approval_services.clients.base import InterServiceClient

logger = get_logger("services.clients.notifications")


def notification_body(event: NotificationEvent) -> dict[str, str | None]:
    return {
        "type": event.type.value,
        "templateId": str(event.template_id),
        "sendTo": str(event.send_to),
        "fromUser": str(event.from_user) if event.from_user else None,
    }


class NotificationClient(InterServiceClient):
    dependency_name = "notifications"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 5.0,
        transport: httpx.BaseTransport | None = None,
        path: str = "/notification/",
    ):
        super().__init__(base_url, api_key, timeout_seconds, transport)
        self._path = path

    @classmethod
    def from_settings(cls, settings, transport=None, **kwargs):
        return super().from_settings(
            settings, transport=transport, path=settings.notification_path, **kwargs,
        )

    def create(self, event: NotificationEvent) -> None:
        log_fields = {
            "notification_type": event.type.value,
            "template_id": str(event.template_id),
            "send_to": str(event.send_to),
        }
        try:
            response = self._client.post(self._path, json=notification_body(event))
        except httpx.HTTPError as exc:
            logger.warning(
                "notification_delivery_failed",
                extra={**log_fields, "error": f"{type(exc).__name__}: {exc}"},
            )
            return

        if response.status_code >= 400:
            logger.warning(
                "notification_delivery_failed",
                extra={**log_fields, "status_code": response.status_code},
            )
            return
        logger.info("notification_sent", extra=log_fields)
