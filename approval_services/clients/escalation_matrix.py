"""
EscalationMatrixClient -- the escalation rule provider over HTTP.

``GET {base}/escalation_matrix/?limit=N`` returns
``{"data": {"list": [...]}}`` where each item carries ``channelId``,
``status``, ``priority``, ``level``, ``roleId``, ``timeLimit``,
``warningOffset`` and ``escalators``.  Filtering by channel, status and
priority happens in ``approval_kernel.domain.routing``.

Unreachable service or 5xx -> ``DependencyFailureError``.  Any other
failure (4xx, unparseable body, malformed items) yields fewer or no rules,
which the lifecycle manager reports as ``RulesNotConfiguredError``.
"""

from __future__ import annotations

from typing import Any

import httpx

from approval_kernel.domain.approval import StageRule
from approval_kernel.logging_config import get_logger
from approval_services.clients.base import InterServiceClient

logger = get_logger("services.clients.escalation_matrix")


def _escalator_email(item: Any) -> str | None:
    if isinstance(item, str):
        return item
    if isinstance(item, dict) and isinstance(item.get("email"), str):
        return item["email"]
    return None


def parse_rule(item: dict[str, Any]) -> StageRule:
    """Build a StageRule from one matrix item.  Raises KeyError/ValueError/TypeError."""
    escalators = tuple(
        email for email in (_escalator_email(e) for e in item.get("escalators") or ())
        if email
    )
    return StageRule(
        channel_id=str(item["channelId"]),
        priority=str(item["priority"]).upper(),
        level=int(item["level"]),
        role_id=str(item["roleId"]),
        time_limit=int(item["timeLimit"]),
        warning_offset=int(item["warningOffset"]),
        escalators=escalators,
        status=str(item.get("status", "ACTIVE")).upper(),
    )


class EscalationMatrixClient(InterServiceClient):
    dependency_name = "escalation_matrix"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 5.0,
        transport: httpx.BaseTransport | None = None,
        path: str = "/escalation_matrix/",
        limit: int = 20,
    ):
        super().__init__(base_url, api_key, timeout_seconds, transport)
        self._path = path
        self._limit = limit

    @classmethod
    def from_settings(cls, settings, transport=None, **kwargs):
        return super().from_settings(
            settings,
            transport=transport,
            path=settings.escalation_matrix_path,
            limit=settings.escalation_matrix_limit,
            **kwargs,
        )

    def get_rules(self, channel_id: str) -> list[StageRule]:
        response = self._get_checked(self._path, params={"limit": self._limit})
        if response.status_code >= 400:
            logger.warning(
                "escalation_matrix_rejected",
                extra={"status_code": response.status_code, "channel_id": channel_id},
            )
            return []

        body = self._json(response)
        data = body.get("data") if isinstance(body, dict) else None
        items = data.get("list") if isinstance(data, dict) else None
        if not isinstance(items, list):
            logger.warning(
                "escalation_matrix_malformed",
                extra={"channel_id": channel_id},
            )
            return []

        rules: list[StageRule] = []
        for item in items:
            try:
                rules.append(parse_rule(item))
            except (KeyError, ValueError, TypeError, AttributeError) as exc:
                logger.warning(
                    "escalation_rule_skipped",
                    extra={"channel_id": channel_id, "error": repr(exc)},
                )
        logger.debug(
            "escalation_matrix_fetched",
            extra={"channel_id": channel_id, "rule_count": len(rules)},
        )
        return rules
