"""
Tests for the auth-service HTTP clients (approval_services.clients).

All traffic goes through ``httpx.MockTransport``; no network.
"""

import json
from uuid import uuid4

import httpx
import pytest

from approval_config.schema import AuthServiceSettings
from approval_kernel.domain.approval import NotificationEvent, NotificationType
from approval_kernel.domain.ports import (
    EscalationRuleProvider,
    NotificationDispatcher,
    UserDirectory,
)
from approval_kernel.exceptions import DependencyFailureError
from approval_services.clients import (
    EscalationMatrixClient,
    NotificationClient,
    UserDirectoryClient,
)
from approval_services.clients.escalation_matrix import parse_rule

BASE_URL = "http://auth.test/api/v1"
API_KEY = "secret-key"


def _settings(**overrides) -> AuthServiceSettings:
    values = {"base_url": BASE_URL, "api_key": API_KEY, "timeout_seconds": 2.0}
    values.update(overrides)
    return AuthServiceSettings(**values)


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status_code=200, body=None, exc: Exception | None = None):
        self.status_code = status_code
        self.body = body
        self.exc = exc
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        if isinstance(self.body, str):
            return httpx.Response(self.status_code, text=self.body)
        return httpx.Response(self.status_code, json=self.body)


def _matrix_item(**overrides):
    item = {
        "channelId": "channel-1",
        "status": "ACTIVE",
        "priority": "MEDIUM",
        "level": 1,
        "roleId": "role-approver",
        "timeLimit": 60,
        "warningOffset": 40,
        "escalators": ["e1@x.com"],
    }
    item.update(overrides)
    return item


# =============================================================================
# Escalation matrix
# =============================================================================


class TestEscalationMatrixClient:
    def _client(self, recorder):
        return EscalationMatrixClient.from_settings(
            _settings(), transport=httpx.MockTransport(recorder),
        )

    def test_satisfies_port(self):
        with self._client(Recorder(body={})) as client:
            assert isinstance(client, EscalationRuleProvider)

    def test_fetches_rules_with_api_key_and_limit(self):
        recorder = Recorder(body={"data": {"list": [_matrix_item(), _matrix_item(level=2)]}})
        with self._client(recorder) as client:
            rules = client.get_rules("channel-1")

        assert [r.level for r in rules] == [1, 2]
        request = recorder.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/api/v1/escalation_matrix/"
        assert request.url.params["limit"] == "20"
        assert request.headers["x-api-key"] == API_KEY

    def test_escalator_objects_are_accepted(self):
        item = _matrix_item(escalators=[{"email": "e1@x.com"}, "e2@x.com", {"id": 3}])
        recorder = Recorder(body={"data": {"list": [item]}})
        with self._client(recorder) as client:
            rule = client.get_rules("channel-1")[0]
        assert rule.escalators == ("e1@x.com", "e2@x.com")

    def test_malformed_items_are_skipped(self, captured_logs):
        broken = _matrix_item()
        del broken["timeLimit"]
        recorder = Recorder(body={"data": {"list": [broken, _matrix_item(level="x"), _matrix_item()]}})
        with self._client(recorder) as client:
            rules = client.get_rules("channel-1")

        assert len(rules) == 1
        skipped = [r for r in captured_logs() if r["message"] == "escalation_rule_skipped"]
        assert len(skipped) == 2

    @pytest.mark.parametrize("body", [
        {}, {"data": None}, {"data": {"list": "nope"}}, [], "not json",
    ])
    def test_unexpected_body_yields_no_rules(self, body):
        with self._client(Recorder(body=body)) as client:
            assert client.get_rules("channel-1") == []

    def test_client_error_yields_no_rules(self):
        with self._client(Recorder(status_code=401, body={"message": "bad key"})) as client:
            assert client.get_rules("channel-1") == []

    def test_server_error_is_a_dependency_failure(self):
        with self._client(Recorder(status_code=502, body={})) as client:
            with pytest.raises(DependencyFailureError) as exc_info:
                client.get_rules("channel-1")
        assert exc_info.value.http_status == 503

    def test_transport_error_is_a_dependency_failure(self):
        recorder = Recorder(exc=httpx.ConnectError("connection refused"))
        with self._client(recorder) as client:
            with pytest.raises(DependencyFailureError):
                client.get_rules("channel-1")


class TestParseRule:
    def test_normalizes_case(self):
        rule = parse_rule(_matrix_item(priority="medium", status="active"))
        assert rule.priority == "MEDIUM"
        assert rule.status == "ACTIVE"

    def test_missing_status_defaults_to_active(self):
        item = _matrix_item()
        del item["status"]
        assert parse_rule(item).status == "ACTIVE"

    def test_numeric_channel_is_stringified(self):
        assert parse_rule(_matrix_item(channelId=7)).channel_id == "7"


# =============================================================================
# User directory
# =============================================================================


class TestUserDirectoryClient:
    def _client(self, recorder):
        return UserDirectoryClient.from_settings(
            _settings(), transport=httpx.MockTransport(recorder),
        )

    def test_satisfies_port(self):
        with self._client(Recorder(body={})) as client:
            assert isinstance(client, UserDirectory)

    def test_found(self):
        user_id = uuid4()
        recorder = Recorder(body={"data": {"id": str(user_id), "email": "a@x.com", "name": "Ann"}})
        with self._client(recorder) as client:
            user = client.find_by_email("a@x.com")

        assert user.user_id == user_id
        assert user.email == "a@x.com"
        assert user.name == "Ann"
        request = recorder.requests[0]
        assert request.url.path == "/api/v1/users/by-email"
        assert request.url.params["email"] == "a@x.com"
        assert request.headers["x-api-key"] == API_KEY

    def test_bare_payload(self):
        user_id = uuid4()
        with self._client(Recorder(body={"id": str(user_id)})) as client:
            user = client.find_by_email("a@x.com")
        assert user.user_id == user_id
        assert user.email == "a@x.com"

    def test_not_found(self):
        with self._client(Recorder(status_code=404, body={})) as client:
            assert client.find_by_email("ghost@x.com") is None

    @pytest.mark.parametrize("body", [{"data": {}}, {"data": {"id": "not-a-uuid"}}, "garbage"])
    def test_unusable_payload(self, body):
        with self._client(Recorder(body=body)) as client:
            assert client.find_by_email("a@x.com") is None

    def test_server_error_is_a_dependency_failure(self):
        with self._client(Recorder(status_code=500, body={})) as client:
            with pytest.raises(DependencyFailureError):
                client.find_by_email("a@x.com")

    def test_timeout_is_a_dependency_failure(self):
        with self._client(Recorder(exc=httpx.ReadTimeout("timed out"))) as client:
            with pytest.raises(DependencyFailureError):
                client.find_by_email("a@x.com")


# =============================================================================
# Notifications
# =============================================================================


def _event(from_user=None):
    return NotificationEvent(
        type=NotificationType.SEND_FOR_APPROVAL,
        template_id=uuid4(),
        send_to=uuid4(),
        from_user=from_user,
    )


class TestNotificationClient:
    def _client(self, recorder):
        return NotificationClient.from_settings(
            _settings(), transport=httpx.MockTransport(recorder),
        )

    def test_satisfies_port(self):
        with self._client(Recorder(body={})) as client:
            assert isinstance(client, NotificationDispatcher)

    def test_posts_event(self, captured_logs):
        recorder = Recorder(status_code=201, body={"ok": True})
        sender = uuid4()
        event = _event(from_user=sender)

        with self._client(recorder) as client:
            client.create(event)

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/v1/notification/"
        assert request.headers["x-api-key"] == API_KEY
        assert json.loads(request.content) == {
            "type": "SEND_FOR_APPROVAL",
            "templateId": str(event.template_id),
            "sendTo": str(event.send_to),
            "fromUser": str(sender),
        }
        assert any(r["message"] == "notification_sent" for r in captured_logs())

    def test_system_notice_has_no_sender(self):
        recorder = Recorder(body={})
        with self._client(recorder) as client:
            client.create(_event())
        assert json.loads(recorder.requests[0].content)["fromUser"] is None

    @pytest.mark.parametrize("recorder", [
        Recorder(status_code=500, body={}),
        Recorder(status_code=400, body={}),
        Recorder(exc=httpx.ConnectError("connection refused")),
        Recorder(exc=httpx.ReadTimeout("timed out")),
    ])
    def test_failures_are_swallowed(self, recorder, captured_logs):
        with self._client(recorder) as client:
            client.create(_event())

        assert any(r["message"] == "notification_delivery_failed" for r in captured_logs())
