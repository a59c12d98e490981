"""
Unit tests for the tenant REST client

Tests:
- Header building, credential injection and redaction
- Status classification (success / retryable / fatal)
- Transport failures (timeout, connection errors)
"""

from unittest.mock import Mock

import pytest
import requests

from config import HttpConfig
from src.api.rest_client import (
    REDACTED,
    RestClient,
    build_headers,
    inject_credentials,
    is_retryable_status,
    redact_headers,
    strip_credentials,
)
from src.errors import ErrorCode, TransportNetworkError, TransportTimeout
from src.schema.models import ClientConfig


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def client_config():
    """Tenant with a custom credential header"""
    return ClientConfig(
        client_id="acme",
        endpoint="https://api.acme.test/orders",
        method="post",
        api_key="s3cret",
        api_key_header_name="X-Acme-Token",
        timeout_seconds=15,
        additional_headers={"X-Tenant": "acme"},
    )


@pytest.fixture
def session():
    return Mock(spec=requests.Session, headers={})


def make_response(status_code, text="", headers=None):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    return response


# ============================================================================
# TEST: Header helpers
# ============================================================================


class TestHeaders:
    """Tests for header building and redaction"""

    def test_build_headers(self, client_config):
        headers = build_headers(client_config)

        assert headers == {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Acme-Token": "s3cret",
            "X-Tenant": "acme",
        }

    def test_default_credential_header(self):
        config = ClientConfig(client_id="c", endpoint="https://x.test", api_key="k")

        assert build_headers(config)["X-API-Key"] == "k"

    def test_authorization_header_gets_bearer_prefix(self):
        config = ClientConfig(
            client_id="c", endpoint="https://x.test", api_key="tok", api_key_header_name="Authorization"
        )

        assert inject_credentials({}, config) == {"Authorization": "Bearer tok"}

    def test_no_api_key_no_credential(self):
        config = ClientConfig(client_id="c", endpoint="https://x.test", content_type="application/xml")

        assert build_headers(config) == {"Content-Type": "application/xml", "Accept": "application/json"}

    def test_strip_credentials(self, client_config):
        headers = build_headers(client_config)
        headers["Authorization"] = "Bearer other"

        stripped = strip_credentials(headers, client_config)

        assert "X-Acme-Token" not in stripped
        assert "Authorization" not in stripped
        assert stripped["X-Tenant"] == "acme"

    def test_redact_headers(self):
        headers = {
            "authorization": "Bearer x",
            "X-API-Key": "k",
            "X-Acme-Token": "t",
            "Accept": "application/json",
        }

        redacted = redact_headers(headers, "x-acme-token")

        assert redacted == {
            "authorization": REDACTED,
            "X-API-Key": REDACTED,
            "X-Acme-Token": REDACTED,
            "Accept": "application/json",
        }
        assert headers["X-API-Key"] == "k"

    def test_redact_empty(self):
        assert redact_headers(None) == {}

    @pytest.mark.parametrize(
        "status_code,expected",
        [(None, True), (500, True), (503, True), (408, True), (429, True), (400, False), (404, False), (409, False)],
    )
    def test_is_retryable_status(self, status_code, expected):
        assert is_retryable_status(status_code) is expected


# ============================================================================
# TEST: Calls
# ============================================================================


class TestRestClientCall:
    """Tests for RestClient.call classification"""

    def test_success(self, session, client_config):
        session.request.return_value = make_response(201, '{"id": 9}', {"Content-Type": "application/json"})
        client = RestClient(HttpConfig(timeout_seconds=300), session=session)

        result = client.call(client_config, '{"a":1}')

        assert result.success is True
        assert result.status_code == 201
        assert result.body == '{"id": 9}'
        assert result.error_code is None

        args, kwargs = session.request.call_args
        assert args == ("POST", "https://api.acme.test/orders")
        assert kwargs["timeout"] == 15
        assert kwargs["data"] == b'{"a":1}'
        assert kwargs["headers"]["X-Acme-Token"] == "s3cret"

    def test_endpoint_and_method_override(self, session, client_config):
        session.request.return_value = make_response(200)
        client = RestClient(session=session)

        client.call(client_config, "{}", headers={}, endpoint="https://other.test/x", method="put")

        args, kwargs = session.request.call_args
        assert args == ("PUT", "https://other.test/x")
        assert kwargs["headers"] == {}

    def test_default_timeout_when_client_has_none(self, session):
        session.request.return_value = make_response(200)
        config = ClientConfig(client_id="c", endpoint="https://x.test")
        client = RestClient(HttpConfig(timeout_seconds=42), session=session)

        client.call(config, "{}")

        assert session.request.call_args[1]["timeout"] == 42

    def test_server_error_is_retryable(self, session, client_config):
        session.request.return_value = make_response(503, "busy")
        client = RestClient(session=session)

        result = client.call(client_config, "{}")

        assert result.success is False
        assert result.status_code == 503
        assert result.retryable is True
        assert result.error_message == "HTTP 503"
        assert result.error_code == ErrorCode.API_CALL_FAILED

    def test_client_error_is_not_retryable(self, session, client_config):
        session.request.return_value = make_response(404, "nope")
        client = RestClient(session=session)

        result = client.call(client_config, "{}")

        assert result.success is False
        assert result.retryable is False

    @pytest.mark.parametrize("status_code", [408, 429])
    def test_throttling_is_retryable(self, session, client_config, status_code):
        session.request.return_value = make_response(status_code)
        client = RestClient(session=session)

        assert client.call(client_config, "{}").retryable is True

    def test_response_headers_are_redacted(self, session, client_config):
        session.request.return_value = make_response(200, "", {"X-API-Key": "echo", "X-Request-Id": "r1"})
        client = RestClient(session=session)

        result = client.call(client_config, "{}")

        assert result.headers == {"X-API-Key": REDACTED, "X-Request-Id": "r1"}

    def test_timeout(self, session, client_config):
        session.request.side_effect = requests.Timeout("slow")
        client = RestClient(session=session)

        result = client.call(client_config, "{}")

        assert result.success is False
        assert result.status_code is None
        assert result.retryable is True
        assert result.error_code == ErrorCode.API_TIMEOUT
        assert "15 seconds" in result.error_message

    def test_connection_error(self, session, client_config):
        session.request.side_effect = requests.ConnectionError("refused")
        client = RestClient(session=session)

        result = client.call(client_config, "{}")

        assert result.success is False
        assert result.status_code is None
        assert result.retryable is True
        assert result.error_code == ErrorCode.API_CALL_FAILED


class TestRestClientInvoke:
    """Tests for the raw transport"""

    def test_invoke_raises_timeout(self, session):
        session.request.side_effect = requests.ReadTimeout("slow")
        client = RestClient(session=session)

        with pytest.raises(TransportTimeout):
            client.invoke("POST", "https://x.test", {}, "{}", timeout=1)

    def test_invoke_raises_network_error(self, session):
        session.request.side_effect = requests.RequestException("boom")
        client = RestClient(session=session)

        with pytest.raises(TransportNetworkError):
            client.invoke("POST", "https://x.test", {}, "{}", timeout=1)

    def test_invoke_returns_any_status(self, session):
        session.request.return_value = make_response(500, "err", {"A": "b"})
        client = RestClient(session=session)

        response = client.invoke("get", "https://x.test", {}, None, timeout=1)

        assert response.status_code == 500
        assert response.body == "err"
        assert response.headers == {"A": "b"}
        assert session.request.call_args[1]["data"] is None

    def test_user_agent_applied_to_session(self, session):
        RestClient(HttpConfig(user_agent="relay/1.0"), session=session)

        assert session.headers["User-Agent"] == "relay/1.0"


# ============================================================================
# RUN TESTS
# ============================================================================


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
