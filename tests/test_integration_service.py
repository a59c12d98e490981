"""
Integration tests for IntegrationService

Runs the full request path against a real SQLite store with the HTTP
session mocked:
- Success, retryable and fatal failures
- Audit-before-call guarantee
- Config and payload errors (nothing audited, nothing sent)
- Batch processing and dry-run validation
"""

import json
import sqlite3
from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest
import requests

from config import HttpConfig, RetryPolicy, WorkerConfig
from src.api.rest_client import REDACTED, RestClient
from src.builder.field_builder import FieldMapping
from src.errors import AuditFailure, ClientInactive, ClientNotFound, ErrorCode, SourceDataNotFound
from src.schema.models import ClientConfig
from src.services.audit_service import AuditService
from src.services.integration_service import IntegrationService
from src.services.retry_service import RetryService
from src.store.sqlite_store import SqliteStore
from src.validator.source_guard import SourceGuard


# ============================================================================
# FIXTURES
# ============================================================================


class FakeClock:
    """Mutable clock for the retry service"""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_response(status_code, text="", headers=None):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    return response


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 5, 12, 0, 0))


@pytest.fixture
def session():
    session = Mock(spec=requests.Session, headers={})
    session.request.return_value = make_response(200, '{"id": "X1"}')
    return session


@pytest.fixture
def store(tmp_path):
    store = SqliteStore(str(tmp_path / "relay.sqlite"), guard=SourceGuard(["CUSTOMER"]))

    store.save_client_config(
        ClientConfig(
            client_id="acme",
            endpoint="https://api.acme.test/customers",
            api_key="s3cret",
            api_key_header_name="X-Acme-Token",
            additional_headers={"X-Tenant": "acme"},
        )
    )
    store.save_field_mapping(
        FieldMapping(
            "acme", "CUSTOMER", "first_name", "customer.firstName",
            transformation_rule="TRIM||UPPERCASE", is_mandatory=True, field_order=1,
        )
    )
    store.save_field_mapping(FieldMapping("acme", "CUSTOMER", "email", "customer.email", field_order=2))

    store.insert_source_row("CUSTOMER", "42", {"first_name": " ada ", "email": "ada@example.com"})
    store.insert_source_row("CUSTOMER", "43", {"first_name": "alan", "email": "alan@example.com"})

    yield store
    store.close()


@pytest.fixture
def service(store, session, clock):
    rest_client = RestClient(HttpConfig(), session=session)
    audit = AuditService(store)
    retry = RetryService(store, rest_client, audit, policy=RetryPolicy(max_attempts=3, workers=2), clock=clock)
    service = IntegrationService(store, rest_client, audit, retry, workers=WorkerConfig(invocation_workers=4))
    yield service
    service.shutdown()
    retry.shutdown()


def audit_count(store, client_id="acme"):
    return store.audit_stats(client_id, datetime(2000, 1, 1), datetime(2100, 1, 1)).total_calls


# ============================================================================
# TEST: Successful calls
# ============================================================================


class TestSuccess:
    """Tests for the happy path"""

    def test_success_result(self, service, session):
        result = service.process_request("acme", "42", correlation_id="corr-1")

        assert result.success is True
        assert result.status_code == 200
        assert result.body == {"id": "X1"}
        assert result.correlation_id == "corr-1"
        assert result.will_retry is False

        args, kwargs = session.request.call_args
        assert args == ("POST", "https://api.acme.test/customers")
        assert json.loads(kwargs["data"]) == {"customer": {"firstName": "ADA", "email": "ada@example.com"}}
        assert kwargs["headers"]["X-Acme-Token"] == "s3cret"
        assert kwargs["headers"]["X-Tenant"] == "acme"

    def test_success_is_audited_with_redacted_headers(self, service, store):
        result = service.process_request("acme", "42", correlation_id="corr-1")

        record = store.get_audit(result.audit_id)
        assert record.success is True
        assert record.response_status_code == 200
        assert record.source_record_id == "42"
        assert record.correlation_id == "corr-1"
        assert record.request_headers["X-Acme-Token"] == REDACTED
        assert json.loads(record.request_payload)["customer"]["firstName"] == "ADA"
        assert store.retry_counts().total == 0

    def test_correlation_id_generated(self, service):
        result = service.process_request("acme", "42")

        assert result.correlation_id
        assert len(result.correlation_id) == 36

    def test_additional_data_overrides(self, service, session):
        service.process_request("acme", "42", additional_data={"customer": {"email": "x@example.com"}, "src": "crm"})

        sent = json.loads(session.request.call_args[1]["data"])
        assert sent == {"customer": {"firstName": "ADA", "email": "x@example.com"}, "src": "crm"}

    def test_non_json_body_returned_as_text(self, service, session):
        session.request.return_value = make_response(202, "accepted")

        assert service.process_request("acme", "42").body == "accepted"

    def test_post_call_audit_failure_does_not_change_result(self, service, store):
        with patch.object(store, "audit_update", side_effect=sqlite3.OperationalError("locked")):
            result = service.process_request("acme", "42")

        assert result.success is True


# ============================================================================
# TEST: Failed calls
# ============================================================================


class TestFailures:
    """Tests for failure classification and retry enqueue"""

    def test_server_error_enqueues_one_retry(self, service, store, session, clock):
        session.request.return_value = make_response(503, "busy")

        result = service.process_request("acme", "42", correlation_id="corr-9")

        assert result.success is False
        assert result.status_code == 503
        assert result.will_retry is True
        assert result.next_retry_time == clock.now + timedelta(hours=1)

        pending = store.pending_retries("acme")
        assert len(pending) == 1
        entry = pending[0]
        assert entry.call_id == result.retry_call_id
        assert entry.retry_count == 0
        assert entry.max_attempts == 3
        assert entry.next_retry_time == clock.now + timedelta(hours=1)
        assert entry.last_status_code == 503
        assert entry.correlation_id == "corr-9"
        assert entry.endpoint == "https://api.acme.test/customers"
        assert "X-Acme-Token" not in entry.request_headers
        assert entry.request_headers["X-Tenant"] == "acme"

    def test_failure_is_audited(self, service, store, session):
        session.request.return_value = make_response(503, "busy")

        result = service.process_request("acme", "42")

        record = store.get_audit(result.audit_id)
        assert record.success is False
        assert record.response_status_code == 503
        assert record.error_message == "HTTP 503"

    def test_client_error_is_not_retried(self, service, store, session):
        session.request.return_value = make_response(400, '{"error": "bad"}')

        result = service.process_request("acme", "42")

        assert result.will_retry is False
        assert result.error_code == ErrorCode.API_CALL_FAILED
        assert result.body == {"error": "bad"}
        assert store.retry_counts().total == 0

    def test_retry_disabled(self, service, store, session):
        config = store.get_client_config("acme")
        config.retry_enabled = False
        store.save_client_config(config)
        session.request.return_value = make_response(503)

        result = service.process_request("acme", "42")

        assert result.will_retry is False
        assert store.retry_counts().total == 0

    def test_timeout_is_retried(self, service, store, session):
        session.request.side_effect = requests.Timeout("slow")

        result = service.process_request("acme", "42")

        assert result.success is False
        assert result.status_code is None
        assert result.error_code == ErrorCode.API_TIMEOUT
        assert result.will_retry is True
        assert store.pending_retries("acme")[0].last_status_code is None

    def test_queue_failure_reports_no_retry(self, service, store, session):
        session.request.return_value = make_response(503)

        with patch.object(store, "retry_insert", side_effect=sqlite3.OperationalError("disk full")):
            result = service.process_request("acme", "42")

        assert result.success is False
        assert result.will_retry is False
        assert result.retry_call_id is None


# ============================================================================
# TEST: Errors before the call
# ============================================================================


class TestErrorsBeforeCall:
    """Nothing is sent when config, payload or audit fail"""

    def test_unknown_client(self, service, store, session):
        with pytest.raises(ClientNotFound) as exc_info:
            service.process_request("nobody", "42", correlation_id="corr-x")

        assert exc_info.value.correlation_id == "corr-x"
        assert audit_count(store, "nobody") == 0
        session.request.assert_not_called()

    def test_inactive_client(self, service, store, session):
        config = store.get_client_config("acme")
        config.is_active = False
        store.save_client_config(config)

        with pytest.raises(ClientInactive):
            service.process_request("acme", "42")

        assert audit_count(store) == 0
        session.request.assert_not_called()

    def test_missing_source_record(self, service, store, session):
        with pytest.raises(SourceDataNotFound):
            service.process_request("acme", "404")

        assert audit_count(store) == 0
        session.request.assert_not_called()

    def test_audit_failure_blocks_call(self, service, store, session):
        with patch.object(store, "audit_insert", side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(AuditFailure) as exc_info:
                service.process_request("acme", "42", correlation_id="corr-a")

        assert exc_info.value.code == ErrorCode.AUDIT_FAILED
        assert exc_info.value.correlation_id == "corr-a"
        session.request.assert_not_called()
        assert store.retry_counts().total == 0


# ============================================================================
# TEST: Batch and validation
# ============================================================================


class TestBatchAndValidation:
    """Tests for process_batch / validate_request"""

    def test_batch_keeps_input_order_and_isolates_failures(self, service):
        results = service.process_batch("acme", ["43", "404", "42"])

        assert [r.source_record_id for r in results] == ["43", "404", "42"]
        assert [r.success for r in results] == [True, False, True]
        assert results[1].error_code == ErrorCode.SOURCE_DATA_NOT_FOUND
        assert results[1].correlation_id

    def test_batch_unexpected_error(self, service, store):
        with patch.object(store, "get_source_data", side_effect=RuntimeError("boom")):
            results = service.process_batch("acme", ["42"])

        assert results[0].success is False
        assert results[0].error_code == ErrorCode.INTERNAL_ERROR

    def test_validate_valid_request(self, service, store, session):
        report = service.validate_request("acme", "42")

        assert report.valid is True
        assert report.client_active is True
        assert report.payload_valid is True
        assert report.payload_size == len('{"customer":{"firstName":"ADA","email":"ada@example.com"}}')
        assert audit_count(store) == 0
        session.request.assert_not_called()

    def test_validate_reports_missing_fields(self, service, store):
        store.insert_source_row("CUSTOMER", "50", {"email": "nameless@example.com"})

        report = service.validate_request("acme", "50")

        assert report.valid is False
        assert report.error_code == ErrorCode.MANDATORY_FIELD_MISSING
        assert report.missing_fields == ["customer.firstName"]

    def test_validate_unknown_client(self, service):
        report = service.validate_request("nobody", "42")

        assert report.valid is False
        assert report.error_code == ErrorCode.CLIENT_NOT_FOUND


# ============================================================================
# RUN TESTS
# ============================================================================


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
