"""
Integration Service - one audited, retry-backed call per source record

Per request:
    resolve config → build payload → pre-call audit → invoke →
    post-call audit → success | failure (maybe enqueue retry)
"""

import concurrent.futures
import json
import logging
import sqlite3
import uuid
from typing import Any, Dict, List, Optional

from config import WorkerConfig
from src.api.rest_client import (
    RestClient,
    build_headers,
    credential_header_name,
    strip_credentials,
)
from src.builder.payload_builder import PayloadBuilder
from src.errors import ErrorCode, IntegrationError
from src.schema.models import ApiCallResult, ClientConfig, InvocationResult, ValidationReport
from src.store.sqlite_store import SqliteStore

from .audit_service import AuditService
from .retry_service import RetryService

logger = logging.getLogger(__name__)


def _parse_body(body: Optional[str]) -> Any:
    """Response body as JSON when it parses, otherwise the raw text."""
    if not body:
        return body
    try:
        return json.loads(body)
    except ValueError:
        return body


class IntegrationService:
    """Orchestrates payload building, invocation, audit and retry enqueue."""

    def __init__(
        self,
        store: SqliteStore,
        rest_client: RestClient,
        audit_service: AuditService,
        retry_service: RetryService,
        payload_builder: Optional[PayloadBuilder] = None,
        workers: Optional[WorkerConfig] = None,
    ):
        self.store = store
        self.rest_client = rest_client
        self.audit_service = audit_service
        self.retry_service = retry_service
        self.payload_builder = payload_builder or PayloadBuilder()
        self.workers = workers or WorkerConfig()
        self.executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.workers.invocation_workers,
            thread_name_prefix="invoke",
        )

    def process_request(
        self,
        client_id: str,
        source_record_id: str,
        additional_data: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        requested_by: str = "SYSTEM",
    ) -> InvocationResult:
        """
        Process one integration request.

        Raises:
            ConfigError: client not found/inactive or no mappings (nothing audited)
            PayloadError: source data or mandatory fields missing (nothing audited)
            AuditFailure: pre-call audit could not be written (endpoint not called)
        """
        correlation_id = correlation_id or str(uuid.uuid4())
        logger.info(
            f"Processing integration request: client_id={client_id}, "
            f"source_record_id={source_record_id}, correlation_id={correlation_id}"
        )

        config = self.store.get_client_config(client_id, correlation_id=correlation_id)

        # Mappings and source data are read fresh for every request
        mappings = self.store.get_mappings_for_client(client_id, correlation_id=correlation_id)
        source_data = self.store.get_source_data(client_id, source_record_id, mappings)
        payload = self.payload_builder.build_payload(
            client_id,
            source_record_id,
            mappings,
            source_data,
            additional_data=additional_data,
            correlation_id=correlation_id,
        )

        headers = build_headers(config)
        audit = self.audit_service.create_audit_entry(
            client_id,
            config.endpoint,
            config.method,
            payload.json,
            headers,
            source_record_id=source_record_id,
            correlation_id=correlation_id,
            created_by=requested_by,
            credential_header=credential_header_name(config),
        )

        result = self.rest_client.call(config, payload.json, headers)
        self.audit_service.complete_audit_entry(audit, result)

        if result.success:
            return InvocationResult(
                success=True,
                client_id=client_id,
                source_record_id=source_record_id,
                correlation_id=correlation_id,
                audit_id=audit.audit_id,
                status_code=result.status_code,
                body=_parse_body(result.body),
                execution_time_ms=result.execution_time_ms,
            )

        return self._handle_failure(
            config, result, payload.json, headers, source_record_id,
            correlation_id, requested_by, audit.audit_id,
        )

    def _handle_failure(
        self,
        config: ClientConfig,
        result: ApiCallResult,
        payload_json: str,
        headers: Dict[str, str],
        source_record_id: str,
        correlation_id: str,
        requested_by: str,
        audit_id: str,
    ) -> InvocationResult:
        response = InvocationResult(
            success=False,
            client_id=config.client_id,
            source_record_id=source_record_id,
            correlation_id=correlation_id,
            audit_id=audit_id,
            status_code=result.status_code,
            body=_parse_body(result.body),
            error_code=result.error_code or ErrorCode.API_CALL_FAILED,
            error_message=result.error_message,
            execution_time_ms=result.execution_time_ms,
        )

        if not (config.retry_enabled and result.retryable):
            logger.warning(
                f"Call failed for client {config.client_id} without retry "
                f"(retry_enabled={config.retry_enabled}, retryable={result.retryable})"
            )
            return response

        try:
            entry = self.retry_service.queue_for_retry(
                client_id=config.client_id,
                request_payload=payload_json,
                request_headers=strip_credentials(headers, config),
                endpoint=config.endpoint,
                method=config.method,
                error_message=result.error_message,
                status_code=result.status_code,
                source_record_id=source_record_id,
                correlation_id=correlation_id,
                created_by=requested_by,
            )
        except sqlite3.Error as e:
            logger.error(f"Failed to queue retry for client {config.client_id}: {e}")
            return response

        response.will_retry = True
        response.next_retry_time = entry.next_retry_time
        response.retry_call_id = entry.call_id
        return response

    def process_batch(
        self,
        client_id: str,
        source_record_ids: List[str],
        requested_by: str = "SYSTEM",
        additional_data: Optional[Dict[str, Any]] = None,
    ) -> List[InvocationResult]:
        """
        Process many records for one client on the invocation pool.

        Each record is isolated: a failure is reported in its own result.
        Results come back in input order.
        """
        logger.info(f"Processing batch of {len(source_record_ids)} requests for client: {client_id}")

        futures = [
            self.executor.submit(
                self._process_isolated, client_id, record_id, additional_data, requested_by
            )
            for record_id in source_record_ids
        ]
        results = [future.result() for future in futures]

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Batch for client {client_id}: {succeeded}/{len(results)} succeeded")
        return results

    def _process_isolated(
        self,
        client_id: str,
        source_record_id: str,
        additional_data: Optional[Dict[str, Any]],
        requested_by: str,
    ) -> InvocationResult:
        correlation_id = str(uuid.uuid4())
        try:
            return self.process_request(
                client_id,
                source_record_id,
                additional_data=additional_data,
                correlation_id=correlation_id,
                requested_by=requested_by,
            )
        except IntegrationError as e:
            logger.error(f"Integration error for client {client_id}, record {source_record_id}: {e.message}")
            return InvocationResult(
                success=False,
                client_id=client_id,
                source_record_id=source_record_id,
                correlation_id=correlation_id,
                error_code=e.code,
                error_message=e.message,
            )
        except Exception as e:
            logger.exception(f"Unexpected error for client {client_id}, record {source_record_id}: {e}")
            return InvocationResult(
                success=False,
                client_id=client_id,
                source_record_id=source_record_id,
                correlation_id=correlation_id,
                error_code=ErrorCode.INTERNAL_ERROR,
                error_message=f"Unexpected error: {e}",
            )

    def validate_request(
        self,
        client_id: str,
        source_record_id: str,
        additional_data: Optional[Dict[str, Any]] = None,
    ) -> ValidationReport:
        """Dry run: resolve config, build and validate the payload. No audit, no call."""
        try:
            config = self.store.get_client_config(client_id)
            mappings = self.store.get_mappings_for_client(client_id)
            source_data = self.store.get_source_data(client_id, source_record_id, mappings)
            payload = self.payload_builder.build_payload(
                client_id, source_record_id, mappings, source_data, additional_data=additional_data
            )
        except IntegrationError as e:
            return ValidationReport(
                valid=False,
                missing_fields=list(getattr(e, "missing_fields", [])),
                error_code=e.code,
                error_message=e.message,
            )

        return ValidationReport(
            valid=True,
            client_active=config.is_active,
            payload_size=self.payload_builder.payload_size(payload.json),
            payload_valid=self.payload_builder.validate_payload(payload.json, mappings),
        )

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
