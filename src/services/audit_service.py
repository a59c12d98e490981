"""Audit trail for external calls: a pre-call row, completed once after the call."""
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from src.api.rest_client import redact_headers
from src.errors import AuditFailure
from src.schema.models import ApiCallResult, AuditRecord, AuditStats
from src.store.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("src.audit")


class AuditService:
    """Writes and queries audit records."""

    def __init__(self, store: SqliteStore):
        self.store = store

    def create_audit_entry(
        self,
        client_id: str,
        endpoint: str,
        method: str,
        request_payload: str,
        request_headers: Optional[Dict[str, str]],
        source_record_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        created_by: str = "SYSTEM",
        credential_header: Optional[str] = None,
    ) -> AuditRecord:
        """
        Durably record an outgoing call before it is made.

        Raises:
            AuditFailure: the row could not be written; the call must not proceed
        """
        record = AuditRecord(
            audit_id=str(uuid.uuid4()),
            client_id=client_id,
            request_timestamp=datetime.now(),
            request_payload=request_payload,
            request_headers=redact_headers(request_headers, credential_header),
            endpoint=endpoint,
            method=method,
            source_record_id=source_record_id,
            correlation_id=correlation_id,
            created_by=created_by,
        )

        try:
            self.store.audit_insert(record)
        except sqlite3.Error as e:
            logger.error(f"Failed to create audit entry for client {client_id}: {e}")
            raise AuditFailure(
                f"Failed to create audit entry: {e}",
                client_id=client_id,
                audit_id=record.audit_id,
                correlation_id=correlation_id,
            ) from e

        audit_logger.info(
            f"audit={record.audit_id} client={client_id} correlation={correlation_id} "
            f"record={source_record_id} {method} {endpoint} by={created_by}"
        )
        return record

    def complete_audit_entry(self, record: AuditRecord, result: ApiCallResult) -> bool:
        """
        Record the call outcome. Best effort: failures are logged, never raised.

        Returns:
            True if the audit row was updated
        """
        record.response_timestamp = datetime.now()
        record.response_payload = result.body
        record.response_status_code = result.status_code
        record.response_headers = result.headers
        record.execution_time_ms = result.execution_time_ms
        record.success = result.success
        record.error_message = result.error_message

        try:
            updated = self.store.audit_update(record)
        except sqlite3.Error as e:
            logger.error(f"Failed to update audit entry {record.audit_id}: {e}")
            return False

        if not updated:
            logger.error(f"Audit entry not found for update: {record.audit_id}")
            return False

        audit_logger.info(
            f"audit={record.audit_id} client={record.client_id} success={result.success} "
            f"status={result.status_code} time={result.execution_time_ms}ms"
        )
        return True

    def get_audit(self, audit_id: str) -> Optional[AuditRecord]:
        return self.store.get_audit(audit_id)

    def find_by_correlation_id(self, correlation_id: str) -> List[AuditRecord]:
        return self.store.find_audits_by_correlation(correlation_id)

    def get_stats(self, client_id: str, hours: int = 24) -> AuditStats:
        """Call totals for a client over the last ``hours``."""
        until = datetime.now()
        since = until - timedelta(hours=hours)
        return self.store.audit_stats(client_id, since, until)
