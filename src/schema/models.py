"""Models for tenant configuration, audit trail and retry queue."""
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class DataType(str, Enum):
    """Target data types a mapped field is coerced to"""

    STRING = "STRING"
    INTEGER = "INTEGER"
    LONG = "LONG"
    DECIMAL = "DECIMAL"
    DOUBLE = "DOUBLE"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    DATETIME = "DATETIME"
    TIMESTAMP = "TIMESTAMP"
    ARRAY = "ARRAY"
    OBJECT = "OBJECT"

    @classmethod
    def parse(cls, text: Optional[str]) -> "DataType":
        """Parse a stored type name, falling back to STRING."""
        if not text:
            return cls.STRING
        try:
            return cls(text.strip().upper())
        except ValueError:
            return cls.STRING


class RetryStatus(str, Enum):
    """Lifecycle of a queued retry."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    EXHAUSTED = "EXHAUSTED"

    @property
    def is_terminal(self) -> bool:
        return self is not RetryStatus.PENDING


@dataclass
class ClientConfig:
    """Per-tenant endpoint configuration."""

    client_id: str
    endpoint: str
    method: str = "POST"
    client_name: str = ""
    api_key: Optional[str] = None
    api_key_header_name: Optional[str] = None
    timeout_seconds: Optional[int] = None
    retry_enabled: bool = True
    is_active: bool = True
    content_type: Optional[str] = None
    additional_headers: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (credential excluded)."""
        return {
            "client_id": self.client_id,
            "client_name": self.client_name,
            "endpoint": self.endpoint,
            "method": self.method,
            "api_key_header_name": self.api_key_header_name,
            "timeout_seconds": self.timeout_seconds,
            "retry_enabled": self.retry_enabled,
            "is_active": self.is_active,
            "content_type": self.content_type,
            "additional_headers": dict(self.additional_headers),
        }


@dataclass
class AuditRecord:
    """One audited external call: written before the call, completed after it."""

    audit_id: str
    client_id: str
    request_timestamp: datetime
    request_payload: Optional[str] = None
    request_headers: Dict[str, str] = field(default_factory=dict)
    endpoint: Optional[str] = None
    method: Optional[str] = None
    response_timestamp: Optional[datetime] = None
    response_payload: Optional[str] = None
    response_status_code: Optional[int] = None
    response_headers: Optional[Dict[str, str]] = None
    execution_time_ms: Optional[int] = None
    success: Optional[bool] = None  # None while the call is in flight
    error_message: Optional[str] = None
    source_record_id: Optional[str] = None
    correlation_id: Optional[str] = None
    created_by: str = "SYSTEM"

    @property
    def is_pending(self) -> bool:
        return self.response_timestamp is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "audit_id": self.audit_id,
            "client_id": self.client_id,
            "request_timestamp": to_iso(self.request_timestamp),
            "request_payload": self.request_payload,
            "request_headers": self.request_headers,
            "endpoint": self.endpoint,
            "method": self.method,
            "response_timestamp": to_iso(self.response_timestamp),
            "response_payload": self.response_payload,
            "response_status_code": self.response_status_code,
            "response_headers": self.response_headers,
            "execution_time_ms": self.execution_time_ms,
            "success": self.success,
            "error_message": self.error_message,
            "source_record_id": self.source_record_id,
            "correlation_id": self.correlation_id,
            "created_by": self.created_by,
        }


@dataclass
class RetryEntry:
    """A failed call waiting to be replayed."""

    call_id: str
    client_id: str
    request_payload: str
    endpoint: str
    method: str
    failure_timestamp: datetime
    max_attempts: int
    next_retry_time: Optional[datetime]
    request_headers: Dict[str, str] = field(default_factory=dict)
    retry_count: int = 0
    last_status_code: Optional[int] = None
    last_error: Optional[str] = None
    final_status: RetryStatus = RetryStatus.PENDING
    source_record_id: Optional[str] = None
    correlation_id: Optional[str] = None
    created_by: str = "SYSTEM"
    updated_by: Optional[str] = None
    last_retry_timestamp: Optional[datetime] = None
    claimed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.final_status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "call_id": self.call_id,
            "client_id": self.client_id,
            "endpoint": self.endpoint,
            "method": self.method,
            "failure_timestamp": to_iso(self.failure_timestamp),
            "retry_count": self.retry_count,
            "max_attempts": self.max_attempts,
            "next_retry_time": to_iso(self.next_retry_time),
            "last_status_code": self.last_status_code,
            "last_error": self.last_error,
            "final_status": self.final_status.value,
            "source_record_id": self.source_record_id,
            "correlation_id": self.correlation_id,
            "last_retry_timestamp": to_iso(self.last_retry_timestamp),
        }


@dataclass
class TransportResponse:
    """Raw HTTP response as seen by the transport."""

    status_code: int
    body: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    elapsed_ms: int = 0


@dataclass
class ApiCallResult:
    """Classified outcome of one external call."""

    success: bool
    status_code: Optional[int] = None
    body: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    execution_time_ms: int = 0
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False


@dataclass
class InvocationResult:
    """What a caller gets back for one processed request."""

    success: bool
    client_id: str
    source_record_id: Optional[str] = None
    correlation_id: Optional[str] = None
    audit_id: Optional[str] = None
    status_code: Optional[int] = None
    body: Any = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    execution_time_ms: Optional[int] = None
    will_retry: bool = False
    next_retry_time: Optional[datetime] = None
    retry_call_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "success": self.success,
            "client_id": self.client_id,
            "source_record_id": self.source_record_id,
            "correlation_id": self.correlation_id,
            "audit_id": self.audit_id,
            "status_code": self.status_code,
            "body": self.body,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "execution_time_ms": self.execution_time_ms,
            "will_retry": self.will_retry,
            "next_retry_time": to_iso(self.next_retry_time),
            "retry_call_id": self.retry_call_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)


@dataclass
class ValidationReport:
    """Dry-run outcome: can this request be built and sent?"""

    valid: bool
    client_active: Optional[bool] = None
    payload_size: Optional[int] = None
    payload_valid: Optional[bool] = None
    missing_fields: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "valid": self.valid,
            "client_active": self.client_active,
            "payload_size": self.payload_size,
            "payload_valid": self.payload_valid,
            "missing_fields": list(self.missing_fields),
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


@dataclass
class AuditStats:
    client_id: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    average_execution_time_ms: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return self.successful_calls * 100.0 / self.total_calls


@dataclass
class RetryStats:
    pending_count: int = 0
    success_count: int = 0
    exhausted_count: int = 0

    @property
    def total(self) -> int:
        return self.pending_count + self.success_count + self.exhausted_count
