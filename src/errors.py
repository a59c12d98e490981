"""Typed failures raised by the relay, each carrying a stable error code."""
from typing import List, Optional


class ErrorCode:
    """Stable error codes surfaced to callers."""

    CLIENT_NOT_FOUND = "ERR_CLIENT_NOT_FOUND"
    CLIENT_INACTIVE = "ERR_CLIENT_INACTIVE"
    MAPPING_NOT_FOUND = "ERR_MAPPING_NOT_FOUND"
    PAYLOAD_BUILD_FAILED = "ERR_PAYLOAD_BUILD_FAILED"
    SOURCE_DATA_NOT_FOUND = "ERR_SOURCE_DATA_NOT_FOUND"
    MANDATORY_FIELD_MISSING = "ERR_MANDATORY_FIELD_MISSING"
    API_CALL_FAILED = "ERR_API_CALL_FAILED"
    API_TIMEOUT = "ERR_API_TIMEOUT"
    AUDIT_FAILED = "ERR_AUDIT_FAILED"
    VALIDATION_FAILED = "ERR_VALIDATION_FAILED"
    INTERNAL_ERROR = "ERR_INTERNAL_ERROR"


class IntegrationError(RuntimeError):
    """Base error for every failure that reaches the caller."""

    code = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        client_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.client_id = client_id
        self.correlation_id = correlation_id

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            "error_code": self.code,
            "message": self.message,
            "client_id": self.client_id,
            "correlation_id": self.correlation_id,
        }


# ============================================================================
# Configuration errors: fatal, no audit, no retry
# ============================================================================


class ConfigError(IntegrationError):
    """Tenant configuration could not be resolved."""


class ClientNotFound(ConfigError):
    code = ErrorCode.CLIENT_NOT_FOUND

    def __init__(self, client_id: str, correlation_id: Optional[str] = None):
        super().__init__(
            f"Client configuration not found for ID: {client_id}",
            client_id=client_id,
            correlation_id=correlation_id,
        )


class ClientInactive(ConfigError):
    code = ErrorCode.CLIENT_INACTIVE

    def __init__(self, client_id: str, correlation_id: Optional[str] = None):
        super().__init__(
            f"Client is inactive: {client_id}",
            client_id=client_id,
            correlation_id=correlation_id,
        )


class MappingNotFound(ConfigError):
    code = ErrorCode.MAPPING_NOT_FOUND

    def __init__(self, client_id: str, correlation_id: Optional[str] = None):
        super().__init__(
            f"No active field mappings found for client: {client_id}",
            client_id=client_id,
            correlation_id=correlation_id,
        )


# ============================================================================
# Payload errors: fatal for the request, resubmission fails identically
# ============================================================================


class PayloadError(IntegrationError):
    code = ErrorCode.PAYLOAD_BUILD_FAILED


class SourceDataNotFound(PayloadError):
    code = ErrorCode.SOURCE_DATA_NOT_FOUND

    def __init__(
        self,
        client_id: Optional[str],
        source_record_id: Optional[str],
        correlation_id: Optional[str] = None,
    ):
        super().__init__(
            f"Source data not found for record {source_record_id}",
            client_id=client_id,
            correlation_id=correlation_id,
        )
        self.source_record_id = source_record_id


class MandatoryFieldMissing(PayloadError):
    code = ErrorCode.MANDATORY_FIELD_MISSING

    def __init__(
        self,
        missing_fields: List[str],
        client_id: Optional[str] = None,
        source_record_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(
            f"Mandatory fields missing: {', '.join(missing_fields)}",
            client_id=client_id,
            correlation_id=correlation_id,
        )
        self.missing_fields = list(missing_fields)
        self.source_record_id = source_record_id


class PayloadSerializationFailed(PayloadError):
    """The assembled tree could not be written as JSON."""


# ============================================================================
# Audit and invocation errors
# ============================================================================


class AuditFailure(IntegrationError):
    """Raised when the audit trail cannot be written."""

    code = ErrorCode.AUDIT_FAILED

    def __init__(
        self,
        message: str,
        client_id: Optional[str] = None,
        audit_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message, client_id=client_id, correlation_id=correlation_id)
        self.audit_id = audit_id


class InvocationError(IntegrationError):
    """Transport-level failure with no HTTP status."""

    code = ErrorCode.API_CALL_FAILED
    retryable = True


class TransportTimeout(InvocationError):
    code = ErrorCode.API_TIMEOUT


class TransportNetworkError(InvocationError):
    pass
