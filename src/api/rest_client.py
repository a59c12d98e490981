"""Outbound REST client for tenant endpoints."""
import logging
import time
from typing import Dict, Optional

import requests

from config import HttpConfig
from src.errors import ErrorCode, TransportNetworkError, TransportTimeout
from src.schema.models import ApiCallResult, ClientConfig, TransportResponse

logger = logging.getLogger(__name__)

DEFAULT_API_KEY_HEADER = "X-API-Key"
DEFAULT_CONTENT_TYPE = "application/json"
REDACTED = "***REDACTED***"


def is_retryable_status(status_code: Optional[int]) -> bool:
    """Server errors, 408, 429 and failures with no status at all are transient."""
    if status_code is None:
        return True
    return status_code >= 500 or status_code in (408, 429)


def credential_header_name(config: ClientConfig) -> str:
    return config.api_key_header_name or DEFAULT_API_KEY_HEADER


def is_sensitive_header(name: str, credential_header: Optional[str] = None) -> bool:
    lowered = name.lower()
    if lowered == "authorization" or "api-key" in lowered:
        return True
    return credential_header is not None and lowered == credential_header.lower()


def inject_credentials(headers: Dict[str, str], config: ClientConfig) -> Dict[str, str]:
    """Copy of ``headers`` with the tenant credential set."""
    result = dict(headers)
    if config.api_key:
        name = credential_header_name(config)
        if name.lower() == "authorization":
            result[name] = f"Bearer {config.api_key}"
        else:
            result[name] = config.api_key
    return result


def strip_credentials(headers: Dict[str, str], config: ClientConfig) -> Dict[str, str]:
    """Copy of ``headers`` without any credential header."""
    name = credential_header_name(config)
    return {k: v for k, v in headers.items() if not is_sensitive_header(k, name)}


def redact_headers(headers: Optional[Dict[str, str]], credential_header: Optional[str] = None) -> Dict[str, str]:
    """Copy of ``headers`` safe to log or audit."""
    if not headers:
        return {}
    return {
        name: REDACTED if is_sensitive_header(name, credential_header) else value
        for name, value in headers.items()
    }


def build_headers(config: ClientConfig) -> Dict[str, str]:
    """Request headers for a tenant: content type, accept, credential, extras."""
    headers = {
        "Content-Type": config.content_type or DEFAULT_CONTENT_TYPE,
        "Accept": "application/json",
    }
    headers = inject_credentials(headers, config)
    headers.update(config.additional_headers or {})
    return headers


class RestClient:
    """Client for tenant REST endpoints."""

    def __init__(self, config: Optional[HttpConfig] = None, session: Optional[requests.Session] = None):
        """Initialize client."""
        self.config = config or HttpConfig()
        self.session = session or requests.Session()

        if self.config.user_agent:
            self.session.headers.update({"User-Agent": self.config.user_agent})

    def timeout_for(self, client: ClientConfig) -> int:
        return client.timeout_seconds or self.config.timeout_seconds

    def invoke(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[str],
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        """
        Send one request.

        Any HTTP status is returned, not raised.

        Raises:
            TransportTimeout: no response within ``timeout`` seconds
            TransportNetworkError: connection or protocol failure
        """
        timeout = timeout or self.config.timeout_seconds
        start = time.monotonic()

        try:
            response = self.session.request(
                method.upper(),
                url,
                headers=headers,
                data=body.encode("utf-8") if body is not None else None,
                timeout=timeout,
            )
        except requests.Timeout as e:
            raise TransportTimeout(f"Request timed out after {timeout} seconds") from e
        except requests.RequestException as e:
            raise TransportNetworkError(f"Request failed: {e}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        return TransportResponse(
            status_code=response.status_code,
            body=response.text,
            headers=dict(response.headers),
            elapsed_ms=elapsed_ms,
        )

    def call(
        self,
        client: ClientConfig,
        payload_json: str,
        headers: Optional[Dict[str, str]] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
    ) -> ApiCallResult:
        """
        Invoke a tenant endpoint and classify the outcome.

        Args:
            client: Tenant configuration (timeout, default endpoint/method)
            payload_json: Serialized request body
            headers: Full request headers; built from ``client`` when omitted
            endpoint: Overrides the configured endpoint (retry replay)
            method: Overrides the configured method (retry replay)

        Returns:
            ApiCallResult; never raises for transport failures
        """
        headers = headers if headers is not None else build_headers(client)
        endpoint = endpoint or client.endpoint
        method = (method or client.method or "POST").upper()
        timeout = self.timeout_for(client)
        start = time.monotonic()

        logger.debug(f"Calling {method} {endpoint} for client {client.client_id} with timeout {timeout}s")

        try:
            response = self.invoke(method, endpoint, headers, payload_json, timeout)
        except (TransportTimeout, TransportNetworkError) as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.error(f"API call error for client {client.client_id}: {e.message} ({elapsed_ms}ms)")
            return ApiCallResult(
                success=False,
                execution_time_ms=elapsed_ms,
                error_message=e.message,
                error_code=e.code,
                retryable=e.retryable,
            )

        success = 200 <= response.status_code < 300
        redacted = redact_headers(response.headers)

        if success:
            logger.info(
                f"API call successful for client {client.client_id}: "
                f"status={response.status_code}, time={response.elapsed_ms}ms"
            )
            return ApiCallResult(
                success=True,
                status_code=response.status_code,
                body=response.body,
                headers=redacted,
                execution_time_ms=response.elapsed_ms,
            )

        logger.error(
            f"API call failed for client {client.client_id}: "
            f"status={response.status_code}, body={response.body}"
        )
        return ApiCallResult(
            success=False,
            status_code=response.status_code,
            body=response.body,
            headers=redacted,
            execution_time_ms=response.elapsed_ms,
            error_message=f"HTTP {response.status_code}",
            error_code=ErrorCode.API_CALL_FAILED,
            retryable=is_retryable_status(response.status_code),
        )
