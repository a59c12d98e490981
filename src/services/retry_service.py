"""
Retry Service - durable replay of failed calls

Entries move PENDING → PENDING | SUCCESS | EXHAUSTED and are never touched
again once terminal. The stored payload and headers are replayed verbatim;
only the credential header is re-read from the current client config.
"""

import concurrent.futures
import dataclasses
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from config import RetryPolicy
from src.api.rest_client import RestClient, credential_header_name, inject_credentials
from src.errors import AuditFailure, ConfigError, ErrorCode
from src.schema.models import ApiCallResult, RetryEntry, RetryStats, RetryStatus
from src.store.sqlite_store import SqliteStore

from .audit_service import AuditService

logger = logging.getLogger(__name__)

RETRY_ACTOR = "RETRY_SERVICE"
CANCEL_ACTOR = "MANUAL_CANCEL"


class RetryService:
    """Queues failed calls and replays them on a bounded worker pool."""

    def __init__(
        self,
        store: SqliteStore,
        rest_client: RestClient,
        audit_service: AuditService,
        policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.rest_client = rest_client
        self.audit_service = audit_service
        self.policy = policy or RetryPolicy()
        self.clock = clock
        self.executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.policy.workers,
            thread_name_prefix="retry",
        )

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.policy.interval_hours)

    def claim_timeout_seconds(self) -> int:
        """
        Age after which a claim counts as abandoned.

        Never shorter than two transport timeouts (connect plus read) of the
        slowest tenant, so a call still in flight is not claimed again.
        """
        longest = max(self.store.max_client_timeout() or 0, self.rest_client.config.timeout_seconds)
        return max(self.policy.claim_timeout_seconds, 2 * longest)

    def queue_for_retry(
        self,
        client_id: str,
        request_payload: str,
        request_headers: Dict[str, str],
        endpoint: str,
        method: str,
        error_message: Optional[str] = None,
        status_code: Optional[int] = None,
        source_record_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        created_by: str = "SYSTEM",
    ) -> RetryEntry:
        """
        Enqueue a failed call with retry_count=0, due one interval from now.

        ``request_headers`` must not carry credentials.
        """
        now = self.clock()
        entry = RetryEntry(
            call_id=str(uuid.uuid4()),
            client_id=client_id,
            request_payload=request_payload,
            request_headers=dict(request_headers),
            endpoint=endpoint,
            method=method,
            failure_timestamp=now,
            max_attempts=self.policy.max_attempts,
            next_retry_time=now + self.interval,
            last_status_code=status_code,
            last_error=error_message,
            source_record_id=source_record_id,
            correlation_id=correlation_id,
            created_by=created_by,
        )
        self.store.retry_insert(entry)

        logger.info(
            f"Queued failed call for retry: call_id={entry.call_id}, "
            f"client_id={client_id}, next_retry={entry.next_retry_time}"
        )
        return entry

    # ========================================================================
    # Sweep
    # ========================================================================

    def process_pending_retries(self) -> int:
        """
        Claim due entries (up to the batch size) and replay them on the pool.

        Blocks until every dispatched attempt has finished.

        Returns:
            Number of entries dispatched
        """
        logger.debug("Checking for pending retries...")

        entries = self.store.select_due_retries(
            self.clock(),
            self.policy.batch_size,
            claim_timeout_seconds=self.claim_timeout_seconds(),
        )
        if not entries:
            logger.debug("No pending retries found")
            return 0

        logger.info(f"Processing {len(entries)} pending retries")

        futures = [self.executor.submit(self._run_isolated, entry) for entry in entries]
        concurrent.futures.wait(futures)
        for entry, future in zip(entries, futures):
            error = future.exception()
            if error is not None:
                logger.error(f"Retry worker failed for call {entry.call_id}: {error}")
        return len(entries)

    def _run_isolated(self, entry: RetryEntry) -> RetryEntry:
        attempt = entry.retry_count + 1
        try:
            return self.process_retry(entry)
        except Exception as e:
            logger.exception(f"Error processing retry for call {entry.call_id}: {e}")
            failure = ApiCallResult(
                success=False,
                error_message=str(e),
                error_code=ErrorCode.INTERNAL_ERROR,
                retryable=True,
            )
            try:
                return self._record_outcome(entry, attempt, failure)
            except sqlite3.Error as store_error:
                logger.error(f"Could not record failed retry {entry.call_id}: {store_error}")
                self._release_claim(entry)
                return entry

    def _release_claim(self, entry: RetryEntry) -> None:
        try:
            self.store.release_retry(entry.call_id)
        except sqlite3.Error as e:
            logger.error(f"Could not release claim on {entry.call_id}, it expires on its own: {e}")

    def process_retry(self, entry: RetryEntry) -> RetryEntry:
        """
        Run one attempt for a claimed entry and persist its outcome.

        If the pre-call audit cannot be written the claim is released and the
        attempt is not counted.
        """
        attempt = entry.retry_count + 1
        logger.info(
            f"Processing retry {attempt}/{entry.max_attempts} for call: {entry.call_id}, "
            f"client: {entry.client_id}"
        )

        try:
            config = self.store.get_client_config(entry.client_id, correlation_id=entry.correlation_id)
        except ConfigError as e:
            logger.warning(f"Retry {entry.call_id} cannot resolve client config: {e.message}")
            failure = ApiCallResult(
                success=False,
                error_message=e.message,
                error_code=e.code,
                retryable=True,
            )
            return self._record_outcome(entry, attempt, failure)

        headers = inject_credentials(entry.request_headers, config)

        try:
            audit = self.audit_service.create_audit_entry(
                entry.client_id,
                entry.endpoint,
                entry.method,
                entry.request_payload,
                headers,
                source_record_id=entry.source_record_id,
                correlation_id=entry.correlation_id,
                created_by=RETRY_ACTOR,
                credential_header=credential_header_name(config),
            )
        except AuditFailure as e:
            logger.error(f"Skipping retry {entry.call_id}, audit unavailable: {e.message}")
            self._release_claim(entry)
            return entry

        result = self.rest_client.call(
            config,
            entry.request_payload,
            headers,
            endpoint=entry.endpoint,
            method=entry.method,
        )
        self.audit_service.complete_audit_entry(audit, result)

        try:
            return self._record_outcome(entry, attempt, result)
        except sqlite3.Error as e:
            # The call went out but its outcome is lost; the next sweep sends it again.
            logger.error(
                f"Could not record outcome of retry {entry.call_id} "
                f"(status: {result.status_code}, success: {result.success}): {e}"
            )
            self._release_claim(entry)
            return entry

    def _record_outcome(self, entry: RetryEntry, attempt: int, result: ApiCallResult) -> RetryEntry:
        """Persist one attempt. ``entry`` is left untouched if the write fails."""
        now = self.clock()
        changes = {
            "retry_count": attempt,
            "last_retry_timestamp": now,
            "last_status_code": result.status_code,
            "updated_by": RETRY_ACTOR,
            "claimed_at": None,
        }

        if result.success:
            changes.update(final_status=RetryStatus.SUCCESS, next_retry_time=None)
            logger.info(f"Retry successful for call: {entry.call_id}, client: {entry.client_id}")
        else:
            changes["last_error"] = result.error_message
            if attempt >= entry.max_attempts:
                changes.update(final_status=RetryStatus.EXHAUSTED, next_retry_time=None)
                logger.warning(f"Max retries exhausted for call: {entry.call_id}, client: {entry.client_id}")
            elif not result.retryable:
                changes.update(final_status=RetryStatus.EXHAUSTED, next_retry_time=None)
                logger.warning(
                    f"Non-retryable error for call: {entry.call_id}, client: {entry.client_id}, "
                    f"status: {result.status_code}"
                )
            else:
                changes.update(final_status=RetryStatus.PENDING, next_retry_time=now + self.interval)
                logger.info(f"Scheduling next retry for call: {entry.call_id} at {changes['next_retry_time']}")

        updated = dataclasses.replace(entry, **changes)
        if not self.store.retry_update(updated):
            logger.warning(f"Retry entry {entry.call_id} was already terminal; outcome not recorded")
        return updated

    # ========================================================================
    # Manual operations
    # ========================================================================

    def trigger_manual_retry(self, call_id: str) -> bool:
        """Run an attempt now. Only PENDING entries that are not in flight qualify."""
        entry = self.store.get_retry(call_id)
        if entry is None:
            logger.warning(f"Failed call not found: {call_id}")
            return False

        if entry.final_status is not RetryStatus.PENDING:
            logger.warning(f"Cannot retry call with status: {entry.final_status.value}")
            return False

        claimed = self.store.claim_retry(
            call_id, self.clock(), claim_timeout_seconds=self.claim_timeout_seconds()
        )
        if claimed is None:
            logger.warning(f"Call {call_id} is already being retried")
            return False

        self._run_isolated(claimed)
        return True

    def cancel_retry(self, call_id: str) -> bool:
        """Force a PENDING entry to EXHAUSTED. An attempt already running completes."""
        cancelled = self.store.cancel_retry(call_id, "Cancelled manually", CANCEL_ACTOR)
        if cancelled:
            logger.info(f"Cancelled retry for call: {call_id}")
        else:
            logger.warning(f"Cannot cancel call {call_id}: not found or not pending")
        return cancelled

    def cleanup_old_records(self, days_to_keep: Optional[int] = None) -> int:
        """Delete terminal entries older than the retention window."""
        days = self.policy.retention_days if days_to_keep is None else days_to_keep
        cutoff = self.clock() - timedelta(days=days)

        deleted = self.store.delete_terminal_before(cutoff)
        total = sum(deleted.values())
        if total > 0:
            logger.info(
                f"Cleaned up {total} old retry records "
                f"(exhausted: {deleted[RetryStatus.EXHAUSTED.value]}, "
                f"success: {deleted[RetryStatus.SUCCESS.value]})"
            )
        return total

    # ========================================================================
    # Queries
    # ========================================================================

    def get_retry_stats(self) -> RetryStats:
        return self.store.retry_counts()

    def get_pending_retries(self, client_id: str) -> List[RetryEntry]:
        return self.store.pending_retries(client_id)

    def get_entry(self, call_id: str) -> Optional[RetryEntry]:
        return self.store.get_retry(call_id)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
