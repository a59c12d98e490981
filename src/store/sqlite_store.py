"""
SQLite store for tenant configuration, field mappings, source data,
the audit log and the retry queue.

One connection is shared by all threads and serialized with an RLock.
Every mutation touches a single row.
"""

import json
import logging
import os
import sqlite3
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from src.builder.field_builder import FieldMapping
from src.errors import ClientInactive, ClientNotFound, MappingNotFound
from src.schema.models import (
    AuditRecord,
    AuditStats,
    ClientConfig,
    RetryEntry,
    RetryStats,
    RetryStatus,
)
from src.validator.source_guard import SourceGuard

logger = logging.getLogger(__name__)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Timestamps are stored as fixed-width ISO text so they compare as strings."""
    return value.isoformat(timespec="microseconds") if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dumps(value: Optional[Dict[str, Any]]) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def _loads(value: Optional[str]) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        logger.warning(f"Ignoring malformed JSON column value: {value[:80]}")
        return None


def _flag(value: Optional[int]) -> Optional[bool]:
    return None if value is None else bool(value)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS client_configuration (
        client_id TEXT PRIMARY KEY,
        client_name TEXT,
        api_endpoint_url TEXT NOT NULL,
        http_method TEXT NOT NULL DEFAULT 'POST',
        api_key TEXT,
        api_key_header_name TEXT,
        timeout_seconds INTEGER,
        retry_enabled INTEGER NOT NULL DEFAULT 1,
        is_active INTEGER NOT NULL DEFAULT 1,
        content_type TEXT,
        additional_headers TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS field_mapping (
        mapping_id INTEGER PRIMARY KEY AUTOINCREMENT,
        client_id TEXT NOT NULL,
        source_table TEXT NOT NULL,
        source_column TEXT NOT NULL,
        target_field_path TEXT NOT NULL,
        data_type TEXT NOT NULL DEFAULT 'STRING',
        transformation_rule TEXT,
        is_mandatory INTEGER NOT NULL DEFAULT 0,
        default_value TEXT,
        field_order INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        audit_id TEXT PRIMARY KEY,
        client_id TEXT NOT NULL,
        request_timestamp TEXT NOT NULL,
        request_payload TEXT,
        request_headers TEXT,
        api_endpoint_url TEXT,
        http_method TEXT,
        response_timestamp TEXT,
        response_payload TEXT,
        response_status_code INTEGER,
        response_headers TEXT,
        execution_time_ms INTEGER,
        success_flag INTEGER,
        error_message TEXT,
        source_record_id TEXT,
        correlation_id TEXT,
        created_by TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS failed_api_call (
        call_id TEXT PRIMARY KEY,
        client_id TEXT NOT NULL,
        request_payload TEXT NOT NULL,
        request_headers TEXT,
        api_endpoint_url TEXT NOT NULL,
        http_method TEXT NOT NULL,
        failure_timestamp TEXT NOT NULL,
        retry_count INTEGER NOT NULL DEFAULT 0,
        max_retry_attempts INTEGER NOT NULL,
        next_retry_time TEXT,
        last_status_code INTEGER,
        error_message TEXT,
        final_status TEXT NOT NULL DEFAULT 'PENDING',
        source_record_id TEXT,
        correlation_id TEXT,
        created_by TEXT,
        updated_by TEXT,
        last_retry_timestamp TEXT,
        claimed_at TEXT,
        updated_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_mapping_client ON field_mapping (client_id, field_order)",
    "CREATE INDEX IF NOT EXISTS idx_audit_client_time ON audit_log (client_id, request_timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_log (correlation_id)",
    "CREATE INDEX IF NOT EXISTS idx_retry_due ON failed_api_call (final_status, next_retry_time)",
)

RETRY_COLUMNS = (
    "call_id, client_id, request_payload, request_headers, api_endpoint_url, http_method, "
    "failure_timestamp, retry_count, max_retry_attempts, next_retry_time, last_status_code, "
    "error_message, final_status, source_record_id, correlation_id, created_by, updated_by, "
    "last_retry_timestamp, claimed_at"
)


class SqliteStore:
    """
    Durable store backed by a single sqlite3 connection.

    Source tables live in the same database and are read through
    ``SourceGuard``-validated identifiers only.
    """

    def __init__(self, db_path: str, guard: Optional[SourceGuard] = None, id_column: str = "ID"):
        if db_path != ":memory:":
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        self.guard = guard or SourceGuard([])
        self.id_column = self.guard.column(id_column)

        self.init_schema()

    def init_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self._lock:
            c = self.conn.cursor()
            for statement in SCHEMA:
                c.execute(statement)
            self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            c = self.conn.cursor()
            c.execute(sql, tuple(params))
            self.conn.commit()
            return c

    def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            c = self.conn.cursor()
            c.execute(sql, tuple(params))
            return c.fetchone()

    def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            c = self.conn.cursor()
            c.execute(sql, tuple(params))
            return c.fetchall()

    # ========================================================================
    # Client configuration
    # ========================================================================

    def save_client_config(self, config: ClientConfig) -> None:
        """Insert or replace a tenant configuration."""
        now = _ts(datetime.now())
        self._execute(
            """
            INSERT INTO client_configuration (
                client_id, client_name, api_endpoint_url, http_method, api_key,
                api_key_header_name, timeout_seconds, retry_enabled, is_active,
                content_type, additional_headers, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(client_id) DO UPDATE SET
                client_name = excluded.client_name,
                api_endpoint_url = excluded.api_endpoint_url,
                http_method = excluded.http_method,
                api_key = excluded.api_key,
                api_key_header_name = excluded.api_key_header_name,
                timeout_seconds = excluded.timeout_seconds,
                retry_enabled = excluded.retry_enabled,
                is_active = excluded.is_active,
                content_type = excluded.content_type,
                additional_headers = excluded.additional_headers,
                updated_at = excluded.updated_at
            """,
            (
                config.client_id,
                config.client_name,
                config.endpoint,
                config.method,
                config.api_key,
                config.api_key_header_name,
                config.timeout_seconds,
                int(config.retry_enabled),
                int(config.is_active),
                config.content_type,
                _dumps(config.additional_headers or {}),
                now,
                now,
            ),
        )

    def find_client_config(self, client_id: str) -> Optional[ClientConfig]:
        row = self._fetchone(
            "SELECT * FROM client_configuration WHERE client_id = ?", (client_id,)
        )
        if row is None:
            return None

        headers = _loads(row["additional_headers"])
        if headers is not None and not isinstance(headers, dict):
            logger.warning(f"Failed to parse additional headers for client {client_id}")
            headers = None

        return ClientConfig(
            client_id=row["client_id"],
            client_name=row["client_name"] or "",
            endpoint=row["api_endpoint_url"],
            method=row["http_method"] or "POST",
            api_key=row["api_key"],
            api_key_header_name=row["api_key_header_name"],
            timeout_seconds=row["timeout_seconds"],
            retry_enabled=bool(row["retry_enabled"]),
            is_active=bool(row["is_active"]),
            content_type=row["content_type"],
            additional_headers={str(k): str(v) for k, v in (headers or {}).items()},
        )

    def max_client_timeout(self) -> Optional[int]:
        """Largest per-tenant transport timeout, None when no tenant sets one."""
        row = self._fetchone("SELECT MAX(timeout_seconds) AS longest FROM client_configuration")
        return row["longest"] if row else None

    def get_client_config(self, client_id: str, correlation_id: Optional[str] = None) -> ClientConfig:
        """
        Active tenant configuration.

        Raises:
            ClientNotFound: no configuration row
            ClientInactive: configuration exists but is disabled
        """
        config = self.find_client_config(client_id)
        if config is None:
            raise ClientNotFound(client_id, correlation_id=correlation_id)
        if not config.is_active:
            raise ClientInactive(client_id, correlation_id=correlation_id)
        return config

    # ========================================================================
    # Field mappings and source data
    # ========================================================================

    def save_field_mapping(self, mapping: FieldMapping, is_active: bool = True) -> int:
        """Insert a mapping and return its id."""
        c = self._execute(
            """
            INSERT INTO field_mapping (
                client_id, source_table, source_column, target_field_path, data_type,
                transformation_rule, is_mandatory, default_value, field_order, is_active
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                mapping.client_id,
                mapping.source_table,
                mapping.source_column,
                mapping.target_field_path,
                mapping.data_type.value,
                mapping.transformation_rule,
                int(mapping.is_mandatory),
                mapping.default_value,
                mapping.field_order,
                int(is_active),
            ),
        )
        mapping.mapping_id = c.lastrowid
        return c.lastrowid

    def get_mappings_for_client(self, client_id: str, correlation_id: Optional[str] = None) -> List[FieldMapping]:
        """
        Active mappings in field order, read fresh on every call.

        Raises:
            MappingNotFound: the client has no active mappings
        """
        rows = self._fetchall(
            """
            SELECT * FROM field_mapping
            WHERE client_id = ? AND is_active = 1
            ORDER BY field_order, mapping_id
            """,
            (client_id,),
        )
        if not rows:
            raise MappingNotFound(client_id, correlation_id=correlation_id)

        return [
            FieldMapping(
                client_id=row["client_id"],
                source_table=row["source_table"],
                source_column=row["source_column"],
                target_field_path=row["target_field_path"],
                data_type=row["data_type"],
                transformation_rule=row["transformation_rule"],
                is_mandatory=bool(row["is_mandatory"]),
                default_value=row["default_value"],
                field_order=row["field_order"],
                mapping_id=row["mapping_id"],
            )
            for row in rows
        ]

    def _table_exists(self, table_name: str) -> bool:
        row = self._fetchone(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND upper(name) = ?",
            (table_name.upper(),),
        )
        return row is not None

    def get_source_data(
        self,
        client_id: str,
        source_record_id: str,
        mappings: List[FieldMapping],
    ) -> Dict[str, Any]:
        """
        Read the source record for the tables the mappings reference.

        Values are keyed both as ``TABLE.column`` and bare ``column``.
        Tables outside the allow-list and unsafe column names are skipped.
        """
        columns_by_table: Dict[str, List[str]] = {}
        for mapping in mappings:
            columns_by_table.setdefault(mapping.source_table, []).append(mapping.source_column)

        combined: Dict[str, Any] = {}

        for table_name, column_names in columns_by_table.items():
            try:
                table = self.guard.table(table_name)
            except ValueError:
                logger.warning(f"Skipping unauthorized table: {table_name}")
                continue

            columns = self.guard.columns(column_names)
            if not columns:
                continue

            if not self._table_exists(table.name):
                logger.warning(f"Source table {table.name} does not exist")
                continue

            select_list = ", ".join(column.quoted() for column in columns)
            row = self._fetchone(
                f"SELECT {select_list} FROM {table.quoted()} WHERE {self.id_column.quoted()} = ?",
                (source_record_id,),
            )
            if row is None:
                logger.warning(f"Record not found in table {table.name} with ID {source_record_id}")
                continue

            for column in columns:
                value = row[column.name]
                combined[f"{table.name}.{column.name}"] = value
                combined[column.name] = value

        if not combined:
            logger.warning(f"No source data found for client: {client_id}, record: {source_record_id}")
        else:
            logger.debug(f"Retrieved {len(combined)} source data fields for client: {client_id}")

        return combined

    def insert_source_row(self, table_name: str, record_id: str, values: Dict[str, Any]) -> None:
        """Create the source table if needed and insert or replace one record."""
        table = self.guard.table(table_name)
        columns = self.guard.columns(values.keys())

        definitions = ", ".join(f"{column.quoted()}" for column in columns)
        ddl = f"CREATE TABLE IF NOT EXISTS {table.quoted()} ({self.id_column.quoted()} TEXT PRIMARY KEY"
        ddl += f", {definitions})" if definitions else ")"

        with self._lock:
            c = self.conn.cursor()
            c.execute(ddl)
            existing = {row[1] for row in c.execute(f"PRAGMA table_info({table.quoted()})")}
            for column in columns:
                if column.name not in existing:
                    c.execute(f"ALTER TABLE {table.quoted()} ADD COLUMN {column.quoted()}")

            names = [self.id_column.quoted()] + [column.quoted() for column in columns]
            placeholders = ", ".join("?" for _ in names)
            c.execute(
                f"INSERT OR REPLACE INTO {table.quoted()} ({', '.join(names)}) VALUES ({placeholders})",
                [record_id] + [values[column.name] for column in columns],
            )
            self.conn.commit()

    # ========================================================================
    # Audit log
    # ========================================================================

    @staticmethod
    def _audit_from_row(row: sqlite3.Row) -> AuditRecord:
        return AuditRecord(
            audit_id=row["audit_id"],
            client_id=row["client_id"],
            request_timestamp=_dt(row["request_timestamp"]),
            request_payload=row["request_payload"],
            request_headers=_loads(row["request_headers"]) or {},
            endpoint=row["api_endpoint_url"],
            method=row["http_method"],
            response_timestamp=_dt(row["response_timestamp"]),
            response_payload=row["response_payload"],
            response_status_code=row["response_status_code"],
            response_headers=_loads(row["response_headers"]),
            execution_time_ms=row["execution_time_ms"],
            success=_flag(row["success_flag"]),
            error_message=row["error_message"],
            source_record_id=row["source_record_id"],
            correlation_id=row["correlation_id"],
            created_by=row["created_by"],
        )

    def audit_insert(self, record: AuditRecord) -> None:
        """Write a pre-call audit row. Raises sqlite3.Error on failure."""
        self._execute(
            """
            INSERT INTO audit_log (
                audit_id, client_id, request_timestamp, request_payload, request_headers,
                api_endpoint_url, http_method, source_record_id, correlation_id, created_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.audit_id,
                record.client_id,
                _ts(record.request_timestamp),
                record.request_payload,
                _dumps(record.request_headers),
                record.endpoint,
                record.method,
                record.source_record_id,
                record.correlation_id,
                record.created_by,
            ),
        )

    def audit_update(self, record: AuditRecord) -> bool:
        """Record the outcome of a call. Returns False if the row does not exist."""
        c = self._execute(
            """
            UPDATE audit_log SET
                response_timestamp = ?,
                response_payload = ?,
                response_status_code = ?,
                response_headers = ?,
                execution_time_ms = ?,
                success_flag = ?,
                error_message = ?
            WHERE audit_id = ?
            """,
            (
                _ts(record.response_timestamp),
                record.response_payload,
                record.response_status_code,
                _dumps(record.response_headers),
                record.execution_time_ms,
                None if record.success is None else int(record.success),
                record.error_message,
                record.audit_id,
            ),
        )
        return c.rowcount == 1

    def get_audit(self, audit_id: str) -> Optional[AuditRecord]:
        row = self._fetchone("SELECT * FROM audit_log WHERE audit_id = ?", (audit_id,))
        return self._audit_from_row(row) if row else None

    def find_audits_by_correlation(self, correlation_id: str) -> List[AuditRecord]:
        rows = self._fetchall(
            "SELECT * FROM audit_log WHERE correlation_id = ? ORDER BY request_timestamp",
            (correlation_id,),
        )
        return [self._audit_from_row(row) for row in rows]

    def find_audits_by_client(self, client_id: str, since: datetime, until: datetime) -> List[AuditRecord]:
        rows = self._fetchall(
            """
            SELECT * FROM audit_log
            WHERE client_id = ? AND request_timestamp >= ? AND request_timestamp <= ?
            ORDER BY request_timestamp
            """,
            (client_id, _ts(since), _ts(until)),
        )
        return [self._audit_from_row(row) for row in rows]

    def audit_stats(self, client_id: str, since: datetime, until: datetime) -> AuditStats:
        row = self._fetchone(
            """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN success_flag = 1 THEN 1 ELSE 0 END) AS ok,
                SUM(CASE WHEN success_flag = 0 THEN 1 ELSE 0 END) AS failed,
                AVG(execution_time_ms) AS avg_ms
            FROM audit_log
            WHERE client_id = ? AND request_timestamp >= ? AND request_timestamp <= ?
            """,
            (client_id, _ts(since), _ts(until)),
        )
        return AuditStats(
            client_id=client_id,
            total_calls=row["total"] or 0,
            successful_calls=row["ok"] or 0,
            failed_calls=row["failed"] or 0,
            average_execution_time_ms=int(row["avg_ms"] or 0),
        )

    # ========================================================================
    # Retry queue
    # ========================================================================

    @staticmethod
    def _retry_from_row(row: sqlite3.Row) -> RetryEntry:
        return RetryEntry(
            call_id=row["call_id"],
            client_id=row["client_id"],
            request_payload=row["request_payload"],
            request_headers=_loads(row["request_headers"]) or {},
            endpoint=row["api_endpoint_url"],
            method=row["http_method"],
            failure_timestamp=_dt(row["failure_timestamp"]),
            retry_count=row["retry_count"],
            max_attempts=row["max_retry_attempts"],
            next_retry_time=_dt(row["next_retry_time"]),
            last_status_code=row["last_status_code"],
            last_error=row["error_message"],
            final_status=RetryStatus(row["final_status"]),
            source_record_id=row["source_record_id"],
            correlation_id=row["correlation_id"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
            last_retry_timestamp=_dt(row["last_retry_timestamp"]),
            claimed_at=_dt(row["claimed_at"]),
        )

    def retry_insert(self, entry: RetryEntry) -> None:
        self._execute(
            f"""
            INSERT INTO failed_api_call ({RETRY_COLUMNS}, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.call_id,
                entry.client_id,
                entry.request_payload,
                _dumps(entry.request_headers),
                entry.endpoint,
                entry.method,
                _ts(entry.failure_timestamp),
                entry.retry_count,
                entry.max_attempts,
                _ts(entry.next_retry_time),
                entry.last_status_code,
                entry.last_error,
                entry.final_status.value,
                entry.source_record_id,
                entry.correlation_id,
                entry.created_by,
                entry.updated_by,
                _ts(entry.last_retry_timestamp),
                _ts(entry.claimed_at),
                _ts(datetime.now()),
            ),
        )

    def retry_update(self, entry: RetryEntry) -> bool:
        """
        Persist an attempt outcome and release the claim.

        Only PENDING rows are updated; returns False when the stored row is
        already terminal (or missing).
        """
        c = self._execute(
            """
            UPDATE failed_api_call SET
                retry_count = ?,
                next_retry_time = ?,
                last_status_code = ?,
                error_message = ?,
                final_status = ?,
                updated_by = ?,
                last_retry_timestamp = ?,
                claimed_at = NULL,
                updated_at = ?
            WHERE call_id = ? AND final_status = 'PENDING'
            """,
            (
                entry.retry_count,
                _ts(entry.next_retry_time),
                entry.last_status_code,
                entry.last_error,
                entry.final_status.value,
                entry.updated_by,
                _ts(entry.last_retry_timestamp),
                _ts(datetime.now()),
                entry.call_id,
            ),
        )
        return c.rowcount == 1

    def get_retry(self, call_id: str) -> Optional[RetryEntry]:
        row = self._fetchone(
            f"SELECT {RETRY_COLUMNS} FROM failed_api_call WHERE call_id = ?", (call_id,)
        )
        return self._retry_from_row(row) if row else None

    def select_due_retries(
        self,
        now: datetime,
        limit: int,
        claim_timeout_seconds: int = 900,
    ) -> List[RetryEntry]:
        """
        Select and claim up to ``limit`` due PENDING entries.

        Selection and claiming happen under the store lock, so overlapping
        sweeps never receive the same entry. Claims older than
        ``claim_timeout_seconds`` are considered abandoned.
        """
        stale_before = _ts(now - timedelta(seconds=claim_timeout_seconds))

        with self._lock:
            c = self.conn.cursor()
            c.execute(
                f"""
                SELECT {RETRY_COLUMNS} FROM failed_api_call
                WHERE final_status = 'PENDING'
                  AND next_retry_time <= ?
                  AND (claimed_at IS NULL OR claimed_at <= ?)
                ORDER BY next_retry_time
                LIMIT ?
                """,
                (_ts(now), stale_before, limit),
            )
            rows = c.fetchall()

            entries = []
            for row in rows:
                c.execute(
                    "UPDATE failed_api_call SET claimed_at = ? WHERE call_id = ? AND final_status = 'PENDING'",
                    (_ts(now), row["call_id"]),
                )
                entry = self._retry_from_row(row)
                entry.claimed_at = now
                entries.append(entry)
            self.conn.commit()

        return entries

    def claim_retry(self, call_id: str, now: datetime, claim_timeout_seconds: int = 900) -> Optional[RetryEntry]:
        """Claim one PENDING entry regardless of its next retry time."""
        stale_before = _ts(now - timedelta(seconds=claim_timeout_seconds))

        with self._lock:
            c = self._execute(
                """
                UPDATE failed_api_call SET claimed_at = ?
                WHERE call_id = ? AND final_status = 'PENDING'
                  AND (claimed_at IS NULL OR claimed_at <= ?)
                """,
                (_ts(now), call_id, stale_before),
            )
            if c.rowcount != 1:
                return None
            return self.get_retry(call_id)

    def release_retry(self, call_id: str) -> None:
        """Drop a claim without recording an attempt."""
        self._execute(
            "UPDATE failed_api_call SET claimed_at = NULL WHERE call_id = ? AND final_status = 'PENDING'",
            (call_id,),
        )

    def cancel_retry(self, call_id: str, reason: str, updated_by: str) -> bool:
        """Force a PENDING entry to EXHAUSTED."""
        c = self._execute(
            """
            UPDATE failed_api_call SET
                final_status = 'EXHAUSTED',
                next_retry_time = NULL,
                error_message = ?,
                updated_by = ?,
                claimed_at = NULL,
                updated_at = ?
            WHERE call_id = ? AND final_status = 'PENDING'
            """,
            (reason, updated_by, _ts(datetime.now()), call_id),
        )
        return c.rowcount == 1

    def pending_retries(self, client_id: str) -> List[RetryEntry]:
        rows = self._fetchall(
            f"""
            SELECT {RETRY_COLUMNS} FROM failed_api_call
            WHERE client_id = ? AND final_status = 'PENDING'
            ORDER BY next_retry_time
            """,
            (client_id,),
        )
        return [self._retry_from_row(row) for row in rows]

    def find_retries_by_correlation(self, correlation_id: str) -> List[RetryEntry]:
        rows = self._fetchall(
            f"SELECT {RETRY_COLUMNS} FROM failed_api_call WHERE correlation_id = ? ORDER BY failure_timestamp",
            (correlation_id,),
        )
        return [self._retry_from_row(row) for row in rows]

    def retry_counts(self) -> RetryStats:
        rows = self._fetchall(
            "SELECT final_status, COUNT(*) AS n FROM failed_api_call GROUP BY final_status"
        )
        counts = {row["final_status"]: row["n"] for row in rows}
        return RetryStats(
            pending_count=counts.get(RetryStatus.PENDING.value, 0),
            success_count=counts.get(RetryStatus.SUCCESS.value, 0),
            exhausted_count=counts.get(RetryStatus.EXHAUSTED.value, 0),
        )

    def delete_terminal_before(self, cutoff: datetime) -> Dict[str, int]:
        """Purge SUCCESS/EXHAUSTED entries last updated before ``cutoff``."""
        deleted = {}
        for status in (RetryStatus.EXHAUSTED, RetryStatus.SUCCESS):
            c = self._execute(
                "DELETE FROM failed_api_call WHERE final_status = ? AND updated_at < ?",
                (status.value, _ts(cutoff)),
            )
            deleted[status.value] = c.rowcount
        return deleted
