#!/usr/bin/env python3
"""Tenant API Relay - Entry point."""
import json
import logging
import sys
import time

import click
from colorama import Fore, Style, init

from config import AppConfig, app_config
from src.api.rest_client import RestClient
from src.errors import IntegrationError
from src.schema.models import InvocationResult
from src.services.audit_service import AuditService
from src.services.integration_service import IntegrationService
from src.services.retry_service import RetryService
from src.services.scheduler import RetryScheduler
from src.store.sqlite_store import SqliteStore
from src.validator.source_guard import SourceGuard

# Initialize colorama
init(autoreset=True)

logger = logging.getLogger(__name__)


def print_banner():
    """Print application banner."""
    print(f"{Fore.CYAN}{'=' * 44}")
    print(f"{Fore.CYAN}║   {Fore.WHITE}Tenant API Relay{Fore.CYAN}                     ║")
    print(f"{Fore.CYAN}║   {Fore.WHITE}Audited delivery with retries{Fore.CYAN}        ║")
    print(f"{Fore.CYAN}{'=' * 44}{Style.RESET_ALL}")
    print()


class Relay:
    """Wires the store, transport and services for one CLI invocation."""

    def __init__(self, config: AppConfig, db_path: str = None):
        self.config = config
        self.db_path = db_path or config.store.db_path
        self._store = None
        self._integration = None
        self._retry = None
        self._audit = None

    @property
    def store(self) -> SqliteStore:
        if self._store is None:
            guard = SourceGuard(self.config.store.allowed_source_tables)
            self._store = SqliteStore(self.db_path, guard=guard, id_column=self.config.store.id_column)
        return self._store

    @property
    def audit(self) -> AuditService:
        if self._audit is None:
            self._audit = AuditService(self.store)
        return self._audit

    @property
    def retry(self) -> RetryService:
        if self._retry is None:
            self._retry = RetryService(
                self.store, RestClient(self.config.http), self.audit, policy=self.config.retry
            )
        return self._retry

    @property
    def integration(self) -> IntegrationService:
        if self._integration is None:
            self._integration = IntegrationService(
                self.store,
                RestClient(self.config.http),
                self.audit,
                self.retry,
                workers=self.config.workers,
            )
        return self._integration

    def close(self):
        if self._integration is not None:
            self._integration.shutdown()
        if self._retry is not None:
            self._retry.shutdown()
        if self._store is not None:
            self._store.close()


def parse_json_option(ctx, param, value):
    if value is None:
        return None
    try:
        data = json.loads(value)
    except ValueError as e:
        raise click.BadParameter(f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise click.BadParameter("must be a JSON object")
    return data


def echo_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


def fail(error: IntegrationError):
    """Render a typed failure and exit non-zero."""
    click.echo(f"{Fore.RED}❌ [{error.code}] {error.message}", err=True)
    if error.correlation_id:
        click.echo(f"{Fore.RED}   correlation_id: {error.correlation_id}", err=True)
    sys.exit(1)


def echo_result(result: InvocationResult):
    if result.success:
        click.echo(f"{Fore.GREEN}✅ {result.client_id}/{result.source_record_id}: HTTP {result.status_code}")
    elif result.will_retry:
        click.echo(
            f"{Fore.YELLOW}⚠️  {result.client_id}/{result.source_record_id}: "
            f"{result.error_message} (retry at {result.next_retry_time})"
        )
    else:
        click.echo(
            f"{Fore.RED}❌ {result.client_id}/{result.source_record_id}: "
            f"[{result.error_code}] {result.error_message}"
        )


@click.group()
@click.version_option(version="0.1.0")
@click.option("--db", "db_path", default=None, help="SQLite database path (overrides RELAY_DB_PATH)")
@click.option("--log-level", default=None, help="Logging level (overrides LOG_LEVEL)")
@click.pass_context
def cli(ctx, db_path, log_level):
    """Tenant API Relay - Invoke tenant endpoints with audit and retry."""
    logging.basicConfig(
        level=(log_level or app_config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    relay = Relay(app_config, db_path)
    ctx.obj = relay
    ctx.call_on_close(relay.close)


@cli.command("init-db")
@click.pass_obj
def init_db(relay):
    """Create the relay tables."""
    print_banner()
    relay.store.init_schema()
    click.echo(f"{Fore.GREEN}✅ Database ready at {relay.db_path}")


@cli.command()
@click.argument("client_id")
@click.argument("record_id")
@click.option("--data", callback=parse_json_option, help="JSON object merged over the built payload")
@click.option("--correlation-id", default=None, help="Correlation ID (generated if omitted)")
@click.option("--requested-by", default="SYSTEM", show_default=True)
@click.pass_obj
def invoke(relay, client_id, record_id, data, correlation_id, requested_by):
    """Build the payload for one record and invoke the tenant endpoint."""
    try:
        result = relay.integration.process_request(
            client_id,
            record_id,
            additional_data=data,
            correlation_id=correlation_id,
            requested_by=requested_by,
        )
    except IntegrationError as e:
        fail(e)

    echo_result(result)
    echo_json(result.to_dict())
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("client_id")
@click.argument("record_ids", nargs=-1, required=True)
@click.option("--requested-by", default="SYSTEM", show_default=True)
@click.pass_obj
def batch(relay, client_id, record_ids, requested_by):
    """Process several records for one client concurrently."""
    results = relay.integration.process_batch(client_id, list(record_ids), requested_by=requested_by)

    for result in results:
        echo_result(result)

    succeeded = sum(1 for r in results if r.success)
    color = Fore.GREEN if succeeded == len(results) else Fore.YELLOW
    click.echo(f"{color}{succeeded}/{len(results)} succeeded")
    if succeeded != len(results):
        sys.exit(1)


@cli.command()
@click.argument("client_id")
@click.argument("record_id")
@click.option("--data", callback=parse_json_option, help="JSON object merged over the built payload")
@click.pass_obj
def validate(relay, client_id, record_id, data):
    """Dry run: build and check the payload without auditing or calling."""
    report = relay.integration.validate_request(client_id, record_id, additional_data=data)

    if report.valid:
        click.echo(f"{Fore.GREEN}✅ Valid ({report.payload_size} bytes)")
    else:
        click.echo(f"{Fore.RED}❌ [{report.error_code}] {report.error_message}")
    echo_json(report.to_dict())
    if not report.valid:
        sys.exit(1)


@cli.command("audit-stats")
@click.argument("client_id")
@click.option("--hours", default=24, show_default=True, type=int)
@click.pass_obj
def audit_stats(relay, client_id, hours):
    """Call statistics for a client."""
    stats = relay.audit.get_stats(client_id, hours=hours)

    click.echo(f"{Fore.CYAN}Audit statistics for {client_id} (last {hours}h)")
    click.echo(f"  Total calls:    {stats.total_calls}")
    click.echo(f"  Successful:     {stats.successful_calls}")
    click.echo(f"  Failed:         {stats.failed_calls}")
    click.echo(f"  Success rate:   {stats.success_rate:.1f}%")
    click.echo(f"  Avg time (ms):  {stats.average_execution_time_ms}")


@cli.command("audit-trace")
@click.argument("correlation_id")
@click.pass_obj
def audit_trace(relay, correlation_id):
    """Audit records and retry entries of one business event."""
    records = relay.audit.find_by_correlation_id(correlation_id)
    retries = relay.store.find_retries_by_correlation(correlation_id)

    if not records and not retries:
        click.echo(f"{Fore.YELLOW}No records for correlation ID {correlation_id}")
        sys.exit(1)

    echo_json(
        {
            "audits": [record.to_dict() for record in records],
            "retries": [entry.to_dict() for entry in retries],
        }
    )


@cli.command("retry-list")
@click.argument("client_id")
@click.pass_obj
def retry_list(relay, client_id):
    """Pending retries for a client."""
    entries = relay.retry.get_pending_retries(client_id)
    if not entries:
        click.echo(f"{Fore.GREEN}No pending retries for {client_id}")
        return

    for entry in entries:
        click.echo(
            f"{Fore.YELLOW}{entry.call_id}  attempts={entry.retry_count}/{entry.max_attempts}  "
            f"next={entry.next_retry_time}  last_status={entry.last_status_code}"
        )


@cli.command("retry-stats")
@click.pass_obj
def retry_stats(relay):
    """Retry queue counts."""
    stats = relay.retry.get_retry_stats()
    click.echo(f"{Fore.CYAN}Retry queue")
    click.echo(f"  Pending:    {stats.pending_count}")
    click.echo(f"  Success:    {stats.success_count}")
    click.echo(f"  Exhausted:  {stats.exhausted_count}")


@cli.command("retry-trigger")
@click.argument("call_id")
@click.pass_obj
def retry_trigger(relay, call_id):
    """Run a pending retry now."""
    if not relay.retry.trigger_manual_retry(call_id):
        click.echo(f"{Fore.RED}❌ Retry {call_id} not triggered (missing, terminal or in flight)")
        sys.exit(1)

    entry = relay.retry.get_entry(call_id)
    click.echo(f"{Fore.GREEN}✅ Retry {call_id} attempted: {entry.final_status.value}")


@cli.command("retry-cancel")
@click.argument("call_id")
@click.pass_obj
def retry_cancel(relay, call_id):
    """Cancel a pending retry."""
    if not relay.retry.cancel_retry(call_id):
        click.echo(f"{Fore.RED}❌ Retry {call_id} not cancelled (missing or not pending)")
        sys.exit(1)
    click.echo(f"{Fore.GREEN}✅ Retry {call_id} cancelled")


@cli.command("retry-cleanup")
@click.option("--days", default=None, type=int, help="Retention in days (default RELAY_RETRY_RETENTION_DAYS)")
@click.pass_obj
def retry_cleanup(relay, days):
    """Delete finished retry entries older than the retention window."""
    deleted = relay.retry.cleanup_old_records(days)
    click.echo(f"{Fore.GREEN}✅ Deleted {deleted} old retry records")


@cli.command()
@click.pass_obj
def worker(relay):
    """Run the retry sweep until interrupted."""
    print_banner()

    scheduler = RetryScheduler(relay.retry)
    scheduler.start()
    click.echo(f"{Fore.GREEN}Retry worker running (Ctrl+C to stop)")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Retry worker interrupted")
        click.echo(f"{Fore.YELLOW}Stopping...")
    finally:
        scheduler.shutdown()


if __name__ == "__main__":
    cli()
