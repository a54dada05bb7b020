"""Command-line interface for the inquiry relay.

Operators and schedulers use it to inspect and drive the relay without going
through the HTTP API. Configuration is read exactly like the server does
(``--config`` or ``INQUIRY_RELAY_CONFIG``, then environment variables).

Usage:
    inquiry-relay init-db
    inquiry-relay retry                  # one retry sweep, for cron/systemd timers
    inquiry-relay failed --status failed
    inquiry-relay stats --json
    inquiry-relay verify-smtp
    inquiry-relay send-test office@example.com
    inquiry-relay purge
    inquiry-relay serve --port 8000

Example:
    $ INQUIRY_RELAY_CONFIG=/etc/inquiry-relay/config.ini inquiry-relay retry
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Optional

import click
from rich.console import Console
from rich.table import Table

from .config import RelayConfig, load_config
from .errors import ConfigurationError, TransientDeliveryFailure
from .logger import configure_logging
from .pipeline import SubmissionPipeline

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    click.echo(json.dumps(data, indent=2, default=str))


def _config(ctx: click.Context) -> RelayConfig:
    return ctx.obj["config"]


async def _with_pipeline(config: RelayConfig, action):
    """Initialize a pipeline, run ``action(pipeline)`` and release storage."""
    pipeline = SubmissionPipeline(config)
    await pipeline.init()
    try:
        return await action(pipeline)
    finally:
        await pipeline.db.close()


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Path to config.ini (default: $INQUIRY_RELAY_CONFIG or config.ini).")
@click.option("--log-level", default=None, help="Override LOG_LEVEL.")
@click.version_option(package_name="inquiry-relay")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """inquiry-relay: admission control and reliable delivery of form submissions."""
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        print_error(str(exc))
        sys.exit(2)
    configure_logging(log_level or config.log_level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database schema."""
    async def _noop(pipeline: SubmissionPipeline) -> None:
        return None

    run_async(_with_pipeline(_config(ctx), _noop))
    print_success(f"Database ready at {_config(ctx).database_url}")


@main.command("retry")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def retry(ctx: click.Context, as_json: bool) -> None:
    """Run one retry sweep over pending failed deliveries."""
    async def _sweep(pipeline: SubmissionPipeline):
        return await pipeline.process_failed_deliveries()

    report = run_async(_with_pipeline(_config(ctx), _sweep))
    if as_json:
        print_json(report.as_dict())
        return
    if not report.fetched:
        console.print("[dim]No pending deliveries.[/dim]")
        return
    table = Table(title="Retry sweep")
    table.add_column("Outcome", style="cyan")
    table.add_column("Count", justify="right")
    for key, value in report.as_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@main.command("failed")
@click.option("--status", "-s", type=click.Choice(["pending", "sent", "failed"]), default=None,
              help="Filter by status.")
@click.option("--limit", "-n", type=int, default=100, show_default=True, help="Maximum records.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def failed(ctx: click.Context, status: Optional[str], limit: int, as_json: bool) -> None:
    """List queued deliveries, oldest first."""
    async def _list(pipeline: SubmissionPipeline):
        return await pipeline.store.list_records(status, limit)

    records = run_async(_with_pipeline(_config(ctx), _list))
    if as_json:
        print_json([r.model_dump(mode="json", exclude={"payload"}) for r in records])
        return
    if not records:
        console.print("[dim]No failed deliveries.[/dim]")
        return
    table = Table(title="Failed deliveries")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Channel")
    table.add_column("Form")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Last error")
    table.add_column("Created")
    for r in records:
        status_style = {"pending": "yellow", "sent": "green", "failed": "red"}[r.status.value]
        table.add_row(
            str(r.id),
            r.channel.value,
            r.payload.form_type,
            f"[{status_style}]{r.status.value}[/{status_style}]",
            str(r.retry_count),
            (r.last_error or "-")[:60],
            r.created_at or "-",
        )
    console.print(table)


@main.command("stats")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def stats(ctx: click.Context, as_json: bool) -> None:
    """Show submission and delivery statistics."""
    async def _stats(pipeline: SubmissionPipeline):
        return await pipeline.stats()

    data = run_async(_with_pipeline(_config(ctx), _stats))
    if as_json:
        print_json(data)
        return

    def fmt(value: Optional[float]) -> str:
        return "-" if value is None else f"{value:.0f} ms"

    submissions = data["submissions"]
    table = Table(title="Inquiry relay statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Submissions", str(submissions["total"]))
    table.add_row("Avg processing time", fmt(submissions["avg_processing_time_ms"]))
    table.add_row("Avg email latency", fmt(submissions["avg_email_latency_ms"]))
    table.add_row("Duplicate attempts", str(data["duplicate_attempts"]))
    for status, count in data["failed_deliveries"].items():
        table.add_row(f"Failed deliveries ({status})", str(count))
    console.print(table)

    window = data["window"]
    recent = window["submissions"]
    failures = window["failed_deliveries"]
    table = Table(title=f"Last {window['window_hours']} hours")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Submissions", str(sum(h["count"] for h in recent["hourly_volume"])))
    table.add_row(
        "Avg / peak processing time",
        f"{fmt(recent['average_processing_time_ms'])} / {fmt(recent['peak_processing_time_ms'])}",
    )
    table.add_row(
        "Avg / peak email latency",
        f"{fmt(recent['average_email_latency_ms'])} / {fmt(recent['peak_email_latency_ms'])}",
    )
    table.add_row("Error rate", f"{recent['error_rate']:.1%}")
    table.add_row("Failed deliveries", str(sum(h["count"] for h in failures["hourly_volume"])))
    table.add_row("Avg / peak retry count", f"{failures['average_retry_count']:.1f} / {failures['peak_retry_count']}")
    table.add_row("Retry rate", f"{failures['retry_rate']:.2f}")
    console.print(table)


@main.command("verify-smtp")
@click.pass_context
def verify_smtp(ctx: click.Context) -> None:
    """Check that the SMTP server accepts a connection."""
    async def _verify(pipeline: SubmissionPipeline) -> bool:
        return await pipeline.verify_smtp()

    if not run_async(_with_pipeline(_config(ctx), _verify)):
        print_error("SMTP connection failed")
        sys.exit(1)
    print_success("SMTP connection OK")


@main.command("send-test")
@click.argument("to")
@click.pass_context
def send_test(ctx: click.Context, to: str) -> None:
    """Send a test email to TO."""
    async def _send(pipeline: SubmissionPipeline) -> str:
        return await pipeline.send_test_email(to)

    try:
        receipt = run_async(_with_pipeline(_config(ctx), _send))
    except TransientDeliveryFailure as exc:
        print_error(f"Test email failed: {exc}")
        sys.exit(1)
    print_success(f"Test email sent to {to} ({receipt})")


@main.command("purge")
@click.pass_context
def purge(ctx: click.Context) -> None:
    """Apply the retention policy now."""
    config = _config(ctx)
    if config.retention_days <= 0:
        console.print("[dim]Retention disabled (RETENTION_DAYS=0).[/dim]")
        return

    async def _purge(pipeline: SubmissionPipeline):
        return await pipeline.apply_retention()

    removed = run_async(_with_pipeline(config, _purge))
    for name, count in removed.items():
        console.print(f"{name}: {count} removed")
    print_success(f"Retention applied ({config.retention_days} days)")


@main.command("serve")
@click.option("--host", "-h", default=None, help="Host to bind to (default: config or 0.0.0.0).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: config or 8000).")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development.")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int], reload: bool) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    config = _config(ctx)
    uvicorn.run(
        "inquiry_relay.server:app",
        host=host or config.host,
        port=port or config.port,
        reload=reload,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
