"""
Root Typer application for the relay CLI.

``relay tick`` is meant to be run by cron (every minute) and
``relay maintain`` hourly; the rest are operator views.
"""

from __future__ import annotations

import typer

from relay.cli.utils import err_console, make_container, output_json, output_table
from relay.core.logging import configure_logging
from relay.execution.models import JobGroup, JobStatus

app = typer.Typer(
    name="relay",
    help="relay-core — order delivery queue, rate limits and circuit breakers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

DatabaseOption = typer.Option(None, "--database", "-d", help="SQLite job database path")
RepositoryOption = typer.Option(
    None,
    "--repository",
    "-r",
    envvar="RELAY_REPOSITORY",
    help="Order repository as 'module:attribute'",
)
JsonOption = typer.Option(False, "--json", help="Emit JSON")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level"),
) -> None:
    """relay-core CLI."""
    configure_logging(level=log_level)


@app.command()
def tick(
    limit: int | None = typer.Option(None, "--limit", "-n", help="Max jobs to run"),
    database: str | None = DatabaseOption,
    repository: str | None = RepositoryOption,
    json_out: bool = JsonOption,
) -> None:
    """Run due jobs once."""
    if not repository:
        err_console.print("[red]--repository is required to deliver orders[/red]")
        raise typer.Exit(2)
    with make_container(database, repository) as container:
        result = container.scheduler.tick(limit)
    if json_out:
        output_json(result.to_dict())
    else:
        output_table([result.to_dict()], title="Tick")


@app.command()
def status(
    hook: str | None = typer.Option(None, "--hook"),
    group: JobGroup | None = typer.Option(None, "--group"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Job counts by state."""
    with make_container(database) as container:
        counts = container.scheduler.get_status(hook=hook, group=group)
    if json_out:
        output_json(counts.to_dict())
        return
    output_table(
        [{"status": k, "count": v} for k, v in counts.counts.items()] + [{"status": "stuck", "count": counts.stuck}],
        title=f"Jobs ({counts.total} total)",
    )
    output_table(counts.recent_failures, title="Recent failures")


@app.command("jobs")
def list_jobs(
    job_status: JobStatus | None = typer.Option(None, "--status"),
    hook: str | None = typer.Option(None, "--hook"),
    group: JobGroup | None = typer.Option(None, "--group"),
    page: int = typer.Option(1, "--page"),
    per_page: int = typer.Option(20, "--per-page"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """List jobs, newest first."""
    with make_container(database) as container:
        result = container.scheduler.get_jobs(job_status, hook, group, per_page=per_page, page=page)
    if json_out:
        output_json(result.to_dict())
        return
    output_table(
        [job.to_dict() for job in result.jobs],
        title=f"Jobs (page {result.page}/{result.pages}, {result.total} total)",
        columns=["id", "hook", "group", "status", "retry_count", "not_before", "last_error"],
    )


@app.command()
def health(
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Job queue health; exits 1 when unhealthy."""
    with make_container(database) as container:
        report = container.scheduler.monitor_health(log_stats=False)
    if json_out:
        output_json(report.to_dict())
    else:
        output_table(
            [g.to_dict() for g in report.groups.values()],
            title="Healthy" if report.healthy else "UNHEALTHY",
            columns=["group", "healthy", "stuck", "issues"],
        )
    if not report.healthy:
        raise typer.Exit(1)


@app.command()
def cleanup(
    days: int | None = typer.Option(None, "--days", help="Retention window in days"),
    database: str | None = DatabaseOption,
) -> None:
    """Delete finished jobs older than the retention window."""
    with make_container(database) as container:
        result = container.scheduler.cleanup(older_than_days=days)
    typer.echo(f"Deleted {result.deleted} job(s) in {result.batches} batch(es)")


@app.command()
def maintain(
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Hourly maintenance: health alerts plus cleanup."""
    with make_container(database) as container:
        result = container.scheduler.check_stuck_jobs()
    if json_out:
        output_json(result)
    else:
        typer.echo(f"healthy={result['health']['healthy']} deleted={result['deleted']}")


@app.command()
def cancel(
    job_id: str = typer.Argument(..., help="Job id"),
    database: str | None = DatabaseOption,
) -> None:
    """Cancel a pending job."""
    with make_container(database) as container:
        canceled = container.scheduler.cancel_job(job_id)
    if not canceled:
        err_console.print(f"[red]Job {job_id} is not pending[/red]")
        raise typer.Exit(1)
    typer.echo(f"Canceled {job_id}")


@app.command()
def buckets(json_out: bool = JsonOption) -> None:
    """Token bucket state per resource."""
    with make_container() as container:
        stats = container.limiter.get_statistics()
    if json_out:
        output_json(stats)
    else:
        output_table(list(stats.values()), title="Rate limits", columns=["resource", "capacity", "tokens", "blocked_for"])


@app.command()
def breakers(
    resource: list[str] = typer.Argument(None, help="Resources (default: all tracked)"),
    reset: bool = typer.Option(False, "--reset", help="Close the circuit and forget errors"),
    json_out: bool = JsonOption,
) -> None:
    """Circuit breaker state per resource."""
    with make_container() as container:
        breaker = container.breaker
        names = resource or breaker.tracked_resources() or sorted(container.settings.rate_limits)
        if reset:
            for name in names:
                breaker.reset(name)
        rows = [breaker.state(name).to_dict() for name in names]
    if json_out:
        output_json(rows)
    else:
        output_table(rows, title="Circuit breakers")


if __name__ == "__main__":
    app()
