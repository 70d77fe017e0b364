"""CLI entry-point: run the job processor and manage import jobs."""

import logging

import typer
from rich.console import Console
from rich.table import Table

from artimport.config import get_settings
from artimport.jobs import (
    ImportJob,
    InvalidTransitionError,
    JobNotFoundError,
    JobOptions,
    JobQuery,
    JobSource,
    cancel_job,
    create_job,
    create_job_store,
    create_publish_job,
    delete_job,
    get_job,
    list_jobs,
    pause_job,
    resume_job,
)
from artimport.runtime import build_processor

app = typer.Typer(help="Museum artwork import engine")

STATUS_COLORS = {
    "pending": "white",
    "initializing": "cyan",
    "initialized": "cyan",
    "processing": "blue",
    "paused": "yellow",
    "completed": "green",
    "failed": "red",
}


def _store():
    return create_job_store(get_settings())


def _status_text(job: ImportJob) -> str:
    color = STATUS_COLORS.get(job.status.value, "white")
    text = f"[{color}]{job.status.value}[/{color}]"
    if job.pause_reason:
        text += f" ({job.pause_reason.value})"
    return text


def _control(action, job_id: str) -> ImportJob:
    console = Console()
    try:
        return action(_store(), job_id)
    except JobNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    except InvalidTransitionError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def run(
    once: bool = typer.Option(False, "--once", help="Drain eligible jobs, then exit"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Run the job processor in the foreground."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    console = Console()
    settings = get_settings()
    processor = build_processor(settings)

    if once:
        processor.recover_interrupted()
        iterations = 0
        while processor.run_once():
            iterations += 1
        console.print(f"[green]Done.[/green] {iterations} job step(s) run")
        return

    console.print("Job processor running. Press Ctrl+C to stop.")
    try:
        processor.run_forever()
    except KeyboardInterrupt:
        console.print("Stopped.")


@app.command()
def submit(
    source: JobSource = typer.Option(JobSource.CATEGORY, help="Job source: category | url"),
    url: str | None = typer.Option(None, help="Collection search URL (url jobs)"),
    keywords: str = typer.Option("", help="Search keywords"),
    artwork_type: list[str] = typer.Option(default=[], help="Classification filter (repeatable)"),
    time_period: list[str] = typer.Option(default=[], help="Time period, e.g. 'Renaissance'"),
    department: list[int] = typer.Option(default=[], help="Department id (repeatable)"),
    medium: list[str] = typer.Option(default=[], help="Medium filter (repeatable)"),
    region: list[str] = typer.Option(default=[], help="Region/culture filter (repeatable)"),
    date_begin: int | None = typer.Option(None, help="Earliest object year"),
    date_end: int | None = typer.Option(None, help="Latest object year"),
    max_items: int = typer.Option(100, min=1, help="Maximum objects to import"),
    skip_upload: bool = typer.Option(False, "--skip-upload", help="Do not publish to the storefront"),
    include_existing: bool = typer.Option(
        False, "--include-existing", help="Reprocess objects that are already published"
    ),
    price: float = typer.Option(99.99, help="Default product price"),
    name: str | None = typer.Option(None, help="Job name"),
):
    """Queue a new import job."""
    console = Console()
    query = JobQuery(
        url=url,
        keywords=keywords,
        artwork_types=artwork_type,
        time_periods=time_period,
        department_ids=department,
        mediums=medium,
        regions=region,
        date_begin=date_begin,
        date_end=date_end,
    )
    options = JobOptions(
        max_items=max_items,
        skip_shopify_upload=skip_upload,
        skip_existing=not include_existing,
        default_price=price,
    )
    try:
        job = create_job(_store(), source, query, options, name)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"Created job [bold]{job.job_id}[/bold] ({job.name})")


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job id"),
    as_json: bool = typer.Option(False, "--json", help="Print the full job record as JSON"),
):
    """Show a job's status and progress."""
    console = Console()
    job = _control(get_job, job_id)
    if as_json:
        console.print_json(job.model_dump_json())
        return

    console.print(f"[bold]{job.name}[/bold] ({job.job_id})")
    console.print(f"Status:   {_status_text(job)}")
    console.print(f"Progress: {job.progress}% of {job.total_objects} objects")
    console.print(
        f"Processed {len(job.processed_ids)}, failed {len(job.failed_ids)}, "
        f"skipped {len(job.skipped_ids)}"
    )
    if job.resume_after:
        console.print(f"Resumes after: {job.resume_after.isoformat()}")
    if job.error:
        console.print(f"[red]Error: {job.error}[/red]")

    errors = [r for r in job.results if r.error]
    if errors:
        table = Table(title="Item errors")
        table.add_column("Object")
        table.add_column("Error")
        for r in errors:
            table.add_row(str(r.object_id), r.error)
        console.print(table)


@app.command("list")
def list_command(
    status: str | None = typer.Option(None, help="Only jobs with this status"),
):
    """List jobs, newest first."""
    console = Console()
    try:
        jobs = list_jobs(_store(), status)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    if not jobs:
        console.print("No jobs.")
        return

    table = Table()
    table.add_column("Job")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Created")
    for job in jobs:
        table.add_row(
            job.job_id,
            job.name,
            _status_text(job),
            f"{job.progress}% ({len(job.processed_ids)}/{job.total_objects})",
            f"{job.created_at:%Y-%m-%d %H:%M}",
        )
    console.print(table)


@app.command()
def pause(job_id: str = typer.Argument(..., help="Job id")):
    """Pause a job between items."""
    job = _control(pause_job, job_id)
    Console().print(f"Job {job.job_id}: {_status_text(job)}")


@app.command()
def resume(job_id: str = typer.Argument(..., help="Job id")):
    """Resume a paused job (rate-limited jobs only once their wait has passed)."""
    job = _control(resume_job, job_id)
    Console().print(f"Job {job.job_id}: {_status_text(job)}")


@app.command()
def cancel(job_id: str = typer.Argument(..., help="Job id")):
    """Cancel a job; it is marked failed."""
    job = _control(cancel_job, job_id)
    Console().print(f"Job {job.job_id}: {_status_text(job)}")


@app.command()
def publish(job_id: str = typer.Argument(..., help="Completed job id")):
    """Queue a storefront upload of a completed job's unpublished items."""
    job = _control(create_publish_job, job_id)
    Console().print(f"Created upload job [bold]{job.job_id}[/bold] with {job.total_objects} objects")


@app.command()
def delete(job_id: str = typer.Argument(..., help="Job id")):
    """Delete a job record."""
    _control(delete_job, job_id)
    Console().print(f"Deleted job {job_id}")


if __name__ == "__main__":
    app()
