"""
CRMflow CLI - Command line interface for the automation scheduler.

Usage:
    crmflow --help              Show all commands
    crmflow tick                Run one scheduler tick
    crmflow due                 List automations due now (no execution)
    crmflow reactivate <id>     Reactivate a completed one-time automation
    crmflow migrate             Run database migrations
    crmflow serve               Start the API server
"""

import asyncio
import uuid

import typer

app = typer.Typer(
    name="crmflow",
    help="CRMflow CLI - Automation scheduler for the freelancer CRM",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    """Print a warning message."""
    typer.echo(f"  ⚠️ {message}")


def _print_skipped(message: str) -> None:
    """Print a skipped step message."""
    typer.echo(f"  ⏭️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command()
def tick():
    """Run one scheduler tick and print the summary."""
    from crmflow.core.database import AsyncSessionLocal
    from crmflow.core.logging import setup_logging
    from crmflow.scheduling.engine import ExecutionEngine, OutcomeStatus, TickInProgressError

    setup_logging()
    engine = ExecutionEngine.from_config(AsyncSessionLocal)

    try:
        summary = asyncio.run(engine.run_tick())
    except TickInProgressError as e:
        _print_error(str(e))
        raise typer.Exit(1) from e

    typer.echo(
        f"\nTick at {summary.started_at.isoformat()}: "
        f"{summary.due_count} due of {summary.evaluated_count} scheduled"
    )
    for outcome in summary.results:
        label = f"{outcome.name} ({outcome.automation_id})"
        if outcome.status == OutcomeStatus.SUCCESS:
            next_at = outcome.next_execution_at.isoformat() if outcome.next_execution_at else "-"
            _print_success(f"{label} next: {next_at}")
        elif outcome.status == OutcomeStatus.SKIPPED:
            _print_skipped(f"{label}: {outcome.reason}")
        elif outcome.status == OutcomeStatus.FAILED:
            _print_warning(f"{label}: {outcome.error}")
        else:
            _print_error(f"{label}: {outcome.error}")

    if summary.count(OutcomeStatus.CRITICAL_ERROR):
        raise typer.Exit(1)


@app.command()
def due():
    """List the automations a tick would run now, without executing them."""
    from crmflow.core.database import AsyncSessionLocal
    from crmflow.scheduling.engine import ExecutionEngine

    engine = ExecutionEngine.from_config(AsyncSessionLocal)
    automations = asyncio.run(engine.preview_due())

    if not automations:
        typer.echo("No automation due.")
        return

    for automation in automations:
        typer.echo(
            f"{automation.next_execution_at.isoformat()}  {automation.id}  "
            f"{automation.type.value:<18} {automation.name}"
        )


@app.command()
def reactivate(automation_id: str = typer.Argument(..., help="Automation ID")):
    """Reactivate a completed one-time automation."""
    from crmflow.core.database import AsyncSessionLocal
    from crmflow.services.automation_service import (
        AutomationStateError,
        get_automation,
        reactivate_automation,
    )

    try:
        automation_uuid = uuid.UUID(automation_id)
    except ValueError as e:
        _print_error(f"Invalid automation ID: {automation_id}")
        raise typer.Exit(1) from e

    async def _run():
        async with AsyncSessionLocal() as db:
            automation = await get_automation(db, automation_uuid)
            if automation is None:
                return None
            return await reactivate_automation(db, automation)

    try:
        automation = asyncio.run(_run())
    except AutomationStateError as e:
        _print_error(str(e))
        raise typer.Exit(1) from e

    if automation is None:
        _print_error(f"Automation {automation_id} not found")
        raise typer.Exit(1)

    next_at = automation.next_execution_at.isoformat() if automation.next_execution_at else "-"
    _print_success(f"{automation.name} reactivated, next execution: {next_at}")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "crmflow.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
