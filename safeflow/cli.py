"""Command line interface for inspecting and driving lifecycle records."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from pydantic import ValidationError

from safeflow.config import load_config
from safeflow.contracts import Schedule, WorkflowDefinition
from safeflow.deadlines import to_utc
from safeflow.lifecycle import schedule_from_duration
from safeflow.persistence import get_repository
from safeflow.service import ACTIONS, LifecycleService
from safeflow.sweeper import ExpirySweeper
from safeflow.transports import get_transport

app = typer.Typer(help="CLI for safeflow lifecycle records")

# Command groups
record_app = typer.Typer(help="Commands for managing records")
workflow_app = typer.Typer(help="Commands for workflow definitions")

app.add_typer(record_app, name="record")
app.add_typer(workflow_app, name="workflow")

DATETIME_FORMATS = ["%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M", "%Y-%m-%d"]


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    """safeflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _service() -> LifecycleService:
    config = load_config()
    return LifecycleService(
        config=config,
        repository=get_repository(),
        transport=get_transport(config=config),
    )


@record_app.command("create")
def record_create(
    family: str,
    owner: str = typer.Option(..., help="Owner (requester) id"),
    title: str = typer.Option("", help="Short description"),
    start: Optional[datetime] = typer.Option(None, formats=DATETIME_FORMATS),
    end: Optional[datetime] = typer.Option(None, formats=DATETIME_FORMATS),
    hours: Optional[float] = typer.Option(None, help="Duration from --start (or now)"),
    high_risk: bool = typer.Option(False, "--high-risk", help="Use the high-risk approval flow"),
    work_type: Optional[List[str]] = typer.Option(None, "--work-type", help="Checklist template to attach"),
) -> None:
    """
    Create a draft record.

    The schedule is taken from --start/--end, from --start (or now) plus
    --hours, or from the family's default duration starting at --start (or now).

    Example:
        safeflow record create permit --owner u1 --start 2025-01-01T08:00 --end 2025-01-01T18:00
        safeflow record create incident --owner u7 --title "Forklift near miss"
    """
    service = _service()
    if start is not None and end is not None:
        schedule = Schedule(start=to_utc(start), end=to_utc(end))
    elif hours is not None:
        schedule = schedule_from_duration(start or service.clock(), hours)
    elif end is not None:
        schedule = Schedule(start=service.clock(), end=to_utc(end))
    else:
        schedule = None

    try:
        record = asyncio.run(
            service.create(
                family,
                owner,
                schedule,
                title=title,
                high_risk=high_risk,
                work_types=work_type or None,
                start=start,
            )
        )
    except (ValueError, ValidationError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"{record.id}\t{record.state}")


@record_app.command("list")
def record_list(
    family: Optional[str] = typer.Option(None, help="Only this family"),
    state: Optional[str] = typer.Option(None, help="Only records currently in this state"),
) -> None:
    """
    List records with their current state.

    States are reported as a reader sees them now, so a lapsed active record
    shows as expired even before the sweeper has run.
    """
    service = _service()

    async def _collect():
        records = await service.repository.list_records(family=family)
        return [service.build_view(r) for r in records]

    views = asyncio.run(_collect())
    if state is not None:
        views = [v for v in views if v.state == state]
    if not views:
        typer.echo("No records found")
        return
    for view in views:
        typer.echo(f"{view.record_id}\t{view.family}\t{view.state}\t{view.title}")


@record_app.command("show")
def record_show(
    record_id: str,
    as_json: bool = typer.Option(False, "--json", help="Print the full view as JSON"),
) -> None:
    """Show state, who must act next, deadlines and history for a record."""
    service = _service()
    view = asyncio.run(service.view(record_id))
    if view is None:
        typer.echo("Record not found")
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(view.model_dump_json(indent=2))
        return

    typer.echo(f"Record {view.record_id} ({view.family}): {view.state}")
    if view.title:
        typer.echo(f"Title: {view.title}")
    for step in view.actionable_steps:
        label = step.step_def.label or step.step_def.role
        typer.echo(f"Awaiting: step {step.step_id} {label} [{step.step_def.role}]")
    for item in view.step_slas:
        typer.echo(
            f"Step {item.step_id} due {item.sla.due_at.isoformat()} "
            f"({item.sla.status.value}, {item.sla.days_remaining}d)"
        )
    if view.record_sla is not None:
        typer.echo(
            f"Expires {view.record_sla.due_at.isoformat()} "
            f"({view.record_sla.status.value}, {view.record_sla.days_remaining}d)"
        )
    for entry in view.history:
        typer.echo(
            f"- {entry.at.isoformat()} {entry.action} by {entry.actor_id}: "
            f"{entry.from_state or '-'} -> {entry.to_state}"
            + (f" ({entry.detail})" if entry.detail else "")
        )


@app.command("act")
def act(
    action: str,
    record_id: str,
    actor: str = typer.Option(..., help="Acting user id"),
    role: str = typer.Option(..., help="Acting user's role"),
    payload: Optional[str] = typer.Option(None, help="JSON payload for the action"),
) -> None:
    """
    Apply an action to a record.

    Example:
        safeflow act submit <id> --actor u1 --role requester
        safeflow act decide <id> --actor h1 --role hod --payload '{"step": 1, "decision": "approve"}'
    """
    if action not in ACTIONS:
        typer.secho(
            f"Unknown action {action!r}; expected one of: {', '.join(ACTIONS)}",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=2)
    try:
        data = json.loads(payload) if payload else None
    except json.JSONDecodeError as exc:
        typer.secho(f"Payload is not valid JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=2)

    service = _service()
    result = asyncio.run(service.apply(action, record_id, actor, role, data))
    if result.error is not None:
        typer.secho(str(result.error), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"{result.record_id}\t{result.state}")


@app.command("sweep")
def sweep(
    lifespan: Optional[float] = typer.Option(
        None, help="Keep sweeping for this many seconds instead of sweeping once"
    ),
) -> None:
    """Persist the expired state of every lapsed active record."""
    sweeper = ExpirySweeper(_service())
    if lifespan is not None:
        asyncio.run(sweeper.run(lifespan=lifespan))
        return
    expired = asyncio.run(sweeper.sweep_once())
    typer.echo(f"Expired {len(expired)} record(s)")
    for record_id in expired:
        typer.echo(record_id)


@workflow_app.command("validate")
def workflow_validate(path: Path) -> None:
    """
    Validate a workflow definition file.

    The YAML file holds either a list of steps or a mapping with a ``steps``
    key. Each step needs at least ``order`` and ``role``.
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    with open(path) as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, list):
        data = {"steps": data}

    try:
        definition = WorkflowDefinition.model_validate(data)
    except ValidationError as exc:
        typer.secho(f"Invalid workflow: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"Valid workflow with {len(definition.steps)} step(s)")
    for step in definition.steps:
        flags = []
        if not step.required:
            flags.append("optional")
        if step.parallel:
            flags.append("parallel")
        if step.time_limit_hours is not None:
            flags.append(f"{step.time_limit_hours:g}h")
        roles = "/".join([step.role, *step.alternate_roles])
        suffix = f" ({', '.join(flags)})" if flags else ""
        typer.echo(f"  {step.order}. {step.label or step.role} [{roles}]{suffix}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
