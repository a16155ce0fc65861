"""CLI entrypoint for the mcoda runtime core."""

import logging
import os
from collections.abc import Callable
from functools import wraps
from pathlib import Path

import rich_click as click

from mcoda import __version__
from mcoda.errors import McodaError
from mcoda.jobs.controllers import JobsCliController, JobsListCommand, JobStatusCommand
from mcoda.routing.controllers import (
    AgentAddCommand,
    AgentHealthCommand,
    RoutingCliController,
    RoutingDefaultsCommand,
    RoutingPreviewCommand,
    RoutingSetCommand,
)
from mcoda.routing.models import HealthStatus

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()
ROUTING_CONTROLLER = RoutingCliController()

_WORKSPACE_OPTION = click.option(
    "--workspace-root",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Workspace root. Defaults to MCODA_WORKSPACE_ROOT or the current directory.",
)
_WORKSPACE_ID_OPTION = click.option(
    "--workspace-id",
    default=None,
    help="Workspace id. Defaults to MCODA_WORKSPACE_ID or the resolved workspace root.",
)


def _reported(func: Callable[..., list[str]]) -> Callable[..., None]:
    """Echo controller lines and turn domain errors into CLI errors."""

    @wraps(func)
    def wrapper(*args, **kwargs) -> None:
        try:
            lines = func(*args, **kwargs)
        except (McodaError, ValueError) as error:
            raise click.ClickException(str(error)) from error
        _emit_lines(lines)

    return wrapper


@click.group()
@click.version_option(version=__version__, prog_name="mcoda")
def mcoda() -> None:
    """mcoda runtime: jobs, agent routing and context lanes."""

    level = os.getenv("MCODA_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@mcoda.group()
def jobs() -> None:
    """Job inspection commands."""


@jobs.command("list")
@_WORKSPACE_OPTION
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of jobs to print.",
)
@click.option(
    "--all-workspaces",
    is_flag=True,
    default=False,
    help="Include jobs from every workspace sharing the database.",
)
@_reported
def jobs_list(workspace_root: Path | None, limit: int, all_workspaces: bool) -> list[str]:
    """List recent jobs of the workspace."""

    return JOBS_CONTROLLER.list_jobs(
        JobsListCommand(
            workspace_root=workspace_root,
            limit=limit,
            all_workspaces=all_workspaces,
        ),
    )


@jobs.command("status")
@_WORKSPACE_OPTION
@click.argument("job_id")
@_reported
def jobs_status(workspace_root: Path | None, job_id: str) -> list[str]:
    """Show job state, latest checkpoint and command runs."""

    return JOBS_CONTROLLER.status(JobStatusCommand(workspace_root=workspace_root, job_id=job_id))


@jobs.command("checkpoints")
@_WORKSPACE_OPTION
@click.argument("job_id")
@_reported
def jobs_checkpoints(workspace_root: Path | None, job_id: str) -> list[str]:
    """List every sequenced checkpoint of a job."""

    return JOBS_CONTROLLER.checkpoints(
        JobStatusCommand(workspace_root=workspace_root, job_id=job_id),
    )


@jobs.command("resume")
@_WORKSPACE_OPTION
@click.argument("job_id")
@_reported
def jobs_resume(workspace_root: Path | None, job_id: str) -> list[str]:
    """Check that a paused or failed job can resume and show its latest checkpoint."""

    return JOBS_CONTROLLER.resume(JobStatusCommand(workspace_root=workspace_root, job_id=job_id))


@mcoda.group()
def routing() -> None:
    """Agent routing commands."""


@routing.command("defaults")
@_WORKSPACE_OPTION
@_WORKSPACE_ID_OPTION
@_reported
def routing_defaults(workspace_root: Path | None, workspace_id: str | None) -> list[str]:
    """Show routing defaults of a workspace."""

    return ROUTING_CONTROLLER.defaults(
        RoutingDefaultsCommand(workspace_root=workspace_root, workspace_id=workspace_id),
    )


@routing.command("preview")
@_WORKSPACE_OPTION
@_WORKSPACE_ID_OPTION
@click.argument("command_name")
@click.option("--task-type", default=None, help="Task type, for example `qa` or `e2e-qa`.")
@click.option("--agent", default=None, help="Override agent slug to evaluate first.")
@_reported
def routing_preview(
    workspace_root: Path | None,
    workspace_id: str | None,
    command_name: str,
    task_type: str | None,
    agent: str | None,
) -> list[str]:
    """Explain which agent a command would be routed to."""

    return ROUTING_CONTROLLER.preview(
        RoutingPreviewCommand(
            workspace_root=workspace_root,
            workspace_id=workspace_id,
            command_name=command_name,
            task_type=task_type,
            agent=agent,
        ),
    )


@routing.command("set")
@_WORKSPACE_OPTION
@_WORKSPACE_ID_OPTION
@click.argument("bindings", nargs=-1)
@click.option(
    "--reset",
    "reset",
    multiple=True,
    help="Command whose binding should be cleared. Can be repeated.",
)
@click.option("--qa-profile", default=None, help="QA profile stored with the bindings.")
@click.option("--docdex-scope", default=None, help="Docdex scope stored with the bindings.")
@_reported
def routing_set(  # noqa: PLR0913
    workspace_root: Path | None,
    workspace_id: str | None,
    bindings: tuple[str, ...],
    reset: tuple[str, ...],
    qa_profile: str | None,
    docdex_scope: str | None,
) -> list[str]:
    """Bind commands to agents with `COMMAND=AGENT` pairs; all or nothing."""

    return ROUTING_CONTROLLER.set_defaults(
        RoutingSetCommand(
            workspace_root=workspace_root,
            workspace_id=workspace_id,
            bindings=bindings,
            reset=reset,
            qa_profile=qa_profile,
            docdex_scope=docdex_scope,
        ),
    )


@mcoda.group()
def agents() -> None:
    """Local agent registry commands."""


@agents.command("add")
@_WORKSPACE_OPTION
@click.argument("slug")
@click.option(
    "--capability",
    "capabilities",
    multiple=True,
    help="Capability the agent supports. Can be repeated.",
)
@click.option("--adapter", default="local", show_default=True, help="Adapter kind.")
@click.option("--model", default=None, help="Default model for the agent.")
@_reported
def agents_add(
    workspace_root: Path | None,
    slug: str,
    capabilities: tuple[str, ...],
    adapter: str,
    model: str | None,
) -> list[str]:
    """Register or update an agent in the local registry."""

    return ROUTING_CONTROLLER.add_agent(
        AgentAddCommand(
            workspace_root=workspace_root,
            slug=slug,
            capabilities=capabilities,
            adapter=adapter,
            model=model,
        ),
    )


@agents.command("health")
@_WORKSPACE_OPTION
@click.argument("slug")
@click.argument(
    "status",
    type=click.Choice([status.value for status in HealthStatus], case_sensitive=False),
)
@click.option("--latency-ms", type=click.IntRange(min=0), default=None, help="Probe latency.")
@_reported
def agents_health(
    workspace_root: Path | None,
    slug: str,
    status: str,
    latency_ms: int | None,
) -> list[str]:
    """Record the health status of a registered agent."""

    return ROUTING_CONTROLLER.set_health(
        AgentHealthCommand(
            workspace_root=workspace_root,
            slug=slug,
            status=status,
            latency_ms=latency_ms,
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    mcoda()
