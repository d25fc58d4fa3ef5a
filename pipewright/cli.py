from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import click

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from pipewright.agent_runtime.context import RunContext
    from pipewright.agent_runtime.models.events import RunEvent


@click.group()
@click.option(
    "--workspace",
    default=None,
    type=click.Path(file_okay=False, exists=True),
    help="Workspace root (default: from PIPEWRIGHT_WORKSPACE_ROOT or the current directory).",
)
@click.pass_context
def main(ctx: click.Context, workspace: str | None) -> None:
    """Pipewright - run scripted agent pipelines."""
    ctx.ensure_object(dict)
    ctx.obj["workspace"] = workspace


def _parse_input(value: str) -> Any:
    """``-i`` values are JSON when they parse, plain strings otherwise."""
    try:
        return json.loads(value)
    except ValueError:
        return value


def _build_context(workspace: str | None, quiet: bool) -> RunContext:
    from pipewright.agent_runtime.context import create_run_context
    from pipewright.agent_runtime.log import setup_logging
    from pipewright.agent_runtime.settings import PipewrightSettings

    settings = PipewrightSettings()
    if workspace is not None:
        settings = settings.model_copy(update={"workspace_root": workspace})
    setup_logging(settings.log_level)

    def _echo_event(event: RunEvent) -> None:
        click.echo(event.describe(), err=True)

    return create_run_context(settings, event_sink=None if quiet else _echo_event)


def _execute(coro_factory: Callable[[], Awaitable[Any]]) -> Any:
    """Run the coroutine and turn pipeline errors into a non-zero exit."""
    import asyncio

    from pipewright.agent_runtime.errors import PipelineError

    try:
        return asyncio.run(coro_factory())
    except PipelineError as exc:
        raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc


# ---------------------------------------------------------------------------
# Run modes
# ---------------------------------------------------------------------------


@main.command()
@click.argument("agent")
@click.option("-i", "--input", "values", multiple=True, help="Input value (JSON, or a plain string). Repeatable.")
@click.option("-f", "--file", "patterns", multiple=True, help="Glob of input files (** supported). Repeatable.")
@click.option("--quiet", is_flag=True, default=False, help="Do not print progress events.")
@click.pass_context
def run(ctx: click.Context, agent: str, values: tuple[str, ...], patterns: tuple[str, ...], quiet: bool) -> None:
    """Run AGENT over a list of inputs and print the outcome as JSON."""
    from pipewright.agent_runtime.execution.runners import file_inputs, run_list

    run_ctx = _build_context(ctx.obj["workspace"], quiet)
    inputs: list[Any] | None = None
    if values or patterns:
        inputs = [_parse_input(v) for v in values]
        inputs.extend(file_inputs(patterns, root=run_ctx.settings.workspace_root))

    outcome = _execute(lambda: run_list(run_ctx, agent, inputs))
    click.echo(json.dumps(outcome.to_report(), indent=2, ensure_ascii=False))
    if not outcome.ok:
        raise SystemExit(1)


@main.command()
@click.argument("agent")
@click.argument("target", type=click.Path(dir_okay=False))
@click.option("--write", is_flag=True, default=False, help="Replace TARGET with the (text) output.")
@click.option("--quiet", is_flag=True, default=False, help="Do not print progress events.")
@click.pass_context
def solo(ctx: click.Context, agent: str, target: str, write: bool, quiet: bool) -> None:
    """Run AGENT once against the file TARGET."""
    from pipewright.agent_runtime.execution.runners import run_solo

    run_ctx = _build_context(ctx.obj["workspace"], quiet)
    outcome = _execute(lambda: run_solo(run_ctx, agent, target, write_output=write))
    click.echo(json.dumps(outcome.to_report(), indent=2, ensure_ascii=False))


@main.command("list")
@click.pass_context
def list_agents(ctx: click.Context) -> None:
    """List agents reachable by bare name."""
    from pipewright.agent_runtime.execution.resolver import AgentLocator
    from pipewright.agent_runtime.settings import PipewrightSettings

    settings = PipewrightSettings()
    workspace = ctx.obj["workspace"] or settings.workspace_root
    locator = AgentLocator(workspace, settings.agent_dirs)
    for path in locator.list_agents():
        click.echo(f"{path.stem}\t{path}")


if __name__ == "__main__":
    main()
