"""stackctl command line interface.

Usage:
    stackctl deploy my-stack template.yaml --ImageId=ami-828283 --VpcId=vpc-828283
    stackctl delete my-stack
    stackctl outputs my-stack
    stackctl output my-stack BucketName
    stackctl cleanup '^preview-' --minutes-old 120 --dry-run
    stackctl exists my-stack
    stackctl validate template.yaml --region us-east-1
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

import click

from .api import cleanup as api_cleanup
from .api import delete as api_delete
from .api import deploy as api_deploy
from .api import output as api_output
from .api import outputs as api_outputs
from .api import stack_exists as api_stack_exists
from .api import validate as api_validate
from .config import Config, ConfigurationError
from .control_plane import ControlPlaneError
from .main import setup_logging
from .models import StackAction, StackEvent, StackOptions
from .poller import OperationFailedError, PollTimeoutError
from .templates import TemplateLoadError

T = TypeVar("T")

STATUS_COLORS: dict[str, str] = {
    "CREATE_IN_PROGRESS": "bright_black",
    "CREATE_COMPLETE": "green",
    "CREATE_FAILED": "red",
    "DELETE_IN_PROGRESS": "bright_black",
    "DELETE_COMPLETE": "green",
    "DELETE_FAILED": "red",
    "ROLLBACK_FAILED": "red",
    "ROLLBACK_IN_PROGRESS": "yellow",
    "ROLLBACK_COMPLETE": "red",
    "UPDATE_IN_PROGRESS": "bright_black",
    "UPDATE_COMPLETE": "green",
    "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS": "green",
    "UPDATE_ROLLBACK_IN_PROGRESS": "yellow",
    "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS": "yellow",
    "UPDATE_ROLLBACK_FAILED": "red",
    "UPDATE_ROLLBACK_COMPLETE": "red",
    "UPDATE_FAILED": "red",
}

# Errors reported as a one-line message rather than a traceback
HANDLED_ERRORS = (
    OperationFailedError,
    PollTimeoutError,
    ControlPlaneError,
    TemplateLoadError,
    ConfigurationError,
    ValueError,
)


@dataclass
class CliContext:
    """State shared by all commands."""

    config: Config
    asynchronous: bool = False


def echo_event(event: StackEvent, action: StackAction) -> None:
    """Print one coloured progress line."""
    click.echo(
        "[{}] {} {}: {} - {}  {}  {}".format(
            click.style(event.timestamp.astimezone().strftime("%H:%M:%S"), fg="bright_black"),
            action.verb,
            click.style(event.stack_name, fg="cyan"),
            event.resource_type,
            event.logical_id,
            click.style(event.status, fg=STATUS_COLORS.get(event.status)),
            event.status_reason or "",
        )
    )


def parse_parameter_args(args: list[str]) -> dict[str, str]:
    """Parse trailing --Key=Value (or --Key Value) arguments into parameters.

    Raises:
        click.UsageError: If an argument is not an option.
    """
    params: dict[str, str] = {}
    index = 0
    while index < len(args):
        arg = args[index]
        if not arg.startswith("--") or len(arg) == 2:
            raise click.UsageError(f"Unexpected argument: {arg}")

        key = arg[2:]
        if "=" in key:
            key, value = key.split("=", 1)
        elif index + 1 < len(args) and not args[index + 1].startswith("--"):
            value = args[index + 1]
            index += 1
        else:
            value = "true"

        params[key] = value
        index += 1
    return params


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning library errors into click errors."""
    try:
        return asyncio.run(coro)
    except HANDLED_ERRORS as e:
        raise click.ClickException(click.style(str(e), fg="red")) from e


@click.group()
@click.version_option(package_name="stackctl", prog_name="stackctl")
@click.option("--region", help="AWS region (default: AWS_REGION).")
@click.option("--profile", help="AWS credentials profile (default: AWS_PROFILE).")
@click.option("--poll-interval", type=float, help="Seconds between event polls.")
@click.option("--poll-timeout", type=float, help="Give up waiting after this many seconds.")
@click.option("--async", "asynchronous", is_flag=True, help="Return without waiting for completion.")
@click.pass_context
def cli(
    ctx: click.Context,
    region: str | None,
    profile: str | None,
    poll_interval: float | None,
    poll_timeout: float | None,
    asynchronous: bool,
) -> None:
    """Create, update and delete CloudFormation stacks synchronously.

    \b
    Examples:
        stackctl deploy my-stack template.yaml
        stackctl deploy your-stack template.yml --ImageId=ami-828283 --VpcId=vpc-828283
        stackctl delete your-stack
        stackctl outputs my-stack
        stackctl output my-stack my-field
    """
    try:
        config = Config.from_env()
        overrides: dict[str, Any] = {
            "region": region,
            "profile": profile,
            "poll_interval_seconds": poll_interval,
            "poll_timeout_seconds": poll_timeout,
        }
        config = dataclasses.replace(
            config, **{key: value for key, value in overrides.items() if value is not None}
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(config.log_format, config.log_level)
    ctx.obj = CliContext(config=config, asynchronous=asynchronous)


@cli.command(context_settings={"ignore_unknown_options": True, "allow_extra_args": True})
@click.argument("name")
@click.argument("template")
@click.option("--tag", "tags", multiple=True, help="Stack tag as KEY=VALUE (repeatable).")
@click.pass_context
def deploy(ctx: click.Context, name: str, template: str, tags: tuple[str, ...]) -> None:
    """Create or update stack NAME from TEMPLATE.

    Extra --Key=Value arguments become template parameters.
    """
    obj: CliContext = ctx.obj
    cf_params = parse_parameter_args(list(ctx.args))

    tag_map: dict[str, str] = {}
    for tag in tags:
        if "=" not in tag:
            raise click.BadParameter(f"Tag must be KEY=VALUE: {tag}", param_hint="--tag")
        key, value = tag.split("=", 1)
        tag_map[key] = value

    if cf_params:
        click.echo(click.style("CloudFormation Parameters", fg="cyan"))
        click.echo("==========================")
        click.echo("\n".join(f"{key}: {value}" for key, value in cf_params.items()))
        click.echo("==========================\n")

    options = StackOptions(cf_params=cf_params, tags=tag_map, asynchronous=obj.asynchronous)
    result = run_async(api_deploy(name, template, options=options, config=obj.config, on_event=echo_event))

    if result.no_changes:
        click.echo("No updates are to be performed.")


@cli.command()
@click.argument("name")
@click.pass_obj
def delete(obj: CliContext, name: str) -> None:
    """Delete stack NAME."""
    options = StackOptions(asynchronous=obj.asynchronous)
    run_async(api_delete(name, options, config=obj.config, on_event=echo_event))


@cli.command()
@click.argument("name")
@click.pass_obj
def outputs(obj: CliContext, name: str) -> None:
    """Print the outputs of stack NAME as JSON."""
    click.echo(json.dumps(run_async(api_outputs(name, config=obj.config))))


@cli.command()
@click.argument("name")
@click.argument("field_name", metavar="FIELD")
@click.pass_obj
def output(obj: CliContext, name: str, field_name: str) -> None:
    """Print output FIELD of stack NAME."""
    click.echo(run_async(api_output(name, field_name, config=obj.config)))


@cli.command()
@click.argument("name")
@click.pass_obj
def exists(obj: CliContext, name: str) -> None:
    """Print whether stack NAME exists."""
    click.echo("true" if run_async(api_stack_exists(name, config=obj.config)) else "false")


@cli.command()
@click.argument("template")
@click.option("--region", "validate_region", help="Region to validate in.")
@click.pass_obj
def validate(obj: CliContext, template: str, validate_region: str | None) -> None:
    """Validate TEMPLATE with CloudFormation."""
    result = run_async(api_validate(template, region=validate_region, config=obj.config))
    click.echo(json.dumps(result, indent=2, default=str))


@cli.command()
@click.argument("pattern")
@click.option("--minutes-old", type=float, default=0, show_default=True, help="Minimum stack age.")
@click.option("--dry-run", is_flag=True, help="Only list the stacks that would be deleted.")
@click.option(
    "--limit", type=click.IntRange(min=0), help="Delete at most this many (oldest first); 0 means no limit."
)
@click.pass_obj
def cleanup(
    obj: CliContext, pattern: str, minutes_old: float, dry_run: bool, limit: int | None
) -> None:
    """Delete stacks matching PATTERN (a regular expression)."""
    result = run_async(
        api_cleanup(
            pattern,
            minutes_old=minutes_old,
            dry_run=dry_run,
            limit=limit,
            asynchronous=obj.asynchronous,
            config=obj.config,
            on_event=echo_event,
        )
    )

    for candidate in result.candidates:
        prefix = "Will clean up" if result.dry_run else "Cleaning up"
        click.echo(f"{prefix} {candidate.name} Created {candidate.creation_time.isoformat()}")

    for name, error in result.failed.items():
        click.secho(f"DELETE ERROR: {name}: {error}", fg="red", err=True)

    if not result.success:
        raise click.exceptions.Exit(1)
