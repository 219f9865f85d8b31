"""Public API.

Each function builds a CloudFormation client from configuration (the
environment by default), runs one operation and returns. These are the
operations the CLI exposes; library users can call them directly:

    import asyncio
    from stackctl import api

    asyncio.run(api.deploy("my-stack", "template.yaml", {"Env": "prod"}))
"""

from __future__ import annotations

import dataclasses
from typing import Any

from .cleanup import CleanupScanner
from .config import Config, configure
from .control_plane import CloudFormationClient
from .models import CleanupOptions, CleanupResult, StackOptions
from .poller import EventSink
from .reconciler import ReconcileResult, StackReconciler

__all__ = [
    "cleanup",
    "configure",
    "delete",
    "deploy",
    "output",
    "outputs",
    "stack_exists",
    "validate",
]


def build_reconciler(
    config: Config | None = None,
    region: str | None = None,
    on_event: EventSink | None = None,
) -> StackReconciler:
    """Create a reconciler backed by a real CloudFormation client.

    Args:
        config: Runtime configuration (default: loaded from the environment).
        region: Region override.
        on_event: Receives progress events while polling.
    """
    config = config or Config.from_env()
    if region:
        config = dataclasses.replace(config, region=region)
    client = CloudFormationClient.from_config(config)
    return StackReconciler(client, config=config, on_event=on_event)


async def deploy(
    name: str,
    template: Any,
    cf_params: dict[str, Any] | None = None,
    options: StackOptions | None = None,
    *,
    config: Config | None = None,
    on_event: EventSink | None = None,
) -> ReconcileResult:
    """Create or update a stack and wait for it to settle.

    Raises:
        OperationFailedError: If the stack ends in a failure state.
        ControlPlaneError: If a CloudFormation call fails.
        TemplateLoadError: If the template cannot be resolved.
    """
    options = options or StackOptions()
    if cf_params:
        options = options.model_copy(update={"cf_params": dict(cf_params)})
    reconciler = build_reconciler(config, on_event=on_event)
    return await reconciler.deploy(name, template, options)


async def delete(
    name: str,
    options: StackOptions | None = None,
    *,
    config: Config | None = None,
    on_event: EventSink | None = None,
) -> ReconcileResult:
    """Delete a stack and wait until it is gone."""
    reconciler = build_reconciler(config, on_event=on_event)
    return await reconciler.delete(name, options)


async def outputs(name: str, *, config: Config | None = None) -> dict[str, str]:
    """Get a stack's outputs as OutputKey -> OutputValue."""
    return await build_reconciler(config).outputs(name)


async def output(name: str, field_name: str, *, config: Config | None = None) -> str:
    """Get one stack output, or an empty string."""
    return await build_reconciler(config).output(name, field_name)


async def stack_exists(name: str, *, config: Config | None = None) -> bool:
    """Check if a stack exists in an updatable state."""
    return await build_reconciler(config).stack_exists(name)


async def validate(
    template: Any,
    template_params: Any = None,
    region: str | None = None,
    *,
    config: Config | None = None,
) -> dict[str, Any]:
    """Validate a template with CloudFormation."""
    return await build_reconciler(config, region=region).validate(template, template_params)


async def cleanup(
    pattern: str,
    minutes_old: float = 0,
    dry_run: bool = False,
    limit: int | None = None,
    *,
    asynchronous: bool = False,
    config: Config | None = None,
    on_event: EventSink | None = None,
) -> CleanupResult:
    """Delete stale stacks whose names match a pattern."""
    options = CleanupOptions(
        pattern=pattern,
        minutes_old=minutes_old,
        dry_run=dry_run,
        limit=limit,
        asynchronous=asynchronous,
    )
    reconciler = build_reconciler(config, on_event=on_event)
    scanner = CleanupScanner(reconciler.client, reconciler)
    return await scanner.run(options)
