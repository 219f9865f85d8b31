"""Stack reconciliation: drive a stack to the state described by a template.

Each call follows the same steps:
1. Decide the action (create vs. update) by probing the stack
2. Resolve the template and normalize caller parameters against it
3. Issue the CloudFormation call
4. Unless running asynchronously, poll the event log until the stack's own
   terminal event arrives

The control plane client is blocking; every call runs in the default
executor so independent stacks can be reconciled concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from .config import Config
from .control_plane import (
    ControlPlaneClient,
    ControlPlaneError,
    DeclaredParameter,
    NoChangesError,
)
from .models import Operation, StackAction, StackOptions, validate_stack_name
from .poller import EventSink, StackPoller
from .status import EXISTS_STATUSES
from .templates import TemplateResolver, TemplateSource

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ReconcileResult:
    """Result of a single stack operation."""

    stack_name: str
    action: StackAction
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    no_changes: bool = False  # Update had nothing to do
    asynchronous: bool = False  # Returned without waiting for completion

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


def marshal_parameter_value(value: Any) -> str:
    """Cast a Python value to a CloudFormation parameter string.

    Raises:
        ValueError: If the value has no CloudFormation representation.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return ",".join(marshal_parameter_value(item) for item in value)
    raise ValueError(f"Parameter could not be cast to a CloudFormation value: {type(value).__name__}")


def normalize_parameters(
    declared: list[DeclaredParameter],
    cf_params: dict[str, Any],
    action: StackAction,
) -> list[dict[str, Any]]:
    """Match caller parameters against the parameters a template declares.

    Keys match case-insensitively. Declared parameters the caller did not
    supply fall back to the template default. Caller keys the template does
    not declare are dropped.

    Args:
        declared: Parameters declared by the template, in template order.
        cf_params: Caller-supplied values.
        action: CREATE or UPDATE. On update a parameter with neither a value
            nor a default keeps its previous value.

    Returns:
        CloudFormation Parameters list.
    """
    supplied = {str(key).lower(): value for key, value in cf_params.items()}

    parameters: list[dict[str, Any]] = []
    for parameter in declared:
        value = supplied.get(parameter.key.lower())
        if value is not None:
            parameters.append({
                "ParameterKey": parameter.key,
                "ParameterValue": marshal_parameter_value(value),
            })
        elif parameter.default_value is not None:
            parameters.append({
                "ParameterKey": parameter.key,
                "ParameterValue": parameter.default_value,
            })
        elif action == StackAction.UPDATE:
            parameters.append({"ParameterKey": parameter.key, "UsePreviousValue": True})

    dropped = set(supplied) - {parameter.key.lower() for parameter in declared}
    if dropped:
        logger.debug("Dropping parameters not declared by template", extra={"keys": sorted(dropped)})

    return parameters


def convert_tags(tags: dict[str, str]) -> list[dict[str, str]]:
    """Convert a tag mapping to CloudFormation's list of Key/Value pairs."""
    return [{"Key": key, "Value": value} for key, value in tags.items()]


class StackReconciler:
    """Creates, updates and deletes stacks, waiting for each to settle."""

    def __init__(
        self,
        client: ControlPlaneClient,
        config: Config | None = None,
        resolver: TemplateResolver | None = None,
        on_event: EventSink | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            client: Control plane to drive.
            config: Runtime configuration (polling defaults).
            resolver: Template resolver (default: TemplateResolver()).
            on_event: Receives progress events while polling.
        """
        self._client = client
        self._config = config or Config()
        self._resolver = resolver or TemplateResolver()
        self._on_event = on_event

    @property
    def client(self) -> ControlPlaneClient:
        return self._client

    @property
    def config(self) -> Config:
        return self._config

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def stack_exists(self, name: str) -> bool:
        """Check if a stack exists in a state that can be updated.

        Any error describing the stack counts as "does not exist".
        """
        try:
            description = await self._call(self._client.describe_stack, name)
        except ControlPlaneError as e:
            logger.debug("Stack lookup failed", extra={"stack_name": name, "error": str(e)})
            return False
        return description.status in EXISTS_STATUSES

    async def deploy(
        self, name: str, template: Any, options: StackOptions | None = None
    ) -> ReconcileResult:
        """Create the stack, or update it if it already exists."""
        exists = await self.stack_exists(name)
        action = StackAction.UPDATE if exists else StackAction.CREATE
        logger.info(
            "Reconciling stack",
            extra={"stack_name": name, "action": action.value},
        )
        return await self._process_stack(action, name, template, options or StackOptions())

    async def create(
        self, name: str, template: Any, options: StackOptions | None = None
    ) -> ReconcileResult:
        """Create a stack and wait for it to settle."""
        return await self._process_stack(StackAction.CREATE, name, template, options or StackOptions())

    async def update(
        self, name: str, template: Any, options: StackOptions | None = None
    ) -> ReconcileResult:
        """Update a stack and wait for it to settle."""
        return await self._process_stack(StackAction.UPDATE, name, template, options or StackOptions())

    async def delete(self, name: str, options: StackOptions | None = None) -> ReconcileResult:
        """Delete a stack and wait for it to disappear.

        Raises:
            OperationFailedError: If the stack reaches DELETE_FAILED.
            ControlPlaneError: If the delete call fails.
        """
        validate_stack_name(name)
        options = options or StackOptions()
        operation = Operation(
            stack_name=name,
            action=StackAction.DELETE,
            asynchronous=options.asynchronous,
        )
        result = ReconcileResult(
            stack_name=name,
            action=StackAction.DELETE,
            start_time=operation.started_at,
            asynchronous=options.asynchronous,
        )

        await self._call(self._client.delete_stack, name)
        logger.info("Delete requested", extra={"stack_name": name})

        if not options.asynchronous:
            await self._await_completion(operation, options)

        result.end_time = datetime.now(UTC)
        return result

    async def validate(self, template: Any, template_params: Any = None) -> dict[str, Any]:
        """Validate a template with CloudFormation."""
        source = self._resolver.resolve(template, template_params)
        return await self._call(self._client.validate_template, source)

    async def outputs(self, name: str) -> dict[str, str]:
        """Get a stack's outputs as OutputKey -> OutputValue."""
        description = await self._call(self._client.describe_stack, name)
        return dict(description.outputs)

    async def output(self, name: str, field_name: str) -> str:
        """Get one stack output, or an empty string if it is not defined."""
        return (await self.outputs(name)).get(field_name, "")

    async def _normalize(
        self, source: TemplateSource, options: StackOptions, action: StackAction
    ) -> list[dict[str, Any]]:
        if not options.cf_params:
            return []
        declared = await self._call(self._client.get_declared_parameters, source)
        return normalize_parameters(declared, options.cf_params, action)

    async def _process_stack(
        self,
        action: StackAction,
        name: str,
        template: Any,
        options: StackOptions,
    ) -> ReconcileResult:
        validate_stack_name(name)

        source = self._resolver.resolve(template, options.template_params)
        parameters = await self._normalize(source, options, action)

        request: dict[str, Any] = {
            "StackName": name,
            "Capabilities": list(options.capabilities),
            "Parameters": parameters,
            "Tags": convert_tags(options.tags),
            **source.to_api(),
        }

        operation = Operation(stack_name=name, action=action, asynchronous=options.asynchronous)
        result = ReconcileResult(
            stack_name=name,
            action=action,
            start_time=operation.started_at,
            asynchronous=options.asynchronous,
        )

        if action == StackAction.UPDATE:
            try:
                await self._call(self._client.update_stack, request)
            except NoChangesError:
                logger.info("No updates are to be performed", extra={"stack_name": name})
                result.no_changes = True
                result.end_time = datetime.now(UTC)
                return result
        else:
            await self._call(self._client.create_stack, request)

        logger.info(
            "Stack operation requested",
            extra={
                "stack_name": name,
                "action": action.value,
                "parameter_count": len(parameters),
            },
        )

        if not options.asynchronous:
            await self._await_completion(operation, options)

        result.end_time = datetime.now(UTC)
        return result

    async def _await_completion(self, operation: Operation, options: StackOptions) -> None:
        interval = options.poll_interval_seconds or self._config.effective_poll_interval
        timeout = options.poll_timeout_seconds or self._config.poll_timeout_seconds

        poller = StackPoller(
            self._client,
            operation,
            interval_seconds=interval,
            timeout_seconds=timeout,
            on_event=self._on_event,
        )
        await poller.wait()

        logger.info(
            "Stack operation complete",
            extra={
                "stack_name": operation.stack_name,
                "action": operation.action.value,
                "ticks": poller.tick_count,
            },
        )
