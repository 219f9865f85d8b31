"""CloudFormation control plane access.

The reconciler only talks to the ControlPlaneClient protocol. The boto3
implementation below translates botocore failures into a small error
hierarchy so callers can tell the outcomes that matter apart:

- StackNotFoundError: the stack does not exist
- ThrottledError: the API is rate limiting us, try again later
- NoChangesError: an update had nothing to change
- ControlPlaneError: anything else

All calls are blocking. Async callers run them in an executor.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

import boto3
from botocore.config import Config as BotocoreConfig
from botocore.exceptions import BotoCoreError, ClientError

from .models import StackEvent

if TYPE_CHECKING:
    from .config import Config
    from .templates import TemplateSource

logger = logging.getLogger(__name__)

NOT_FOUND_PATTERN = re.compile(r"Stack\s+(with id\s+)?\[?.+?\]?\s+does not exist")
THROTTLING_CODES = frozenset({"Throttling", "ThrottlingException", "RequestLimitExceeded"})
THROTTLING_PATTERN = re.compile(r"Rate\s+exceeded")
NO_CHANGES_PATTERN = re.compile(r"No updates are to be performed")


class ControlPlaneError(Exception):
    """Raised when a control plane call fails."""

    def __init__(self, message: str, *, operation: str = "", code: str = "") -> None:
        super().__init__(message)
        self.operation = operation
        self.code = code


class StackNotFoundError(ControlPlaneError):
    """Raised when the target stack does not exist."""

    pass


class ThrottledError(ControlPlaneError):
    """Raised when the control plane rate limits a call."""

    pass


class NoChangesError(ControlPlaneError):
    """Raised when an update would not change the stack."""

    pass


@dataclass
class EventPage:
    """One page of stack events, newest first."""

    events: list[StackEvent]
    next_token: str | None = None


@dataclass
class StackSummary:
    """A stack as reported by ListStacks."""

    name: str
    status: str
    creation_time: datetime


@dataclass
class StackSummaryPage:
    """One page of stack summaries."""

    stacks: list[StackSummary]
    next_token: str | None = None


@dataclass
class StackDescription:
    """Current state of a stack as reported by DescribeStacks."""

    name: str
    status: str
    outputs: dict[str, str] = field(default_factory=dict)
    creation_time: datetime | None = None
    status_reason: str | None = None


@dataclass
class DeclaredParameter:
    """A parameter declared by a template."""

    key: str
    default_value: str | None = None


class ControlPlaneClient(Protocol):
    """Operations the reconciler needs from the control plane."""

    def create_stack(self, request: dict[str, Any]) -> None: ...

    def update_stack(self, request: dict[str, Any]) -> None: ...

    def delete_stack(self, name: str) -> None: ...

    def describe_stack(self, name: str) -> StackDescription: ...

    def list_events_page(self, name: str, next_token: str | None = None) -> EventPage: ...

    def list_stacks_page(
        self, next_token: str | None = None, status_filter: list[str] | None = None
    ) -> StackSummaryPage: ...

    def get_declared_parameters(self, source: TemplateSource) -> list[DeclaredParameter]: ...

    def validate_template(self, source: TemplateSource) -> dict[str, Any]: ...


def classify_client_error(error: ClientError, operation: str) -> ControlPlaneError:
    """Translate a botocore ClientError into the control plane hierarchy.

    Args:
        error: The error raised by botocore.
        operation: Name of the API operation, for context.

    Returns:
        The most specific ControlPlaneError subclass for the error.
    """
    details = error.response.get("Error", {})
    code = details.get("Code", "")
    message = details.get("Message", "") or str(error)
    text = f"{code}: {message}"

    if code in THROTTLING_CODES or THROTTLING_PATTERN.search(text):
        return ThrottledError(text, operation=operation, code=code)
    if NOT_FOUND_PATTERN.search(message):
        return StackNotFoundError(text, operation=operation, code=code)
    if NO_CHANGES_PATTERN.search(message):
        return NoChangesError(text, operation=operation, code=code)
    return ControlPlaneError(text, operation=operation, code=code)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class CloudFormationClient:
    """ControlPlaneClient backed by a boto3 CloudFormation client."""

    def __init__(self, client: Any) -> None:
        """Wrap an existing boto3 CloudFormation client.

        Args:
            client: A botocore client for the "cloudformation" service.
        """
        self._client = client

    @classmethod
    def from_config(cls, config: Config) -> CloudFormationClient:
        """Create a client from runtime configuration.

        Region, profile and credentials follow boto3's own resolution
        when not set explicitly.
        """
        session = boto3.Session(profile_name=config.profile, region_name=config.region)
        botocore_config = BotocoreConfig(
            proxies={"https": config.proxy} if config.proxy else None,
            retries={"mode": "standard"},
        )
        client = session.client(
            "cloudformation",
            endpoint_url=config.endpoint_url,
            config=botocore_config,
        )
        return cls(client)

    @property
    def client(self) -> Any:
        """Get the underlying boto3 client."""
        return self._client

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except ClientError as e:
            raise classify_client_error(e, operation) from e
        except BotoCoreError as e:
            logger.debug("Transport failure", extra={"operation": operation, "error": str(e)})
            raise ControlPlaneError(str(e), operation=operation) from e

    def create_stack(self, request: dict[str, Any]) -> None:
        with self._translate_errors("CreateStack"):
            self._client.create_stack(**request)

    def update_stack(self, request: dict[str, Any]) -> None:
        with self._translate_errors("UpdateStack"):
            self._client.update_stack(**request)

    def delete_stack(self, name: str) -> None:
        with self._translate_errors("DeleteStack"):
            self._client.delete_stack(StackName=name)

    def describe_stack(self, name: str) -> StackDescription:
        with self._translate_errors("DescribeStacks"):
            response = self._client.describe_stacks(StackName=name)

        stacks = response.get("Stacks") or []
        if not stacks:
            raise StackNotFoundError(
                f"Stack [{name}] does not exist", operation="DescribeStacks"
            )
        stack = stacks[0]
        creation_time = stack.get("CreationTime")
        return StackDescription(
            name=stack.get("StackName", name),
            status=stack.get("StackStatus", ""),
            outputs={
                output["OutputKey"]: output.get("OutputValue", "")
                for output in stack.get("Outputs", [])
            },
            creation_time=_as_utc(creation_time) if creation_time else None,
            status_reason=stack.get("StackStatusReason"),
        )

    def list_events_page(self, name: str, next_token: str | None = None) -> EventPage:
        kwargs: dict[str, Any] = {"StackName": name}
        if next_token:
            kwargs["NextToken"] = next_token

        with self._translate_errors("DescribeStackEvents"):
            response = self._client.describe_stack_events(**kwargs)

        return EventPage(
            events=[StackEvent.from_api(event) for event in response.get("StackEvents", [])],
            next_token=response.get("NextToken"),
        )

    def list_stacks_page(
        self, next_token: str | None = None, status_filter: list[str] | None = None
    ) -> StackSummaryPage:
        kwargs: dict[str, Any] = {}
        if next_token:
            kwargs["NextToken"] = next_token
        if status_filter:
            kwargs["StackStatusFilter"] = list(status_filter)

        with self._translate_errors("ListStacks"):
            response = self._client.list_stacks(**kwargs)

        return StackSummaryPage(
            stacks=[
                StackSummary(
                    name=summary["StackName"],
                    status=summary.get("StackStatus", ""),
                    creation_time=_as_utc(summary["CreationTime"]),
                )
                for summary in response.get("StackSummaries", [])
            ],
            next_token=response.get("NextToken"),
        )

    def get_declared_parameters(self, source: TemplateSource) -> list[DeclaredParameter]:
        with self._translate_errors("GetTemplateSummary"):
            response = self._client.get_template_summary(**source.to_api())

        return [
            DeclaredParameter(
                key=parameter["ParameterKey"],
                default_value=parameter.get("DefaultValue"),
            )
            for parameter in response.get("Parameters", [])
        ]

    def validate_template(self, source: TemplateSource) -> dict[str, Any]:
        with self._translate_errors("ValidateTemplate"):
            response = self._client.validate_template(**source.to_api())
        response.pop("ResponseMetadata", None)
        return response
