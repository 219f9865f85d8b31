"""Data model for stack operations.

Caller-facing options are pydantic models so bad input fails at the boundary.
Internal records (operations, events, cleanup candidates) are plain
dataclasses produced and consumed inside the package.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import DEFAULT_CAPABILITIES, MAX_STACK_NAME_LENGTH

# Resource type CloudFormation reports for a stack (including nested stacks)
STACK_RESOURCE_TYPE = "AWS::CloudFormation::Stack"

VALID_STACK_NAME_PATTERN = r"^[A-Za-z][A-Za-z0-9-]*$"


class StackAction(str, Enum):
    """Mutating actions the reconciler can drive."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def verb(self) -> str:
        """Progressive verb used in progress lines ("Creating", ...)."""
        return {
            StackAction.CREATE: "Creating",
            StackAction.UPDATE: "Updating",
            StackAction.DELETE: "Deleting",
        }[self]


def validate_stack_name(name: str) -> str:
    """Validate a stack name against CloudFormation's naming rules.

    Raises:
        ValueError: If the name is empty, too long or has invalid characters.
    """
    if not name:
        raise ValueError("Stack name cannot be empty")
    if len(name) > MAX_STACK_NAME_LENGTH:
        raise ValueError(f"Stack name exceeds {MAX_STACK_NAME_LENGTH} characters: {name}")
    if not re.match(VALID_STACK_NAME_PATTERN, name):
        raise ValueError(
            f"Stack name must start with a letter and contain only letters, digits and hyphens: {name}"
        )
    return name


@dataclass(frozen=True)
class Operation:
    """One create/update/delete against one stack.

    started_at is the cutoff separating this operation's events from
    events left behind by earlier operations on the same stack name.
    """

    stack_name: str
    action: StackAction
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    asynchronous: bool = False

    def is_current(self, timestamp: datetime) -> bool:
        """Check if a timestamp belongs to this operation."""
        return timestamp >= self.started_at


@dataclass(frozen=True)
class StackEvent:
    """A single entry of a stack's event log."""

    event_id: str
    stack_name: str
    resource_type: str
    logical_id: str
    status: str
    timestamp: datetime
    status_reason: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> StackEvent:
        """Build an event from a DescribeStackEvents entry."""
        timestamp = data["Timestamp"]
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return cls(
            event_id=data["EventId"],
            stack_name=data.get("StackName", ""),
            resource_type=data.get("ResourceType", ""),
            logical_id=data.get("LogicalResourceId", ""),
            status=data.get("ResourceStatus", ""),
            timestamp=timestamp,
            status_reason=data.get("ResourceStatusReason") or None,
        )

    def format_line(self, action: StackAction) -> str:
        """Render the event as a human-readable progress line."""
        return "[{}] {} {}: {} - {}  {}  {}".format(
            self.timestamp.astimezone().strftime("%H:%M:%S"),
            action.verb,
            self.stack_name,
            self.resource_type,
            self.logical_id,
            self.status,
            self.status_reason or "",
        ).rstrip()


@dataclass(frozen=True)
class CleanupCandidate:
    """A stack selected by the cleanup scanner."""

    name: str
    creation_time: datetime
    status: str = ""


@dataclass
class CleanupResult:
    """Result of one cleanup run."""

    candidates: list[CleanupCandidate] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        """Check if every issued delete succeeded."""
        return not self.failed


class StackOptions(BaseModel):
    """Per-call options for deploy/create/update/delete.

    Field aliases accept the camelCase names used in option files.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    cf_params: dict[str, Any] = Field(default_factory=dict, alias="cfParams")
    template_params: Any | None = Field(None, alias="params")
    capabilities: list[str] = Field(default_factory=lambda: list(DEFAULT_CAPABILITIES))
    tags: dict[str, str] = Field(default_factory=dict)
    asynchronous: bool = Field(False, alias="async")
    poll_interval_seconds: float | None = Field(None, gt=0, alias="checkStackInterval")
    poll_timeout_seconds: float | None = Field(None, gt=0, alias="pollTimeout")

    @field_validator("capabilities")
    @classmethod
    def validate_capabilities(cls, v: list[str]) -> list[str]:
        for capability in v:
            if not capability.startswith("CAPABILITY_"):
                raise ValueError(f"Unknown capability: {capability}")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def stringify_tags(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(key): str(value) for key, value in v.items()}
        return v


class CleanupOptions(BaseModel):
    """Options for a cleanup run."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    pattern: str
    minutes_old: float = Field(0, ge=0, alias="minutesOld")
    dry_run: bool = Field(False, alias="dryRun")
    limit: int | None = Field(None, ge=0)
    asynchronous: bool = Field(False, alias="async")

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"pattern is not a valid regular expression: {e}") from e
        return v

    @property
    def regex(self) -> re.Pattern[str]:
        """Compiled name pattern."""
        return re.compile(self.pattern)
