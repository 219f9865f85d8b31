"""AWS CloudFormation Mock for Integration Testing.

This module provides an in-memory implementation of the CloudFormation
control plane so stack operations can be tested without AWS connectivity.

Key Features:
- In-memory stacks with an event log that advances as it is polled
- Scripted lifecycles (in progress -> complete/failed/rollback)
- Paged DescribeStackEvents/ListStacks simulation
- Error injection for testing failure scenarios

Usage:
    from aws_mock import MockAwsContext, ScriptedEvent

    with MockAwsContext() as ctx:
        await api.deploy("my-stack", template, config=config)

        # Assert on mock state
        assert ctx.client.call_count("create_stack") == 1
"""

from .client import MockCloudFormationClient, not_found
from .context import MockAwsContext, mock_aws_context
from .state import MockStack, MockStackState, ScriptedEvent, default_lifecycle

__all__ = [
    "MockAwsContext",
    "MockCloudFormationClient",
    "MockStack",
    "MockStackState",
    "ScriptedEvent",
    "default_lifecycle",
    "mock_aws_context",
    "not_found",
]
