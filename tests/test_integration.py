"""Integration tests for the public API.

These tests use MockAwsContext to run whole stack lifecycles through the
public functions without AWS connectivity.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from aws_mock import MockAwsContext, ScriptedEvent

from stackctl import api
from stackctl.config import Config
from stackctl.models import StackAction, StackEvent, StackOptions
from stackctl.poller import OperationFailedError

TEMPLATE_YAML = """\
Parameters:
  Env:
    Type: String
  InstanceCount:
    Type: Number
    Default: 1
Resources:
  Bucket:
    Type: AWS::S3::Bucket
"""


@pytest.fixture
def template_file(tmp_path: Path) -> Path:
    path = tmp_path / "template.yaml"
    path.write_text(TEMPLATE_YAML)
    return path


class TestApiIntegration:
    """Integration tests for the api module with mocked AWS APIs."""

    @pytest.mark.asyncio
    async def test_deploy_lifecycle(self, config: Config, template_file: Path) -> None:
        """Test create, then update, then delete of one stack."""
        seen: list[tuple[str, StackAction]] = []

        def sink(event: StackEvent, action: StackAction) -> None:
            seen.append((event.status, action))

        with MockAwsContext() as ctx:
            created = await api.deploy(
                "app", str(template_file), {"Env": "dev"}, config=config, on_event=sink
            )
            updated = await api.deploy(
                "app", str(template_file), {"Env": "prod", "InstanceCount": 3}, config=config, on_event=sink
            )

            assert created.action == StackAction.CREATE
            assert updated.action == StackAction.UPDATE
            assert ctx.state.get_stack("app").status == "UPDATE_COMPLETE"
            assert ctx.state.get_stack("app").last_request["Parameters"] == [
                {"ParameterKey": "Env", "ParameterValue": "prod"},
                {"ParameterKey": "InstanceCount", "ParameterValue": "3"},
            ]

            await api.delete("app", config=config, on_event=sink)

            assert ctx.state.get_stack("app") is None
            assert await api.stack_exists("app", config=config) is False

        assert ("CREATE_COMPLETE", StackAction.CREATE) in seen
        assert ("UPDATE_COMPLETE", StackAction.UPDATE) in seen
        assert seen[-1] == ("DELETE_COMPLETE", StackAction.DELETE)

    @pytest.mark.asyncio
    async def test_concurrent_deploys(self, config: Config) -> None:
        """Test that independent stacks are reconciled concurrently."""
        template = {"Resources": {"Topic": {"Type": "AWS::SNS::Topic"}}}

        with MockAwsContext() as ctx:
            results = await asyncio.gather(
                *(api.deploy(f"app-{i}", template, config=config) for i in range(3))
            )

            assert [result.stack_name for result in results] == ["app-0", "app-1", "app-2"]
            assert ctx.state.stack_count == 3
            assert {stack.status for stack in ctx.state.list_stacks()} == {"CREATE_COMPLETE"}

    @pytest.mark.asyncio
    async def test_failed_update_leaves_rolled_back_stack(self, config: Config) -> None:
        """Test that a failed update raises and the next deploy can update again."""
        template = {"Resources": {"Topic": {"Type": "AWS::SNS::Topic"}}}

        with MockAwsContext() as ctx:
            ctx.state.add_stack("app", "UPDATE_COMPLETE")
            ctx.state.script(
                "app",
                [
                    ScriptedEvent("UPDATE_IN_PROGRESS"),
                    ScriptedEvent("UPDATE_ROLLBACK_IN_PROGRESS", reason="Topic failed"),
                    ScriptedEvent("UPDATE_ROLLBACK_COMPLETE"),
                ],
            )

            with pytest.raises(OperationFailedError, match="Topic failed"):
                await api.deploy("app", template, config=config)

            # Drain the rollback so the stack settles
            while ctx.state.release_next("app") is not None:
                pass

            result = await api.deploy("app", template, config=config)

            assert result.action == StackAction.UPDATE

    @pytest.mark.asyncio
    async def test_outputs(self, config: Config) -> None:
        """Test reading outputs through the API."""
        with MockAwsContext() as ctx:
            ctx.state.add_stack("app", outputs={"BucketName": "app-bucket"})

            assert await api.outputs("app", config=config) == {"BucketName": "app-bucket"}
            assert await api.output("app", "BucketName", config=config) == "app-bucket"
            assert await api.output("app", "Nope", config=config) == ""

    @pytest.mark.asyncio
    async def test_validate_with_region(self, config: Config, template_file: Path) -> None:
        """Test that validate honours a region override."""
        with MockAwsContext() as ctx:
            result = await api.validate(str(template_file), region="ap-southeast-2", config=config)

            assert [p["ParameterKey"] for p in result["Parameters"]] == ["Env", "InstanceCount"]
            assert ctx.configs[-1].region == "ap-southeast-2"

    @pytest.mark.asyncio
    async def test_cleanup(self, config: Config) -> None:
        """Test cleanup through the API."""
        now = datetime.now(UTC)

        with MockAwsContext() as ctx:
            ctx.state.add_stack("preview-1", creation_time=now - timedelta(hours=3))
            ctx.state.add_stack("preview-2", creation_time=now - timedelta(hours=2))
            ctx.state.add_stack("main", creation_time=now - timedelta(hours=9))

            dry = await api.cleanup("^preview-", minutes_old=60, dry_run=True, config=config)
            result = await api.cleanup("^preview-", minutes_old=60, limit=1, config=config)

            assert [candidate.name for candidate in dry.candidates] == ["preview-1", "preview-2"]
            assert result.deleted == ["preview-1"]
            assert ctx.state.get_stack("preview-2") is not None
            assert ctx.state.get_stack("main") is not None

    @pytest.mark.asyncio
    async def test_asynchronous_deploy(self, config: Config) -> None:
        """Test that an asynchronous deploy returns before the stack settles."""
        template = {"Resources": {"Topic": {"Type": "AWS::SNS::Topic"}}}

        with MockAwsContext() as ctx:
            result = await api.deploy(
                "app", template, options=StackOptions(asynchronous=True), config=config
            )

            assert result.asynchronous is True
            assert ctx.state.get_stack("app").status == "CREATE_IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_configure_sets_default_interval(self, template_file: Path) -> None:
        """Test that configure() drives polling when no interval is given."""
        api.configure(0.01)

        with MockAwsContext() as ctx:
            await api.deploy("app", str(template_file), {"Env": "dev"}, config=Config())

            assert ctx.state.get_stack("app").status == "CREATE_COMPLETE"
