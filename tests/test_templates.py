"""Tests for template resolution."""

import json
from pathlib import Path

import pytest

from stackctl.templates import (
    TemplateLoadError,
    TemplateResolver,
    TemplateSource,
    is_s3_url,
    is_template_string,
)

YAML_TEMPLATE = """\
AWSTemplateFormatVersion: "2010-09-09"
Parameters:
  Env:
    Type: String
Resources:
  Bucket:
    Type: AWS::S3::Bucket
    Properties:
      BucketName: !Sub "${Env}-bucket"
Outputs:
  BucketArn:
    Value: !GetAtt Bucket.Arn
"""


@pytest.fixture
def resolver() -> TemplateResolver:
    return TemplateResolver()


class TestTemplateSource:
    """Tests for TemplateSource."""

    def test_body(self) -> None:
        """Test that a body becomes TemplateBody."""
        assert TemplateSource(body="{}").to_api() == {"TemplateBody": "{}"}

    def test_url(self) -> None:
        """Test that a URL becomes TemplateURL."""
        source = TemplateSource(url="https://s3.amazonaws.com/b/t.yaml")
        assert source.to_api() == {"TemplateURL": "https://s3.amazonaws.com/b/t.yaml"}

    @pytest.mark.parametrize("kwargs", [{}, {"body": "{}", "url": "https://s3.amazonaws.com/b/t"}])
    def test_exactly_one(self, kwargs: dict[str, str]) -> None:
        """Test that exactly one of body and url must be set."""
        with pytest.raises(ValueError):
            TemplateSource(**kwargs)


class TestDetection:
    """Tests for template string and URL detection."""

    @pytest.mark.parametrize(
        "value",
        [
            "https://s3.amazonaws.com/bucket/template.yaml",
            "https://s3-eu-west-1.amazonaws.com/bucket/template.json",
        ],
    )
    def test_s3_urls(self, value: str) -> None:
        """Test S3 URL detection."""
        assert is_s3_url(value) is True

    @pytest.mark.parametrize("value", ["https://example.com/t.yaml", "s3://bucket/t.yaml", 42])
    def test_not_s3_urls(self, value: object) -> None:
        """Test that other references are not S3 URLs."""
        assert is_s3_url(value) is False

    def test_json_string(self) -> None:
        """Test that a JSON object string is a template."""
        assert is_template_string('{"Resources": {}}') is True

    def test_yaml_string_with_intrinsics(self) -> None:
        """Test that multi-line YAML with short-form intrinsics is a template."""
        assert is_template_string(YAML_TEMPLATE) is True

    @pytest.mark.parametrize("value", ["template.yaml", "./stacks/app.json", "[1, 2]"])
    def test_paths_are_not_templates(self, value: str) -> None:
        """Test that single-line paths and non-objects are not templates."""
        assert is_template_string(value) is False


class TestTemplateResolver:
    """Tests for TemplateResolver."""

    def test_s3_url(self, resolver: TemplateResolver) -> None:
        """Test that S3 URLs pass through by reference."""
        source = resolver.resolve("https://s3.amazonaws.com/bucket/template.yaml")
        assert source.url == "https://s3.amazonaws.com/bucket/template.yaml"

    def test_mapping(self, resolver: TemplateResolver) -> None:
        """Test that a mapping is serialized to JSON."""
        template = {"Resources": {"Bucket": {"Type": "AWS::S3::Bucket"}}}

        source = resolver.resolve(template)

        assert source.body is not None
        assert json.loads(source.body) == template

    def test_callable(self, resolver: TemplateResolver) -> None:
        """Test that a callable is invoked with the template params."""

        def build(params: dict[str, int]) -> dict[str, object]:
            return {"Resources": {f"Queue{i}": {"Type": "AWS::SQS::Queue"} for i in range(params["count"])}}

        source = resolver.resolve(build, {"count": 2})

        assert source.body is not None
        assert sorted(json.loads(source.body)["Resources"]) == ["Queue0", "Queue1"]

    def test_callable_must_return_mapping(self, resolver: TemplateResolver) -> None:
        """Test that a callable returning a non-mapping fails."""
        with pytest.raises(TemplateLoadError, match="must be a mapping"):
            resolver.resolve(lambda params: ["not", "a", "template"])

    def test_yaml_string_passed_through(self, resolver: TemplateResolver) -> None:
        """Test that a YAML document string is sent as-is."""
        assert resolver.resolve(YAML_TEMPLATE).body == YAML_TEMPLATE

    def test_file(self, resolver: TemplateResolver, tmp_path: Path) -> None:
        """Test that a template file is read as-is."""
        path = tmp_path / "template.yaml"
        path.write_text(YAML_TEMPLATE)

        assert resolver.resolve(str(path)).body == YAML_TEMPLATE
        assert resolver.resolve(path).body == YAML_TEMPLATE

    def test_python_module(self, resolver: TemplateResolver, tmp_path: Path) -> None:
        """Test that a .py file's template callable is loaded and called."""
        path = tmp_path / "stack_template.py"
        path.write_text(
            "def template(params):\n"
            "    return {'Resources': {'Topic': {'Type': 'AWS::SNS::Topic'}}, 'Description': params}\n"
        )

        source = resolver.resolve(str(path), "demo")

        assert source.body is not None
        assert json.loads(source.body)["Description"] == "demo"

    def test_python_module_without_template(self, resolver: TemplateResolver, tmp_path: Path) -> None:
        """Test that a module without a template attribute fails."""
        path = tmp_path / "empty.py"
        path.write_text("VALUE = 1\n")

        with pytest.raises(TemplateLoadError, match="does not define 'template'"):
            resolver.resolve(str(path))

    def test_python_module_import_error(self, resolver: TemplateResolver, tmp_path: Path) -> None:
        """Test that a module that fails to import raises TemplateLoadError."""
        path = tmp_path / "broken.py"
        path.write_text("raise RuntimeError('boom')\n")

        with pytest.raises(TemplateLoadError, match="boom"):
            resolver.resolve(str(path))

    def test_missing_file(self, resolver: TemplateResolver, tmp_path: Path) -> None:
        """Test that a missing file raises TemplateLoadError."""
        with pytest.raises(TemplateLoadError, match="not found"):
            resolver.resolve(str(tmp_path / "missing.yaml"))

    def test_oversized_file(self, tmp_path: Path) -> None:
        """Test that files over the size limit are rejected before reading."""
        path = tmp_path / "big.yaml"
        path.write_text(YAML_TEMPLATE)

        with pytest.raises(TemplateLoadError, match="maximum size"):
            TemplateResolver(max_file_size_bytes=16).resolve(str(path))

    def test_unsupported_reference(self, resolver: TemplateResolver) -> None:
        """Test that other types are rejected."""
        with pytest.raises(TemplateLoadError, match="Unsupported"):
            resolver.resolve(42)
