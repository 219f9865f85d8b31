"""Template resolution.

Turns whatever the caller passed as a template into something CloudFormation
accepts: either a TemplateURL (templates already uploaded to S3) or a
serialized TemplateBody.

Accepted inputs, checked in this order:
1. https://s3...amazonaws.com/... URL
2. Path to a .py file exposing a ``template`` mapping or callable
3. Mapping (serialized to JSON)
4. Callable returning a mapping (called with the template params)
5. String that is a JSON document or a multi-line YAML document
6. Path to a template file (read as-is)

SECURITY: File reads enforce a size limit before reading.
"""

from __future__ import annotations

import importlib.util
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .config import MAX_TEMPLATE_FILE_SIZE_BYTES

logger = logging.getLogger(__name__)

S3_URL_PATTERN = "https://s3"
S3_URL_SUFFIX = "amazonaws.com"


class TemplateLoadError(Exception):
    """Raised when a template cannot be resolved."""

    pass


@dataclass(frozen=True)
class TemplateSource:
    """A resolved template: exactly one of body or url is set."""

    body: str | None = None
    url: str | None = None

    def __post_init__(self) -> None:
        if (self.body is None) == (self.url is None):
            raise ValueError("TemplateSource requires exactly one of body or url")

    def to_api(self) -> dict[str, str]:
        """Convert to CloudFormation request arguments."""
        if self.url is not None:
            return {"TemplateURL": self.url}
        return {"TemplateBody": self.body or ""}


class _CloudFormationLoader(yaml.SafeLoader):
    """Safe YAML loader that accepts CloudFormation short-form tags (!Ref, !Sub, ...)."""


def _construct_intrinsic(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Any:
    name = "Ref" if tag_suffix == "Ref" else f"Fn::{tag_suffix}"
    if isinstance(node, yaml.ScalarNode):
        return {name: loader.construct_scalar(node)}
    if isinstance(node, yaml.SequenceNode):
        return {name: loader.construct_sequence(node, deep=True)}
    return {name: loader.construct_mapping(node, deep=True)}  # type: ignore[arg-type]


_CloudFormationLoader.add_multi_constructor("!", _construct_intrinsic)


def is_s3_url(value: Any) -> bool:
    """Check if a template reference points to S3."""
    return isinstance(value, str) and value.startswith(S3_URL_PATTERN) and S3_URL_SUFFIX in value


def _parses_as_json(text: str) -> bool:
    try:
        return isinstance(json.loads(text), dict)
    except ValueError:
        return False


def _parses_as_yaml(text: str) -> bool:
    # Single-line strings are file paths, not YAML documents
    if len(text.splitlines()) <= 1:
        return False
    try:
        return isinstance(yaml.load(text, Loader=_CloudFormationLoader), dict)  # noqa: S506
    except yaml.YAMLError:
        return False


def is_template_string(text: str) -> bool:
    """Check if a string is a serialized JSON or YAML template."""
    return _parses_as_json(text) or _parses_as_yaml(text)


def _serialize(template: Any, origin: str) -> str:
    if not isinstance(template, Mapping):
        raise TemplateLoadError(
            f"Template from {origin} must be a mapping, got {type(template).__name__}"
        )
    try:
        return json.dumps(template)
    except (TypeError, ValueError) as e:
        raise TemplateLoadError(f"Template from {origin} is not JSON serializable: {e}") from e


class TemplateResolver:
    """Resolves template references into TemplateSource values."""

    def __init__(self, max_file_size_bytes: int = MAX_TEMPLATE_FILE_SIZE_BYTES) -> None:
        self._max_file_size_bytes = max_file_size_bytes

    def resolve(self, template: Any, template_params: Any = None) -> TemplateSource:
        """Resolve a template reference.

        Args:
            template: URL, path, mapping, callable or serialized template.
            template_params: Argument for parameterized (callable) templates.

        Returns:
            The resolved TemplateSource.

        Raises:
            TemplateLoadError: If the template cannot be resolved.
        """
        if is_s3_url(template):
            return TemplateSource(url=template)

        if isinstance(template, (str, Path)) and str(template).endswith(".py"):
            return TemplateSource(body=self._load_python(Path(template), template_params))

        if isinstance(template, Mapping):
            return TemplateSource(body=_serialize(template, "mapping"))

        if callable(template):
            origin = getattr(template, "__name__", "callable")
            return TemplateSource(body=_serialize(template(template_params), origin))

        if isinstance(template, str) and is_template_string(template):
            return TemplateSource(body=template)

        if isinstance(template, (str, Path)):
            return TemplateSource(body=self._read_file(Path(template)))

        raise TemplateLoadError(f"Unsupported template reference: {type(template).__name__}")

    def _check_file(self, path: Path) -> None:
        if not path.is_file():
            raise TemplateLoadError(f"Template file not found: {path}")

        # SECURITY: Check file size before reading to prevent DoS
        try:
            file_size = path.stat().st_size
        except OSError as e:
            raise TemplateLoadError(f"Failed to stat template file {path}: {e}") from e

        if file_size > self._max_file_size_bytes:
            raise TemplateLoadError(
                f"Template file exceeds maximum size of {self._max_file_size_bytes} bytes: {path}"
            )

    def _read_file(self, path: Path) -> str:
        self._check_file(path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise TemplateLoadError(f"Failed to read template file {path}: {e}") from e

        logger.info("Loaded template from %s", path)
        return content

    def _load_python(self, path: Path, template_params: Any) -> str:
        self._check_file(path)

        module_spec = importlib.util.spec_from_file_location(f"_stackctl_template_{path.stem}", path)
        if module_spec is None or module_spec.loader is None:
            raise TemplateLoadError(f"Cannot import template module: {path}")

        module = importlib.util.module_from_spec(module_spec)
        try:
            module_spec.loader.exec_module(module)
        except Exception as e:
            raise TemplateLoadError(f"Failed to import template module {path}: {e}") from e

        template: Any = getattr(module, "template", None)
        if template is None:
            raise TemplateLoadError(f"Template module {path} does not define 'template'")

        if callable(template):
            factory: Callable[[Any], Any] = template
            template = factory(template_params)

        logger.info("Loaded template module from %s", path)
        return _serialize(template, str(path))
