"""
Text codecs for configuration documents.

Each supported ConfigurationFormat has a loader and a dumper. Dumpers are
canonical: the same data always produces the same text, so exported
documents can be diffed and round-tripped.
"""

import json
import logging
from typing import Any, Callable, Dict

import toml
import yaml

from ..core.exceptions import ParseError
from .schema import ConfigurationFormat

logger = logging.getLogger(__name__)


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}", format="json", cause=e)


def _load_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML: {e}", format="yaml", cause=e)


def _load_toml(text: str) -> Any:
    try:
        return toml.loads(text)
    except toml.TomlDecodeError as e:
        raise ParseError(f"Invalid TOML: {e}", format="toml", cause=e)


def _dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False)


def _dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=True)


def _dump_toml(data: Any) -> str:
    if not isinstance(data, dict):
        raise ParseError("TOML documents must be tables", format="toml")
    return toml.dumps(_sorted_tables(data))


def _sorted_tables(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: _sorted_tables(value) if isinstance(value, dict) else value
        for key, value in sorted(data.items())
    }


_LOADERS: Dict[ConfigurationFormat, Callable[[str], Any]] = {
    ConfigurationFormat.JSON: _load_json,
    ConfigurationFormat.YAML: _load_yaml,
    ConfigurationFormat.TOML: _load_toml,
}

_DUMPERS: Dict[ConfigurationFormat, Callable[[Any], str]] = {
    ConfigurationFormat.JSON: _dump_json,
    ConfigurationFormat.YAML: _dump_yaml,
    ConfigurationFormat.TOML: _dump_toml,
}

FILE_EXTENSIONS: Dict[ConfigurationFormat, str] = {
    ConfigurationFormat.JSON: ".json",
    ConfigurationFormat.YAML: ".yaml",
    ConfigurationFormat.TOML: ".toml",
}


def loads(text: str, format: ConfigurationFormat = ConfigurationFormat.JSON) -> Any:
    """
    Decode a configuration document.

    Raises:
        ParseError: If the text is not a well-formed document
    """
    if not isinstance(text, str):
        raise ParseError(f"Expected text, got {type(text).__name__}", format=ConfigurationFormat(format).value)
    return _LOADERS[ConfigurationFormat(format)](text)


def dumps(data: Any, format: ConfigurationFormat = ConfigurationFormat.JSON) -> str:
    """Encode ``data`` canonically in the requested format."""
    return _DUMPERS[ConfigurationFormat(format)](data)
