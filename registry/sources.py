"""
Configuration sources.

A source turns one origin of configuration (a file in one format, or the
process environment) into a flat bag of dotted key -> raw value pairs.
Sources never coerce values; that is the registry's job.

Default stack built by ``default_sources(name)`` (lowest priority first):

    yaml file   priority 10
    toml file   priority 20
    json file   priority 30
    environment priority 100
"""

from __future__ import annotations

import json
import os
import tomllib
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import yaml

from shared.errors import SourceParseError
from shared.log import get_logger

logger = get_logger(__name__)

YAML_PRIORITY = 10
TOML_PRIORITY = 20
JSON_PRIORITY = 30
ENV_PRIORITY = 100


class SourceLoader(Protocol):
    """Anything the registry can load from."""

    name: str
    priority: int

    def read(self) -> Dict[str, Any]:
        """Return the raw bag; may raise SourceParseError."""
        ...


# ========================================
#           FILE SOURCES
# ========================================

def _parse_yaml(text: str) -> Any:
    return yaml.safe_load(text)


def _parse_toml(text: str) -> Any:
    return tomllib.loads(text)


def _parse_json(text: str) -> Any:
    return json.loads(text)


_PARSERS: Dict[str, Callable[[str], Any]] = {
    "yaml": _parse_yaml,
    "toml": _parse_toml,
    "json": _parse_json,
}

_EXTENSIONS: Dict[str, Sequence[str]] = {
    "yaml": (".yaml", ".yml"),
    "toml": (".toml",),
    "json": (".json",),
}


class FileSource:
    """
    One file format read from a base path.

    Candidates are the base path itself followed by the base path with each
    of the format's extensions appended. The first candidate that exists and
    parses wins for this format.
    """

    def __init__(self, path: str | Path, fmt: str, priority: int) -> None:
        if fmt not in _PARSERS:
            raise ValueError(f"Unsupported config format: {fmt}")
        self.path = Path(path)
        self.fmt = fmt
        self.priority = priority
        self.name = f"{fmt}:{self.path}"
        self.loaded_from: Optional[Path] = None

    def candidates(self) -> List[Path]:
        paths = [self.path]
        paths.extend(self.path.with_name(self.path.name + ext) for ext in _EXTENSIONS[self.fmt])
        return paths

    def read(self) -> Dict[str, Any]:
        parser = _PARSERS[self.fmt]
        errors: List[str] = []

        for candidate in self.candidates():
            if not candidate.is_file():
                continue
            try:
                data = parser(candidate.read_text(encoding="utf-8"))
            except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError, UnicodeDecodeError) as e:
                errors.append(f"{candidate}: {e}")
                logger.debug(f"{candidate} is not valid {self.fmt}: {e}")
                continue

            if data is None:
                # empty yaml document
                data = {}
            if not isinstance(data, Mapping):
                errors.append(f"{candidate}: top level is {type(data).__name__}, expected a mapping")
                continue

            self.loaded_from = candidate
            logger.debug(f"Loaded {self.fmt} config from {candidate}")
            return flatten(data)

        if errors:
            raise SourceParseError(self.name, "; ".join(errors))

        logger.debug(f"No {self.fmt} config found for {self.path}")
        return {}


def flatten(data: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten nested mappings into dotted keys.

    Every nested mapping is kept under its own path as well as expanded into
    its leaves, so both ``server`` and ``server.port`` resolve.
    """
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        path = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat[path] = dict(value)
            flat.update(flatten(value, prefix=f"{path}."))
        else:
            flat[path] = value
    return flat


# ========================================
#           ENVIRONMENT SOURCE
# ========================================

class EnvSource:
    """
    Environment variables of the form ``PREFIX_<KEY>``.

    ``TEST_HOST`` -> ``host``, ``TEST_SERVER_PORT`` -> ``server.port``.
    Values stay strings; the registry coerces declared names.
    """

    def __init__(self, prefix: str, priority: int = ENV_PRIORITY,
                 environ: Optional[Mapping[str, str]] = None) -> None:
        self.prefix = prefix.upper().rstrip("_") + "_"
        self.priority = priority
        self.name = f"env:{self.prefix}*"
        self._environ = environ

    def fold(self, variable: str) -> Optional[str]:
        if not variable.upper().startswith(self.prefix):
            return None
        key = variable[len(self.prefix):].lower().replace("_", ".")
        return key or None

    def read(self) -> Dict[str, Any]:
        environ = os.environ if self._environ is None else self._environ
        bag: Dict[str, Any] = {}
        for variable, value in environ.items():
            key = self.fold(variable)
            if key is not None:
                bag[key] = value
        return bag


def default_sources(name: str, environ: Optional[Mapping[str, str]] = None) -> List[SourceLoader]:
    """File sources for ``name`` in every format, then the ``NAME_`` environment."""
    return [
        FileSource(name, "yaml", YAML_PRIORITY),
        FileSource(name, "toml", TOML_PRIORITY),
        FileSource(name, "json", JSON_PRIORITY),
        EnvSource(name, ENV_PRIORITY, environ=environ),
    ]
