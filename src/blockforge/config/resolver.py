"""Layered configuration resolution.

Settings come from four layers, each overriding the previous one: model
defaults, ``blockforge.yaml``, ``BLOCKFORGE__SECTION__KEY`` environment
variables and command-line overrides. Every layer is normalized into a nested
mapping before merging, so dotted keys (``server.port``) and nested mappings
can be mixed freely.
"""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Iterator, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import BlockforgeConfig

ENV_PREFIX = "BLOCKFORGE__"
_ENV_SEPARATOR = "__"


def resolve_with_precedence(
    *,
    defaults: BlockforgeConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> BlockforgeConfig:
    """Apply override layers on top of ``defaults`` and validate the result.

    Args:
        defaults: Baseline configuration.
        file_overrides: Values read from the project configuration file.
        env_overrides: Values collected from the environment.
        cli_overrides: Values passed on the command line, usually dotted keys.

    Returns:
        BlockforgeConfig: The validated configuration.

    Raises:
        ConfigError: If a layer is malformed or the merged values are invalid.
    """
    layers = (
        ("file", file_overrides),
        ("environment", env_overrides),
        ("command line", cli_overrides),
    )
    merged = defaults.model_dump(mode="python")
    for label, layer in layers:
        if layer:
            merged = _merge(merged, _nest(layer, label))

    try:
        return BlockforgeConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {_describe(exc)}") from exc


def flatten_for_env(config: BlockforgeConfig) -> Dict[str, str]:
    """Render every setting as the environment variable that would override it."""
    return {
        ENV_PREFIX + _ENV_SEPARATOR.join(part.upper() for part in path): _render(value)
        for path, value in _leaves(config.model_dump(mode="python"), ())
    }


def extract_env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``BLOCKFORGE__*`` variables into a nested override mapping.

    Values are parsed as YAML scalars so ``false`` and ``8080`` keep their types;
    unparseable values are kept as plain strings.
    """
    dotted: dict[str, Any] = {}
    for name, raw in env.items():
        if not name.startswith(ENV_PREFIX):
            continue
        parts = [part.lower() for part in name[len(ENV_PREFIX) :].split(_ENV_SEPARATOR) if part]
        if not parts:
            continue
        try:
            dotted[".".join(parts)] = yaml.safe_load(raw)
        except yaml.YAMLError:
            dotted[".".join(parts)] = raw
    return _nest(dotted, "environment")


def _nest(layer: Mapping[str, Any], label: str) -> dict[str, Any]:
    if not isinstance(layer, MappingABC):
        raise ConfigError(f"{label.capitalize()} overrides must be a mapping.")

    nested: dict[str, Any] = {}
    for key, value in layer.items():
        if not isinstance(key, str) or not key:
            raise ConfigError(f"{label.capitalize()} override keys must be non-empty strings.")
        *parents, leaf = key.split(".")
        node = nested
        for part in parents:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConfigError(f"{label.capitalize()} override '{key}' conflicts with '{part}'.")
            node = child
        if isinstance(value, MappingABC):
            value = _nest(value, label)
            if isinstance(node.get(leaf), dict):
                value = _merge(node[leaf], value)
        node[leaf] = value
    return nested


def _merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    result = deepcopy(dict(base))
    for key, value in overrides.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, MappingABC):
            result[key] = _merge(current, value)
        else:
            result[key] = deepcopy(value)
    return result


def _leaves(
    data: Mapping[str, Any], path: tuple[str, ...]
) -> Iterator[tuple[tuple[str, ...], Any]]:
    for key, value in data.items():
        if isinstance(value, MappingABC):
            yield from _leaves(value, (*path, str(key)))
        else:
            yield (*path, str(key)), value


def _render(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, (list, tuple)):
        return yaml.safe_dump(list(value), default_flow_style=True).strip()
    return str(value)


def _describe(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(problems)


__all__ = ["resolve_with_precedence", "flatten_for_env", "extract_env_overrides", "ENV_PREFIX"]
