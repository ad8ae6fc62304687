"""Configuration for factory discovery, caching, and call-site matching.

Values come from ``FACTORYJUMP_*`` environment variables or from the JSON
args of a CLI/sidecar request. Invalid values are logged and replaced by
defaults; loading never fails.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from .extractors import BLOCK_MODES, clamp_batch_size, DEFAULT_BATCH_SIZE
from .patterns import DEFAULT_FACTORY_METHODS, is_valid_name

logger = logging.getLogger(__name__)

DEFAULT_FACTORY_PATHS = ("spec/factories/**/*.rb",)
# Earlier entries win when two files define the same factory name
DEFAULT_PRIORITY_ORDER = ("spec/factories", "test/factories", "factories")
DEFAULT_CACHE_TIMEOUT = 60
MIN_CACHE_TIMEOUT = 10

_ENV_PREFIX = "FACTORYJUMP_"
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class FactoryJumpConfig:
    factory_paths: tuple[str, ...] = DEFAULT_FACTORY_PATHS
    priority_order: tuple[str, ...] = DEFAULT_PRIORITY_ORDER
    cache_timeout: int = DEFAULT_CACHE_TIMEOUT
    batch_size: int = DEFAULT_BATCH_SIZE
    factory_methods: tuple[str, ...] = field(default=DEFAULT_FACTORY_METHODS)
    debug: bool = False
    block_mode: str = "scanner"

    @property
    def cache_timeout_ms(self) -> int:
        return self.cache_timeout * 1000

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> FactoryJumpConfig:
        return load_config(None, environ)

    @classmethod
    def from_dict(cls, args: Mapping[str, object]) -> FactoryJumpConfig:
        config = cls()
        updates: dict[str, object] = {}

        if "factory_paths" in args:
            updates["factory_paths"] = _validate_paths(args["factory_paths"])
        if "priority_order" in args:
            updates["priority_order"] = tuple(
                p for p in _as_list(args["priority_order"]) if p
            )
        if "cache_timeout" in args:
            updates["cache_timeout"] = _validate_timeout(args["cache_timeout"])
        if "batch_size" in args:
            updates["batch_size"] = _validate_batch_size(args["batch_size"])
        if "factory_methods" in args:
            updates["factory_methods"] = _validate_methods(args["factory_methods"])
        if "debug" in args:
            updates["debug"] = _as_bool(args["debug"], "debug")
        if "block_mode" in args:
            mode = str(args["block_mode"]).strip().lower()
            if mode not in BLOCK_MODES:
                _invalid("block_mode", args["block_mode"], "scanner")
                mode = "scanner"
            updates["block_mode"] = mode

        return replace(config, **updates)


def load_config(
    overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> FactoryJumpConfig:
    """Environment settings with request overrides layered on top."""
    environ = os.environ if environ is None else environ
    merged: dict[str, object] = {
        key[len(_ENV_PREFIX):].lower(): value
        for key, value in environ.items()
        if key.startswith(_ENV_PREFIX)
    }
    merged.update(overrides or {})
    return FactoryJumpConfig.from_dict(merged)


def _as_list(value: object) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    if isinstance(value, (list, tuple)):
        return [part.strip() if isinstance(part, str) else part for part in value]
    return []


def _validate_paths(value: object) -> tuple[str, ...]:
    valid = []
    for path in _as_list(value):
        if not isinstance(path, str) or not path:
            _invalid("factory_paths", path, None)
            continue
        valid.append(path.replace("\\", "/"))
    if not valid:
        _invalid("factory_paths", value, list(DEFAULT_FACTORY_PATHS))
        return DEFAULT_FACTORY_PATHS
    return tuple(valid)


def _validate_timeout(value: object) -> int:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        _invalid("cache_timeout", value, DEFAULT_CACHE_TIMEOUT)
        return DEFAULT_CACHE_TIMEOUT
    return max(seconds, MIN_CACHE_TIMEOUT)


def _validate_batch_size(value: object) -> int:
    try:
        return clamp_batch_size(int(value))
    except (TypeError, ValueError):
        _invalid("batch_size", value, DEFAULT_BATCH_SIZE)
        return DEFAULT_BATCH_SIZE


def _validate_methods(value: object) -> tuple[str, ...]:
    methods = [m for m in _as_list(value) if m]
    invalid = [m for m in methods if not isinstance(m, str) or not is_valid_name(m)]
    if invalid or not methods:
        _invalid("factory_methods", value, list(DEFAULT_FACTORY_METHODS))
        return DEFAULT_FACTORY_METHODS
    return tuple(methods)


def _as_bool(value: object, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text not in _FALSE:
        _invalid(key, value, False)
    return False


def _invalid(key: str, value: object, fallback: object) -> None:
    logger.warning(
        "config.invalid_value",
        extra={"key": key, "value": repr(value), "fallback": repr(fallback)},
    )
