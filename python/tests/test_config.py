"""Tests for configuration loading and validation."""

import logging

import pytest

from factoryjump.config import (
    DEFAULT_FACTORY_PATHS,
    DEFAULT_PRIORITY_ORDER,
    FactoryJumpConfig,
    load_config,
)
from factoryjump.patterns import DEFAULT_FACTORY_METHODS


def _invalid_keys(caplog):
    return [r.key for r in caplog.records if r.message == "config.invalid_value"]


def test_defaults():
    config = FactoryJumpConfig()
    assert config.factory_paths == DEFAULT_FACTORY_PATHS
    assert config.priority_order == DEFAULT_PRIORITY_ORDER
    assert config.cache_timeout == 60
    assert config.cache_timeout_ms == 60_000
    assert config.batch_size == 10
    assert config.factory_methods == DEFAULT_FACTORY_METHODS
    assert config.debug is False
    assert config.block_mode == "scanner"


def test_from_dict_accepts_valid_values():
    config = FactoryJumpConfig.from_dict({
        "factory_paths": ["spec/factories/**/*.rb", "test\\factories\\**\\*.rb"],
        "priority_order": ["test/factories", "spec/factories"],
        "cache_timeout": 120,
        "batch_size": 4,
        "factory_methods": ["create", "make"],
        "debug": True,
        "block_mode": "regex",
    })
    assert config.factory_paths == ("spec/factories/**/*.rb", "test/factories/**/*.rb")
    assert config.priority_order == ("test/factories", "spec/factories")
    assert config.cache_timeout_ms == 120_000
    assert config.batch_size == 4
    assert config.factory_methods == ("create", "make")
    assert config.debug is True
    assert config.block_mode == "regex"


@pytest.mark.parametrize("value,expected", [(5, 10), (10, 10), ("30", 30)])
def test_cache_timeout_floor(value, expected):
    assert FactoryJumpConfig.from_dict({"cache_timeout": value}).cache_timeout == expected


@pytest.mark.parametrize("value,expected", [(0, 1), (25, 25), (999, 50)])
def test_batch_size_is_clamped(value, expected):
    assert FactoryJumpConfig.from_dict({"batch_size": value}).batch_size == expected


def test_invalid_numbers_fall_back_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="factoryjump.config"):
        config = FactoryJumpConfig.from_dict({"cache_timeout": "soon", "batch_size": None})
    assert config.cache_timeout == 60
    assert config.batch_size == 10
    assert _invalid_keys(caplog) == ["cache_timeout", "batch_size"]


def test_empty_paths_fall_back_to_default(caplog):
    with caplog.at_level(logging.WARNING, logger="factoryjump.config"):
        config = FactoryJumpConfig.from_dict({"factory_paths": []})
    assert config.factory_paths == DEFAULT_FACTORY_PATHS
    assert "factory_paths" in _invalid_keys(caplog)


def test_blank_paths_are_dropped():
    config = FactoryJumpConfig.from_dict({"factory_paths": ["", "factories/*.rb"]})
    assert config.factory_paths == ("factories/*.rb",)


def test_invalid_methods_fall_back_to_defaults(caplog):
    with caplog.at_level(logging.WARNING, logger="factoryjump.config"):
        config = FactoryJumpConfig.from_dict({"factory_methods": ["create", "bad name("]})
    assert config.factory_methods == DEFAULT_FACTORY_METHODS
    assert _invalid_keys(caplog) == ["factory_methods"]


def test_invalid_block_mode_falls_back_to_scanner(caplog):
    with caplog.at_level(logging.WARNING, logger="factoryjump.config"):
        config = FactoryJumpConfig.from_dict({"block_mode": "treesitter"})
    assert config.block_mode == "scanner"
    assert _invalid_keys(caplog) == ["block_mode"]


def test_unknown_keys_are_ignored():
    assert FactoryJumpConfig.from_dict({"text": "create(:user)", "force": True}) == FactoryJumpConfig()


def test_from_env():
    config = FactoryJumpConfig.from_env({
        "FACTORYJUMP_FACTORY_PATHS": "spec/factories/**/*.rb, test/factories/**/*.rb",
        "FACTORYJUMP_CACHE_TIMEOUT": "15",
        "FACTORYJUMP_DEBUG": "yes",
        "FACTORYJUMP_BLOCK_MODE": "REGEX",
        "UNRELATED": "1",
    })
    assert config.factory_paths == ("spec/factories/**/*.rb", "test/factories/**/*.rb")
    assert config.cache_timeout == 15
    assert config.debug is True
    assert config.block_mode == "regex"


def test_unrecognized_bool_is_false_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="factoryjump.config"):
        config = FactoryJumpConfig.from_env({"FACTORYJUMP_DEBUG": "maybe"})
    assert config.debug is False
    assert _invalid_keys(caplog) == ["debug"]


def test_load_config_overrides_take_precedence():
    config = load_config(
        {"cache_timeout": 90},
        environ={"FACTORYJUMP_CACHE_TIMEOUT": "20", "FACTORYJUMP_BATCH_SIZE": "3"},
    )
    assert config.cache_timeout == 90
    assert config.batch_size == 3
