# FILE: tests/test_config.py
"""
Tests for environment configuration.

Tests cover:
1. Env value parsing
2. load_config from environment variables
3. Validation errors
4. Cached accessor
"""
from __future__ import annotations

import sys
from dataclasses import FrozenInstanceError, replace
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from chatrouter.config import (
    CacheConfig,
    ClassifierConfig,
    ConfidenceWeights,
    RouterConfig,
    ThreadConfig,
    get_config,
    load_config,
    parse_bool,
    parse_float,
    parse_int,
    reset_config,
    validate_config,
)
from chatrouter.errors import ConfigError

ENV_VARS = [
    "CACHE_ENABLED", "CACHE_TTL_SECONDS", "CACHE_MAX_SIZE",
    "THREAD_TTL_SECONDS", "THREAD_MAX_THREADS", "THREAD_MAX_MENTIONS",
    "CLASSIFIER_AMBIGUITY_THRESHOLD", "CLASSIFIER_CLARIFICATION_THRESHOLD",
    "CLASSIFIER_MAX_USERS", "CLASSIFIER_MAX_ACTIONS_PER_USER",
    "CLASSIFIER_FUZZY_MAX_DISTANCE", "CHATROUTER_DATA_DIR",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestParsing:
    """parse_bool / parse_int / parse_float"""

    @pytest.mark.parametrize("value", ["true", "TRUE", "1", "yes", "on", " On "])
    def test_truthy(self, value):
        assert parse_bool(value) is True

    def test_falsy_and_default(self):
        assert parse_bool("no") is False
        assert parse_bool("") is False
        assert parse_bool(None, True) is True

    def test_int(self):
        assert parse_int("42") == 42
        assert parse_int(None, 7) == 7
        assert parse_int("lots", 7) == 7

    def test_float(self):
        assert parse_float("0.6") == 0.6
        assert parse_float("high", 0.5) == 0.5


class TestLoadConfig:
    """Environment variables override the defaults."""

    def test_defaults(self, clean_env):
        config = load_config()
        assert config == RouterConfig()
        assert config.persistence.corrections_file is None

    def test_overrides(self, clean_env, tmp_path):
        clean_env.setenv("CACHE_ENABLED", "false")
        clean_env.setenv("CACHE_TTL_SECONDS", "0")
        clean_env.setenv("THREAD_MAX_MENTIONS", "3")
        clean_env.setenv("CLASSIFIER_AMBIGUITY_THRESHOLD", "0.6")
        clean_env.setenv("CHATROUTER_DATA_DIR", str(tmp_path))
        config = load_config()
        assert config.cache.enabled is False
        assert config.cache.ttl_seconds == 0
        assert config.thread.max_mentions == 3
        assert config.classifier.ambiguity_threshold == 0.6
        assert config.persistence.corrections_file == tmp_path / "intent-corrections.json"
        assert config.persistence.experiments_file == tmp_path / "ab-experiments.json"

    def test_invalid_env(self, clean_env):
        clean_env.setenv("CACHE_MAX_SIZE", "0")
        with pytest.raises(ConfigError):
            load_config()

    def test_get_config_is_cached(self, clean_env):
        first = get_config()
        assert get_config() is first
        reset_config()
        assert get_config() is not first


class TestValidate:
    """validate_config collects every problem."""

    @pytest.mark.parametrize("config", [
        RouterConfig(cache=CacheConfig(ttl_seconds=-1)),
        RouterConfig(thread=ThreadConfig(max_threads=0)),
        RouterConfig(thread=ThreadConfig(max_mentions=1)),
        RouterConfig(classifier=ClassifierConfig(ambiguity_threshold=1.2)),
        RouterConfig(classifier=ClassifierConfig(ambiguity_threshold=0.2, clarification_threshold=0.3)),
        RouterConfig(classifier=ClassifierConfig(weights=ConfidenceWeights(keyword_match=0.9))),
        RouterConfig(classifier=ClassifierConfig(max_users=0)),
    ])
    def test_rejects(self, config):
        with pytest.raises(ConfigError):
            validate_config(config)

    def test_reports_all_errors(self):
        config = RouterConfig(
            cache=CacheConfig(max_size=0),
            thread=ThreadConfig(ttl_seconds=0),
        )
        with pytest.raises(ConfigError) as excinfo:
            validate_config(config)
        assert "CACHE_MAX_SIZE" in str(excinfo.value)
        assert "THREAD_TTL_SECONDS" in str(excinfo.value)

    def test_accepts_defaults(self):
        config = RouterConfig()
        assert validate_config(config) is config

    def test_frozen(self):
        config = RouterConfig()
        with pytest.raises(FrozenInstanceError):
            config.cache = CacheConfig()
        assert replace(config.cache, max_size=10).max_size == 10
