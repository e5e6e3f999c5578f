# FILE: chatrouter/config.py
"""
Chat Router - Configuration

Centralized config for the routing core. Every capacity, TTL, threshold and
weight the stores and classifier use is defined here, and can be overridden
from the environment (a .env file is loaded by main.py).

Env vars:
    CACHE_ENABLED, CACHE_TTL_SECONDS, CACHE_MAX_SIZE
    THREAD_TTL_SECONDS, THREAD_MAX_THREADS, THREAD_MAX_MENTIONS
    CLASSIFIER_AMBIGUITY_THRESHOLD, CLASSIFIER_CLARIFICATION_THRESHOLD
    CLASSIFIER_MAX_USERS, CLASSIFIER_MAX_ACTIONS_PER_USER
    CLASSIFIER_FUZZY_MAX_DISTANCE
    CHATROUTER_DATA_DIR
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from chatrouter.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheConfig:
    """
    Response cache sizing.

    ttl_seconds == 0 means entries never expire.
    """
    enabled: bool = True
    ttl_seconds: int = 300
    max_size: int = 500


@dataclass(frozen=True)
class ThreadConfig:
    """Per-chat conversation memory bounds."""
    ttl_seconds: int = 30 * 60     # idle time before a chat's state is dropped
    max_threads: int = 500         # LRU cap across chats
    max_mentions: int = 5          # ring buffer per chat


@dataclass(frozen=True)
class ConfidenceWeights:
    """
    Weight of each confidence factor. Must sum to 1.0 so the weighted sum
    is itself the confidence.
    """
    keyword_match: float = 0.4
    context_match: float = 0.25
    history_match: float = 0.15
    specificity: float = 0.2

    def as_dict(self) -> Dict[str, float]:
        return {
            "keyword_match": self.keyword_match,
            "context_match": self.context_match,
            "history_match": self.history_match,
            "specificity": self.specificity,
        }


@dataclass(frozen=True)
class ClassifierConfig:
    """
    Intent classifier knobs.

    Below ambiguity_threshold a result is flagged ambiguous with clarifying
    questions; below clarification_threshold the user is asked to rephrase.
    """
    ambiguity_threshold: float = 0.5
    clarification_threshold: float = 0.3
    weights: ConfidenceWeights = field(default_factory=ConfidenceWeights)

    # Bounded user history
    max_users: int = 1000
    max_actions_per_user: int = 100
    history_window: int = 20

    # Corrections
    max_corrections: int = 500

    # Fuzzy command-word correction
    fuzzy_max_distance: int = 2
    fuzzy_min_token: int = 3
    fuzzy_max_token: int = 10


@dataclass(frozen=True)
class PersistenceConfig:
    """Where JSON state is kept. None disables persistence."""
    data_dir: Optional[Path] = None

    @property
    def corrections_file(self) -> Optional[Path]:
        return self.data_dir / "intent-corrections.json" if self.data_dir else None

    @property
    def experiments_file(self) -> Optional[Path]:
        return self.data_dir / "ab-experiments.json" if self.data_dir else None


@dataclass(frozen=True)
class RouterConfig:
    """Master config combining all sub-configs."""
    cache: CacheConfig = field(default_factory=CacheConfig)
    thread: ThreadConfig = field(default_factory=ThreadConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)


# =============================================================================
# ENV PARSING
# =============================================================================

def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """true/1/yes/on (any case) are truthy; None keeps the default."""
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def parse_int(value: Optional[str], default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        logger.warning(f"Ignoring non-integer config value {value!r}, using {default}")
        return default


def parse_float(value: Optional[str], default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError:
        logger.warning(f"Ignoring non-numeric config value {value!r}, using {default}")
        return default


def validate_config(config: RouterConfig) -> RouterConfig:
    """
    Check a config for values the stores cannot work with.

    Raises:
        ConfigError listing every problem found.
    """
    errors: List[str] = []

    if config.cache.ttl_seconds < 0:
        errors.append("CACHE_TTL_SECONDS must be >= 0 (0 means no expiration)")
    if config.cache.max_size <= 0:
        errors.append("CACHE_MAX_SIZE must be > 0")
    if config.thread.ttl_seconds <= 0:
        errors.append("THREAD_TTL_SECONDS must be > 0")
    if config.thread.max_threads <= 0:
        errors.append("THREAD_MAX_THREADS must be > 0")
    if config.thread.max_mentions < 2:
        errors.append("THREAD_MAX_MENTIONS must be >= 2")

    clf = config.classifier
    for name in ("ambiguity_threshold", "clarification_threshold"):
        value = getattr(clf, name)
        if not 0.0 <= value <= 1.0:
            errors.append(f"{name} must be within [0, 1], got {value}")
    if clf.clarification_threshold > clf.ambiguity_threshold:
        errors.append("clarification_threshold must not exceed ambiguity_threshold")
    if abs(sum(clf.weights.as_dict().values()) - 1.0) > 1e-6:
        errors.append("confidence weights must sum to 1.0")
    if clf.max_users <= 0 or clf.max_actions_per_user <= 0:
        errors.append("classifier history caps must be > 0")
    if clf.fuzzy_max_distance < 0:
        errors.append("CLASSIFIER_FUZZY_MAX_DISTANCE must be >= 0")

    if errors:
        raise ConfigError("Configuration validation failed:\n" + "\n".join(errors))

    if config.cache.enabled:
        if config.cache.ttl_seconds == 0:
            logger.warning("Cache TTL is 0 - entries will never expire")
        if config.cache.max_size > 10000:
            logger.warning("CACHE_MAX_SIZE is very large (>10000), may consume excessive memory")

    return config


def load_config() -> RouterConfig:
    """Build a RouterConfig from environment variables."""
    data_dir = os.getenv("CHATROUTER_DATA_DIR")

    config = RouterConfig(
        cache=CacheConfig(
            enabled=parse_bool(os.getenv("CACHE_ENABLED"), True),
            ttl_seconds=parse_int(os.getenv("CACHE_TTL_SECONDS"), 300),
            max_size=parse_int(os.getenv("CACHE_MAX_SIZE"), 500),
        ),
        thread=ThreadConfig(
            ttl_seconds=parse_int(os.getenv("THREAD_TTL_SECONDS"), 30 * 60),
            max_threads=parse_int(os.getenv("THREAD_MAX_THREADS"), 500),
            max_mentions=parse_int(os.getenv("THREAD_MAX_MENTIONS"), 5),
        ),
        classifier=ClassifierConfig(
            ambiguity_threshold=parse_float(os.getenv("CLASSIFIER_AMBIGUITY_THRESHOLD"), 0.5),
            clarification_threshold=parse_float(os.getenv("CLASSIFIER_CLARIFICATION_THRESHOLD"), 0.3),
            max_users=parse_int(os.getenv("CLASSIFIER_MAX_USERS"), 1000),
            max_actions_per_user=parse_int(os.getenv("CLASSIFIER_MAX_ACTIONS_PER_USER"), 100),
            fuzzy_max_distance=parse_int(os.getenv("CLASSIFIER_FUZZY_MAX_DISTANCE"), 2),
        ),
        persistence=PersistenceConfig(data_dir=Path(data_dir) if data_dir else None),
    )
    return validate_config(config)


# =============================================================================
# ACCESSORS
# =============================================================================

DEFAULT_CONFIG = RouterConfig()

_config: Optional[RouterConfig] = None


def get_config() -> RouterConfig:
    """Get the process config, loading it from the environment on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the loaded config (tests)."""
    global _config
    _config = None
