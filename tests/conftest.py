# FILE: tests/conftest.py
"""
Pytest configuration for the Chat Router test suite.

Configures:
- pytest-asyncio for async test support
- Fresh, non-persistent router stores per test
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from chatrouter.config import RouterConfig, reset_config
from chatrouter.routing.cache import RouteCache
from chatrouter.routing.conversation_thread import ConversationThread
from chatrouter.routing.intent_classifier import IntentClassifier
from chatrouter.routing.experiments import ExperimentFramework
from chatrouter.routing.router import SmartRouter, reset_router

# Async tests are marked with @pytest.mark.asyncio
pytest_plugins = ["pytest_asyncio"]


@pytest.fixture
def classifier():
    """Classifier without persistence."""
    return IntentClassifier()


@pytest.fixture
def threads():
    return ConversationThread()


@pytest.fixture
def experiments():
    return ExperimentFramework()


@pytest.fixture
def smart_router():
    """Router with in-memory stores only."""
    config = RouterConfig()
    return SmartRouter(
        config=config,
        cache=RouteCache(config.cache),
        threads=ConversationThread(config.thread),
        classifier=IntentClassifier(config.classifier),
        experiments=ExperimentFramework(),
    )


@pytest.fixture(autouse=True)
def _reset_singletons():
    yield
    reset_router()
    reset_config()
