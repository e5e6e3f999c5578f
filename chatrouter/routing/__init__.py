# FILE: chatrouter/routing/__init__.py
"""
Chat Router core

Turns free-form chat into canonical bot commands ("deploy JUDO",
"deadlines GMH") and leaves everything else alone.

Usage:
    from chatrouter.routing import get_router, RouteContext

    router = get_router()
    command = await router.resolve(
        "release the judo platform",
        RouteContext(user_id="u1", chat_id="c1"),
    )
    if command != message:
        # Execute the command
        execute(command)
    else:
        # Normal chat reply
        handle_chat(message)

Key Invariants:
- Greetings, thanks, questions and coding instructions are never commands
- Every emitted command has passed the sanitizer
- High-risk commands always carry requires_confirmation
- Routing failures pass the message through, they never raise
"""
from __future__ import annotations

# Schemas
from .schemas import (
    Risk,
    IntentSource,
    MentionType,
    ExperimentStatus,
    Condition,
    RouteContext,
    GuardResult,
    CommandIntent,
    ClassificationResult,
    ConfidenceFactors,
    AlternativeIntent,
    ParsedIntent,
    MultiIntentResult,
    PendingIntents,
    ThreadState,
    Variant,
    Experiment,
    ExperimentResults,
    ExperimentSummary,
)

# Sanitizer and guards
from .sanitizer import sanitize_command, is_clean
from .guards import (
    check_pre_match_guards,
    check_post_match_guards,
    is_passthrough,
    extract_agent_task,
)

# Registry
from .registry import (
    PROJECTS,
    COMPANIES,
    INTENT_DEFINITIONS,
    KNOWN_REPOS,
    KNOWN_COMPANIES,
    KNOWN_ENTITIES,
)

# Cache
from .cache import RouteCache, build_cache_key

# Conversation thread
from .conversation_thread import ConversationThread

# Multi-intent
from .multi_intent import MultiIntentParser, format_plan

# Pattern rules and auto-context
from .pattern_rules import PatternRule, PatternMatcher, DEFAULT_RULES, rule
from .auto_context import apply_auto_context, looks_like_command

# Classifier
from .intent_classifier import IntentClassifier

# Experiments
from .experiments import ExperimentFramework

# Router
from .router import SmartRouter, RouteOutcome, get_router, reset_router


__all__ = [
    # Schemas
    "Risk",
    "IntentSource",
    "MentionType",
    "ExperimentStatus",
    "Condition",
    "RouteContext",
    "GuardResult",
    "CommandIntent",
    "ClassificationResult",
    "ConfidenceFactors",
    "AlternativeIntent",
    "ParsedIntent",
    "MultiIntentResult",
    "PendingIntents",
    "ThreadState",
    "Variant",
    "Experiment",
    "ExperimentResults",
    "ExperimentSummary",

    # Sanitizer and guards
    "sanitize_command",
    "is_clean",
    "check_pre_match_guards",
    "check_post_match_guards",
    "is_passthrough",
    "extract_agent_task",

    # Registry
    "PROJECTS",
    "COMPANIES",
    "INTENT_DEFINITIONS",
    "KNOWN_REPOS",
    "KNOWN_COMPANIES",
    "KNOWN_ENTITIES",

    # Cache
    "RouteCache",
    "build_cache_key",

    # Conversation thread
    "ConversationThread",

    # Multi-intent
    "MultiIntentParser",
    "format_plan",

    # Pattern rules and auto-context
    "PatternRule",
    "PatternMatcher",
    "DEFAULT_RULES",
    "rule",
    "apply_auto_context",
    "looks_like_command",

    # Classifier
    "IntentClassifier",

    # Experiments
    "ExperimentFramework",

    # Router
    "SmartRouter",
    "RouteOutcome",
    "get_router",
    "reset_router",
]
