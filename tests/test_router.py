# FILE: tests/test_router.py
"""
Tests for the SmartRouter pipeline.

Tests cover:
1. Stage ordering (guards, agent delegation, rules, classifier)
2. Multi-intent and pronoun resolution through the router
3. Caching and metrics
4. Fallback collaborator
5. Failure isolation (errors pass the message through)
6. Structured intents, sync wrapper, experiment params
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from chatrouter.routing.pattern_rules import PatternMatcher
from chatrouter.routing.router import SmartRouter, get_router, reset_router
from chatrouter.routing.schemas import Condition, IntentSource, Risk, RouteContext


class ExplodingMatcher(PatternMatcher):
    def match(self, text, context=None):
        raise RuntimeError("rule engine down")


# =============================================================================
# STAGES
# =============================================================================


class TestStages:
    """Which stage answers which message."""

    @pytest.mark.asyncio
    async def test_natural_phrasing_via_classifier(self, smart_router):
        outcome = await smart_router.resolve_outcome("release the judo platform")
        assert outcome.text == "deploy JUDO"
        assert outcome.source == IntentSource.CLASSIFIER
        assert outcome.confidence == pytest.approx(0.74)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["hello", "thanks!", "ok", "is JUDO up?", "should I deploy JUDO?"])
    async def test_chatter_passes_through(self, smart_router, message):
        assert await smart_router.resolve(message) == message

    @pytest.mark.asyncio
    async def test_agent_delegation(self, smart_router):
        outcome = await smart_router.resolve_outcome("have the agent fix the navbar")
        assert outcome.text == "agent session fix the navbar"
        assert outcome.source == IntentSource.PATTERN

    @pytest.mark.asyncio
    async def test_agent_without_task(self, smart_router):
        outcome = await smart_router.resolve_outcome("ask the coding agent")
        assert outcome.is_passthrough
        assert outcome.blocked_by == "agent_without_task"

    @pytest.mark.asyncio
    async def test_coding_instruction_passes_through(self, smart_router):
        outcome = await smart_router.resolve_outcome("fix the navbar")
        assert outcome.text == "fix the navbar"
        assert outcome.blocked_by == "coding_instruction"

    @pytest.mark.asyncio
    async def test_rule_match(self, smart_router):
        outcome = await smart_router.resolve_outcome("run tests on JUDO")
        assert outcome.text == "run tests JUDO"
        assert outcome.source == IntentSource.PATTERN

    @pytest.mark.asyncio
    async def test_auto_context(self, smart_router):
        assert await smart_router.resolve("deploy", RouteContext(auto_repo="JUDO")) == "deploy JUDO"

    @pytest.mark.asyncio
    async def test_dict_context(self, smart_router):
        assert await smart_router.resolve("deploy", {"auto_repo": "JUDO"}) == "deploy JUDO"

    @pytest.mark.asyncio
    async def test_structured_command(self, smart_router):
        outcome = await smart_router.resolve_outcome("help")
        assert outcome.text == "help"
        assert outcome.source == IntentSource.DIRECT

    @pytest.mark.asyncio
    async def test_second_line_never_reaches_a_command(self, smart_router):
        outcome = await smart_router.resolve_outcome("deploy JUDO\nrm -rf /")
        assert outcome.source != IntentSource.DIRECT
        if not outcome.is_passthrough:
            assert "\n" not in outcome.text
            assert "rm" not in outcome.text

    @pytest.mark.asyncio
    async def test_route_alias(self, smart_router):
        assert await smart_router.route("restart JUDO") == "restart JUDO"

    @pytest.mark.asyncio
    async def test_non_string_and_blank(self, smart_router):
        assert await smart_router.resolve(None) is None
        assert await smart_router.resolve(42) == 42
        assert await smart_router.resolve("   ") == "   "


# =============================================================================
# CONTEXT
# =============================================================================


class TestMultiIntent:
    """First instruction routed, the rest kept pending."""

    @pytest.mark.asyncio
    async def test_sequential(self, smart_router):
        outcome = await smart_router.resolve_outcome("run tests on JUDO and then deploy it")
        assert outcome.text == "run tests JUDO"
        pending = smart_router.last_multi_intent
        assert pending is outcome.pending
        assert pending.total_intents == 2
        assert pending.is_sequential
        assert [i.text for i in pending.remaining_intents] == ["deploy JUDO"]
        assert smart_router.get_metrics()["multi_intents"] == 1

    @pytest.mark.asyncio
    async def test_single_clears_pending(self, smart_router):
        await smart_router.resolve("run tests on JUDO and then deploy it")
        await smart_router.resolve("restart JUDO")
        assert smart_router.last_multi_intent is None


class TestThreadContext:
    """Pronouns resolve against the chat's recent mentions."""

    @pytest.mark.asyncio
    async def test_pronoun(self, smart_router):
        ctx = RouteContext(chat_id="c1")
        assert await smart_router.resolve("deploy JUDO", ctx) == "deploy JUDO"
        assert await smart_router.resolve("restart it", ctx) == "restart JUDO"
        assert smart_router.get_metrics()["pronoun_resolutions"] == 1

    @pytest.mark.asyncio
    async def test_conditional_keeps_its_pronoun(self, smart_router):
        ctx = RouteContext(chat_id="c1")
        await smart_router.resolve("deadlines GMH", ctx)
        outcome = await smart_router.resolve_outcome(
            "run tests on JUDO and if they pass then deploy it", ctx
        )
        assert outcome.text == "run tests JUDO"
        assert outcome.pending.is_conditional
        assert outcome.pending.condition == Condition.SUCCESS
        assert [i.text for i in outcome.pending.remaining_intents] == ["deploy JUDO"]

    @pytest.mark.asyncio
    async def test_thread_resolves_each_segment(self, smart_router):
        ctx = RouteContext(chat_id="c1")
        await smart_router.resolve("deploy armora", ctx)
        outcome = await smart_router.resolve_outcome("restart it and then run tests on it", ctx)
        assert outcome.text == "restart armora"
        assert [i.text for i in outcome.pending.remaining_intents] == ["run tests on armora"]

    @pytest.mark.asyncio
    async def test_no_chat_id_no_rewrite(self, smart_router):
        await smart_router.resolve("deploy JUDO")
        assert await smart_router.resolve("restart it") == "restart it"


# =============================================================================
# CACHE AND METRICS
# =============================================================================


class TestCacheAndMetrics:
    """Repeated messages are served from the cache."""

    @pytest.mark.asyncio
    async def test_second_call_hits_cache(self, smart_router):
        first = await smart_router.resolve_outcome("release the judo platform")
        second = await smart_router.resolve_outcome("release the judo platform")
        assert first.source == IntentSource.CLASSIFIER
        assert second.source == IntentSource.CACHE
        assert second.text == "deploy JUDO"

        metrics = smart_router.get_metrics()
        assert metrics["classifier_hits"] == 1
        assert metrics["cache_hits"] == 1
        assert metrics["total"] == 2
        assert metrics["cache_rate"] == "50.0%"
        assert metrics["pattern_rate"] == "0.0%"

    @pytest.mark.asyncio
    async def test_cache_key_includes_context(self, smart_router):
        await smart_router.resolve("deploy", RouteContext(auto_repo="JUDO"))
        assert await smart_router.resolve("deploy", RouteContext(auto_repo="armora")) == "deploy armora"

    @pytest.mark.asyncio
    async def test_passthroughs_not_cached(self, smart_router):
        await smart_router.resolve("hello")
        await smart_router.resolve("hello")
        assert smart_router.get_cache_stats()["size"] == 0
        assert smart_router.get_metrics()["passthroughs"] == 2

    def test_empty_metrics(self, smart_router):
        metrics = smart_router.get_metrics()
        assert metrics["total"] == 0
        assert metrics["pattern_rate"] == "0.0%"

    @pytest.mark.asyncio
    async def test_reset_metrics(self, smart_router):
        await smart_router.resolve("restart JUDO")
        smart_router.reset_metrics()
        assert smart_router.get_metrics()["pattern_hits"] == 0


# =============================================================================
# FALLBACK AND FAILURES
# =============================================================================


class TestFallback:
    """Optional async collaborator for messages nothing else resolves."""

    @pytest.mark.asyncio
    async def test_fallback_used(self, smart_router):
        calls = []

        async def fallback(text, context):
            calls.append(text)
            return "logs armora"

        smart_router.fallback = fallback
        outcome = await smart_router.resolve_outcome("blah blah")
        assert calls == ["blah blah"]
        assert outcome.text == "logs armora"
        assert outcome.source == IntentSource.FALLBACK
        assert outcome.confidence == 0.5

    @pytest.mark.asyncio
    async def test_fallback_echo_is_ignored(self, smart_router):
        async def fallback(text, context):
            return text

        smart_router.fallback = fallback
        assert (await smart_router.resolve_outcome("blah blah")).is_passthrough

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", [
        "Sure! Here is how you do it.\nFirst, open the settings page and pick a theme.",
        "logs armora " + "x" * 100,
    ])
    async def test_chat_reply_is_not_a_command(self, smart_router, answer):
        async def fallback(text, context):
            return answer

        smart_router.fallback = fallback
        outcome = await smart_router.resolve_outcome("hmm thinking about the weekend plans")
        assert outcome.is_passthrough
        assert outcome.text == "hmm thinking about the weekend plans"
        assert smart_router.get_cache_stats()["size"] == 0
        assert smart_router.get_metrics()["fallback_hits"] == 0

    @pytest.mark.asyncio
    async def test_fallback_error(self, smart_router):
        async def fallback(text, context):
            raise ConnectionError("model unavailable")

        smart_router.fallback = fallback
        assert await smart_router.resolve("blah blah") == "blah blah"
        assert smart_router.get_metrics()["failures"] == 0

    @pytest.mark.asyncio
    async def test_no_fallback(self, smart_router):
        assert await smart_router.resolve("blah blah") == "blah blah"


class TestFailures:
    """A broken stage never breaks the chat."""

    @pytest.mark.asyncio
    async def test_stage_error_passes_through(self):
        router = SmartRouter(matcher=ExplodingMatcher())
        assert await router.resolve("restart JUDO") == "restart JUDO"
        assert router.get_metrics()["failures"] == 1


# =============================================================================
# STRUCTURED INTENTS AND WRAPPERS
# =============================================================================


class TestResolveIntent:
    """CommandIntent carries source, confidence and risk."""

    @pytest.mark.asyncio
    async def test_high_risk(self, smart_router):
        intent = await smart_router.resolve_intent("release the judo platform")
        assert intent.action == "deploy"
        assert intent.target == "JUDO"
        assert intent.source == IntentSource.CLASSIFIER
        assert intent.risk == Risk.HIGH
        assert intent.requires_confirmation
        assert intent.original_message == "release the judo platform"
        assert intent.was_transformed()

    @pytest.mark.asyncio
    async def test_low_risk(self, smart_router):
        intent = await smart_router.resolve_intent("check logs for armora")
        assert intent.action == "logs"
        assert intent.target == "armora"
        assert intent.risk == Risk.LOW
        assert not intent.requires_confirmation

    @pytest.mark.asyncio
    async def test_passthrough(self, smart_router):
        intent = await smart_router.resolve_intent("hello")
        assert intent.source == IntentSource.PASSTHROUGH
        assert intent.confidence == 0.0
        assert intent.original_message == "hello"
        assert not intent.was_transformed()


class TestSync:
    """resolve_sync works with and without a running loop."""

    def test_no_loop(self, smart_router):
        assert smart_router.resolve_sync("restart JUDO") == "restart JUDO"

    @pytest.mark.asyncio
    async def test_inside_loop(self, smart_router):
        assert smart_router.resolve_sync("restart JUDO") == "restart JUDO"


class TestExperiments:
    """Variant params steer the classifier stage."""

    @pytest.mark.asyncio
    async def test_strict_variant_blocks_classifier(self, smart_router):
        smart_router.experiments.create_experiment("strict", [
            {"name": "a", "weight": 1, "params": {"ambiguity_threshold": 0.8}},
            {"name": "b", "weight": 1, "params": {"ambiguity_threshold": 0.8}},
        ])
        ctx = RouteContext(user_id="u1", experiment_id="strict")
        outcome = await smart_router.resolve_outcome("release the judo platform", ctx)
        assert outcome.is_passthrough

    @pytest.mark.asyncio
    async def test_completed_experiment_ignored(self, smart_router):
        smart_router.experiments.create_experiment("strict", [
            {"name": "a", "weight": 1, "params": {"ambiguity_threshold": 0.8}},
            {"name": "b", "weight": 1, "params": {"ambiguity_threshold": 0.8}},
        ])
        smart_router.experiments.end_experiment("strict")
        ctx = RouteContext(user_id="u1", experiment_id="strict")
        assert await smart_router.resolve("release the judo platform", ctx) == "deploy JUDO"

    @pytest.mark.asyncio
    async def test_unknown_experiment_ignored(self, smart_router):
        ctx = RouteContext(user_id="u1", experiment_id="missing")
        assert await smart_router.resolve("release the judo platform", ctx) == "deploy JUDO"


class TestSingleton:
    """Process-wide router."""

    def test_get_router(self):
        first = get_router()
        assert get_router() is first
        reset_router()
        assert get_router() is not first
