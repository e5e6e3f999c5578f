# FILE: tests/test_schemas.py
"""
Tests for CommandIntent, the canonical command record.

Tests cover:
1. Parsing "action target [--flag] [positional...]"
2. Canonical string rendering
3. High risk always requires confirmation
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from chatrouter.routing.schemas import CommandIntent, IntentSource, Risk, RouteContext


class TestFromString:
    """CommandIntent.from_string"""

    def test_simple(self):
        intent = CommandIntent.from_string("deploy JUDO")
        assert intent.action == "deploy"
        assert intent.target == "JUDO"
        assert intent.args == {}
        assert intent.original_message == "deploy JUDO"

    def test_multi_word_verb(self):
        intent = CommandIntent.from_string("run tests JUDO")
        assert intent.action == "run tests"
        assert intent.target == "JUDO"

    def test_longest_verb_wins(self):
        intent = CommandIntent.from_string("create new project bakery")
        assert intent.action == "create new project"
        assert intent.target == "bakery"

    def test_verb_casing_kept(self):
        assert CommandIntent.from_string("Run Tests JUDO").action == "Run Tests"

    def test_flags_and_positionals(self):
        intent = CommandIntent.from_string("run tests JUDO --verbose unit fast")
        assert intent.args == {"verbose": True, "arg0": "unit", "arg1": "fast"}

    def test_flag_is_not_a_target(self):
        intent = CommandIntent.from_string("deploy --force")
        assert intent.target is None
        assert intent.args == {"force": True}

    def test_bare_verb(self):
        intent = CommandIntent.from_string("help")
        assert intent.action == "help"
        assert intent.target is None

    def test_meta(self):
        intent = CommandIntent.from_string(
            "deploy JUDO", source=IntentSource.CLASSIFIER, confidence=0.7,
            original_message="release the judo platform",
        )
        assert intent.source == IntentSource.CLASSIFIER
        assert intent.was_transformed()


class TestCanonical:
    """to_canonical_string depends only on action, target and args."""

    def test_round_trip(self):
        for command in ["deploy JUDO", "agent session fix the navbar", "run tests JUDO --verbose"]:
            assert CommandIntent.from_string(command).to_canonical_string() == command

    def test_false_flags_dropped(self):
        intent = CommandIntent(action="deploy", target="JUDO", args={"force": True, "dry-run": False})
        assert intent.to_canonical_string() == "deploy JUDO --force"
        assert str(intent) == "deploy JUDO --force"

    def test_metadata_does_not_change_command(self):
        a = CommandIntent(action="logs", target="armora", confidence=0.2, source=IntentSource.FALLBACK)
        b = CommandIntent(action="logs", target="armora")
        assert a.to_canonical_string() == b.to_canonical_string()

    def test_to_dict(self):
        data = CommandIntent.from_string("deploy JUDO", risk=Risk.HIGH).to_dict()
        assert data["command"] == "deploy JUDO"
        assert data["risk"] == "high"
        assert data["source"] == "direct"


class TestRisk:
    """requires_confirmation follows risk."""

    def test_high_forces_confirmation(self):
        intent = CommandIntent(action="deploy", target="JUDO", risk=Risk.HIGH, requires_confirmation=False)
        assert intent.requires_confirmation
        assert intent.is_dangerous()

    def test_low(self):
        intent = CommandIntent(action="logs", risk=Risk.LOW)
        assert not intent.requires_confirmation
        assert not intent.is_dangerous()

    def test_confidence_bounds(self):
        with pytest.raises(ValueError):
            CommandIntent(action="deploy", confidence=1.5)

    def test_high_confidence(self):
        assert CommandIntent(action="deploy", confidence=0.7).is_high_confidence()
        assert not CommandIntent(action="deploy", confidence=0.69).is_high_confidence()


class TestRouteContext:
    def test_defaults(self):
        ctx = RouteContext()
        assert ctx.chat_id is None
        assert ctx.auto_repo is None

    def test_from_dict(self):
        ctx = RouteContext.model_validate({"chat_id": "c1", "auto_company": "GMH"})
        assert ctx.auto_company == "GMH"
