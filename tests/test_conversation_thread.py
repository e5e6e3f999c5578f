# FILE: tests/test_conversation_thread.py
"""
Tests for per-chat conversation threading.

Tests cover:
1. Mention detection and recording
2. Pronoun, repeat and "the other one" resolution
3. Chat isolation
4. Bounds: mention ring buffer, LRU thread cap, idle TTL
"""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from chatrouter.config import ThreadConfig
from chatrouter.routing.conversation_thread import ConversationThread
from chatrouter.routing.schemas import MentionType


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# =============================================================================
# RECORDING
# =============================================================================


class TestRecording:
    """detect_and_record and record_mention."""

    def test_detects_repo_and_action(self, threads):
        detected = threads.detect_and_record("c1", "deploy JUDO")
        assert {"type": "repo", "value": "JUDO"} in detected
        assert {"type": "action", "value": "deploy"} in detected
        state = threads.get_state("c1")
        assert state.last_repo == "JUDO"
        assert state.last_action == "deploy"

    def test_detects_company(self, threads):
        threads.detect_and_record("c1", "show deadlines for GMH")
        assert threads.get_state("c1").last_company == "GMH"

    def test_hyphenated_repo_names(self, threads):
        threads.detect_and_record("c1", "check gq-cars-driver-app")
        assert threads.get_state("c1").last_repo == "gq-cars-driver-app"

    def test_loose_entity(self, threads):
        threads.detect_and_record("c1", "check the login page")
        state = threads.get_state("c1")
        assert state.last_entity == "login page"
        assert state.last_repo is None

    def test_unknown_type_ignored(self, threads):
        assert threads.record_mention("c1", "planet", "Mars") is False
        assert threads.get_state("c1") is None

    def test_missing_arguments(self, threads):
        assert threads.record_mention(None, MentionType.REPO, "JUDO") is False
        assert threads.record_mention("c1", MentionType.REPO, "") is False
        assert threads.detect_and_record("", "deploy JUDO") == []


# =============================================================================
# RESOLUTION
# =============================================================================


class TestResolution:
    """Anaphora rewrite against recent mentions."""

    def test_unknown_chat_unchanged(self, threads):
        assert threads.resolve_pronouns("nobody", "deploy it") == "deploy it"

    def test_singular_pronoun(self, threads):
        threads.detect_and_record("c1", "deploy JUDO")
        assert threads.resolve_pronouns("c1", "now run tests on it") == "now run tests on JUDO"
        assert threads.resolve_pronouns("c1", "restart it") == "restart JUDO"

    def test_that_as_object_only(self, threads):
        threads.detect_and_record("c1", "deploy JUDO")
        assert threads.resolve_pronouns("c1", "deploy that again") == "deploy JUDO again"
        assert threads.resolve_pronouns("c1", "fix that bug") == "fix that bug"

    def test_repeat(self, threads):
        threads.detect_and_record("c1", "deploy JUDO")
        assert threads.resolve_pronouns("c1", "again") == "deploy JUDO"

    def test_same_for(self, threads):
        threads.detect_and_record("c1", "deploy JUDO")
        assert threads.resolve_pronouns("c1", "same for LusoTown") == "deploy LusoTown"

    def test_the_other_one(self, threads):
        threads.detect_and_record("c1", "deploy JUDO")
        threads.detect_and_record("c1", "deploy LusoTown")
        assert threads.resolve_pronouns("c1", "restart the other one") == "restart JUDO"

    def test_that_repo(self, threads):
        threads.detect_and_record("c1", "logs armora")
        assert threads.resolve_pronouns("c1", "restart that repo") == "restart armora"

    def test_plural_prefers_company(self, threads):
        threads.detect_and_record("c1", "deadlines GACC")
        assert threads.resolve_pronouns("c1", "show their expenses") == "show GACC expenses"

    def test_chats_are_isolated(self, threads):
        threads.detect_and_record("c1", "deploy JUDO")
        threads.detect_and_record("c2", "deploy armora")
        assert threads.resolve_pronouns("c1", "restart it") == "restart JUDO"
        assert threads.resolve_pronouns("c2", "restart it") == "restart armora"


# =============================================================================
# BOUNDS
# =============================================================================


class TestBounds:
    """Ring buffer, LRU cap and idle expiry."""

    def test_mentions_ring_buffer(self):
        threads = ConversationThread(ThreadConfig(max_mentions=3))
        for repo in ["JUDO", "LusoTown", "armora", "moltbook"]:
            threads.record_mention("c1", MentionType.REPO, repo)
        state = threads.get_state("c1")
        assert len(state.last_mentions) == 3
        assert [m.value for m in state.last_mentions] == ["LusoTown", "armora", "moltbook"]
        assert state.repo_history == ["LusoTown", "armora", "moltbook"]

    def test_thread_lru_cap(self):
        threads = ConversationThread(ThreadConfig(max_threads=2))
        threads.record_mention("a", MentionType.REPO, "JUDO")
        threads.record_mention("b", MentionType.REPO, "JUDO")
        threads.record_mention("a", MentionType.ACTION, "deploy")
        threads.record_mention("c", MentionType.REPO, "JUDO")
        assert len(threads) == 2
        assert threads.get_state("b") is None
        assert threads.get_state("a") is not None

    def test_idle_expiry(self):
        clock = FakeClock()
        threads = ConversationThread(ThreadConfig(ttl_seconds=60), clock=clock)
        threads.detect_and_record("c1", "deploy JUDO")
        clock.now += 61
        assert threads.get_state("c1") is None
        assert threads.resolve_pronouns("c1", "restart it") == "restart it"

    def test_cleanup_expired(self):
        clock = FakeClock()
        threads = ConversationThread(ThreadConfig(ttl_seconds=60), clock=clock)
        threads.detect_and_record("c1", "deploy JUDO")
        threads.detect_and_record("c2", "deploy armora")
        clock.now += 61
        assert threads.cleanup_expired() == 2
        assert len(threads) == 0

    def test_get_state_is_a_copy(self, threads):
        threads.detect_and_record("c1", "deploy JUDO")
        state = threads.get_state("c1")
        state.last_repo = "tampered"
        assert threads.get_state("c1").last_repo == "JUDO"

    def test_clear_and_stats(self, threads):
        threads.detect_and_record("c1", "deploy JUDO")
        stats = threads.get_stats()
        assert stats["active_threads"] == 1
        assert stats["total_mentions"] >= 2
        assert threads.clear("c1") is True
        assert threads.clear("c1") is False
        threads.detect_and_record("c1", "deploy JUDO")
        threads.destroy()
        assert len(threads) == 0
