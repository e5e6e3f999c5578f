# FILE: chatrouter/routing/conversation_thread.py
"""
Conversation threading: pronoun resolution and context carryover.

Tracks which repo, company, action and loose entity each chat mentioned
most recently, so a follow-up like "now run tests on it" resolves to the
project the user was just talking about.

    deploy JUDO             -> records repo JUDO, action deploy
    now run tests on it     -> "now run tests on JUDO"
    same for LusoTown       -> "deploy LusoTown"
    the other one           -> second most recent repo

A chat with no recorded state is never guessed at: text comes back unchanged.
State is bounded per chat (mention ring buffer) and across chats (LRU cap
plus idle TTL).
"""
from __future__ import annotations
import re
import time
import logging
import threading
from collections import OrderedDict
from typing import Optional, Dict, List, Any, Callable

from chatrouter.config import ThreadConfig
from .schemas import Mention, MentionType, ThreadState
from .registry import find_repos, find_companies

logger = logging.getLogger(__name__)


# =============================================================================
# PATTERNS
# =============================================================================

# Verbs that "again" / "same for X" can repeat. Checked in this order.
ACTION_VERBS = [
    "deploy", "test", "build", "run", "check", "fix", "review",
    "show", "list", "create", "delete", "update", "restart",
    "push", "pull", "merge", "revert", "rollback", "install",
]
_ACTION_PATTERNS = [(verb, re.compile(rf"\b{verb}\b", re.IGNORECASE)) for verb in ACTION_VERBS]

# "check the login page", "fix payment flow for JUDO"
_ENTITY_RE = re.compile(
    r"\b(?:check|fix|update|review|test|build|create|show|deploy)\s+(?:the\s+)?"
    r"([a-z][a-z0-9\s-]{2,30}?)(?:\s*$|\s+(?:on|for|in|to|from|with|and)\b)",
    re.IGNORECASE,
)

_NON_ENTITY_WORDS = {
    "it", "that", "this", "them", "those", "they", "there",
    "again", "same", "other", "all", "everything",
}

_REPEAT_RE = re.compile(r"^(?:again|same(?:\s+thing)?|do\s+(?:it|that)\s+again|do\s+the\s+same(?:\s+thing)?)$", re.IGNORECASE)
_SAME_FOR_RE = re.compile(r"\b(?:do\s+the\s+)?same(?:\s+thing)?\s+for\s+(.+)$", re.IGNORECASE)
_OTHER_RE = re.compile(r"\bthe\s+other(?:\s+one)?\b", re.IGNORECASE)

_THERE_RE = re.compile(r"\bthere\b", re.IGNORECASE)
_THAT_REPO_RE = re.compile(r"\b(?:that|this)\s+(?:repo|project|repository)\b", re.IGNORECASE)

_PLURAL_RE = re.compile(r"\b(their|them|those|they)\b", re.IGNORECASE)

# "that" only as a bare object ("deploy that", "deploy that again"), not "fix that bug"
_SINGULAR_VERB_RE = re.compile(
    r"\b(deploy|test|build|run|check|fix|review|restart|push|pull|merge|revert|install)\s+"
    r"(?:it\b|that(?=\s*$|\s*[.!,]|\s+(?:again|now|too|please|first|then|and)\b))",
    re.IGNORECASE,
)
_SINGULAR_PREP_RE = re.compile(r"\b(on|to|for|with|in|from|about|against)\s+it\b", re.IGNORECASE)
_LEADING_IT_RE = re.compile(r"^it\b", re.IGNORECASE)


# =============================================================================
# CONVERSATION THREAD STORE
# =============================================================================

class ConversationThread:
    """
    Per-chat mention memory.

    Shared by every chat the process handles; all state changes go through
    one lock.
    """

    def __init__(
        self,
        config: Optional[ThreadConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ThreadConfig()
        self._clock = clock
        self._threads: "OrderedDict[str, ThreadState]" = OrderedDict()
        self._lock = threading.RLock()
        self._total_mentions = 0
        self._total_resolutions = 0
        self._last_cleanup = clock()

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_mention(self, chat_id: Any, mention_type: Any, value: Any) -> bool:
        """
        Record that a chat mentioned an entity.

        Returns:
            True if recorded, False for missing arguments or an unknown type.
        """
        if not chat_id or not mention_type or not value:
            return False
        try:
            kind = MentionType(mention_type)
        except ValueError:
            logger.warning(f"[ConversationThread] Unknown mention type {mention_type!r}")
            return False

        value = str(value)
        with self._lock:
            state = self._get_or_create(str(chat_id))
            now = self._clock()

            if kind == MentionType.REPO:
                state.last_repo = value
                if value in state.repo_history:
                    state.repo_history.remove(value)
                state.repo_history.append(value)
                del state.repo_history[:-self.config.max_mentions]
            elif kind == MentionType.COMPANY:
                state.last_company = value
            elif kind == MentionType.ACTION:
                value = value.lower()
                state.last_action = value
            else:
                state.last_entity = value

            state.last_mentions.append(Mention(type=kind, value=value, timestamp=now))
            del state.last_mentions[:-self.config.max_mentions]
            state.updated_at = now
            self._total_mentions += 1
        return True

    def detect_and_record(self, chat_id: Any, text: str) -> List[Dict[str, str]]:
        """
        Scan a message for known repos, companies, the primary action verb
        and a loose entity phrase, and record each one.

        Returns:
            The detected mentions as {"type", "value"} dicts.
        """
        if not chat_id or not text or not isinstance(text, str):
            return []

        detected: List[Dict[str, str]] = []

        def _record(kind: MentionType, value: str) -> None:
            if self.record_mention(chat_id, kind, value):
                detected.append({"type": kind.value, "value": value})

        # Loose entity first so a named repo in the same message is the most recent mention
        match = _ENTITY_RE.search(text)
        if match:
            entity = match.group(1).strip()
            if (
                entity.lower().split()[0] not in _NON_ENTITY_WORDS
                and not find_repos(entity)
                and not find_companies(entity)
            ):
                _record(MentionType.ENTITY, entity)

        for repo in find_repos(text):
            _record(MentionType.REPO, repo)
        for company in find_companies(text):
            _record(MentionType.COMPANY, company)

        # First verb found is the primary action
        for verb, pattern in _ACTION_PATTERNS:
            if pattern.search(text):
                _record(MentionType.ACTION, verb)
                break

        return detected

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve_pronouns(self, chat_id: Any, text: str) -> str:
        """
        Rewrite anaphora using the chat's recent mentions.

        Order: repeat ("again", "same for X"), "the other one", locational
        ("there", "that repo"), plural (their/them/those/they), singular
        ("deploy it", "on it", leading "it").
        """
        if not chat_id or not text or not isinstance(text, str):
            return text or ""

        with self._lock:
            state = self._get_live(str(chat_id))
            if state is None:
                return text

            resolved = self._resolve_repeat(text, state)
            if resolved == text:
                resolved = self._resolve_other(resolved, state)
            resolved = self._resolve_locational(resolved, state)
            resolved = self._resolve_plural(resolved, state)
            resolved = self._resolve_singular(resolved, state)

            if resolved != text:
                self._total_resolutions += 1
                logger.debug(f"[ConversationThread] Resolved: {text!r} -> {resolved!r} (chat={chat_id})")
        return resolved

    def _resolve_repeat(self, text: str, state: ThreadState) -> str:
        stripped = text.strip()
        if _REPEAT_RE.match(stripped):
            target = state.last_repo or state.last_entity
            if state.last_action and target:
                return f"{state.last_action} {target}"
            return text

        match = _SAME_FOR_RE.search(stripped)
        if match and state.last_action:
            return f"{state.last_action} {match.group(1).strip()}"
        return text

    def _resolve_other(self, text: str, state: ThreadState) -> str:
        if not _OTHER_RE.search(text) or len(state.repo_history) < 2:
            return text
        return _OTHER_RE.sub(state.repo_history[-2], text)

    def _resolve_locational(self, text: str, state: ThreadState) -> str:
        if not state.last_repo:
            return text
        result = _THERE_RE.sub(f"in {state.last_repo}", text)
        return _THAT_REPO_RE.sub(state.last_repo, result)

    def _resolve_plural(self, text: str, state: ThreadState) -> str:
        if state.last_company:
            return _PLURAL_RE.sub(state.last_company, text)
        # Without a company, "them" can still mean the last project
        if state.last_repo:
            return re.sub(r"\bthem\b", state.last_repo, text, flags=re.IGNORECASE)
        return text

    def _resolve_singular(self, text: str, state: ThreadState) -> str:
        replacement = self._most_recent_singular(state)
        if not replacement:
            return text
        result = _SINGULAR_VERB_RE.sub(lambda m: f"{m.group(1)} {replacement}", text)
        result = _SINGULAR_PREP_RE.sub(lambda m: f"{m.group(1)} {replacement}", result)
        if len(result) > 2 and _LEADING_IT_RE.match(result):
            result = _LEADING_IT_RE.sub(replacement, result, count=1)
        return result

    @staticmethod
    def _most_recent_singular(state: ThreadState) -> Optional[str]:
        for mention in reversed(state.last_mentions):
            if mention.type in (MentionType.REPO, MentionType.ENTITY):
                return mention.value
        return state.last_repo or state.last_entity

    # -------------------------------------------------------------------------
    # State management
    # -------------------------------------------------------------------------

    def get_state(self, chat_id: Any) -> Optional[ThreadState]:
        """Copy of a chat's state, or None if absent or expired."""
        if not chat_id:
            return None
        with self._lock:
            state = self._get_live(str(chat_id))
            return state.model_copy(deep=True) if state else None

    def clear(self, chat_id: Any) -> bool:
        if not chat_id:
            return False
        with self._lock:
            existed = self._threads.pop(str(chat_id), None) is not None
        if existed:
            logger.info(f"[ConversationThread] Cleared state for chat {chat_id}")
        return existed

    def clear_all(self) -> None:
        with self._lock:
            self._threads.clear()
            self._total_mentions = 0
            self._total_resolutions = 0

    def destroy(self) -> None:
        self.clear_all()
        logger.info("[ConversationThread] Destroyed")

    def cleanup_expired(self) -> int:
        """Remove chats idle for longer than the TTL. Returns how many."""
        with self._lock:
            now = self._clock()
            expired = [k for k, s in self._threads.items() if self._expired(s, now)]
            for key in expired:
                del self._threads[key]
            self._last_cleanup = now
        if expired:
            logger.info(f"[ConversationThread] Cleaned up {len(expired)} expired thread(s)")
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_threads": len(self._threads),
                "max_threads": self.config.max_threads,
                "total_mentions": self._total_mentions,
                "total_resolutions": self._total_resolutions,
                "thread_ttl_seconds": self.config.ttl_seconds,
                "max_mentions_per_thread": self.config.max_mentions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._threads)

    def _expired(self, state: ThreadState, now: float) -> bool:
        return now - state.updated_at > self.config.ttl_seconds

    def _get_live(self, key: str) -> Optional[ThreadState]:
        state = self._threads.get(key)
        if state is not None and self._expired(state, self._clock()):
            del self._threads[key]
            return None
        return state

    def _get_or_create(self, key: str) -> ThreadState:
        now = self._clock()
        # Periodic sweep piggybacks on writes
        if now - self._last_cleanup > self.config.ttl_seconds / 6:
            self.cleanup_expired()

        state = self._get_live(key)
        if state is not None:
            self._threads.move_to_end(key)
            return state

        while len(self._threads) >= self.config.max_threads:
            evicted, _ = self._threads.popitem(last=False)
            logger.debug(f"[ConversationThread] LRU evicted thread for chat {evicted}")

        state = ThreadState(chat_id=key, updated_at=now)
        self._threads[key] = state
        return state
