# FILE: chatrouter/routing/multi_intent.py
"""
Multi-intent parser: split one chat message into several instructions.

    "run tests on JUDO and then deploy it"
        -> ["run tests on JUDO", "deploy JUDO"]  (second is sequential)
    "deploy JUDO but first run tests"
        -> ["run tests", "deploy JUDO"]          (reversed)
    "run tests on JUDO and if they pass then deploy JUDO"
        -> conditional, condition=success

Never splits questions, greetings, noun-phrase conjunctions ("pros and
cons") or a bare "and" unless both sides carry a command verb.
"""
from __future__ import annotations
import re
import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

from .schemas import Condition, MultiIntentResult, ParsedIntent
from .registry import KNOWN_ENTITIES

logger = logging.getLogger(__name__)

MIN_MESSAGE_LENGTH = 3


# =============================================================================
# VOCABULARY
# =============================================================================

COMMAND_VERBS = {
    "run", "deploy", "check", "show", "list", "create", "add", "remove", "delete",
    "update", "fix", "build", "test", "start", "stop", "restart", "install",
    "push", "pull", "merge", "review", "generate", "send", "get", "set",
    "enable", "disable", "configure", "backup", "restore", "monitor",
    "schedule", "cancel", "undo", "redo", "search", "find", "open", "close",
    "status", "help", "remind", "notify", "analyze", "compare", "export",
    "import", "reset", "verify", "validate", "publish", "browse",
    "screenshot", "research", "summarize",
}

# "and" inside these is part of a noun phrase, not a connector
PROTECTED_AND_PHRASES = [
    "pros and cons", "back and forth", "up and running", "search and replace",
    "find and replace", "copy and paste", "cut and paste", "drag and drop",
    "trial and error", "rise and fall", "come and go", "more and more",
    "less and less", "again and again", "now and then", "here and there",
    "bread and butter", "black and white", "dos and donts", "bits and pieces",
    "null and void", "safe and sound", "sick and tired", "front and back",
    "frontend and backend", "left and right", "read and write",
    "input and output", "start and end", "begin and end", "name and email",
    "username and password", "questions and answers", "terms and conditions",
]

GREETING_PATTERNS = [
    re.compile(r"^(hi|hello|hey|howdy|greetings|good\s+(morning|afternoon|evening))\b", re.IGNORECASE),
    re.compile(r"^(what'?s?\s+up|sup|yo)\b", re.IGNORECASE),
]

_QUESTION_RE = re.compile(r"\?\s*$")
_FIRST_RE = re.compile(r"^first\s+", re.IGNORECASE)
_WORD_RE = re.compile(r"[a-z]+")
_CAPITALIZED_RE = re.compile(r"\b([A-Z][A-Za-z0-9-]{1,})\b")
_PRONOUN_RE = re.compile(r"\b(it|them|their|its|that)\b", re.IGNORECASE)


@dataclass(frozen=True)
class Connector:
    label: str
    pattern: re.Pattern
    sequential: bool = False
    reverse: bool = False
    requires_both_verbs: bool = False


# Most specific first
CONNECTORS: List[Connector] = [
    Connector("but first", re.compile(r"\s+but\s+first\s+", re.IGNORECASE), sequential=True, reverse=True),
    Connector("and then", re.compile(r"\s+and\s+then\s+", re.IGNORECASE), sequential=True),
    Connector("and also", re.compile(r"\s+and\s+also\s+", re.IGNORECASE)),
    Connector("after that", re.compile(r"\s+(?:and\s+)?after\s+that\s+", re.IGNORECASE), sequential=True),
    Connector(", then", re.compile(r",\s*then\s+", re.IGNORECASE), sequential=True),
    Connector(".", re.compile(r"\.\s+"), sequential=True),
    Connector("then", re.compile(r"\s+then\s+", re.IGNORECASE), sequential=True),
    Connector("and", re.compile(r"\s+and\s+", re.IGNORECASE), requires_both_verbs=True),
    Connector("also", re.compile(r",?\s+also\s+", re.IGNORECASE), requires_both_verbs=True),
]

# Step two only runs if step one succeeds
CONDITIONAL_PATTERNS = [
    re.compile(
        r"^(.+?)\s+(?:and\s+)?if\s+(?:they|it|that|tests?)\s+pass(?:es)?\s*(?:,?\s*then\s+)?(.+)$",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(.+?)\s+(?:and\s+)?if\s+(?:it's|its|that's|that is)\s+(?:ok|okay|good|successful|fine)"
        r"\s*(?:,?\s*then\s+)?(.+)$",
        re.IGNORECASE,
    ),
    re.compile(r"^if\s+(.+?)\s+(?:passes?|succeeds?|works?)\s*(?:,?\s*then\s+)?(.+)$", re.IGNORECASE),
]


@dataclass
class _Segment:
    text: str
    connector: Optional[str] = None
    sequential: bool = False
    reverse: bool = False


def contains_verb(text: str) -> bool:
    return any(word in COMMAND_VERBS for word in _WORD_RE.findall(text.lower()))


def starts_with_verb(text: str) -> bool:
    words = text.strip().split()
    return bool(words) and words[0].lower() in COMMAND_VERBS


def _has_unbalanced_quotes(text: str) -> bool:
    return text.count('"') % 2 != 0 or text.count("'") % 2 != 0


# =============================================================================
# PARSER
# =============================================================================

class MultiIntentParser:
    """Stateless; one instance can serve every chat."""

    def __init__(self, known_entities: Optional[Sequence[str]] = None):
        self.known_entities = list(known_entities if known_entities is not None else KNOWN_ENTITIES)
        self._entity_patterns = [
            (entity, re.compile(rf"(?<![\w-]){re.escape(entity)}(?![\w-])", re.IGNORECASE))
            for entity in self.known_entities
        ]

    def _is_guarded(self, text: str) -> bool:
        if len(text) < MIN_MESSAGE_LENGTH:
            return True
        if _QUESTION_RE.search(text):
            return True
        return any(p.search(text) for p in GREETING_PATTERNS)

    def is_multi_intent(self, text: str) -> bool:
        """Cheap gate before a full parse."""
        if not text or not isinstance(text, str):
            return False
        stripped = text.strip()
        if self._is_guarded(stripped):
            return False
        if self._match_conditional(stripped):
            return True

        for conn in CONNECTORS:
            if not conn.pattern.search(stripped):
                continue
            if not conn.requires_both_verbs:
                return True
            parts = conn.pattern.split(stripped)
            if len(parts) >= 2 and contains_verb(parts[0]) and contains_verb(parts[-1]):
                return True
        return False

    def parse(self, text: str) -> MultiIntentResult:
        if not text or not isinstance(text, str):
            return self._single(text if isinstance(text, str) else "")

        stripped = text.strip()
        if self._is_guarded(stripped):
            return self._single(stripped)

        conditional = self._match_conditional(stripped)
        if conditional:
            segments = [
                _Segment(conditional[0]),
                _Segment(conditional[1], connector="if", sequential=True),
            ]
            self._resolve_pronouns(segments)
            logger.debug(f"Conditional multi-intent: {[s.text for s in segments]}")
            return self._build_result(text, segments, is_conditional=True)

        lower = stripped.lower()
        protected = any(phrase in lower for phrase in PROTECTED_AND_PHRASES)

        segments = [_Segment(stripped)]
        for conn in CONNECTORS:
            if protected and conn.label == "and":
                continue
            segments = self._split_segments(segments, conn)

        valid = [s for s in segments if len(s.text.split()) >= 2 or contains_verb(s.text)]
        if len(valid) <= 1:
            return self._single(stripped)

        # "first X, then Y"
        if _FIRST_RE.match(valid[0].text):
            valid[0].text = _FIRST_RE.sub("", valid[0].text).strip()
            for seg in valid[1:]:
                seg.sequential = True

        self._resolve_pronouns(valid)
        ordered = self._build_order(valid)
        logger.debug(f"Multi-intent: {[s.text for s in ordered]}")
        return self._build_result(text, ordered)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _single(text: str) -> MultiIntentResult:
        return MultiIntentResult(
            is_multi_intent=False,
            original_message=text,
            intents=[ParsedIntent(text=text.strip() or text, order=0)],
        )

    @staticmethod
    def _build_result(
        original: str, segments: List[_Segment], is_conditional: bool = False
    ) -> MultiIntentResult:
        any_sequential = any(s.sequential for s in segments)
        intents = [
            ParsedIntent(
                text=seg.text.strip(),
                order=idx,
                connector=seg.connector,
                is_sequential=any_sequential if idx == 0 else seg.sequential,
            )
            for idx, seg in enumerate(segments)
        ]
        return MultiIntentResult(
            is_multi_intent=True,
            original_message=original,
            intents=intents,
            is_conditional=is_conditional,
            condition=Condition.SUCCESS if is_conditional else None,
        )

    @staticmethod
    def _match_conditional(text: str) -> Optional[List[str]]:
        for pattern in CONDITIONAL_PATTERNS:
            match = pattern.match(text)
            if match:
                first, second = match.group(1).strip(), match.group(2).strip()
                if starts_with_verb(first) and starts_with_verb(second):
                    return [first, second]
        return None

    @staticmethod
    def _split_segments(segments: List[_Segment], conn: Connector) -> List[_Segment]:
        result: List[_Segment] = []
        for seg in segments:
            if not conn.pattern.search(seg.text) or _has_unbalanced_quotes(seg.text):
                result.append(seg)
                continue

            parts = [p.strip() for p in conn.pattern.split(seg.text)]
            if conn.requires_both_verbs and not all(contains_verb(p) for p in parts if p):
                result.append(seg)
                continue

            parts = [p for p in parts if p]
            if len(parts) < 2:
                result.append(seg)
                continue

            # The first part keeps whatever joined it to its predecessor
            result.append(replace(seg, text=parts[0]))
            for part in parts[1:]:
                result.append(_Segment(part, conn.label, conn.sequential, conn.reverse))
        return result

    def _extract_entity(self, text: str) -> Optional[str]:
        for entity, pattern in self._entity_patterns:
            if pattern.search(text):
                return entity
        # Capitalized words that are not just a sentence-initial verb
        for match in _CAPITALIZED_RE.finditer(text):
            if match.group(1).lower() not in COMMAND_VERBS:
                return match.group(1)
        return None

    def _resolve_pronouns(self, segments: List[_Segment]) -> None:
        """Replace pronouns in later segments with the last entity named before them."""
        last_entity: Optional[str] = None
        for idx, seg in enumerate(segments):
            if idx > 0 and last_entity:
                seg.text = _PRONOUN_RE.sub(last_entity, seg.text)
            found = self._extract_entity(seg.text)
            if found:
                last_entity = found

    @staticmethod
    def _build_order(segments: List[_Segment]) -> List[_Segment]:
        """A "but first" segment swaps with its predecessor; both become sequential."""
        result: List[_Segment] = []
        for seg in segments:
            if seg.reverse and result:
                prev = result.pop()
                result.append(replace(seg, reverse=False, sequential=True))
                result.append(replace(prev, sequential=True))
            else:
                result.append(seg)
        return result


def format_plan(result: MultiIntentResult) -> str:
    """Numbered confirmation text for a decomposed message."""
    lines = ["I'll do this in order:"]
    for idx, intent in enumerate(result.intents):
        prefix = f"If step {idx} succeeds -> " if result.is_conditional and idx > 0 else ""
        lines.append(f"{idx + 1}. {prefix}{intent.text}")
    lines.append("")
    lines.append('Reply "yes" to proceed or "no" to cancel.')
    return "\n".join(lines)
