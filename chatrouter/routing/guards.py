# FILE: chatrouter/routing/guards.py
"""
Passthrough guards for the Chat Router.

Casual chat must never turn into a command with side effects. These run
ahead of the classifier; a message stopped by a guard is handed to the AI
responder unchanged.

Two stages:
- Pre-match guards run before the rule library: social chatter, anything
  ending in "?", "let's build X" phrasing and explicit coding instructions.
- Post-match guards run after the rule library but before the classifier:
  interrogative/request phrasing ("what ...", "can you ...", "show me ..."),
  follow-ups and design discussion. Rules such as "what are the deadlines"
  are allowed to claim those phrasings first.
"""
from __future__ import annotations
import re
import logging
from typing import Dict, List, Optional, Tuple
from .schemas import GuardResult

logger = logging.getLogger(__name__)


# =============================================================================
# PRE-MATCH GUARDS
# =============================================================================

SOCIAL_PATTERNS: Dict[str, List[str]] = {
    "greeting": [
        r"^(hey|hi|hello|yo|sup|hiya|morning|evening|afternoon|good\s+(morning|evening|afternoon|night))(\s|!|,|\.)*$",
    ],
    "thanks": [
        r"^(thanks|thank you|cheers|ta|thx|ty)(\s|!|\.)*$",
    ],
    "acknowledgment": [
        r"^(ok|okay|sure|cool|nice|great|awesome|perfect|got it|understood|alright|no worries)(\s|!|\.)*$",
        r"^(yes|no|yeah|nah|yep|nope|yea|na)(\s|!|\.)*$",
    ],
}

QUESTION_MARK = re.compile(r"\?\s*$")

# Opening + build verb, both required
_BUILD_OPENER = re.compile(
    r"^(hey|hi|let's|lets|i want|i'd like|i need|can you|could you|we should|shall we)\b",
    re.IGNORECASE,
)
_BUILD_VERB = re.compile(
    r"\b(build|create|make|develop|implement|design|plan|scaffold|setup|start|prototype)\b",
    re.IGNORECASE,
)

CODING_INSTRUCTION_PATTERNS: List[str] = [
    r"^add (a |the |an )?",
    r"^(make|change|update|modify|improve|refactor|redesign)",
    r"^(fix|debug|resolve|patch|repair)",
    r"^(remove|delete|hide|disable) (the |a |an )?",
    r"^(implement|integrate|connect|wire|hook|set\s*up)",
    r"^(style|theme|color|design|layout|animate)",
    r"^(move|reorganize|restructure|split|merge|combine)",
    r"^(replace|swap|substitute|convert|migrate|upgrade)",
    r"^(optimize|speed up|improve performance|cache|lazy)",
    r"^(write|code|program|develop|scaffold)",
    r"\b(navigation|navbar|sidebar|header|footer|button|form|modal|page|component|feature)\b",
    r"\b(like|similar to|same as|copy from|based on)\b.*\b(app|project|repo|site)\b",
    # "create a new project X" is a command, not a build request
    r"^(build|create|start|scaffold)\s+(me\s+)?(a|an|the|some)\s+(?!new\s+(project|repo)\b)",
    r"^(let's|lets|i want to|i'd like to)\s+(build|create|make|add|implement)",
]


# =============================================================================
# POST-MATCH GUARDS
# =============================================================================

CONVERSATIONAL_PATTERNS: Dict[str, List[str]] = {
    "interrogative": [
        r"^(where|what|when|who|how|why|which)\s",
    ],
    "request": [
        r"^(can you|could you|would you|will you|do you|are you|is there|is it|are there)\s",
        r"^(tell me|show me|send me|give me|find me|get me)\s",
    ],
    "follow_up": [
        r"^(how long|when will|what about|what if|why not|why is|how come|how do i|how can i)\s",
        r"^(will it|is it|does it|can it|should i|do i need)\s",
        r"^(and |but |also |so |then |what about )",
    ],
    "design_discussion": [
        r"^(what about|how about|instead of|rather than|maybe we|maybe just)\s",
        r"^(for now|to start|initially|first|as a v1|as an mvp)\b",
    ],
}


# =============================================================================
# AGENT DELEGATION
# =============================================================================

_AGENT_MENTION = re.compile(r"\b(coding\s+agent|use\s+the\s+agent|have\s+the\s+agent)\b", re.IGNORECASE)
_AGENT_TASK_PATTERNS = [
    re.compile(r"coding\s+agent\s+(?:to\s+)?(.+)", re.IGNORECASE),
    re.compile(r"use\s+the\s+agent\s+to\s+(.+)", re.IGNORECASE),
    re.compile(r"have\s+the\s+agent\s+(.+)", re.IGNORECASE),
]

AGENT_SESSION_COMMAND = "agent session"


# Compiled patterns
_COMPILED_SOCIAL = {
    category: [re.compile(p, re.IGNORECASE) for p in patterns]
    for category, patterns in SOCIAL_PATTERNS.items()
}
_COMPILED_CODING = [re.compile(p, re.IGNORECASE) for p in CODING_INSTRUCTION_PATTERNS]
_COMPILED_CONVERSATIONAL = {
    category: [re.compile(p, re.IGNORECASE) for p in patterns]
    for category, patterns in CONVERSATIONAL_PATTERNS.items()
}


# =============================================================================
# CHECKS
# =============================================================================

def is_question(text: str) -> bool:
    return bool(QUESTION_MARK.search(text))


def social_category(text: str) -> Optional[str]:
    """Return "greeting"/"thanks"/"acknowledgment" for pure chatter, else None."""
    stripped = text.strip()
    for category, patterns in _COMPILED_SOCIAL.items():
        if any(p.search(stripped) for p in patterns):
            return category
    return None


def is_conversational_build(text: str) -> bool:
    """'let's build a booking app', 'I want to create ...'."""
    stripped = text.strip()
    return bool(_BUILD_OPENER.search(stripped) and _BUILD_VERB.search(stripped))


def is_coding_instruction(text: str) -> bool:
    """Verb+object development requests: 'add a login button', 'fix the navbar'."""
    stripped = text.strip()
    return any(p.search(stripped) for p in _COMPILED_CODING)


def conversational_category(text: str) -> Optional[str]:
    stripped = text.strip()
    for category, patterns in _COMPILED_CONVERSATIONAL.items():
        if any(p.search(stripped) for p in patterns):
            return category
    return None


def check_pre_match_guards(text: str) -> GuardResult:
    """
    Guards that run before any rule or classifier logic.

    Returns:
        GuardResult with passed=False when the message must pass through.
    """
    category = social_category(text)
    if category:
        return GuardResult(passed=False, guard_name="pre_match", blocked_by=category,
                           reason="Social chatter")
    if is_question(text):
        return GuardResult(passed=False, guard_name="pre_match", blocked_by="question",
                           reason="Ends with a question mark")
    if is_conversational_build(text):
        return GuardResult(passed=False, guard_name="pre_match", blocked_by="conversational_build",
                           reason="Build request phrased as conversation")
    if is_coding_instruction(text):
        return GuardResult(passed=False, guard_name="pre_match", blocked_by="coding_instruction",
                           reason="Development instruction for the AI")
    return GuardResult(passed=True, guard_name="pre_match")


def check_post_match_guards(text: str) -> GuardResult:
    """Guards that run after the rule library had its chance."""
    category = conversational_category(text)
    if category:
        return GuardResult(passed=False, guard_name="post_match", blocked_by=category,
                           reason="Conversational phrasing")
    return GuardResult(passed=True, guard_name="post_match")


def is_passthrough(text: str) -> Tuple[bool, Optional[str]]:
    """
    Quick check across every guard.

    Returns:
        (is_passthrough, category)
    """
    for check in (check_pre_match_guards, check_post_match_guards):
        result = check(text)
        if not result.passed:
            return True, result.blocked_by
    return False, None


def extract_agent_task(text: str) -> Tuple[bool, Optional[str]]:
    """
    Detect delegation to the coding agent.

    Returns:
        (mentioned, command). command is "agent session <task>" when a task
        follows the mention, None when the agent is mentioned without one.
    """
    if not _AGENT_MENTION.search(text):
        return False, None
    for pattern in _AGENT_TASK_PATTERNS:
        match = pattern.search(text)
        if match:
            return True, f"{AGENT_SESSION_COMMAND} {match.group(1).strip()}"
    logger.debug(f"Agent mentioned without a task: {text[:60]}")
    return True, None
