# FILE: chatrouter/routing/schemas.py
"""
Pydantic models for the Chat Router core.
Defines the canonical command unit, classification results, multi-intent
decompositions, conversation state, cache entries and experiment records.
"""
from __future__ import annotations
import re
from enum import Enum
from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field, model_validator
from datetime import datetime, timezone


def utcnow():
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class Risk(str, Enum):
    """How much damage a wrongly executed action could do."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IntentSource(str, Enum):
    """Which pipeline stage produced a command."""
    PATTERN = "pattern"          # Ordered rule library
    CLASSIFIER = "classifier"    # Weighted heuristic classifier
    CACHE = "cache"              # Previously resolved message
    PASSTHROUGH = "passthrough"  # Nothing extracted, message unchanged
    FALLBACK = "fallback"        # Injected AI collaborator
    DIRECT = "direct"            # Parsed from an already-canonical string


class MentionType(str, Enum):
    REPO = "repo"
    COMPANY = "company"
    ACTION = "action"
    ENTITY = "entity"


class ExperimentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class Condition(str, Enum):
    """Gate on a later step of a multi-intent message."""
    SUCCESS = "success"


# =============================================================================
# ROUTING INPUT
# =============================================================================

class RouteContext(BaseModel):
    """Per-message context supplied by the transport layer."""
    user_id: Optional[str] = None
    chat_id: Optional[str] = None
    auto_repo: Optional[str] = None       # Active project for this chat
    auto_company: Optional[str] = None    # Active company for this chat
    experiment_id: Optional[str] = None   # Experiment whose variant params apply
    active_project: Optional[str] = None
    last_classification: Optional["ClassificationResult"] = None


class GuardResult(BaseModel):
    """Result of running a message through a passthrough guard."""
    passed: bool                        # False = leave the message alone
    guard_name: str
    blocked_by: Optional[str] = None    # e.g. "greeting", "coding_instruction"
    reason: Optional[str] = None


# =============================================================================
# COMMAND INTENT
# =============================================================================

_FLAG_RE = re.compile(r"^--(.+)$")

# Verbs that span more than one word, longest first
MULTI_WORD_ACTIONS = sorted([
    "run tests", "run test", "project status", "project files", "list repos",
    "my repos", "company number", "vercel deploy", "vercel preview",
    "create new project", "switch to", "pending receipts", "ic balance",
    "intercompany loans", "workflows pending", "governance board", "agent session",
], key=len, reverse=True)


class CommandIntent(BaseModel):
    """
    Canonical output unit: verb + target + flags, plus how it was resolved.

    requires_confirmation is always True when risk is HIGH.
    """
    action: str
    target: Optional[str] = None
    args: Dict[str, Union[bool, str]] = Field(default_factory=dict)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    source: IntentSource = IntentSource.DIRECT
    original_message: str = ""
    risk: Risk = Risk.LOW
    requires_confirmation: bool = False
    timestamp: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _confirm_high_risk(self):
        if self.risk == Risk.HIGH:
            self.requires_confirmation = True
        return self

    def to_canonical_string(self) -> str:
        """Executable form. Depends only on action, target and args."""
        parts = [self.action]
        if self.target:
            parts.append(self.target)
        for key, value in self.args.items():
            if value is True:
                parts.append(f"--{key}")
            elif value is not False and value is not None:
                parts.append(str(value))
        return " ".join(p for p in parts if p)

    def __str__(self) -> str:
        return self.to_canonical_string()

    def is_high_confidence(self, threshold: float = 0.7) -> bool:
        return self.confidence >= threshold

    def is_dangerous(self) -> bool:
        return self.risk == Risk.HIGH or self.requires_confirmation

    def was_transformed(self) -> bool:
        return bool(self.original_message) and self.to_canonical_string() != self.original_message

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["command"] = self.to_canonical_string()
        return data

    @classmethod
    def from_string(cls, command: str, **meta: Any) -> "CommandIntent":
        """
        Parse "action target [--flag] [positional...]".

        Multi-word verbs ("run tests JUDO") are kept whole. Positional
        extras become arg0, arg1, ... in order of appearance.
        """
        stripped = " ".join(command.split())
        action = ""
        for verb in MULTI_WORD_ACTIONS:
            if stripped.lower() == verb or stripped.lower().startswith(verb + " "):
                action = stripped[:len(verb)]
                break
        rest = stripped[len(action):].split()
        if not action:
            action = rest.pop(0) if rest else ""
        target = None
        if rest and not _FLAG_RE.match(rest[0]):
            target = rest.pop(0)

        args: Dict[str, Union[bool, str]] = {}
        positional = 0
        for part in rest:
            flag = _FLAG_RE.match(part)
            if flag:
                args[flag.group(1)] = True
            else:
                args[f"arg{positional}"] = part
                positional += 1

        meta.setdefault("original_message", command)
        return cls(action=action, target=target, args=args, **meta)


# =============================================================================
# REGISTRY
# =============================================================================

class ProjectDefinition(BaseModel):
    """A repository the bot can act on."""
    name: str                                                   # Canonical casing
    aliases: List[str] = Field(default_factory=list)            # Other spellings of the repo name
    keywords: List[str] = Field(default_factory=list)           # Loose phrases that imply this project
    type: str = "web-app"
    capabilities: List[str] = Field(default_factory=list)
    priority: int = 99                                          # Lower wins when inferring by type
    description: str = ""


class CompanyDefinition(BaseModel):
    code: str
    name: str
    keywords: List[str] = Field(default_factory=list)


class IntentDefinition(BaseModel):
    """A classifier intent and the canonical command it renders to."""
    intent: str
    patterns: List[str]                                         # Substrings, matched case-insensitively
    command: str                                                # Canonical verb, e.g. "run tests"
    scope: Optional[str] = None                                 # "repo", "company" or None
    required_capability: Optional[str] = None
    project_types: List[str] = Field(default_factory=list)
    routable: bool = True                                       # May the router emit it as a command
    description: str = ""


# =============================================================================
# CLASSIFICATION
# =============================================================================

class ConfidenceFactors(BaseModel):
    """Per-factor scores, each in [0, 1]."""
    keyword_match: float = 0.0
    context_match: float = 0.0
    history_match: float = 0.0
    specificity: float = 0.0


class AlternativeIntent(BaseModel):
    action: Optional[str] = None
    project: Optional[str] = None
    confidence: float = 0.0
    reason: str = ""


class ClassificationResult(BaseModel):
    """Output of IntentClassifier.classify()."""
    intent: Optional[str] = None
    action: Optional[str] = None
    project: Optional[str] = None
    company: Optional[str] = None
    confidence: float = 0.0
    confidence_factors: ConfidenceFactors = Field(default_factory=ConfidenceFactors)
    alternatives: List[AlternativeIntent] = Field(default_factory=list)
    ambiguous: bool = False
    clarifying_questions: List[str] = Field(default_factory=list)
    risk: Risk = Risk.LOW
    requires_confirmation: bool = False
    summary: Optional[str] = None
    reason: Optional[str] = None

    @property
    def target(self) -> Optional[str]:
        return self.project or self.company


class CorrectionPattern(BaseModel):
    """Learned signal for one action:target pair."""
    count: int = 0
    sample_correction: str = ""
    last_used: datetime = Field(default_factory=utcnow)


class CorrectionRecord(BaseModel):
    original_intent: Optional[str] = None
    original_project: Optional[str] = None
    original_confidence: float = 0.0
    correction_text: str = ""
    user_id: str = "unknown"
    timestamp: datetime = Field(default_factory=utcnow)


class HistoryAction(BaseModel):
    intent: Optional[str] = None
    project: Optional[str] = None
    company: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# MULTI-INTENT
# =============================================================================

class ParsedIntent(BaseModel):
    text: str
    order: int = 0
    connector: Optional[str] = None
    is_sequential: bool = False


class MultiIntentResult(BaseModel):
    is_multi_intent: bool = False
    original_message: str = ""
    intents: List[ParsedIntent] = Field(default_factory=list)
    is_conditional: bool = False
    condition: Optional[Condition] = None


class PendingIntents(BaseModel):
    """What the router leaves behind after routing the first of several intents."""
    total_intents: int
    remaining_intents: List[ParsedIntent] = Field(default_factory=list)
    is_sequential: bool = False
    is_conditional: bool = False
    condition: Optional[Condition] = None
    original_message: str = ""


# =============================================================================
# CONVERSATION THREAD
# =============================================================================

class Mention(BaseModel):
    type: MentionType
    value: str
    timestamp: float


class ThreadState(BaseModel):
    chat_id: str
    last_repo: Optional[str] = None
    last_company: Optional[str] = None
    last_action: Optional[str] = None
    last_entity: Optional[str] = None
    last_mentions: List[Mention] = Field(default_factory=list)
    repo_history: List[str] = Field(default_factory=list)  # most recent last
    updated_at: float = 0.0


# =============================================================================
# CACHE
# =============================================================================

class CacheEntry(BaseModel):
    key: str
    command: str
    created_at: float


# =============================================================================
# EXPERIMENTS
# =============================================================================

class Variant(BaseModel):
    name: str
    weight: int
    params: Dict[str, Any] = Field(default_factory=dict)


class OutcomeRecord(BaseModel):
    variant: str
    success: bool
    corrected: bool = False
    latency_ms: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)


class Experiment(BaseModel):
    id: str
    description: str = ""
    status: ExperimentStatus = ExperimentStatus.ACTIVE
    variants: List[Variant]
    outcomes: Dict[str, List[OutcomeRecord]] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    promoted_variant: Optional[str] = None


class VariantStats(BaseModel):
    participants: int = 0
    outcomes: int = 0
    success_rate: float = 0.0
    correction_rate: float = 0.0
    avg_latency_ms: float = 0.0


class ExperimentResults(BaseModel):
    experiment_id: str
    status: ExperimentStatus
    total_participants: int = 0
    variants: Dict[str, VariantStats] = Field(default_factory=dict)
    winner: Optional[str] = None


class ExperimentSummary(BaseModel):
    id: str
    description: str = ""
    status: ExperimentStatus
    variants: int
    total_outcomes: int
    created_at: datetime


RouteContext.model_rebuild()
