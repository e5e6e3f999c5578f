# FILE: chatrouter/routing/intent_classifier.py
"""
Intent classifier: weighted confidence scoring over the registry.

Confidence is a weighted sum of four factors, each in [0, 1]:

    keyword_match   0.40   intent pattern / project keyword strength
    context_match   0.25   mentioned project/company resolves, or matches the chat's active repo
    history_match   0.15   agrees with the user's recent actions
    specificity     0.20   length and structure versus vague filler

The weights sum to 1.0, so the weighted sum is the confidence: all-zero
factors give exactly 0, all-one factors exactly 1.

Corrections from the user ("no, I meant X") feed back in: a corrected
intent:target pair is down-weighted on every later classification and is
never boosted.
"""
from __future__ import annotations
import re
import json
import logging
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from chatrouter.config import ClassifierConfig
from chatrouter.errors import ThresholdError
from .schemas import (
    AlternativeIntent,
    ClassificationResult,
    ConfidenceFactors,
    CorrectionPattern,
    CorrectionRecord,
    HistoryAction,
    Risk,
    RouteContext,
    utcnow,
)
from .registry import (
    COMPANIES,
    INTENT_DEFINITIONS,
    PROJECTS,
    find_project_by_capability,
    find_project_by_type,
    find_repos,
    is_known_entity,
)
from .multi_intent import COMMAND_VERBS

logger = logging.getLogger(__name__)

FACTOR_NAMES = ("keyword_match", "context_match", "history_match", "specificity")


# =============================================================================
# VOCABULARY
# =============================================================================

# Targets for fuzzy correction of the leading command word
COMMAND_VOCABULARY = [
    "help", "status", "analyze", "review", "search", "create", "debug",
    "explain", "deploy", "restart", "logs", "build", "install",
]

VAGUE_PHRASES = ["do the thing", "do that", "do it", "the usual", "you know", "same as before"]

RISK_LEVELS: Dict[Risk, List[str]] = {
    Risk.HIGH: ["delete", "deploy", "restart", "file-taxes", "submit-filing", "pay", "publish", "rollback"],
    Risk.MEDIUM: ["create", "modify", "update", "code-task", "build", "install"],
}

# Production-like targets; hyphens and dots separate words ("api-prod")
_PRODUCTION_RE = re.compile(r"(?<![a-z0-9])(prod|production|live|master|main)(?![a-z0-9])", re.IGNORECASE)

INTENT_LABELS = {
    "deploy": "Deploy",
    "run-tests": "Run tests",
    "check-status": "Check status",
    "view-logs": "View logs",
    "check-deadlines": "Check deadlines",
    "view-expenses": "View expenses",
    "file-taxes": "File taxes",
    "process-receipt": "Process receipt",
    "code-task": "Code task",
}

CORRECTION_PATTERNS = [
    re.compile(r"^no,?\s*i\s*meant\s+(.+)", re.IGNORECASE),
    re.compile(r"^not\s+that,?\s*(.+)", re.IGNORECASE),
    re.compile(r"^actually,?\s*(.+)", re.IGNORECASE),
    re.compile(r"^i\s*meant\s+(.+)", re.IGNORECASE),
    re.compile(r"^change\s+(?:it\s+)?to\s+(.+)", re.IGNORECASE),
    re.compile(r"^use\s+(.+)\s+instead", re.IGNORECASE),
]


# =============================================================================
# FUZZY MATCHING
# =============================================================================

def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance."""
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def fuzzy_match(a: str, b: str, max_distance: int) -> bool:
    """True if a and b are within max_distance edits. Length gap is checked first."""
    if abs(len(a) - len(b)) > max_distance:
        return False
    if a == b:
        return True
    return edit_distance(a, b) <= max_distance


def allowed_distance(token: str, max_distance: int) -> int:
    """Shorter tokens get less slack: one edit up to four letters."""
    return 1 if len(token) <= 4 else max_distance


# =============================================================================
# CLASSIFIER
# =============================================================================

class IntentClassifier:
    """
    Heuristic intent classifier with bounded per-user history and
    correction learning.

    Thresholds and weights are runtime-adjustable; `classify(params=...)`
    overrides them for a single call (experiment variants) without touching
    shared state.
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        corrections_file: Optional[Path] = None,
    ):
        self.config = config or ClassifierConfig()
        self.corrections_file = Path(corrections_file) if corrections_file else None

        self.ambiguity_threshold = self.config.ambiguity_threshold
        self.clarification_threshold = self.config.clarification_threshold
        self.confidence_weights: Dict[str, float] = self.config.weights.as_dict()

        self._lock = threading.RLock()
        self._user_history: "OrderedDict[str, List[HistoryAction]]" = OrderedDict()
        self.corrections: List[CorrectionRecord] = []
        self.correction_patterns: Dict[str, CorrectionPattern] = {}

        self._load_corrections()

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def classify(
        self,
        text: str,
        context: Optional[RouteContext] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ClassificationResult:
        """
        Score text against the registry.

        Args:
            text: Message (pronouns already resolved)
            context: Chat context; user_id enables history, last_classification
                enables correction capture
            params: Per-call overrides: ambiguity_threshold,
                clarification_threshold, confidence_weights (or the weight
                names directly)
        """
        if not text or not isinstance(text, str) or not text.strip():
            return self.default_result("empty")

        context = context or RouteContext()
        ambiguity, clarification, weights = self._effective_settings(params)

        corrected = self.check_for_correction(text, context)
        if corrected:
            text = corrected

        result = self._quick_match(self.correct_command_words(text), context, weights)

        if context.user_id:
            self._enhance_with_history(result, context.user_id, weights)
        self.enhance_with_corrections(result)
        self._apply_learned_patterns(result)

        if result.confidence <= 0:
            result = self.default_result("unknown")
        elif result.confidence <= 0.8:
            self.detect_ambiguity(result, text, ambiguity, clarification)

        self._assign_risk(result)

        if context.user_id and not result.ambiguous and result.confidence > 0.7:
            self.track_user_action(context.user_id, result)

        logger.debug(
            f"[IntentClassifier] {result.intent} -> {result.target} "
            f"(confidence: {result.confidence:.2f}, ambiguous: {result.ambiguous})"
        )
        return result

    def _quick_match(
        self, text: str, context: RouteContext, weights: Dict[str, float]
    ) -> ClassificationResult:
        msg = text.lower()
        result = ClassificationResult()
        factors = result.confidence_factors

        # Projects: named repos score high, loose keywords by length
        project_matches: List[Tuple[str, float, List[str]]] = []
        named = set(find_repos(text))
        for name, project in PROJECTS.items():
            strength = 0.0
            matched: List[str] = []
            for keyword in project.keywords:
                if keyword.lower() in msg:
                    matched.append(keyword)
                    strength = max(strength, len(keyword) / 15)
            if name in named:
                matched.append(name)
                strength = max(strength, 0.95)
            if matched:
                project_matches.append((name, min(strength, 1.0), matched))

        explicit_project = False
        if project_matches:
            project_matches.sort(key=lambda m: -m[1])
            result.project = project_matches[0][0]
            factors.keyword_match = project_matches[0][1]
            explicit_project = True
            for name, strength, matched in project_matches[1:3]:
                if strength > 0.5:
                    result.alternatives.append(AlternativeIntent(
                        project=name,
                        confidence=strength * 0.8,
                        reason=f"Also matches keywords: {', '.join(matched)}",
                    ))

        # Intents: pattern strength by length
        intent_matches: List[Tuple[str, float, List[str]]] = []
        for intent_id, definition in INTENT_DEFINITIONS.items():
            strength = 0.0
            matched = []
            for pattern in definition.patterns:
                if pattern.lower() in msg:
                    matched.append(pattern)
                    strength = max(strength, len(pattern) / 20)
            if matched:
                intent_matches.append((intent_id, min(strength, 1.0), matched))

        if intent_matches:
            intent_matches.sort(key=lambda m: -m[1])
            best_id, best_strength, _ = intent_matches[0]
            best = INTENT_DEFINITIONS[best_id]
            result.intent = best_id
            result.action = best.command
            factors.keyword_match = max(factors.keyword_match, best_strength)

            # A capable project is only suggested, never assumed
            if not result.project:
                inferred = None
                if best.required_capability:
                    inferred = find_project_by_capability(best.required_capability)
                elif best.project_types:
                    inferred = find_project_by_type(best.project_types[0])
                if inferred:
                    result.alternatives.append(AlternativeIntent(
                        action=best.command,
                        project=inferred,
                        confidence=0.3,
                        reason=f"{inferred} supports {best.required_capability or best.project_types[0]}",
                    ))

            for intent_id, strength, matched in intent_matches[1:3]:
                if strength > 0.3:
                    result.alternatives.append(AlternativeIntent(
                        action=INTENT_DEFINITIONS[intent_id].command,
                        confidence=strength * 0.7,
                        reason=f"Matches pattern: {matched[0]}",
                    ))

        result.company = self.detect_company(msg)

        # Context
        active = context.active_project or context.auto_repo
        if explicit_project:
            factors.context_match = 1.0 if result.project == active else 0.8
        elif result.company:
            factors.context_match = 0.7
        elif active:
            result.project = active
            factors.context_match = 0.6

        factors.specificity = self.calculate_specificity(msg, result)
        result.summary = self._build_summary(result, text)
        result.confidence = self.calculate_confidence(factors, weights)
        return result

    def calculate_specificity(self, msg: str, result: ClassificationResult) -> float:
        score = 0.5
        if len(msg) < 10:
            score -= 0.2
        if len(msg) > 30:
            score += 0.1
        if result.intent and result.project:
            score += 0.2
        if result.company:
            score += 0.1

        word_count = len(msg.split())
        if word_count == 1:
            score -= 0.2
        if word_count >= 3:
            score += 0.1

        if any(phrase in msg for phrase in VAGUE_PHRASES):
            score -= 0.3
        return max(0.0, min(1.0, score))

    def calculate_confidence(
        self, factors: ConfidenceFactors, weights: Optional[Dict[str, float]] = None
    ) -> float:
        """Weighted sum of the factors, clamped to [0, 1]."""
        weights = weights or self.confidence_weights
        total = sum(getattr(factors, name) * weights.get(name, 0.0) for name in FACTOR_NAMES)
        return round(max(0.0, min(total, 1.0)), 6)

    @staticmethod
    def _build_summary(result: ClassificationResult, text: str) -> str:
        parts = []
        if result.intent:
            parts.append(INTENT_LABELS.get(result.intent, result.intent.replace("-", " ").capitalize()))
        if result.project:
            parts.append(f"for {result.project}")
        if result.company:
            parts.append(f"({result.company})")
        return " ".join(parts) if parts else text[:50]

    def detect_company(self, msg: str) -> Optional[str]:
        """Company code by keyword, then by fuzzy match on words of 3+ letters."""
        msg = msg.lower()
        for code, company in COMPANIES.items():
            for keyword in company.keywords:
                if keyword.lower() in msg:
                    return code

        words = [w for w in re.findall(r"[a-z0-9-]+", msg) if len(w) >= 3]
        for word in words:
            for code, company in COMPANIES.items():
                if fuzzy_match(word, company.name.lower(), 2):
                    return code
                for keyword in company.keywords:
                    keyword = keyword.lower()
                    if len(keyword) >= 3 and fuzzy_match(word, keyword, 1):
                        return code
        return None

    def correct_command_words(self, text: str) -> str:
        """
        Fix a misspelled leading command word ("deplyo JUDO" -> "deploy JUDO").

        Only tokens of fuzzy_min_token..fuzzy_max_token letters are
        considered; known verbs and entity names are left alone.
        """
        if not text:
            return text
        match = re.match(r"^(\s*)([A-Za-z]+)(.*)$", text, re.DOTALL)
        if not match:
            return text
        lead, token, rest = match.groups()
        lower = token.lower()

        if not self.config.fuzzy_min_token <= len(lower) <= self.config.fuzzy_max_token:
            return text
        if lower in COMMAND_VERBS or lower in COMMAND_VOCABULARY or is_known_entity(lower):
            return text

        max_distance = allowed_distance(lower, self.config.fuzzy_max_distance)
        best: Optional[Tuple[int, str]] = None
        for word in COMMAND_VOCABULARY:
            if not fuzzy_match(lower, word, max_distance):
                continue
            distance = edit_distance(lower, word)
            if best is None or distance < best[0]:
                best = (distance, word)
        if best is None:
            return text

        replacement = best[1].capitalize() if token[0].isupper() else best[1]
        logger.debug(f"[IntentClassifier] Fuzzy corrected {token!r} -> {replacement!r}")
        return f"{lead}{replacement}{rest}"

    # -------------------------------------------------------------------------
    # Risk
    # -------------------------------------------------------------------------

    def assess_risk(self, action: Optional[str], target: Optional[str] = None) -> Risk:
        """Risk tier for an action; a production-like target escalates one tier."""
        action = (action or "").lower()
        risk = Risk.LOW
        if any(word in action for word in RISK_LEVELS[Risk.HIGH]):
            risk = Risk.HIGH
        elif any(word in action for word in RISK_LEVELS[Risk.MEDIUM]):
            risk = Risk.MEDIUM

        if target and _PRODUCTION_RE.search(target):
            risk = Risk.MEDIUM if risk == Risk.LOW else Risk.HIGH
        return risk

    def _assign_risk(self, result: ClassificationResult) -> None:
        result.risk = self.assess_risk(result.intent or result.action, result.target)
        result.requires_confirmation = result.risk == Risk.HIGH

    # -------------------------------------------------------------------------
    # Ambiguity
    # -------------------------------------------------------------------------

    def detect_ambiguity(
        self,
        result: ClassificationResult,
        text: str,
        ambiguity_threshold: Optional[float] = None,
        clarification_threshold: Optional[float] = None,
    ) -> None:
        ambiguity = self.ambiguity_threshold if ambiguity_threshold is None else ambiguity_threshold
        clarification = (
            self.clarification_threshold if clarification_threshold is None else clarification_threshold
        )
        questions: List[str] = []

        if result.confidence < ambiguity:
            result.ambiguous = True
            if not result.project and not result.company:
                questions.append("Which project did you mean?")
            if not result.intent:
                questions.append("What action would you like me to take?")
            if result.alternatives:
                labels = ", ".join(self._alternative_label(a, result) for a in result.alternatives)
                questions.append(f"Did you want to: {result.intent or 'unknown'}, or {labels}?")

        if result.confidence < clarification:
            result.ambiguous = True
            if not questions:
                questions.append("I'm not sure what you want me to do. Can you be more specific?")

        strong = [a for a in result.alternatives if a.confidence > 0.4]
        if strong and result.confidence < 0.7:
            result.ambiguous = True
            questions.append(
                f"Did you mean {result.intent or result.target} or {self._alternative_label(strong[0], result)}?"
            )

        msg = text.lower()
        if any(phrase in msg for phrase in VAGUE_PHRASES[:5]):
            result.ambiguous = True
            questions.append("Can you be more specific about what you'd like me to do?")

        merged = result.clarifying_questions + questions
        result.clarifying_questions = list(dict.fromkeys(merged))

    @staticmethod
    def _alternative_label(alt: AlternativeIntent, result: ClassificationResult) -> str:
        if alt.project:
            return f"{alt.action or result.action or result.intent or 'it'} {alt.project}"
        return alt.action or "something else"

    def default_result(self, reason: str) -> ClassificationResult:
        unknown = reason == "unknown"
        return ClassificationResult(
            intent="unknown" if unknown else None,
            ambiguous=reason != "empty",
            clarifying_questions=(
                ["What would you like me to do?", "Which project should I focus on?"] if unknown else []
            ),
            reason=reason,
        )

    # -------------------------------------------------------------------------
    # User history (bounded)
    # -------------------------------------------------------------------------

    def _enhance_with_history(
        self, result: ClassificationResult, user_id: str, weights: Dict[str, float]
    ) -> None:
        with self._lock:
            actions = list(self._user_history.get(user_id, []))
        if not actions:
            return

        recent = actions[-self.config.history_window:]
        boost = 0.0
        if result.project:
            boost += sum(1 for a in recent if a.project == result.project) / len(recent) * 0.3
        if result.intent:
            boost += sum(1 for a in recent if a.intent == result.intent) / len(recent) * 0.2

        result.confidence_factors.history_match = min(boost, 1.0)
        result.confidence = self.calculate_confidence(result.confidence_factors, weights)

    def track_user_action(self, user_id: str, result: ClassificationResult) -> None:
        """Append to the user's history; evicts the least recent user at the cap."""
        with self._lock:
            if user_id in self._user_history:
                self._user_history.move_to_end(user_id)
            else:
                while len(self._user_history) >= self.config.max_users:
                    evicted, _ = self._user_history.popitem(last=False)
                    logger.debug(f"[IntentClassifier] Evicted history for user {evicted}")
                self._user_history[user_id] = []

            actions = self._user_history[user_id]
            actions.append(HistoryAction(intent=result.intent, project=result.project, company=result.company))
            del actions[:-self.config.max_actions_per_user]

    def get_user_history(self, user_id: str) -> Optional[List[HistoryAction]]:
        with self._lock:
            actions = self._user_history.get(user_id)
            return list(actions) if actions is not None else None

    def clear_user_history(self, user_id: str) -> None:
        with self._lock:
            self._user_history.pop(user_id, None)
        logger.info(f"[IntentClassifier] Cleared history for user {user_id}")

    def tracked_user_count(self) -> int:
        with self._lock:
            return len(self._user_history)

    # -------------------------------------------------------------------------
    # Corrections
    # -------------------------------------------------------------------------

    def check_for_correction(self, text: str, context: Optional[RouteContext] = None) -> Optional[str]:
        """
        Detect "no, I meant X" style corrections.

        When the context carries the previous classification the correction
        is recorded against it. Returns the corrected text, or None.
        """
        stripped = text.strip()
        for pattern in CORRECTION_PATTERNS:
            match = pattern.match(stripped)
            if not match:
                continue
            correction = match.group(1).strip()
            if context is not None and context.last_classification is not None:
                self.record_correction(
                    context.last_classification, correction, context.user_id or "unknown"
                )
            logger.info(f"[IntentClassifier] Correction detected: {correction!r}")
            return correction
        return None

    def record_correction(
        self, original: ClassificationResult, correction_text: str, user_id: str = "unknown"
    ) -> CorrectionPattern:
        """Store a human correction and strengthen the learned pattern for its intent:target pair."""
        key = self.pattern_key(original.intent, original.target)
        with self._lock:
            self.corrections.append(CorrectionRecord(
                original_intent=original.intent,
                original_project=original.target,
                original_confidence=original.confidence,
                correction_text=correction_text,
                user_id=user_id,
            ))
            del self.corrections[:-self.config.max_corrections]

            existing = self.correction_patterns.get(key)
            pattern = CorrectionPattern(
                count=(existing.count if existing else 0) + 1,
                sample_correction=correction_text,
                last_used=utcnow(),
            )
            self.correction_patterns[key] = pattern
            self._save_corrections()

        logger.info(f"[IntentClassifier] Recorded correction: {key} ({pattern.count}x)")
        return pattern

    @staticmethod
    def pattern_key(intent: Optional[str], target: Optional[str]) -> str:
        return f"{intent or 'unknown'}:{target or 'unknown'}"

    def _apply_learned_patterns(self, result: ClassificationResult) -> None:
        """Down-weight a pair the user has corrected before. Only ever lowers confidence."""
        with self._lock:
            learned = self.correction_patterns.get(self.pattern_key(result.intent, result.target))
        if learned is None or learned.count < 1:
            return

        penalty = min(learned.count * 0.1, 0.4)
        result.confidence = max(0.0, result.confidence - penalty)
        result.ambiguous = True
        result.clarifying_questions.append(
            f'Last time you corrected this to "{learned.sample_correction}". Did you mean that again?'
        )

    def enhance_with_corrections(self, result: ClassificationResult) -> None:
        """Scale confidence down when this intent/project is often corrected."""
        with self._lock:
            total = len(self.corrections)
            relevant = sum(
                1 for c in self.corrections
                if (result.intent and c.original_intent == result.intent)
                or (result.target and c.original_project == result.target)
            )
        if not total or not relevant:
            return

        rate = relevant / total
        if rate > 0.2:
            factor = 1 - rate * 0.3
            result.confidence *= factor
            result.confidence_factors.history_match *= factor
            result.alternatives.append(AlternativeIntent(
                action="check-with-user",
                confidence=rate,
                reason="This type of request was often corrected before",
            ))

    def get_correction_stats(self) -> Dict[str, Any]:
        with self._lock:
            by_intent: Dict[str, int] = {}
            by_project: Dict[str, int] = {}
            for c in self.corrections:
                if c.original_intent:
                    by_intent[c.original_intent] = by_intent.get(c.original_intent, 0) + 1
                if c.original_project:
                    by_project[c.original_project] = by_project.get(c.original_project, 0) + 1
            return {
                "total_corrections": len(self.corrections),
                "learned_patterns": len(self.correction_patterns),
                "by_intent": by_intent,
                "by_project": by_project,
                "recent": [c.model_dump(mode="json") for c in self.corrections[-10:]],
            }

    def clear_corrections(self) -> None:
        with self._lock:
            self.corrections = []
            self.correction_patterns = {}
            self._save_corrections()
        logger.info("[IntentClassifier] Cleared corrections")

    def _load_corrections(self) -> None:
        if not self.corrections_file or not self.corrections_file.exists():
            return
        try:
            data = json.loads(self.corrections_file.read_text(encoding="utf-8"))
            self.corrections = [CorrectionRecord.model_validate(c) for c in data.get("corrections", [])]
            self.correction_patterns = {
                key: CorrectionPattern.model_validate(value)
                for key, value in data.get("patterns", {}).items()
            }
            logger.info(
                f"[IntentClassifier] Loaded {len(self.corrections)} corrections, "
                f"{len(self.correction_patterns)} learned patterns"
            )
        except Exception as e:
            logger.warning(f"[IntentClassifier] Failed to load corrections: {e}")
            self.corrections = []
            self.correction_patterns = {}

    def _save_corrections(self) -> None:
        if not self.corrections_file:
            return
        try:
            self.corrections_file.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "corrections": [c.model_dump(mode="json") for c in self.corrections],
                "patterns": {k: v.model_dump(mode="json") for k, v in self.correction_patterns.items()},
            }
            self.corrections_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except Exception as e:
            logger.warning(f"[IntentClassifier] Failed to save corrections: {e}")

    # -------------------------------------------------------------------------
    # Tuning
    # -------------------------------------------------------------------------

    def get_thresholds(self) -> Dict[str, float]:
        return {
            "ambiguity_threshold": self.ambiguity_threshold,
            "clarification_threshold": self.clarification_threshold,
        }

    def set_thresholds(
        self,
        ambiguity_threshold: Optional[float] = None,
        clarification_threshold: Optional[float] = None,
    ) -> Dict[str, float]:
        """
        Update either threshold.

        Raises:
            ThresholdError: value outside [0, 1], or clarification above ambiguity
        """
        ambiguity = self.ambiguity_threshold if ambiguity_threshold is None else ambiguity_threshold
        clarification = (
            self.clarification_threshold if clarification_threshold is None else clarification_threshold
        )
        _validate_thresholds(ambiguity, clarification)
        self.ambiguity_threshold = float(ambiguity)
        self.clarification_threshold = float(clarification)
        logger.info(f"[IntentClassifier] Thresholds set: {self.get_thresholds()}")
        return self.get_thresholds()

    def get_weights(self) -> Dict[str, float]:
        return dict(self.confidence_weights)

    def set_weights(self, weights: Dict[str, float]) -> Dict[str, float]:
        """Replace some or all factor weights. The result must still sum to 1.0."""
        merged = _merge_weights(self.confidence_weights, weights)
        self.confidence_weights = merged
        logger.info(f"[IntentClassifier] Weights set: {merged}")
        return dict(merged)

    def reset_tuning(self) -> None:
        """Back to configured thresholds and weights."""
        self.ambiguity_threshold = self.config.ambiguity_threshold
        self.clarification_threshold = self.config.clarification_threshold
        self.confidence_weights = self.config.weights.as_dict()

    def _effective_settings(
        self, params: Optional[Dict[str, Any]]
    ) -> Tuple[float, float, Dict[str, float]]:
        ambiguity = self.ambiguity_threshold
        clarification = self.clarification_threshold
        weights = self.confidence_weights
        if not params:
            return ambiguity, clarification, weights

        ambiguity = params.get("ambiguity_threshold", ambiguity)
        clarification = params.get("clarification_threshold", clarification)
        _validate_thresholds(ambiguity, clarification)

        overrides = dict(params.get("confidence_weights") or {})
        overrides.update({k: v for k, v in params.items() if k in FACTOR_NAMES})
        if overrides:
            weights = _merge_weights(weights, overrides)
        return float(ambiguity), float(clarification), weights


def _validate_thresholds(ambiguity: Any, clarification: Any) -> None:
    for name, value in (("ambiguity_threshold", ambiguity), ("clarification_threshold", clarification)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ThresholdError(f"{name} must be a number, got {value!r}")
        if not 0.0 <= value <= 1.0:
            raise ThresholdError(f"{name} must be within [0, 1], got {value}")
    if clarification > ambiguity:
        raise ThresholdError(
            f"clarification_threshold ({clarification}) must not exceed ambiguity_threshold ({ambiguity})"
        )


def _merge_weights(current: Dict[str, float], updates: Dict[str, Any]) -> Dict[str, float]:
    unknown = set(updates) - set(FACTOR_NAMES)
    if unknown:
        raise ThresholdError(f"Unknown confidence factor(s): {', '.join(sorted(unknown))}")
    merged = dict(current)
    for name, value in updates.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
            raise ThresholdError(f"Weight {name} must be a number within [0, 1], got {value!r}")
        merged[name] = float(value)
    if abs(sum(merged.values()) - 1.0) > 1e-6:
        raise ThresholdError(f"Confidence weights must sum to 1.0, got {sum(merged.values()):.3f}")
    return merged


