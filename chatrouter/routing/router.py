# FILE: chatrouter/routing/router.py
"""
SmartRouter: the single entry point from chat message to command.

Pipeline (first stage that produces an answer wins):

    1. Thread context    record the repos, companies and actions a message names
    2. Multi-intent      split, then resolve "it" / "again" / "the other one"
                         per segment; route the first, keep the rest pending
    3. Cache             normalized text + active repo/company
    4. Hard guards       greetings, thanks, acknowledgments, questions
    5. Agent delegation  "have the agent fix the navbar" -> "agent session fix the navbar"
    6. Build guards      "let's build ...", explicit coding instructions
    7. Rule library      ordered patterns + auto-context
    8. Soft guards       "what ...", "can you ...", follow-ups
    9. Structured        already a command -> auto-context only
    10. Classifier       weighted confidence, experiment variant params
    11. Fallback         optional async AI collaborator
    12. Passthrough      text unchanged

Anything that raises inside the pipeline is logged and the message passes
through untouched.
"""
from __future__ import annotations
import asyncio
import logging
import threading
import concurrent.futures
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from chatrouter.config import RouterConfig, get_config
from chatrouter.errors import ExperimentError
from .schemas import (
    ClassificationResult,
    CommandIntent,
    ExperimentStatus,
    IntentSource,
    ParsedIntent,
    PendingIntents,
    Risk,
    RouteContext,
)
from .sanitizer import sanitize_command
from .cache import RouteCache, build_cache_key
from .conversation_thread import ConversationThread
from .multi_intent import MultiIntentParser
from .pattern_rules import PatternMatcher
from .auto_context import apply_auto_context, looks_like_command
from .intent_classifier import IntentClassifier
from .experiments import ExperimentFramework
from .registry import get_intent_definition
from .guards import (
    check_post_match_guards,
    extract_agent_task,
    is_coding_instruction,
    is_conversational_build,
    is_question,
    social_category,
)

logger = logging.getLogger(__name__)

Fallback = Callable[[str, RouteContext], Awaitable[Optional[str]]]
ContextLike = Union[RouteContext, Mapping[str, Any], None]

METRIC_NAMES = (
    "pattern_hits",
    "classifier_hits",
    "fallback_hits",
    "passthroughs",
    "cache_hits",
    "pronoun_resolutions",
    "multi_intents",
    "failures",
)

# Longer answers from the fallback are chat replies
MAX_FALLBACK_COMMAND_LENGTH = 100


@dataclass
class RouteOutcome:
    """What the pipeline decided for one message."""
    text: Any
    source: IntentSource
    confidence: float = 1.0
    blocked_by: Optional[str] = None
    classification: Optional[ClassificationResult] = None
    pending: Optional[PendingIntents] = None

    @property
    def is_passthrough(self) -> bool:
        return self.source == IntentSource.PASSTHROUGH


def is_command_answer(answer: Any, text: str) -> bool:
    """A fallback answer is usable only as a short single-line command."""
    if not isinstance(answer, str):
        return False
    stripped = answer.strip()
    if not stripped or stripped == text:
        return False
    return "\n" not in stripped and "\r" not in stripped and len(stripped) <= MAX_FALLBACK_COMMAND_LENGTH


def _coerce_context(context: ContextLike) -> RouteContext:
    if context is None:
        return RouteContext()
    if isinstance(context, RouteContext):
        return context
    return RouteContext.model_validate(dict(context))


class SmartRouter:
    """
    Composes the routing stores into one resolve() call.

    Every store is injectable; defaults are built from the config. The
    stores are public so callers (and the admin API) can inspect them.
    """

    def __init__(
        self,
        config: Optional[RouterConfig] = None,
        cache: Optional[RouteCache] = None,
        threads: Optional[ConversationThread] = None,
        parser: Optional[MultiIntentParser] = None,
        matcher: Optional[PatternMatcher] = None,
        classifier: Optional[IntentClassifier] = None,
        experiments: Optional[ExperimentFramework] = None,
        fallback: Optional[Fallback] = None,
    ):
        self.config = config or get_config()
        self.cache = cache if cache is not None else RouteCache(self.config.cache)
        self.threads = threads if threads is not None else ConversationThread(self.config.thread)
        self.parser = parser if parser is not None else MultiIntentParser()
        self.matcher = matcher if matcher is not None else PatternMatcher()
        self.classifier = classifier if classifier is not None else IntentClassifier(
            self.config.classifier, self.config.persistence.corrections_file
        )
        self.experiments = experiments if experiments is not None else ExperimentFramework(
            self.config.persistence.experiments_file
        )
        self.fallback = fallback

        self.last_multi_intent: Optional[PendingIntents] = None
        self._metrics: Dict[str, int] = {name: 0 for name in METRIC_NAMES}
        self._metrics_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def resolve(self, message: Any, context: ContextLike = None) -> Any:
        """
        Resolve a chat message to a command string.

        Returns the original message unchanged when nothing should be
        executed. Never raises.
        """
        outcome = await self.resolve_outcome(message, context)
        return outcome.text

    # Older transports call it route()
    route = resolve

    async def resolve_outcome(self, message: Any, context: ContextLike = None) -> RouteOutcome:
        if not isinstance(message, str) or not message.strip():
            return RouteOutcome(text=message, source=IntentSource.PASSTHROUGH, confidence=0.0)

        try:
            ctx = _coerce_context(context)
            return await self._pipeline(message, ctx)
        except Exception:
            logger.exception(f"[SmartRouter] Routing failed, passing through: {message[:80]!r}")
            self._bump("failures")
            return RouteOutcome(text=message, source=IntentSource.PASSTHROUGH, confidence=0.0)

    async def resolve_intent(self, message: str, context: ContextLike = None) -> CommandIntent:
        """Structured form of resolve(): source, confidence and risk alongside the command."""
        outcome = await self.resolve_outcome(message, context)
        return self.intent_from_outcome(outcome, message)

    def intent_from_outcome(self, outcome: RouteOutcome, message: str) -> CommandIntent:
        """Build the CommandIntent for an outcome already produced by resolve_outcome()."""
        text = outcome.text if isinstance(outcome.text, str) else ""

        if outcome.is_passthrough:
            return CommandIntent.from_string(
                text, source=IntentSource.PASSTHROUGH, confidence=0.0, original_message=text
            )

        parsed = CommandIntent.from_string(text)
        risk = self.classifier.assess_risk(parsed.action, parsed.target)
        if outcome.classification is not None and outcome.classification.risk == Risk.HIGH:
            risk = Risk.HIGH
        return CommandIntent.from_string(
            text,
            source=outcome.source,
            confidence=outcome.confidence,
            original_message=message,
            risk=risk,
        )

    def resolve_sync(self, message: Any, context: ContextLike = None) -> Any:
        """
        Synchronous wrapper for resolve().
        Use only when async is not available.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.resolve(message, context))

        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(asyncio.run, self.resolve(message, context))
            return future.result()

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    async def _pipeline(self, message: str, context: RouteContext) -> RouteOutcome:
        text = message.strip()

        # 1. Thread context
        if context.chat_id:
            self.threads.detect_and_record(context.chat_id, text)

        # 2. Multi-intent; segments resolve against each other before the thread
        pending = None
        parsed = self.parser.parse(text)
        intents = [self._with_thread_context(intent, context) for intent in parsed.intents]
        text = intents[0].text if intents else text
        if parsed.is_multi_intent and len(intents) > 1:
            self._bump("multi_intents")
            pending = PendingIntents(
                total_intents=len(intents),
                remaining_intents=intents[1:],
                is_sequential=intents[0].is_sequential,
                is_conditional=parsed.is_conditional,
                condition=parsed.condition,
                original_message=message,
            )
            logger.info(f"[SmartRouter] Multi-intent: {len(intents)} intents, routing {text!r}")
        self.last_multi_intent = pending

        def passthrough(reason: Optional[str], result: Any = message) -> RouteOutcome:
            self._bump("passthroughs")
            if reason:
                logger.debug(f"[SmartRouter] Passthrough ({reason}): {text[:60]!r}")
            return RouteOutcome(
                text=result, source=IntentSource.PASSTHROUGH, confidence=0.0,
                blocked_by=reason, pending=pending,
            )

        def resolved_to(command: str, source: IntentSource, confidence: float = 1.0,
                        classification: Optional[ClassificationResult] = None,
                        cache_key: Optional[str] = None) -> RouteOutcome:
            if cache_key:
                self.cache.set(cache_key, command)
            return RouteOutcome(
                text=command, source=source, confidence=confidence,
                classification=classification, pending=pending,
            )

        # 3. Cache
        key = build_cache_key(text, context)
        cached = self.cache.get(key)
        if cached is not None:
            self._bump("cache_hits")
            logger.debug(f"[SmartRouter] Cache hit: {text!r} -> {cached!r}")
            return resolved_to(cached, IntentSource.CACHE)

        # 4. Hard guards
        category = social_category(text)
        if category:
            return passthrough(category)
        if is_question(text):
            return passthrough("question")

        # 5. Agent delegation
        mentioned, agent_command = extract_agent_task(text)
        if mentioned:
            command = sanitize_command(agent_command) if agent_command else None
            if not command:
                return passthrough("agent_without_task")
            self._bump("pattern_hits")
            logger.info(f"[SmartRouter] Agent delegation: {command!r}")
            return resolved_to(command, IntentSource.PATTERN)

        # 6. Build guards
        if is_conversational_build(text):
            return passthrough("conversational_build")
        if is_coding_instruction(text):
            return passthrough("coding_instruction")

        # 7. Rule library
        matched = self.matcher.match(text, context)
        if matched:
            self._bump("pattern_hits")
            logger.debug(f"[SmartRouter] Pattern match: {text!r} -> {matched!r}")
            return resolved_to(matched, IntentSource.PATTERN, cache_key=key)

        # 8. Soft guards
        guard = check_post_match_guards(text)
        if not guard.passed:
            return passthrough(guard.blocked_by)

        # 9. Already structured
        if looks_like_command(text):
            command = apply_auto_context(sanitize_command(text), context)
            self._bump("pattern_hits")
            return resolved_to(command, IntentSource.DIRECT)

        # 10. Classifier
        params = self._variant_params(context)
        classification = self.classifier.classify(text, context, params)
        command = self._render_classification(classification, context)
        threshold = (params or {}).get("ambiguity_threshold", self.classifier.ambiguity_threshold)
        if command and not classification.ambiguous and classification.confidence >= threshold:
            self._bump("classifier_hits")
            logger.info(
                f"[SmartRouter] Classifier: {text!r} -> {command!r} "
                f"(confidence: {classification.confidence:.2f}, risk: {classification.risk.value})"
            )
            return resolved_to(
                command, IntentSource.CLASSIFIER, classification.confidence,
                classification=classification, cache_key=key,
            )

        # 11. Fallback
        if self.fallback is not None:
            try:
                answer = await self.fallback(text, context)
            except Exception:
                logger.exception("[SmartRouter] Fallback failed")
                answer = None
            if is_command_answer(answer, text):
                command = apply_auto_context(sanitize_command(answer.strip()), context)
                if command:
                    self._bump("fallback_hits")
                    logger.info(f"[SmartRouter] Fallback: {text!r} -> {command!r}")
                    return resolved_to(command, IntentSource.FALLBACK, 0.5, cache_key=key)
            elif answer:
                logger.debug("[SmartRouter] Fallback answer not usable as a command")

        # 12. Nothing to execute
        return passthrough(None, result=text)

    def _with_thread_context(self, intent: ParsedIntent, context: RouteContext) -> ParsedIntent:
        if not context.chat_id:
            return intent
        resolved = self.threads.resolve_pronouns(context.chat_id, intent.text)
        if resolved == intent.text:
            return intent
        self._bump("pronoun_resolutions")
        logger.debug(f"[SmartRouter] Pronouns: {intent.text!r} -> {resolved!r}")
        return intent.model_copy(update={"text": resolved})

    def _variant_params(self, context: RouteContext) -> Optional[Dict[str, Any]]:
        if not context.experiment_id:
            return None
        try:
            experiment = self.experiments.get_experiment(context.experiment_id)
            if experiment.status != ExperimentStatus.ACTIVE:
                return None
            return self.experiments.get_variant(context.experiment_id, context.user_id).params
        except ExperimentError as e:
            logger.warning(f"[SmartRouter] Ignoring experiment {context.experiment_id!r}: {e}")
            return None

    @staticmethod
    def _render_classification(result: ClassificationResult, context: RouteContext) -> Optional[str]:
        """Canonical command for a classification, or None if it cannot be executed as-is."""
        definition = get_intent_definition(result.intent) if result.intent else None
        if definition is None or not definition.routable:
            return None

        if definition.scope == "repo":
            target = result.project
        elif definition.scope == "company":
            target = result.company
        else:
            return sanitize_command(definition.command)

        if target:
            return sanitize_command(f"{definition.command} {target}")
        # Scoped verb without a target only runs if auto-context can fill it
        filled = apply_auto_context(definition.command, context)
        return sanitize_command(filled) if filled != definition.command else None

    # -------------------------------------------------------------------------
    # Metrics and maintenance
    # -------------------------------------------------------------------------

    def _bump(self, name: str) -> None:
        with self._metrics_lock:
            self._metrics[name] += 1

    def get_metrics(self) -> Dict[str, Any]:
        with self._metrics_lock:
            metrics: Dict[str, Any] = dict(self._metrics)
        total = (
            metrics["pattern_hits"] + metrics["classifier_hits"] + metrics["fallback_hits"]
            + metrics["passthroughs"] + metrics["cache_hits"]
        )
        metrics["total"] = total
        metrics["pattern_rate"] = f"{metrics['pattern_hits'] / total * 100:.1f}%" if total else "0.0%"
        metrics["cache_rate"] = f"{metrics['cache_hits'] / total * 100:.1f}%" if total else "0.0%"
        return metrics

    def reset_metrics(self) -> None:
        with self._metrics_lock:
            self._metrics = {name: 0 for name in METRIC_NAMES}
        logger.info("[SmartRouter] Metrics reset")

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def clean_cache(self) -> int:
        return self.cache.clean_expired()


# =============================================================================
# SINGLETON
# =============================================================================

_router: Optional[SmartRouter] = None
_router_lock = threading.Lock()


def get_router() -> SmartRouter:
    """Process-wide router, built from the environment config on first use."""
    global _router
    with _router_lock:
        if _router is None:
            _router = SmartRouter()
        return _router


def reset_router() -> None:
    """Drop the process-wide router (tests)."""
    global _router
    with _router_lock:
        _router = None
