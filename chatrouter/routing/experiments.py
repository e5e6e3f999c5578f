# FILE: chatrouter/routing/experiments.py
"""
A/B experiments over classifier parameters.

Each user is assigned a variant by hashing "<experiment_id>:<user_id>" with
djb2 and reducing modulo the total variant weight, so assignment is stable
across calls and restarts for as long as the variant list is unchanged.

    framework.create_experiment("threshold-test", [
        Variant(name="control", weight=50, params={"ambiguity_threshold": 0.5}),
        Variant(name="strict", weight=50, params={"ambiguity_threshold": 0.6}),
    ])
    variant = framework.get_variant("threshold-test", user_id)
    ...
    framework.record_outcome("threshold-test", user_id, success=True, corrected=False)
    framework.get_results("threshold-test").winner
"""
from __future__ import annotations
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from chatrouter.errors import (
    ExperimentCompleted,
    ExperimentConfigError,
    ExperimentNotFound,
    OutcomeError,
)
from .schemas import (
    Experiment,
    ExperimentResults,
    ExperimentStatus,
    ExperimentSummary,
    OutcomeRecord,
    Variant,
    VariantStats,
    utcnow,
)

logger = logging.getLogger(__name__)

MIN_OUTCOMES_FOR_WINNER = 5
PERSISTENCE_VERSION = 1


def djb2_hash(text: str) -> int:
    """Non-negative 32-bit djb2 hash."""
    h = 5381
    for ch in text:
        h = ((h << 5) + h + ord(ch)) & 0xFFFFFFFF
    return h


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_params(name: str, params: Any) -> None:
    if not isinstance(params, Mapping):
        raise ExperimentConfigError(f"Variant {name!r}: params must be a mapping")
    for key, value in params.items():
        if isinstance(value, Mapping):
            if not all(_is_number(v) for v in value.values()):
                raise ExperimentConfigError(f"Variant {name!r}: {key} must map to numbers")
        elif not _is_number(value):
            raise ExperimentConfigError(f"Variant {name!r}: param {key} must be numeric")


class ExperimentFramework:
    """Registry of experiments. Thread-safe; persisted to JSON when a file is set."""

    def __init__(self, data_file: Optional[Path] = None):
        self.data_file = Path(data_file) if data_file else None
        self._experiments: Dict[str, Experiment] = {}
        self._lock = threading.RLock()
        self.load()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create_experiment(
        self,
        experiment_id: str,
        variants: Sequence[Union[Variant, Mapping[str, Any]]],
        description: str = "",
    ) -> Experiment:
        """
        Register a new experiment.

        Raises:
            ExperimentConfigError: empty id, duplicate id, fewer than two
                variants, duplicate/blank names, non-positive weights or
                non-numeric params
        """
        if not experiment_id or not isinstance(experiment_id, str):
            raise ExperimentConfigError("experiment_id must be a non-empty string")
        if not variants or len(variants) < 2:
            raise ExperimentConfigError("An experiment needs at least two variants")

        parsed: List[Variant] = []
        seen = set()
        for raw in variants:
            if isinstance(raw, Variant):
                variant = raw
            else:
                name = raw.get("name") if isinstance(raw, Mapping) else None
                weight = raw.get("weight") if isinstance(raw, Mapping) else None
                params = raw.get("params", {}) if isinstance(raw, Mapping) else None
                if not name or not isinstance(name, str):
                    raise ExperimentConfigError("Each variant needs a non-empty name")
                if not isinstance(weight, int) or isinstance(weight, bool):
                    raise ExperimentConfigError(f"Variant {name!r}: weight must be a positive integer")
                _validate_params(name, params)
                variant = Variant(name=name, weight=weight, params=dict(params))

            if not variant.name:
                raise ExperimentConfigError("Each variant needs a non-empty name")
            if variant.name in seen:
                raise ExperimentConfigError(f"Duplicate variant name {variant.name!r}")
            if variant.weight <= 0:
                raise ExperimentConfigError(f"Variant {variant.name!r}: weight must be a positive integer")
            _validate_params(variant.name, variant.params)
            seen.add(variant.name)
            parsed.append(variant)

        with self._lock:
            if experiment_id in self._experiments:
                raise ExperimentConfigError(f"Experiment {experiment_id!r} already exists")
            experiment = Experiment(id=experiment_id, description=description, variants=parsed)
            self._experiments[experiment_id] = experiment
            self.save()

        logger.info(
            f"[ABTesting] Created experiment {experiment_id!r} with {len(parsed)} variants: "
            f"{', '.join(v.name for v in parsed)}"
        )
        return experiment.model_copy(deep=True)

    def end_experiment(
        self, experiment_id: str, promote_winner: bool = False
    ) -> Tuple[Experiment, Optional[str], Optional[Dict[str, Any]]]:
        """
        Mark an experiment completed.

        Returns:
            (experiment, winner, winner_params); winner is only computed when
            promote_winner is set and a variant qualifies.
        """
        with self._lock:
            experiment = self._get(experiment_id)
            if experiment.status == ExperimentStatus.COMPLETED:
                raise ExperimentCompleted(f"Experiment {experiment_id!r} is already completed")

            winner: Optional[str] = None
            winner_params: Optional[Dict[str, Any]] = None
            if promote_winner:
                winner = self._compute_results(experiment).winner
                if winner:
                    experiment.promoted_variant = winner
                    winner_params = next(
                        (dict(v.params) for v in experiment.variants if v.name == winner), None
                    )

            experiment.status = ExperimentStatus.COMPLETED
            experiment.ended_at = utcnow()
            self.save()
            snapshot = experiment.model_copy(deep=True)

        suffix = f", promoted winner {winner!r}" if winner else ""
        logger.info(f"[ABTesting] Ended experiment {experiment_id!r}{suffix}")
        return snapshot, winner, winner_params

    def list_experiments(self) -> List[ExperimentSummary]:
        with self._lock:
            return [
                ExperimentSummary(
                    id=exp.id,
                    description=exp.description,
                    status=exp.status,
                    variants=len(exp.variants),
                    total_outcomes=sum(len(v) for v in exp.outcomes.values()),
                    created_at=exp.created_at,
                )
                for exp in self._experiments.values()
            ]

    def get_experiment(self, experiment_id: str) -> Experiment:
        with self._lock:
            return self._get(experiment_id).model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Assignment
    # -------------------------------------------------------------------------

    def get_variant(self, experiment_id: str, user_id: Optional[str]) -> Variant:
        """Deterministic variant for a user. Missing user ids get the first variant."""
        with self._lock:
            experiment = self._get(experiment_id)
            return self._assign(experiment, user_id).model_copy(deep=True)

    @staticmethod
    def _assign(experiment: Experiment, user_id: Optional[str]) -> Variant:
        if not user_id or not isinstance(user_id, str):
            return experiment.variants[0]

        total = sum(v.weight for v in experiment.variants)
        bucket = djb2_hash(f"{experiment.id}:{user_id}") % total
        cumulative = 0
        for variant in experiment.variants:
            cumulative += variant.weight
            if bucket < cumulative:
                return variant
        return experiment.variants[-1]

    def apply_variant(self, experiment_id: str, user_id: Optional[str], classifier: Any) -> Dict[str, Any]:
        """
        Push the user's variant params onto a classifier (thresholds and
        confidence weights). Completed experiments are reported but not applied.
        """
        with self._lock:
            experiment = self._get(experiment_id)
            variant = self._assign(experiment, user_id)
            active = experiment.status == ExperimentStatus.ACTIVE

        params = dict(variant.params)
        if active:
            thresholds = {
                k: params[k] for k in ("ambiguity_threshold", "clarification_threshold") if k in params
            }
            if thresholds:
                classifier.set_thresholds(**thresholds)
            if params.get("confidence_weights"):
                classifier.set_weights(params["confidence_weights"])

        return {"variant_name": variant.name, "params": params, "applied": active}

    # -------------------------------------------------------------------------
    # Outcomes and results
    # -------------------------------------------------------------------------

    def record_outcome(
        self,
        experiment_id: str,
        user_id: str,
        success: bool,
        corrected: bool = False,
        latency_ms: float = 0.0,
    ) -> OutcomeRecord:
        """
        Record one outcome for a user's assigned variant.

        Raises:
            ExperimentNotFound: unknown experiment
            ExperimentCompleted: experiment has ended
            OutcomeError: missing user id or non-bool success
        """
        with self._lock:
            experiment = self._get(experiment_id)
            if experiment.status == ExperimentStatus.COMPLETED:
                raise ExperimentCompleted(
                    f"Experiment {experiment_id!r} is completed; cannot record new outcomes"
                )
            if not user_id or not isinstance(user_id, str):
                raise OutcomeError("user_id must be a non-empty string")
            if not isinstance(success, bool):
                raise OutcomeError("success must be a boolean")

            variant = self._assign(experiment, user_id)
            record = OutcomeRecord(
                variant=variant.name,
                success=success,
                corrected=corrected is True,
                latency_ms=latency_ms if _is_number(latency_ms) else 0.0,
            )
            experiment.outcomes.setdefault(user_id, []).append(record)
            self.save()
        return record

    def get_results(self, experiment_id: str) -> ExperimentResults:
        """
        Per-variant aggregates and the current winner.

        A variant needs MIN_OUTCOMES_FOR_WINNER outcomes to qualify; the
        score is success_rate - 0.5 * correction_rate, ties going to the
        lower average latency.
        """
        with self._lock:
            return self._compute_results(self._get(experiment_id))

    @staticmethod
    def _compute_results(experiment: Experiment) -> ExperimentResults:
        acc: Dict[str, Dict[str, Any]] = {
            v.name: {"users": set(), "count": 0, "successes": 0, "corrections": 0, "latency": 0.0}
            for v in experiment.variants
        }
        for user_id, outcomes in experiment.outcomes.items():
            for outcome in outcomes:
                bucket = acc.get(outcome.variant)
                if bucket is None:
                    continue
                bucket["users"].add(user_id)
                bucket["count"] += 1
                bucket["successes"] += int(outcome.success)
                bucket["corrections"] += int(outcome.corrected)
                bucket["latency"] += outcome.latency_ms

        stats: Dict[str, VariantStats] = {}
        all_users = set()
        for name, bucket in acc.items():
            count = bucket["count"]
            all_users |= bucket["users"]
            stats[name] = VariantStats(
                participants=len(bucket["users"]),
                outcomes=count,
                success_rate=bucket["successes"] / count if count else 0.0,
                correction_rate=bucket["corrections"] / count if count else 0.0,
                avg_latency_ms=round(bucket["latency"] / count) if count else 0,
            )

        winner: Optional[str] = None
        best_score = float("-inf")
        best_latency = float("inf")
        for name, s in stats.items():
            if s.outcomes < MIN_OUTCOMES_FOR_WINNER:
                continue
            score = s.success_rate - s.correction_rate * 0.5
            if score > best_score or (score == best_score and s.avg_latency_ms < best_latency):
                best_score = score
                best_latency = s.avg_latency_ms
                winner = name

        return ExperimentResults(
            experiment_id=experiment.id,
            status=experiment.status,
            total_participants=len(all_users),
            variants=stats,
            winner=winner,
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def load(self) -> None:
        if not self.data_file or not self.data_file.exists():
            return
        try:
            data = json.loads(self.data_file.read_text(encoding="utf-8"))
            loaded = {
                exp_id: Experiment.model_validate(raw)
                for exp_id, raw in data.get("experiments", {}).items()
            }
        except Exception as e:
            logger.warning(f"[ABTesting] Failed to load experiments: {e}")
            return
        with self._lock:
            self._experiments = loaded
        logger.info(f"[ABTesting] Loaded {len(loaded)} experiment(s)")

    def save(self) -> None:
        if not self.data_file:
            return
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                data = {
                    "_version": PERSISTENCE_VERSION,
                    "_saved_at": utcnow().isoformat(),
                    "experiments": {
                        exp_id: exp.model_dump(mode="json") for exp_id, exp in self._experiments.items()
                    },
                }
            self.data_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except Exception as e:
            logger.warning(f"[ABTesting] Failed to save experiments: {e}")

    def clear(self) -> None:
        with self._lock:
            self._experiments.clear()
            self.save()
        logger.info("[ABTesting] Cleared all experiments")

    def __len__(self) -> int:
        with self._lock:
            return len(self._experiments)

    def _get(self, experiment_id: str) -> Experiment:
        experiment = self._experiments.get(experiment_id)
        if experiment is None:
            raise ExperimentNotFound(f"Experiment {experiment_id!r} not found")
        return experiment
