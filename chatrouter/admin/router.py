# FILE: chatrouter/admin/router.py
"""
Routing Admin API

Provides endpoints for:
- Resolving a message the way the chat transport would
- Router metrics and cache maintenance
- Classifier threshold / weight tuning
- A/B experiments (create, results, outcomes, end)
- Correction statistics
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from chatrouter.errors import (
    ConfigError,
    ExperimentCompleted,
    ExperimentError,
    ExperimentNotFound,
    ThresholdError,
)
from chatrouter.routing.router import SmartRouter, get_router
from chatrouter.routing.schemas import (
    ExperimentResults,
    ExperimentSummary,
    IntentSource,
    OutcomeRecord,
    PendingIntents,
    Risk,
    RouteContext,
    Variant,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/routing",
    tags=["routing"],
)


# =============================================================================
# SCHEMAS
# =============================================================================

class ResolveRequest(BaseModel):
    message: str
    context: RouteContext = Field(default_factory=RouteContext)


class ResolveResponse(BaseModel):
    command: str
    changed: bool
    source: IntentSource
    confidence: float
    risk: Risk
    requires_confirmation: bool
    multi_intent: Optional[PendingIntents] = None


class ThresholdUpdate(BaseModel):
    ambiguity_threshold: Optional[float] = None
    clarification_threshold: Optional[float] = None
    confidence_weights: Optional[Dict[str, float]] = None


class ThresholdState(BaseModel):
    ambiguity_threshold: float
    clarification_threshold: float
    confidence_weights: Dict[str, float]


class ExperimentCreate(BaseModel):
    id: str
    variants: List[Variant]
    description: str = ""


class OutcomeCreate(BaseModel):
    user_id: str
    success: bool
    corrected: bool = False
    latency_ms: float = 0.0


class ExperimentEnd(BaseModel):
    promote_winner: bool = False


class ExperimentEndResponse(BaseModel):
    id: str
    status: str
    ended_at: Optional[datetime] = None
    winner: Optional[str] = None
    winner_params: Optional[Dict[str, Any]] = None


def _raise_for(e: Exception) -> None:
    """Map routing errors onto HTTP status codes."""
    if isinstance(e, ExperimentNotFound):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ExperimentCompleted):
        raise HTTPException(status_code=409, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


def _threshold_state(smart_router: SmartRouter) -> ThresholdState:
    classifier = smart_router.classifier
    return ThresholdState(**classifier.get_thresholds(), confidence_weights=classifier.get_weights())


# =============================================================================
# RESOLVE
# =============================================================================

@router.post("/resolve", response_model=ResolveResponse)
async def resolve_message(
    request: ResolveRequest,
    smart_router: SmartRouter = Depends(get_router),
):
    """
    Resolve a message to a command without executing it.

    `changed` is False when the message passed through untouched.
    """
    outcome = await smart_router.resolve_outcome(request.message, request.context)
    intent = smart_router.intent_from_outcome(outcome, request.message)
    if intent.source == IntentSource.PASSTHROUGH:
        command = intent.original_message
    else:
        command = intent.to_canonical_string()
    return ResolveResponse(
        command=command,
        changed=command != request.message,
        source=intent.source,
        confidence=intent.confidence,
        risk=intent.risk,
        requires_confirmation=intent.requires_confirmation,
        multi_intent=outcome.pending,
    )


# =============================================================================
# METRICS / CACHE
# =============================================================================

@router.get("/metrics")
def get_metrics(smart_router: SmartRouter = Depends(get_router)):
    return smart_router.get_metrics()


@router.post("/metrics/reset")
def reset_metrics(smart_router: SmartRouter = Depends(get_router)):
    smart_router.reset_metrics()
    return {"status": "reset"}


@router.get("/cache")
def get_cache_stats(smart_router: SmartRouter = Depends(get_router)):
    return smart_router.get_cache_stats()


@router.post("/cache/clean")
def clean_cache(smart_router: SmartRouter = Depends(get_router)):
    removed = smart_router.clean_cache()
    return {"removed": removed, **smart_router.get_cache_stats()}


# =============================================================================
# TUNING
# =============================================================================

@router.get("/thresholds", response_model=ThresholdState)
def get_thresholds(smart_router: SmartRouter = Depends(get_router)):
    return _threshold_state(smart_router)


@router.put("/thresholds", response_model=ThresholdState)
def update_thresholds(
    update: ThresholdUpdate,
    smart_router: SmartRouter = Depends(get_router),
):
    """
    Adjust classifier thresholds and/or weights.
    Weights are merged into the current set, which must still sum to 1.0.
    """
    classifier = smart_router.classifier
    try:
        if update.ambiguity_threshold is not None or update.clarification_threshold is not None:
            classifier.set_thresholds(
                ambiguity_threshold=update.ambiguity_threshold,
                clarification_threshold=update.clarification_threshold,
            )
        if update.confidence_weights:
            classifier.set_weights(update.confidence_weights)
    except (ThresholdError, ConfigError) as e:
        logger.warning(f"[routing] Rejected tuning update: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return _threshold_state(smart_router)


@router.get("/corrections/stats")
def get_correction_stats(smart_router: SmartRouter = Depends(get_router)):
    return smart_router.classifier.get_correction_stats()


# =============================================================================
# EXPERIMENTS
# =============================================================================

@router.get("/experiments", response_model=List[ExperimentSummary])
def list_experiments(smart_router: SmartRouter = Depends(get_router)):
    return smart_router.experiments.list_experiments()


@router.post("/experiments", response_model=ExperimentSummary, status_code=201)
def create_experiment(
    request: ExperimentCreate,
    smart_router: SmartRouter = Depends(get_router),
):
    experiments = smart_router.experiments
    try:
        experiment = experiments.create_experiment(request.id, request.variants, request.description)
    except ExperimentError as e:
        _raise_for(e)
    return ExperimentSummary(
        id=experiment.id,
        description=experiment.description,
        status=experiment.status,
        variants=len(experiment.variants),
        total_outcomes=0,
        created_at=experiment.created_at,
    )


@router.get("/experiments/{experiment_id}/results", response_model=ExperimentResults)
def get_experiment_results(
    experiment_id: str,
    smart_router: SmartRouter = Depends(get_router),
):
    try:
        return smart_router.experiments.get_results(experiment_id)
    except ExperimentError as e:
        _raise_for(e)


@router.post("/experiments/{experiment_id}/outcomes", response_model=OutcomeRecord)
def record_outcome(
    experiment_id: str,
    outcome: OutcomeCreate,
    smart_router: SmartRouter = Depends(get_router),
):
    try:
        return smart_router.experiments.record_outcome(
            experiment_id,
            outcome.user_id,
            outcome.success,
            corrected=outcome.corrected,
            latency_ms=outcome.latency_ms,
        )
    except ExperimentError as e:
        _raise_for(e)


@router.post("/experiments/{experiment_id}/end", response_model=ExperimentEndResponse)
def end_experiment(
    experiment_id: str,
    request: Optional[ExperimentEnd] = None,
    smart_router: SmartRouter = Depends(get_router),
):
    promote = request.promote_winner if request is not None else False
    try:
        experiment, winner, winner_params = smart_router.experiments.end_experiment(
            experiment_id, promote_winner=promote
        )
    except ExperimentError as e:
        _raise_for(e)
    logger.info(f"[routing] Experiment {experiment_id} ended via API (winner: {winner})")
    return ExperimentEndResponse(
        id=experiment.id,
        status=experiment.status.value,
        ended_at=experiment.ended_at,
        winner=winner,
        winner_params=winner_params,
    )
