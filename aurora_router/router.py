"""
Adaptive provider routing for Aurora Router.

For each completion request the router extracts features, asks the
predictor about every available provider/model, drops candidates that
violate the caller's hard constraints, and ranks the survivors with a
weighted cost/latency/quality score. After the caller has executed the
request it reports the outcome through :meth:`Router.learn_from_execution`,
which feeds the performance ledger and per-user patterns.

Routing is fail-open: :meth:`Router.route` always returns a decision and
degrades to a zero-confidence fallback instead of raising.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import Config
from .features import FeatureExtractor, RequestFeatures
from .ledger import PerformanceLedger, PerformanceRecord
from .predictor import Prediction, Predictor, prediction_accuracy
from .quality import calculate_actual_quality
from .registry import CompletionRequest, CompletionResponse, ProviderCatalog

_log = logging.getLogger(__name__)

FALLBACK_REASON = "fallback: no candidate met constraints"
DEFAULT_CONFIDENCE_THRESHOLD = 0.6
DEFAULT_MAX_PENDING_DECISIONS = 1000


class Objective(str, Enum):
    COST = "cost"
    SPEED = "speed"
    QUALITY = "quality"
    BALANCED = "balanced"


# ── Options and decisions ─────────────────────────────────────────────────────

@dataclass
class RoutingOptions:
    """Caller preferences for one routing call.

    Attributes:
        optimize_for: ``cost`` | ``speed`` | ``quality`` | ``balanced``.
        max_cost: Reject candidates predicted to cost more (USD).
        min_quality: Reject candidates predicted below this quality (0-1).
        max_response_time: Reject candidates predicted slower (ms).
    """
    optimize_for: str = Objective.BALANCED.value
    max_cost: Optional[float] = None
    min_quality: Optional[float] = None
    max_response_time: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RoutingOptions":
        data = data or {}
        return cls(
            optimize_for=data.get('optimize_for', Objective.BALANCED.value),
            max_cost=data.get('max_cost'),
            min_quality=data.get('min_quality'),
            max_response_time=data.get('max_response_time'),
        )


@dataclass(frozen=True)
class RejectedCandidate:
    """A provider/model that was not selected, and why."""
    provider: str
    model: str
    reason: str
    score: Optional[float] = None


@dataclass(frozen=True)
class RouteDecision:
    """Immutable routing decision returned to the caller."""
    provider: str
    model: str
    predicted_cost: float
    predicted_latency_ms: float
    predicted_quality: float
    confidence: float
    reasoning: str
    rejected: Tuple[RejectedCandidate, ...] = ()
    optimize_for: str = Objective.BALANCED.value
    request_type: str = "other"
    fallback: bool = False
    alternatives: Tuple[Prediction, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to a plain dict."""
        return {
            "provider": self.provider,
            "model": self.model,
            "predicted_cost": round(self.predicted_cost, 6),
            "predicted_latency_ms": round(self.predicted_latency_ms, 2),
            "predicted_quality": round(self.predicted_quality, 4),
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "rejected": [asdict(r) for r in self.rejected],
            "optimize_for": self.optimize_for,
            "request_type": self.request_type,
            "fallback": self.fallback,
            "alternatives": [a.to_dict() for a in self.alternatives],
        }


@dataclass
class _Candidate:
    prediction: Prediction
    index: int
    score: float = 0.0


@dataclass
class _Evaluation:
    features: RequestFeatures
    objective: str
    ranked: List[_Candidate] = field(default_factory=list)
    rejected: List[RejectedCandidate] = field(default_factory=list)


# ── Router ────────────────────────────────────────────────────────────────────

class Router:
    """Learning multi-provider router.

    The ledger and catalogue are injected so several routers (or tests) can
    run side by side without sharing state.
    """

    def __init__(
        self,
        config_path: str = None,
        config: Optional[Config] = None,
        ledger: Optional[PerformanceLedger] = None,
        catalog: Optional[ProviderCatalog] = None,
        confidence_threshold: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the router.

        Args:
            config_path: Path to configuration directory (ignored when
                *config* is given).
            config: Ready configuration instance.
            ledger: Performance ledger to learn into. A new one sized from
                the configuration is created when omitted.
            catalog: Provider catalogue. Built from the configuration when
                omitted.
            confidence_threshold: Predictions below this confidence are
                replaced by baseline estimates. Overrides the
                ``learning.confidence_threshold`` config value.
            clock: Time source, injectable for tests.
        """
        self.config = config or Config(config_path)
        self.catalog = catalog or ProviderCatalog(self.config)
        self.ledger = ledger if ledger is not None else PerformanceLedger(config=self.config)
        self.extractor = FeatureExtractor(self.config)
        self.clock = clock
        self.predictor = Predictor(self.ledger, self.catalog, self.config, clock=clock)

        learning = self.config.get_learning()
        if confidence_threshold is None:
            confidence_threshold = learning.get('confidence_threshold', DEFAULT_CONFIDENCE_THRESHOLD)
        self.confidence_threshold = confidence_threshold
        self.max_pending = learning.get('max_pending_decisions', DEFAULT_MAX_PENDING_DECISIONS)

        scoring = self.config.get_scoring()
        self.max_cost = scoring.get('max_cost', 0.1)
        self.max_latency_ms = scoring.get('max_latency_ms', 5000)

        self._stats_lock = threading.Lock()
        self._pending: "OrderedDict[tuple, Prediction]" = OrderedDict()
        self._decisions = 0
        self._fallbacks = 0
        self._confidence_total = 0.0
        self._accuracy_totals = {'cost_accuracy': 0.0, 'time_accuracy': 0.0, 'quality_accuracy': 0.0}
        self._accuracy_samples = 0

    # ── Public routing interface ──────────────────────────────────────────

    def route(
        self,
        request: CompletionRequest,
        user_id: str = "",
        available_providers: Optional[List[str]] = None,
        options: Optional[RoutingOptions] = None,
    ) -> RouteDecision:
        """Choose a provider/model for *request*.

        Args:
            request: The completion request (dataclass or dict).
            user_id: Caller identity, used for per-user history.
            available_providers: Provider names the caller can use, in
                preference order. ``None`` means every catalogued provider.
            options: :class:`RoutingOptions` or an equivalent dict.

        Returns:
            :class:`RouteDecision`. Never raises; when no candidate
            survives the constraints the decision is a fallback with
            confidence 0.
        """
        if isinstance(options, dict):
            options = RoutingOptions.from_dict(options)
        options = options or RoutingOptions()
        providers = self._providers(available_providers)

        try:
            evaluation = self._evaluate(request, user_id, providers, options)
        except Exception as exc:
            _log.warning("Routing failed for user %r, using fallback: %s", user_id, exc)
            decision = self._fallback_decision(
                providers, self._objective(options.optimize_for), [], "other")
            self._track(decision, None, None)
            return decision

        if not evaluation.ranked:
            decision = self._fallback_decision(
                providers, evaluation.objective, evaluation.rejected,
                evaluation.features.request_type.value,
            )
            self._track(decision, None, None)
            return decision

        best = evaluation.ranked[0]
        prediction = best.prediction
        outscored = [
            RejectedCandidate(
                provider=c.prediction.provider,
                model=c.prediction.model,
                reason=f"lower {evaluation.objective} score ({c.score:.3f} < {best.score:.3f})",
                score=round(c.score, 4),
            )
            for c in evaluation.ranked[1:]
        ]
        rejected = outscored + evaluation.rejected

        decision = RouteDecision(
            provider=prediction.provider,
            model=prediction.model,
            predicted_cost=prediction.cost,
            predicted_latency_ms=prediction.latency_ms,
            predicted_quality=prediction.quality,
            confidence=prediction.confidence,
            reasoning=self._reasoning(evaluation, best, rejected),
            rejected=tuple(rejected),
            optimize_for=evaluation.objective,
            request_type=evaluation.features.request_type.value,
            alternatives=tuple(c.prediction for c in evaluation.ranked[1:4]),
        )
        self._track(decision, user_id, evaluation.features, prediction)
        return decision

    def explain(
        self,
        request: CompletionRequest,
        user_id: str = "",
        available_providers: Optional[List[str]] = None,
        options: Optional[RoutingOptions] = None,
    ) -> Dict[str, Any]:
        """Return a structured explanation of how *request* would be routed.

        Unlike :meth:`route` this method is read-only: it records nothing
        for later accuracy tracking.

        Returns:
            Dict with ``features``, ``objective``, ``weights``, ranked
            ``candidates`` (with scores), ``rejected`` candidates and a
            human-readable ``summary``.
        """
        if isinstance(options, dict):
            options = RoutingOptions.from_dict(options)
        options = options or RoutingOptions()
        evaluation = self._evaluate(request, user_id, self._providers(available_providers), options)

        candidates = [
            dict(c.prediction.to_dict(), score=round(c.score, 4))
            for c in evaluation.ranked
        ]
        lines = [
            f"Request classified as '{evaluation.features.request_type.value}' "
            f"(~{evaluation.features.estimated_tokens} tokens, "
            f"complexity {evaluation.features.complexity_score:.2f}).",
            f"Optimizing for {evaluation.objective}; "
            f"{len(evaluation.ranked)} candidate(s) passed constraints, "
            f"{len(evaluation.rejected)} rejected.",
        ]
        if evaluation.ranked:
            top = evaluation.ranked[0].prediction
            lines.append(
                f"Would select {top.provider}/{top.model} "
                f"(confidence {top.confidence:.2f}, basis: {top.basis})."
            )
        else:
            lines.append(FALLBACK_REASON)

        return {
            "features": evaluation.features.to_dict(),
            "objective": evaluation.objective,
            "weights": list(self.config.get_objective_weights(evaluation.objective)),
            "candidates": candidates,
            "rejected": [asdict(r) for r in evaluation.rejected],
            "summary": "\n".join(lines),
        }

    # ── Learning ──────────────────────────────────────────────────────────

    def learn_from_execution(
        self,
        request: CompletionRequest,
        user_id: str,
        actual_provider: str,
        actual_model: str,
        actual_response: CompletionResponse,
        actual_response_time: float,
        user_satisfaction: Optional[float] = None,
    ) -> Optional[PerformanceRecord]:
        """Record the real outcome of an executed request.

        Best effort: malformed input is logged and skipped, never raised.

        Args:
            request: The request that was executed (dataclass or dict).
            user_id: Caller identity.
            actual_provider: Provider that served the request.
            actual_model: Model that served the request.
            actual_response: Provider response (dataclass or dict).
            actual_response_time: Observed latency in milliseconds.
            user_satisfaction: Optional 1-5 user rating.

        Returns:
            The appended :class:`PerformanceRecord`, or None when skipped.
        """
        try:
            if isinstance(actual_response, dict):
                actual_response = CompletionResponse.from_dict(actual_response)
            latency = float(actual_response_time)
            if not math.isfinite(latency) or latency < 0:
                raise ValueError(f"invalid response time {latency}")
            if not actual_provider or not actual_model:
                raise ValueError("provider and model are required")
            if user_satisfaction is not None and not math.isfinite(float(user_satisfaction)):
                raise ValueError(f"invalid user satisfaction {user_satisfaction}")

            features = self.extractor.extract(request, user_id)
            quality = calculate_actual_quality(
                actual_response, features.request_type, user_satisfaction)
            cost = float(actual_response.usage.cost)
            if not math.isfinite(cost) or cost < 0:
                raise ValueError(f"invalid cost {cost}")

            record = PerformanceRecord(
                provider=actual_provider,
                model=actual_model,
                features=features,
                actual_cost=cost,
                actual_latency_ms=latency,
                actual_quality=quality,
                timestamp=self.clock(),
                user_id=user_id,
                user_satisfaction=user_satisfaction,
            )
            self.ledger.append(record)
            self.ledger.update_pattern(
                user_id,
                features.request_type.value,
                actual_provider,
                cost,
                cost_saved=self._cost_saved(cost),
            )
            self._record_accuracy(user_id, features, record)
            return record
        except Exception as exc:
            _log.warning(
                "Skipping learning update for %s/%s (user %r): %s",
                actual_provider, actual_model, user_id, exc,
            )
            return None

    # ── Insights ──────────────────────────────────────────────────────────

    def get_insights(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Summarise what the router has learned.

        Args:
            user_id: When given, include only this user's pattern.

        Returns:
            Dict with decision counts, average confidence, prediction
            accuracy, ledger size and user pattern summaries.
        """
        with self._stats_lock:
            decisions = self._decisions
            fallbacks = self._fallbacks
            avg_confidence = self._confidence_total / decisions if decisions else 0.0
            samples = self._accuracy_samples
            accuracy = {
                k: (v / samples if samples else 0.0) for k, v in self._accuracy_totals.items()
            }

        if user_id is not None:
            pattern = self.ledger.get_pattern(user_id)
            patterns = {user_id: pattern.to_dict()} if pattern else {}
        else:
            patterns = {uid: p.to_dict() for uid, p in self.ledger.patterns().items()}

        return {
            "total_decisions": decisions,
            "fallback_decisions": fallbacks,
            "average_confidence": round(avg_confidence, 4),
            "accuracy": dict({k: round(v, 4) for k, v in accuracy.items()}, samples=samples),
            "learning_records": len(self.ledger),
            "evicted_records": self.ledger.evicted,
            "total_cost_saved": round(sum(p['cost_saved'] for p in patterns.values()), 6),
            "user_patterns": patterns,
        }

    # ── Internals ─────────────────────────────────────────────────────────

    def _providers(self, available_providers: Optional[List[str]]) -> List[str]:
        if available_providers is None:
            return self.catalog.providers()
        return list(available_providers)

    def _objective(self, optimize_for: Any) -> str:
        value = getattr(optimize_for, 'value', optimize_for)
        try:
            return Objective(value).value
        except ValueError:
            _log.warning("Unknown optimize_for %r, using balanced", optimize_for)
            return Objective.BALANCED.value

    def _evaluate(self, request, user_id: str, providers: List[str],
                  options: RoutingOptions) -> _Evaluation:
        features = self.extractor.extract(request, user_id)
        evaluation = _Evaluation(features=features, objective=self._objective(options.optimize_for))
        w_cost, w_latency, w_quality = self.config.get_objective_weights(evaluation.objective)

        index = 0
        for provider in providers:
            for info in self.catalog.models_for(provider):
                index += 1
                missing = [c for c in features.required_capabilities if not info.has_capability(c)]
                if missing:
                    evaluation.rejected.append(RejectedCandidate(
                        provider, info.name, f"missing capability {', '.join(missing)}"))
                    continue

                prediction = self.predictor.predict(features, provider, info.name)
                if prediction.confidence < self.confidence_threshold:
                    prediction = self.predictor.baseline(features, provider, info.name)

                reason = self._violation(prediction, options)
                if reason:
                    evaluation.rejected.append(RejectedCandidate(provider, info.name, reason))
                    continue

                score = (
                    w_cost * (1.0 - min(1.0, prediction.cost / self.max_cost))
                    + w_latency * (1.0 - min(1.0, prediction.latency_ms / self.max_latency_ms))
                    + w_quality * prediction.quality
                )
                evaluation.ranked.append(_Candidate(prediction, index, score))

        evaluation.ranked.sort(key=lambda c: (-c.score, -c.prediction.confidence, c.index))
        return evaluation

    @staticmethod
    def _violation(prediction: Prediction, options: RoutingOptions) -> Optional[str]:
        values = (prediction.cost, prediction.latency_ms, prediction.quality)
        if not all(math.isfinite(v) for v in values):
            return "non-finite prediction"
        if options.max_cost is not None and prediction.cost > options.max_cost:
            return f"predicted cost ${prediction.cost:.4f} exceeds max ${options.max_cost:.4f}"
        if options.max_response_time is not None and prediction.latency_ms > options.max_response_time:
            return (f"predicted latency {prediction.latency_ms:.0f}ms exceeds "
                    f"max {options.max_response_time:.0f}ms")
        if options.min_quality is not None and prediction.quality < options.min_quality:
            return f"predicted quality {prediction.quality:.2f} below min {options.min_quality:.2f}"
        return None

    def _reasoning(self, evaluation: _Evaluation, best: _Candidate,
                   rejected: List[RejectedCandidate]) -> str:
        prediction = best.prediction
        text = (
            f"Selected {prediction.provider}/{prediction.model} for "
            f"{evaluation.features.request_type.value} request, optimizing for "
            f"{evaluation.objective} (score {best.score:.3f}, "
            f"confidence {prediction.confidence:.2f}, {prediction.reasoning})."
        )
        if rejected:
            top = "; ".join(f"{r.provider}/{r.model}: {r.reason}" for r in rejected[:2])
            text += f" Rejected {top}."
        return text

    def _fallback_decision(self, providers: List[str], objective: str,
                           rejected: List[RejectedCandidate], request_type: str) -> RouteDecision:
        """Deterministic default: first model of the first usable provider."""
        for provider in providers:
            models = self.catalog.models_for(provider)
            if models:
                info = models[0]
                cost, latency, quality = info.cost_per_request, info.base_latency_ms, info.quality
                provider_name, model_name = provider, info.name
                break
        else:
            fallback = self.config.get_fallback()
            provider_name = fallback.get('provider', 'openai')
            model_name = fallback.get('model', 'gpt-4o-mini')
            cost = fallback.get('cost', 0.01)
            latency = fallback.get('latency_ms', 2000)
            quality = fallback.get('quality', 0.8)

        _log.info("Routing fell back to %s/%s (%d candidates rejected)",
                  provider_name, model_name, len(rejected))
        return RouteDecision(
            provider=provider_name,
            model=model_name,
            predicted_cost=cost,
            predicted_latency_ms=latency,
            predicted_quality=quality,
            confidence=0.0,
            reasoning=FALLBACK_REASON,
            rejected=tuple(rejected),
            optimize_for=objective,
            request_type=request_type,
            fallback=True,
        )

    def _track(self, decision: RouteDecision, user_id: Optional[str],
               features: Optional[RequestFeatures], prediction: Prediction = None) -> None:
        with self._stats_lock:
            self._decisions += 1
            self._confidence_total += decision.confidence
            if decision.fallback:
                self._fallbacks += 1
            if prediction is not None and features is not None:
                key = (user_id, features.user_pattern_id, prediction.provider, prediction.model)
                self._pending.pop(key, None)
                self._pending[key] = prediction
                while len(self._pending) > self.max_pending:
                    self._pending.popitem(last=False)

    def _record_accuracy(self, user_id: str, features: RequestFeatures,
                         record: PerformanceRecord) -> None:
        key = (user_id, features.user_pattern_id, record.provider, record.model)
        with self._stats_lock:
            prediction = self._pending.pop(key, None)
            if prediction is None:
                return
            scores = prediction_accuracy(
                prediction, record.actual_cost, record.actual_latency_ms, record.actual_quality)
            for name, value in scores.items():
                self._accuracy_totals[name] += value
            self._accuracy_samples += 1

    def _cost_saved(self, actual_cost: float) -> float:
        baseline = self.config.get_savings_baseline()
        info = self.catalog.get_model(baseline.get('provider', ''), baseline.get('model', ''))
        if info is None:
            return 0.0
        return max(0.0, info.cost_per_request - actual_cost)
