"""
Cost/latency/quality prediction for Aurora Router.

For a request's features and a candidate provider/model, the predictor
takes a weighted mean over matching ledger records: recent records and
records with similar complexity and size count more. With too few matches
it returns the static catalogue baseline at confidence 0.
"""

import logging
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict

from .config import Config
from .features import RequestFeatures
from .ledger import PerformanceLedger, PerformanceRecord
from .registry import ProviderCatalog
from .utils import clamp

_log = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
MIN_SIMILARITY = 0.05

BASIS_LEARNED = "learned"
BASIS_BASELINE = "baseline"


@dataclass
class Prediction:
    """Expected outcome of sending a request to one provider/model."""
    provider: str
    model: str
    cost: float
    latency_ms: float
    quality: float
    confidence: float
    sample_count: int = 0
    basis: str = BASIS_BASELINE
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Predictor:
    """Predicts cost, latency and quality from the performance ledger."""

    def __init__(self, ledger: PerformanceLedger, catalog: ProviderCatalog,
                 config: Config = None, clock: Callable[[], float] = time.time):
        """Initialize predictor.

        Args:
            ledger: Ledger with historical performance records
            catalog: Provider catalogue with baseline estimates
            config: Configuration (learning constants, fallback estimates)
            clock: Time source, injectable for tests
        """
        self.ledger = ledger
        self.catalog = catalog
        self.config = config or catalog.config
        self.clock = clock
        learning = self.config.get_learning()
        self.min_samples = learning.get('min_samples_for_prediction', 5)
        self.full_confidence_samples = learning.get('full_confidence_samples', 10)
        self.max_age_days = learning.get('max_record_age_days', 7)

    def predict(self, features: RequestFeatures, provider: str, model: str) -> Prediction:
        """Predict the outcome of routing *features* to provider/model.

        Args:
            features: Features of the request being routed
            provider: Candidate provider
            model: Candidate model

        Returns:
            A learned Prediction, or the baseline at confidence 0 when
            fewer than ``min_samples_for_prediction`` records match.
        """
        now = self.clock()
        max_age = self.max_age_days * SECONDS_PER_DAY
        matches = [
            r for r in self.ledger.records_for(features.user_pattern_id, provider, model)
            if now - r.timestamp <= max_age
        ]

        if len(matches) < self.min_samples:
            prediction = self.baseline(features, provider, model)
            prediction.sample_count = len(matches)
            return prediction

        total_weight = 0.0
        cost = latency = quality = 0.0
        for record in matches:
            weight = self._recency(record, now) * self._similarity(features, record.features)
            total_weight += weight
            cost += weight * record.actual_cost
            latency += weight * record.actual_latency_ms
            quality += weight * record.actual_quality

        confidence = min(1.0, len(matches) / self.full_confidence_samples)
        return Prediction(
            provider=provider,
            model=model,
            cost=cost / total_weight,
            latency_ms=latency / total_weight,
            quality=clamp(quality / total_weight),
            confidence=confidence,
            sample_count=len(matches),
            basis=BASIS_LEARNED,
            reasoning=f"learned from {len(matches)} similar requests",
        )

    def baseline(self, features: RequestFeatures, provider: str, model: str) -> Prediction:
        """Static estimate from the catalogue, scaled by request complexity."""
        info = self.catalog.get_model(provider, model)
        if info is not None:
            cost, latency, quality = info.cost_per_request, info.base_latency_ms, info.quality
        else:
            _log.debug("No catalogue entry for %s/%s, using fallback estimates", provider, model)
            fallback = self.config.get_fallback()
            cost = fallback.get('cost', 0.01)
            latency = fallback.get('latency_ms', 2000)
            quality = fallback.get('quality', 0.8)

        scale = 1.0 + features.complexity_score
        return Prediction(
            provider=provider,
            model=model,
            cost=cost * scale,
            latency_ms=latency * scale,
            quality=quality,
            confidence=0.0,
            basis=BASIS_BASELINE,
            reasoning="baseline estimate (insufficient history)",
        )

    @staticmethod
    def _recency(record: PerformanceRecord, now: float) -> float:
        age_days = max(0.0, now - record.timestamp) / SECONDS_PER_DAY
        return 1.0 / (1.0 + age_days)

    @staticmethod
    def _similarity(query: RequestFeatures, other: RequestFeatures) -> float:
        complexity_gap = abs(query.complexity_score - other.complexity_score)
        largest = max(query.estimated_tokens, other.estimated_tokens, 1)
        token_gap = min(1.0, abs(query.estimated_tokens - other.estimated_tokens) / largest)
        return max(MIN_SIMILARITY, 1.0 - 0.5 * complexity_gap - 0.5 * token_gap)


def prediction_accuracy(prediction: Prediction, actual_cost: float,
                        actual_latency_ms: float, actual_quality: float) -> Dict[str, float]:
    """Score how close *prediction* was to the actual outcome.

    Cost and latency use relative error against the larger of the two
    values; quality uses absolute error since it already lives in [0, 1].

    Returns:
        Dict with ``cost_accuracy``, ``time_accuracy`` and
        ``quality_accuracy``, each in [0, 1].
    """
    def relative(predicted: float, actual: float) -> float:
        scale = max(abs(predicted), abs(actual))
        if scale == 0:
            return 1.0
        return clamp(1.0 - abs(predicted - actual) / scale)

    return {
        'cost_accuracy': relative(prediction.cost, actual_cost),
        'time_accuracy': relative(prediction.latency_ms, actual_latency_ms),
        'quality_accuracy': clamp(1.0 - abs(prediction.quality - actual_quality)),
    }
