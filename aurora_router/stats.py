"""
Statistical analysis of A/B experiment results.

Descriptive statistics, Welch's two-sample t-test and the win/lose
recommendation for an experiment's primary and secondary metrics.

The p-value is a deliberately coarse lookup on |t| against fixed critical
values (1.96, 2.58, 3.29), not a t-distribution CDF, and the confidence
interval of the difference always uses z = 1.96. Both are kept stable so
recorded analyses stay comparable.
"""

import math
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

Z_CRITICAL_95 = 1.96

# (|t| upper bound, p-value) pairs, checked in order.
P_VALUE_THRESHOLDS = ((1.96, 0.05), (2.58, 0.01), (3.29, 0.001))
P_VALUE_FLOOR = 0.0001


class Metric(str, Enum):
    COST = "cost"
    RESPONSE_TIME = "response_time"
    QUALITY = "quality"
    ACCURACY = "accuracy"
    USER_SATISFACTION = "user_satisfaction"

    @property
    def lower_is_better(self) -> bool:
        return self in (Metric.COST, Metric.RESPONSE_TIME)


class AnalysisStatus(str, Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    NO_SIGNIFICANT_DIFFERENCE = "no_significant_difference"
    VARIANT_A_WINS = "variant_a_wins"
    VARIANT_B_WINS = "variant_b_wins"


class Recommendation(str, Enum):
    CONTINUE_TEST = "continue_test"
    CHOOSE_VARIANT_A = "choose_variant_a"
    CHOOSE_VARIANT_B = "choose_variant_b"


_EXTRACTORS: Dict[Metric, Callable[[Any], Optional[float]]] = {
    Metric.COST: lambda r: r.actual_cost,
    Metric.RESPONSE_TIME: lambda r: r.actual_response_time,
    Metric.QUALITY: lambda r: r.actual_quality,
    Metric.ACCURACY: lambda r: (r.cost_accuracy + r.time_accuracy + r.quality_accuracy) / 3,
    Metric.USER_SATISFACTION: lambda r: r.user_satisfaction,
}


def extract_metric(results: Iterable[Any], metric: Metric) -> List[float]:
    """Values of *metric* across *results*, skipping missing ones."""
    extractor = _EXTRACTORS[Metric(metric)]
    values = (extractor(r) for r in results)
    return [float(v) for v in values if v is not None]


# ── Descriptive statistics ────────────────────────────────────────────────────

def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def std_dev(values: Sequence[float], mu: Optional[float] = None) -> float:
    """Sample standard deviation (N-1 denominator); 0 below two samples."""
    if len(values) < 2:
        return 0.0
    if mu is None:
        mu = mean(values)
    return math.sqrt(sum((v - mu) ** 2 for v in values) / (len(values) - 1))


def approximate_p_value(t_statistic: float) -> float:
    """Map |t| onto the fixed p-value ladder."""
    t = abs(t_statistic)
    for bound, p in P_VALUE_THRESHOLDS:
        if t < bound:
            return p
    return P_VALUE_FLOOR


@dataclass
class TTestResult:
    t_statistic: float
    degrees_of_freedom: float
    p_value: float


def welch_t_test(samples_a: Sequence[float], samples_b: Sequence[float]) -> TTestResult:
    """Welch's unequal-variance two-sample t-test of B against A.

    Fewer than two samples on either side yields t = 0, p = 1.
    """
    n_a, n_b = len(samples_a), len(samples_b)
    if n_a < 2 or n_b < 2:
        return TTestResult(0.0, 0.0, 1.0)

    mean_a, mean_b = mean(samples_a), mean(samples_b)
    var_a = std_dev(samples_a, mean_a) ** 2 / n_a
    var_b = std_dev(samples_b, mean_b) ** 2 / n_b
    standard_error = math.sqrt(var_a + var_b)
    diff = mean_b - mean_a

    if standard_error == 0:
        # Zero variance on both sides: any difference is exact.
        t = 0.0 if diff == 0 else math.copysign(math.inf, diff)
        return TTestResult(t, float(n_a + n_b - 2), approximate_p_value(t) if diff else 1.0)

    denom = (var_a ** 2) / (n_a - 1) + (var_b ** 2) / (n_b - 1)
    dof = (var_a + var_b) ** 2 / denom if denom else float(n_a + n_b - 2)
    t = diff / standard_error
    return TTestResult(t, dof, approximate_p_value(t))


def confidence_interval(samples_a: Sequence[float],
                        samples_b: Sequence[float]) -> Tuple[float, float]:
    """95% interval for mean(B) - mean(A) with a fixed z of 1.96."""
    if not samples_a or not samples_b:
        return (0.0, 0.0)
    diff = mean(samples_b) - mean(samples_a)
    standard_error = math.sqrt(
        std_dev(samples_a) ** 2 / len(samples_a) + std_dev(samples_b) ** 2 / len(samples_b)
    )
    margin = Z_CRITICAL_95 * standard_error
    return (diff - margin, diff + margin)


# ── Analysis results ──────────────────────────────────────────────────────────

@dataclass
class VariantStats:
    sample_size: int = 0
    mean: float = 0.0
    std_dev: float = 0.0


@dataclass
class MetricComparison:
    """Comparison of one metric between the two variants.

    ``effect`` is mean(B) - mean(A). ``improvement`` is the percentage by
    which B is *better* than A, so for cost and response time (lower is
    better) a drop from A to B counts as a positive improvement.
    """
    metric: Metric
    variant_a: VariantStats = field(default_factory=VariantStats)
    variant_b: VariantStats = field(default_factory=VariantStats)
    effect: float = 0.0
    improvement: float = 0.0
    t_statistic: float = 0.0
    degrees_of_freedom: float = 0.0
    p_value: float = 1.0
    confidence: float = 0.0
    is_significant: bool = False
    confidence_interval: Tuple[float, float] = (0.0, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['metric'] = self.metric.value
        data['confidence_interval'] = list(self.confidence_interval)
        return data


@dataclass
class Analysis:
    """Latest statistical verdict on an experiment."""
    experiment_id: str
    status: AnalysisStatus
    recommendation: Recommendation
    reason: str
    primary: MetricComparison
    secondary: Dict[str, MetricComparison] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def is_significant(self) -> bool:
        return self.primary.is_significant

    @property
    def p_value(self) -> float:
        return self.primary.p_value

    @property
    def confidence(self) -> float:
        return self.primary.confidence

    @property
    def sample_sizes(self) -> Dict[str, int]:
        return {'A': self.primary.variant_a.sample_size, 'B': self.primary.variant_b.sample_size}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'experiment_id': self.experiment_id,
            'status': self.status.value,
            'recommendation': self.recommendation.value,
            'reason': self.reason,
            'is_significant': self.is_significant,
            'p_value': self.p_value,
            'confidence': self.confidence,
            'sample_sizes': self.sample_sizes,
            'primary': self.primary.to_dict(),
            'secondary': {k: v.to_dict() for k, v in self.secondary.items()},
            'timestamp': self.timestamp,
        }


def compare_metric(metric: Metric, results_a: Sequence[Any], results_b: Sequence[Any],
                   significance_level: float) -> MetricComparison:
    """Run the full comparison of *metric* between two result sets."""
    metric = Metric(metric)
    values_a = extract_metric(results_a, metric)
    values_b = extract_metric(results_b, metric)
    mean_a, mean_b = mean(values_a), mean(values_b)
    effect = mean_b - mean_a

    if mean_a == 0:
        improvement = 0.0
    elif metric.lower_is_better:
        improvement = -effect / mean_a * 100
    else:
        improvement = effect / mean_a * 100

    test = welch_t_test(values_a, values_b)
    return MetricComparison(
        metric=metric,
        variant_a=VariantStats(len(values_a), mean_a, std_dev(values_a, mean_a)),
        variant_b=VariantStats(len(values_b), mean_b, std_dev(values_b, mean_b)),
        effect=effect,
        improvement=improvement,
        t_statistic=test.t_statistic,
        degrees_of_freedom=test.degrees_of_freedom,
        p_value=test.p_value,
        confidence=1.0 - test.p_value,
        is_significant=test.p_value < significance_level,
        confidence_interval=confidence_interval(values_a, values_b),
    )


def analyze_results(experiment_id: str, results: Sequence[Any], primary_metric: Metric,
                    secondary_metrics: Sequence[Metric] = (), min_sample_size: int = 10,
                    significance_level: float = 0.05,
                    now: Optional[float] = None) -> Analysis:
    """Analyze experiment *results* (objects with a ``variant`` of 'A'/'B').

    Returns ``insufficient_data`` before touching any metric when either
    variant has fewer than *min_sample_size* results.
    """
    timestamp = time.time() if now is None else now
    results_a = [r for r in results if r.variant == 'A']
    results_b = [r for r in results if r.variant == 'B']
    primary_metric = Metric(primary_metric)

    if len(results_a) < min_sample_size or len(results_b) < min_sample_size:
        return Analysis(
            experiment_id=experiment_id,
            status=AnalysisStatus.INSUFFICIENT_DATA,
            recommendation=Recommendation.CONTINUE_TEST,
            reason=f"Insufficient data. Need {min_sample_size} samples per variant "
                   f"(have A={len(results_a)}, B={len(results_b)}).",
            primary=MetricComparison(
                metric=primary_metric,
                variant_a=VariantStats(sample_size=len(results_a)),
                variant_b=VariantStats(sample_size=len(results_b)),
            ),
            timestamp=timestamp,
        )

    primary = compare_metric(primary_metric, results_a, results_b, significance_level)
    secondary = {
        Metric(m).value: compare_metric(m, results_a, results_b, significance_level)
        for m in secondary_metrics
    }

    if not primary.is_significant:
        status = AnalysisStatus.NO_SIGNIFICANT_DIFFERENCE
        recommendation = Recommendation.CONTINUE_TEST
        reason = (f"No significant difference detected (p={primary.p_value:.4f}). "
                  "Continue testing.")
    elif primary.improvement > 0:
        status = AnalysisStatus.VARIANT_B_WINS
        recommendation = Recommendation.CHOOSE_VARIANT_B
        reason = (f"Variant B shows {primary.improvement:.1f}% improvement with "
                  f"{primary.confidence * 100:.1f}% confidence.")
    else:
        status = AnalysisStatus.VARIANT_A_WINS
        recommendation = Recommendation.CHOOSE_VARIANT_A
        reason = (f"Variant A shows {abs(primary.improvement):.1f}% better performance with "
                  f"{primary.confidence * 100:.1f}% confidence.")

    return Analysis(
        experiment_id=experiment_id,
        status=status,
        recommendation=recommendation,
        reason=reason,
        primary=primary,
        secondary=secondary,
        timestamp=timestamp,
    )
