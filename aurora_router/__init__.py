"""
Aurora Router: adaptive multi-provider routing and A/B experimentation.

Picks the upstream provider/model for each AI completion request from
learned cost/latency/quality trade-offs, learns from reported outcomes,
and validates routing strategies with Welch's two-sample t-test.
Zero runtime dependencies. State is in memory with optional JSON files.

Usage:
    from aurora_router import Router, RoutingOptions, CompletionRequest

    router = Router()
    request = CompletionRequest.from_prompt("Write a function that parses CSV")
    decision = router.route(request, user_id="u-42",
                            available_providers=["openai", "anthropic"],
                            options=RoutingOptions(optimize_for="cost"))
    print(f"Use {decision.provider}/{decision.model} "
          f"(confidence: {decision.confidence:.2f})")

    # Report the real outcome so the router learns
    router.learn_from_execution(request, "u-42", decision.provider, decision.model,
                                response, actual_response_time=850)

Experiments:
    from aurora_router import ExperimentRegistry, VariantAssigner, AnalysisScheduler

    registry = ExperimentRegistry()
    registry.create_test({
        "id": "haiku-vs-mini", "name": "Haiku vs 4o-mini",
        "variant_a": {"provider": "openai", "model": "gpt-4o-mini", "weight": 0.5},
        "variant_b": {"provider": "anthropic", "model": "claude-3-haiku-20240307", "weight": 0.5},
        "primary_metric": "cost", "min_sample_size": 50,
    })
    registry.start_test("haiku-vs-mini")
    assigner = VariantAssigner(registry)
    with AnalysisScheduler(registry, interval=60):
        ...
"""

__version__ = "1.0.0"

from .config import Config
from .errors import (
    AuroraRouterError,
    ExperimentError,
    ValidationError,
    NotFoundError,
    InvalidStateError,
    DuplicateError,
)
from .registry import (
    ChatMessage,
    CompletionRequest,
    Usage,
    CompletionResponse,
    Provider,
    ModelInfo,
    ProviderCatalog,
)
from .features import FeatureExtractor, RequestFeatures, RequestType
from .quality import calculate_actual_quality
from .ledger import PerformanceLedger, PerformanceRecord, UserPattern
from .predictor import Prediction, Predictor, prediction_accuracy
from .router import (
    Router,
    RouteDecision,
    RoutingOptions,
    RejectedCandidate,
    Objective,
    FALLBACK_REASON,
)
from .stats import (
    Metric,
    Analysis,
    AnalysisStatus,
    Recommendation,
    MetricComparison,
    VariantStats,
    welch_t_test,
)
from .experiments import (
    ExperimentRegistry,
    ExperimentConfig,
    ExperimentStatus,
    ExperimentResult,
    Experiment,
    Variant,
    AutoStopPolicy,
)
from .assignment import VariantAssigner
from .scheduler import AnalysisScheduler
from .persistence import StateStore, JsonFileStore

__all__ = [
    "Config",

    # Errors
    "AuroraRouterError",
    "ExperimentError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    "DuplicateError",

    # Requests, responses, catalogue
    "ChatMessage",
    "CompletionRequest",
    "Usage",
    "CompletionResponse",
    "Provider",
    "ModelInfo",
    "ProviderCatalog",

    # Routing and learning
    "FeatureExtractor",
    "RequestFeatures",
    "RequestType",
    "calculate_actual_quality",
    "PerformanceLedger",
    "PerformanceRecord",
    "UserPattern",
    "Prediction",
    "Predictor",
    "prediction_accuracy",
    "Router",
    "RouteDecision",
    "RoutingOptions",
    "RejectedCandidate",
    "Objective",
    "FALLBACK_REASON",

    # Experiments
    "Metric",
    "Analysis",
    "AnalysisStatus",
    "Recommendation",
    "MetricComparison",
    "VariantStats",
    "welch_t_test",
    "ExperimentRegistry",
    "ExperimentConfig",
    "ExperimentStatus",
    "ExperimentResult",
    "Experiment",
    "Variant",
    "AutoStopPolicy",
    "VariantAssigner",
    "AnalysisScheduler",

    # Persistence
    "StateStore",
    "JsonFileStore",
]
