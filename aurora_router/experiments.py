"""
A/B experiment registry for Aurora Router.

Holds experiment definitions (two provider/model variants, traffic
allocation, metrics, stopping rules), their lifecycle state and their
collected results. Unlike routing, the experiment lifecycle is fail-closed:
bad configuration and illegal transitions raise typed errors from
:mod:`aurora_router.errors`.

Lifecycle::

    draft -> running <-> paused
    running | paused -> stopped     (manual stop or max duration)
    running -> completed            (auto-stop on a significant winner)
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .errors import DuplicateError, InvalidStateError, NotFoundError, ValidationError
from .stats import Analysis, Metric, analyze_results

_log = logging.getLogger(__name__)

MAX_RESULTS = 10000
TRIM_TO = 8000
VARIANTS = ("A", "B")


class ExperimentStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (ExperimentStatus.COMPLETED, ExperimentStatus.STOPPED)


# ── Configuration ─────────────────────────────────────────────────────────────

@dataclass
class Variant:
    provider: str
    model: str
    weight: float


@dataclass
class AutoStopPolicy:
    """Stopping rules.

    Attributes:
        enabled: Complete the experiment once a winner is found.
        winner_threshold: Minimum confidence (1 - p) to declare a winner.
        max_duration: Seconds after start at which the experiment is
            stopped regardless of results. None means no limit.
    """
    enabled: bool = False
    winner_threshold: float = 0.95
    max_duration: Optional[float] = None


@dataclass
class ExperimentConfig:
    """Definition of one A/B experiment."""
    id: str
    name: str
    variant_a: Variant
    variant_b: Variant
    primary_metric: Metric = Metric.COST
    secondary_metrics: List[Metric] = field(default_factory=list)
    traffic_allocation: float = 1.0
    min_sample_size: int = 100
    significance_level: float = 0.05
    auto_stop: AutoStopPolicy = field(default_factory=AutoStopPolicy)
    description: str = ""
    hypothesis: str = ""
    minimum_detectable_effect: float = 0.05
    user_segments: List[str] = field(default_factory=list)
    request_types: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['primary_metric'] = Metric(self.primary_metric).value
        data['secondary_metrics'] = [Metric(m).value for m in self.secondary_metrics]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExperimentConfig":
        """Build a config from a plain dict, e.g. a parsed API payload.

        Raises:
            ValidationError: If required keys are missing or a metric name
                is unknown.
        """
        experiment_id = str(data.get('id', ''))
        try:
            return cls(
                id=experiment_id,
                name=data.get('name', experiment_id),
                variant_a=_variant(data['variant_a']),
                variant_b=_variant(data['variant_b']),
                primary_metric=Metric(data.get('primary_metric', Metric.COST.value)),
                secondary_metrics=[Metric(m) for m in data.get('secondary_metrics', [])],
                traffic_allocation=float(data.get('traffic_allocation', 1.0)),
                min_sample_size=int(data.get('min_sample_size', 100)),
                significance_level=float(data.get('significance_level', 0.05)),
                auto_stop=_auto_stop(data.get('auto_stop')),
                description=data.get('description', ''),
                hypothesis=data.get('hypothesis', ''),
                minimum_detectable_effect=float(data.get('minimum_detectable_effect', 0.05)),
                user_segments=list(data.get('user_segments') or []),
                request_types=list(data.get('request_types') or []),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid experiment config: {exc}", experiment_id) from exc


def _variant(data: Any) -> Variant:
    if isinstance(data, Variant):
        return data
    return Variant(provider=data['provider'], model=data['model'], weight=float(data['weight']))


def _auto_stop(data: Any) -> AutoStopPolicy:
    if isinstance(data, AutoStopPolicy):
        return data
    data = data or {}
    max_duration = data.get('max_duration')
    return AutoStopPolicy(
        enabled=bool(data.get('enabled', False)),
        winner_threshold=float(data.get('winner_threshold', 0.95)),
        max_duration=float(max_duration) if max_duration is not None else None,
    )


def validate_config(config: ExperimentConfig) -> None:
    """Raise :class:`ValidationError` if *config* is not runnable.

    Metric names are normalised to :class:`Metric` members in place.
    """
    def fail(message: str) -> None:
        raise ValidationError(message, config.id)

    if not config.id:
        fail("Experiment id is required")
    try:
        config.primary_metric = Metric(config.primary_metric)
        config.secondary_metrics = [Metric(m) for m in config.secondary_metrics]
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Unknown metric: {exc}", config.id) from exc
    weights = (config.variant_a.weight, config.variant_b.weight)
    if any(not 0.0 <= w <= 1.0 for w in weights):
        fail("Variant weights must be between 0 and 1")
    if not math.isclose(sum(weights), 1.0, abs_tol=1e-9):
        fail(f"Variant weights must sum to 1.0 (got {sum(weights)})")
    if not 0.0 <= config.traffic_allocation <= 1.0:
        fail("Traffic allocation must be between 0 and 1")
    if not 0.0 <= config.significance_level <= 1.0:
        fail("Significance level must be between 0 and 1")
    if config.min_sample_size < 10:
        fail("Minimum sample size must be at least 10")
    if not 0.0 <= config.auto_stop.winner_threshold <= 1.0:
        fail("Auto-stop winner threshold must be between 0 and 1")
    if config.auto_stop.max_duration is not None and config.auto_stop.max_duration <= 0:
        fail("Auto-stop max duration must be positive")


# ── Results and state ─────────────────────────────────────────────────────────

@dataclass
class ExperimentResult:
    """Outcome of one request that took part in an experiment."""
    experiment_id: str
    variant: str
    user_id: str = ""
    request_id: str = ""
    actual_cost: float = 0.0
    actual_response_time: float = 0.0
    actual_quality: float = 0.0
    user_satisfaction: Optional[float] = None
    success: bool = True
    cost_accuracy: float = 0.0
    time_accuracy: float = 0.0
    quality_accuracy: float = 0.0
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExperimentResult":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class Experiment:
    """Mutable runtime state of one experiment."""
    config: ExperimentConfig
    status: ExperimentStatus = ExperimentStatus.DRAFT
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    stop_reason: str = ""
    results: List[ExperimentResult] = field(default_factory=list)
    current_analysis: Optional[Analysis] = None
    last_analysis_time: float = 0.0
    # Bumped on every recorded result; the sweep compares it with analyzed_version.
    results_version: int = 0
    analyzed_version: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)
    analysis_lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def id(self) -> str:
        return self.config.id

    def has_new_results(self) -> bool:
        """True when a result was recorded after the last analysis."""
        with self.lock:
            return self.results_version != self.analyzed_version

    def to_dict(self) -> Dict[str, Any]:
        with self.lock:
            return {
                'config': self.config.to_dict(),
                'status': self.status.value,
                'start_time': self.start_time,
                'end_time': self.end_time,
                'stop_reason': self.stop_reason,
                'results': [r.to_dict() for r in self.results],
                'last_analysis_time': self.last_analysis_time,
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Experiment":
        results = [ExperimentResult.from_dict(r) for r in data.get('results', [])]
        return cls(
            config=ExperimentConfig.from_dict(data['config']),
            status=ExperimentStatus(data.get('status', ExperimentStatus.DRAFT.value)),
            start_time=data.get('start_time'),
            end_time=data.get('end_time'),
            stop_reason=data.get('stop_reason', ''),
            results=results,
            last_analysis_time=data.get('last_analysis_time', 0.0),
            results_version=len(results),
        )


# ── Registry ──────────────────────────────────────────────────────────────────

class ExperimentRegistry:
    """Thread-safe owner of every experiment and its results."""

    def __init__(self, clock: Callable[[], float] = time.time):
        """Initialize an empty registry.

        Args:
            clock: Time source, injectable for tests
        """
        self.clock = clock
        self._lock = threading.RLock()
        self._experiments: Dict[str, Experiment] = {}

    def __contains__(self, experiment_id: str) -> bool:
        with self._lock:
            return experiment_id in self._experiments

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def create_test(self, config: ExperimentConfig) -> Experiment:
        """Register a new experiment in ``draft`` status.

        Args:
            config: :class:`ExperimentConfig` or an equivalent dict

        Raises:
            ValidationError: If the configuration is invalid.
            DuplicateError: If the id is already registered.
        """
        if isinstance(config, dict):
            config = ExperimentConfig.from_dict(config)
        validate_config(config)
        with self._lock:
            if config.id in self._experiments:
                raise DuplicateError(f"Experiment {config.id!r} already exists", config.id)
            experiment = Experiment(config=config)
            self._experiments[config.id] = experiment
        _log.info("Created experiment %s (%s)", config.id, config.name)
        return experiment

    def start_test(self, experiment_id: str) -> Experiment:
        """Move a ``draft`` experiment to ``running``.

        Raises:
            NotFoundError: If the experiment does not exist.
            InvalidStateError: If it is not in ``draft``.
        """
        experiment = self.get_test(experiment_id)
        with experiment.lock:
            if experiment.status != ExperimentStatus.DRAFT:
                raise InvalidStateError(
                    f"Experiment {experiment_id!r} cannot be started from "
                    f"{experiment.status.value} status", experiment_id)
            experiment.status = ExperimentStatus.RUNNING
            experiment.start_time = self.clock()
        _log.info("Started experiment %s", experiment_id)
        return experiment

    def pause_test(self, experiment_id: str) -> Experiment:
        """Move a ``running`` experiment to ``paused``."""
        return self._transition(experiment_id, ExperimentStatus.RUNNING, ExperimentStatus.PAUSED)

    def resume_test(self, experiment_id: str) -> Experiment:
        """Move a ``paused`` experiment back to ``running``."""
        return self._transition(experiment_id, ExperimentStatus.PAUSED, ExperimentStatus.RUNNING)

    def _transition(self, experiment_id: str, expected: ExperimentStatus,
                    target: ExperimentStatus) -> Experiment:
        experiment = self.get_test(experiment_id)
        with experiment.lock:
            if experiment.status != expected:
                raise InvalidStateError(
                    f"Experiment {experiment_id!r} is {experiment.status.value}, "
                    f"expected {expected.value}", experiment_id)
            experiment.status = target
        _log.info("Experiment %s is now %s", experiment_id, target.value)
        return experiment

    def stop_test(self, experiment_id: str, reason: str = "Manual stop") -> bool:
        """Stop a running or paused experiment.

        Stopping a ``draft`` experiment, or one that already ended, is a
        no-op.

        Returns:
            True if the experiment was stopped by this call.

        Raises:
            NotFoundError: If the experiment does not exist.
        """
        return self._finish(experiment_id, ExperimentStatus.STOPPED, reason)

    def _finish(self, experiment_id: str, status: ExperimentStatus, reason: str) -> bool:
        experiment = self.get_test(experiment_id)
        with experiment.lock:
            if experiment.status not in (ExperimentStatus.RUNNING, ExperimentStatus.PAUSED):
                _log.debug("Ignoring stop of experiment %s in %s status",
                           experiment_id, experiment.status.value)
                return False
            experiment.status = status
            experiment.end_time = self.clock()
            experiment.stop_reason = reason
        _log.info("Experiment %s %s: %s", experiment_id, status.value, reason)
        return True

    def expire_if_due(self, experiment_id: str) -> bool:
        """Stop a running experiment whose max duration has elapsed.

        Returns:
            True if the experiment was stopped by this call.
        """
        experiment = self.get_test(experiment_id)
        with experiment.lock:
            max_duration = experiment.config.auto_stop.max_duration
            if (experiment.status != ExperimentStatus.RUNNING or max_duration is None
                    or experiment.start_time is None):
                return False
            if self.clock() - experiment.start_time <= max_duration:
                return False
        return self.stop_test(experiment_id, "Test duration expired")

    # ── Results ───────────────────────────────────────────────────────────

    def record_result(self, result: ExperimentResult) -> bool:
        """Append *result* to its experiment if that experiment is running.

        When the result list grows past 10,000 entries it is trimmed to the
        newest 8,000.

        Results for a variant other than 'A' or 'B' are ignored.

        Returns:
            True if the result was recorded.
        """
        if isinstance(result, dict):
            result = ExperimentResult.from_dict(result)
        if result.variant not in VARIANTS:
            _log.debug("Ignoring result with unknown variant %r for experiment %s",
                       result.variant, result.experiment_id)
            return False
        with self._lock:
            experiment = self._experiments.get(result.experiment_id)
        if experiment is None:
            return False
        with experiment.lock:
            if experiment.status != ExperimentStatus.RUNNING:
                return False
            experiment.results.append(result)
            experiment.results_version += 1
            if len(experiment.results) > MAX_RESULTS:
                del experiment.results[:-TRIM_TO]
                _log.debug("Trimmed results of experiment %s to %d", result.experiment_id, TRIM_TO)
        return True

    # ── Queries ───────────────────────────────────────────────────────────

    def get_test(self, experiment_id: str) -> Experiment:
        """Get an experiment by id.

        Raises:
            NotFoundError: If it does not exist.
        """
        with self._lock:
            experiment = self._experiments.get(experiment_id)
        if experiment is None:
            raise NotFoundError(f"Experiment {experiment_id!r} not found", experiment_id)
        return experiment

    def find_test(self, experiment_id: str) -> Optional[Experiment]:
        """Like :meth:`get_test` but returns None for unknown ids."""
        with self._lock:
            return self._experiments.get(experiment_id)

    def list_tests(self) -> List[Experiment]:
        with self._lock:
            return list(self._experiments.values())

    def running_tests(self) -> List[Experiment]:
        return [e for e in self.list_tests() if e.status == ExperimentStatus.RUNNING]

    def get_test_analysis(self, experiment_id: str) -> Optional[Analysis]:
        """Latest stored analysis, or None if never analyzed."""
        return self.get_test(experiment_id).current_analysis

    # ── Analysis ──────────────────────────────────────────────────────────

    def analyze_test(self, experiment_id: str, blocking: bool = True) -> Optional[Analysis]:
        """Analyze an experiment now and apply its auto-stop rule.

        Args:
            experiment_id: Experiment to analyze.
            blocking: When False, return None instead of waiting if another
                analysis of the same experiment is in progress.

        Raises:
            NotFoundError: If the experiment does not exist.
        """
        experiment = self.get_test(experiment_id)
        if not experiment.analysis_lock.acquire(blocking=blocking):
            _log.debug("Experiment %s is already being analyzed, skipping", experiment_id)
            return None
        try:
            now = self.clock()
            with experiment.lock:
                config = experiment.config
                results = list(experiment.results)
                version = experiment.results_version

            analysis = analyze_results(
                experiment_id,
                results,
                config.primary_metric,
                config.secondary_metrics,
                min_sample_size=config.min_sample_size,
                significance_level=config.significance_level,
                now=now,
            )

            with experiment.lock:
                experiment.current_analysis = analysis
                experiment.last_analysis_time = now
                experiment.analyzed_version = version

            policy = config.auto_stop
            if (policy.enabled and analysis.is_significant
                    and analysis.confidence >= policy.winner_threshold):
                self._finish(
                    experiment_id,
                    ExperimentStatus.COMPLETED,
                    f"Auto-stopped: winner detected with {analysis.confidence * 100:.1f}% confidence",
                )
            return analysis
        finally:
            experiment.analysis_lock.release()

    # ── Persistence support ───────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {e.id: e.to_dict() for e in self.list_tests()}

    def load_dict(self, data: Dict[str, Any]) -> None:
        """Replace all experiments with those in *data* (from ``to_dict``)."""
        experiments = {eid: Experiment.from_dict(payload) for eid, payload in data.items()}
        with self._lock:
            self._experiments = experiments
        _log.info("Loaded %d experiments", len(experiments))
