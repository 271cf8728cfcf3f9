"""
A/B experiment tests: registry lifecycle, variant assignment, statistics
and the periodic analysis sweep.

Run with: pytest tests/test_experiments.py -v
"""

import math
import threading
import time

import pytest
from unittest.mock import MagicMock

from aurora_router import (
    AnalysisScheduler, AnalysisStatus, CompletionRequest, DuplicateError,
    ExperimentConfig, ExperimentRegistry, ExperimentResult, ExperimentStatus,
    InvalidStateError, Metric, NotFoundError, Recommendation, ValidationError,
    Variant, VariantAssigner, welch_t_test,
)
from aurora_router.stats import (
    analyze_results, approximate_p_value, confidence_interval, extract_metric, mean, std_dev,
)


class FakeClock:

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now


def _config(experiment_id="exp-1", **overrides):
    data = {
        "id": experiment_id,
        "name": "Mini vs Haiku",
        "variant_a": {"provider": "openai", "model": "gpt-4o-mini", "weight": 0.5},
        "variant_b": {"provider": "anthropic", "model": "claude-3-haiku-20240307", "weight": 0.5},
        "primary_metric": "cost",
        "min_sample_size": 10,
    }
    data.update(overrides)
    return data


def _spread(center, std, n):
    """n values with sample mean *center* and sample std *std* exactly."""
    half = n // 2
    delta = std * math.sqrt((n - 1) / n)
    return [center + delta] * half + [center - delta] * half


def _results(experiment_id, variant, values, metric="actual_cost"):
    return [ExperimentResult(experiment_id=experiment_id, variant=variant, **{metric: v})
            for v in values]


# ── Registry lifecycle ────────────────────────────────────────────────────────

class TestExperimentValidation:

    @pytest.fixture
    def registry(self):
        return ExperimentRegistry()

    def test_create_starts_in_draft(self, registry):
        experiment = registry.create_test(_config())
        assert experiment.status == ExperimentStatus.DRAFT
        assert experiment.config.primary_metric == Metric.COST
        assert "exp-1" in registry

    @pytest.mark.parametrize("weights", [(0.6, 0.6), (0.3, 0.3), (1.0, 0.1)])
    def test_weights_must_sum_to_one(self, registry, weights):
        config = _config()
        config["variant_a"]["weight"], config["variant_b"]["weight"] = weights
        with pytest.raises(ValidationError, match="sum to 1.0"):
            registry.create_test(config)
        assert "exp-1" not in registry

    def test_weights_within_float_epsilon(self, registry):
        config = _config()
        config["variant_a"]["weight"], config["variant_b"]["weight"] = 0.1 + 0.2, 0.7
        registry.create_test(config)

    @pytest.mark.parametrize("field,value", [
        ("traffic_allocation", 1.5),
        ("traffic_allocation", -0.1),
        ("significance_level", 1.01),
        ("significance_level", -0.5),
        ("min_sample_size", 9),
    ])
    def test_range_checks(self, registry, field, value):
        with pytest.raises(ValidationError):
            registry.create_test(_config(**{field: value}))

    def test_boundaries_are_allowed(self, registry):
        registry.create_test(_config(traffic_allocation=0.0, significance_level=1.0,
                                     min_sample_size=10))

    def test_unknown_metric(self, registry):
        with pytest.raises(ValidationError):
            registry.create_test(_config(primary_metric="vibes"))

    @pytest.mark.parametrize("primary,secondary", [
        ("latency", []),
        ("cost", ["quality", "vibes"]),
    ])
    def test_unknown_metric_on_config_object(self, registry, primary, secondary):
        config = ExperimentConfig(
            id="exp-1",
            name="Mini vs Haiku",
            variant_a=Variant("openai", "gpt-4o-mini", 0.5),
            variant_b=Variant("anthropic", "claude-3-haiku-20240307", 0.5),
            primary_metric=primary,
            secondary_metrics=secondary,
            min_sample_size=10,
        )
        with pytest.raises(ValidationError, match="Unknown metric"):
            registry.create_test(config)
        assert "exp-1" not in registry

    def test_metric_names_on_config_object_are_normalised(self, registry):
        config = ExperimentConfig(
            id="exp-1",
            name="Mini vs Haiku",
            variant_a=Variant("openai", "gpt-4o-mini", 0.5),
            variant_b=Variant("anthropic", "claude-3-haiku-20240307", 0.5),
            primary_metric="quality",
            secondary_metrics=["cost"],
            min_sample_size=10,
        )
        experiment = registry.create_test(config)
        assert experiment.config.primary_metric is Metric.QUALITY
        assert experiment.config.secondary_metrics == [Metric.COST]
        assert experiment.config.to_dict()["primary_metric"] == "quality"
        assert registry.analyze_test("exp-1").status == AnalysisStatus.INSUFFICIENT_DATA

    def test_duplicate_id(self, registry):
        registry.create_test(_config())
        with pytest.raises(DuplicateError):
            registry.create_test(_config())

    def test_error_types_and_status_codes(self):
        assert issubclass(ValidationError, ValueError)
        assert issubclass(NotFoundError, KeyError)
        assert ValidationError.http_status == 400
        assert NotFoundError.http_status == 404
        assert InvalidStateError.http_status == 409
        assert DuplicateError.http_status == 409
        assert str(NotFoundError("Experiment 'x' not found")) == "Experiment 'x' not found"

    def test_config_dict_roundtrip(self):
        config = ExperimentConfig.from_dict(_config(secondary_metrics=["quality"],
                                                    auto_stop={"enabled": True, "max_duration": 60}))
        assert ExperimentConfig.from_dict(config.to_dict()) == config
        assert config.to_dict()["secondary_metrics"] == ["quality"]


class TestExperimentLifecycle:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def registry(self, clock):
        registry = ExperimentRegistry(clock=clock)
        registry.create_test(_config())
        return registry

    def test_start(self, registry, clock):
        experiment = registry.start_test("exp-1")
        assert experiment.status == ExperimentStatus.RUNNING
        assert experiment.start_time == clock.now

    def test_start_twice_is_invalid(self, registry):
        registry.start_test("exp-1")
        with pytest.raises(InvalidStateError):
            registry.start_test("exp-1")

    def test_start_unknown(self, registry):
        with pytest.raises(NotFoundError):
            registry.start_test("missing")

    def test_stop_draft_is_noop(self, registry):
        assert registry.stop_test("exp-1") is False
        experiment = registry.get_test("exp-1")
        assert experiment.status == ExperimentStatus.DRAFT
        assert experiment.end_time is None

    def test_stop_running(self, registry, clock):
        registry.start_test("exp-1")
        clock.now += 30
        assert registry.stop_test("exp-1", "enough") is True
        experiment = registry.get_test("exp-1")
        assert experiment.status == ExperimentStatus.STOPPED
        assert experiment.end_time == clock.now
        assert experiment.stop_reason == "enough"

    def test_stop_is_terminal_and_idempotent(self, registry):
        registry.start_test("exp-1")
        registry.stop_test("exp-1")
        end_time = registry.get_test("exp-1").end_time
        assert registry.stop_test("exp-1") is False
        assert registry.get_test("exp-1").end_time == end_time
        with pytest.raises(InvalidStateError):
            registry.start_test("exp-1")
        with pytest.raises(InvalidStateError):
            registry.resume_test("exp-1")

    def test_stop_unknown(self, registry):
        with pytest.raises(NotFoundError):
            registry.stop_test("missing")

    def test_pause_and_resume(self, registry):
        registry.start_test("exp-1")
        assert registry.pause_test("exp-1").status == ExperimentStatus.PAUSED
        with pytest.raises(InvalidStateError):
            registry.pause_test("exp-1")
        assert registry.resume_test("exp-1").status == ExperimentStatus.RUNNING

    def test_stop_paused(self, registry):
        registry.start_test("exp-1")
        registry.pause_test("exp-1")
        assert registry.stop_test("exp-1") is True
        assert registry.get_test("exp-1").status == ExperimentStatus.STOPPED

    def test_record_result_only_while_running(self, registry):
        result = ExperimentResult(experiment_id="exp-1", variant="A", actual_cost=0.01)
        assert registry.record_result(result) is False
        registry.start_test("exp-1")
        assert registry.record_result(result) is True
        registry.pause_test("exp-1")
        assert registry.record_result(result) is False
        assert len(registry.get_test("exp-1").results) == 1

    def test_record_result_unknown_experiment(self, registry):
        assert registry.record_result(ExperimentResult(experiment_id="nope", variant="A")) is False

    @pytest.mark.parametrize("variant", ["C", "a", ""])
    def test_record_result_rejects_unknown_variant(self, registry, variant):
        registry.start_test("exp-1")
        assert registry.record_result(ExperimentResult("exp-1", variant)) is False
        assert registry.record_result({"experiment_id": "exp-1", "variant": variant}) is False
        experiment = registry.get_test("exp-1")
        assert experiment.results == []
        assert not experiment.has_new_results()

    def test_results_trim_from_10000_to_8000(self, registry):
        registry.start_test("exp-1")
        for i in range(10000):
            registry.record_result(ExperimentResult("exp-1", "A", request_id=str(i)))
        experiment = registry.get_test("exp-1")
        assert len(experiment.results) == 10000

        registry.record_result(ExperimentResult("exp-1", "A", request_id="10000"))
        assert len(experiment.results) == 8000
        assert experiment.results[0].request_id == "2001"
        assert experiment.results[-1].request_id == "10000"

        for i in range(5):
            registry.record_result(ExperimentResult("exp-1", "B"))
        assert len(experiment.results) == 8005

    def test_list_and_running(self, registry):
        registry.create_test(_config("exp-2"))
        registry.start_test("exp-2")
        assert {e.id for e in registry.list_tests()} == {"exp-1", "exp-2"}
        assert [e.id for e in registry.running_tests()] == ["exp-2"]

    def test_get_test_analysis(self, registry):
        assert registry.get_test_analysis("exp-1") is None
        registry.analyze_test("exp-1")
        assert registry.get_test_analysis("exp-1").status == AnalysisStatus.INSUFFICIENT_DATA
        with pytest.raises(NotFoundError):
            registry.get_test_analysis("missing")


# ── Statistics ────────────────────────────────────────────────────────────────

class TestStatistics:

    def test_mean_and_std(self):
        assert mean([]) == 0.0
        assert mean([1, 2, 3, 4]) == 2.5
        assert std_dev([5.0]) == 0.0
        assert std_dev([1, 2, 3, 4]) == pytest.approx(1.2909944)

    def test_spread_helper(self):
        values = _spread(0.02, 0.002, 1000)
        assert mean(values) == pytest.approx(0.02)
        assert std_dev(values) == pytest.approx(0.002)

    @pytest.mark.parametrize("t,p", [
        (0.0, 0.05), (1.5, 0.05), (-1.5, 0.05), (2.0, 0.01), (3.0, 0.001),
        (3.5, 0.0001), (-15.8, 0.0001),
    ])
    def test_p_value_ladder(self, t, p):
        assert approximate_p_value(t) == p

    def test_t_test_needs_two_samples(self):
        result = welch_t_test([1.0], [1.0, 2.0])
        assert result.t_statistic == 0.0
        assert result.p_value == 1.0

    def test_t_test_direction_and_dof(self):
        a = _spread(10.0, 1.0, 50)
        b = _spread(11.0, 2.0, 50)
        result = welch_t_test(a, b)
        se = math.sqrt(1.0 / 50 + 4.0 / 50)
        assert result.t_statistic == pytest.approx(1.0 / se)
        expected_dof = (1 / 50 + 4 / 50) ** 2 / ((1 / 50) ** 2 / 49 + (4 / 50) ** 2 / 49)
        assert result.degrees_of_freedom == pytest.approx(expected_dof)

    def test_t_test_zero_variance(self):
        same = welch_t_test([1.0] * 5, [1.0] * 5)
        assert same.t_statistic == 0.0
        assert same.p_value == 1.0
        different = welch_t_test([1.0] * 5, [2.0] * 5)
        assert different.t_statistic == math.inf
        assert different.p_value == 0.0001

    def test_confidence_interval_uses_fixed_z(self):
        a = _spread(10.0, 1.0, 100)
        b = _spread(12.0, 1.0, 100)
        low, high = confidence_interval(a, b)
        margin = 1.96 * math.sqrt(1.0 / 100 + 1.0 / 100)
        assert low == pytest.approx(2.0 - margin)
        assert high == pytest.approx(2.0 + margin)

    def test_every_metric_has_an_extractor(self):
        result = ExperimentResult("e", "A", actual_cost=1, actual_response_time=2, actual_quality=3,
                                  user_satisfaction=4, cost_accuracy=0.3, time_accuracy=0.6,
                                  quality_accuracy=0.9)
        values = {m: extract_metric([result], m) for m in Metric}
        assert values[Metric.COST] == [1.0]
        assert values[Metric.RESPONSE_TIME] == [2.0]
        assert values[Metric.QUALITY] == [3.0]
        assert values[Metric.ACCURACY] == [pytest.approx(0.6)]
        assert values[Metric.USER_SATISFACTION] == [4.0]

    def test_satisfaction_skips_missing(self):
        results = [ExperimentResult("e", "A", user_satisfaction=s) for s in (4, None, 5)]
        assert extract_metric(results, Metric.USER_SATISFACTION) == [4.0, 5.0]

    def test_insufficient_data(self):
        results = _results("e", "A", [0.01] * 9) + _results("e", "B", [0.02] * 50)
        analysis = analyze_results("e", results, Metric.COST, min_sample_size=10)
        assert analysis.status == AnalysisStatus.INSUFFICIENT_DATA
        assert analysis.recommendation == Recommendation.CONTINUE_TEST
        assert analysis.is_significant is False
        assert analysis.p_value == 1.0
        assert analysis.primary.variant_a.mean == 0.0
        assert analysis.sample_sizes == {"A": 9, "B": 50}

    def test_insufficient_data_with_empty_results(self):
        analysis = analyze_results("e", [], Metric.USER_SATISFACTION, min_sample_size=10)
        assert analysis.status == AnalysisStatus.INSUFFICIENT_DATA
        assert analysis.is_significant is False

    def test_cheaper_variant_b_wins(self):
        results = (_results("e", "A", _spread(0.02, 0.002, 1000))
                   + _results("e", "B", _spread(0.01, 0.002, 1000)))
        analysis = analyze_results("e", results, Metric.COST, min_sample_size=100,
                                   significance_level=0.05)
        assert analysis.p_value < 0.001
        assert analysis.is_significant is True
        assert analysis.status == AnalysisStatus.VARIANT_B_WINS
        assert analysis.recommendation == Recommendation.CHOOSE_VARIANT_B
        assert analysis.primary.effect == pytest.approx(-0.01)
        assert analysis.primary.improvement == pytest.approx(50.0)
        assert analysis.confidence == pytest.approx(0.9999)

    def test_higher_quality_variant_a_wins(self):
        results = (_results("e", "A", _spread(0.9, 0.05, 200), "actual_quality")
                   + _results("e", "B", _spread(0.7, 0.05, 200), "actual_quality"))
        analysis = analyze_results("e", results, Metric.QUALITY)
        assert analysis.status == AnalysisStatus.VARIANT_A_WINS
        assert analysis.recommendation == Recommendation.CHOOSE_VARIANT_A
        assert analysis.primary.improvement < 0

    def test_no_significant_difference(self):
        results = (_results("e", "A", _spread(0.02, 0.002, 100))
                   + _results("e", "B", _spread(0.02, 0.002, 100)))
        analysis = analyze_results("e", results, Metric.COST)
        assert analysis.status == AnalysisStatus.NO_SIGNIFICANT_DIFFERENCE
        assert analysis.recommendation == Recommendation.CONTINUE_TEST
        assert analysis.is_significant is False

    def test_secondary_metrics(self):
        a = [ExperimentResult("e", "A", actual_cost=c, actual_quality=0.8)
             for c in _spread(0.02, 0.002, 50)]
        b = [ExperimentResult("e", "B", actual_cost=c, actual_quality=0.8)
             for c in _spread(0.01, 0.002, 50)]
        analysis = analyze_results("e", a + b, Metric.COST, [Metric.QUALITY])
        assert set(analysis.secondary) == {"quality"}
        assert analysis.secondary["quality"].is_significant is False
        data = analysis.to_dict()
        assert data["secondary"]["quality"]["metric"] == "quality"
        assert data["status"] == "variant_b_wins"


class TestAnalyzeAndAutoStop:

    def _running(self, registry, **overrides):
        registry.create_test(_config(**overrides))
        registry.start_test("exp-1")

    def _feed(self, registry):
        for r in (_results("exp-1", "A", _spread(0.02, 0.002, 100))
                  + _results("exp-1", "B", _spread(0.01, 0.002, 100))):
            registry.record_result(r)

    def test_analyze_stores_latest(self):
        registry = ExperimentRegistry()
        self._running(registry)
        self._feed(registry)
        analysis = registry.analyze_test("exp-1")
        assert registry.get_test_analysis("exp-1") is analysis
        assert registry.get_test("exp-1").last_analysis_time > 0
        assert registry.get_test("exp-1").status == ExperimentStatus.RUNNING

    def test_auto_stop_completes_on_winner(self):
        registry = ExperimentRegistry()
        self._running(registry, auto_stop={"enabled": True, "winner_threshold": 0.95})
        self._feed(registry)
        analysis = registry.analyze_test("exp-1")
        experiment = registry.get_test("exp-1")
        assert analysis.recommendation == Recommendation.CHOOSE_VARIANT_B
        assert experiment.status == ExperimentStatus.COMPLETED
        assert experiment.end_time is not None
        assert experiment.stop_reason.startswith("Auto-stopped")

    def test_auto_stop_respects_threshold(self):
        registry = ExperimentRegistry()
        self._running(registry, auto_stop={"enabled": True, "winner_threshold": 0.99999})
        self._feed(registry)
        registry.analyze_test("exp-1")
        assert registry.get_test("exp-1").status == ExperimentStatus.RUNNING

    def test_analyze_unknown(self):
        with pytest.raises(NotFoundError):
            ExperimentRegistry().analyze_test("missing")

    def test_non_blocking_analysis_skips_busy_experiment(self):
        registry = ExperimentRegistry()
        self._running(registry)
        experiment = registry.get_test("exp-1")
        with experiment.analysis_lock:
            assert registry.analyze_test("exp-1", blocking=False) is None


# ── Variant assignment ────────────────────────────────────────────────────────

class TestVariantAssigner:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def registry(self, clock):
        return ExperimentRegistry(clock=clock)

    def _start(self, registry, experiment_id="exp-1", **overrides):
        registry.create_test(_config(experiment_id, **overrides))
        registry.start_test(experiment_id)

    def test_assignment_is_sticky(self, registry):
        self._start(registry)
        assigner = VariantAssigner(registry, seed=7)
        first = assigner.assign_variant("exp-1", "alice")
        assert first in ("A", "B")
        assert all(assigner.assign_variant("exp-1", "alice") == first for _ in range(50))
        assert assigner.get_assignment("exp-1", "alice") == first

    def test_assignment_respects_weights(self, registry):
        config = _config()
        config["variant_a"]["weight"], config["variant_b"]["weight"] = 1.0, 0.0
        registry.create_test(config)
        registry.start_test("exp-1")
        assigner = VariantAssigner(registry, seed=1)
        assert {assigner.assign_variant("exp-1", f"user-{i}") for i in range(100)} == {"A"}

    def test_assignment_splits_traffic(self, registry):
        self._start(registry)
        assigner = VariantAssigner(registry, seed=42)
        variants = [assigner.assign_variant("exp-1", f"user-{i}") for i in range(1000)]
        assert 400 < variants.count("A") < 600

    def test_assignment_per_experiment(self, registry):
        self._start(registry, "exp-1")
        self._start(registry, "exp-2")
        assigner = VariantAssigner(registry, seed=3)
        assigner.assign_variant("exp-1", "alice")
        assert assigner.get_assignment("exp-2", "alice") is None

    def test_no_assignment_when_not_running(self, registry):
        registry.create_test(_config())
        assigner = VariantAssigner(registry)
        assert assigner.assign_variant("exp-1", "alice") is None
        assert assigner.assign_variant("missing", "alice") is None

    def test_concurrent_assignment_is_consistent(self, registry):
        self._start(registry)
        assigner = VariantAssigner(registry)
        seen = []

        def worker():
            seen.append(assigner.assign_variant("exp-1", "alice"))

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(set(seen)) == 1

    def test_should_participate(self, registry):
        self._start(registry)
        assigner = VariantAssigner(registry, seed=1)
        assert assigner.should_participate("exp-1", "alice") is True
        assert assigner.should_participate("missing", "alice") is False

    def test_zero_traffic(self, registry):
        self._start(registry, traffic_allocation=0.0)
        assigner = VariantAssigner(registry, seed=1)
        assert not any(assigner.should_participate("exp-1", f"u{i}") for i in range(100))

    def test_not_running(self, registry):
        registry.create_test(_config())
        assert VariantAssigner(registry).should_participate("exp-1", "alice") is False

    def test_max_duration_stops_experiment(self, registry, clock):
        self._start(registry, auto_stop={"max_duration": 3600})
        assigner = VariantAssigner(registry, seed=1)
        clock.now += 3599
        assert assigner.should_participate("exp-1", "alice") is True
        clock.now += 2
        assert assigner.should_participate("exp-1", "alice") is False
        experiment = registry.get_test("exp-1")
        assert experiment.status == ExperimentStatus.STOPPED
        assert experiment.stop_reason == "Test duration expired"
        assert experiment.end_time == clock.now

    def test_user_segment_filter(self, registry):
        self._start(registry, user_segments=["beta"])
        assigner = VariantAssigner(registry, seed=1)
        assert assigner.should_participate("exp-1", "alice", user_segments=["beta", "eu"]) is True
        assert assigner.should_participate("exp-1", "alice", user_segments=["alpha"]) is False
        assert assigner.should_participate("exp-1", "alice") is False

    def test_request_type_filter(self, registry):
        self._start(registry, request_types=["code_generation"])
        assigner = VariantAssigner(registry, seed=1)
        code = CompletionRequest.from_prompt("Write a function that parses CSV")
        chat = CompletionRequest.from_prompt("Hello!")
        assert assigner.should_participate("exp-1", "alice", code) is True
        assert assigner.should_participate("exp-1", "alice", chat) is False
        assert assigner.should_participate("exp-1", "alice") is False

    def test_get_variant_config(self, registry):
        self._start(registry)
        assigner = VariantAssigner(registry)
        assert assigner.get_variant_config("exp-1", "A").model == "gpt-4o-mini"
        assert assigner.get_variant_config("exp-1", "B").provider == "anthropic"
        assert assigner.get_variant_config("exp-1", "C") is None
        assert assigner.get_variant_config("missing", "A") is None


# ── Periodic sweep ────────────────────────────────────────────────────────────

class TestAnalysisScheduler:

    def _registry_with_data(self):
        registry = ExperimentRegistry()
        registry.create_test(_config())
        registry.start_test("exp-1")
        for r in _results("exp-1", "A", [0.01] * 3) + _results("exp-1", "B", [0.02] * 3):
            registry.record_result(r)
        return registry

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            AnalysisScheduler(ExperimentRegistry(), interval=0)

    def test_run_once_only_reanalyzes_new_data(self):
        registry = self._registry_with_data()
        registry.create_test(_config("idle"))
        scheduler = AnalysisScheduler(registry)
        assert scheduler.run_once() == ["exp-1"]
        assert scheduler.run_once() == []

        time.sleep(0.01)
        registry.record_result(ExperimentResult("exp-1", "A", actual_cost=0.01))
        assert scheduler.run_once() == ["exp-1"]

    def test_run_once_skips_busy_experiment(self):
        registry = self._registry_with_data()
        scheduler = AnalysisScheduler(registry)
        with registry.get_test("exp-1").analysis_lock:
            assert scheduler.run_once() == []
        assert registry.get_test_analysis("exp-1") is None

    def test_background_thread_start_stop(self):
        registry = self._registry_with_data()
        with AnalysisScheduler(registry, interval=0.01) as scheduler:
            assert scheduler.running
            deadline = time.time() + 5
            while registry.get_test_analysis("exp-1") is None and time.time() < deadline:
                time.sleep(0.01)
        assert not scheduler.running
        assert registry.get_test_analysis("exp-1") is not None

    def test_run_once_sees_results_stamped_before_the_last_sweep(self):
        clock = FakeClock(start=time.time() + 3600)
        registry = ExperimentRegistry(clock=clock)
        registry.create_test(_config())
        registry.start_test("exp-1")
        registry.record_result(ExperimentResult("exp-1", "A", actual_cost=0.01))
        scheduler = AnalysisScheduler(registry)
        assert scheduler.run_once() == ["exp-1"]
        assert scheduler.run_once() == []

        # Stamped long before the registry's notion of "now".
        registry.record_result(ExperimentResult("exp-1", "B", actual_cost=0.02, timestamp=0.0))
        assert scheduler.run_once() == ["exp-1"]
        assert registry.get_test_analysis("exp-1").sample_sizes == {"A": 1, "B": 1}

    def test_restored_experiment_is_analyzed_once(self):
        registry = self._registry_with_data()
        restored = ExperimentRegistry()
        restored.load_dict(registry.to_dict())
        scheduler = AnalysisScheduler(restored)
        assert scheduler.run_once() == ["exp-1"]
        assert scheduler.run_once() == []

    def test_stop_keeps_thread_that_did_not_exit(self):
        scheduler = AnalysisScheduler(ExperimentRegistry())
        stuck = MagicMock()
        stuck.is_alive.return_value = True
        scheduler._thread = stuck

        scheduler.stop(timeout=0.01)
        stuck.join.assert_called_once_with(0.01)
        assert scheduler._thread is stuck
        assert scheduler.running

        scheduler.start()
        assert scheduler._thread is stuck
        stuck.start.assert_not_called()

        stuck.is_alive.return_value = False
        scheduler.stop()
        assert scheduler._thread is None
        assert not scheduler.running

    def test_stop_without_start(self):
        AnalysisScheduler(ExperimentRegistry()).stop()
