"""
Experiment participation and sticky variant assignment.

A user's first assignment in an experiment is a weighted random draw
(``rand < weight_a`` gives A). It is stored and returned unchanged on every
later call, so a user sees the same variant for the life of the experiment.
"""

import logging
import random
import threading
from typing import Dict, Iterable, Optional, Tuple

from .experiments import VARIANTS, ExperimentRegistry, ExperimentStatus, Variant
from .features import FeatureExtractor
from .registry import CompletionRequest

_log = logging.getLogger(__name__)


class VariantAssigner:
    """Decides who takes part in which experiment, and on which variant."""

    def __init__(self, registry: ExperimentRegistry, extractor: FeatureExtractor = None,
                 seed: Optional[int] = None):
        """Initialize the assigner.

        Args:
            registry: Experiment registry to consult
            extractor: Feature extractor used for request-type filters
            seed: Seed for the participation and assignment draws
        """
        self.registry = registry
        self.extractor = extractor or FeatureExtractor()
        self._rng = random.Random(seed)
        self._lock = threading.Lock()
        self._assignments: Dict[Tuple[str, str], str] = {}

    def _draw(self) -> float:
        with self._lock:
            return self._rng.random()

    def should_participate(self, experiment_id: str, user_id: str,
                           request: Optional[CompletionRequest] = None,
                           user_segments: Optional[Iterable[str]] = None) -> bool:
        """Decide whether this request takes part in *experiment_id*.

        Returns False when the experiment is missing or not running, when
        its max duration has elapsed (which also stops it), when the user's
        segments or the request type do not match configured filters, or
        when the traffic draw exceeds the allocation.
        """
        experiment = self.registry.find_test(experiment_id)
        if experiment is None or experiment.status != ExperimentStatus.RUNNING:
            return False
        if self.registry.expire_if_due(experiment_id):
            return False

        config = experiment.config
        if config.user_segments:
            if not set(user_segments or ()) & set(config.user_segments):
                return False
        if config.request_types:
            if request is None:
                return False
            request_type = self.extractor.extract(request, user_id).request_type
            if request_type.value not in config.request_types:
                return False

        return self._draw() <= config.traffic_allocation

    def assign_variant(self, experiment_id: str, user_id: str) -> Optional[str]:
        """Return the user's variant ('A' or 'B'), drawing it on first use.

        Returns None when the experiment is missing or not running.
        """
        experiment = self.registry.find_test(experiment_id)
        if experiment is None or experiment.status != ExperimentStatus.RUNNING:
            return None

        key = (user_id, experiment_id)
        with self._lock:
            existing = self._assignments.get(key)
            if existing is not None:
                return existing
            variant = 'A' if self._rng.random() < experiment.config.variant_a.weight else 'B'
            self._assignments[key] = variant
        _log.debug("Assigned user %r to variant %s of experiment %s", user_id, variant, experiment_id)
        return variant

    def get_assignment(self, experiment_id: str, user_id: str) -> Optional[str]:
        """Stored assignment, without drawing one."""
        with self._lock:
            return self._assignments.get((user_id, experiment_id))

    def get_variant_config(self, experiment_id: str, variant: str) -> Optional[Variant]:
        """Provider/model of *variant* in *experiment_id*, or None if unknown."""
        experiment = self.registry.find_test(experiment_id)
        if experiment is None or variant not in VARIANTS:
            return None
        return experiment.config.variant_a if variant == 'A' else experiment.config.variant_b

    def assignments(self) -> Dict[Tuple[str, str], str]:
        with self._lock:
            return dict(self._assignments)
