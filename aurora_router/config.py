"""
Configuration management for Aurora Router.

Loads the provider catalogue, baseline estimates, learning constants,
scoring normalisation and request classification rules from JSON
configuration files.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, List


class Config:
    """Configuration manager for provider catalogue and routing parameters."""

    def __init__(self, config_path: str = None):
        """Initialize configuration.

        Args:
            config_path: Path to config directory. If None, or if the
                directory has no ``config.json``, the packaged defaults
                are used.
        """
        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file or defaults."""
        if self.config_path and os.path.exists(os.path.join(self.config_path, 'config.json')):
            config_file = os.path.join(self.config_path, 'config.json')
            try:
                with open(config_file, 'r') as f:
                    return json.load(f)
            except json.JSONDecodeError as exc:
                raise ValueError(
                    f"Router config at {config_file} is corrupt (invalid JSON): {exc}. "
                    "Delete or repair the file to reset to defaults."
                ) from exc
        defaults_path = Path(__file__).parent / 'defaults.json'
        with open(defaults_path, 'r') as f:
            return json.load(f)

    def get_providers(self) -> List[Dict[str, Any]]:
        """Get provider definitions in declaration order."""
        return self.config.get('providers', [])

    def get_fallback(self) -> Dict[str, Any]:
        """Get the fail-open default provider/model and its estimates."""
        return self.config.get('fallback', {})

    def get_savings_baseline(self) -> Dict[str, Any]:
        """Get the provider/model that cost savings are measured against."""
        return self.config.get('savings_baseline', {})

    def get_learning(self) -> Dict[str, Any]:
        """Get learning constants (ledger capacity, sample thresholds)."""
        return self.config.get('learning', {})

    def get_scoring(self) -> Dict[str, Any]:
        """Get scoring normalisation ceilings and objective weights."""
        return self.config.get('scoring', {})

    def get_objective_weights(self, objective: str) -> List[float]:
        """Get the (cost, latency, quality) weight triple for *objective*."""
        weights = self.get_scoring().get('weights', {})
        return weights.get(objective, weights.get('balanced', [1 / 3, 1 / 3, 1 / 3]))

    def get_classification_rules(self) -> Dict[str, Any]:
        """Get classification rules and keywords."""
        return self.config.get('classification_rules', {})

    def get_code_keywords(self) -> List[str]:
        """Get keywords that indicate code generation."""
        return self.get_classification_rules().get('code_keywords', [])

    def get_analysis_keywords(self) -> List[str]:
        """Get keywords that indicate analysis requests."""
        return self.get_classification_rules().get('analysis_keywords', [])

    def get_creative_keywords(self) -> List[str]:
        """Get keywords that indicate creative writing."""
        return self.get_classification_rules().get('creative_keywords', [])

    def get_reasoning_keywords(self) -> List[str]:
        """Get keywords that indicate complex reasoning."""
        return self.get_classification_rules().get('reasoning_keywords', [])

    def get_complexity_keywords(self) -> List[str]:
        """Get keywords that raise the complexity score."""
        return self.get_classification_rules().get('complexity_keywords', [])

    def get_length_thresholds(self) -> Dict[str, int]:
        """Get prompt length thresholds used by the classifier."""
        return self.get_classification_rules().get('length_thresholds', {})

    def save_config(self, config_path: str) -> None:
        """Save current configuration to file.

        Args:
            config_path: Path to config directory
        """
        os.makedirs(config_path, exist_ok=True)
        config_file = os.path.join(config_path, 'config.json')
        from .utils import atomic_write_json
        atomic_write_json(config_file, self.config)

    def add_provider(self, provider_def: Dict[str, Any]) -> None:
        """Add or replace a provider definition.

        Args:
            provider_def: Provider definition with ``name`` and ``models``.
        """
        providers = [
            p for p in self.get_providers()
            if p.get('name') != provider_def.get('name')
        ]
        providers.append(copy.deepcopy(provider_def))
        self.config['providers'] = providers

    def remove_provider(self, provider_name: str) -> bool:
        """Remove a provider definition.

        Returns:
            True if the provider was found and removed, False otherwise
        """
        providers = self.get_providers()
        original_count = len(providers)
        self.config['providers'] = [p for p in providers if p.get('name') != provider_name]
        return len(self.config['providers']) < original_count

    def update_learning(self, values: Dict[str, Any]) -> None:
        """Merge new learning constants into the configuration."""
        learning = self.get_learning()
        learning.update(values)
        self.config['learning'] = learning
