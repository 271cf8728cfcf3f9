"""
Pluggable persistence for learning data and experiments.

The core keeps everything in memory. A host that needs durability across
restarts passes the ledger and experiment registry to a :class:`StateStore`.
:class:`JsonFileStore` is the bundled implementation: plain JSON files in a
workspace directory, written atomically.
"""

import json
import logging
import os
from typing import Any, Optional, Protocol

from .experiments import ExperimentRegistry
from .ledger import PerformanceLedger
from .utils import atomic_write_json

_log = logging.getLogger(__name__)


class StateStore(Protocol):
    """Durable storage hook for the ledger and the experiment registry."""

    def save_ledger(self, ledger: PerformanceLedger) -> None:
        ...

    def load_ledger(self, ledger: PerformanceLedger) -> bool:
        ...

    def save_experiments(self, registry: ExperimentRegistry) -> None:
        ...

    def load_experiments(self, registry: ExperimentRegistry) -> bool:
        ...


class JsonFileStore:
    """Stores state as ``learning_data.json`` and ``experiments.json``."""

    def __init__(self, workspace: str = "."):
        self.workspace = os.path.abspath(workspace)
        self._ledger_path = os.path.join(self.workspace, "learning_data.json")
        self._experiments_path = os.path.join(self.workspace, "experiments.json")

    def save_ledger(self, ledger: PerformanceLedger) -> None:
        atomic_write_json(self._ledger_path, ledger.to_dict())

    def load_ledger(self, ledger: PerformanceLedger) -> bool:
        """Load saved learning data into *ledger*.

        Returns:
            False if nothing has been saved yet.

        Raises:
            ValueError: If the file exists but is not valid JSON.
        """
        data = self._read(self._ledger_path)
        if data is None:
            return False
        ledger.load_dict(data)
        return True

    def save_experiments(self, registry: ExperimentRegistry) -> None:
        atomic_write_json(self._experiments_path, registry.to_dict())

    def load_experiments(self, registry: ExperimentRegistry) -> bool:
        """Load saved experiments into *registry*, replacing its contents.

        Returns:
            False if nothing has been saved yet.

        Raises:
            ValueError: If the file exists but is not valid JSON.
        """
        data = self._read(self._experiments_path)
        if data is None:
            return False
        registry.load_dict(data)
        return True

    @staticmethod
    def _read(path: str) -> Optional[Any]:
        if not os.path.exists(path):
            return None
        try:
            with open(path) as f:
                return json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(
                f"State file {path} is corrupt (invalid JSON): {exc}. "
                "Delete or repair the file to start empty."
            ) from exc
