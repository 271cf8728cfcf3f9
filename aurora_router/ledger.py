"""
Performance ledger and user pattern store for Aurora Router.

The ledger is a capacity-bounded FIFO of completed-request records,
partitioned by user pattern id so the predictor only scans the bucket it
needs. When full, the oldest record is evicted from both the global order
and its partition. User patterns aggregate per-user usage and are never
evicted within a process.
"""

import copy
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, asdict, field
from typing import Any, Deque, Dict, List, Optional

from .config import Config
from .features import RequestFeatures

_log = logging.getLogger(__name__)

DEFAULT_MAX_LEARNING_DATA = 10000


@dataclass(frozen=True)
class PerformanceRecord:
    """One completed request and what it actually cost."""
    provider: str
    model: str
    features: RequestFeatures
    actual_cost: float
    actual_latency_ms: float
    actual_quality: float
    timestamp: float = field(default_factory=time.time)
    user_id: str = ""
    user_satisfaction: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['features'] = self.features.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceRecord":
        return cls(
            provider=data['provider'],
            model=data['model'],
            features=RequestFeatures.from_dict(data.get('features', {})),
            actual_cost=float(data.get('actual_cost', 0.0)),
            actual_latency_ms=float(data.get('actual_latency_ms', 0.0)),
            actual_quality=float(data.get('actual_quality', 0.0)),
            timestamp=float(data.get('timestamp', time.time())),
            user_id=data.get('user_id', ''),
            user_satisfaction=data.get('user_satisfaction'),
        )


@dataclass
class UserPattern:
    """Running usage aggregate for one user."""
    user_id: str
    request_types: Dict[str, int] = field(default_factory=dict)
    providers: Dict[str, int] = field(default_factory=dict)
    total_requests: int = 0
    total_cost: float = 0.0
    cost_saved: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def preferred_provider(self) -> Optional[str]:
        if not self.providers:
            return None
        return max(self.providers, key=lambda p: self.providers[p])


class PerformanceLedger:
    """Bounded, thread-safe store of PerformanceRecords and UserPatterns."""

    def __init__(self, max_size: int = None, config: Config = None):
        """Initialize the ledger.

        Args:
            max_size: Maximum number of records kept. Overrides the
                ``learning.max_learning_data`` config value.
            config: Configuration instance (packaged defaults if omitted)
        """
        if max_size is None:
            learning = (config or Config()).get_learning()
            max_size = learning.get('max_learning_data', DEFAULT_MAX_LEARNING_DATA)
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.max_size = max_size
        self._lock = threading.RLock()
        self._records: Deque[PerformanceRecord] = deque()
        self._partitions: Dict[str, Deque[PerformanceRecord]] = {}
        self._patterns: Dict[str, UserPattern] = {}
        self.evicted = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ── Records ───────────────────────────────────────────────────────────────

    def append(self, record: PerformanceRecord) -> None:
        """Append *record*, evicting the oldest record when at capacity."""
        with self._lock:
            while len(self._records) >= self.max_size:
                self._evict_oldest()
            self._records.append(record)
            bucket = record.features.user_pattern_id
            self._partitions.setdefault(bucket, deque()).append(record)

    def _evict_oldest(self) -> None:
        oldest = self._records.popleft()
        bucket = oldest.features.user_pattern_id
        partition = self._partitions.get(bucket)
        if partition:
            # Partitions preserve global order, so the oldest global record
            # is always at the head of its partition.
            partition.popleft()
            if not partition:
                del self._partitions[bucket]
        self.evicted += 1

    def records_for(self, user_pattern_id: str, provider: str = None,
                    model: str = None) -> List[PerformanceRecord]:
        """Snapshot of one partition, optionally filtered by provider/model."""
        with self._lock:
            partition = list(self._partitions.get(user_pattern_id, ()))
        return [
            r for r in partition
            if (provider is None or r.provider == provider)
            and (model is None or r.model == model)
        ]

    def all_records(self) -> List[PerformanceRecord]:
        """Snapshot of every record, oldest first."""
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._partitions.clear()
            self._patterns.clear()
            self.evicted = 0

    # ── User patterns ─────────────────────────────────────────────────────────

    def update_pattern(self, user_id: str, request_type: str, provider: str,
                       cost: float, cost_saved: float = 0.0) -> UserPattern:
        """Fold one learning event into the pattern of *user_id*.

        Returns:
            A copy of the updated pattern
        """
        with self._lock:
            pattern = self._patterns.get(user_id)
            if pattern is None:
                pattern = UserPattern(user_id=user_id)
                self._patterns[user_id] = pattern
            pattern.request_types[request_type] = pattern.request_types.get(request_type, 0) + 1
            pattern.providers[provider] = pattern.providers.get(provider, 0) + 1
            pattern.total_requests += 1
            pattern.total_cost += cost
            pattern.cost_saved += cost_saved
            return copy.deepcopy(pattern)

    def get_pattern(self, user_id: str) -> Optional[UserPattern]:
        """Copy of the pattern for *user_id*, or None."""
        with self._lock:
            pattern = self._patterns.get(user_id)
            return copy.deepcopy(pattern) if pattern else None

    def patterns(self) -> Dict[str, UserPattern]:
        """Copy of every user pattern."""
        with self._lock:
            return copy.deepcopy(self._patterns)

    # ── Serialisation ─────────────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'max_size': self.max_size,
                'records': [r.to_dict() for r in self._records],
                'patterns': {uid: p.to_dict() for uid, p in self._patterns.items()},
            }

    def load_dict(self, data: Dict[str, Any]) -> None:
        """Replace the ledger contents with a dict produced by ``to_dict``."""
        records = [PerformanceRecord.from_dict(r) for r in data.get('records', [])]
        patterns = {uid: UserPattern(**p) for uid, p in data.get('patterns', {}).items()}
        with self._lock:
            self._records.clear()
            self._partitions.clear()
            for record in records:
                self.append(record)
            self._patterns = patterns
        _log.info("Loaded %d performance records and %d user patterns",
                  len(self._records), len(patterns))
