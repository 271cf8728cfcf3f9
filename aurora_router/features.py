"""
Request feature extraction for Aurora Router.

Turns a raw completion request into a fixed feature vector: token estimate,
complexity score, request-type classification and the user pattern bucket
used for historical lookups. Deterministic keyword and length rules only.
"""

import hashlib
import math
import re
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, List, Tuple

from .config import Config
from .registry import CompletionRequest
from .utils import clamp


class RequestType(str, Enum):
    SIMPLE_CHAT = "simple_chat"
    COMPLEX_REASONING = "complex_reasoning"
    CODE_GENERATION = "code_generation"
    CREATIVE_WRITING = "creative_writing"
    ANALYSIS = "analysis"
    OTHER = "other"


@dataclass(frozen=True)
class RequestFeatures:
    """Derived, immutable summary of one request."""
    estimated_tokens: int
    complexity_score: float
    request_type: RequestType
    user_pattern_id: str
    message_count: int = 0
    prompt_length: int = 0
    has_code: bool = False
    has_system_message: bool = False
    required_capabilities: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['request_type'] = self.request_type.value
        data['required_capabilities'] = list(self.required_capabilities)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestFeatures":
        return cls(
            estimated_tokens=int(data.get('estimated_tokens', 0)),
            complexity_score=float(data.get('complexity_score', 0.0)),
            request_type=RequestType(data.get('request_type', RequestType.OTHER.value)),
            user_pattern_id=data.get('user_pattern_id', ''),
            message_count=int(data.get('message_count', 0)),
            prompt_length=int(data.get('prompt_length', 0)),
            has_code=bool(data.get('has_code', False)),
            has_system_message=bool(data.get('has_system_message', False)),
            required_capabilities=tuple(data.get('required_capabilities', ())),
        )


def user_pattern_id(user_id: str, request_type: RequestType) -> str:
    """Bucket id for a (user, request type) pair."""
    raw = f"{user_id}:{RequestType(request_type).value}"
    return hashlib.md5(raw.encode()).hexdigest()[:12]


_CODE_FENCE = re.compile(r"```")
_CODE_SYNTAX = re.compile(r"\b(def |class |function\s*\(|import |SELECT |CREATE TABLE)")


class FeatureExtractor:
    """Extracts RequestFeatures from completion requests using config rules."""

    def __init__(self, config: Config = None):
        """Initialize extractor.

        Args:
            config: Configuration with classification keywords. Packaged
                defaults are used when omitted.
        """
        self.config = config or Config()

    def extract(self, request: CompletionRequest, user_id: str = "") -> RequestFeatures:
        """Compute the feature vector of *request*.

        Never raises for a well-formed request; empty input yields zeroed
        features classified as ``other``.

        Args:
            request: Completion request (or a dict with ``messages``)
            user_id: Caller identity used for the user pattern bucket

        Returns:
            RequestFeatures for the request
        """
        if isinstance(request, dict):
            request = CompletionRequest.from_dict(request)

        messages = request.messages or []
        capabilities = tuple(request.required_capabilities)
        text = "\n".join(m.content for m in messages if m.content)

        if not text.strip():
            return RequestFeatures(
                estimated_tokens=0,
                complexity_score=0.0,
                request_type=RequestType.OTHER,
                user_pattern_id=user_pattern_id(user_id, RequestType.OTHER),
                message_count=len(messages),
                required_capabilities=capabilities,
            )

        prompt_length = len(text)
        has_code = bool(_CODE_FENCE.search(text))
        request_type = self.classify(text)

        return RequestFeatures(
            estimated_tokens=math.ceil(prompt_length / 4),
            complexity_score=self._complexity(
                text, len(messages), has_code, len(set(capabilities) | set(request.tools))),
            request_type=request_type,
            user_pattern_id=user_pattern_id(user_id, request_type),
            message_count=len(messages),
            prompt_length=prompt_length,
            has_code=has_code,
            has_system_message=any(m.role == 'system' for m in messages),
            required_capabilities=capabilities,
        )

    def classify(self, text: str) -> RequestType:
        """Classify *text* with the first matching rule of the cascade."""
        lower = text.lower()
        thresholds = self.config.get_length_thresholds()

        if _CODE_FENCE.search(text) or _CODE_SYNTAX.search(text) or self._matches(
                lower, self.config.get_code_keywords()):
            return RequestType.CODE_GENERATION
        if self._matches(lower, self.config.get_analysis_keywords()):
            return RequestType.ANALYSIS
        if self._matches(lower, self.config.get_creative_keywords()):
            return RequestType.CREATIVE_WRITING
        if (self._matches(lower, self.config.get_reasoning_keywords())
                or len(text) > thresholds.get('complex_min', 500)):
            return RequestType.COMPLEX_REASONING
        if len(text) <= thresholds.get('simple_chat_max', 200):
            return RequestType.SIMPLE_CHAT
        return RequestType.OTHER

    @staticmethod
    def _matches(text_lower: str, keywords: List[str]) -> bool:
        return any(keyword in text_lower for keyword in keywords)

    def _complexity(self, text: str, message_count: int, has_code: bool,
                    extra_requirements: int) -> float:
        """Combine length, code fences, message count and keywords into [0, 1]."""
        long_prompt = self.config.get_length_thresholds().get('long_prompt', 2000)
        score = min(1.0, len(text) / long_prompt) * 0.4
        if has_code:
            score += 0.3
        score += min(1.0, max(0, message_count - 1) / 10) * 0.2

        lower = text.lower()
        keyword_hits = sum(1 for kw in self.config.get_complexity_keywords() if kw in lower)
        score += min(keyword_hits, 3) * 0.05
        score += 0.1 * extra_requirements
        return round(clamp(score), 4)
