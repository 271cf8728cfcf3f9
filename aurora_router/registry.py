"""
Provider catalogue and request/response shapes for Aurora Router.

The router never talks to providers itself. It consumes the abstract
request, response and cost shapes defined here; the host application owns
the concrete :class:`Provider` implementations that make the HTTP calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .config import Config


# ── Request / response shapes ─────────────────────────────────────────────────

@dataclass
class ChatMessage:
    """A single chat message."""
    role: str
    content: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(role=str(data.get('role', 'user')), content=str(data.get('content') or ''))


@dataclass
class CompletionRequest:
    """An inbound AI completion request, stripped to what routing needs."""
    messages: List[ChatMessage] = field(default_factory=list)
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    tools: List[str] = field(default_factory=list)
    required_capabilities: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompletionRequest":
        """Build a request from a plain dict (e.g. a parsed JSON body)."""
        return cls(
            messages=[
                m if isinstance(m, ChatMessage) else ChatMessage.from_dict(m)
                for m in data.get('messages', [])
            ],
            model=data.get('model'),
            max_tokens=data.get('max_tokens'),
            tools=list(data.get('tools', [])),
            required_capabilities=list(data.get('required_capabilities', [])),
        )

    @classmethod
    def from_prompt(cls, prompt: str, **kwargs: Any) -> "CompletionRequest":
        """Convenience constructor for a single user message."""
        return cls(messages=[ChatMessage(role='user', content=prompt)], **kwargs)


@dataclass
class Usage:
    """Token usage and billed cost of a completed request."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class CompletionResponse:
    """The part of a provider response the learning loop looks at."""
    content: str = ""
    finish_reason: Optional[str] = "stop"
    usage: Usage = field(default_factory=Usage)
    provider: str = ""
    model: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompletionResponse":
        """Build a response from a plain dict.

        Accepts either a flat ``content`` key or an OpenAI-style
        ``choices[0].message.content`` layout.
        """
        content = data.get('content')
        finish_reason = data.get('finish_reason', 'stop')
        choices = data.get('choices')
        if content is None and choices:
            first = choices[0]
            content = (first.get('message') or {}).get('content', '')
            finish_reason = first.get('finish_reason', finish_reason)
        usage = data.get('usage') or {}
        if not isinstance(usage, Usage):
            usage = Usage(
                prompt_tokens=int(usage.get('prompt_tokens', 0)),
                completion_tokens=int(usage.get('completion_tokens', 0)),
                cost=float(usage.get('cost', 0.0)),
            )
        return cls(
            content=content or '',
            finish_reason=finish_reason,
            usage=usage,
            provider=data.get('provider', ''),
            model=data.get('model', ''),
        )


@runtime_checkable
class Provider(Protocol):
    """Upstream provider adapter, implemented by the host application."""

    def chat(self, request: CompletionRequest, api_key: str) -> CompletionResponse:
        ...

    def estimate_cost(self, request: CompletionRequest) -> float:
        ...


# ── Catalogue ─────────────────────────────────────────────────────────────────

@dataclass
class ModelInfo:
    """Static baseline information about one provider model."""
    provider: str
    name: str
    cost_per_request: float
    base_latency_ms: float
    quality: float
    capabilities: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.provider}/{self.name}"

    def has_capability(self, capability: str) -> bool:
        """Check if model has a specific capability (e.g. 'vision', 'code')."""
        return capability in self.capabilities


class ProviderCatalog:
    """Registry of known providers and their models, in declaration order."""

    def __init__(self, config: Config):
        """Initialize the catalogue.

        Args:
            config: Configuration instance with provider definitions
        """
        self.config = config
        self._models: Dict[str, List[ModelInfo]] = self._load_models()

    def _load_models(self) -> Dict[str, List[ModelInfo]]:
        models: Dict[str, List[ModelInfo]] = {}
        for provider_def in self.config.get_providers():
            provider = provider_def['name']
            base_latency = provider_def.get('base_latency_ms', 2000)
            models[provider] = [
                ModelInfo(
                    provider=provider,
                    name=model_def['name'],
                    cost_per_request=model_def.get('cost_per_request', 0.01),
                    base_latency_ms=model_def.get('avg_latency_ms', base_latency),
                    quality=model_def.get('quality', 0.8),
                    capabilities=list(model_def.get('capabilities', [])),
                )
                for model_def in provider_def.get('models', [])
            ]
        return models

    def providers(self) -> List[str]:
        """Get provider names in declaration order."""
        return list(self._models.keys())

    def models_for(self, provider: str) -> List[ModelInfo]:
        """Get the known models of *provider* in declaration order."""
        return list(self._models.get(provider, []))

    def get_model(self, provider: str, model: str) -> Optional[ModelInfo]:
        """Get a model by provider and name, or None."""
        for info in self._models.get(provider, []):
            if info.name == model:
                return info
        return None

    def add_model(self, model_info: ModelInfo) -> None:
        """Add or replace a model, creating its provider entry if needed."""
        models = [m for m in self._models.get(model_info.provider, []) if m.name != model_info.name]
        models.append(model_info)
        self._models[model_info.provider] = models
