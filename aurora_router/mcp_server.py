"""
Aurora Router MCP Server

Exposes routing, learning and the experiment lifecycle as MCP tools for any
MCP-enabled agent.

Tools:
  - route(prompt, ...)              → provider/model decision (experiment aware)
  - learn(prompt, provider, ...)    → feed back a real execution outcome
  - create_experiment(config)       → register an A/B experiment (draft)
  - start_experiment(experiment_id) → draft → running
  - stop_experiment(experiment_id)  → running/paused → stopped
  - analyze_experiment(experiment_id) → significance test and recommendation

Usage:
    python -m aurora_router.mcp_server --workspace ./state
    # or
    from aurora_router.mcp_server import create_server
"""

from __future__ import annotations

import argparse
import logging
import sys
import uuid
from typing import Any, Dict, List, Optional

# ---------------------------------------------------------------------------
# Graceful MCP availability check
# ---------------------------------------------------------------------------
try:
    from mcp.server.fastmcp import FastMCP
    MCP_AVAILABLE = True
except ImportError:
    MCP_AVAILABLE = False
    FastMCP = None  # type: ignore

from aurora_router.assignment import VariantAssigner
from aurora_router.errors import ExperimentError
from aurora_router.experiments import ExperimentRegistry, ExperimentResult
from aurora_router.persistence import JsonFileStore
from aurora_router.predictor import prediction_accuracy
from aurora_router.registry import CompletionRequest, CompletionResponse, Usage
from aurora_router.router import Router, RoutingOptions

_log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared state
# ---------------------------------------------------------------------------

class ServerState:
    """Router, experiments and assignments shared by every tool call."""

    def __init__(self, workspace: Optional[str] = None, config_path: Optional[str] = None):
        self.router = Router(config_path=config_path)
        self.experiments = ExperimentRegistry()
        self.assigner = VariantAssigner(self.experiments, self.router.extractor)
        self.store = JsonFileStore(workspace) if workspace else None
        if self.store is not None:
            self.store.load_ledger(self.router.ledger)
            self.store.load_experiments(self.experiments)

    def save(self) -> None:
        if self.store is None:
            return
        self.store.save_ledger(self.router.ledger)
        self.store.save_experiments(self.experiments)


def _error(exc: ExperimentError) -> Dict[str, Any]:
    return {"error": str(exc), "status": exc.http_status}


# ---------------------------------------------------------------------------
# Server factory
# ---------------------------------------------------------------------------

def create_server(workspace: Optional[str] = None,
                  config_path: Optional[str] = None) -> "FastMCP":
    """Create and return the FastMCP server with aurora-router tools.

    Args:
        workspace: Directory for persisted learning data and experiments.
            State is kept in memory only when omitted.
        config_path: Optional router configuration directory.

    Returns:
        A configured ``FastMCP`` instance ready to run.

    Raises:
        ImportError: If the ``mcp`` package is not installed.
    """
    if not MCP_AVAILABLE:
        raise ImportError(
            "The 'mcp' package is required to run the aurora-router MCP server. "
            "Install it with: pip install mcp"
        )

    state = ServerState(workspace=workspace, config_path=config_path)
    mcp = FastMCP(
        name="aurora-router",
        instructions=(
            "Aurora Router: adaptive multi-provider routing with A/B experiments. "
            "Use route() to pick a provider/model, learn() to report the real "
            "outcome, and the *_experiment tools to run A/B tests."
        ),
    )

    # ------------------------------------------------------------------
    # Tool: route
    # ------------------------------------------------------------------
    @mcp.tool()
    def route(
        prompt: str,
        user_id: str = "anonymous",
        providers: Optional[List[str]] = None,
        optimize_for: str = "balanced",
        max_cost: Optional[float] = None,
        min_quality: Optional[float] = None,
        max_response_time: Optional[float] = None,
        experiment_id: Optional[str] = None,
        user_segments: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Choose the provider/model for a prompt.

        Args:
            prompt: The user prompt to route.
            user_id: Caller identity for per-user learning.
            providers: Providers available to the caller (default: all).
            optimize_for: ``cost``, ``speed``, ``quality`` or ``balanced``.
            max_cost: Hard ceiling on predicted cost (USD).
            min_quality: Hard floor on predicted quality (0-1).
            max_response_time: Hard ceiling on predicted latency (ms).
            experiment_id: Running experiment that may override the choice.
            user_segments: Segments of the user, for experiment filters.

        Returns:
            The routing decision as a dict. When the request takes part in
            the experiment, ``provider``/``model`` are the variant's and an
            ``experiment`` key names the variant.
        """
        request = CompletionRequest.from_prompt(prompt)
        decision = state.router.route(
            request,
            user_id=user_id,
            available_providers=providers,
            options=RoutingOptions(
                optimize_for=optimize_for,
                max_cost=max_cost,
                min_quality=min_quality,
                max_response_time=max_response_time,
            ),
        )
        result = decision.to_dict()

        if experiment_id and state.assigner.should_participate(
                experiment_id, user_id, request, user_segments):
            variant = state.assigner.assign_variant(experiment_id, user_id)
            variant_config = state.assigner.get_variant_config(experiment_id, variant)
            if variant_config is not None:
                result["provider"] = variant_config.provider
                result["model"] = variant_config.model
                result["experiment"] = {"id": experiment_id, "variant": variant}
        return result

    # ------------------------------------------------------------------
    # Tool: learn
    # ------------------------------------------------------------------
    @mcp.tool()
    def learn(
        prompt: str,
        provider: str,
        model: str,
        response: str,
        response_time_ms: float,
        user_id: str = "anonymous",
        cost: float = 0.0,
        finish_reason: str = "stop",
        user_satisfaction: Optional[float] = None,
        experiment_id: Optional[str] = None,
        variant: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Report the real outcome of an executed request.

        Args:
            prompt: The prompt that was sent.
            provider: Provider that served it.
            model: Model that served it.
            response: Response text.
            response_time_ms: Observed latency in milliseconds.
            user_id: Caller identity.
            cost: Billed cost in USD.
            finish_reason: Provider finish reason (``stop``, ``length``...).
            user_satisfaction: Optional 1-5 rating.
            experiment_id: Experiment the request took part in, if any.
            variant: Variant ('A' or 'B') served for the experiment.

        Returns:
            Dict with ``recorded`` (bool), the estimated ``quality`` and
            ``experiment_recorded`` when an experiment was named.
        """
        request = CompletionRequest.from_prompt(prompt)
        completion = CompletionResponse(
            content=response,
            finish_reason=finish_reason,
            usage=Usage(cost=cost),
            provider=provider,
            model=model,
        )
        prediction = state.router.predictor.predict(
            state.router.extractor.extract(request, user_id), provider, model)
        record = state.router.learn_from_execution(
            request, user_id, provider, model, completion, response_time_ms, user_satisfaction)
        result: Dict[str, Any] = {
            "recorded": record is not None,
            "quality": record.actual_quality if record is not None else None,
        }

        if experiment_id and variant and record is not None:
            accuracy = prediction_accuracy(
                prediction, record.actual_cost, record.actual_latency_ms, record.actual_quality)
            result["experiment_recorded"] = state.experiments.record_result(ExperimentResult(
                experiment_id=experiment_id,
                variant=variant,
                user_id=user_id,
                request_id=uuid.uuid4().hex,
                actual_cost=record.actual_cost,
                actual_response_time=record.actual_latency_ms,
                actual_quality=record.actual_quality,
                user_satisfaction=user_satisfaction,
                **accuracy,
            ))
        state.save()
        return result

    # ------------------------------------------------------------------
    # Experiment lifecycle tools
    # ------------------------------------------------------------------
    @mcp.tool()
    def create_experiment(config: Dict[str, Any]) -> Dict[str, Any]:
        """Register a new A/B experiment in draft status.

        Args:
            config: Experiment definition with ``id``, ``name``,
                ``variant_a``/``variant_b`` (provider, model, weight) and
                optional metrics, traffic allocation and stopping rules.

        Returns:
            The stored experiment, or ``{"error", "status"}`` on failure.
        """
        try:
            experiment = state.experiments.create_test(config)
        except ExperimentError as exc:
            return _error(exc)
        state.save()
        return {"id": experiment.id, "status": experiment.status.value,
                "config": experiment.config.to_dict()}

    @mcp.tool()
    def start_experiment(experiment_id: str) -> Dict[str, Any]:
        """Start a draft experiment."""
        try:
            experiment = state.experiments.start_test(experiment_id)
        except ExperimentError as exc:
            return _error(exc)
        state.save()
        return {"id": experiment.id, "status": experiment.status.value,
                "start_time": experiment.start_time}

    @mcp.tool()
    def stop_experiment(experiment_id: str, reason: str = "Manual stop") -> Dict[str, Any]:
        """Stop a running or paused experiment."""
        try:
            stopped = state.experiments.stop_test(experiment_id, reason)
            experiment = state.experiments.get_test(experiment_id)
        except ExperimentError as exc:
            return _error(exc)
        state.save()
        return {"id": experiment.id, "stopped": stopped, "status": experiment.status.value,
                "end_time": experiment.end_time}

    @mcp.tool()
    def analyze_experiment(experiment_id: str) -> Dict[str, Any]:
        """Analyze an experiment now and return the significance test."""
        try:
            analysis = state.experiments.analyze_test(experiment_id)
            experiment = state.experiments.get_test(experiment_id)
        except ExperimentError as exc:
            return _error(exc)
        state.save()
        return dict(analysis.to_dict(), experiment_status=experiment.status.value)

    return mcp


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def main() -> None:
    """Run the aurora-router MCP server (stdio transport by default)."""
    parser = argparse.ArgumentParser(
        description="Aurora Router MCP Server: expose adaptive routing over MCP."
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="stdio",
        help="MCP transport (default: stdio).",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host for SSE transport (default: 127.0.0.1).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8766,
        help="Port for SSE transport (default: 8766).",
    )
    parser.add_argument(
        "--workspace",
        default=None,
        help="Directory for persisted learning data and experiments.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Router configuration directory (default: packaged defaults).",
    )
    args = parser.parse_args()

    if not MCP_AVAILABLE:
        print(
            "ERROR: The 'mcp' package is not installed.\n"
            "Install it with: pip install mcp",
            file=sys.stderr,
        )
        sys.exit(1)

    server = create_server(workspace=args.workspace, config_path=args.config)

    if args.transport == "stdio":
        server.run(transport="stdio")
    else:
        server.settings.host = args.host
        server.settings.port = args.port
        server.run(transport="sse")


if __name__ == "__main__":
    main()
