#!/usr/bin/env python3
"""
Aurora Router Quickstart Example

Demonstrates routing, learning from simulated outcomes and a small A/B
experiment. No API calls are made: provider responses are simulated.
"""

import random

from aurora_router import (
    CompletionRequest,
    CompletionResponse,
    ExperimentRegistry,
    ExperimentResult,
    Router,
    RoutingOptions,
    Usage,
    VariantAssigner,
)

# Simulated provider behaviour: (latency ms, cost USD)
SIMULATED = {
    ("openai", "gpt-4o-mini"): (450.0, 0.0003),
    ("anthropic", "claude-3-haiku-20240307"): (380.0, 0.0008),
    ("google", "gemini-1.5-flash"): (520.0, 0.0006),
}


def simulate(provider, model, rng):
    latency, cost = SIMULATED.get((provider, model), (900.0, 0.005))
    content = "Here is a concise, helpful answer to your question."
    response = CompletionResponse(content=content, usage=Usage(cost=cost),
                                  provider=provider, model=model)
    return response, latency * rng.uniform(0.8, 1.2)


def main():
    """Run quickstart demonstration."""
    print("=== Aurora Router Quickstart ===\n")
    rng = random.Random(7)
    router = Router()
    providers = ["openai", "anthropic", "google"]

    print("1. Routing a few prompts...")
    prompts = [
        "Hello!",
        "Write a function that parses a CSV file into dictionaries",
        "Analyze the trade-offs between REST and GraphQL for a mobile backend",
        "Write a short poem about autumn in the city",
    ]
    for prompt in prompts:
        request = CompletionRequest.from_prompt(prompt)
        decision = router.route(request, user_id="demo", available_providers=providers,
                                options=RoutingOptions(optimize_for="cost"))
        print(f"\n   Prompt: {prompt}")
        print(f"   → {decision.provider}/{decision.model} "
              f"(type: {decision.request_type}, confidence: {decision.confidence:.2f})")
        print(f"   → Predicted cost: ${decision.predicted_cost:.4f}, "
              f"latency: {decision.predicted_latency_ms:.0f}ms")

    print("\n2. Learning from 40 simulated executions...")
    request = CompletionRequest.from_prompt("Hello!")
    for _ in range(40):
        decision = router.route(request, user_id="demo", available_providers=providers)
        response, latency = simulate(decision.provider, decision.model, rng)
        router.learn_from_execution(request, "demo", decision.provider, decision.model,
                                    response, latency, user_satisfaction=rng.choice([4, 5]))

    decision = router.route(request, user_id="demo", available_providers=providers)
    print(f"   After learning: {decision.provider}/{decision.model} "
          f"(confidence: {decision.confidence:.2f})")
    print(f"   {decision.reasoning}")

    insights = router.get_insights("demo")
    print(f"\n   Decisions: {insights['total_decisions']}, "
          f"learning records: {insights['learning_records']}")
    print(f"   Cost saved vs baseline: ${insights['total_cost_saved']:.4f}")
    print(f"   Cost prediction accuracy: {insights['accuracy']['cost_accuracy']:.2f}")

    print("\n3. Explaining a decision:")
    explanation = router.explain(CompletionRequest.from_prompt("Debug this stack trace"),
                                 user_id="demo", available_providers=providers)
    for line in explanation["summary"].splitlines():
        print(f"   {line}")

    print("\n4. Running an A/B experiment...")
    registry = ExperimentRegistry()
    registry.create_test({
        "id": "mini-vs-haiku",
        "name": "gpt-4o-mini vs claude-3-haiku",
        "variant_a": {"provider": "openai", "model": "gpt-4o-mini", "weight": 0.5},
        "variant_b": {"provider": "anthropic", "model": "claude-3-haiku-20240307", "weight": 0.5},
        "primary_metric": "response_time",
        "secondary_metrics": ["cost"],
        "min_sample_size": 30,
    })
    registry.start_test("mini-vs-haiku")
    assigner = VariantAssigner(registry, seed=7)

    for i in range(200):
        user_id = f"user-{i}"
        if not assigner.should_participate("mini-vs-haiku", user_id, request):
            continue
        variant = assigner.assign_variant("mini-vs-haiku", user_id)
        config = assigner.get_variant_config("mini-vs-haiku", variant)
        response, latency = simulate(config.provider, config.model, rng)
        registry.record_result(ExperimentResult(
            experiment_id="mini-vs-haiku",
            variant=variant,
            user_id=user_id,
            actual_cost=response.usage.cost,
            actual_response_time=latency,
        ))

    analysis = registry.analyze_test("mini-vs-haiku")
    print(f"   Samples: {analysis.sample_sizes}")
    print(f"   Status: {analysis.status.value} (p={analysis.p_value})")
    print(f"   Recommendation: {analysis.recommendation.value}")
    print(f"   {analysis.reason}")

    print("\n" + "=" * 60)
    print("Quickstart complete!")


if __name__ == "__main__":
    main()
