"""Per-model inference pricing (USD per million tokens)."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ModelPrice:
    input_per_million: float
    output_per_million: float


FALLBACK_MODEL_ID = "amazon.titan-text-express-v1"

MODEL_PRICES: dict[str, ModelPrice] = {
    "amazon.titan-text-express-v1": ModelPrice(0.8, 3.2),
    "amazon.titan-text-lite-v1": ModelPrice(0.3, 1.2),
    "amazon.titan-embed-text-v1": ModelPrice(0.1, 0.1),
    "ai21.j2-mid-v1": ModelPrice(1.25, 1.25),
    "ai21.j2-ultra-v1": ModelPrice(3.75, 3.75),
    "meta.llama2-13b-chat-v1": ModelPrice(0.75, 0.75),
    "meta.llama2-70b-chat-v1": ModelPrice(2.65, 2.65),
    "meta.llama3-8b-instruct-v1:0": ModelPrice(0.6, 0.6),
    "meta.llama3-70b-instruct-v1:0": ModelPrice(2.65, 2.65),
    "anthropic.claude-3-haiku-20240307-v1:0": ModelPrice(0.25, 1.25),
    "anthropic.claude-3-sonnet-20240229-v1:0": ModelPrice(3.0, 15.0),
    "anthropic.claude-3-opus-20240229-v1:0": ModelPrice(15.0, 75.0),
}


def price_for(model_id: str) -> ModelPrice:
    return MODEL_PRICES.get(model_id) or MODEL_PRICES[FALLBACK_MODEL_ID]


def estimate_cost(model_id: str, input_tokens: int, output_tokens: int) -> float:
    price = price_for(model_id)
    return (
        max(input_tokens, 0) / 1_000_000 * price.input_per_million
        + max(output_tokens, 0) / 1_000_000 * price.output_per_million
    )
