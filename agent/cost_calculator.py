"""
Precio en USD de una llamada según MODEL_PRICING (USD por millón de tokens).
"""
import logging
import re
from typing import Optional

from agent.config import MODEL_PRICING, ModelPricing, config

logger = logging.getLogger(__name__)

_TOKENS_PER_PRICE_UNIT = 1_000_000

# gpt-4o-mini-2024-07-18 → gpt-4o-mini
_SNAPSHOT_SUFFIX = re.compile(r"-\d{4}-\d{2}-\d{2}$")


def pricing_for(model_name: str) -> Optional[ModelPricing]:
    """Precio del modelo; los snapshots fechados usan el del modelo base."""
    pricing = MODEL_PRICING.get(model_name)
    if pricing is None and model_name:
        pricing = MODEL_PRICING.get(_SNAPSHOT_SUFFIX.sub("", model_name))
    return pricing


def calculate_cost(tokens_in: int, tokens_out: int, model_name: str) -> float:
    """
    Costo estimado de una llamada. Modelos sin precio cargado → 0.0 con
    warning. Con Ollama todo es gratis.
    """
    if config.is_local:
        return 0.0

    pricing = pricing_for(model_name)
    if pricing is None:
        logger.warning("No pricing for model '%s', recording $0.00", model_name)
        return 0.0

    return (
        tokens_in * pricing.input_price + tokens_out * pricing.output_price
    ) / _TOKENS_PER_PRICE_UNIT


def format_cost(cost: float) -> str:
    """'$0.000123': seis decimales, los embeddings cuestan fracciones de centavo."""
    return f"${cost:.6f}"
