"""Sparks pricing: per-model multipliers applied to token counts."""

from __future__ import annotations

import math
from fractions import Fraction
from typing import Mapping, Optional

from sparks_chat.core.errors import UnknownModel

CHARS_PER_TOKEN = 4


def estimate_token_count(text: str) -> int:
    """Rough token count for English text (~4 characters per token)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class PricingTable:
    """Maps model ids to exact multipliers (>= 1) and prices token usage in sparks."""

    def __init__(self, multipliers: Mapping[str, Fraction], min_cost: int = 1):
        for model_id, multiplier in multipliers.items():
            if multiplier < 1:
                raise ValueError(f"Multiplier for {model_id} must be >= 1")
        self._multipliers = dict(multipliers)
        self._min_cost = min_cost

    @property
    def model_ids(self) -> list[str]:
        return list(self._multipliers)

    def knows(self, model_id: str) -> bool:
        return model_id in self._multipliers

    def multiplier(self, model_id: str) -> Fraction:
        try:
            return self._multipliers[model_id]
        except KeyError:
            raise UnknownModel(model_id) from None

    def cost(self, model_id: str, input_tokens: int, output_tokens: Optional[int] = None) -> int:
        """``ceil(multiplier * (input + output))``, floored at the minimum cost.

        When *output_tokens* is omitted the output is assumed to be as long as
        the input.
        """
        if output_tokens is None:
            output_tokens = input_tokens
        if input_tokens < 0 or output_tokens < 0:
            raise ValueError("Token counts must be non-negative")
        multiplier = self.multiplier(model_id)
        # Fraction keeps the product exact; math.ceil on a Fraction returns an int.
        sparks = math.ceil(multiplier * (input_tokens + output_tokens))
        return max(self._min_cost, sparks)
