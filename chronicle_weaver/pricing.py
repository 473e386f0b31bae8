"""Usage and cost accounting.

Rates are estimates in USD. Token rates are per single token (the
published per-million prices divided by 1e6); image rates are per image.
Premium images are charged at the same per-image rate as standard images
of the tier they were generated on.
"""

from __future__ import annotations

from typing import NamedTuple

from chronicle_weaver.models import Provider, Tier, Usage, UsageStats


class Rates(NamedTuple):
    input: float
    output: float
    image: float


PRICING: dict[tuple[Provider, str], Rates] = {
    (Provider.GEMINI, "base"): Rates(0.1 / 1_000_000, 0.4 / 1_000_000, 0.0008),      # flash
    (Provider.GEMINI, "elevated"): Rates(1.25 / 1_000_000, 5.0 / 1_000_000, 0.04),   # pro
    (Provider.OPENAI, "base"): Rates(0.5 / 1_000_000, 1.5 / 1_000_000, 0.02),        # gpt-3.5
    (Provider.OPENAI, "elevated"): Rates(10 / 1_000_000, 30 / 1_000_000, 0.04),      # gpt-4
    (Provider.CLAUDE, "base"): Rates(0.25 / 1_000_000, 1.25 / 1_000_000, 0.03),      # haiku
    (Provider.CLAUDE, "elevated"): Rates(3 / 1_000_000, 15 / 1_000_000, 0.06),       # sonnet
}

FALLBACK_RATES = PRICING[(Provider.GEMINI, "base")]


def rates_for(provider: str, tier: str = "base") -> Rates:
    """Look up rates; unknown providers get Gemini base rates, unknown tiers get base."""
    try:
        provider = Provider(provider)
    except ValueError:
        return FALLBACK_RATES
    if tier != "elevated":
        tier = "base"
    return PRICING[(provider, tier)]


def estimate_cost(
    input_tokens: int,
    output_tokens: int,
    images: int,
    premium_images: int,
    provider: str = Provider.GEMINI,
    tier: Tier = "base",
) -> float:
    rates = rates_for(provider, tier)
    text_cost = input_tokens * rates.input + output_tokens * rates.output
    image_cost = images * rates.image + premium_images * rates.image
    return text_cost + image_cost


def accumulate(
    stats: UsageStats,
    usage: Usage,
    images: int = 0,
    premium_images: int = 0,
    tier: Tier = "base",
) -> UsageStats:
    """Fold one envelope's usage into running totals, returning a new UsageStats."""
    cost = estimate_cost(
        usage.input_tokens, usage.output_tokens, images, premium_images, usage.provider, tier
    )
    return UsageStats(
        input_tokens=stats.input_tokens + usage.input_tokens,
        output_tokens=stats.output_tokens + usage.output_tokens,
        image_count=stats.image_count + images,
        premium_image_count=stats.premium_image_count + premium_images,
        estimated_cost=stats.estimated_cost + cost,
    )
