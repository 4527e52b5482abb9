# refineloop/aggregation.py

from __future__ import annotations

import math
from typing import Mapping, Optional

from refineloop.core.errors import ConfigurationInvalid, NoScorersAvailable
from refineloop.models import AggregateScore, MissingSignal, ScoreResult, SignalOutcome


def aggregate(
    results: Mapping[str, Optional[SignalOutcome]],
    weights: Mapping[str, float],
) -> AggregateScore:
    """Combine per-signal scores into one weighted total.

    total = sum(w[s] * v[s]) / sum(w[s]) over signals that have a result.

    Missing signals (absent from results, None, or MissingSignal) are left
    out of both numerator and denominator, so one unavailable signal does
    not drag the total down. Weights need not sum to 1.

    This is a pure function: deterministic, no side effects.

    Raises:
        NoScorersAvailable: no weighted signal produced a result.
        ConfigurationInvalid: a negative or non-finite weight, a scored signal
            with no weight, or weights too large to combine.
    """
    for signal, weight in weights.items():
        if not math.isfinite(weight) or weight < 0:
            raise ConfigurationInvalid(
                f"Weight for signal '{signal}' must be finite and non-negative: {weight}"
            )

    breakdown: dict[str, ScoreResult] = {}
    missing: dict[str, MissingSignal] = {}

    for signal, outcome in results.items():
        if isinstance(outcome, ScoreResult):
            if signal not in weights:
                raise ConfigurationInvalid(f"No weight configured for signal '{signal}'")
            breakdown[signal] = outcome
        elif isinstance(outcome, MissingSignal):
            missing[signal] = outcome
        else:
            missing[signal] = MissingSignal(signal=signal, reason="not scored")

    for signal in weights:
        if signal not in results:
            missing[signal] = MissingSignal(signal=signal, reason="not scored")

    denominator = sum(weights[s] for s in breakdown)
    if not breakdown or denominator <= 0:
        raise NoScorersAvailable(
            f"No weighted signal available; missing: {sorted(missing)}"
        )

    numerator = sum(weights[s] * result.value for s, result in breakdown.items())
    raw_total = numerator / denominator
    if not math.isfinite(raw_total):
        raise ConfigurationInvalid(f"Weights produced a non-finite total: {raw_total}")
    total = max(0.0, min(1.0, raw_total))

    return AggregateScore(
        total=total,
        breakdown=breakdown,
        weights={s: float(w) for s, w in weights.items()},
        missing=missing,
    )
