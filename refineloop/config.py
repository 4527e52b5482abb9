"""Convergence run configuration.

One explicit RunConfig per run, validated once before the run starts
and never mutated afterwards.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from typing import Any, Iterable, Mapping, Optional

from refineloop.core.errors import ConfigurationInvalid


@dataclass(frozen=True)
class RunConfig:
    """Configurable parameters for the convergence loop.

    Declarative: behavior is driven by these values, not if-else chains.
    An empty weights mapping weights every registered signal equally.
    """

    weights: Mapping[str, float] = field(default_factory=dict)
    converged_threshold: float = 0.9
    max_iterations: int = 10
    checkpoint_interval: int = 3
    severity_floor: float = 0.0
    excluded_aspects: frozenset[str] = frozenset()
    scorer_timeout_seconds: Optional[float] = 60.0
    transform_timeout_seconds: Optional[float] = 600.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RunConfig:
        """Build from a plain mapping (e.g. parsed JSON). Unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationInvalid(f"Unknown run configuration option(s): {unknown}")
        values = dict(data)
        if "weights" in values:
            values["weights"] = dict(values["weights"])
        if "excluded_aspects" in values:
            values["excluded_aspects"] = frozenset(values["excluded_aspects"])
        config = cls(**values)
        config.validate()
        return config

    def validate(self, signals: Optional[Iterable[str]] = None) -> None:
        """Reject invalid values. With signals, also check weight coverage.

        Raises:
            ConfigurationInvalid: on the first problem found.
        """
        for name, weight in self.weights.items():
            if not isinstance(weight, (int, float)) or not math.isfinite(weight) or weight < 0:
                raise ConfigurationInvalid(
                    f"Weight for signal '{name}' must be a finite non-negative number, got {weight!r}"
                )
        if self.weights and sum(self.weights.values()) <= 0:
            raise ConfigurationInvalid("At least one signal weight must be positive")
        if not math.isfinite(sum(self.weights.values())):
            raise ConfigurationInvalid("Signal weights overflow when summed")
        if not 0.0 <= self.converged_threshold <= 1.0:
            raise ConfigurationInvalid(
                f"converged_threshold must be in [0, 1], got {self.converged_threshold!r}"
            )
        if self.max_iterations <= 0:
            raise ConfigurationInvalid(
                f"max_iterations must be positive, got {self.max_iterations!r}"
            )
        if self.checkpoint_interval <= 0:
            raise ConfigurationInvalid(
                f"checkpoint_interval must be positive, got {self.checkpoint_interval!r}"
            )
        if not 0.0 <= self.severity_floor <= 1.0:
            raise ConfigurationInvalid(
                f"severity_floor must be in [0, 1], got {self.severity_floor!r}"
            )
        for name in ("scorer_timeout_seconds", "transform_timeout_seconds"):
            timeout = getattr(self, name)
            if timeout is not None and timeout <= 0:
                raise ConfigurationInvalid(f"{name} must be positive or None, got {timeout!r}")

        if signals is None:
            return
        signals = list(signals)
        if not signals:
            raise ConfigurationInvalid("No scorers registered")
        if self.weights:
            unweighted = [s for s in signals if s not in self.weights]
            if unweighted:
                raise ConfigurationInvalid(f"No weight configured for signal(s): {unweighted}")
            unknown = sorted(set(self.weights) - set(signals))
            if unknown:
                raise ConfigurationInvalid(f"Weights given for unregistered signal(s): {unknown}")

    def weights_for(self, signals: Iterable[str]) -> dict[str, float]:
        """Resolve the weight mapping for the registered signals."""
        if self.weights:
            return {s: float(self.weights[s]) for s in signals}
        return {s: 1.0 for s in signals}

    @property
    def checkpoint_reachable(self) -> bool:
        """False when the budget always runs out before the first checkpoint."""
        return self.checkpoint_interval < self.max_iterations
