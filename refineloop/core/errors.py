"""Exception hierarchy for refineloop.

RefineLoopError is the root. All exceptions inherit from it so callers
can catch broad categories or specific types.
"""

from __future__ import annotations

from typing import Optional


class RefineLoopError(Exception):
    """Root exception for the entire project."""


# --- Shared errors ---


class ConfigError(RefineLoopError):
    """Configuration errors: missing API key, invalid config values."""


class ConfigurationInvalid(ConfigError):
    """Run configuration rejected before the run starts.

    Negative weights, max_iterations <= 0, checkpoint_interval <= 0, and
    similar. Never raised mid-run.
    """


class LLMError(RefineLoopError):
    """LLM API call failures: network errors, rate limits, malformed responses."""


# --- Convergence loop ---


class LoopError(RefineLoopError):
    """Base for all convergence loop errors."""


class ScorerUnavailable(LoopError):
    """A single scorer could not produce a score (upstream down, timeout).

    Recoverable: the signal is excluded from aggregation.
    """

    def __init__(self, message: str = "", signal: Optional[str] = None) -> None:
        super().__init__(message)
        self.signal = signal


class NoScorersAvailable(LoopError):
    """Every signal for a candidate was unavailable. Fatal for the iteration."""


class TransformFailed(LoopError):
    """The external transform errored or timed out. Fatal for the run."""


class RunCancelled(LoopError):
    """The run was cancelled between iterations by an external request."""
