"""Scorer protocol and the per-run scorer registry."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Callable, Iterator, Optional, Protocol, runtime_checkable

from refineloop.core.calls import call_external
from refineloop.core.errors import ConfigurationInvalid, ScorerUnavailable
from refineloop.models import Candidate, MissingSignal, ScoreResult, SignalOutcome

logger = logging.getLogger(__name__)


@runtime_checkable
class Scorer(Protocol):
    """Protocol for a single scoring signal.

    Scorers are independent functions of (candidate, reference, context)
    and share no state, so the registry may run them concurrently.
    score may be sync or async. A scorer that cannot score raises
    ScorerUnavailable rather than returning 0.
    """

    @property
    def name(self) -> str:
        """Unique signal name for this scorer."""
        ...

    def score(self, candidate: Candidate, reference: Any, context: Any) -> ScoreResult:
        """Score the candidate against the reference."""
        ...


class FunctionScorer:
    """Adapts a plain (or async) function into a Scorer."""

    def __init__(self, name: str, fn: Callable[..., Any]) -> None:
        self.name = name
        self.fn = fn
        self.score = fn

    def __repr__(self) -> str:
        return f"FunctionScorer({self.name!r})"


class ScorerRegistry:
    """Ordered set of named scorers.

    Registration order is significant: it is the order of the aggregate
    breakdown and the tie-break order for instructions.
    """

    def __init__(self, scorers: Optional[list[Scorer]] = None) -> None:
        self._scorers: dict[str, Scorer] = {}
        for s in scorers or []:
            self.register(s)

    def register(self, scorer: Scorer) -> Scorer:
        """Register a scorer instance.

        Raises:
            ConfigurationInvalid: if a scorer with the same name exists.
        """
        if not scorer.name:
            raise ConfigurationInvalid(f"Scorer {scorer!r} has no name")
        if scorer.name in self._scorers:
            raise ConfigurationInvalid(f"Scorer '{scorer.name}' is already registered")
        self._scorers[scorer.name] = scorer
        return scorer

    def scorer(self, name: str):
        """Decorator for registering a scoring function.

        Usage:
            registry = ScorerRegistry()

            @registry.scorer("factuality")
            async def factuality(candidate, reference, context) -> ScoreResult:
                ...
        """

        def decorator(fn):
            self.register(FunctionScorer(name, fn))
            return fn

        return decorator

    @property
    def names(self) -> list[str]:
        return list(self._scorers)

    def __len__(self) -> int:
        return len(self._scorers)

    def __contains__(self, name: object) -> bool:
        return name in self._scorers

    def __iter__(self) -> Iterator[Scorer]:
        return iter(self._scorers.values())

    async def _score_one(
        self,
        name: str,
        scorer: Scorer,
        candidate: Candidate,
        reference: Any,
        context: Any,
        timeout: Optional[float],
    ) -> SignalOutcome:
        try:
            result = await call_external(
                scorer.score, candidate, reference, context, timeout=timeout
            )
        except asyncio.TimeoutError:
            reason = f"timed out after {timeout}s"
        except ScorerUnavailable as e:
            reason = str(e) or "scorer unavailable"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
        else:
            if isinstance(result, ScoreResult):
                if result.signal != name:
                    result = dataclasses.replace(result, signal=name)
                return result
            reason = f"returned {type(result).__name__}, expected ScoreResult"

        logger.warning("Signal '%s' unavailable for candidate v%d: %s", name, candidate.version, reason)
        return MissingSignal(signal=name, reason=reason)

    async def score_all(
        self,
        candidate: Candidate,
        reference: Any,
        context: Any = None,
        timeout: Optional[float] = None,
    ) -> dict[str, SignalOutcome]:
        """Run every scorer concurrently and wait for all of them.

        Individual failures never propagate: they come back as MissingSignal.
        The result preserves registration order.
        """
        names = self.names
        outcomes = await asyncio.gather(
            *(
                self._score_one(name, self._scorers[name], candidate, reference, context, timeout)
                for name in names
            )
        )
        return dict(zip(names, outcomes))
