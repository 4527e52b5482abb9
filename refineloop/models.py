"""refineloop data models and convergence state.

Contains all dataclasses that cross module boundaries within refineloop.
LoopState is the LangGraph TypedDict for the convergence loop.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Optional, TypedDict, Union

from refineloop.core.errors import LoopError, NoScorersAvailable, RunCancelled, TransformFailed


# --- Enums ---


class Decision(str, Enum):
    """Per-iteration verdict of the convergence policy."""

    CONTINUE = "continue"
    CONVERGED = "converged"
    BUDGET_EXHAUSTED = "budget_exhausted"
    AWAIT_HUMAN_CHECKPOINT = "await_human_checkpoint"

    @property
    def is_terminal(self) -> bool:
        return self in (Decision.CONVERGED, Decision.BUDGET_EXHAUSTED)


class HumanVerdict(str, Enum):
    """Answer given at a human checkpoint."""

    APPROVE = "approve"
    REJECT_CONTINUE = "reject_continue"
    REJECT_ABORT = "reject_abort"


class Severity(str, Enum):
    """Named severity levels, for collaborators that do not emit numbers."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Numeric level for each named severity. Findings carry the number.
SEVERITY_LEVELS: dict[Severity, float] = {
    Severity.HIGH: 1.0,
    Severity.MEDIUM: 0.5,
    Severity.LOW: 0.2,
}


class RunOutcome(str, Enum):
    """How a convergence run ended."""

    CONVERGED = "converged"
    BUDGET_EXHAUSTED = "budget_exhausted"
    CANCELLED = "cancelled"
    FAILED = "failed"


class FailureStage(str, Enum):
    """Loop stage at which a run was aborted."""

    AGGREGATE = "aggregate"
    INSTRUCT = "instruct"
    CHECKPOINT = "checkpoint"
    TRANSFORM = "transform"


def _check_unit_interval(name: str, value: float) -> None:
    # NaN fails both comparisons
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value!r}")


# --- Dataclasses ---


@dataclass(frozen=True)
class Candidate:
    """The artifact under refinement. Opaque to the engine.

    Immutable. A transformer produces a new version instead of mutating.
    """

    ref: Any
    version: int = 0

    def next(self, ref: Any) -> Candidate:
        """Create the successor version holding a new reference."""
        return Candidate(ref=ref, version=self.version + 1)


@dataclass(frozen=True)
class Finding:
    """One structured deviation reported by a scorer.

    severity is a number in [0, 1]; use SEVERITY_LEVELS to convert names.
    """

    aspect: str
    severity: float
    expected: Optional[str] = None
    actual: Optional[str] = None
    suggestion: Optional[str] = None

    def __post_init__(self) -> None:
        _check_unit_interval("Finding.severity", self.severity)


@dataclass(frozen=True)
class ScoreResult:
    """Output of one scorer for one candidate."""

    signal: str
    value: float
    findings: tuple[Finding, ...] = ()

    def __post_init__(self) -> None:
        _check_unit_interval("ScoreResult.value", self.value)


@dataclass(frozen=True)
class MissingSignal:
    """A signal that was not scored. Distinct from a score of 0."""

    signal: str
    reason: str


SignalOutcome = Union[ScoreResult, MissingSignal]


@dataclass(frozen=True)
class AggregateScore:
    """Weighted total for one candidate, with the per-signal breakdown.

    breakdown preserves scorer registration order.
    """

    total: float
    breakdown: dict[str, ScoreResult]
    weights: dict[str, float]
    missing: dict[str, MissingSignal] = field(default_factory=dict)

    @property
    def available_signals(self) -> list[str]:
        return list(self.breakdown)

    def findings(self) -> list[tuple[str, Finding]]:
        """All findings as (signal, finding) pairs in registration order."""
        return [
            (signal, finding)
            for signal, result in self.breakdown.items()
            for finding in result.findings
        ]


@dataclass(frozen=True)
class Instruction:
    """One atomic corrective directive for the transformer."""

    aspect: str
    severity: float
    text: str
    signal: Optional[str] = None

    def to_prompt_context(self) -> str:
        """Format for inclusion in transformer LLM prompts."""
        return f"[{self.severity:.2f}] {self.aspect}: {self.text}"


@dataclass(frozen=True)
class HumanFeedback:
    """A checkpoint verdict plus optional free-text notes for the next transform."""

    verdict: HumanVerdict
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class IterationRecord:
    """One history entry: the candidate, its score and the decision taken.

    score is None only when aggregation failed for this iteration.
    """

    iteration: int
    candidate: Candidate
    score: Optional[AggregateScore]
    decision: Optional[Decision]
    instructions: tuple[Instruction, ...] = ()
    verdict: Optional[HumanVerdict] = None


@dataclass(frozen=True)
class RunFailure:
    """Which stage aborted the run, and when."""

    stage: FailureStage
    iteration: int
    message: str
    error_type: str


@dataclass(frozen=True)
class RunResult:
    """Final output of one convergence run.

    best_candidate is the highest-scoring candidate in history (earliest on
    ties), or the last candidate seen when nothing was scored.
    """

    outcome: RunOutcome
    decision: Optional[Decision]
    best_candidate: Optional[Candidate]
    best_score: Optional[AggregateScore]
    history: list[IterationRecord]
    elapsed_seconds: float
    iterations: int
    failure: Optional[RunFailure] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (RunOutcome.CONVERGED, RunOutcome.BUDGET_EXHAUSTED)

    @property
    def score_history(self) -> list[float]:
        return [r.score.total for r in self.history if r.score is not None]

    def raise_for_outcome(self) -> None:
        """Raise the exception matching a cancelled or failed run."""
        if self.outcome == RunOutcome.CANCELLED:
            raise RunCancelled(f"Run cancelled after {self.iterations} iteration(s)")
        if self.outcome != RunOutcome.FAILED or self.failure is None:
            return
        message = (
            f"{self.failure.stage.value} failed at iteration "
            f"{self.failure.iteration}: {self.failure.message}"
        )
        if self.failure.error_type == NoScorersAvailable.__name__:
            raise NoScorersAvailable(message)
        if self.failure.stage == FailureStage.TRANSFORM:
            raise TransformFailed(message)
        raise LoopError(message)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready view of the run. Candidate refs are summarized, never copied."""
        return _to_plain(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)


def _ref_to_plain(ref: Any) -> Any:
    if ref is None or isinstance(ref, (str, int, float, bool)):
        return ref
    if isinstance(ref, (bytes, bytearray)):
        return f"<{len(ref)} bytes>"
    return repr(ref)


def _to_plain(value: Any) -> Any:
    # Opaque refs may hold live handles, so they are never deep-copied.
    if isinstance(value, Candidate):
        return {"ref": _ref_to_plain(value.ref), "version": value.version}
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value


# --- Convergence Loop State (LangGraph TypedDict) ---


class LoopState(TypedDict, total=False):
    """LangGraph state for one convergence run.

    total=False: all fields optional, enabling incremental building.
    Only the loop's graph nodes write to it.
    """

    # Set at run start
    candidate: Candidate
    reference: Any
    context: Any
    cancel_event: Any
    iteration: int
    started_at: float

    # Score node
    latest_score: Optional[AggregateScore]

    # Decide node
    decision: Optional[Decision]
    history: list[IterationRecord]

    # Instruct / checkpoint nodes
    instructions: list[Instruction]
    verdict: Optional[HumanVerdict]

    # Terminal bookkeeping
    outcome: Optional[RunOutcome]
    failure: Optional[RunFailure]
