"""Human checkpoint callback protocol and helpers."""

from __future__ import annotations

from typing import Any, Protocol, Sequence, Union, runtime_checkable

from refineloop.models import (
    AggregateScore,
    Candidate,
    HumanFeedback,
    HumanVerdict,
    Instruction,
)

CheckpointAnswer = Union[HumanVerdict, HumanFeedback, str]


@runtime_checkable
class HumanCheckpoint(Protocol):
    """Blocking or async callback consulted at scheduled checkpoints.

    Receives what a reviewer needs to see: the candidate, its score and the
    instructions the loop would apply next. Returns a verdict, optionally
    with notes that are fed into the next transform.
    """

    def __call__(
        self,
        candidate: Candidate,
        score: AggregateScore,
        instructions: Sequence[Instruction],
    ) -> Any:
        ...


class AutoCheckpoint:
    """Answers every checkpoint with a fixed verdict. For unattended runs."""

    def __init__(
        self,
        verdict: HumanVerdict = HumanVerdict.REJECT_CONTINUE,
        notes: Sequence[str] = (),
    ) -> None:
        self.verdict = verdict
        self.notes = tuple(notes)
        self.calls: list[tuple[Candidate, AggregateScore, tuple[Instruction, ...]]] = []

    def __call__(
        self,
        candidate: Candidate,
        score: AggregateScore,
        instructions: Sequence[Instruction],
    ) -> HumanFeedback:
        self.calls.append((candidate, score, tuple(instructions)))
        return HumanFeedback(verdict=self.verdict, notes=self.notes)


def normalize_answer(answer: CheckpointAnswer) -> HumanFeedback:
    """Accept a bare verdict, its string value, or HumanFeedback.

    Raises:
        ValueError: if the answer is not a recognizable verdict.
    """
    if isinstance(answer, HumanFeedback):
        return answer
    return HumanFeedback(verdict=HumanVerdict(answer))
