"""Delta/instruction generation: turn findings into prioritized directives."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence, runtime_checkable

from refineloop.models import Candidate, Finding, Instruction

logger = logging.getLogger(__name__)

HUMAN_FEEDBACK_ASPECT = "human_feedback"


@runtime_checkable
class InstructionGenerator(Protocol):
    """Protocol for producing corrective instructions.

    findings arrive as (signal, finding) pairs in scorer registration order.
    Implementations may consult the reference or the read-only context.
    """

    def generate(
        self,
        candidate: Candidate,
        reference: Any,
        findings: Sequence[tuple[str, Finding]],
        context: Any = None,
    ) -> list[Instruction]:
        ...


def finding_text(finding: Finding) -> str:
    """Actionable text for one finding. Prefers the scorer's own suggestion."""
    if finding.suggestion:
        return finding.suggestion
    if finding.expected is not None and finding.actual is not None:
        return f"expected {finding.expected}, got {finding.actual}"
    if finding.expected is not None:
        return f"expected {finding.expected}"
    if finding.actual is not None:
        return f"fix {finding.actual}"
    return f"correct {finding.aspect}"


def order_by_severity(instructions: Iterable[Instruction]) -> list[Instruction]:
    """Severity descending. sorted() is stable, so ties keep input order."""
    return sorted(instructions, key=lambda i: -i.severity)


class SeverityInstructionGenerator:
    """Default generator: one instruction per finding above the severity floor.

    Findings at or below severity_floor are acceptable deviation and dropped.
    Findings about excluded aspects, or rejected by the caller's in_scope
    predicate, are dropped too.
    """

    def __init__(
        self,
        severity_floor: float = 0.0,
        excluded_aspects: Iterable[str] = (),
        in_scope: Optional[Callable[[Finding], bool]] = None,
    ) -> None:
        self.severity_floor = severity_floor
        self.excluded_aspects = frozenset(excluded_aspects)
        self.in_scope = in_scope

    def _keep(self, finding: Finding) -> bool:
        if finding.severity <= self.severity_floor:
            return False
        if finding.aspect in self.excluded_aspects:
            return False
        if self.in_scope is not None and not self.in_scope(finding):
            return False
        return True

    def generate(
        self,
        candidate: Candidate,
        reference: Any,
        findings: Sequence[tuple[str, Finding]],
        context: Any = None,
    ) -> list[Instruction]:
        instructions = [
            Instruction(
                aspect=finding.aspect,
                severity=finding.severity,
                text=finding_text(finding),
                signal=signal,
            )
            for signal, finding in findings
            if self._keep(finding)
        ]
        dropped = len(findings) - len(instructions)
        if dropped:
            logger.debug("Dropped %d finding(s) below floor or out of scope", dropped)
        return order_by_severity(instructions)


def feedback_instructions(notes: Iterable[str]) -> list[Instruction]:
    """Human checkpoint notes as top-priority instructions."""
    return [
        Instruction(aspect=HUMAN_FEEDBACK_ASPECT, severity=1.0, text=note.strip())
        for note in notes
        if note and note.strip()
    ]
