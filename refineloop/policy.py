"""Convergence policy: when to stop, continue, or ask a human."""

from __future__ import annotations

from refineloop.config import RunConfig
from refineloop.models import Decision, HumanVerdict


def decide(total_score: float, iteration: int, config: RunConfig) -> Decision:
    """Decide what the loop does after scoring one iteration.

    Checked in order:
    1. total_score >= converged_threshold  -> CONVERGED
    2. iteration >= max_iterations         -> BUDGET_EXHAUSTED
    3. iteration is a checkpoint multiple  -> AWAIT_HUMAN_CHECKPOINT
    4. otherwise                           -> CONTINUE

    A candidate that meets the bar exits even on a checkpoint iteration,
    and the budget check runs before the checkpoint check so the loop
    always ends within max_iterations. Iteration 0 is the untouched seed
    and never triggers a checkpoint. This narrows the bare
    "iteration % checkpoint_interval == 0" rule, which would otherwise ask
    a human to review the seed before any transform has run.

    Deterministic: same inputs, same Decision.
    """
    if total_score >= config.converged_threshold:
        return Decision.CONVERGED

    if iteration >= config.max_iterations:
        return Decision.BUDGET_EXHAUSTED

    if iteration > 0 and iteration % config.checkpoint_interval == 0:
        return Decision.AWAIT_HUMAN_CHECKPOINT

    return Decision.CONTINUE


# Where each checkpoint verdict sends the run.
VERDICT_DECISIONS: dict[HumanVerdict, Decision] = {
    HumanVerdict.APPROVE: Decision.CONVERGED,
    HumanVerdict.REJECT_CONTINUE: Decision.CONTINUE,
    HumanVerdict.REJECT_ABORT: Decision.BUDGET_EXHAUSTED,
}


def resolve_checkpoint(verdict: HumanVerdict) -> Decision:
    """Map a human checkpoint verdict to the decision the loop acts on."""
    return VERDICT_DECISIONS[HumanVerdict(verdict)]
