"""Convergence loop graph (LangGraph StateGraph).

Graph topology:
    score -> decide -> instruct -> review -> transform -> score (loop back)
      |        |          |            |             |
      +--------+----------+------------+-------------+--> "stop" -> END

instruct routes straight to transform unless the policy asked for a
human checkpoint. Every node that can end the run sets `outcome` in the
state; the routing functions only read it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from langgraph.graph import END, START, StateGraph
from langgraph.graph.state import CompiledStateGraph

from refineloop.aggregation import aggregate
from refineloop.checkpoint import HumanCheckpoint, normalize_answer
from refineloop.config import RunConfig
from refineloop.core.calls import call_external
from refineloop.core.errors import ConfigurationInvalid, NoScorersAvailable, TransformFailed
from refineloop.instructions import (
    InstructionGenerator,
    SeverityInstructionGenerator,
    feedback_instructions,
)
from refineloop.models import (
    Candidate,
    Decision,
    FailureStage,
    Instruction,
    IterationRecord,
    LoopState,
    RunFailure,
    RunOutcome,
    RunResult,
)
from refineloop.policy import decide, resolve_checkpoint
from refineloop.registry import ScorerRegistry

logger = logging.getLogger(__name__)

# Upper bound on graph steps per iteration (score, decide, instruct, review, transform)
NODES_PER_ITERATION = 5


@runtime_checkable
class Transformer(Protocol):
    """Protocol for the external step that applies instructions.

    May be sync or async, and may be a long-running pipeline of its own.
    Returns a new Candidate or raises TransformFailed. Retries, if any,
    are the transformer's own business.
    """

    def transform(self, candidate: Candidate, instructions: Sequence[Instruction]) -> Candidate:
        ...


# --- Helpers ---


def _fail(state: LoopState, stage: FailureStage, error: BaseException) -> dict:
    iteration = state.get("iteration", 0)
    logger.error("Run aborted at %s stage, iteration %d: %s", stage.value, iteration, error)
    return {
        "outcome": RunOutcome.FAILED,
        "failure": RunFailure(
            stage=stage,
            iteration=iteration,
            message=str(error) or type(error).__name__,
            error_type=type(error).__name__,
        ),
    }


def _amend_last(state: LoopState, **changes: Any) -> list[IterationRecord]:
    """Copy of history with the current iteration's record updated."""
    history = list(state.get("history", []))
    history[-1] = dataclasses.replace(history[-1], **changes)
    return history


def _cancel_requested(state: LoopState) -> bool:
    event = state.get("cancel_event")
    return event is not None and event.is_set()


# --- Nodes ---


def _make_score_node(registry: ScorerRegistry, config: RunConfig):
    """Create the score node: all scorers in parallel, then aggregate.

    Cancellation is honored here, at the top of an iteration, never
    in the middle of scorer calls.
    """

    async def score_node(state: LoopState) -> dict:
        iteration = state.get("iteration", 0)
        weights = config.weights_for(registry.names)
        if _cancel_requested(state):
            logger.info("Run cancelled before iteration %d", iteration)
            return {"outcome": RunOutcome.CANCELLED}

        candidate = state["candidate"]
        results = await registry.score_all(
            candidate,
            state.get("reference"),
            state.get("context"),
            timeout=config.scorer_timeout_seconds,
        )
        try:
            score = aggregate(results, weights)
        except NoScorersAvailable as e:
            record = IterationRecord(
                iteration=iteration, candidate=candidate, score=None, decision=None
            )
            return {
                "latest_score": None,
                "history": state.get("history", []) + [record],
                **_fail(state, FailureStage.AGGREGATE, e),
            }
        return {"latest_score": score}

    return score_node


def _make_decide_node(config: RunConfig):
    """Create the decide node. Appends the iteration record before acting."""

    async def decide_node(state: LoopState) -> dict:
        iteration = state.get("iteration", 0)
        score = state["latest_score"]
        decision = decide(score.total, iteration, config)
        record = IterationRecord(
            iteration=iteration,
            candidate=state["candidate"],
            score=score,
            decision=decision,
        )
        logger.info(
            "Iteration %d: candidate v%d scored %.3f (%d/%d signals) -> %s",
            iteration,
            record.candidate.version,
            score.total,
            len(score.breakdown),
            len(score.breakdown) + len(score.missing),
            decision.value,
        )
        update: dict = {
            "decision": decision,
            "history": state.get("history", []) + [record],
            "instructions": [],
            "verdict": None,
        }
        if decision.is_terminal:
            update["outcome"] = RunOutcome(decision.value)
        return update

    return decide_node


def _make_instruct_node(generator: InstructionGenerator):
    async def instruct_node(state: LoopState) -> dict:
        score = state["latest_score"]
        try:
            instructions = await call_external(
                generator.generate,
                state["candidate"],
                state.get("reference"),
                score.findings(),
                state.get("context"),
            )
        except Exception as e:
            return _fail(state, FailureStage.INSTRUCT, e)
        instructions = list(instructions)
        return {
            "instructions": instructions,
            "history": _amend_last(state, instructions=tuple(instructions)),
        }

    return instruct_node


def _make_checkpoint_node(checkpoint: Optional[HumanCheckpoint]):
    """Create the checkpoint node.

    The run waits here until the callback answers. Approve ends the run as
    converged, reject-and-abort as budget exhausted. Reject-and-continue
    proceeds to the transform with the reviewer's notes placed ahead of
    the generated instructions.
    """

    async def checkpoint_node(state: LoopState) -> dict:
        if checkpoint is None:
            return _fail(
                state,
                FailureStage.CHECKPOINT,
                ConfigurationInvalid("Checkpoint reached but no human checkpoint configured"),
            )
        instructions = list(state.get("instructions", []))
        try:
            answer = await call_external(
                checkpoint, state["candidate"], state["latest_score"], tuple(instructions)
            )
            feedback = normalize_answer(answer)
        except Exception as e:
            return _fail(state, FailureStage.CHECKPOINT, e)

        decision = resolve_checkpoint(feedback.verdict)
        logger.info(
            "Checkpoint at iteration %d: %s -> %s",
            state.get("iteration", 0),
            feedback.verdict.value,
            decision.value,
        )
        update: dict = {"verdict": feedback.verdict, "decision": decision}
        if decision.is_terminal:
            update["outcome"] = RunOutcome(decision.value)
            update["history"] = _amend_last(state, verdict=feedback.verdict)
            return update

        merged = feedback_instructions(feedback.notes) + instructions
        update["instructions"] = merged
        update["history"] = _amend_last(
            state, verdict=feedback.verdict, instructions=tuple(merged)
        )
        return update

    return checkpoint_node


def _make_transform_node(transformer: Any, config: RunConfig):
    """Create the transform node. One transform in flight per run, no retry."""
    transform = getattr(transformer, "transform", transformer)
    timeout = config.transform_timeout_seconds

    async def transform_node(state: LoopState) -> dict:
        candidate = state["candidate"]
        try:
            new_candidate = await call_external(
                transform, candidate, list(state.get("instructions", [])), timeout=timeout
            )
        except asyncio.TimeoutError:
            return _fail(
                state,
                FailureStage.TRANSFORM,
                TransformFailed(f"Transform timed out after {timeout}s"),
            )
        except Exception as e:
            return _fail(state, FailureStage.TRANSFORM, e)

        if not isinstance(new_candidate, Candidate):
            return _fail(
                state,
                FailureStage.TRANSFORM,
                TransformFailed(
                    f"Transform returned {type(new_candidate).__name__}, expected Candidate"
                ),
            )
        return {
            "candidate": new_candidate,
            "iteration": state.get("iteration", 0) + 1,
            "latest_score": None,
            "decision": None,
            "instructions": [],
            "verdict": None,
        }

    return transform_node


# --- Routing ---


def _after_score(state: LoopState) -> str:
    return "stop" if state.get("outcome") else "decide"


def _after_decide(state: LoopState) -> str:
    return "stop" if state.get("outcome") else "instruct"


def _after_instruct(state: LoopState) -> str:
    if state.get("outcome"):
        return "stop"
    if state.get("decision") == Decision.AWAIT_HUMAN_CHECKPOINT:
        return "review"
    return "transform"


def _after_checkpoint(state: LoopState) -> str:
    return "stop" if state.get("outcome") else "transform"


def _after_transform(state: LoopState) -> str:
    return "stop" if state.get("outcome") else "score"


def build_convergence_graph(
    registry: ScorerRegistry,
    transformer: Any,
    config: RunConfig = RunConfig(),
    checkpoint: Optional[HumanCheckpoint] = None,
    generator: Optional[InstructionGenerator] = None,
) -> CompiledStateGraph:
    """Build the convergence loop as a LangGraph StateGraph.

    Args:
        registry: Scorers to run on every candidate.
        transformer: Object with transform(candidate, instructions), or a callable.
        config: Stop conditions, weights, timeouts.
        checkpoint: Human checkpoint callback.
        generator: Instruction generator. Default: SeverityInstructionGenerator
            built from config.severity_floor and config.excluded_aspects.

    Returns a compiled StateGraph ready to invoke.
    """
    if generator is None:
        generator = SeverityInstructionGenerator(
            severity_floor=config.severity_floor,
            excluded_aspects=config.excluded_aspects,
        )

    graph = StateGraph(LoopState)

    graph.add_node("score", _make_score_node(registry, config))
    graph.add_node("decide", _make_decide_node(config))
    graph.add_node("instruct", _make_instruct_node(generator))
    graph.add_node("review", _make_checkpoint_node(checkpoint))
    graph.add_node("transform", _make_transform_node(transformer, config))

    graph.add_edge(START, "score")
    graph.add_conditional_edges("score", _after_score, {"decide": "decide", "stop": END})
    graph.add_conditional_edges("decide", _after_decide, {"instruct": "instruct", "stop": END})
    graph.add_conditional_edges(
        "instruct",
        _after_instruct,
        {"review": "review", "transform": "transform", "stop": END},
    )
    graph.add_conditional_edges(
        "review", _after_checkpoint, {"transform": "transform", "stop": END}
    )
    graph.add_conditional_edges("transform", _after_transform, {"score": "score", "stop": END})

    return graph.compile()


def _build_result(state: LoopState, elapsed: float) -> RunResult:
    history = list(state.get("history", []))
    scored = [r for r in history if r.score is not None]
    if scored:
        # max() keeps the first of equal totals: earliest wins ties
        best = max(scored, key=lambda r: r.score.total)
        best_candidate, best_score = best.candidate, best.score
    else:
        best_candidate, best_score = state.get("candidate"), None

    outcome = state.get("outcome") or RunOutcome.FAILED
    decision = state.get("decision")
    return RunResult(
        outcome=outcome,
        decision=decision if decision is not None and decision.is_terminal else None,
        best_candidate=best_candidate,
        best_score=best_score,
        history=history,
        elapsed_seconds=elapsed,
        iterations=state.get("iteration", 0),
        failure=state.get("failure"),
    )


class LoopController:
    """Runs the iterate-score-decide-transform cycle.

    Holds configuration only; all per-run state lives in the graph state,
    so one controller can drive several independent runs concurrently.
    """

    def __init__(
        self,
        registry: ScorerRegistry,
        transformer: Any,
        config: RunConfig = RunConfig(),
        checkpoint: Optional[HumanCheckpoint] = None,
        generator: Optional[InstructionGenerator] = None,
    ) -> None:
        self.registry = registry
        self.transformer = transformer
        self.config = config
        self.checkpoint = checkpoint
        self.generator = generator
        self._graph: Optional[CompiledStateGraph] = None

    def validate(self) -> None:
        """Check the whole setup before a run.

        Raises:
            ConfigurationInvalid: on invalid config, missing weights, no
                scorers, or a reachable checkpoint with no callback.
        """
        self.config.validate(self.registry.names)
        if self.config.checkpoint_reachable and self.checkpoint is None:
            raise ConfigurationInvalid(
                f"checkpoint_interval={self.config.checkpoint_interval} is reachable within "
                f"max_iterations={self.config.max_iterations} but no human checkpoint is set"
            )
        transform = getattr(self.transformer, "transform", self.transformer)
        if not callable(transform):
            raise ConfigurationInvalid(f"Transformer {self.transformer!r} is not callable")

    @property
    def graph(self) -> CompiledStateGraph:
        if self._graph is None:
            self._graph = build_convergence_graph(
                self.registry,
                self.transformer,
                self.config,
                checkpoint=self.checkpoint,
                generator=self.generator,
            )
        return self._graph

    @property
    def recursion_limit(self) -> int:
        return NODES_PER_ITERATION * (self.config.max_iterations + 1) + NODES_PER_ITERATION

    async def run(
        self,
        initial: Any,
        reference: Any,
        context: Any = None,
        cancel_event: Any = None,
    ) -> RunResult:
        """Drive one convergence run to a terminal outcome.

        Args:
            initial: Seed Candidate (any other value is wrapped as version 0).
            reference: Target the candidate is scored against.
            context: Read-only lookup service passed to scorers and the
                instruction generator.
            cancel_event: Anything with is_set() (asyncio.Event,
                threading.Event). Checked between iterations.

        Returns a RunResult. Scorer, aggregation, checkpoint and transform
        failures are reported in it, with the history up to that point.

        Raises:
            ConfigurationInvalid: before the run starts, never mid-run.
        """
        self.validate()
        candidate = initial if isinstance(initial, Candidate) else Candidate(ref=initial)

        started = time.monotonic()
        logger.info(
            "Starting run: %d signal(s), threshold %.2f, max %d iteration(s), checkpoint every %d",
            len(self.registry),
            self.config.converged_threshold,
            self.config.max_iterations,
            self.config.checkpoint_interval,
        )
        initial_state: LoopState = {
            "candidate": candidate,
            "reference": reference,
            "context": context,
            "cancel_event": cancel_event,
            "iteration": 0,
            "started_at": started,
            "history": [],
            "instructions": [],
            "outcome": None,
            "failure": None,
        }
        final_state = await self.graph.ainvoke(
            initial_state, config={"recursion_limit": self.recursion_limit}
        )
        result = _build_result(final_state, time.monotonic() - started)
        logger.info(
            "Run finished: %s after %d iteration(s), best score %s",
            result.outcome.value,
            result.iterations,
            f"{result.best_score.total:.3f}" if result.best_score else "n/a",
        )
        return result


async def run_convergence(
    initial: Any,
    reference: Any,
    registry: ScorerRegistry,
    transformer: Any,
    config: RunConfig = RunConfig(),
    checkpoint: Optional[HumanCheckpoint] = None,
    generator: Optional[InstructionGenerator] = None,
    context: Any = None,
    cancel_event: Any = None,
) -> RunResult:
    """Convenience: build a LoopController and run it once."""
    controller = LoopController(
        registry,
        transformer,
        config,
        checkpoint=checkpoint,
        generator=generator,
    )
    return await controller.run(initial, reference, context=context, cancel_event=cancel_event)
