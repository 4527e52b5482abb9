"""LLM-as-judge scorer.

Scores a candidate against a reference on one criterion by asking an LLM
for a JSON verdict. Image candidates (PNG bytes, e.g. a render compared
with a reference drawing) go through the vision call.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from refineloop.core.errors import LLMError, ScorerUnavailable
from refineloop.core.llm import LLMClient
from refineloop.core.calls import call_external
from refineloop.core.config import LLMConfig
from refineloop.core.parsing import parse_json_from_response
from refineloop.models import SEVERITY_LEVELS, Candidate, Finding, ScoreResult, Severity
from refineloop.prompts.judging import SYSTEM_PROMPT, build_user_prompt

logger = logging.getLogger(__name__)


def coerce_severity(raw: Any) -> float:
    """Severity from a name ("high") or a number, clamped to [0, 1].

    Unknown names fall back to medium.
    """
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return max(0.0, min(1.0, float(raw)))
    try:
        return SEVERITY_LEVELS[Severity(str(raw).strip().lower())]
    except ValueError:
        return SEVERITY_LEVELS[Severity.MEDIUM]


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_verdict(signal: str, raw_response: str) -> ScoreResult:
    """Turn a judge response into a ScoreResult.

    Raises:
        ValueError: if no JSON object with a numeric score is found.
    """
    data = parse_json_from_response(raw_response)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    try:
        value = float(data["score"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Missing or non-numeric 'score': {data.get('score')!r}") from e
    if math.isnan(value):
        raise ValueError("Judge score is NaN")
    value = max(0.0, min(1.0, value))

    findings = []
    for item in data.get("findings") or []:
        if not isinstance(item, dict) or not item.get("aspect"):
            logger.warning("Signal '%s': skipping malformed finding %r", signal, item)
            continue
        findings.append(
            Finding(
                aspect=str(item["aspect"]).strip(),
                severity=coerce_severity(item.get("severity", Severity.MEDIUM.value)),
                expected=_optional_text(item.get("expected")),
                actual=_optional_text(item.get("actual")),
                suggestion=_optional_text(item.get("suggestion")),
            )
        )
    return ScoreResult(signal=signal, value=value, findings=tuple(findings))


async def render_context(context: Any, query: str) -> str:
    """Text view of the read-only context for a prompt.

    A context exposing retrieve(query) is queried; strings are used as is.
    retrieve may be sync or async. A sync lookup runs in a worker thread so
    it does not stall the other scorers or the scorer timeout.
    """
    if context is None:
        return ""
    retrieve = getattr(context, "retrieve", None)
    if callable(retrieve):
        hits = await call_external(retrieve, query)
        if isinstance(hits, str):
            return hits
        return "\n".join(f"- {hit}" for hit in hits)
    return str(context)


class LLMJudgeScorer:
    """Scorer backed by an LLM judge.

    Any LLM or parse failure is reported as ScorerUnavailable, never as a
    zero score.
    """

    def __init__(
        self,
        name: str,
        llm_client: LLMClient,
        criteria: str,
        config: LLMConfig = LLMConfig(),
        model: Optional[str] = None,
    ) -> None:
        self.name = name
        self.llm_client = llm_client
        self.criteria = criteria
        self.config = config
        self.model = model

    async def score(self, candidate: Candidate, reference: Any, context: Any = None) -> ScoreResult:
        context_text = await render_context(context, self.criteria)
        is_image = isinstance(candidate.ref, (bytes, bytearray))
        candidate_text = "(attached image)" if is_image else str(candidate.ref)
        user_prompt = build_user_prompt(
            criteria=self.criteria,
            candidate_text=candidate_text,
            reference_text=str(reference),
            context_text=context_text,
        )

        try:
            if is_image:
                raw_response = await self.llm_client.complete_with_image(
                    system=SYSTEM_PROMPT,
                    user=user_prompt,
                    image_bytes=bytes(candidate.ref),
                    model=self.model,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                )
            else:
                raw_response = await self.llm_client.complete(
                    system=SYSTEM_PROMPT,
                    user=user_prompt,
                    model=self.model,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                )
        except LLMError as e:
            raise ScorerUnavailable(f"Judge LLM call failed: {e}", signal=self.name) from e

        try:
            result = parse_verdict(self.name, raw_response)
        except ValueError as e:
            raise ScorerUnavailable(f"Unparseable judge response: {e}", signal=self.name) from e

        logger.debug(
            "Signal '%s' scored v%d at %.3f with %d finding(s)",
            self.name, candidate.version, result.value, len(result.findings),
        )
        return result
