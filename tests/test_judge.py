"""Tests for refineloop.llm.judge — LLM judge scorer."""

import asyncio
import json
import time

import pytest

from refineloop.core.errors import LLMError, ScorerUnavailable
from refineloop.llm.judge import LLMJudgeScorer, coerce_severity, parse_verdict, render_context
from refineloop.models import Candidate, MissingSignal, ScoreResult
from refineloop.registry import FunctionScorer, Scorer, ScorerRegistry


class MockLLMClient:
    """Mock LLM client that returns a fixed response."""

    def __init__(self, response: str):
        self.response = response
        self.calls: list[dict] = []

    async def complete(self, system, user, model=None, temperature=0.0, max_tokens=4096):
        self.calls.append({"system": system, "user": user})
        return self.response

    async def complete_with_image(
        self, system, user, image_bytes, model=None, temperature=0.0, max_tokens=4096
    ):
        self.calls.append({"system": system, "user": user, "image_bytes": image_bytes})
        return self.response


class FailingLLMClient:
    async def complete(self, system, user, **kwargs):
        raise LLMError("rate limited")

    async def complete_with_image(self, system, user, image_bytes, **kwargs):
        raise LLMError("rate limited")


class KnowledgeBase:
    def retrieve(self, query):
        return ["Trial NCT01 reported no effect", "Meta-analysis 2021 found a small effect"]


class AsyncKnowledgeBase:
    async def retrieve(self, query):
        await asyncio.sleep(0)
        return ["Cohort study 2019 found a large effect"]


class SlowKnowledgeBase:
    def retrieve(self, query):
        time.sleep(1.0)
        return ["late hit"]


VERDICT = json.dumps(
    {
        "score": 0.62,
        "findings": [
            {
                "aspect": "citation",
                "expected": "peer-reviewed source",
                "actual": "blog post",
                "severity": "high",
                "suggestion": "Cite the 2021 meta-analysis",
            },
            {"aspect": "hedging", "severity": 0.3},
        ],
    }
)


class TestCoerceSeverity:
    def test_named(self):
        assert coerce_severity("high") == 1.0
        assert coerce_severity(" Medium ") == 0.5
        assert coerce_severity("low") == 0.2

    def test_numeric_clamped(self):
        assert coerce_severity(0.7) == 0.7
        assert coerce_severity(3) == 1.0
        assert coerce_severity(-1) == 0.0

    def test_unknown_name_is_medium(self):
        assert coerce_severity("critical") == 0.5


class TestParseVerdict:
    def test_full_verdict(self):
        result = parse_verdict("factuality", f"Here you go:\n```json\n{VERDICT}\n```")
        assert result.signal == "factuality"
        assert result.value == 0.62
        assert len(result.findings) == 2
        citation = result.findings[0]
        assert citation.severity == 1.0
        assert citation.actual == "blog post"
        assert result.findings[1].severity == 0.3
        assert result.findings[1].suggestion is None

    def test_score_clamped(self):
        assert parse_verdict("f", '{"score": 1.4}').value == 1.0

    def test_malformed_findings_skipped(self):
        result = parse_verdict("f", '{"score": 0.5, "findings": ["oops", {"severity": "high"}]}')
        assert result.findings == ()

    def test_missing_score_raises(self):
        with pytest.raises(ValueError, match="score"):
            parse_verdict("f", '{"findings": []}')

    def test_non_object_raises(self):
        with pytest.raises(ValueError):
            parse_verdict("f", "[0.5]")


class TestRenderContext:
    @pytest.mark.asyncio
    async def test_none(self):
        assert await render_context(None, "q") == ""

    @pytest.mark.asyncio
    async def test_retriever(self):
        text = await render_context(KnowledgeBase(), "effect size")
        assert "- Trial NCT01 reported no effect" in text

    @pytest.mark.asyncio
    async def test_async_retriever(self):
        text = await render_context(AsyncKnowledgeBase(), "effect size")
        assert "- Cohort study 2019 found a large effect" in text

    @pytest.mark.asyncio
    async def test_plain_value(self):
        assert await render_context("background notes", "q") == "background notes"


class TestLLMJudgeScorer:
    def test_is_scorer(self):
        assert isinstance(LLMJudgeScorer("f", MockLLMClient(VERDICT), "facts"), Scorer)

    @pytest.mark.asyncio
    async def test_text_candidate(self):
        client = MockLLMClient(VERDICT)
        scorer = LLMJudgeScorer("factuality", client, "Every claim must be supported")
        result = await scorer.score(
            Candidate("Coffee cures insomnia."), "Known literature", KnowledgeBase()
        )
        assert isinstance(result, ScoreResult)
        assert result.value == 0.62
        user = client.calls[0]["user"]
        assert "Every claim must be supported" in user
        assert "Coffee cures insomnia." in user
        assert "Meta-analysis 2021" in user

    @pytest.mark.asyncio
    async def test_image_candidate_uses_vision(self):
        client = MockLLMClient('{"score": 0.4, "findings": []}')
        scorer = LLMJudgeScorer("silhouette", client, "Match the reference outline")
        result = await scorer.score(Candidate(b"\x89PNG fake"), "front view of a chair")
        assert result.value == 0.4
        assert client.calls[0]["image_bytes"] == b"\x89PNG fake"
        assert "(attached image)" in client.calls[0]["user"]

    @pytest.mark.asyncio
    async def test_llm_failure_is_unavailable(self):
        scorer = LLMJudgeScorer("logic", FailingLLMClient(), "Sound reasoning")
        with pytest.raises(ScorerUnavailable) as exc_info:
            await scorer.score(Candidate("h"), "ref")
        assert exc_info.value.signal == "logic"

    @pytest.mark.asyncio
    async def test_garbage_response_is_unavailable(self):
        scorer = LLMJudgeScorer("logic", MockLLMClient("I cannot judge this."), "Sound reasoning")
        with pytest.raises(ScorerUnavailable, match="Unparseable"):
            await scorer.score(Candidate("h"), "ref")

    @pytest.mark.asyncio
    async def test_failure_absorbed_by_registry(self):
        registry = ScorerRegistry(
            [
                LLMJudgeScorer("factuality", MockLLMClient(VERDICT), "facts"),
                LLMJudgeScorer("logic", FailingLLMClient(), "logic"),
            ]
        )
        results = await registry.score_all(Candidate("h"), "ref")
        assert results["factuality"].value == 0.62
        assert results["logic"].signal == "logic"
        assert "rate limited" in results["logic"].reason

    @pytest.mark.asyncio
    async def test_async_context_reaches_prompt(self):
        client = MockLLMClient(VERDICT)
        registry = ScorerRegistry([LLMJudgeScorer("factuality", client, "facts")])
        results = await registry.score_all(
            Candidate("h"), "ref", AsyncKnowledgeBase(), timeout=5
        )
        assert isinstance(results["factuality"], ScoreResult)
        assert "Cohort study 2019" in client.calls[0]["user"]

    @pytest.mark.asyncio
    async def test_slow_sync_retriever_times_out(self):
        registry = ScorerRegistry(
            [
                LLMJudgeScorer("factuality", MockLLMClient(VERDICT), "facts"),
                FunctionScorer("length", lambda c, r, ctx: ScoreResult("length", 0.9)),
            ]
        )
        start = time.monotonic()
        results = await registry.score_all(
            Candidate("h"), "ref", SlowKnowledgeBase(), timeout=0.2
        )
        elapsed = time.monotonic() - start
        assert isinstance(results["factuality"], MissingSignal)
        assert results["length"].value == 0.9
        assert elapsed < 0.9
