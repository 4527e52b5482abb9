"""Tests for refineloop.llm.rewriter — LLM rewrite transformer."""

import pytest

from refineloop.core.errors import LLMError, TransformFailed
from refineloop.llm.rewriter import LLMRewriteTransformer
from refineloop.loop import Transformer
from refineloop.models import Candidate, Instruction


class MockLLMClient:
    def __init__(self, response: str):
        self.response = response
        self.calls: list[dict] = []

    async def complete(self, system, user, model=None, temperature=0.0, max_tokens=4096):
        self.calls.append({"system": system, "user": user})
        return self.response

    async def complete_with_image(self, **kwargs):
        return self.response


class FailingLLMClient:
    async def complete(self, system, user, **kwargs):
        raise LLMError("overloaded")

    async def complete_with_image(self, **kwargs):
        raise LLMError("overloaded")


INSTRUCTIONS = [
    Instruction("citation", 1.0, "Cite the 2021 meta-analysis", signal="factuality"),
    Instruction("hedging", 0.3, "Soften the causal claim", signal="logic"),
]


def test_is_transformer():
    assert isinstance(LLMRewriteTransformer(MockLLMClient(""), "task"), Transformer)


@pytest.mark.asyncio
async def test_returns_next_version():
    client = MockLLMClient("```\nCoffee may affect sleep onset (meta-analysis, 2021).\n```")
    transformer = LLMRewriteTransformer(client, "Refine a scientific hypothesis")
    result = await transformer.transform(Candidate("Coffee cures insomnia.", 2), INSTRUCTIONS)
    assert result.version == 3
    assert result.ref == "Coffee may affect sleep onset (meta-analysis, 2021)."


@pytest.mark.asyncio
async def test_prompt_lists_instructions_in_order():
    client = MockLLMClient("revised")
    transformer = LLMRewriteTransformer(client, "Refine a scientific hypothesis")
    await transformer.transform(Candidate("draft"), INSTRUCTIONS)
    user = client.calls[0]["user"]
    assert "1. [1.00] citation" in user
    assert "2. [0.30] hedging" in user
    assert "draft" in user


@pytest.mark.asyncio
async def test_no_instructions_still_prompts():
    client = MockLLMClient("revised")
    await LLMRewriteTransformer(client, "task").transform(Candidate("draft"), [])
    assert "(none" in client.calls[0]["user"]


@pytest.mark.asyncio
async def test_llm_failure_is_transform_failed():
    transformer = LLMRewriteTransformer(FailingLLMClient(), "task")
    with pytest.raises(TransformFailed, match="overloaded"):
        await transformer.transform(Candidate("draft"), INSTRUCTIONS)


@pytest.mark.asyncio
async def test_empty_response_is_transform_failed():
    transformer = LLMRewriteTransformer(MockLLMClient("   "), "task")
    with pytest.raises(TransformFailed, match="Unusable"):
        await transformer.transform(Candidate("draft"), INSTRUCTIONS)


@pytest.mark.asyncio
async def test_non_text_candidate_rejected():
    transformer = LLMRewriteTransformer(MockLLMClient("x"), "task")
    with pytest.raises(TransformFailed, match="text candidate"):
        await transformer.transform(Candidate(b"\x89PNG"), INSTRUCTIONS)
