"""LLM rewrite transformer for text candidates."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from refineloop.core.config import LLMConfig
from refineloop.core.errors import LLMError, TransformFailed
from refineloop.core.llm import LLMClient
from refineloop.core.parsing import parse_block_from_response
from refineloop.models import Candidate, Instruction
from refineloop.prompts.revision import SYSTEM_PROMPT, build_user_prompt

logger = logging.getLogger(__name__)


class LLMRewriteTransformer:
    """Applies instructions to a text candidate with one LLM call.

    Returns the next candidate version. Retries belong to the LLM client;
    a failed call surfaces as TransformFailed.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        task: str,
        config: LLMConfig = LLMConfig(),
        model: Optional[str] = None,
    ) -> None:
        self.llm_client = llm_client
        self.task = task
        self.config = config
        self.model = model

    async def transform(self, candidate: Candidate, instructions: Sequence[Instruction]) -> Candidate:
        if not isinstance(candidate.ref, str):
            raise TransformFailed(
                f"LLMRewriteTransformer needs a text candidate, got {type(candidate.ref).__name__}"
            )
        user_prompt = build_user_prompt(
            task=self.task,
            draft=candidate.ref,
            corrections=[i.to_prompt_context() for i in instructions],
        )
        try:
            raw_response = await self.llm_client.complete(
                system=SYSTEM_PROMPT,
                user=user_prompt,
                model=self.model,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except LLMError as e:
            raise TransformFailed(f"Rewrite LLM call failed: {e}") from e

        try:
            revised = parse_block_from_response(raw_response)
        except ValueError as e:
            raise TransformFailed(f"Unusable rewrite response: {e}") from e

        logger.info(
            "Rewrote candidate v%d with %d instruction(s)", candidate.version, len(instructions)
        )
        return candidate.next(revised)
