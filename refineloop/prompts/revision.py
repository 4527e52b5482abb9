"""Prompt templates for the LLM rewrite transformer.

Separated from rewriter.py so prompt iteration doesn't touch logic.
"""

SYSTEM_PROMPT = """You revise a draft by applying a list of corrections.

Guidelines:
- Apply the corrections in the order given; earlier ones matter more
- Change nothing the corrections do not ask for
- Return the complete revised draft, not a diff
"""

OUTPUT_FORMAT = """Respond with the revised draft inside a single fenced block:

```
revised draft here
```"""


def build_user_prompt(task: str, draft: str, corrections: list[str]) -> str:
    """Build the user prompt for one revision.

    Args:
        task: What the draft is for.
        draft: Current candidate text.
        corrections: Formatted instructions, highest priority first.
    """
    if corrections:
        numbered = "\n".join(f"{i}. {c}" for i, c in enumerate(corrections, start=1))
    else:
        numbered = "(none; tighten the draft without changing its meaning)"
    return (
        f"Task:\n{task}\n\n"
        f"Draft:\n{draft}\n\n"
        f"Corrections:\n{numbered}\n\n"
        f"{OUTPUT_FORMAT}"
    )
