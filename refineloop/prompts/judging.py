"""Prompt templates for the LLM judge scorer.

Separated from judge.py so prompt iteration doesn't touch logic.
"""

from refineloop.models import Severity

# Build severity list from the enum to stay in sync
_SEVERITIES = ", ".join(s.value for s in Severity)

SYSTEM_PROMPT = f"""You are a strict reviewer. You compare a candidate against a reference and score how well the candidate meets the given criteria.

Guidelines:
- Judge only the stated criteria
- Score 1.0 only when the candidate fully meets them
- Report each concrete deviation as a separate finding
- Keep suggestions short and actionable

Severity levels: {_SEVERITIES}
"""

OUTPUT_FORMAT = """Respond with a single JSON object:

{{
    "score": 0.0,
    "findings": [
        {{
            "aspect": "short name of what is wrong",
            "expected": "what the reference or criteria require",
            "actual": "what the candidate does instead",
            "severity": "high",
            "suggestion": "how to fix it"
        }}
    ]
}}

Rules:
- score: number between 0.0 and 1.0
- findings: empty array [] if nothing is wrong
- severity: one of the severity levels, or a number between 0.0 and 1.0"""


def build_user_prompt(
    criteria: str,
    candidate_text: str,
    reference_text: str,
    context_text: str = "",
) -> str:
    """Build the user prompt for judging one candidate.

    Args:
        criteria: What this signal measures.
        candidate_text: The candidate, or a note that it is attached as an image.
        reference_text: The reference to compare against.
        context_text: Optional background retrieved for this run.
    """
    parts = [f"Criteria:\n{criteria}"]
    if context_text:
        parts.append(f"Background knowledge (read-only):\n{context_text}")
    parts.append(f"Reference:\n{reference_text}")
    parts.append(f"Candidate:\n{candidate_text}")
    parts.append(OUTPUT_FORMAT.format())
    return "\n\n".join(parts)
