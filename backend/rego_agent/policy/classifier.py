"""
Keyword-based operation classifier for free-form instructions.
Best effort only; callers may override the result.
"""
from rego_agent.policy.schemas import Operation

REFINE_KEYWORDS = ("refine", "modify", "update", "improve")
VALIDATE_KEYWORDS = ("validate", "check", "lint", "verify")
EXPLAIN_KEYWORDS = ("explain", "describe", "what does", "how does")
DEPLOY_KEYWORDS = ("deploy", "integrate", "setup", "configure")


def classify_operation(instructions: str, has_existing_policy: bool = False) -> Operation:
    """Pick the operation an instruction most likely asks for. First match wins."""
    text = (instructions or "").lower()

    if has_existing_policy and any(k in text for k in REFINE_KEYWORDS):
        return Operation.REFINE
    if any(k in text for k in VALIDATE_KEYWORDS):
        return Operation.VALIDATE
    if any(k in text for k in EXPLAIN_KEYWORDS):
        return Operation.EXPLAIN
    if any(k in text for k in DEPLOY_KEYWORDS):
        return Operation.DEPLOY
    return Operation.GENERATE
