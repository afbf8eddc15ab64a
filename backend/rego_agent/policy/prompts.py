"""
Prompt templates and the prompt builder for every policy operation.
Pure string construction, no I/O.
"""
from typing import Optional, Tuple, Union

from rego_agent.policy.errors import InvalidInputError, UnsupportedOperationError
from rego_agent.policy.schemas import Operation, PolicyContext


# ═══════════════════════════════════════════════════════════════════
#  System Prompts
# ═══════════════════════════════════════════════════════════════════

BASE_PROMPT = """You are an expert OPA (Open Policy Agent) Rego policy generator and advisor. \
You have access to comprehensive OPA documentation, best practices, and security guidelines."""

RESPONSE_FORMAT_RULES = """
Output rules:
- Do NOT use import statements (no "import rego.v1", no "import data.rego.v1", no "import future.keywords")
- Respond with a single JSON object and nothing else: no markdown fences, no text before or after it
- The JSON object has exactly these fields: "policy", "explanation", "test_inputs"
- The "policy" value is the Rego source as a plain string with real line breaks; \
never double-escape newlines or quotes inside it
- Every test input must contain every input field the policy reads \
(if the policy reads input.user.role, each test input has user.role)
- "expected" is the boolean result of the policy's allow/deny rule for that input"""

GENERATE_PROMPT = BASE_PROMPT + """

Your task is to generate syntactically correct, secure, and well-structured Rego policies \
based on natural language requirements.

Key guidelines:
- Use a meaningful package name
- Include default deny rules where appropriate (default allow := false)
- Include comprehensive test inputs that match the policy structure
- Provide a clear explanation of the policy logic
- Follow OPA best practices for performance and security
""" + RESPONSE_FORMAT_RULES

REFINE_PROMPT = BASE_PROMPT + """

Your task is to refine existing Rego policies while preserving their original intent and structure.

Key guidelines:
- Keep the existing package name exactly as it is
- Only modify what is necessary to meet the new requirements
- Preserve existing rules that are not affected by the change, unchanged
- Ensure backward compatibility where possible
- Explain what changed and why
""" + RESPONSE_FORMAT_RULES

VALIDATE_PROMPT = BASE_PROMPT + """

Your task is to validate Rego policies for syntax correctness, best practices, and security.

Key guidelines:
- Check for syntax errors and common mistakes
- Flag import statements; policies in this system must not use them
- Identify security vulnerabilities and bypass scenarios
- Suggest performance optimizations
- Provide actionable feedback in plain text"""

EXPLAIN_PROMPT = BASE_PROMPT + """

Your task is to explain Rego policies in clear, plain English.

Key guidelines:
- Break down complex logic into simple terms
- Explain the purpose and behavior of each rule
- Describe input requirements and expected outputs
- Use examples to illustrate policy behavior
- Avoid technical jargon where possible"""

SYSTEM_PROMPTS = {
    Operation.GENERATE: GENERATE_PROMPT,
    Operation.REFINE: REFINE_PROMPT,
    Operation.VALIDATE: VALIDATE_PROMPT,
    Operation.EXPLAIN: EXPLAIN_PROMPT,
}

RESPONSE_TEMPLATE = """Return your response in JSON format with the following structure:
{
  "policy": "complete Rego policy code",
  "explanation": "clear explanation of what the policy does",
  "test_inputs": [
    {
      "description": "test case description",
      "input": { "actual input object" },
      "expected": true
    }
  ]
}"""


# ═══════════════════════════════════════════════════════════════════
#  Builder
# ═══════════════════════════════════════════════════════════════════

def _coerce_operation(operation: Union[Operation, str]) -> Operation:
    try:
        op = Operation(operation)
    except ValueError:
        raise UnsupportedOperationError(str(operation))
    if op not in SYSTEM_PROMPTS:
        raise UnsupportedOperationError(op.value)
    return op


def build_prompts(
    operation: Union[Operation, str],
    instructions: str,
    context: Optional[PolicyContext] = None,
    existing_policy: Optional[str] = None,
) -> Tuple[str, str]:
    """
    Build (system_prompt, user_prompt) for one operation.

    For validate/explain, `instructions` is the policy text under review.
    Raises UnsupportedOperationError for operations without a template and
    InvalidInputError for blank instructions or a refine without a policy.
    """
    op = _coerce_operation(operation)

    if not isinstance(instructions, str) or not instructions.strip():
        raise InvalidInputError("Instructions are required and must be a non-empty string")

    context = context or PolicyContext()
    system_prompt = SYSTEM_PROMPTS[op]

    if op is Operation.GENERATE:
        user_prompt = f"Instructions: {instructions}\n\n"
        if context.domain:
            user_prompt += f"Domain: {context.domain}\n"
        if context.complexity:
            user_prompt += f"Complexity: {context.complexity}\n"
        user_prompt += (
            "Please generate a complete OPA Rego policy that meets these requirements. "
            + RESPONSE_TEMPLATE
        )

    elif op is Operation.REFINE:
        if not existing_policy or not existing_policy.strip():
            raise InvalidInputError("Existing policy is required for refinement")
        user_prompt = (
            f"I need to refine this existing OPA Rego policy:\n\n{existing_policy}\n\n"
            f"New requirements: {instructions}\n\n"
        )
        if context.domain:
            user_prompt += f"Domain: {context.domain}\n"
        user_prompt += (
            "Please modify the policy to meet the new requirements while preserving the "
            "existing package name, structure and intent. " + RESPONSE_TEMPLATE
        )

    elif op is Operation.VALIDATE:
        user_prompt = (
            "Please validate this OPA Rego policy for syntax, best practices, and security:"
            f"\n\n{instructions}"
        )

    else:
        user_prompt = f"Please explain this OPA Rego policy in plain English:\n\n{instructions}"

    return system_prompt, user_prompt
