"""
Pydantic v2 schemas for policy requests, normalized records and stream events.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class Operation(str, Enum):
    GENERATE = "generate"
    REFINE = "refine"
    VALIDATE = "validate"
    EXPLAIN = "explain"
    DEPLOY = "deploy"


# ═══════════════════════════════════════════════════════════════════
#  Requests
# ═══════════════════════════════════════════════════════════════════

class PolicyContext(BaseModel):
    """Optional generation hints."""
    domain: Optional[str] = None
    complexity: Optional[str] = None


def _require_text(value: str, field: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{field} is required and must be a non-empty string")
    return value


class GeneratePolicyRequest(BaseModel):
    instructions: str
    context: PolicyContext = Field(default_factory=PolicyContext)

    @field_validator("instructions")
    @classmethod
    def instructions_not_blank(cls, v: str) -> str:
        return _require_text(v, "instructions")


class RefinePolicyRequest(GeneratePolicyRequest):
    existing_policy: str

    @field_validator("existing_policy")
    @classmethod
    def existing_policy_not_blank(cls, v: str) -> str:
        return _require_text(v, "existing_policy")


class PolicyTextRequest(BaseModel):
    """Body of validate/explain: the policy text only."""
    policy: str
    context: PolicyContext = Field(default_factory=PolicyContext)

    @field_validator("policy")
    @classmethod
    def policy_not_blank(cls, v: str) -> str:
        return _require_text(v, "policy")


class ClassifyRequest(BaseModel):
    instructions: str
    existing_policy: Optional[str] = None


class ClassifyResponse(BaseModel):
    operation: Operation


# ═══════════════════════════════════════════════════════════════════
#  Normalized output
# ═══════════════════════════════════════════════════════════════════

class TestCase(BaseModel):
    """One simulated OPA input document and the expected decision."""
    __test__ = False  # not a pytest class

    description: str = "Test case"
    input: Any = Field(default_factory=dict)
    expected: bool = True


class PolicyRecord(BaseModel):
    """Canonical result of one generate/refine request."""
    type: Literal["complete"] = "complete"
    policy: str = ""
    explanation: str = ""
    test_inputs: List[TestCase] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_refinement: Optional[bool] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict:
        """JSON-ready dict; is_refinement is omitted unless set."""
        payload = self.model_dump(mode="json")
        if payload["is_refinement"] is None:
            del payload["is_refinement"]
        return payload


class LintIssue(BaseModel):
    type: Literal["error", "warning", "info"]
    message: str
    suggestion: str = ""


class ValidationResults(BaseModel):
    syntax_valid: bool
    issues: List[LintIssue] = Field(default_factory=list)


class PolicyValidationResult(BaseModel):
    validation_results: ValidationResults
    explanation: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(default_factory=dict)


class StructureAnalysis(BaseModel):
    package_name: str
    rules: List[str] = Field(default_factory=list)
    complexity: Literal["low", "medium", "high"] = "low"


class PolicyExplanationResult(BaseModel):
    explanation: str
    structure_analysis: StructureAnalysis
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: str
    code: str


# ═══════════════════════════════════════════════════════════════════
#  Stream events
# ═══════════════════════════════════════════════════════════════════

StreamEventType = Literal["start", "policy_char", "explanation_char", "complete", "error"]


class StreamEvent(BaseModel):
    """One Server-Sent-Events frame: {"type": ..., "data": {...}}."""
    type: StreamEventType
    data: dict[str, Any]
