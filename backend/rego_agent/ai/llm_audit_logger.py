"""
Centralized LLM audit logger.
Every completion call (success or failure) flows through this module and is
emitted as one structured log line.
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from rego_agent.core.logging import get_logger

logger = get_logger(__name__)


class LLMCallRecord(BaseModel):
    """Pydantic schema for every LLM call audit record."""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    provider: str
    model: str
    operation: str = "complete"
    prompt_hash: str  # SHA-256 of user_prompt
    prompt_length: int
    system_prompt_length: int
    success: bool
    latency_ms: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    temperature: float = 0.1
    finish_reason: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


def log_llm_call(record: LLMCallRecord) -> None:
    """Emit a structured audit line for one provider invocation."""
    log_extra = {
        "event": "llm_audit",
        "provider": record.provider,
        "model": record.model,
        "operation": record.operation,
        "success": record.success,
        "latency_ms": record.latency_ms,
        "prompt_tokens": record.prompt_tokens,
        "completion_tokens": record.completion_tokens,
        "total_tokens": record.total_tokens,
        "temperature": record.temperature,
        "prompt_hash": record.prompt_hash,
        "prompt_length": record.prompt_length,
    }
    if record.finish_reason:
        log_extra["finish_reason"] = record.finish_reason
    if record.error:
        log_extra["error"] = record.error
        log_extra["error_code"] = record.error_code

    if record.success:
        logger.info("LLM call completed", extra=log_extra)
    else:
        logger.error("LLM call failed", extra=log_extra)
