"""
PolicyAgentService: one prompt/completion round trip per operation.
Prompt builder → completion provider → normalizer. Provider errors propagate
unchanged; normalization never fails.
"""
from typing import Optional

from rego_agent.ai.providers import AICompletion, AIProviderError, get_ai_provider
from rego_agent.config import settings
from rego_agent.core.logging import get_logger
from rego_agent.policy.normalizer import normalize_response
from rego_agent.policy.prompts import build_prompts
from rego_agent.policy.rego_analysis import (
    basic_syntax_check,
    check_test_inputs,
    estimate_complexity,
    extract_package_name,
    extract_rules,
)
from rego_agent.policy.schemas import (
    Operation,
    PolicyContext,
    PolicyExplanationResult,
    PolicyRecord,
    PolicyValidationResult,
    StructureAnalysis,
    ValidationResults,
)

logger = get_logger(__name__)


class PolicyAgentService:
    """
    Policy operations backed by the process-wide completion provider.
    All methods raise AIProviderError subclasses on provider failure.
    """

    async def generate_policy(
        self, instructions: str, context: Optional[PolicyContext] = None
    ) -> PolicyRecord:
        system_prompt, user_prompt = build_prompts(Operation.GENERATE, instructions, context)
        completion = await self._complete(Operation.GENERATE, system_prompt, user_prompt)
        return self._to_record(completion, Operation.GENERATE, instructions)

    async def refine_policy(
        self,
        instructions: str,
        existing_policy: str,
        context: Optional[PolicyContext] = None,
    ) -> PolicyRecord:
        system_prompt, user_prompt = build_prompts(
            Operation.REFINE, instructions, context, existing_policy=existing_policy
        )
        completion = await self._complete(Operation.REFINE, system_prompt, user_prompt)
        record = self._to_record(completion, Operation.REFINE, instructions)
        record.is_refinement = True
        return record

    async def validate_policy(self, policy: str) -> PolicyValidationResult:
        """LLM review returned as-is, alongside a static structural lint."""
        system_prompt, user_prompt = build_prompts(Operation.VALIDATE, policy)
        completion = await self._complete(Operation.VALIDATE, system_prompt, user_prompt)

        issues = basic_syntax_check(policy)
        return PolicyValidationResult(
            validation_results=ValidationResults(
                syntax_valid=not any(issue.type == "error" for issue in issues),
                issues=issues,
            ),
            explanation=completion.content,
            metadata=self._metadata(completion, Operation.VALIDATE),
        )

    async def explain_policy(self, policy: str) -> PolicyExplanationResult:
        """LLM explanation returned as-is, alongside the policy's outline."""
        system_prompt, user_prompt = build_prompts(Operation.EXPLAIN, policy)
        completion = await self._complete(Operation.EXPLAIN, system_prompt, user_prompt)

        return PolicyExplanationResult(
            explanation=completion.content,
            structure_analysis=StructureAnalysis(
                package_name=extract_package_name(policy),
                rules=extract_rules(policy),
                complexity=estimate_complexity(policy),
            ),
            metadata=self._metadata(completion, Operation.EXPLAIN),
        )

    # ── internals ─────────────────────────────────────────────────

    async def _complete(
        self, operation: Operation, system_prompt: str, user_prompt: str
    ) -> AICompletion:
        try:
            provider = get_ai_provider()
            completion = await provider.complete(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                max_tokens=settings.AI_MAX_TOKENS_GENERATION,
            )
        except AIProviderError as exc:
            logger.error(
                "AI policy call failed",
                extra={
                    "event": "ai_call_error",
                    "operation": operation.value,
                    "error": str(exc),
                    "error_code": exc.code,
                },
            )
            raise

        logger.info(
            "AI policy call succeeded",
            extra={
                "event": "ai_call",
                "operation": operation.value,
                "provider": completion.provider,
                "model": completion.model,
                "total_tokens": completion.total_tokens,
                "latency_ms": completion.latency_ms,
                "truncated": completion.truncated,
            },
        )
        return completion

    def _to_record(
        self, completion: AICompletion, operation: Operation, instructions: str
    ) -> PolicyRecord:
        record = normalize_response(completion.content)
        warnings = check_test_inputs(record.policy, record.test_inputs)
        if warnings:
            logger.info(
                "Test inputs do not cover every referenced input field",
                extra={"event": "test_input_mismatch", "warning_count": len(warnings)},
            )

        record.metadata = {
            **self._metadata(completion, operation),
            "instructions": instructions,
            "normalization": record.metadata.get("normalization"),
            "structure_warnings": warnings,
        }
        return record

    @staticmethod
    def _metadata(completion: AICompletion, operation: Operation) -> dict:
        return {
            "model": completion.model,
            "provider": completion.provider,
            "operation": operation.value,
            "agent_version": settings.APP_VERSION,
            "truncated": completion.truncated,
        }


policy_agent = PolicyAgentService()
