"""
Policy API endpoints: generate, refine, validate, explain, classify.
generate/refine answer with a synthesized SSE stream when the client sends
`Accept: text/event-stream`, otherwise with one JSON body.
"""
from typing import Awaitable, Callable, Iterator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from rego_agent.ai.providers import AIProviderError
from rego_agent.core.logging import get_logger
from rego_agent.policy.classifier import classify_operation
from rego_agent.policy.errors import PolicyRequestError
from rego_agent.policy.schemas import (
    ClassifyRequest,
    ClassifyResponse,
    GeneratePolicyRequest,
    PolicyExplanationResult,
    PolicyRecord,
    PolicyTextRequest,
    PolicyValidationResult,
    RefinePolicyRequest,
    StreamEvent,
)
from rego_agent.policy.service import policy_agent
from rego_agent.policy.streaming import SSE_HEADERS, error_events, format_sse, synthesize_events

logger = get_logger(__name__)

router = APIRouter()


def wants_event_stream(request: Request) -> bool:
    return "text/event-stream" in request.headers.get("accept", "").lower()


def event_stream(
    request: Request,
    events: Iterator[StreamEvent],
    operation: str,
    status_code: int = 200,
) -> StreamingResponse:
    """
    Wrap a finished event sequence in an SSE response. The client connection
    is checked before every frame; a disconnect ends the body without a
    terminal event.
    """

    async def event_source():
        finished = False
        try:
            for event in events:
                if await request.is_disconnected():
                    return
                yield format_sse(event)
            finished = True
        finally:
            if not finished:
                logger.info(
                    "Stream aborted by client",
                    extra={"event": "stream_aborted", "operation": operation},
                )

    return StreamingResponse(
        event_source(),
        status_code=status_code,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def stream_policy(
    request: Request,
    produce: Callable[[], Awaitable[PolicyRecord]],
    operation: str,
    refinement: bool = False,
) -> StreamingResponse:
    """
    Run the pipeline, then answer with SSE frames. A failure becomes a single
    error event sent with the error's own status code (429 for rate limits).
    """
    try:
        record = await produce()
    except (AIProviderError, PolicyRequestError) as exc:
        return event_stream(request, error_events(str(exc), exc.code), operation, exc.status_code)
    except Exception:
        logger.exception(
            "Streaming generation failed",
            extra={"event": "stream_error", "operation": operation},
        )
        return event_stream(
            request,
            error_events("Streaming generation failed", "STREAMING_ERROR"),
            operation,
            status_code=500,
        )

    return event_stream(request, synthesize_events(record, refinement=refinement), operation)


@router.post("/generate-policy", response_model=PolicyRecord)
async def generate_policy(data: GeneratePolicyRequest, request: Request):
    """Generate a Rego policy from natural-language instructions."""
    if wants_event_stream(request):
        return await stream_policy(
            request,
            lambda: policy_agent.generate_policy(data.instructions, data.context),
            operation="generate",
        )
    record = await policy_agent.generate_policy(data.instructions, data.context)
    return JSONResponse(record.to_payload())


@router.post("/refine-policy", response_model=PolicyRecord)
async def refine_policy(data: RefinePolicyRequest, request: Request):
    """Modify an existing policy, keeping its package and untouched rules."""
    if wants_event_stream(request):
        return await stream_policy(
            request,
            lambda: policy_agent.refine_policy(data.instructions, data.existing_policy, data.context),
            operation="refine",
            refinement=True,
        )
    record = await policy_agent.refine_policy(data.instructions, data.existing_policy, data.context)
    return JSONResponse(record.to_payload())


@router.post("/validate-policy", response_model=PolicyValidationResult)
async def validate_policy(data: PolicyTextRequest):
    """LLM review plus static lint of a policy."""
    return await policy_agent.validate_policy(data.policy)


@router.post("/explain-policy", response_model=PolicyExplanationResult)
async def explain_policy(data: PolicyTextRequest):
    """Plain-English explanation plus outline of a policy."""
    return await policy_agent.explain_policy(data.policy)


@router.post("/classify-instructions", response_model=ClassifyResponse)
async def classify_instructions(data: ClassifyRequest):
    """Guess which operation free-form instructions ask for."""
    operation = classify_operation(data.instructions, bool(data.existing_policy))
    return ClassifyResponse(operation=operation)
