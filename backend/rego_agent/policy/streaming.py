"""
Synthetic Server-Sent-Events stream for a completed PolicyRecord.

The completion has already returned in full; the UI animates a typing
effect from one event per character. Order is fixed: start, every policy
character, every explanation character, then complete. A failed request
yields a single error event and nothing else. No delay is applied here.
"""
import json
from typing import Iterator

from rego_agent.policy.schemas import PolicyRecord, StreamEvent

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def start_event(record: PolicyRecord, refinement: bool = False) -> StreamEvent:
    data = {
        "policy": "",
        "test_inputs": [],
        "explanation": "",
        "timestamp": record.timestamp.isoformat(),
    }
    if refinement:
        data["refinement"] = True
    return StreamEvent(type="start", data=data)


def synthesize_events(record: PolicyRecord, refinement: bool = False) -> Iterator[StreamEvent]:
    """Explode a record into start → policy_char* → explanation_char* → complete."""
    yield start_event(record, refinement)

    for index, char in enumerate(record.policy):
        yield StreamEvent(
            type="policy_char",
            data={"char": char, "index": index, "section": "policy"},
        )

    for index, char in enumerate(record.explanation):
        yield StreamEvent(
            type="explanation_char",
            data={"char": char, "index": index, "section": "explanation"},
        )

    yield StreamEvent(type="complete", data=record.to_payload())


def error_events(message: str, code: str) -> Iterator[StreamEvent]:
    """The whole stream for a failed request."""
    yield StreamEvent(type="error", data={"message": message, "code": code})


def format_sse(event: StreamEvent) -> str:
    """One SSE frame: `data: <json>` and a blank line. No id or retry fields."""
    payload = json.dumps(event.model_dump(mode="json"), ensure_ascii=False)
    return f"data: {payload}\n\n"
