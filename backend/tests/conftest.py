"""
Shared fixtures. Environment is pinned before rego_agent.config is imported.
"""
import os

os.environ["AI_PROVIDER"] = "openai"
os.environ.setdefault("OPENAI_API_KEY", "sk-test-key")
os.environ.pop("OPENAI_SECRET_ARN", None)

import pytest  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

from rego_agent.ai.providers import AICompletion, AIProvider, set_ai_provider  # noqa: E402


class FakeProvider(AIProvider):
    """In-memory provider: returns queued text or raises a queued error."""

    provider_name = "fake"

    def __init__(self, content: str = "", error: Exception = None):
        self.content = content
        self.error = error
        self.calls = []
        self.close = AsyncMock()

    async def complete(self, system_prompt, user_prompt, max_tokens=None):
        self.calls.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        return AICompletion(
            content=self.content,
            provider="fake",
            model="fake-model",
            total_tokens=42,
            latency_ms=1.0,
            finish_reason="stop",
        )


@pytest.fixture
def fake_provider():
    provider = FakeProvider()
    set_ai_provider(provider)
    yield provider
    set_ai_provider(None)


@pytest.fixture
def clean_policy_json():
    return (
        '{"policy": "package authz\\n\\ndefault allow := false\\n\\n'
        'allow if input.user.role == \\"admin\\"",'
        ' "explanation": "Only admins are allowed.",'
        ' "test_inputs": ['
        '{"description": "admin", "input": {"user": {"role": "admin"}}, "expected": true},'
        '{"description": "guest", "input": {"user": {"role": "guest"}}, "expected": false}'
        "]}"
    )
