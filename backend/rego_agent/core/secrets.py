"""
Provider credential lookup.
OPENAI_API_KEY wins when set; otherwise the key is read once per process from
the AWS Secrets Manager secret named by OPENAI_SECRET_ARN.
"""
import json
from functools import lru_cache

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from rego_agent.config import settings
from rego_agent.core.logging import get_logger

logger = get_logger(__name__)


class SecretLookupError(RuntimeError):
    """The provider credential could not be resolved."""


@lru_cache(maxsize=None)
def fetch_secret_api_key(secret_id: str, region_name: str) -> str:
    """Read a JSON secret of the form {"api_key": "..."} from Secrets Manager."""
    client = boto3.client("secretsmanager", region_name=region_name)
    try:
        response = client.get_secret_value(SecretId=secret_id)
    except (BotoCoreError, ClientError) as exc:
        logger.error(
            "Failed to retrieve provider secret",
            extra={"event": "secret_fetch_error", "error": str(exc)},
        )
        raise SecretLookupError(f"Failed to retrieve API key from {secret_id}") from exc

    try:
        secret = json.loads(response.get("SecretString") or "{}")
    except json.JSONDecodeError as exc:
        raise SecretLookupError(f"Secret {secret_id} is not valid JSON") from exc

    api_key = secret.get("api_key") if isinstance(secret, dict) else None
    if not api_key:
        raise SecretLookupError(f"Secret {secret_id} has no 'api_key' field")

    logger.info("Provider secret loaded", extra={"event": "secret_loaded"})
    return api_key


def resolve_openai_api_key() -> str:
    """Return the OpenAI key from settings, falling back to Secrets Manager."""
    if settings.OPENAI_API_KEY:
        return settings.OPENAI_API_KEY
    if settings.OPENAI_SECRET_ARN:
        return fetch_secret_api_key(settings.OPENAI_SECRET_ARN, settings.AWS_REGION)
    return ""
