"""
Application configuration loaded from environment variables.
Single completion provider per process, selected and validated at load time.
"""
from pydantic_settings import BaseSettings
from pydantic import model_validator
from typing import List


class Settings(BaseSettings):
    # ── App ──
    APP_NAME: str = "Rego Policy Agent"
    APP_VERSION: str = "2.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000"

    # ── AI Provider ──
    AI_PROVIDER: str = "openai"  # openai | gemini | ollama | auto
    AI_TEMPERATURE: float = 0.1  # Low temperature biases toward well-formed JSON

    # ── OpenAI ──
    OPENAI_API_KEY: str = ""
    OPENAI_SECRET_ARN: str = ""  # AWS Secrets Manager secret holding {"api_key": ...}
    AWS_REGION: str = "us-east-1"
    AI_MODEL_OPENAI: str = "gpt-4o-mini"

    # ── Gemini ──
    GEMINI_API_KEY: str = ""
    AI_MODEL_GEMINI: str = "gemini-1.5-pro"

    # ── Ollama ──
    OLLAMA_BASE_URL: str = "http://localhost:11434/v1"
    OLLAMA_MODEL: str = "qwen2.5:7b-instruct"

    # ── AI Limits ──
    AI_MAX_TOKENS_GENERATION: int = 2000
    AI_TIMEOUT_SECONDS: float = 29.0  # API Gateway hard limit is 29s

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def AI_MODEL(self) -> str:
        """Convenience alias — the model name for the active AI provider."""
        p = self.AI_PROVIDER.lower()
        if p == "gemini":
            return self.AI_MODEL_GEMINI
        if p == "ollama":
            return self.OLLAMA_MODEL
        return self.AI_MODEL_OPENAI  # default for openai / auto

    @property
    def active_ai_model(self) -> str:
        """Return the model name for the active AI provider."""
        return self.AI_MODEL

    @model_validator(mode="after")
    def validate_ai_config(self) -> "Settings":
        """Validate AI provider configuration.

        - openai: needs OPENAI_API_KEY or OPENAI_SECRET_ARN (key fetched lazily).
        - gemini: needs GEMINI_API_KEY.
        - ollama: only needs base_url (has default).
        - auto: at least one of the above.
        """
        provider = self.AI_PROVIDER.lower().strip()
        valid_providers = {"openai", "gemini", "ollama", "auto"}

        if provider not in valid_providers:
            raise ValueError(
                f"AI_PROVIDER must be one of {sorted(valid_providers)}, got '{provider}'"
            )

        has_openai = bool(self.OPENAI_API_KEY or self.OPENAI_SECRET_ARN)

        if provider == "openai" and not has_openai:
            raise ValueError(
                "AI_PROVIDER=openai requires OPENAI_API_KEY or OPENAI_SECRET_ARN. "
                "Set the environment variable or update .env."
            )
        if provider == "gemini" and not self.GEMINI_API_KEY:
            raise ValueError(
                "AI_PROVIDER=gemini requires GEMINI_API_KEY. "
                "Set the environment variable or update .env."
            )

        if provider == "auto":
            if not (has_openai or self.GEMINI_API_KEY or self.OLLAMA_BASE_URL):
                raise ValueError(
                    "AI_PROVIDER=auto requires at least one provider configured "
                    "(OPENAI_API_KEY, GEMINI_API_KEY, or OLLAMA_BASE_URL)."
                )

        if self.AI_TEMPERATURE < 0 or self.AI_TEMPERATURE > 2:
            raise ValueError(
                f"AI_TEMPERATURE must be 0–2, got {self.AI_TEMPERATURE}"
            )
        if self.AI_TIMEOUT_SECONDS <= 0:
            raise ValueError(
                f"AI_TIMEOUT_SECONDS must be positive, got {self.AI_TIMEOUT_SECONDS}"
            )
        if self.AI_MAX_TOKENS_GENERATION <= 0:
            raise ValueError(
                f"AI_MAX_TOKENS_GENERATION must be positive, got {self.AI_MAX_TOKENS_GENERATION}"
            )

        return self

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
