from pydantic_settings import BaseSettings
from pydantic import AliasChoices, Field


class Settings(BaseSettings):
    llm_api_key: str = Field(
        default="EMPTY",
        validation_alias=AliasChoices(
            "SYMPCHECK_LLM_API_KEY",
            "GITHUB_TOKEN",
            "OPENAI_API_KEY",
        ),
    )

    # External OpenAI-compatible chat-completion endpoint
    llm_base_url: str = "https://models.github.ai/inference"
    llm_model: str = "openai/gpt-4.1-mini"
    llm_max_tokens: int = 1024
    llm_temperature: float = 0.0
    llm_request_timeout_seconds: float = 30.0
    llm_max_retries: int = 2
    llm_retry_backoff_seconds: float = 0.5
    llm_log_enabled: bool = False
    llm_log_path: str = "logs/llm_calls.jsonl"

    # Concurrency
    llm_max_concurrent_calls: int = 4

    # Gateway content retries (empty / malformed / unrecognised output)
    gateway_max_attempts: int = 3
    gateway_retry_backoff_seconds: float = 0.3
    diagnosis_retry_backoff_seconds: float = 0.5

    # Conversation
    duplicate_question_max_depth: int = 3

    # Thresholds
    diagnosis_score_threshold: float = 0.25

    # Server
    host: str = "0.0.0.0"
    port: int = 5156
    cors_origins: list[str] = ["http://localhost:4200", "http://localhost:3000"]

    model_config = {"env_prefix": "SYMPCHECK_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
