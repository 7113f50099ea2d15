from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # Text generation
    llm_provider: str = "anthropic"  # "anthropic" or "openai"
    anthropic_api_key: str = ""
    llm_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    # When set, the OpenAI backend talks to Azure OpenAI instead
    azure_openai_endpoint: str = ""
    azure_openai_api_version: str = "2024-05-01-preview"
    azure_openai_deployment: str = "gpt-4o"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 4000
    max_chunk_length: int = 100_000

    # Directory (Microsoft Graph, client credentials)
    azure_tenant_id: str = ""
    azure_client_id: str = ""
    azure_client_secret: str = ""
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    identity_cache_ttl_seconds: float = 300.0
    identity_batch_size: int = 5

    # Ticketing (Azure DevOps)
    devops_org_url: str = ""
    devops_pat: str = ""
    devops_project: str = "Engineering"
    devops_api_version: str = "7.1"
    devops_default_work_item_type: str = "Task"
    devops_user_story_type: str = "User Story"  # "Product Backlog Item" for Scrum
    devops_area_path: str = ""
    devops_iteration_path: str = ""
    devops_triage_user: str = ""
    delivery_batch_size: int = 5
    delivery_batch_delay_ms: int = 500

    # Feature flags
    enable_retries: bool = True
    max_retries: int = 3
    retry_delay_ms: int = 1000
    retry_max_delay_ms: int = 30_000
    retry_jitter: float = 0.2
    enable_telemetry: bool = True
    log_level: str = "INFO"
    log_json: bool = False

    # Deadline policy (0 = Monday ... 4 = Friday)
    sprint_end_weekday: int = 4

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
