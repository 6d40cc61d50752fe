from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Advisor Assistant"
    debug: bool = False

    # Paths
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "advisor.db"
    database_url: str = ""  # overrides db_path, e.g. postgresql://...

    # Relative dates ("yesterday", "this week") and proposed slots resolve in this zone
    timezone: str = "UTC"

    # LLM
    llm_provider: str = "gemini"  # gemini
    gemini_api_key: str = ""
    llm_model: str = "gemini-2.0-flash"
    llm_temperature: float = 0.7
    llm_max_output_tokens: int = 1000

    # Conversation turns
    turn_timeout_seconds: float = 30.0
    history_limit: int = 20
    context_max_chars: int = 8000
    conversation_retention_minutes: int = 60
    housekeeping_interval_seconds: int = 300

    # Provider calls
    provider_max_attempts: int = 3
    provider_base_delay_seconds: float = 1.0
    gmail_rate_limit: tuple[int, float] = (250, 100.0)
    calendar_rate_limit: tuple[int, float] = (100, 100.0)
    hubspot_rate_limit: tuple[int, float] = (50, 10.0)

    # Google
    google_client_id: str = ""
    google_client_secret: str = ""

    # HubSpot
    hubspot_base_url: str = "https://api.hubapi.com"

    # Server
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "ADVISOR_",
    }


settings = Settings()
