from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    gemini_api_key: str = ""
    agent_model: str = "gemini-2.5-flash"  # default model for every agent seat
    agent_temperature: float = 0.7
    agent_max_output_tokens: int = 400
    # CORS origins; set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    # Extra production origin; appended to allowed_origins
    extra_origin: str = ""
    debug: bool = False

    # Narration pacing (delivery gate)
    delivery_buffer_size: int = 5
    delivery_timeout_seconds: float = 15.0

    # Deliberation limits
    max_hint_attempts: int = 5
    max_team_failures: int = 6
    max_stale_rounds: int = 25
    max_assisted_stale_rounds: int = 10  # auto-hint loop on a team with a human seat
    max_conversation_rounds: int = 20
    max_autoplay_turns: int = 200

    # Transcript sizes passed to the agent port
    history_limit: int = 30
    end_game_history_limit: int = 20

    # A polled game that stops polling for this long is treated as abandoned
    abandon_after_seconds: float = 15.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
