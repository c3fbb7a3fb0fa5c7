"""Configuration management using Pydantic settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "KUBECHAOS"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Chaos session
    chaos_enabled: bool = True
    chaos_tick_interval: float = 1.0        # seconds between session ticks
    chaos_game_over_threshold: float = 0.0  # cluster health at which the session ends

    # Incident engine
    incident_combo_window: float = 10.0     # seconds between fixes that keep a combo alive
    incident_seed: Optional[int] = None     # fixed RNG seed for reproducible waves

    # WebSocket bridge
    ws_bridge_enabled: bool = True


settings = Settings()
