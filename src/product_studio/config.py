from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Loads keys from process env, and also from a local .env file.
    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_file=".env", env_file_encoding="utf-8")

    data_dir: str = "data"
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    # Keys
    gemini_api_key: str | None = None

    # Models
    gemini_image_model: str = "gemini-2.5-flash-image"
    gemini_text_model: str = "gemini-2.5-flash"

    # Editing / export
    export_width: int = 1080
    default_brush_size: int = 30


settings = Settings()
