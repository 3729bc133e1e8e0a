from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod"),
        extra="ignore",
    )

    # Language model (OpenAI or any OpenAI-compatible endpoint such as OpenRouter)
    openai_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 60.0

    # LaTeX -> PDF rendering service
    render_service_url: str = "https://latex-to-pdf.lovable.app/functions/v1/latex-convert"
    render_timeout_seconds: float = 60.0

    # Bearer token verification (HS256 shared secret, e.g. Supabase JWT secret)
    auth_enabled: bool = False
    auth_jwt_secret: Optional[str] = None
    auth_jwt_audience: str = "authenticated"

    cors_origins: list[str] = [
        "http://localhost",
        "http://localhost:5173",
        "http://localhost:8000",
        "http://127.0.0.1:8000",
    ]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
