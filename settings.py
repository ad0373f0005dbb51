from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod")
    )

    # Auth provider settings (disabled for local dev)
    auth_enabled: bool = False
    auth_issuer: Optional[str] = None
    auth_audience: Optional[str] = None
    # Defaults to "{auth_issuer}/.well-known/jwks.json" when unset
    auth_jwks_url: Optional[str] = None

    # Product decision pending: re-applying to the same job is allowed by default
    allow_duplicate_applications: bool = True

    cors_origins: List[str] = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1",
        "http://127.0.0.1:3000",
    ]

    # Application base URL (for constructing callback URLs etc.)
    app_base_url: str = "http://localhost:8000"  # Default for local dev


@lru_cache()
def get_settings() -> Settings:
    return Settings()
