from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod")
    )

    openrouter_api_key: Optional[str] = None
    analysis_model: str = "google/gemini-2.5-flash"

    # When disabled every request runs as a single local dev user
    auth_enabled: bool = False
    # Users created with one of these emails get the admin role
    admin_emails: List[str] = []

    # Cognito Settings (Optional for local dev)
    cognito_user_pool_id: Optional[str] = None
    cognito_app_client_id: Optional[str] = None
    aws_region: Optional[str] = None

    # Uploaded CVs
    upload_dir: str = "./uploads"
    max_upload_bytes: int = 5 * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    return Settings()
