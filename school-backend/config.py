import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables from this file's directory so running uvicorn from repo root still works
ENV_PATH = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(dotenv_path=ENV_PATH)

DEFAULT_SECRET_KEY = "school-dev-secret-change-this-in-production"


class Settings(BaseModel):
    """Runtime configuration, built once from the environment."""

    app_env: str = "development"
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "school_db"

    secret_key: str = DEFAULT_SECRET_KEY
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days
    reset_token_expire_minutes: int = 60

    cors_origins: List[str] = []
    request_timeout_seconds: int = 30
    frontend_url: str = "http://localhost:5173"

    brevo_api_key: Optional[str] = None
    from_email: Optional[str] = None

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def load_settings() -> Settings:
    """Read settings from environment variables"""
    cors_origins_env = os.getenv("CORS_ORIGINS", "").strip()

    settings = Settings(
        app_env=os.getenv("APP_ENV", "development").lower(),
        mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
        mongo_db_name=os.getenv("MONGO_DB_NAME", "school_db"),
        secret_key=os.getenv("JWT_SECRET", DEFAULT_SECRET_KEY),
        algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)),
        reset_token_expire_minutes=int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", 60)),
        cors_origins=[o.strip() for o in cors_origins_env.split(",") if o.strip()],
        request_timeout_seconds=int(os.getenv("REQUEST_TIMEOUT_SECONDS", 30)),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:5173"),
        brevo_api_key=os.getenv("BREVO_API_KEY"),
        from_email=os.getenv("FROM_EMAIL"),
    )

    if not settings.is_development and settings.secret_key == DEFAULT_SECRET_KEY:
        raise ValueError("JWT_SECRET must be set outside development")

    return settings


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
