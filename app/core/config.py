import os
import logging
from pydantic import BaseModel, Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()

class AISettings(BaseModel):
    openrouter_api_key: Optional[str] = Field(default=os.getenv("OPENROUTER_API_KEY"))
    base_url: str = os.getenv("OPENROUTER_URL", "https://openrouter.ai/api/v1/chat/completions")
    model_name: str = Field(default=os.getenv("AI_MODEL_NAME", "google/gemini-2.0-flash-001"))
    fallback_model: str = os.getenv("AI_FALLBACK_MODEL", "google/gemini-2.0-flash-lite-preview-02-05:free")
    kill_switch: bool = Field(default=os.getenv("AI_KILL_SWITCH", "false").lower() == "true")
    timeout_seconds: float = float(os.getenv("AI_TIMEOUT_SECONDS", "120"))
    temperature: float = 0.2

class Config(BaseModel):
    app_name: str = "ResumeIQ"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"
    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"

    # Database (also backs the key-value store)
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./database.db")

    # Auth
    secret_key: str = os.getenv("SECRET_KEY", "dev-only-insecure-key-DO-NOT-USE-IN-PROD")
    access_token_expire_minutes: int = 60 * 24  # 24 hours
    auth_cookie_name: str = "access_token"

    # AI Components
    ai: AISettings = AISettings()

    # File storage
    storage_dir: str = os.getenv("STORAGE_DIR", "uploads")

    # Ingestion limits
    max_upload_bytes: int = 5 * 1024 * 1024
    max_render_bytes: int = 10 * 1024 * 1024
    redirect_delay_ms: int = 1000
    kv_namespace: str = "resume:"

    # Preview rendering
    render_scale: float = 2.5
    preview_format: str = os.getenv("PREVIEW_FORMAT", "png")
    preview_quality: float = 0.92

    # Review screen blob URLs
    review_session_ttl_seconds: int = int(os.getenv("REVIEW_SESSION_TTL_SECONDS", "1800"))

    # Rate limiting
    rate_limit_enabled: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    upload_rate_limit: str = os.getenv("UPLOAD_RATE_LIMIT", "10/minute")

    # CORS: comma-separated origins from env
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://localhost:5173,"
                "http://127.0.0.1:3000,http://127.0.0.1:5173",
            ).split(",")
            if o.strip()
        ]
    )

settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment not in ("development", "testing"):
    if "dev-only" in settings.secret_key:
        raise RuntimeError(
            "FATAL: SECRET_KEY must be set for non-development environments. "
            "Set it as an environment variable."
        )
else:
    if "dev-only" in settings.secret_key:
        _logger.warning("⚠ Using insecure default SECRET_KEY, acceptable in development only.")
