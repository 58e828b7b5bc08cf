"""
Environment-driven configuration for the TalkAR generation worker.

Every provider key is optional. A stage whose provider is not configured
runs on its mock adapter, so the whole pipeline works without network
access or credentials.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

DEV_ENVIRONMENTS = {"development", "test"}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


class PipelineConfig(BaseModel):
    environment: str = "production"
    strict_providers: bool = False

    # ── Script providers ────────────────────────────────────────────────
    ai_provider: str = "openai"  # openai | groq
    openai_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None

    # ── TTS providers ───────────────────────────────────────────────────
    tts_provider: str = "elevenlabs"  # elevenlabs | google
    elevenlabs_api_key: Optional[str] = None
    google_tts_api_key: Optional[str] = None

    # ── Lip-sync provider ───────────────────────────────────────────────
    sync_api_key: Optional[str] = None
    sync_api_url: str = "https://api.sync.so/v2"
    sync_poll_interval: float = 2.0

    # ── Storage / persistence ───────────────────────────────────────────
    r2_account_id: Optional[str] = None
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None
    r2_bucket_name: str = "talkar-media"
    r2_public_url: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    redis_url: Optional[str] = None

    # ── Content ─────────────────────────────────────────────────────────
    product_metadata_path: str = "data/product-metadata.json"
    avatar_base_url: str = "https://talkar-image-storage.com"
    mock_media_base_url: str = "https://mock-media.talkar.local"
    mock_delay_seconds: float = 0.0

    # ── Retry / timeouts ────────────────────────────────────────────────
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    script_timeout: float = 10.0
    audio_timeout: float = 30.0
    video_timeout: float = 60.0

    @property
    def is_dev_mode(self) -> bool:
        return self.environment.lower() in DEV_ENVIRONMENTS

    @property
    def storage_configured(self) -> bool:
        return bool(
            self.r2_account_id
            and self.r2_access_key_id
            and self.r2_secret_access_key
            and self.r2_public_url
        )

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build the config from the process environment (after .env is loaded)."""
        return cls(
            environment=os.getenv("ENVIRONMENT", "production"),
            strict_providers=_env_flag("STRICT_PROVIDERS"),
            ai_provider=os.getenv("AI_PROVIDER", "openai").lower(),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            groq_api_key=os.getenv("GROQCLOUD_API_KEY") or None,
            tts_provider=os.getenv("TTS_PROVIDER", "elevenlabs").lower(),
            elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY") or None,
            google_tts_api_key=os.getenv("GOOGLE_CLOUD_TTS_API_KEY") or None,
            sync_api_key=os.getenv("SYNC_API_KEY") or None,
            sync_api_url=os.getenv("SYNC_API_URL", "https://api.sync.so/v2"),
            sync_poll_interval=_env_float("SYNC_POLL_INTERVAL", 2.0),
            r2_account_id=os.getenv("R2_ACCOUNT_ID") or None,
            r2_access_key_id=os.getenv("R2_ACCESS_KEY_ID") or None,
            r2_secret_access_key=os.getenv("R2_SECRET_ACCESS_KEY") or None,
            r2_bucket_name=os.getenv("R2_BUCKET_NAME", "talkar-media"),
            r2_public_url=os.getenv("R2_PUBLIC_URL") or None,
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None,
            redis_url=os.getenv("REDIS_URL") or None,
            product_metadata_path=os.getenv("PRODUCT_METADATA_PATH", "data/product-metadata.json"),
            avatar_base_url=os.getenv("AVATAR_BASE_URL", "https://talkar-image-storage.com"),
            mock_media_base_url=os.getenv("MOCK_MEDIA_BASE_URL", "https://mock-media.talkar.local"),
            mock_delay_seconds=_env_float("MOCK_DELAY_SECONDS", 0.0),
            retry_max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
            retry_base_delay=_env_float("RETRY_BASE_DELAY", 1.0),
            script_timeout=_env_float("SCRIPT_TIMEOUT", 10.0),
            audio_timeout=_env_float("AUDIO_TIMEOUT", 30.0),
            video_timeout=_env_float("VIDEO_TIMEOUT", 60.0),
        )
