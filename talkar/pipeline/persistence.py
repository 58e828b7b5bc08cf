"""
Video-ready persistence.

After a live lip-sync succeeds, the video URL is recorded against the poster
so the AR client can play it without regenerating:

  avatars               one row per avatar image (found by avatar_image_url)
  image_avatar_mappings (image_id, avatar_id) → video_url, unique per pair

Failures here never fail the job; they are logged and counted.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from supabase import Client, create_client

from talkar import metrics
from talkar.config import PipelineConfig

from .errors import ConfigurationError
from .models import Source, VideoReadyEvent

logger = logging.getLogger(__name__)

DEFAULT_AVATAR_NAME = "TalkAR Avatar"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseVideoRecorder:
    """Video-ready hook that upserts avatar + mapping rows in Supabase."""

    def __init__(self, config: Optional[PipelineConfig] = None, client: Optional[Client] = None):
        if client is None and (config is None or not config.supabase_configured):
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        self._config = config
        self._client = client

    def _get_client(self) -> Client:
        """Lazy-init Supabase client using service role key."""
        if self._client is None:
            self._client = create_client(
                self._config.supabase_url, self._config.supabase_service_role_key
            )
        return self._client

    async def __call__(self, event: VideoReadyEvent) -> None:
        if event.source == Source.MOCK:
            logger.debug(f"Skipping persistence of mock video for subject={event.subject_id}")
            return
        if not event.subject_id:
            logger.debug("Skipping persistence: video has no subject id")
            return

        try:
            await asyncio.to_thread(self._save, event)
            metrics.inc_counter("persistence.saved")
        except Exception as e:
            metrics.inc_counter("persistence.failed")
            logger.warning(f"Failed to record video for subject={event.subject_id}: {e}")

    def _save(self, event: VideoReadyEvent) -> None:
        client = self._get_client()
        avatar_id = self._find_or_create_avatar(client, event)

        existing = (
            client.table("image_avatar_mappings")
            .select("id")
            .eq("image_id", event.subject_id)
            .eq("avatar_id", avatar_id)
            .execute()
        )
        if existing.data:
            client.table("image_avatar_mappings").update({
                "video_url": event.video_url,
                "is_active": True,
                "updated_at": _now_iso(),
            }).eq("id", existing.data[0]["id"]).execute()
            logger.info(f"Updated mapping image={event.subject_id} avatar={avatar_id}")
        else:
            client.table("image_avatar_mappings").insert({
                "image_id": event.subject_id,
                "avatar_id": avatar_id,
                "video_url": event.video_url,
                "is_active": True,
            }).execute()
            logger.info(f"Created mapping image={event.subject_id} avatar={avatar_id}")

    def _find_or_create_avatar(self, client: Client, event: VideoReadyEvent) -> str:
        found = (
            client.table("avatars")
            .select("id")
            .eq("avatar_image_url", event.avatar_url)
            .limit(1)
            .execute()
        )
        if found.data:
            avatar_id = found.data[0]["id"]
            client.table("avatars").update({
                "avatar_video_url": event.video_url,
                "updated_at": _now_iso(),
            }).eq("id", avatar_id).execute()
            return avatar_id

        created = client.table("avatars").insert({
            "name": DEFAULT_AVATAR_NAME,
            "description": f"Generated {event.emotion} talking head",
            "avatar_image_url": event.avatar_url,
            "avatar_video_url": event.video_url,
            "is_active": True,
        }).execute()
        return created.data[0]["id"]
