"""
R2 (S3-compatible) storage for synthesized media.

Live TTS providers return raw audio bytes; those are uploaded under
  talkar/audio/{content_hash}.mp3
and the public URL is what the pipeline passes on to the lip-sync stage.
"""

import asyncio
import hashlib
import logging

from talkar.config import PipelineConfig

from .errors import ConfigurationError, TransientProviderError

logger = logging.getLogger(__name__)


def media_key(kind: str, data: bytes, extension: str) -> str:
    """Content-addressed object key, e.g. talkar/audio/3fa2…c1.mp3"""
    digest = hashlib.sha256(data).hexdigest()[:24]
    return f"talkar/{kind}/{digest}.{extension}"


class MediaStorage:
    def __init__(self, config: PipelineConfig):
        if not config.storage_configured:
            raise ConfigurationError("R2 storage is not configured (R2_* variables)")
        self._config = config
        self._client = None

    def _s3(self):
        if self._client is None:
            import boto3
            from botocore.config import Config as BotoConfig

            self._client = boto3.client(
                "s3",
                endpoint_url=f"https://{self._config.r2_account_id}.r2.cloudflarestorage.com",
                aws_access_key_id=self._config.r2_access_key_id,
                aws_secret_access_key=self._config.r2_secret_access_key,
                config=BotoConfig(signature_version="s3v4"),
                region_name="auto",
            )
        return self._client

    def public_url(self, key: str) -> str:
        return f"{self._config.r2_public_url.rstrip('/')}/{key}"

    def _put(self, key: str, data: bytes, content_type: str) -> None:
        self._s3().put_object(
            Bucket=self._config.r2_bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type,
        )

    async def upload(self, kind: str, data: bytes, extension: str, content_type: str) -> str:
        """Upload bytes off the event loop and return the public URL."""
        from botocore.exceptions import BotoCoreError, ClientError

        key = media_key(kind, data, extension)
        try:
            await asyncio.to_thread(self._put, key, data, content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"R2 upload failed for key={key}: {e}")
            raise TransientProviderError(f"R2 upload failed: {e}", "r2") from e

        url = self.public_url(key)
        logger.info(f"Uploaded to R2: {url}")
        return url
