"""
Audio stage — text-to-speech.

Live:  ElevenLabs (voice per language/emotion) or Google Cloud TTS
       (voice per language, rate/pitch per emotion). The returned bytes are
       uploaded to R2 and the public URL is returned.
Mock:  deterministic URL from a hash of (text, language, emotion); duration
       estimated from the word count.
"""

import base64
import binascii
import hashlib
import logging
from typing import Optional, Protocol

import httpx

from .base import MockAdapter, StageAdapter
from .errors import PermanentProviderError, classify_http_error
from .models import AudioInput, Source, Stage, StageResult

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1/text-to-speech"
ELEVENLABS_MODEL = "eleven_multilingual_v2"
GOOGLE_TTS_API_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"

WORDS_PER_SECOND = 2.5
MIN_AUDIO_SECONDS = 1.0

DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"  # "Rachel"
ELEVENLABS_VOICES = {
    # language → emotion → voice id; unknown combos use DEFAULT_VOICE_ID
    "en": {"serious": "pNInz6obpgDQGcFmaJgB", "surprised": "EXAVITQu4vr4xnSDxMaL"},
    "es": {},
    "fr": {},
    "hi": {},
}

ELEVENLABS_EMOTION_SETTINGS = {
    "happy": {"stability": 0.35, "similarity_boost": 0.75, "style": 0.6},
    "surprised": {"stability": 0.25, "similarity_boost": 0.75, "style": 0.8},
    "serious": {"stability": 0.75, "similarity_boost": 0.75, "style": 0.1},
}
ELEVENLABS_DEFAULT_SETTINGS = {"stability": 0.5, "similarity_boost": 0.5, "style": 0.3}

GOOGLE_VOICES = {
    "en": {"languageCode": "en-US", "name": "en-US-Standard-C", "ssmlGender": "FEMALE"},
    "es": {"languageCode": "es-ES", "name": "es-ES-Standard-A", "ssmlGender": "FEMALE"},
    "fr": {"languageCode": "fr-FR", "name": "fr-FR-Standard-A", "ssmlGender": "FEMALE"},
    "hi": {"languageCode": "hi-IN", "name": "hi-IN-Standard-A", "ssmlGender": "FEMALE"},
}

GOOGLE_EMOTION_PROSODY = {
    "happy": {"speakingRate": 1.1, "pitch": 2.0},
    "serious": {"speakingRate": 0.9, "pitch": -2.0},
    "surprised": {"speakingRate": 1.2, "pitch": 3.0},
    "neutral": {"speakingRate": 1.0, "pitch": 0.0},
}


def estimate_duration(text: str) -> float:
    """Spoken duration in seconds, from the word count."""
    words = len(text.split())
    return round(max(MIN_AUDIO_SECONDS, words / WORDS_PER_SECOND), 2)


def select_voice_id(language: str, emotion: str) -> str:
    return ELEVENLABS_VOICES.get(language, {}).get(emotion, DEFAULT_VOICE_ID)


class AudioUploader(Protocol):
    async def upload(self, kind: str, data: bytes, extension: str, content_type: str) -> str:
        ...


# ── Live ─────────────────────────────────────────────────────────────────────

class ElevenLabsAudioAdapter(StageAdapter[AudioInput]):
    stage = Stage.AUDIO
    source = Source.LIVE
    name = "elevenlabs"

    def __init__(
        self,
        api_key: str,
        storage: AudioUploader,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.storage = storage
        self._transport = transport

    async def run(self, stage_input: AudioInput) -> StageResult:
        voice_id = select_voice_id(stage_input.language, stage_input.emotion)
        payload = {
            "text": stage_input.text,
            "model_id": ELEVENLABS_MODEL,
            "voice_settings": ELEVENLABS_EMOTION_SETTINGS.get(
                stage_input.emotion, ELEVENLABS_DEFAULT_SETTINGS
            ),
        }
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }

        try:
            async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
                response = await client.post(
                    f"{ELEVENLABS_API_URL}/{voice_id}", headers=headers, json=payload
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise classify_http_error(e, self.name) from e

        audio_bytes = response.content
        if not audio_bytes:
            raise PermanentProviderError("Empty audio from ElevenLabs", self.name)

        audio_url = await self.storage.upload("audio", audio_bytes, "mp3", "audio/mpeg")
        duration = estimate_duration(stage_input.text)
        logger.info(f"ElevenLabs audio ready: {audio_url} (~{duration}s)")
        return StageResult(stage=self.stage, source=self.source, url=audio_url, duration=duration)


class GoogleTTSAudioAdapter(StageAdapter[AudioInput]):
    stage = Stage.AUDIO
    source = Source.LIVE
    name = "google-tts"

    def __init__(
        self,
        api_key: str,
        storage: AudioUploader,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.storage = storage
        self._transport = transport

    async def run(self, stage_input: AudioInput) -> StageResult:
        prosody = GOOGLE_EMOTION_PROSODY.get(stage_input.emotion, GOOGLE_EMOTION_PROSODY["neutral"])
        payload = {
            "input": {"text": stage_input.text},
            "voice": GOOGLE_VOICES.get(stage_input.language, GOOGLE_VOICES["en"]),
            "audioConfig": {"audioEncoding": "MP3", **prosody},
        }

        try:
            async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
                response = await client.post(
                    GOOGLE_TTS_API_URL, params={"key": self.api_key}, json=payload
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise classify_http_error(e, self.name) from e
        except ValueError as e:
            raise PermanentProviderError("Google TTS returned invalid JSON", self.name) from e

        encoded = data.get("audioContent") if isinstance(data, dict) else None
        if not encoded:
            raise PermanentProviderError("Google TTS response has no audioContent", self.name)
        try:
            audio_bytes = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise PermanentProviderError("Google TTS audioContent is not base64", self.name) from e

        audio_url = await self.storage.upload("audio", audio_bytes, "mp3", "audio/mpeg")
        duration = estimate_duration(stage_input.text)
        logger.info(f"Google TTS audio ready: {audio_url} (~{duration}s)")
        return StageResult(stage=self.stage, source=self.source, url=audio_url, duration=duration)


# ── Mock ─────────────────────────────────────────────────────────────────────

class MockAudioAdapter(MockAdapter[AudioInput]):
    stage = Stage.AUDIO
    name = "mock-audio"

    def __init__(self, base_url: str = "https://mock-media.talkar.local", delay: float = 0.0):
        super().__init__(delay)
        self.base_url = base_url.rstrip("/")

    async def run(self, stage_input: AudioInput) -> StageResult:
        await self._simulate_latency()
        digest = hashlib.sha1(
            f"{stage_input.text}|{stage_input.language}|{stage_input.emotion}".encode("utf-8")
        ).hexdigest()[:12]
        url = f"{self.base_url}/audio/mock-{digest}-{stage_input.language}-{stage_input.emotion}.mp3"
        return StageResult(
            stage=self.stage,
            source=self.source,
            url=url,
            duration=estimate_duration(stage_input.text),
        )
