"""
Request normalization and fingerprinting.

`normalize()` validates raw input for one entry point, fills defaults and
returns an immutable GenerateRequest together with its fingerprint. The
fingerprint only covers the fields that influence the output of that entry
point, so a script-only entry and an audio-only entry never share a key.
"""

import hashlib
import json
from typing import Any, Mapping, Optional

from .errors import ValidationError
from .models import GenerateRequest, JobKind, UserPreferences

MAX_TEXT_LENGTH = 5000
MAX_PRODUCT_NAME_LENGTH = 100

DEFAULT_LANGUAGE = "en"
DEFAULT_EMOTION = "neutral"

SUPPORTED_LANGUAGES = {"en", "es", "fr", "hi"}
LANGUAGE_ALIASES = {"english": "en", "spanish": "es", "french": "fr", "hindi": "hi"}

EMOTIONS = {"neutral", "happy", "surprised", "serious"}
TONES = {"friendly", "excited", "professional", "casual", "enthusiastic", "persuasive"}
SUPPORTED_EMOTIONS = EMOTIONS | TONES

# Raw-input aliases accepted by every entry point (camelCase comes from the
# mobile client).
_FIELD_ALIASES = {
    "subject_id": ("subject_id", "image_id", "imageId", "subjectId"),
    "product_name": ("product_name", "productName"),
    "language": ("language", "lang"),
    "emotion": ("emotion", "tone"),
    "user_preferences": ("user_preferences", "userPreferences"),
    "text": ("text",),
    "audio_url": ("audio_url", "audioUrl"),
    "avatar_url": ("avatar_url", "avatar", "avatarUrl"),
}

_FINGERPRINT_FIELDS = {
    JobKind.FULL: ("subject_id", "language", "emotion", "user_preferences", "avatar_url", "metadata"),
    JobKind.AD_CONTENT: ("product_name", "language", "emotion", "user_preferences", "avatar_url"),
    JobKind.SCRIPT: ("subject_id", "product_name", "language", "emotion", "user_preferences", "metadata"),
    JobKind.AUDIO: ("text", "language", "emotion"),
    JobKind.VIDEO: ("audio_url", "subject_id", "avatar_url", "emotion"),
}


def _pick(raw: Mapping[str, Any], field: str) -> Any:
    for key in _FIELD_ALIASES[field]:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _code(value: Any) -> Optional[str]:
    text = _clean(value)
    return text.lower() if text else None


def subject_id_of(raw: Mapping[str, Any]) -> Optional[str]:
    """The subject id of raw input under any accepted alias, stripped."""
    return _clean(_pick(raw, "subject_id"))


def _preferences(value: Any, violations: list[str]) -> Optional[UserPreferences]:
    if value is None:
        return None
    if isinstance(value, UserPreferences):
        value = value.model_dump()
    if not isinstance(value, Mapping):
        violations.append("user_preferences must be an object")
        return None
    language = _code(value.get("language"))
    tone = _code(value.get("preferred_tone") or value.get("preferredTone"))
    if language is None and tone is None:
        return None
    return UserPreferences(language=LANGUAGE_ALIASES.get(language, language), preferred_tone=tone)


def normalize(
    raw: Mapping[str, Any],
    kind: JobKind = JobKind.FULL,
    metadata: Optional[Mapping[str, Any]] = None,
) -> tuple[GenerateRequest, str]:
    """
    Validate and canonicalize raw input for one entry point.

    Args:
        raw:      Caller input (snake_case or camelCase keys).
        kind:     Which entry point the input is for.
        metadata: Subject metadata snapshot, if the subject is known.

    Returns:
        (GenerateRequest, fingerprint)

    Raises:
        ValidationError listing every violated constraint.
    """
    violations: list[str] = []

    subject_id = _clean(_pick(raw, "subject_id"))
    product_name = _clean(_pick(raw, "product_name"))
    text = _clean(_pick(raw, "text"))
    audio_url = _clean(_pick(raw, "audio_url"))
    avatar_url = _clean(_pick(raw, "avatar_url"))
    prefs = _preferences(_pick(raw, "user_preferences"), violations)
    meta = dict(metadata) if metadata else None

    # ── Required fields per entry point ──────────────────────────────────
    if kind == JobKind.FULL and not subject_id:
        violations.append("subject_id is required")
    elif kind == JobKind.AD_CONTENT and not product_name:
        violations.append("product_name is required")
    elif kind == JobKind.SCRIPT and not (subject_id or product_name):
        violations.append("subject_id or product_name is required")
    elif kind == JobKind.AUDIO and not text:
        violations.append("text is required for audio generation")
    elif kind == JobKind.VIDEO:
        if not audio_url:
            violations.append("audio_url is required for lip-sync generation")
        if not (avatar_url or subject_id):
            violations.append("avatar or subject_id is required for lip-sync generation")

    if text and len(text) > MAX_TEXT_LENGTH:
        violations.append(f"text too long (max {MAX_TEXT_LENGTH} characters)")
    if product_name and len(product_name) > MAX_PRODUCT_NAME_LENGTH:
        violations.append(f"product_name too long (max {MAX_PRODUCT_NAME_LENGTH} characters)")

    # ── Language / emotion, with preference and metadata fallbacks ───────
    language = (
        _code(_pick(raw, "language"))
        or (prefs.language if prefs else None)
        or _code(meta.get("language") if meta else None)
        or DEFAULT_LANGUAGE
    )
    language = LANGUAGE_ALIASES.get(language, language)
    emotion = (
        _code(_pick(raw, "emotion"))
        or (prefs.preferred_tone if prefs else None)
        or _code(meta.get("tone") if meta else None)
        or DEFAULT_EMOTION
    )

    if language not in SUPPORTED_LANGUAGES:
        violations.append(
            f"unsupported language '{language}' (supported: {', '.join(sorted(SUPPORTED_LANGUAGES))})"
        )
    if emotion not in SUPPORTED_EMOTIONS:
        violations.append(
            f"unsupported emotion '{emotion}' (supported: {', '.join(sorted(SUPPORTED_EMOTIONS))})"
        )
    if prefs and prefs.language and prefs.language not in SUPPORTED_LANGUAGES:
        violations.append(f"unsupported preferred language '{prefs.language}'")

    if violations:
        raise ValidationError(violations)

    request = GenerateRequest(
        subject_id=subject_id,
        product_name=product_name,
        language=language,
        emotion=emotion,
        user_preferences=prefs,
        text=text,
        audio_url=audio_url,
        avatar_url=avatar_url,
        metadata=meta,
    )
    return request, fingerprint(request, kind)


def fingerprint(request: GenerateRequest, kind: JobKind) -> str:
    """
    Deterministic SHA-256 over the fields of `request` relevant to `kind`.

    Key order in nested structures does not matter; the metadata snapshot is
    hashed as canonical JSON.
    """
    payload: dict[str, Any] = {"kind": kind.value}
    for field in _FINGERPRINT_FIELDS[kind]:
        value = getattr(request, field)
        if hasattr(value, "model_dump"):
            value = value.model_dump(exclude_none=True)
        payload[field] = value

    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
