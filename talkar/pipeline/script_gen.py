"""
Script stage — short ad / guide voice-over text.

Live:  OpenAI (gpt-4o-mini) or GroqCloud; both speak the OpenAI
       chat-completions protocol, so one adapter covers both.
Mock:  templated sentence per language × emotion, or per tone when a
       product is known.

Prompt selection:
  1. subject metadata available → metadata-driven ad prompt
  2. product name only          → "2 engaging lines" product prompt
  3. otherwise                  → interactive museum-guide prompt
"""

import logging
from typing import Any, Optional

import httpx

from .base import MockAdapter, StageAdapter
from .errors import PermanentProviderError, TransientProviderError, classify_http_error
from .models import ScriptInput, Source, Stage, StageResult

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
OPENAI_MODEL = "gpt-4o-mini"
GROQ_API_URL = "https://api.groq.com/openai/v1/chat/completions"
GROQ_MODEL = "llama-3.1-8b-instant"

MAX_SCRIPT_CHARS = 500
MAX_SCRIPT_WORDS = 25

TONE_DESCRIPTIONS = {
    "friendly": "warm, approachable, and welcoming",
    "excited": "energetic, enthusiastic, and vibrant",
    "professional": "formal, authoritative, and business-oriented",
    "casual": "relaxed, informal, and conversational",
    "enthusiastic": "passionate, eager, and optimistic",
    "persuasive": "convincing, compelling, and influential",
    "neutral": "clear, calm, and informative",
    "happy": "cheerful, bright, and upbeat",
    "surprised": "amazed, curious, and animated",
    "serious": "measured, respectful, and focused",
}

LANGUAGE_NAMES = {"en": "English", "es": "Spanish", "fr": "French", "hi": "Hindi"}


# ── Prompts ──────────────────────────────────────────────────────────────────

def _metadata_prompt(metadata: dict[str, Any], tone: str, language: str) -> str:
    features = metadata.get("features") or []
    features_text = (
        "\n".join(f"{i + 1}. {feature}" for i, feature in enumerate(features))
        if features
        else "High-quality product"
    )
    price = metadata.get("price")
    return (
        f"Generate a 2-line voiceover for an advertisement about {metadata.get('product_name', 'this product')}.\n"
        f"Category: {metadata.get('category') or 'General'}\n"
        f"Brand: {metadata.get('brand') or 'Premium'}\n"
        f"Tone: {tone}\n"
        f"Language: {LANGUAGE_NAMES.get(language, language)}\n\n"
        f"Product Description: {metadata.get('description') or 'A premium product'}\n"
        f"Key Features:\n{features_text}\n\n"
        f"Price: {metadata.get('currency') or 'USD'} {price if price is not None else 'N/A'}\n\n"
        "Create an engaging, concise advertisement script that highlights the product's "
        "value proposition and appeals to the target audience.\n"
        f"The tone should be {tone} - {TONE_DESCRIPTIONS.get(tone, TONE_DESCRIPTIONS['friendly'])}."
    )


def build_prompt(stage_input: ScriptInput) -> tuple[str, str]:
    """Return (system_prompt, user_prompt) for a script request."""
    language = stage_input.language
    tone = stage_input.emotion

    if stage_input.metadata:
        system = (
            "You are a creative marketing assistant writing voice-overs for talking "
            f"product posters. Keep it short and engaging, max {MAX_SCRIPT_WORDS} words."
        )
        return system, _metadata_prompt(stage_input.metadata, tone, language)

    if stage_input.product_name:
        system = (
            "You are a creative marketing assistant specializing in product descriptions. "
            "Keep it short and engaging, max 15 words."
        )
        user = (
            f'Describe the product "{stage_input.product_name}" in 2 engaging lines for an '
            f"advertisement. Language: {LANGUAGE_NAMES.get(language, language)}. Tone: {tone}."
        )
        return system, user

    system = (
        "You are an interactive museum guide creating engaging content for visitors. "
        "Keep it short and engaging, max 15 words."
    )
    user = (
        "Generate a short, engaging script for an interactive museum guide. "
        "The guide should welcome visitors and provide interesting information about the exhibit.\n"
        f"Language: {LANGUAGE_NAMES.get(language, language)}\n"
        f"Emotion: {tone}\n"
        "Keep it concise and conversational."
    )
    return system, user


# ── Live ─────────────────────────────────────────────────────────────────────

class ChatCompletionScriptAdapter(StageAdapter[ScriptInput]):
    """Script generation over an OpenAI-compatible chat-completions API."""

    stage = Stage.SCRIPT
    source = Source.LIVE

    def __init__(
        self,
        api_key: str,
        api_url: str = OPENAI_API_URL,
        model: str = OPENAI_MODEL,
        name: str = "openai",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.name = name
        self._transport = transport

    async def run(self, stage_input: ScriptInput) -> StageResult:
        system_prompt, user_prompt = build_prompt(stage_input)
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": 75 if stage_input.metadata else 50,
            "temperature": 0.7,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.post(self.api_url, headers=headers, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise classify_http_error(e, self.name) from e
        except ValueError as e:
            raise PermanentProviderError(f"{self.name} returned invalid JSON", self.name) from e

        try:
            text = (data["choices"][0]["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError) as e:
            raise PermanentProviderError(
                f"Malformed {self.name} response: {str(data)[:200]}", self.name
            ) from e

        if not text:
            raise TransientProviderError(f"Empty response from {self.name}", self.name)
        if len(text) > MAX_SCRIPT_CHARS:
            raise PermanentProviderError(f"Response too long from {self.name}", self.name)

        text = text.strip('"').strip()
        logger.info(f"Script generated via {self.name}: {len(text.split())} words")
        return StageResult(stage=self.stage, source=self.source, text=text)


# ── Mock ─────────────────────────────────────────────────────────────────────

MOCK_SCRIPTS = {
    "en": {
        "neutral": "Welcome to our exhibition. I'm here to guide you through this amazing collection.",
        "happy": "Welcome! I'm so excited to show you around our wonderful exhibition today!",
        "surprised": "Oh my! Look at this incredible piece. Isn't it absolutely fascinating?",
        "serious": "Please pay attention to this important historical artifact and its significance.",
        "friendly": "Hello there! I'm delighted to be your guide through this fascinating exhibition.",
        "excited": "Wow! Get ready for an incredible journey through our amazing collection.",
        "professional": "Welcome to our distinguished exhibition. I'm here to provide expert insights.",
        "casual": "Hey there! Come check out these cool exhibits I've got to show you.",
        "enthusiastic": "You're going to love what we have in store for you today!",
        "persuasive": "Don't miss this chance to explore our exceptional collection. It's truly remarkable!",
    },
    "es": {
        "neutral": "Bienvenido a nuestra exposición. Estoy aquí para guiarlo a través de esta increíble colección.",
        "happy": "¡Bienvenido! ¡Estoy muy emocionado de mostrarle nuestra maravillosa exposición hoy!",
        "surprised": "¡Oh cielos! Mire esta pieza increíble. ¿No es absolutamente fascinante?",
        "serious": "Por favor, preste atención a este importante artefacto histórico y su significado.",
    },
    "fr": {
        "neutral": "Bienvenue à notre exposition. Je suis ici pour vous guider à travers cette collection incroyable.",
        "happy": "Bienvenue ! Je suis tellement heureux de vous montrer notre merveilleuse exposition !",
        "surprised": "Oh mon Dieu ! Regardez cette pièce incroyable. N'est-ce pas fascinant ?",
        "serious": "Veuillez prêter attention à cet important artefact historique et sa signification.",
    },
    "hi": {
        "neutral": "हमारी प्रदर्शनी में आपका स्वागत है। मैं इस अद्भुत संग्रह में आपका मार्गदर्शन करूँगा।",
        "happy": "स्वागत है! आज आपको हमारी शानदार प्रदर्शनी दिखाकर मुझे बहुत खुशी हो रही है!",
    },
}

MOCK_PRODUCT_SCRIPTS = {
    "friendly": "Hi there! Check out the amazing {product} - it's perfect for you!",
    "excited": "Wow! Get ready for the incredible {product} - you won't believe how awesome it is!",
    "professional": "Introducing the premium {product}, engineered for professionals who demand excellence.",
    "casual": "Hey, you should really check out this cool {product} - it's pretty awesome!",
    "enthusiastic": "You're going to love the fantastic {product} - it's everything you've been looking for!",
    "persuasive": "Don't miss out on the exceptional {product} - transform your experience today!",
    "happy": "Smile! The wonderful {product} is here to brighten your day.",
    "surprised": "Wait, have you seen the {product}? It's honestly surprising how good it is!",
    "serious": "The {product}: dependable quality, built to last.",
    "neutral": "Discover the {product}. Quality and innovation in every detail.",
}


class MockScriptAdapter(MockAdapter[ScriptInput]):
    stage = Stage.SCRIPT
    name = "mock-script"

    async def run(self, stage_input: ScriptInput) -> StageResult:
        await self._simulate_latency()

        product = stage_input.product_name or (stage_input.metadata or {}).get("product_name")
        if product:
            template = MOCK_PRODUCT_SCRIPTS.get(stage_input.emotion, MOCK_PRODUCT_SCRIPTS["neutral"])
            text = template.format(product=product)
        else:
            by_emotion = MOCK_SCRIPTS.get(stage_input.language, MOCK_SCRIPTS["en"])
            text = by_emotion.get(stage_input.emotion) or by_emotion.get("neutral") or MOCK_SCRIPTS["en"]["neutral"]

        return StageResult(stage=self.stage, source=self.source, text=text)
