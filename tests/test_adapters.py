"""Live adapters against httpx.MockTransport; mock adapters for determinism."""

import base64
import json

import httpx
import pytest

from talkar.pipeline.errors import PermanentProviderError, TransientProviderError, classify_http_error
from talkar.pipeline.lipsync import MockVideoAdapter, SyncLipSyncAdapter
from talkar.pipeline.models import AudioInput, ScriptInput, Source, VideoInput
from talkar.pipeline.retry import RetryPolicy
from talkar.pipeline.script_gen import (
    GROQ_API_URL,
    ChatCompletionScriptAdapter,
    MockScriptAdapter,
    build_prompt,
)
from talkar.pipeline.tts import (
    DEFAULT_VOICE_ID,
    ElevenLabsAudioAdapter,
    GoogleTTSAudioAdapter,
    MockAudioAdapter,
    estimate_duration,
)


class FakeStorage:
    def __init__(self):
        self.uploads = []

    async def upload(self, kind, data, extension, content_type):
        self.uploads.append((kind, data, extension, content_type))
        return f"https://cdn.test/talkar/{kind}/{len(self.uploads)}.{extension}"


def _chat_response(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


# ── Script ───────────────────────────────────────────────────────────────────

class TestChatCompletionScriptAdapter:

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return _chat_response('  "Taste the sunrise in every sip."  ')

        adapter = ChatCompletionScriptAdapter("sk-test", transport=httpx.MockTransport(handler))
        result = await adapter.run(ScriptInput(product_name="Sunrise Cold Brew", emotion="happy"))

        assert result.text == "Taste the sunrise in every sip."
        assert result.source == Source.LIVE
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-4o-mini"
        assert "Sunrise Cold Brew" in seen["body"]["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_groq_endpoint(self):
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return _chat_response("Hola!")

        adapter = ChatCompletionScriptAdapter(
            "gsk", GROQ_API_URL, "llama-3.1-8b-instant", name="groq",
            transport=httpx.MockTransport(handler),
        )
        await adapter.run(ScriptInput(subject_id="poster_01"))
        assert urls == [GROQ_API_URL]

    @pytest.mark.asyncio
    async def test_empty_text_is_transient(self):
        adapter = ChatCompletionScriptAdapter(
            "k", transport=httpx.MockTransport(lambda r: _chat_response("   "))
        )
        with pytest.raises(TransientProviderError):
            await adapter.run(ScriptInput(subject_id="poster_01"))

    @pytest.mark.asyncio
    async def test_overlong_text_is_permanent(self):
        adapter = ChatCompletionScriptAdapter(
            "k", transport=httpx.MockTransport(lambda r: _chat_response("word " * 200))
        )
        with pytest.raises(PermanentProviderError):
            await adapter.run(ScriptInput(subject_id="poster_01"))

    @pytest.mark.asyncio
    async def test_malformed_body_is_permanent(self):
        adapter = ChatCompletionScriptAdapter(
            "k", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"foo": 1}))
        )
        with pytest.raises(PermanentProviderError):
            await adapter.run(ScriptInput(subject_id="poster_01"))

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient_with_retry_after(self):
        adapter = ChatCompletionScriptAdapter(
            "k",
            transport=httpx.MockTransport(
                lambda r: httpx.Response(429, headers={"Retry-After": "3"}, json={})
            ),
        )
        with pytest.raises(TransientProviderError) as exc:
            await adapter.run(ScriptInput(subject_id="poster_01"))
        assert exc.value.status_code == 429
        assert exc.value.retry_after == 3.0

    @pytest.mark.asyncio
    async def test_unauthorized_is_permanent(self):
        adapter = ChatCompletionScriptAdapter(
            "bad", transport=httpx.MockTransport(lambda r: httpx.Response(401, text="nope"))
        )
        with pytest.raises(PermanentProviderError):
            await adapter.run(ScriptInput(subject_id="poster_01"))


class TestBuildPrompt:

    def test_metadata_prompt(self):
        _, user = build_prompt(
            ScriptInput(
                metadata={"product_name": "TrailLite", "features": ["Light", "Tough"], "price": 89},
                emotion="excited",
            )
        )
        assert "TrailLite" in user
        assert "1. Light\n2. Tough" in user
        assert "USD 89" in user

    def test_museum_prompt_without_product(self):
        system, _ = build_prompt(ScriptInput(subject_id="poster_01"))
        assert "museum guide" in system


class TestMockScriptAdapter:

    @pytest.mark.asyncio
    async def test_language_and_emotion_template(self):
        result = await MockScriptAdapter().run(ScriptInput(language="fr", emotion="surprised"))
        assert result.text.startswith("Oh mon Dieu")
        assert result.source == Source.MOCK

    @pytest.mark.asyncio
    async def test_unknown_emotion_for_language_falls_back_to_neutral(self):
        result = await MockScriptAdapter().run(ScriptInput(language="hi", emotion="casual"))
        assert result.text.startswith("हमारी")

    @pytest.mark.asyncio
    async def test_product_script_under_word_limit(self):
        result = await MockScriptAdapter().run(ScriptInput(product_name="Nimbus", emotion="persuasive"))
        assert "Nimbus" in result.text
        assert len(result.text.split()) < 25


# ── Audio ────────────────────────────────────────────────────────────────────

class TestElevenLabsAudioAdapter:

    @pytest.mark.asyncio
    async def test_uploads_audio_bytes(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers["xi-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"ID3fake-mp3")

        storage = FakeStorage()
        adapter = ElevenLabsAudioAdapter("xi-key", storage, transport=httpx.MockTransport(handler))
        result = await adapter.run(AudioInput(text="one two three four five", language="es"))

        assert seen["url"].endswith(f"/text-to-speech/{DEFAULT_VOICE_ID}")
        assert seen["key"] == "xi-key"
        assert seen["body"]["voice_settings"]["stability"] == 0.5
        assert storage.uploads == [("audio", b"ID3fake-mp3", "mp3", "audio/mpeg")]
        assert result.url == "https://cdn.test/talkar/audio/1.mp3"
        assert result.duration == 2.0

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        adapter = ElevenLabsAudioAdapter(
            "k", FakeStorage(), transport=httpx.MockTransport(lambda r: httpx.Response(503))
        )
        with pytest.raises(TransientProviderError):
            await adapter.run(AudioInput(text="hi"))

    @pytest.mark.asyncio
    async def test_empty_body_is_permanent(self):
        adapter = ElevenLabsAudioAdapter(
            "k", FakeStorage(), transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b""))
        )
        with pytest.raises(PermanentProviderError):
            await adapter.run(AudioInput(text="hi"))


class TestGoogleTTSAudioAdapter:

    @pytest.mark.asyncio
    async def test_decodes_audio_content(self):
        seen = {}

        def handler(request):
            seen["key"] = request.url.params["key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"audioContent": base64.b64encode(b"mp3-bytes").decode()})

        storage = FakeStorage()
        adapter = GoogleTTSAudioAdapter("g-key", storage, transport=httpx.MockTransport(handler))
        await adapter.run(AudioInput(text="Bonjour", language="fr", emotion="serious"))

        assert seen["key"] == "g-key"
        assert seen["body"]["voice"]["name"] == "fr-FR-Standard-A"
        assert seen["body"]["audioConfig"]["speakingRate"] == 0.9
        assert seen["body"]["audioConfig"]["pitch"] == -2.0
        assert storage.uploads[0][1] == b"mp3-bytes"

    @pytest.mark.asyncio
    async def test_missing_audio_content_is_permanent(self):
        adapter = GoogleTTSAudioAdapter(
            "k", FakeStorage(), transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))
        )
        with pytest.raises(PermanentProviderError):
            await adapter.run(AudioInput(text="hi"))


class TestMockAudioAdapter:

    @pytest.mark.asyncio
    async def test_deterministic(self):
        adapter = MockAudioAdapter("https://mock.test")
        a = await adapter.run(AudioInput(text="Hello there", emotion="happy"))
        b = await adapter.run(AudioInput(text="Hello there", emotion="happy"))
        c = await adapter.run(AudioInput(text="Hello there", emotion="serious"))
        assert a.url == b.url
        assert a.url != c.url

    def test_duration_from_word_count(self):
        assert estimate_duration("a b c d e f g h i j") == 4.0
        assert estimate_duration("hi") == 1.0


# ── Video ────────────────────────────────────────────────────────────────────

def _video_input(**overrides):
    data = {"audio_url": "https://a.test/voice.mp3", "avatar_url": "https://img.test/face.jpg"}
    data.update(overrides)
    return VideoInput(**data)


class TestSyncLipSyncAdapter:

    @pytest.mark.asyncio
    async def test_synchronous_result(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["key"] = request.headers["x-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"videoUrl": "https://sync.test/v.mp4", "duration": 8})

        adapter = SyncLipSyncAdapter("s-key", "https://sync.test/v2", transport=httpx.MockTransport(handler))
        result = await adapter.run(_video_input(emotion="happy"))

        assert seen["path"] == "/v2/generate"
        assert seen["key"] == "s-key"
        assert seen["body"] == {
            "audio_url": "https://a.test/voice.mp3",
            "avatar": "https://img.test/face.jpg",
            "emotion": "happy",
        }
        assert result.url == "https://sync.test/v.mp4"
        assert result.duration == 8.0

    @pytest.mark.asyncio
    async def test_polls_until_completed(self):
        statuses = iter(["queued", "processing", "completed"])
        polls = []

        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"jobId": "job-42"})
            polls.append(request.url.path)
            status = next(statuses)
            body = {"status": status}
            if status == "completed":
                body["outputUrl"] = "https://sync.test/out.mp4"
            return httpx.Response(200, json=body)

        adapter = SyncLipSyncAdapter(
            "k", "https://sync.test", poll_interval=0, transport=httpx.MockTransport(handler)
        )
        result = await adapter.run(_video_input(audio_duration=6.5))

        assert polls == ["/jobs/job-42"] * 3
        assert result.url == "https://sync.test/out.mp4"
        assert result.duration == 6.5
        assert result.provider_job_id == "job-42"

    @pytest.mark.asyncio
    async def test_failed_job_is_permanent(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"jobId": "j"})
            return httpx.Response(200, json={"status": "failed", "error": "bad audio"})

        adapter = SyncLipSyncAdapter("k", "https://sync.test", poll_interval=0, transport=httpx.MockTransport(handler))
        with pytest.raises(PermanentProviderError, match="bad audio"):
            await adapter.run(_video_input())

    @pytest.mark.asyncio
    async def test_poll_budget_exhausted_is_transient(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"jobId": "j"})
            return httpx.Response(200, json={"status": "processing"})

        adapter = SyncLipSyncAdapter(
            "k", "https://sync.test", poll_interval=0, max_poll_attempts=4,
            transport=httpx.MockTransport(handler),
        )
        with pytest.raises(TransientProviderError):
            await adapter.run(_video_input())

    @pytest.mark.asyncio
    async def test_poll_error_does_not_resubmit(self):
        calls = {"POST": 0, "GET": 0}

        def handler(request):
            calls[request.method] += 1
            if request.method == "POST":
                return httpx.Response(200, json={"jobId": "job-7"})
            if calls["GET"] == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={"status": "COMPLETED", "videoUrl": "https://sync.test/v.mp4"})

        adapter = SyncLipSyncAdapter(
            "k", "https://sync.test", poll_interval=0, transport=httpx.MockTransport(handler)
        )
        result = await RetryPolicy(base_delay=0).execute(lambda: adapter.run(_video_input()))

        assert calls == {"POST": 1, "GET": 2}
        assert result.url == "https://sync.test/v.mp4"
        assert result.provider_job_id == "job-7"

    @pytest.mark.asyncio
    async def test_poll_errors_until_budget_is_transient(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"jobId": "j"})
            return httpx.Response(502)

        adapter = SyncLipSyncAdapter(
            "k", "https://sync.test", poll_interval=0, max_poll_attempts=3,
            transport=httpx.MockTransport(handler),
        )
        with pytest.raises(TransientProviderError, match="last poll error"):
            await adapter.run(_video_input())

    @pytest.mark.asyncio
    async def test_unknown_status_is_permanent(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"jobId": "j"})
            return httpx.Response(200, json={"status": "archived"})

        adapter = SyncLipSyncAdapter("k", "https://sync.test", poll_interval=0, transport=httpx.MockTransport(handler))
        with pytest.raises(PermanentProviderError, match="Unknown Sync job status"):
            await adapter.run(_video_input())

    def test_poll_budget_fits_stage_timeout(self):
        assert SyncLipSyncAdapter("k", poll_interval=2, timeout=60).max_poll_attempts == 25
        assert SyncLipSyncAdapter("k", poll_interval=2, timeout=600).max_poll_attempts == 30
        assert SyncLipSyncAdapter("k", poll_interval=2, timeout=5).max_poll_attempts == 1
        assert SyncLipSyncAdapter("k", poll_interval=2).max_poll_attempts == 30

    @pytest.mark.asyncio
    async def test_neither_url_nor_job_is_permanent(self):
        adapter = SyncLipSyncAdapter(
            "k", "https://sync.test", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))
        )
        with pytest.raises(PermanentProviderError):
            await adapter.run(_video_input())


class TestMockVideoAdapter:

    @pytest.mark.asyncio
    async def test_duration_follows_audio(self):
        adapter = MockVideoAdapter("https://mock.test")
        assert (await adapter.run(_video_input(audio_duration=3.2))).duration == 3.2
        assert (await adapter.run(_video_input())).duration == 15.0


class TestClassifyHttpError:

    def _status_error(self, status):
        request = httpx.Request("GET", "https://p.test")
        response = httpx.Response(status, request=request)
        return httpx.HTTPStatusError("err", request=request, response=response)

    def test_timeout(self):
        exc = httpx.ReadTimeout("slow", request=httpx.Request("GET", "https://p.test"))
        assert isinstance(classify_http_error(exc, "p"), TransientProviderError)

    def test_5xx_and_4xx(self):
        assert isinstance(classify_http_error(self._status_error(502), "p"), TransientProviderError)
        assert isinstance(classify_http_error(self._status_error(404), "p"), PermanentProviderError)

    def test_connect_error(self):
        exc = httpx.ConnectError("refused", request=httpx.Request("GET", "https://p.test"))
        assert isinstance(classify_http_error(exc, "p"), TransientProviderError)
