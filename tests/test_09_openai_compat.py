"""
Tests for the OpenAI-compatible endpoints.

Tests cover:
- Request model defaults and the styleDegree alias
- Voice resolution (aliases, tts-1-<alias> models, raw voice names)
- Speed/pitch multiplier -> percentage conversion
- /v1/models listing
- /v1/audio/speech buffered and streamed
- OpenAI error envelope for 400 and 502
- /health and /metrics
"""
from __future__ import annotations

import pytest


@pytest.fixture
def api(make_service):
    """TestClient with the speech service replaced by one on the fake upstream."""
    from fastapi.testclient import TestClient

    from edge_tts_proxy.api.dependencies import get_speech_service
    from edge_tts_proxy.main import create_app

    service = make_service()
    app = create_app()
    app.dependency_overrides[get_speech_service] = lambda: service
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


class TestRequestModel:
    """OpenAISpeechRequest"""

    def test_minimal_request(self):
        from edge_tts_proxy.api.openai_compat import OpenAISpeechRequest

        req = OpenAISpeechRequest(input="Hello world")
        assert req.model == "tts-1"
        assert req.voice is None
        assert req.speed == 1.0
        assert req.style == "general"
        assert req.stream is False
        assert req.cleaning_options == {}

    def test_style_degree_alias(self):
        from edge_tts_proxy.api.openai_compat import OpenAISpeechRequest

        assert OpenAISpeechRequest(input="x", styleDegree=1.5).style_degree == 1.5
        assert OpenAISpeechRequest(input="x", style_degree=0.5).style_degree == 0.5


class TestVoiceResolution:
    """resolve_voice()"""

    def test_alias_on_standard_model(self):
        from edge_tts_proxy.api.openai_compat import resolve_voice
        from edge_tts_proxy.core.config import VoicesConfig

        assert resolve_voice("tts-1", "alloy", VoicesConfig()) == "zh-CN-YunyangNeural"
        assert resolve_voice("tts-1-hd", "echo", VoicesConfig()) == "zh-CN-liaoning-XiaobeiNeural"

    def test_raw_voice_on_standard_model(self):
        from edge_tts_proxy.api.openai_compat import resolve_voice
        from edge_tts_proxy.core.config import VoicesConfig

        assert resolve_voice("tts-1", "en-US-AriaNeural", VoicesConfig()) == "en-US-AriaNeural"
        assert resolve_voice("tts-1", None, VoicesConfig()) == "zh-CN-XiaoxiaoNeural"

    def test_alias_model(self):
        from edge_tts_proxy.api.openai_compat import resolve_voice
        from edge_tts_proxy.core.config import VoicesConfig

        assert resolve_voice("tts-1-nova", "ignored", VoicesConfig()) == "zh-CN-YunxiNeural"
        assert resolve_voice("tts-1-unknown", None, VoicesConfig()) == "zh-CN-XiaoxiaoNeural"

    def test_other_model_is_voice(self):
        from edge_tts_proxy.api.openai_compat import resolve_voice
        from edge_tts_proxy.core.config import VoicesConfig

        assert resolve_voice("en-GB-RyanNeural", None, VoicesConfig()) == "en-GB-RyanNeural"
        assert resolve_voice("custom", "en-US-GuyNeural", VoicesConfig()) == "en-US-GuyNeural"


class TestPercentChange:
    @pytest.mark.parametrize("multiplier,expected", [
        (1.0, 0), (1.5, 50), (0.8, -20), (2.0, 100), (1.125, 13), (0.875, -13), (0.5, -50),
    ])
    def test_conversion(self, multiplier, expected):
        from edge_tts_proxy.api.openai_compat import percent_change

        assert percent_change(multiplier) == expected


class TestModels:
    def test_list_models(self, api):
        r = api.get("/v1/models")
        assert r.status_code == 200
        data = r.json()
        assert data["object"] == "list"
        ids = [m["id"] for m in data["data"]]
        assert ids[:2] == ["tts-1", "tts-1-hd"]
        for alias in ("alloy", "echo", "fable", "onyx", "nova", "shimmer"):
            assert f"tts-1-{alias}" in ids
        assert all(m["object"] == "model" and m["owned_by"] == "openai" for m in data["data"])
        assert all(isinstance(m["created"], int) for m in data["data"])


class TestSpeech:
    def test_endpoint_method_allowed(self, api):
        assert api.get("/v1/audio/speech").status_code == 405

    def test_buffered(self, api, fake_upstream):
        r = api.post("/v1/audio/speech", json={"model": "tts-1", "input": "Hello. World.", "voice": "alloy"})
        assert r.status_code == 200
        assert r.headers["content-type"] == "audio/mpeg"
        assert r.headers["x-voice"] == "zh-CN-YunyangNeural"
        assert r.headers["x-request-id"]
        assert r.content == b"Hello. World."

        markup = fake_upstream.synth_requests[0].content.decode()
        assert '<voice name="zh-CN-YunyangNeural">' in markup

    def test_speed_and_pitch_to_prosody(self, api, fake_upstream):
        r = api.post("/v1/audio/speech", json={"input": "Hi.", "speed": 1.5, "pitch": 0.9})
        assert r.status_code == 200
        markup = fake_upstream.synth_requests[0].content.decode()
        assert '<prosody rate="50%" pitch="-10%">' in markup

    def test_style_fields(self, api, fake_upstream):
        r = api.post("/v1/audio/speech", json={
            "input": "Hi.", "voice": "zh-CN-XiaoxiaoNeural", "style": "cheerful", "styleDegree": 2, "role": "Girl",
        })
        assert r.status_code == 200
        markup = fake_upstream.synth_requests[0].content.decode()
        assert '<mstts:express-as role="Girl"><mstts:express-as style="cheerful" styledegree="2">' in markup

    def test_streamed(self, api):
        r = api.post("/v1/audio/speech", json={
            "input": "Red. Green. Blue.", "stream": True, "max_chunk_len": 7, "concurrency": 1,
        })
        assert r.status_code == 200
        assert r.headers["content-type"] == "audio/mpeg"
        assert r.content == b"Red. Green. Blue."

    def test_cleaning_options(self, api):
        r = api.post("/v1/audio/speech", json={
            "input": "Hello, world! [1] See https://x.co 😊",
            "cleaning_options": {"custom_keywords": "See"},
        })
        assert r.status_code == 200
        assert r.content == b"Hello, world!"


class TestErrorEnvelope:
    def test_missing_input_is_400(self, api, fake_upstream):
        r = api.post("/v1/audio/speech", json={"model": "tts-1"})
        assert r.status_code == 400
        assert r.json() == {
            "error": {
                "message": "'input' is a required parameter.",
                "type": "invalid_request_error",
                "code": "invalid_input",
                "details": {"field_code": "TEXT_REQUIRED"},
            }
        }
        assert fake_upstream.token_requests == []

    def test_blank_input_is_400(self, api):
        r = api.post("/v1/audio/speech", json={"input": "   "})
        assert r.status_code == 400

    def test_upstream_500_is_502(self, api, fake_upstream):
        fake_upstream.fail_texts = {"Hello."}
        r = api.post("/v1/audio/speech", json={"input": "Hello."})
        assert r.status_code == 502
        err = r.json()["error"]
        assert err["type"] == "api_error"
        assert err["code"] == "upstream_synthesis_failed"
        assert "500" in err["message"]
        assert err["details"] == {
            "upstream_status": 500,
            "upstream_body": "synthesis backend error",
            "chunk": 0,
        }

    def test_token_failure_is_502(self, api, fake_upstream):
        fake_upstream.token_failures = 3
        r = api.post("/v1/audio/speech", json={"input": "Hello.", "stream": True})
        assert r.status_code == 502
        assert r.json()["error"]["code"] == "token_acquisition_failed"
        assert r.json()["error"]["details"] == {"attempts": 3}


class TestOpsRoutes:
    def test_health(self, api):
        r = api.get("/health")
        assert r.status_code == 200
        body = r.json()
        assert body["ok"] is True
        assert body["token"]["has_token"] is False
        assert body["scheduler"]["mode"] == "batched"

    def test_health_after_request(self, api):
        api.post("/v1/audio/speech", json={"input": "Hello."})
        token = api.get("/health").json()["token"]
        assert token["has_token"] is True
        assert token["region"] == "eastasia"
        assert token["fresh"] is True

    def test_metrics(self, api):
        api.post("/v1/audio/speech", json={"input": "Hello."})
        r = api.get("/metrics")
        assert r.status_code == 200
        assert "speech_requests_total" in r.text
        assert "upstream_synthesis_calls_total" in r.text
