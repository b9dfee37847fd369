"""Tests covering the FastAPI routes defined in :mod:`mediarelay.main`."""

from __future__ import annotations

import base64
import json
import random
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr, ValidationError

from mediarelay.aiservices.comfyclient import ComfyClient
from mediarelay.aiservices.multimodalclient import MultimodalClient
from mediarelay.aiservices.promptexpansion import PromptExpander
from mediarelay.aiservices.relay import RelayClient
from mediarelay.aiservices.textgenerationclient import GenerationResult, TextGenerationClient
from mediarelay.aiservices.webuiclient import WebUIClient
from mediarelay.config import Settings
from mediarelay.main import app
from mediarelay.secretstore import SecretStore
from mediarelay.service import (
    get_comfy_client,
    get_multimodal_client,
    get_prompt_expander,
    get_webui_client,
)
from mediarelay.storageservice.workflowstore import WorkflowStore, get_workflow_store

WEBUI = "http://webui:7860"
COMFY = "http://comfy:8188"

Handler = Callable[[httpx.Request], httpx.Response]


class FakeBackends:
    """Routes outbound requests by (host, method, path) to scripted handlers."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str, str], Handler] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, url: str, handler: Handler) -> None:
        parsed = httpx.URL(url)
        self.routes[(parsed.host, method, parsed.path)] = handler

    def json(self, method: str, url: str, data: Any, status_code: int = 200) -> None:
        self.on(method, url, lambda request: httpx.Response(status_code, json=data))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.url.host, request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, text=f"no route for {request.method} {request.url}")
        return handler(request)

    def sent(self, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]


class StubTextClient(TextGenerationClient):
    def __init__(self) -> None:
        self.text = "a cat, extremely (detailed:1.2), [sharp]  focus."

    def generate(self, prompt, max_new_tokens=None, do_sample=True, num_beams=1) -> GenerationResult:
        return GenerationResult(text=self.text)


@pytest.fixture
def backends() -> FakeBackends:
    return FakeBackends()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        openai_api_key="sk-test",
        openrouter_api_key="",
        workflows_dir=str(tmp_path / "workflows"),
        comfy_poll_interval=0.0,
        webui_model_load_interval=0.0,
    )


@pytest.fixture
def client(backends: FakeBackends, settings: Settings):
    """Yield a :class:`TestClient` whose backends are all scripted."""

    relay = RelayClient(transport=httpx.MockTransport(backends))
    store = WorkflowStore(settings.workflows_dir)
    app.dependency_overrides[get_webui_client] = lambda: WebUIClient(relay, settings)
    app.dependency_overrides[get_comfy_client] = lambda: ComfyClient(relay, settings)
    app.dependency_overrides[get_multimodal_client] = lambda: MultimodalClient(SecretStore(settings), relay, settings)
    app.dependency_overrides[get_workflow_store] = lambda: store
    app.dependency_overrides[get_prompt_expander] = lambda: PromptExpander(
        StubTextClient(), settings, random.Random(0)
    )

    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(relay.aclose)

    app.dependency_overrides.clear()


def test_healthcheck_reports_configuration(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# Web UI
# ---------------------------------------------------------------------------
def test_sd_ping_succeeds_when_backend_answers(client: TestClient, backends: FakeBackends) -> None:
    backends.json("GET", f"{WEBUI}/sdapi/v1/options", {"sd_model_checkpoint": "a"})

    response = client.post("/api/sd/ping", json={"url": f"{WEBUI}/some/path?x=1", "auth": "user:pass"})

    assert response.status_code == 200
    sent = backends.sent("/sdapi/v1/options")[0]
    assert str(sent.url) == f"{WEBUI}/sdapi/v1/options"
    assert sent.headers["Authorization"] == "Basic dXNlcjpwYXNz"


def test_sd_ping_failure_is_opaque_500(client: TestClient, backends: FakeBackends) -> None:
    backends.on("GET", f"{WEBUI}/sdapi/v1/options", lambda request: httpx.Response(502, text="secret stack trace"))

    response = client.post("/api/sd/ping", json={"url": WEBUI})

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal Server Error"}
    assert "secret stack trace" not in response.text


def test_malformed_url_is_rejected_without_backend_call(client: TestClient, backends: FakeBackends) -> None:
    response = client.post("/api/sd/samplers", json={"url": "webui:7860 nope"})

    assert response.status_code == 400
    assert backends.requests == []


def test_missing_url_is_a_validation_error(client: TestClient) -> None:
    response = client.post("/api/sd/models", json={})

    assert response.status_code == 422
    assert any(err["loc"][-1] == "url" for err in response.json()["detail"])


def test_sd_models_returns_value_text_pairs(client: TestClient, backends: FakeBackends) -> None:
    backends.json("GET", f"{WEBUI}/sdapi/v1/sd-models", [{"title": "z.ckpt"}, {"title": "a.ckpt"}])

    response = client.post("/api/sd/models", json={"url": WEBUI})

    assert response.status_code == 200
    assert response.json() == [{"value": "z.ckpt", "text": "z.ckpt"}, {"value": "a.ckpt", "text": "a.ckpt"}]


def test_sd_models_with_unexpected_shape_fails(client: TestClient, backends: FakeBackends) -> None:
    backends.json("GET", f"{WEBUI}/sdapi/v1/sd-models", {"detail": "weird"})

    response = client.post("/api/sd/models", json={"url": WEBUI})

    assert response.status_code == 500


def test_sd_samplers_returns_names(client: TestClient, backends: FakeBackends) -> None:
    backends.json("GET", f"{WEBUI}/sdapi/v1/samplers", [{"name": "Euler a", "aliases": []}, {"name": "DPM++ 2M"}])

    response = client.post("/api/sd/samplers", json={"url": WEBUI})

    assert response.json() == ["Euler a", "DPM++ 2M"]


def test_sd_upscalers_inserts_latent_modes(client: TestClient, backends: FakeBackends) -> None:
    backends.json("GET", f"{WEBUI}/sdapi/v1/upscalers", [{"name": "None"}, {"name": "Lanczos"}])
    backends.json("GET", f"{WEBUI}/sdapi/v1/latent-upscale-modes", [{"name": "Latent"}])

    response = client.post("/api/sd/upscalers", json={"url": WEBUI})

    assert response.json() == ["None", "Latent", "Lanczos"]


def test_sdnext_upscalers(client: TestClient, backends: FakeBackends) -> None:
    backends.json("GET", f"{WEBUI}/sdapi/v1/upscalers", [{"name": "None"}, {"name": "Lanczos"}])

    response = client.post("/api/sd-next/upscalers", json={"url": WEBUI})

    names = response.json()
    assert names[0] == "None"
    assert names[1] == "Latent"
    assert names[-1] == "Lanczos"
    assert len(names) == 8


def test_sd_get_model(client: TestClient, backends: FakeBackends) -> None:
    backends.json("GET", f"{WEBUI}/sdapi/v1/options", {"sd_model_checkpoint": "v1-5.safetensors [6ce0161689]"})

    response = client.post("/api/sd/get-model", json={"url": WEBUI})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "v1-5.safetensors [6ce0161689]"


def test_sd_set_model(client: TestClient, backends: FakeBackends) -> None:
    backends.on("POST", f"{WEBUI}/sdapi/v1/options", lambda request: httpx.Response(200, json=None))
    backends.json("GET", f"{WEBUI}/sdapi/v1/progress", {"progress": 0.0, "state": {"job_count": 0}})

    response = client.post("/api/sd/set-model", json={"url": WEBUI, "model": "xl.safetensors"})

    assert response.status_code == 200
    posted = [request for request in backends.requests if request.method == "POST"]
    assert json.loads(posted[0].content) == {"sd_model_checkpoint": "xl.safetensors"}


def test_sd_generate_forwards_parameters_without_credentials(client: TestClient, backends: FakeBackends) -> None:
    backends.on(
        "POST",
        f"{WEBUI}/sdapi/v1/txt2img",
        lambda request: httpx.Response(200, json={"images": ["aW1n"], "info": "{}"}),
    )

    response = client.post(
        "/api/sd/generate",
        json={"url": WEBUI, "auth": "user:pass", "prompt": "a cat", "steps": 20, "cfg_scale": 7},
    )

    assert response.status_code == 200
    assert response.json() == {"images": ["aW1n"], "info": "{}"}
    sent = backends.sent("/sdapi/v1/txt2img")[0]
    assert json.loads(sent.content) == {"prompt": "a cat", "steps": 20, "cfg_scale": 7}


def test_sd_generate_backend_error_is_opaque(client: TestClient, backends: FakeBackends) -> None:
    backends.on("POST", f"{WEBUI}/sdapi/v1/txt2img", lambda request: httpx.Response(500, text="CUDA OOM"))

    response = client.post("/api/sd/generate", json={"url": WEBUI, "prompt": "a cat"})

    assert response.status_code == 500
    assert "CUDA OOM" not in response.text


def test_sd_expand_returns_sanitized_prompt(client: TestClient) -> None:
    response = client.post("/api/sd/expand", json={"prompt": "a  cat ."})

    assert response.status_code == 200
    assert response.json() == {"prompt": "a cat, extremely detailed1.2, sharp focus"}


def test_sd_expand_without_prompt_returns_empty(client: TestClient) -> None:
    response = client.post("/api/sd/expand", json={})

    assert response.json() == {"prompt": ""}


# ---------------------------------------------------------------------------
# ComfyUI
# ---------------------------------------------------------------------------
OBJECT_INFO = {
    "KSampler": {
        "input": {
            "required": {
                "sampler_name": [["euler", "dpmpp_2m"]],
                "scheduler": [["normal", "karras"]],
            }
        }
    },
    "CheckpointLoaderSimple": {"input": {"required": {"ckpt_name": [["sd15.safetensors", "xl.safetensors"]]}}},
    "VAELoader": {"input": {"required": {"vae_name": [["vae-ft-mse.safetensors"]]}}},
}


def test_comfy_ping(client: TestClient, backends: FakeBackends) -> None:
    backends.json("GET", f"{COMFY}/system_stats", {"system": {}})

    assert client.post("/api/sd/comfy/ping", json={"url": COMFY}).status_code == 200


@pytest.mark.parametrize(
    ("route", "expected"),
    [
        ("/api/sd/comfy/samplers", ["euler", "dpmpp_2m"]),
        ("/api/sd/comfy/schedulers", ["normal", "karras"]),
        ("/api/sd/comfy/vaes", ["vae-ft-mse.safetensors"]),
        (
            "/api/sd/comfy/models",
            [
                {"value": "sd15.safetensors", "text": "sd15.safetensors"},
                {"value": "xl.safetensors", "text": "xl.safetensors"},
            ],
        ),
    ],
)
def test_comfy_object_info_listings(client: TestClient, backends: FakeBackends, route: str, expected) -> None:
    backends.json("GET", f"{COMFY}/object_info", OBJECT_INFO)

    response = client.post(route, json={"url": COMFY})

    assert response.status_code == 200
    assert response.json() == expected


def test_comfy_samplers_missing_node_fails(client: TestClient, backends: FakeBackends) -> None:
    backends.json("GET", f"{COMFY}/object_info", {"VAELoader": OBJECT_INFO["VAELoader"]})

    response = client.post("/api/sd/comfy/samplers", json={"url": COMFY})

    assert response.status_code == 500


def test_comfy_generate_returns_base64_image(client: TestClient, backends: FakeBackends) -> None:
    histories = [
        {},
        {},
        {"abc123": {"outputs": {"9": {"images": [{"filename": "x.png", "subfolder": "", "type": "output"}]}}}},
    ]
    backends.json("POST", f"{COMFY}/prompt", {"prompt_id": "abc123"})
    backends.on("GET", f"{COMFY}/history", lambda request: httpx.Response(200, json=histories.pop(0)))
    backends.on("GET", f"{COMFY}/view", lambda request: httpx.Response(200, content=b"png-bytes"))

    graph = json.dumps({"prompt": {"3": {"class_type": "KSampler"}}})
    response = client.post("/api/sd/comfy/generate", json={"url": COMFY, "prompt": graph})

    assert response.status_code == 200
    assert base64.b64decode(response.text) == b"png-bytes"
    assert backends.sent("/prompt")[0].content == graph.encode("utf-8")
    assert len(backends.sent("/history")) == 3
    assert [request.url.query for request in backends.sent("/view")] == [b"filename=x.png&subfolder=&type=output"]


def test_comfy_generate_submit_failure_is_opaque(client: TestClient, backends: FakeBackends) -> None:
    backends.on("POST", f"{COMFY}/prompt", lambda request: httpx.Response(400, text="node errors"))

    response = client.post("/api/sd/comfy/generate", json={"url": COMFY, "prompt": "{}"})

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal Server Error"}
    assert backends.sent("/history") == []


def test_workflow_endpoints_save_list_read_delete(client: TestClient, settings: Settings) -> None:
    document = json.dumps({"3": {"class_type": "KSampler"}})

    saved = client.post("/api/sd/comfy/save-workflow", json={"file_name": "portrait.json", "workflow": document})
    assert saved.status_code == 200
    assert saved.json() == ["portrait.json"]

    assert client.post("/api/sd/comfy/workflows", json={}).json() == ["portrait.json"]

    read = client.post("/api/sd/comfy/workflow", json={"file_name": "portrait.json"})
    assert read.json() == document

    deleted = client.post("/api/sd/comfy/delete-workflow", json={"file_name": "portrait.json"})
    assert deleted.status_code == 200
    assert client.post("/api/sd/comfy/workflows", json={}).json() == []


def test_workflow_read_falls_back_to_default(client: TestClient, settings: Settings) -> None:
    (Path(settings.workflows_dir) / "Default_Comfy_Workflow.json").write_text('{"default": 1}', encoding="utf-8")

    response = client.post("/api/sd/comfy/workflow", json={"file_name": "nope.json"})

    assert response.json() == '{"default": 1}'


def test_workflow_invalid_name_is_rejected(client: TestClient) -> None:
    response = client.post("/api/sd/comfy/save-workflow", json={"file_name": "..", "workflow": "{}"})

    assert response.status_code == 400


# ---------------------------------------------------------------------------
# Hosted multimodal provider
# ---------------------------------------------------------------------------
CHAT_COMPLETION = {
    "id": "chatcmpl-1",
    "object": "chat.completion",
    "created": 0,
    "model": "gpt-4o-mini",
    "choices": [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "A cat on a sofa."},
            "finish_reason": "stop",
        }
    ],
}

CAPTION_BODY = {
    "api": "openai",
    "model": "gpt-4o-mini",
    "prompt": "Describe the image",
    "image": "data:image/png;base64,aW1n",
}


def test_caption_image_builds_multimodal_message(client: TestClient, backends: FakeBackends) -> None:
    backends.json("POST", "https://api.openai.com/v1/chat/completions", CHAT_COMPLETION)

    response = client.post("/api/openai/caption-image", json=CAPTION_BODY)

    assert response.status_code == 200
    assert response.json() == {"caption": "A cat on a sofa."}

    sent = backends.sent("/v1/chat/completions")[0]
    assert sent.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(sent.content)
    assert body["model"] == "gpt-4o-mini"
    assert body["max_tokens"] == 500
    assert body["messages"] == [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "Describe the image"},
                {"type": "image_url", "image_url": {"url": "data:image/png;base64,aW1n"}},
            ],
        }
    ]


def test_caption_image_passes_backend_error_text_through(client: TestClient, backends: FakeBackends) -> None:
    backends.on(
        "POST",
        "https://api.openai.com/v1/chat/completions",
        lambda request: httpx.Response(400, json={"error": {"message": "image too large"}}),
    )

    response = client.post("/api/openai/caption-image", json=CAPTION_BODY)

    assert response.status_code == 500
    assert "image too large" in response.text
    assert len(backends.sent("/v1/chat/completions")) == 1


def test_caption_image_without_content_fails(client: TestClient, backends: FakeBackends) -> None:
    empty = dict(CHAT_COMPLETION, choices=[{"index": 0, "message": {"role": "assistant", "content": ""}, "finish_reason": "stop"}])
    backends.json("POST", "https://api.openai.com/v1/chat/completions", empty)

    response = client.post("/api/openai/caption-image", json=CAPTION_BODY)

    assert response.status_code == 500
    assert response.text == "No caption found"


@pytest.mark.parametrize("api", ["openrouter", "something-else"])
def test_caption_image_without_key_is_unauthorized(client: TestClient, backends: FakeBackends, api: str) -> None:
    response = client.post("/api/openai/caption-image", json=dict(CAPTION_BODY, api=api))

    assert response.status_code == 401
    assert backends.requests == []


def test_generate_voice_returns_mp3(client: TestClient, backends: FakeBackends) -> None:
    backends.on(
        "POST",
        "https://api.openai.com/v1/audio/speech",
        lambda request: httpx.Response(200, content=b"ID3-mp3", headers={"content-type": "audio/mpeg"}),
    )

    response = client.post("/api/openai/generate-voice", json={"text": "Hello there"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.content == b"ID3-mp3"
    body = json.loads(backends.sent("/v1/audio/speech")[0].content)
    assert body == {"input": "Hello there", "response_format": "mp3", "voice": "alloy", "speed": 1, "model": "tts-1"}


def test_generate_voice_failure_is_opaque(client: TestClient, backends: FakeBackends) -> None:
    backends.on(
        "POST",
        "https://api.openai.com/v1/audio/speech",
        lambda request: httpx.Response(400, json={"error": {"message": "bad voice"}}),
    )

    response = client.post("/api/openai/generate-voice", json={"text": "Hello", "voice": "robot"})

    assert response.status_code == 500
    assert "bad voice" not in response.text


def test_generate_image_relays_body_verbatim(client: TestClient, backends: FakeBackends) -> None:
    backends.json("POST", "https://api.openai.com/v1/images/generations", {"created": 1, "data": [{"b64_json": "aW1n"}]})
    payload = {"prompt": "a lighthouse", "model": "dall-e-3", "n": 1, "size": "1024x1024", "quality": "hd"}

    response = client.post("/api/openai/generate-image", json=payload)

    assert response.status_code == 200
    assert response.json() == {"created": 1, "data": [{"b64_json": "aW1n"}]}
    assert json.loads(backends.sent("/v1/images/generations")[0].content) == payload


def test_transcribe_audio_uploads_wav(client: TestClient, backends: FakeBackends) -> None:
    backends.json("POST", "https://api.openai.com/v1/audio/transcriptions", {"text": "hello world"})

    response = client.post(
        "/api/openai/transcribe-audio",
        data={"model": "whisper-1", "language": "en"},
        files={"file": ("recording.webm", b"RIFF-audio", "audio/webm")},
    )

    assert response.status_code == 200
    assert response.json() == {"text": "hello world"}
    sent = backends.sent("/v1/audio/transcriptions")[0]
    assert b'filename="audio.wav"' in sent.content
    assert b"RIFF-audio" in sent.content
    assert b"whisper-1" in sent.content


def test_transcribe_audio_without_file_is_bad_request(client: TestClient, backends: FakeBackends) -> None:
    response = client.post("/api/openai/transcribe-audio", data={"model": "whisper-1"})

    assert response.status_code == 400
    assert backends.requests == []


def test_transcribe_audio_without_model_is_bad_request(client: TestClient, backends: FakeBackends) -> None:
    response = client.post(
        "/api/openai/transcribe-audio",
        files={"file": ("recording.wav", b"RIFF-audio", "audio/wav")},
    )

    assert response.status_code == 400
    assert backends.requests == []


def test_transcribe_audio_checks_key_before_form_fields(
    client: TestClient, backends: FakeBackends, settings: Settings, monkeypatch
) -> None:
    monkeypatch.setattr(settings, "openai_api_key", SecretStr(""))

    response = client.post("/api/openai/transcribe-audio")

    assert response.status_code == 401
    assert backends.requests == []


def test_settings_reject_unknown_log_level() -> None:
    assert Settings(log_level="DEBUG").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        Settings(log_level="verbose")
