"""Hosted multimodal provider calls (OpenAI, OpenRouter) through the OpenAI SDK."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from openai import NOT_GIVEN, APIConnectionError, APIStatusError, AsyncOpenAI

from ..config import Settings, get_settings
from ..errors import AuthMissing, BackendUnavailable, ClientInputError
from ..secretstore import SecretKey, SecretStore
from .relay import RelayClient

logger = logging.getLogger(__name__)

CAPTION_MAX_TOKENS = 500

_CAPTION_PROVIDERS = {
    "openai": SecretKey.OPENAI,
    "openrouter": SecretKey.OPENROUTER,
}


class MultimodalClient:
    """Thin wrappers around the provider endpoints.

    A fresh SDK client is built per call because the key and base URL depend on
    the request. It shares the relay connection pool, retries are disabled and
    no timeout is imposed.
    """

    def __init__(
        self,
        secrets: SecretStore,
        relay: RelayClient,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._secrets = secrets
        self._relay = relay

    def _client(self, key: SecretKey) -> AsyncOpenAI:
        api_key = self._secrets.read(key)
        if not api_key:
            raise AuthMissing(f"No key found for {key.value}")
        base_url = (
            self.settings.openrouter_base_url
            if key is SecretKey.OPENROUTER
            else self.settings.openai_base_url
        )
        return AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=0,
            timeout=None,
            http_client=self._relay.http,
        )

    async def caption_image(
        self,
        api: str,
        model: str,
        prompt: str,
        image: str,
        referer: Optional[str] = None,
    ) -> str:
        key = _CAPTION_PROVIDERS.get(api)
        if key is None:
            raise AuthMissing(f"No key found for API {api}")
        client = self._client(key)

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image}},
                ],
            }
        ]
        extra_headers = {"HTTP-Referer": referer} if key is SecretKey.OPENROUTER and referer else None
        logger.info("Multimodal captioning request api=%s model=%s", api, model)

        try:
            completion = await client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=CAPTION_MAX_TOKENS,
                extra_headers=extra_headers,
            )
        except APIStatusError as exc:
            logger.error("Multimodal captioning request failed: %s %s", exc.status_code, exc.response.text)
            raise BackendUnavailable(
                "Multimodal captioning request failed",
                status_code=exc.status_code,
                body=exc.response.text,
                passthrough=True,
            ) from exc
        except APIConnectionError as exc:
            raise BackendUnavailable(f"Multimodal captioning request failed: {exc}") from exc

        choices = completion.choices or []
        caption = choices[0].message.content if choices and choices[0].message else None
        if not caption:
            raise BackendUnavailable("No caption found", body="No caption found", passthrough=True)
        return caption

    async def generate_voice(
        self,
        text: str,
        voice: Optional[str] = None,
        speed: Optional[float] = None,
        model: Optional[str] = None,
    ) -> bytes:
        client = self._client(SecretKey.OPENAI)
        try:
            response = await client.audio.speech.create(
                input=text,
                response_format="mp3",
                voice=voice or "alloy",
                speed=speed if speed is not None else 1,
                model=model or "tts-1",
            )
        except (APIStatusError, APIConnectionError) as exc:
            raise _provider_error("OpenAI speech request", exc) from exc
        return response.content

    async def generate_image(self, body: Dict[str, Any]) -> Any:
        client = self._client(SecretKey.OPENAI)
        logger.info("OpenAI image request model=%s", body.get("model"))
        try:
            # Posted verbatim so provider-specific fields survive.
            response = await client.post("/images/generations", body=body, cast_to=httpx.Response)
        except (APIStatusError, APIConnectionError) as exc:
            raise _provider_error("OpenAI image request", exc) from exc
        return response.json()

    async def transcribe_audio(
        self,
        data: bytes,
        model: Optional[str],
        language: Optional[str] = None,
    ) -> Dict[str, Any]:
        client = self._client(SecretKey.OPENAI)
        if not data:
            raise ClientInputError("No audio file found")
        if not model:
            raise ClientInputError("No transcription model given")
        try:
            transcription = await client.audio.transcriptions.create(
                file=("audio.wav", data, "audio/wav"),
                model=model,
                language=language or NOT_GIVEN,
            )
        except (APIStatusError, APIConnectionError) as exc:
            raise _provider_error("OpenAI transcription request", exc) from exc
        return transcription.model_dump(exclude_none=True)


def _provider_error(what: str, exc: Exception) -> BackendUnavailable:
    if isinstance(exc, APIStatusError):
        logger.error("%s failed: %s %s", what, exc.status_code, exc.response.text)
        return BackendUnavailable(f"{what} failed", status_code=exc.status_code, body=exc.response.text)
    return BackendUnavailable(f"{what} failed: {exc}")
