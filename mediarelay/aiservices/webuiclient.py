"""Client for the Stable Diffusion web UI API (AUTOMATIC1111 and SD.Next)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import Settings, get_settings
from ..schemas import CheckpointItem, ModelOption, NamedItem, WebUIOptions, WebUIProgress
from .relay import BackendTarget, RelayClient, parse_list, parse_model

logger = logging.getLogger(__name__)

# SD.Next does not report its latent upscale modes over the API.
SDNEXT_LATENT_UPSCALERS = [
    "Latent",
    "Latent (antialiased)",
    "Latent (bicubic)",
    "Latent (bicubic antialiased)",
    "Latent (nearest)",
    "Latent (nearest-exact)",
]


def merge_upscalers(upscalers: List[str], latent_upscalers: List[str]) -> List[str]:
    """Insert latent upscalers right after the leading ``None`` entry."""
    merged = list(upscalers)
    merged[1:1] = latent_upscalers
    return merged


class WebUIClient:
    def __init__(
        self,
        relay: RelayClient,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self._relay = relay
        self._sleep = sleep

    async def ping(self, target: BackendTarget) -> None:
        await self._relay.request(target, "/sdapi/v1/options")

    async def upscalers(self, target: BackendTarget) -> List[str]:
        upscalers, latent = await asyncio.gather(
            self._names(target, "/sdapi/v1/upscalers"),
            self._names(target, "/sdapi/v1/latent-upscale-modes"),
        )
        return merge_upscalers(upscalers, latent)

    async def sdnext_upscalers(self, target: BackendTarget) -> List[str]:
        upscalers = await self._names(target, "/sdapi/v1/upscalers")
        return merge_upscalers(upscalers, SDNEXT_LATENT_UPSCALERS)

    async def samplers(self, target: BackendTarget) -> List[str]:
        return await self._names(target, "/sdapi/v1/samplers")

    async def models(self, target: BackendTarget) -> List[ModelOption]:
        data = await self._relay.get_json(target, "/sdapi/v1/sd-models")
        items = parse_list(CheckpointItem, data, "sd-models")
        return [ModelOption(value=item.title, text=item.title) for item in items]

    async def get_model(self, target: BackendTarget) -> str:
        data = await self._relay.get_json(target, "/sdapi/v1/options")
        return parse_model(WebUIOptions, data, "options").sd_model_checkpoint

    async def set_model(self, target: BackendTarget, model: str) -> None:
        """Switch checkpoints and wait a bounded time for the web UI to go idle."""
        await self._relay.request(
            target,
            "/sdapi/v1/options",
            "POST",
            json={"sd_model_checkpoint": model},
        )

        attempts = self.settings.webui_model_load_attempts
        for _ in range(attempts):
            data = await self._relay.get_json(target, "/sdapi/v1/progress")
            state = parse_model(WebUIProgress, data, "progress")
            if state.progress == 0.0 and state.state.job_count == 0:
                return

            logger.info(
                "Waiting for web UI to finish model loading... Progress: %s; Job count: %s",
                state.progress,
                state.state.job_count,
            )
            await self._sleep(self.settings.webui_model_load_interval)

        logger.warning("Web UI still busy after %s progress checks, continuing", attempts)

    async def txt2img(self, target: BackendTarget, params: Dict[str, Any]) -> Any:
        return await self._relay.post_json(target, "/sdapi/v1/txt2img", params)

    async def _names(self, target: BackendTarget, path: str) -> List[str]:
        data = await self._relay.get_json(target, path)
        return [item.name for item in parse_list(NamedItem, data, path)]
