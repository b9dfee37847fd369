"""ComfyUI client: object-info queries and the submit/poll/fetch generation flow."""

from __future__ import annotations

import asyncio
import base64
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from ..config import Settings, get_settings
from ..errors import (
    BackendResponseInvalid,
    BackendUnavailable,
    GenerationCancelled,
    GenerationFailed,
    GenerationTimedOut,
)
from ..schemas import ComfyPromptResponse, HistoryEntry, ImageReference, ModelOption, NodeInfo
from .relay import BackendTarget, RelayClient, parse_model

logger = logging.getLogger(__name__)

DisconnectProbe = Callable[[], Awaitable[bool]]


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    FOUND = "found"
    TIMED_OUT = "timed_out"


@dataclass
class GenerationJob:
    payload: bytes
    job_id: str
    status: JobStatus = JobStatus.PENDING


@dataclass
class GenerationResult:
    asset: ImageReference
    data: bytes

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


def combo_options(object_info: Any, node: str, field: str) -> List[Any]:
    """Return the choices ComfyUI advertises for ``node.input.required[field]``.

    Handles both the legacy ``[[choices...]]`` layout and the newer
    ``["COMBO", {"options": [choices...]}]`` one.
    """
    if not isinstance(object_info, dict) or node not in object_info:
        raise BackendResponseInvalid(f"object_info has no {node} node")

    info = parse_model(NodeInfo, object_info[node], f"object_info[{node}]")
    spec = info.input.required.get(field)
    if not spec:
        raise BackendResponseInvalid(f"object_info[{node}] has no {field} input")

    first = spec[0]
    if isinstance(first, list):
        return first
    if len(spec) > 1 and isinstance(spec[1], dict) and isinstance(spec[1].get("options"), list):
        return spec[1]["options"]
    raise BackendResponseInvalid(f"object_info[{node}].{field} does not list choices")


def first_image(entry: HistoryEntry) -> ImageReference:
    """Pick the first image across all node outputs, in output order."""
    images = [image for output in entry.outputs.values() for image in output.images]
    if not images:
        raise GenerationFailed("Job finished without any image output")
    return images[0]


class ComfyClient:
    def __init__(
        self,
        relay: RelayClient,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self._relay = relay
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Server info
    # ------------------------------------------------------------------
    async def ping(self, target: BackendTarget) -> None:
        await self._relay.request(target, "/system_stats")

    async def samplers(self, target: BackendTarget) -> List[Any]:
        return combo_options(await self._object_info(target), "KSampler", "sampler_name")

    async def schedulers(self, target: BackendTarget) -> List[Any]:
        return combo_options(await self._object_info(target), "KSampler", "scheduler")

    async def vaes(self, target: BackendTarget) -> List[Any]:
        return combo_options(await self._object_info(target), "VAELoader", "vae_name")

    async def models(self, target: BackendTarget) -> List[ModelOption]:
        names = combo_options(await self._object_info(target), "CheckpointLoaderSimple", "ckpt_name")
        return [ModelOption(value=name, text=name) for name in names]

    async def _object_info(self, target: BackendTarget) -> Any:
        return await self._relay.get_json(target, "/object_info")

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    async def generate(
        self,
        target: BackendTarget,
        prompt: str,
        is_disconnected: Optional[DisconnectProbe] = None,
    ) -> str:
        """Run one job graph to completion and return its first image as base64."""
        try:
            job = await self.submit(target, prompt)
            entry = await self.wait_for_job(target, job, is_disconnected)
            result = await self.fetch_result(target, entry)
        except BackendUnavailable as exc:
            raise GenerationFailed(f"ComfyUI returned an error: {exc}") from exc
        return result.to_base64()

    async def submit(self, target: BackendTarget, prompt: str) -> GenerationJob:
        payload = prompt.encode("utf-8")
        response = await self._relay.request(target, "/prompt", "POST", content=payload)
        try:
            data = response.json()
        except ValueError as exc:
            raise BackendResponseInvalid("/prompt did not return JSON") from exc
        job_id = parse_model(ComfyPromptResponse, data, "prompt").prompt_id
        logger.info("Submitted ComfyUI job %s", job_id)
        return GenerationJob(payload=payload, job_id=job_id)

    async def wait_for_job(
        self,
        target: BackendTarget,
        job: GenerationJob,
        is_disconnected: Optional[DisconnectProbe] = None,
    ) -> HistoryEntry:
        deadline = self._clock() + self.settings.comfy_poll_timeout
        polls = 0
        while True:
            history = await self._relay.get_json(target, "/history")
            polls += 1
            if not isinstance(history, dict):
                raise BackendResponseInvalid("/history did not return a mapping")

            if job.job_id in history:
                job.status = JobStatus.FOUND
                logger.info("ComfyUI job %s finished after %s polls", job.job_id, polls)
                return parse_model(HistoryEntry, history[job.job_id], "history")

            if self._clock() >= deadline:
                job.status = JobStatus.TIMED_OUT
                raise GenerationTimedOut(
                    f"Job {job.job_id} not in history after {self.settings.comfy_poll_timeout}s"
                )
            if is_disconnected is not None and await is_disconnected():
                raise GenerationCancelled(f"Caller went away while job {job.job_id} was running")

            logger.debug("ComfyUI job %s not ready yet (poll %s)", job.job_id, polls)
            await self._sleep(self.settings.comfy_poll_interval)

    async def fetch_result(self, target: BackendTarget, entry: HistoryEntry) -> GenerationResult:
        image = first_image(entry)
        # Values are copied as-is, the way ComfyUI reported them.
        query = f"filename={image.filename}&subfolder={image.subfolder}&type={image.type}"
        data = await self._relay.get_bytes(target, "/view", query=query)
        return GenerationResult(asset=image, data=data)
