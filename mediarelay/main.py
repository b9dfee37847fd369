"""FastAPI entry point exposing the media relay endpoints."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, File, Form, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from .aiservices.comfyclient import ComfyClient
from .aiservices.multimodalclient import MultimodalClient
from .aiservices.promptexpansion import PromptExpander
from .aiservices.relay import BackendTarget
from .aiservices.webuiclient import WebUIClient
from .config import get_settings
from .errors import (
    AuthMissing,
    BackendUnavailable,
    ClientInputError,
    GenerationFailed,
)
from .schemas import (
    BackendRequest,
    CaptionRequest,
    CaptionResponse,
    ComfyGenerateRequest,
    ExpandRequest,
    ExpandResponse,
    ModelOption,
    SaveWorkflowRequest,
    SetModelRequest,
    Txt2ImgRequest,
    VoiceRequest,
    WorkflowFileRequest,
)
from .service import (
    get_comfy_client,
    get_multimodal_client,
    get_prompt_expander,
    get_relay_client,
    get_webui_client,
)
from .storageservice.workflowstore import WorkflowStore, get_workflow_store

logger = logging.getLogger(__name__)

_OPAQUE_FAILURE = {"detail": "Internal Server Error"}


def _target(payload: BackendRequest) -> BackendTarget:
    return BackendTarget.from_request(payload.url, payload.auth)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.getLogger(__name__.rsplit(".", 1)[0]).setLevel(settings.log_level)
    yield
    await get_relay_client().aclose()


app = FastAPI(title="Media Relay Backend", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------------------------------------------------
# Error conversion
# ----------------------------------------------------------------------
@app.exception_handler(ClientInputError)
async def client_input_error_handler(request: Request, exc: ClientInputError):
    logger.warning("Rejected request to %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(AuthMissing)
async def auth_missing_handler(request: Request, exc: AuthMissing):
    logger.warning("Request to %s needs a key: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"detail": "Unauthorized"})


@app.exception_handler(BackendUnavailable)
async def backend_unavailable_handler(request: Request, exc: BackendUnavailable):
    logger.error(
        "Backend call for %s failed: %s (status=%s) %s",
        request.url.path,
        exc,
        exc.status_code,
        exc.body,
    )
    if exc.passthrough:
        return PlainTextResponse(exc.body, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_OPAQUE_FAILURE)


@app.exception_handler(GenerationFailed)
async def generation_failed_handler(request: Request, exc: GenerationFailed):
    logger.error("Generation for %s failed: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_OPAQUE_FAILURE)


@app.get("/health", summary="Health Check Endpoint")
async def healthcheck():
    settings = get_settings()
    return {
        "status": "ok",
        "openaiBaseUrl": settings.openai_base_url,
        "expansionModel": settings.expansion_model_id if settings.enable_prompt_expansion else None,
    }


# ----------------------------------------------------------------------
# Stable Diffusion web UI
# ----------------------------------------------------------------------
@app.post("/api/sd/ping", summary="Check that the web UI answers")
async def sd_ping(payload: BackendRequest, client: WebUIClient = Depends(get_webui_client)):
    await client.ping(_target(payload))
    return Response(status_code=status.HTTP_200_OK)


@app.post("/api/sd/upscalers", response_model=List[str], summary="List upscalers, latent modes first")
async def sd_upscalers(payload: BackendRequest, client: WebUIClient = Depends(get_webui_client)):
    return await client.upscalers(_target(payload))


@app.post("/api/sd/samplers", response_model=List[str], summary="List sampler names")
async def sd_samplers(payload: BackendRequest, client: WebUIClient = Depends(get_webui_client)):
    return await client.samplers(_target(payload))


@app.post("/api/sd/models", response_model=List[ModelOption], summary="List checkpoints")
async def sd_models(payload: BackendRequest, client: WebUIClient = Depends(get_webui_client)):
    return await client.models(_target(payload))


@app.post("/api/sd/get-model", response_class=PlainTextResponse, summary="Return the loaded checkpoint")
async def sd_get_model(payload: BackendRequest, client: WebUIClient = Depends(get_webui_client)):
    return PlainTextResponse(await client.get_model(_target(payload)))


@app.post("/api/sd/set-model", summary="Switch checkpoint and wait for it to load")
async def sd_set_model(payload: SetModelRequest, client: WebUIClient = Depends(get_webui_client)):
    await client.set_model(_target(payload), payload.model)
    return Response(status_code=status.HTTP_200_OK)


@app.post("/api/sd/generate", summary="Relay a txt2img request")
async def sd_generate(payload: Txt2ImgRequest, client: WebUIClient = Depends(get_webui_client)):
    target = _target(payload)
    params = payload.generation_params()
    logger.info("Web UI txt2img request with %s parameters", len(params))
    return await client.txt2img(target, params)


@app.post("/api/sd-next/upscalers", response_model=List[str], summary="List SD.Next upscalers")
async def sdnext_upscalers(payload: BackendRequest, client: WebUIClient = Depends(get_webui_client)):
    return await client.sdnext_upscalers(_target(payload))


@app.post("/api/sd/expand", response_model=ExpandResponse, summary="Expand an image prompt")
async def sd_expand(payload: ExpandRequest, expander: PromptExpander = Depends(get_prompt_expander)):
    return ExpandResponse(prompt=await expander.expand(payload.prompt))


# ----------------------------------------------------------------------
# ComfyUI
# ----------------------------------------------------------------------
@app.post("/api/sd/comfy/ping", summary="Check that ComfyUI answers")
async def comfy_ping(payload: BackendRequest, client: ComfyClient = Depends(get_comfy_client)):
    await client.ping(_target(payload))
    return Response(status_code=status.HTTP_200_OK)


@app.post("/api/sd/comfy/samplers", summary="List KSampler sampler names")
async def comfy_samplers(payload: BackendRequest, client: ComfyClient = Depends(get_comfy_client)):
    return await client.samplers(_target(payload))


@app.post("/api/sd/comfy/models", response_model=List[ModelOption], summary="List checkpoints")
async def comfy_models(payload: BackendRequest, client: ComfyClient = Depends(get_comfy_client)):
    return await client.models(_target(payload))


@app.post("/api/sd/comfy/schedulers", summary="List KSampler schedulers")
async def comfy_schedulers(payload: BackendRequest, client: ComfyClient = Depends(get_comfy_client)):
    return await client.schedulers(_target(payload))


@app.post("/api/sd/comfy/vaes", summary="List VAE names")
async def comfy_vaes(payload: BackendRequest, client: ComfyClient = Depends(get_comfy_client)):
    return await client.vaes(_target(payload))


@app.post("/api/sd/comfy/workflows", response_model=List[str], summary="List saved workflows")
async def comfy_workflows(store: WorkflowStore = Depends(get_workflow_store)):
    return await run_in_threadpool(store.list_workflows)


@app.post("/api/sd/comfy/workflow", response_model=str, summary="Read a saved workflow")
async def comfy_workflow(payload: WorkflowFileRequest, store: WorkflowStore = Depends(get_workflow_store)):
    return await run_in_threadpool(store.read_workflow, payload.file_name)


@app.post("/api/sd/comfy/save-workflow", response_model=List[str], summary="Save a workflow")
async def comfy_save_workflow(payload: SaveWorkflowRequest, store: WorkflowStore = Depends(get_workflow_store)):
    await run_in_threadpool(store.save_workflow, payload.file_name, payload.workflow)
    return await run_in_threadpool(store.list_workflows)


@app.post("/api/sd/comfy/delete-workflow", summary="Delete a saved workflow")
async def comfy_delete_workflow(payload: WorkflowFileRequest, store: WorkflowStore = Depends(get_workflow_store)):
    await run_in_threadpool(store.delete_workflow, payload.file_name)
    return Response(status_code=status.HTTP_200_OK)


@app.post("/api/sd/comfy/generate", response_class=PlainTextResponse, summary="Run a job graph")
async def comfy_generate(
    payload: ComfyGenerateRequest,
    request: Request,
    client: ComfyClient = Depends(get_comfy_client),
):
    image = await client.generate(_target(payload), payload.prompt, request.is_disconnected)
    return PlainTextResponse(image)


# ----------------------------------------------------------------------
# Hosted multimodal provider
# ----------------------------------------------------------------------
@app.post("/api/openai/caption-image", response_model=CaptionResponse, summary="Caption an image")
async def openai_caption_image(
    payload: CaptionRequest,
    request: Request,
    client: MultimodalClient = Depends(get_multimodal_client),
):
    caption = await client.caption_image(
        payload.api,
        payload.model,
        payload.prompt,
        payload.image,
        referer=request.headers.get("referer"),
    )
    return CaptionResponse(caption=caption)


@app.post("/api/openai/transcribe-audio", summary="Transcribe an uploaded audio file")
async def openai_transcribe_audio(
    model: Optional[str] = Form(default=None),
    language: Optional[str] = Form(default=None),
    file: Optional[UploadFile] = File(default=None),
    client: MultimodalClient = Depends(get_multimodal_client),
):
    data = await file.read() if file is not None else b""
    return await client.transcribe_audio(data, model, language)


@app.post("/api/openai/generate-voice", summary="Synthesize speech as MP3")
async def openai_generate_voice(
    payload: VoiceRequest,
    client: MultimodalClient = Depends(get_multimodal_client),
):
    audio = await client.generate_voice(payload.text, payload.voice, payload.speed, payload.model)
    return Response(content=audio, media_type="audio/mpeg")


@app.post("/api/openai/generate-image", summary="Relay an image generation request")
async def openai_generate_image(
    payload: Dict[str, Any] = Body(...),
    client: MultimodalClient = Depends(get_multimodal_client),
):
    return await client.generate_image(payload)


__all__ = ["app"]


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    import uvicorn

    uvicorn.run("mediarelay.main:app", host="0.0.0.0", port=8000, reload=True)
