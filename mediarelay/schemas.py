"""Pydantic models for inbound request bodies and backend responses."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---- Inbound requests ----
class BackendRequest(BaseModel):
    url: str = Field(..., description="Base URL of the backend to talk to")
    auth: Optional[str] = Field(
        default=None,
        description="Basic auth credentials as 'username:password'",
    )


class SetModelRequest(BackendRequest):
    model: str = Field(..., description="Checkpoint title to switch the web UI to")


class Txt2ImgRequest(BackendRequest):
    """Generation parameters are forwarded as-is, so unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    def generation_params(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class ComfyGenerateRequest(BackendRequest):
    prompt: str = Field(..., description="Serialized ComfyUI job graph, sent without interpretation")


class ExpandRequest(BaseModel):
    prompt: Optional[str] = Field(default=None, description="Image prompt to expand")


class ExpandResponse(BaseModel):
    prompt: str


class WorkflowFileRequest(BaseModel):
    file_name: str = Field(..., description="Name of the workflow file")


class SaveWorkflowRequest(WorkflowFileRequest):
    workflow: str = Field(..., description="Workflow document text")


class CaptionRequest(BaseModel):
    api: str = Field(..., description="Provider to route the request through: openai or openrouter")
    model: str
    prompt: str
    image: str = Field(..., description="Image URL or data URI")


class CaptionResponse(BaseModel):
    caption: str


class VoiceRequest(BaseModel):
    text: str
    voice: Optional[str] = None
    speed: Optional[float] = None
    model: Optional[str] = None


class ModelOption(BaseModel):
    value: str
    text: str


# ---- Web UI responses ----
class NamedItem(BaseModel):
    name: str


class CheckpointItem(BaseModel):
    title: str


class WebUIOptions(BaseModel):
    model_config = ConfigDict(extra="allow")

    sd_model_checkpoint: str


class ProgressState(BaseModel):
    job_count: int


class WebUIProgress(BaseModel):
    progress: float
    state: ProgressState


# ---- ComfyUI responses ----
class ComfyPromptResponse(BaseModel):
    prompt_id: str


class ImageReference(BaseModel):
    filename: str
    subfolder: str = ""
    type: str


class NodeOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    images: List[ImageReference] = Field(default_factory=list)


class HistoryEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    outputs: Dict[str, NodeOutput] = Field(default_factory=dict)


class NodeInputSpec(BaseModel):
    required: Dict[str, List[Any]] = Field(default_factory=dict)


class NodeInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    input: NodeInputSpec
