"""Process-wide backend clients handed to the routes through FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from .aiservices.comfyclient import ComfyClient
from .aiservices.localtextgenerationclient import LocalTextGenerationClient
from .aiservices.multimodalclient import MultimodalClient
from .aiservices.promptexpansion import PromptExpander
from .aiservices.relay import RelayClient
from .aiservices.webuiclient import WebUIClient
from .config import get_settings
from .secretstore import get_secret_store


@lru_cache
def get_relay_client() -> RelayClient:
    return RelayClient()


@lru_cache
def get_webui_client() -> WebUIClient:
    return WebUIClient(get_relay_client(), get_settings())


@lru_cache
def get_comfy_client() -> ComfyClient:
    return ComfyClient(get_relay_client(), get_settings())


@lru_cache
def get_multimodal_client() -> MultimodalClient:
    return MultimodalClient(get_secret_store(), get_relay_client(), get_settings())


@lru_cache
def get_text_generation_client() -> LocalTextGenerationClient:
    return LocalTextGenerationClient(get_settings())


@lru_cache
def get_prompt_expander() -> PromptExpander:
    return PromptExpander(get_text_generation_client(), get_settings())
