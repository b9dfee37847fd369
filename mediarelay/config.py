from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the media relay backend."""

    #----------------------------------------------------------
    # Hosted provider settings
    #----------------------------------------------------------
    openai_api_key: SecretStr = Field(
        default="",
        description="API key used for OpenAI captioning, speech, image and transcription calls.",
    )

    openrouter_api_key: SecretStr = Field(
        default="",
        description="API key used when image captioning is routed through OpenRouter.",
    )

    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI API.",
    )

    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL of the OpenRouter OpenAI-compatible API.",
    )

    #----------------------------------------------------------
    # Node-graph backend settings
    #----------------------------------------------------------
    workflows_dir: str = Field(
        default="data/comfy_workflows",
        description="Directory holding saved ComfyUI workflow JSON files.",
    )

    comfy_poll_interval: float = Field(
        default=0.1,
        ge=0.0,
        description="Seconds to wait between two history polls while a job is running.",
    )

    comfy_poll_timeout: float = Field(
        default=300.0,
        gt=0.0,
        description="Give up on a submitted job after this many seconds without a history entry.",
    )

    #----------------------------------------------------------
    # Web UI settings
    #----------------------------------------------------------
    webui_model_load_attempts: int = Field(
        default=10,
        ge=1,
        description="How many times to check progress after switching checkpoints.",
    )

    webui_model_load_interval: float = Field(
        default=2.0,
        ge=0.0,
        description="Seconds between two progress checks while a checkpoint loads.",
    )

    #----------------------------------------------------------
    # Prompt expansion settings
    #----------------------------------------------------------
    enable_prompt_expansion: bool = Field(
        default=True,
        description="Disable to return prompts unchanged from the expand endpoint.",
    )

    expansion_model_id: str = Field(
        default="Gustavosta/MagicPrompt-Stable-Diffusion",
        description="Hugging Face text-generation model used to expand image prompts.",
    )

    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = Field(
        default="INFO",
        description="Level applied to the mediarelay package logger.",
    )

    model_config = SettingsConfigDict(
        env_prefix="MEDIARELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
