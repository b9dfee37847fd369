from __future__ import annotations

import enum
from functools import lru_cache
from typing import Optional

from .config import Settings, get_settings


class SecretKey(str, enum.Enum):
    OPENAI = "api_key_openai"
    OPENROUTER = "api_key_openrouter"


class SecretStore:
    """Looks up provider API keys by name. Missing keys read as an empty string."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def read(self, key: SecretKey) -> str:
        if key is SecretKey.OPENAI:
            return self.settings.openai_api_key.get_secret_value()
        if key is SecretKey.OPENROUTER:
            return self.settings.openrouter_api_key.get_secret_value()
        return ""


@lru_cache
def get_secret_store() -> SecretStore:
    return SecretStore(get_settings())
