from typing import Any, Optional
import logging
import threading

from .textgenerationclient import GenerationResult, TextGenerationClient
from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_NEW_TOKENS = 256


class LocalTextGenerationClient(TextGenerationClient):
    """Hugging Face ``text-generation`` pipeline, loaded on first use.

    The pipeline is built once under a lock and kept for the lifetime of the
    process. A failed load is not cached, so the next call tries again.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self._pipeline: Any = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._pipeline is not None

    def _get_pipeline(self) -> Any:
        if self._pipeline is not None:
            return self._pipeline
        with self._lock:
            if self._pipeline is None:
                # Heavy imports stay out of module import time.
                import torch
                from transformers import pipeline

                device = 0 if torch.cuda.is_available() else -1
                logger.info(
                    "Loading text-generation pipeline %s on %s",
                    self.settings.expansion_model_id,
                    "cuda" if device == 0 else "cpu",
                )
                self._pipeline = pipeline(
                    "text-generation",
                    model=self.settings.expansion_model_id,
                    device=device,
                )
        return self._pipeline

    def generate(
        self,
        prompt: str,
        max_new_tokens: Optional[int] = None,
        do_sample: bool = True,
        num_beams: int = 1,
    ) -> GenerationResult:
        pipe = self._get_pipeline()
        outputs = pipe(
            prompt,
            num_beams=num_beams,
            max_new_tokens=max_new_tokens if max_new_tokens is not None else DEFAULT_MAX_NEW_TOKENS,
            do_sample=do_sample,
        )
        return GenerationResult(text=outputs[0]["generated_text"])
