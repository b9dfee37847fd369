from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class GenerationResult:
    """Container describing generated text."""

    text: str


class TextGenerationClient(ABC):
    """Abstract interface for a text generation client.

    Implementations are synchronous; async callers run them in a thread pool.
    """

    @abstractmethod
    def generate(
        self,
        prompt: str,
        max_new_tokens: Optional[int] = None,
        do_sample: bool = True,
        num_beams: int = 1,
    ) -> GenerationResult:
        """Continue ``prompt`` and return the full generated text."""
