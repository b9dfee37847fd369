"""Image prompt expansion with a small text-generation model.

Adapted from the Fooocus expansion approach: the cleaned prompt gets a short
continuation cue appended, the model writes the rest, and weighting syntax is
stripped from the result so it can be sent to a web UI as-is.
"""

from __future__ import annotations

import logging
import random
from typing import Optional

from starlette.concurrency import run_in_threadpool

from ..config import Settings, get_settings
from ..prompts import clean_expanded_prompt, get_expansion_prompt
from .textgenerationclient import TextGenerationClient

logger = logging.getLogger(__name__)

EXPANSION_MAX_NEW_TOKENS = 256


class PromptExpander:
    def __init__(
        self,
        text_client: TextGenerationClient,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._text_client = text_client
        self._rng = rng or random.Random()

    async def expand(self, original_prompt: Optional[str]) -> str:
        if not original_prompt:
            logger.warning("No prompt provided for expansion.")
            return ""

        if not self.settings.enable_prompt_expansion:
            return original_prompt

        logger.info("Refine prompt input: %s", original_prompt)
        prompt = get_expansion_prompt(original_prompt, self._rng)

        try:
            result = await run_in_threadpool(
                self._text_client.generate,
                prompt,
                max_new_tokens=EXPANSION_MAX_NEW_TOKENS,
                do_sample=True,
                num_beams=1,
            )
        except Exception:
            logger.warning("Text-generation pipeline failed, returning the prompt unchanged", exc_info=True)
            return original_prompt

        new_prompt = clean_expanded_prompt(result.text)
        logger.info("Refine prompt output: %s", new_prompt)
        return new_prompt
