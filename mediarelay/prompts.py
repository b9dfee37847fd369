import random
from typing import Optional

from .utils import remove_pattern, safe_str

# Fooocus-style expansion: the model continues the prompt after one of these.
SPLIT_STRINGS = (
    ", extremely",
    ", intricate,",
)

# Characters that carry weighting or syntax meaning in web UI prompts.
DANGEROUS_PATTERNS = "[]【】()（）|:："


def get_expansion_prompt(original_prompt: str, rng: Optional[random.Random] = None) -> str:
    split_string = (rng or random).choice(SPLIT_STRINGS)
    return safe_str(original_prompt) + split_string


def clean_expanded_prompt(generated_text: str) -> str:
    return safe_str(remove_pattern(generated_text, DANGEROUS_PATTERNS))
