import re

_EDGE_JUNK = re.compile(r"^[\s,.]+|[\s,.]+$")


def safe_str(x) -> str:
    """
    Normalise a prompt fragment.

    Runs of spaces are collapsed, then whitespace, commas and periods are
    stripped from both ends. Applying it twice gives the same result as once.

    Args:
        x: Value to clean. Non-strings are converted with ``str``.

    Returns:
        str: The cleaned text.
    """
    x = str(x)
    x = re.sub(r" {2,}", " ", x)
    x = x.strip()
    x = _EDGE_JUNK.sub("", x)
    return x


def remove_pattern(x: str, pattern: str) -> str:
    """Delete every occurrence of each character in ``pattern`` from ``x``."""
    for char in pattern:
        x = x.replace(char, "")
    return x
