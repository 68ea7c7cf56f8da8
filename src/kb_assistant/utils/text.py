"""Small text helpers shared by the chunker and the chat engine."""

import math
import re

CHARS_PER_TOKEN = 4

_TAG_RE = re.compile(r"<[^>]+>")


def estimate_tokens(text: str, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    """Approximate token count as ``ceil(len(text) / chars_per_token)``."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def strip_tags(text: str) -> str:
    """Remove anything that looks like an HTML/XML tag."""
    return _TAG_RE.sub("", text)
