"""Token counting for chunk sizing.

Uses tiktoken's ``cl100k_base`` encoding.  The encoding is loaded lazily
and cached for the life of the process.  Special-token text such as
``<|endoftext|>`` inside a page is counted as ordinary text rather than
rejected.
"""

from __future__ import annotations

import functools
from typing import Callable

import tiktoken

TokenCounter = Callable[[str], int]

_ENCODING_NAME = "cl100k_base"


@functools.lru_cache(maxsize=1)
def _encoding() -> tiktoken.Encoding:
    return tiktoken.get_encoding(_ENCODING_NAME)


def count_tokens(text: str) -> int:
    """Return the number of ``cl100k_base`` tokens in *text*."""
    if not text:
        return 0
    return len(_encoding().encode(text, disallowed_special=()))
