"""Speaking-rate estimates shared by section timestamps and audio duration."""

from __future__ import annotations

import math

DEFAULT_WORDS_PER_MINUTE = 150


def count_words(text: str) -> int:
    return len(str(text or "").split())


def seconds_for_words(words: int, words_per_minute: int = DEFAULT_WORDS_PER_MINUTE) -> int:
    """Whole seconds needed to speak ``words``; halves round up."""
    words_per_second = max(1, int(words_per_minute)) / 60.0
    return int(math.floor(max(0, words) / words_per_second + 0.5))
