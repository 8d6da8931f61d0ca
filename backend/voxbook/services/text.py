"""Text chunking, chapter structuring and duration estimates."""

from __future__ import annotations

import math
import re

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_SLUG_RE = re.compile(r"[^a-z0-9]+")

WORDS_PER_MINUTE = 150
WORDS_PER_CHAPTER = 1500


def split_sentences(text: str) -> list[str]:
    return [part for part in _SENTENCE_SPLIT_RE.split(text.strip()) if part]


def split_into_chunks(text: str, max_length: int) -> list[str]:
    """Pack whole sentences into chunks of at most ``max_length`` characters.

    Sentences are joined with single spaces. A sentence that alone exceeds
    ``max_length`` is emitted as its own chunk rather than cut.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")

    chunks: list[str] = []
    current = ""
    for sentence in split_sentences(text):
        candidate = f"{current} {sentence}" if current else sentence
        if current and len(candidate) > max_length:
            chunks.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def structure_into_chapters(text: str, words_per_chapter: int = WORDS_PER_CHAPTER) -> list[str]:
    if words_per_chapter <= 0:
        raise ValueError("words_per_chapter must be positive")
    words = text.split()
    return [
        " ".join(words[start : start + words_per_chapter])
        for start in range(0, len(words), words_per_chapter)
    ]


def count_words(text: str) -> int:
    return len(text.split())


def estimate_duration(text: str, words_per_minute: int = WORDS_PER_MINUTE) -> str:
    minutes = math.ceil(count_words(text) / words_per_minute)
    hours, remaining = divmod(minutes, 60)
    if hours:
        return f"{hours}h {remaining}m"
    return f"{minutes}m"


def slugify(value: str) -> str:
    slug = _SLUG_RE.sub("-", value.lower()).strip("-")
    return slug or "untitled"
