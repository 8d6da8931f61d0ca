from __future__ import annotations

import pytest

from voxbook.services.text import (
    estimate_duration,
    slugify,
    split_into_chunks,
    split_sentences,
    structure_into_chapters,
)


def _sentence(length: int) -> str:
    return "x" * (length - 1) + "."


def test_split_sentences_keeps_terminators() -> None:
    assert split_sentences("Hello there. How are you?  Fine!") == ["Hello there.", "How are you?", "Fine!"]
    assert split_sentences("   ") == []


def test_chunks_respect_limit_and_join_back() -> None:
    text = " ".join([_sentence(999)] * 11 + [_sentence(1000)])
    assert len(text) == 12000

    chunks = split_into_chunks(text, 4000)

    assert [len(chunk) for chunk in chunks] == [3999, 3999, 4000]
    assert " ".join(chunks) == text


def test_short_text_is_single_chunk() -> None:
    assert split_into_chunks("One. Two. Three.", 4000) == ["One. Two. Three."]


def test_oversized_sentence_is_emitted_whole() -> None:
    long_sentence = _sentence(50)
    chunks = split_into_chunks(f"Hi. {long_sentence} Bye.", 20)
    assert chunks == ["Hi.", long_sentence, "Bye."]


def test_chunking_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        split_into_chunks("Hello.", 0)


def test_chapters_partition_words() -> None:
    words = [f"w{i}" for i in range(3200)]
    chapters = structure_into_chapters(" ".join(words), 1500)

    assert [len(chapter.split()) for chapter in chapters] == [1500, 1500, 200]
    assert " ".join(chapters).split() == words
    assert structure_into_chapters("", 1500) == []


def test_estimate_duration() -> None:
    assert estimate_duration(" ".join(["word"] * 300)) == "2m"
    assert estimate_duration(" ".join(["word"] * 9000)) == "1h 0m"
    assert estimate_duration(" ".join(["word"] * 9151)) == "1h 2m"


def test_slugify() -> None:
    assert slugify("My First Book!") == "my-first-book"
    assert slugify("???") == "untitled"
