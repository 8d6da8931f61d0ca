"""Render transcribed chapters into downloadable documents."""

from __future__ import annotations

import io
import re
from dataclasses import dataclass
from typing import Union

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt

from voxbook.core.constants import OutputFormat

CREDIT_LINE = "Transcribed with Voxbook"
SENTENCES_PER_PARAGRAPH = 3

_SENTENCE_RE = re.compile(r"[^.!?]*(?:[.!?]+|$)")


@dataclass
class RenderedDocument:
    data: bytes
    content_type: str
    extension: str


def chapter_title(index: int) -> str:
    return f"Chapter {index}"


def group_paragraphs(content: str, sentences_per_paragraph: int = SENTENCES_PER_PARAGRAPH) -> list[str]:
    sentences = [s.strip() for s in _SENTENCE_RE.findall(content) if s.strip()] or [content.strip()]
    return [
        " ".join(sentences[i : i + sentences_per_paragraph])
        for i in range(0, len(sentences), sentences_per_paragraph)
    ]


def render_plain_text(title: str, chapters: list[str]) -> str:
    parts = [f"{title}\n{'=' * len(title)}\n\n{CREDIT_LINE}\n\n"]
    for index, content in enumerate(chapters, start=1):
        heading = chapter_title(index)
        parts.append(f"{heading}\n{'-' * len(heading)}\n\n{content}\n\n")
    return "".join(parts)


def render_markdown(title: str, chapters: list[str]) -> str:
    parts = [f"# {title}\n\n*{CREDIT_LINE}*\n\n---\n\n"]
    for index, content in enumerate(chapters, start=1):
        parts.append(f"## {chapter_title(index)}\n\n{content}\n\n")
    return "".join(parts)


def render_docx(title: str, chapters: list[str]) -> bytes:
    document = Document()

    heading = document.add_heading(title, level=0)
    heading.alignment = WD_ALIGN_PARAGRAPH.CENTER

    credit = document.add_paragraph()
    credit.alignment = WD_ALIGN_PARAGRAPH.CENTER
    credit_run = credit.add_run(CREDIT_LINE)
    credit_run.italic = True
    credit_run.font.size = Pt(12)

    for index, content in enumerate(chapters, start=1):
        chapter_heading = document.add_heading(chapter_title(index), level=1)
        chapter_heading.paragraph_format.page_break_before = index > 1
        for paragraph in group_paragraphs(content):
            body = document.add_paragraph(paragraph)
            body.paragraph_format.space_after = Pt(10)

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def render_document(title: str, chapters: list[str], fmt: Union[OutputFormat, str]) -> RenderedDocument:
    output_format = OutputFormat(fmt)
    if output_format is OutputFormat.DOCX:
        return RenderedDocument(
            data=render_docx(title, chapters),
            content_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            extension="docx",
        )
    if output_format is OutputFormat.MD:
        return RenderedDocument(
            data=render_markdown(title, chapters).encode("utf-8"),
            content_type="text/markdown",
            extension="md",
        )
    return RenderedDocument(
        data=render_plain_text(title, chapters).encode("utf-8"),
        content_type="text/plain",
        extension="txt",
    )
