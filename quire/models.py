from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

CONTENT_EXT = ".xhtml"
NCX_EXT = ".ncx"
PACKAGE_EXT = ".opf"
DEFAULT_DESCRIPTOR = "Default descriptor"
NAV_DOCUMENT_NAME = "contents"
NCX_DOCUMENT_NAME = "toc"


class JobOptionsError(ValueError):
    pass


@dataclass(frozen=True)
class SplitPath:
    dir: str
    name: str
    ext: str


@dataclass
class NonChapterDocument:
    format: str
    is_before_chapters: bool = False
    descriptor: str = DEFAULT_DESCRIPTOR


@dataclass
class Replacement:
    before: str
    after: str


@dataclass
class JobConfiguration:
    chapter_formats: list[str] = field(default_factory=list)
    non_chapter_documents: list[NonChapterDocument] = field(default_factory=list)
    replacements: list[Replacement] = field(default_factory=list)
    output_name: str = ""
    chapter_index: int = 0

    def __post_init__(self) -> None:
        self.chapter_formats = _dedupe_formats(self.chapter_formats)
        self.non_chapter_documents = _dedupe_non_chapters(self.non_chapter_documents)

    def next_chapter_index(self) -> int:
        current = self.chapter_index
        self.chapter_index += 1
        return current


@dataclass
class Entry:
    name: str
    dir: str
    ext: str
    is_body: bool = False
    is_before_chapters: bool = False
    descriptor: str = DEFAULT_DESCRIPTOR
    play_order: Optional[int] = None
    chapter_number: Optional[int] = None

    @property
    def file_name(self) -> str:
        return f"{self.name}{self.ext}"

    @property
    def member_path(self) -> str:
        return f"{self.dir}{self.file_name}"

    @property
    def is_content(self) -> bool:
        return self.ext == CONTENT_EXT

    @property
    def is_ordered(self) -> bool:
        return self.play_order is not None

    @property
    def is_chapter(self) -> bool:
        return self.chapter_number is not None


def _dedupe_formats(formats: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for fmt in formats:
        if fmt in seen:
            continue
        seen.add(fmt)
        result.append(fmt)
    return result


def _dedupe_non_chapters(documents: list[NonChapterDocument]) -> list[NonChapterDocument]:
    seen: set[str] = set()
    result: list[NonChapterDocument] = []
    for doc in documents:
        if doc.format in seen:
            continue
        seen.add(doc.format)
        result.append(doc)
    return result


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _chapter_format_from_raw(raw: object) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict) and isinstance(raw.get("format"), str):
        return raw["format"]
    raise JobOptionsError("chapterFormat entries must be strings or objects with a 'format' string")


def non_chapter_from_dict(data: dict) -> NonChapterDocument:
    fmt = data.get("format")
    if not isinstance(fmt, str):
        raise JobOptionsError("nonChapterXHTML entries need a 'format' string")
    descriptor = data.get("descriptor")
    return NonChapterDocument(
        format=fmt,
        is_before_chapters=_as_bool(data.get("isBeforeChapters", False)),
        descriptor=str(descriptor) if descriptor not in {None, ""} else DEFAULT_DESCRIPTOR,
    )


def replacement_from_dict(data: dict) -> Replacement:
    before = data.get("before")
    after = data.get("after", "")
    if not isinstance(before, str) or not before:
        raise JobOptionsError("replacements need a non-empty 'before' string")
    if after is None:
        after = ""
    return Replacement(before=before, after=str(after))


def job_config_from_dict(data: dict) -> JobConfiguration:
    if not isinstance(data, dict):
        raise JobOptionsError("fileOptions must be a JSON object")

    raw_formats = data.get("chapterFormat") or []
    raw_non_chapters = data.get("nonChapterXHTML") or []
    raw_replacements = data.get("replacements") or []
    for key, value in (
        ("chapterFormat", raw_formats),
        ("nonChapterXHTML", raw_non_chapters),
        ("replacements", raw_replacements),
    ):
        if not isinstance(value, list):
            raise JobOptionsError(f"{key} must be a list")

    non_chapters: list[NonChapterDocument] = []
    for raw in raw_non_chapters:
        if not isinstance(raw, dict):
            raise JobOptionsError("nonChapterXHTML entries must be objects")
        non_chapters.append(non_chapter_from_dict(raw))

    replacements: list[Replacement] = []
    for raw in raw_replacements:
        if not isinstance(raw, dict):
            raise JobOptionsError("replacements entries must be objects")
        replacements.append(replacement_from_dict(raw))

    return JobConfiguration(
        chapter_formats=[_chapter_format_from_raw(raw) for raw in raw_formats],
        non_chapter_documents=non_chapters,
        replacements=replacements,
        output_name=str(data.get("outputName") or "").strip(),
    )
