from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .models import CONTENT_EXT, DEFAULT_DESCRIPTOR, NCX_EXT, JobConfiguration, NonChapterDocument

DESIGNATED = "designated"
CHAPTER = "chapter"
UNCLASSIFIED = "unclassified"

CONTENT = "content"
DROP = "drop"
ASSET = "asset"


@dataclass(frozen=True)
class Classification:
    category: str
    name: str
    descriptor: str = DEFAULT_DESCRIPTOR
    is_before_chapters: bool = False

    @property
    def is_body(self) -> bool:
        return self.category == CHAPTER

    @property
    def is_included(self) -> bool:
        return self.category != UNCLASSIFIED


def content_disposition(ext: str) -> str:
    if ext == CONTENT_EXT:
        return CONTENT
    # Source archives' own indexes are replaced by generated ones.
    if ext == NCX_EXT:
        return DROP
    return ASSET


def find_non_chapter(config: JobConfiguration, name: str) -> Optional[NonChapterDocument]:
    for doc in config.non_chapter_documents:
        if doc.format == name:
            return doc
    return None


def classify(config: JobConfiguration, candidate_name: str) -> Classification:
    """Decide what a content document becomes in the merged book.

    Designated documents match a configured name exactly. Chapters match the
    first configured pattern contained in the name and are renamed to
    ``pattern + counter``, consuming one value of the job's chapter counter.
    """
    designated = find_non_chapter(config, candidate_name)
    if designated is not None:
        return Classification(
            category=DESIGNATED,
            name=candidate_name,
            descriptor=designated.descriptor,
            is_before_chapters=designated.is_before_chapters,
        )

    for pattern in config.chapter_formats:
        if pattern and pattern in candidate_name:
            return Classification(category=CHAPTER, name=f"{pattern}{config.next_chapter_index()}")

    return Classification(category=UNCLASSIFIED, name=candidate_name)
