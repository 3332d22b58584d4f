from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import logging
from pathlib import Path, PurePosixPath
import posixpath
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .errors import NoChapterFound, ReservedNameConflict, WorkingTreeError
from .models import CONTENT_EXT, NAV_DOCUMENT_NAME, NCX_DOCUMENT_NAME, NCX_EXT, Entry

EPUB_TEMPLATES_DIR = Path(__file__).resolve().parent / "epub_templates"
NAV_TEMPLATE = "contents.xhtml.j2"
NCX_TEMPLATE = "toc.ncx.j2"

logger = logging.getLogger("quire.toc")


@dataclass
class TocItem:
    href: str
    label: str
    play_order: int


@lru_cache(maxsize=4)
def _epub_template_env(override_dir: Optional[str] = None) -> Environment:
    search_path = [str(EPUB_TEMPLATES_DIR)]
    if override_dir:
        search_path.insert(0, override_dir)
    return Environment(
        loader=FileSystemLoader(search_path),
        autoescape=select_autoescape(
            enabled_extensions=("xhtml.j2", "ncx.j2"),
            default_for_string=False,
        ),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def _render_epub_template(template_name: str, template_dir: Optional[Path] = None, **context: object) -> str:
    env = _epub_template_env(str(template_dir) if template_dir else None)
    return env.get_template(template_name).render(**context)


def _relative_href(from_dir: str, to_member: str) -> str:
    start = from_dir.rstrip("/") or "."
    return posixpath.relpath(to_member, start=start)


def first_chapter(entries: list[Entry]) -> Entry:
    for entry in entries:
        if entry.is_ordered and entry.is_chapter:
            return entry
    raise NoChapterFound()


def entry_label(entry: Entry) -> str:
    if entry.is_chapter:
        return f"Chapter {entry.chapter_number}"
    return entry.descriptor


def toc_items(entries: list[Entry], anchor_dir: str) -> list[TocItem]:
    ordered = sorted((entry for entry in entries if entry.is_ordered), key=lambda entry: entry.play_order)
    return [
        TocItem(
            href=_relative_href(anchor_dir, entry.member_path),
            label=entry_label(entry),
            play_order=entry.play_order,
        )
        for entry in ordered
    ]


def _write_document(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise WorkingTreeError(f"Cannot write {path.name}: {exc}") from exc


def render_nav_document(entries: list[Entry], title: str, template_dir: Optional[Path] = None) -> str:
    anchor = first_chapter(entries)
    return _render_epub_template(
        NAV_TEMPLATE,
        template_dir,
        title=title,
        items=toc_items(entries, anchor.dir),
        nav_href=f"{NAV_DOCUMENT_NAME}{CONTENT_EXT}",
        start_href=anchor.file_name,
    )


def render_ncx_document(entries: list[Entry], title: str, template_dir: Optional[Path] = None) -> str:
    anchor = first_chapter(entries)
    return _render_epub_template(NCX_TEMPLATE, template_dir, title=title, items=toc_items(entries, anchor.dir))


def check_reserved_name(entries: list[Entry], name: str, ext: str) -> None:
    # The package rewrite recognizes generated documents by name.
    for entry in entries:
        if entry.name == name and entry.ext == ext:
            raise ReservedNameConflict(entry.member_path)


def write_nav_document(job_dir: Path, entries: list[Entry], title: str, template_dir: Optional[Path] = None) -> Entry:
    anchor = first_chapter(entries)
    check_reserved_name(entries, NAV_DOCUMENT_NAME, CONTENT_EXT)
    content = render_nav_document(entries, title, template_dir)
    entry = Entry(name=NAV_DOCUMENT_NAME, dir=anchor.dir, ext=CONTENT_EXT)
    _write_document(job_dir / entry.member_path, content)
    entries.append(entry)
    return entry


def write_ncx_document(job_dir: Path, entries: list[Entry], title: str, template_dir: Optional[Path] = None) -> Entry:
    anchor = first_chapter(entries)
    check_reserved_name(entries, NCX_DOCUMENT_NAME, NCX_EXT)
    content = render_ncx_document(entries, title, template_dir)
    entry = Entry(name=NCX_DOCUMENT_NAME, dir=anchor.dir, ext=NCX_EXT)
    _write_document(job_dir / entry.member_path, content)
    entries.append(entry)
    return entry


def generate_toc(job_dir: Path, entries: list[Entry], title: str, template_dir: Optional[Path] = None) -> None:
    """Write the navigation document and the NCX index next to the first chapter.

    Both are appended to ``entries`` without a play order, so the package
    rewrite lists them while the reading order stays untouched. A source
    document already named like either of them raises ``ReservedNameConflict``
    before anything is written.
    """
    first_chapter(entries)
    check_reserved_name(entries, NAV_DOCUMENT_NAME, CONTENT_EXT)
    check_reserved_name(entries, NCX_DOCUMENT_NAME, NCX_EXT)
    nav = write_nav_document(job_dir, entries, title, template_dir)
    ncx = write_ncx_document(job_dir, entries, title, template_dir)
    logger.info(
        "generated %s and %s in %s",
        nav.member_path,
        ncx.member_path,
        PurePosixPath(nav.dir or ".").as_posix(),
    )
