from __future__ import annotations

import enum
import html
import logging
from pathlib import Path
import posixpath
import re
from typing import Optional

from lxml import etree as LXML_ET

from .errors import PackageDocumentMissing, WorkingTreeError
from .models import CONTENT_EXT, NAV_DOCUMENT_NAME, NCX_DOCUMENT_NAME, NCX_EXT, PACKAGE_EXT, Entry

MEDIA_TYPES = {
    ".xhtml": "application/xhtml+xml",
    ".ncx": "application/x-dtbncx+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".css": "text/css",
}
NAV_ITEM_ID = "contents"
NCX_ITEM_ID = "ncx"
MANIFEST_OPEN = "<manifest"
MANIFEST_CLOSE = "</manifest"
SPINE_OPEN = "<spine"
SPINE_CLOSE = "</spine"
GUIDE_REFERENCE = "<reference"
TITLE_OPEN = "<dc:title"
LINE_SPLIT_RE = re.compile(r"\r?\n")
_ID_INVALID_RE = re.compile(r"[^A-Za-z0-9_.-]+")

logger = logging.getLogger("quire.package")


class PackageScanState(enum.Enum):
    OUTSIDE = "outside"
    IN_MANIFEST = "in_manifest"
    IN_SPINE = "in_spine"


def find_package_document(entries: list[Entry]) -> Entry:
    for entry in entries:
        if entry.ext == PACKAGE_EXT:
            return entry
    raise PackageDocumentMissing()


def is_nav_document(entry: Entry) -> bool:
    return entry.name == NAV_DOCUMENT_NAME and entry.ext == CONTENT_EXT


def is_ncx_document(entry: Entry) -> bool:
    return entry.name == NCX_DOCUMENT_NAME and entry.ext == NCX_EXT


def media_type_for(entry: Entry) -> Optional[str]:
    return MEDIA_TYPES.get(entry.ext.lower())


def manifest_href(entry: Entry, package_dir: str) -> str:
    if entry.dir.startswith(package_dir):
        return f"{entry.dir[len(package_dir):]}{entry.file_name}"
    start = package_dir.rstrip("/") or "."
    return posixpath.relpath(entry.member_path, start=start)


def _base_item_id(entry: Entry) -> str:
    if is_nav_document(entry):
        return NAV_ITEM_ID
    if is_ncx_document(entry):
        return NCX_ITEM_ID
    if entry.is_content:
        raw = entry.name
    else:
        raw = f"{entry.ext.lstrip('.')}-{entry.name}"
    cleaned = _ID_INVALID_RE.sub("_", raw).strip("_") or "item"
    if not (cleaned[0].isalpha() or cleaned[0] == "_"):
        cleaned = f"x{cleaned}"
    return cleaned


def assign_item_ids(entries: list[Entry]) -> dict[int, str]:
    """Map each manifest-worthy entry (by ``id()``) to a unique XML id."""
    ids: dict[int, str] = {}
    used: set[str] = set()
    # Generated documents claim their fixed ids before any source file can.
    prioritized = sorted(
        (entry for entry in entries if media_type_for(entry) is not None),
        key=lambda entry: 0 if is_nav_document(entry) or is_ncx_document(entry) else 1,
    )
    for entry in prioritized:
        base = _base_item_id(entry)
        candidate = base
        suffix = 2
        while candidate in used:
            candidate = f"{base}-{suffix}"
            suffix += 1
        used.add(candidate)
        ids[id(entry)] = candidate
    return ids


def manifest_lines(entries: list[Entry], package_dir: str, item_ids: dict[int, str]) -> list[str]:
    lines: list[str] = []
    for entry in entries:
        media_type = media_type_for(entry)
        if media_type is None:
            continue
        item_id = item_ids[id(entry)]
        href = html.escape(manifest_href(entry, package_dir), quote=True)
        if is_nav_document(entry):
            lines.append(
                f'\t\t<item id="{item_id}" properties="nav" href="{href}" '
                f'media-type="{media_type}" fallback="{NCX_ITEM_ID}"/>'
            )
        else:
            lines.append(f'\t\t<item id="{item_id}" href="{href}" media-type="{media_type}"/>')
    return lines


def spine_lines(entries: list[Entry], item_ids: dict[int, str]) -> list[str]:
    lines = [f'\t\t<itemref idref="{NAV_ITEM_ID}" linear="yes"/>']
    for entry in entries:
        if entry.is_content and not is_nav_document(entry):
            lines.append(f'\t\t<itemref idref="{item_ids[id(entry)]}" linear="yes"/>')
    return lines


def guide_reference_line(nav_href: str) -> str:
    return f'\t\t<reference type="toc" title="Contents" href="{html.escape(nav_href, quote=True)}"/>'


def title_line(title: str) -> str:
    return f"\t\t<dc:title>{html.escape(title, quote=False)}</dc:title>"


def _next_state(state: PackageScanState, line: str) -> PackageScanState:
    if state is PackageScanState.IN_MANIFEST and MANIFEST_CLOSE in line:
        return PackageScanState.OUTSIDE
    if state is PackageScanState.IN_SPINE and SPINE_CLOSE in line:
        return PackageScanState.OUTSIDE
    return state


def _open_block(line: str, tag: str, body: list[str]) -> tuple[list[str], bool]:
    """Emit an opening marker line followed by ``body``.

    Returns the lines and whether the block stays open past this line. A
    block closed on the same line gets ``body`` inserted before its close.
    """
    line = re.sub(rf"<({tag}\b[^>]*?)\s*/>", rf"<\1></{tag}>", line, count=1)
    close_at = line.find(f"</{tag}")
    if close_at == -1:
        return [line, *body], True
    return [line[:close_at], *body, line[close_at:]], False


def _needs_reflow(text: str) -> bool:
    for line in LINE_SPLIT_RE.split(text):
        if MANIFEST_OPEN in line and ("<item" in line or MANIFEST_CLOSE in line):
            return True
        if SPINE_OPEN in line and ("<itemref" in line or SPINE_CLOSE in line):
            return True
        if TITLE_OPEN in line and line.count("<") > 2:
            return True
        if GUIDE_REFERENCE in line and line.count("<") > 1:
            return True
    return False


def reflow_package_text(text: str) -> str:
    """Put one element per line so the line scanner can find its markers."""
    parser = LXML_ET.XMLParser(resolve_entities=False, no_network=True, recover=True, remove_blank_text=True)
    root = LXML_ET.fromstring(text.encode("utf-8"), parser=parser)
    if root is None:
        return text
    return LXML_ET.tostring(root, pretty_print=True, xml_declaration=True, encoding="utf-8").decode("utf-8")


def rewrite_package_text(text: str, entries: list[Entry], title: str, package_dir: str) -> str:
    if _needs_reflow(text):
        text = reflow_package_text(text)

    item_ids = assign_item_ids(entries)
    nav_entry: Optional[Entry] = next((entry for entry in entries if is_nav_document(entry)), None)
    nav_href = manifest_href(nav_entry, package_dir) if nav_entry else f"{NAV_DOCUMENT_NAME}{CONTENT_EXT}"

    output: list[str] = []
    state = PackageScanState.OUTSIDE
    wrote_reference = False
    wrote_title = False
    for line in LINE_SPLIT_RE.split(text):
        if state is PackageScanState.OUTSIDE and MANIFEST_OPEN in line:
            block, still_open = _open_block(line, "manifest", manifest_lines(entries, package_dir, item_ids))
            output.extend(block)
            if still_open:
                state = PackageScanState.IN_MANIFEST
            continue
        if state is PackageScanState.OUTSIDE and SPINE_OPEN in line:
            block, still_open = _open_block(line, "spine", spine_lines(entries, item_ids))
            output.extend(block)
            if still_open:
                state = PackageScanState.IN_SPINE
            continue
        if state is PackageScanState.OUTSIDE and GUIDE_REFERENCE in line:
            if not wrote_reference:
                output.append(guide_reference_line(nav_href))
                wrote_reference = True
            continue
        if state is PackageScanState.OUTSIDE and TITLE_OPEN in line:
            if not wrote_title:
                output.append(title_line(title))
                wrote_title = True
            continue

        next_state = _next_state(state, line)
        # The closing marker of a replaced block is kept, its body is not.
        if state is PackageScanState.OUTSIDE or next_state is PackageScanState.OUTSIDE:
            output.append(line)
        state = next_state
    return "\n".join(output)


def rewrite_package_document(job_dir: Path, entries: list[Entry], title: str) -> Path:
    """Rewrite the extracted package document's manifest, spine, guide and title."""
    package = find_package_document(entries)
    path = job_dir / package.member_path
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise WorkingTreeError(f"Cannot read package document {package.member_path}: {exc}") from exc

    rewritten = rewrite_package_text(text, entries, title, package.dir)
    try:
        path.write_text(rewritten, encoding="utf-8")
    except OSError as exc:
        raise WorkingTreeError(f"Cannot write package document {package.member_path}: {exc}") from exc
    logger.info("rewrote package document %s with %d entries", package.member_path, len(entries))
    return path
