from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import io
import logging
from pathlib import Path
import posixpath
import re
from typing import Callable, Iterator, Optional, Union
import zipfile
import zlib

from .classify import CONTENT, DROP, classify, content_disposition
from .errors import ArchiveReadError
from .models import Entry, JobConfiguration, Replacement
from .paths import split_path

IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp"}
LINE_SPLIT_RE = re.compile(r"\r?\n")
BODY_OPEN_RE = re.compile(r"<body\b[^>]*>")
BODY_CLOSE = "</body"

logger = logging.getLogger("quire.extract")


@dataclass
class ArchiveMember:
    path: str
    is_dir: bool
    read: Callable[[], bytes]


def canonical_member(name: str) -> str:
    normalized = posixpath.normpath((name or "").replace("\\", "/")).lstrip("/")
    while normalized.startswith("../"):
        normalized = normalized[3:]
    return "" if normalized in {"", ".", ".."} else normalized


def _read_member(zf: zipfile.ZipFile, info: zipfile.ZipInfo) -> bytes:
    try:
        return zf.read(info)
    except (zipfile.BadZipFile, zlib.error, RuntimeError, NotImplementedError, OSError) as exc:
        raise ArchiveReadError(f"Cannot read {info.filename!r}: {exc}") from exc


def iter_archive(data: bytes) -> Iterator[ArchiveMember]:
    try:
        zf = zipfile.ZipFile(io.BytesIO(data), "r")
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError) as exc:
        raise ArchiveReadError(f"Not a readable EPUB archive: {exc}") from exc
    with zf:
        for info in zf.infolist():
            yield ArchiveMember(
                path=info.filename,
                is_dir=info.is_dir(),
                read=lambda info=info: _read_member(zf, info),
            )


def list_archive_members(data: bytes) -> list[str]:
    return [member.path for member in iter_archive(data) if not member.is_dir]


def body_region(text: str) -> Optional[tuple[int, int]]:
    """Return the span between the end of the ``<body ...>`` tag and ``</body``.

    Without a closing tag the region runs to the end of ``text``.
    """
    opening = BODY_OPEN_RE.search(text)
    if opening is None:
        return None
    start = opening.end()
    end = text.find(BODY_CLOSE, start)
    return start, len(text) if end == -1 else end


def apply_replacements(text: str, replacements: list[Replacement]) -> str:
    """Apply literal replacements inside the body region only.

    Line endings are normalized to ``\\n``; the ``<body`` tag, the closing
    tag and everything outside the body are kept as they are.
    """
    if not replacements:
        return text
    text = "\n".join(LINE_SPLIT_RE.split(text))
    region = body_region(text)
    if region is None:
        return text
    start, end = region
    body = text[start:end]
    for replacement in replacements:
        body = body.replace(replacement.before, replacement.after)
    return f"{text[:start]}{body}{text[end:]}"


def _prepare_payload(entry: Entry, raw: bytes, replacements: list[Replacement]) -> bytes:
    if entry.ext.lower() in IMAGE_EXTS:
        return raw
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        if not entry.is_content:
            return raw
        logger.warning("content document %s is not valid UTF-8, undecodable bytes replaced", entry.member_path)
        text = raw.decode("utf-8", errors="replace")
    if entry.is_content:
        text = apply_replacements(text, replacements)
    return text.encode("utf-8")


def write_first(destination: Path, payload: bytes) -> bool:
    """Write ``payload`` unless ``destination`` already exists.

    Exclusive creation makes the existence check and the write one step, so
    concurrent writers for one path leave exactly one winner. Returns whether
    this call wrote the file; write failures are logged and reported as
    ``False``.
    """
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning("failed to write %s: %s", destination, exc)
        return False
    try:
        with destination.open("xb") as handle:
            handle.write(payload)
    except FileExistsError:
        logger.debug("skipping %s, already extracted from an earlier archive", destination)
        return False
    except OSError as exc:
        logger.warning("failed to write %s: %s", destination, exc)
        try:
            destination.unlink(missing_ok=True)
        except OSError:
            logger.warning("failed to remove partial file %s", destination)
        return False
    return True


def _plan_entry(member_path: str, config: JobConfiguration) -> Optional[Entry]:
    parts = split_path(member_path)
    disposition = content_disposition(parts.ext)
    if disposition == DROP:
        return None
    entry = Entry(name=parts.name, dir=parts.dir, ext=parts.ext)
    if disposition != CONTENT:
        return entry
    result = classify(config, parts.name)
    if not result.is_included:
        logger.debug("dropping unclassified content document %s", member_path)
        return None
    entry.name = result.name
    entry.is_body = result.is_body
    entry.is_before_chapters = result.is_before_chapters
    entry.descriptor = result.descriptor
    return entry


def extract_archive(
    data: bytes,
    job_dir: Path,
    config: JobConfiguration,
    entries: list[Entry],
    *,
    max_workers: int = 1,
) -> list[Entry]:
    """Unpack one source archive into ``job_dir`` and record what was written.

    Members are classified in archive order, so the job's chapter counter
    advances deterministically. New entries are appended to ``entries`` in
    the same order and also returned. A member that cannot be read is logged
    and skipped; an archive that cannot be opened raises ``ArchiveReadError``.
    """
    planned: list[tuple[Entry, Union[bool, Future]]] = []
    executor = ThreadPoolExecutor(max_workers=max_workers) if max_workers > 1 else None
    try:
        for member in iter_archive(data):
            if member.is_dir:
                continue
            member_path = canonical_member(member.path)
            if not member_path:
                continue
            entry = _plan_entry(member_path, config)
            if entry is None:
                continue
            destination = job_dir / entry.member_path
            if destination.exists():
                logger.debug("skipping %s, already extracted from an earlier archive", entry.member_path)
                continue
            try:
                raw = member.read()
            except ArchiveReadError as exc:
                logger.warning("skipping %s: %s", member_path, exc)
                continue
            payload = _prepare_payload(entry, raw, config.replacements)
            if executor is None:
                planned.append((entry, write_first(destination, payload)))
            else:
                planned.append((entry, executor.submit(write_first, destination, payload)))
    finally:
        if executor is not None:
            executor.shutdown(wait=True)

    added: list[Entry] = []
    for entry, outcome in planned:
        written = outcome.result() if isinstance(outcome, Future) else outcome
        if written:
            added.append(entry)
    entries.extend(added)
    logger.info("extracted %d files into %s", len(added), job_dir)
    return added
