from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Iterator, Optional

from jinja2 import TemplateError

from .config import Settings, load_settings
from .errors import MergeError, QuireError
from .extract import extract_archive, list_archive_members
from .models import Entry, JobConfiguration
from .order import resolve_order
from .package import rewrite_package_document
from .packager import pack_directory
from .storage import cleanup_job, is_valid_job_id, job_dir
from .toc import generate_toc

DEFAULT_TITLE = "Untitled"

logger = logging.getLogger("quire.merge")


@contextmanager
def _stage(name: str, job_id: str) -> Iterator[None]:
    try:
        yield
    except MergeError:
        raise
    except (QuireError, OSError, TemplateError) as exc:
        logger.error("merge %s failed during %s: %s", job_id, name, exc)
        raise MergeError(name, exc) from exc


def merge_job(
    job_id: str,
    archives: list[bytes],
    config: JobConfiguration,
    *,
    settings: Optional[Settings] = None,
) -> bytes:
    """Merge ``archives`` into one EPUB and return its bytes.

    Runs extraction, ordering, TOC generation, the package rewrite and
    packing in sequence inside the job's own working tree, which is removed
    afterwards whatever the outcome. Any stage failure surfaces as a
    ``MergeError`` naming the stage.
    """
    current = settings or load_settings()
    if not is_valid_job_id(job_id):
        raise MergeError("prepare", message=f"invalid job id {job_id!r}")

    workdir = job_dir(job_id, current)
    title = config.output_name or DEFAULT_TITLE
    entries: list[Entry] = []
    with _stage("prepare", job_id):
        workdir.mkdir(parents=True, exist_ok=False)
    try:
        with _stage("extract", job_id):
            for index, archive in enumerate(archives, start=1):
                added = extract_archive(archive, workdir, config, entries, max_workers=current.extract_workers)
                logger.info("job %s: archive %d/%d contributed %d files", job_id, index, len(archives), len(added))
        with _stage("order", job_id):
            resolve_order(entries)
        with _stage("toc", job_id):
            generate_toc(workdir, entries, title, current.epub_template_dir)
        with _stage("package", job_id):
            rewrite_package_document(workdir, entries, title)
        with _stage("pack", job_id):
            data = pack_directory(workdir)
    finally:
        cleanup_job(job_id, [], current)
    chapters = sum(1 for entry in entries if entry.is_chapter)
    logger.info("job %s merged %d archives, %d chapters", job_id, len(archives), chapters)
    return data


def inspect_archive(data: bytes) -> list[str]:
    return list_archive_members(data)
