from __future__ import annotations

import logging
from pathlib import Path
import re
import shutil
import time
from typing import Iterable, Optional

from .config import Settings, load_settings

JOB_ID_RE = re.compile(r"^[0-9A-Za-z][0-9A-Za-z._-]{0,254}$")

logger = logging.getLogger("quire.storage")


def _settings(settings: Optional[Settings]) -> Settings:
    return settings or load_settings()


def uploads_dir(settings: Optional[Settings] = None) -> Path:
    path = _settings(settings).uploads_dir
    path.mkdir(parents=True, exist_ok=True)
    return path


def output_dir(settings: Optional[Settings] = None) -> Path:
    path = _settings(settings).output_dir
    path.mkdir(parents=True, exist_ok=True)
    return path


def finished_dir(settings: Optional[Settings] = None) -> Path:
    path = _settings(settings).finished_dir
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_upload_name(filename: str) -> str:
    name = Path((filename or "").replace("\\", "/")).name.replace(" ", "_")
    cleaned = re.sub(r"[^0-9A-Za-z._-]+", "_", name).strip("._")
    return cleaned or "upload.epub"


def new_job_id(filename: str, now_ms: Optional[int] = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{stamp}-{safe_upload_name(filename)}"


def is_valid_job_id(job_id: str) -> bool:
    return bool(JOB_ID_RE.match(job_id or "")) and ".." not in job_id


def job_dir(job_id: str, settings: Optional[Settings] = None) -> Path:
    return output_dir(settings) / job_id


def finished_path(job_id: str, settings: Optional[Settings] = None) -> Path:
    return finished_dir(settings) / job_id


def upload_path(name: str, settings: Optional[Settings] = None) -> Path:
    return uploads_dir(settings) / name


def _remove_path(path: Path) -> bool:
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.error("Error deleting %s: %s", path, exc)
        return False
    logger.info("Deleted %s", path)
    return True


def cleanup_job(job_id: str, upload_paths: Iterable[Path], settings: Optional[Settings] = None) -> None:
    """Remove a job's uploaded sources and its working tree.

    Missing files are fine and individual failures are logged, so this can
    run after both successful and failed merges.
    """
    for path in upload_paths:
        _remove_path(path)
    _remove_path(job_dir(job_id, settings))


def cleanup_finished(job_id: str, settings: Optional[Settings] = None) -> bool:
    return _remove_path(finished_path(job_id, settings))


def reset_work_dirs(settings: Optional[Settings] = None) -> None:
    current = _settings(settings)
    for path in (current.uploads_dir, current.output_dir, current.finished_dir):
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error("Error deleting temp directory %s: %s", path, exc)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Error creating temp directory %s: %s", path, exc)
