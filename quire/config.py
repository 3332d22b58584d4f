from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .env import read_env, read_int_env, read_path_env

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_FRONTEND = "http://localhost:3000"
DEFAULT_WORK_DIR = Path(tempfile.gettempdir()) / "quire"
DEFAULT_DEMO_ARCHIVE = BASE_DIR / "demo" / "Demo_Epubs.zip"
DEFAULT_MAX_UPLOADS = 100
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class Settings:
    work_dir: Path
    frontend: str
    max_uploads: int
    extract_workers: int
    epub_template_dir: Optional[Path]
    demo_archive: Path
    log_level: str

    @property
    def uploads_dir(self) -> Path:
        return self.work_dir / "uploads"

    @property
    def output_dir(self) -> Path:
        return self.work_dir / "output"

    @property
    def finished_dir(self) -> Path:
        return self.work_dir / "finished"


def load_settings() -> Settings:
    return Settings(
        work_dir=read_path_env("QUIRE_WORK_DIR", DEFAULT_WORK_DIR),
        frontend=read_env("FRONTEND", DEFAULT_FRONTEND) or DEFAULT_FRONTEND,
        max_uploads=read_int_env("QUIRE_MAX_UPLOADS", DEFAULT_MAX_UPLOADS),
        extract_workers=read_int_env("QUIRE_EXTRACT_WORKERS", 1),
        epub_template_dir=read_path_env("QUIRE_EPUB_TEMPLATE_DIR"),
        demo_archive=read_path_env("QUIRE_DEMO_ARCHIVE", DEFAULT_DEMO_ARCHIVE),
        log_level=(read_env("QUIRE_LOG_LEVEL", "INFO") or "INFO").upper(),
    )


def configure_logging(level: Optional[str] = None) -> None:
    name = (level or load_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)
