from __future__ import annotations

import io
import logging
from pathlib import Path
import zipfile

from .errors import ArchiveWriteError

EPUB_MIMETYPE = b"application/epub+zip"
MIMETYPE_MEMBER = "mimetype"

logger = logging.getLogger("quire.packager")


def _tree_members(root: Path) -> list[tuple[str, Path]]:
    members = [
        (path.relative_to(root).as_posix(), path)
        for path in root.rglob("*")
        if path.is_file()
    ]
    members.sort(key=lambda item: item[0])
    return members


def pack_directory(root: Path) -> bytes:
    """Zip a working tree into EPUB bytes.

    ``mimetype`` goes first and uncompressed, as EPUB readers expect; every
    other file is deflated in path order so identical trees pack identically.
    """
    if not root.is_dir():
        raise ArchiveWriteError(f"Working tree {root} does not exist")
    buffer = io.BytesIO()
    try:
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            mimetype_path = root / MIMETYPE_MEMBER
            mimetype = mimetype_path.read_bytes().strip() if mimetype_path.is_file() else EPUB_MIMETYPE
            zf.writestr(_fixed_info(MIMETYPE_MEMBER, zipfile.ZIP_STORED), mimetype or EPUB_MIMETYPE)
            for name, path in _tree_members(root):
                if name == MIMETYPE_MEMBER:
                    continue
                zf.writestr(_fixed_info(name, zipfile.ZIP_DEFLATED), path.read_bytes())
    except (OSError, zipfile.BadZipFile, ValueError) as exc:
        raise ArchiveWriteError(f"Failed to pack {root}: {exc}") from exc
    return buffer.getvalue()


def _fixed_info(name: str, compress_type: int) -> zipfile.ZipInfo:
    # Constant timestamps keep repeated merges byte-identical.
    info = zipfile.ZipInfo(name, date_time=(1980, 1, 1, 0, 0, 0))
    info.compress_type = compress_type
    info.external_attr = 0o644 << 16
    return info


def write_archive(path: Path, data: bytes) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        raise ArchiveWriteError(f"Failed to write {path}: {exc}") from exc
    logger.info("EPUB %s generated (%d bytes)", path.name, len(data))
    return path
