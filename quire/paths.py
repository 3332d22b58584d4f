from __future__ import annotations

import re

from .errors import InvalidPath
from .models import SplitPath

_DIR_SPLIT_RE = re.compile(r"^(.*[\\/])?(.*)$", re.DOTALL)


def split_path(path: str) -> SplitPath:
    """Split an archive member path into directory, base name and extension.

    The directory keeps its trailing separator. A leading dot does not start
    an extension, so ``dir/.gitignore`` has the name ``.gitignore`` and no
    extension; with several dots the last one wins.
    """
    if path == ".":
        raise InvalidPath(path)

    match = _DIR_SPLIT_RE.match(path)
    directory = match.group(1) or ""
    remainder = match.group(2) or ""
    if not remainder:
        return SplitPath(dir=directory, name="", ext="")

    last_dot = remainder.rfind(".")
    if last_dot <= 0:
        return SplitPath(dir=directory, name=remainder, ext="")
    return SplitPath(dir=directory, name=remainder[:last_dot], ext=remainder[last_dot:])
