from __future__ import annotations

from typing import Optional


class QuireError(Exception):
    pass


class InvalidPath(QuireError, ValueError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Invalid file name: {path}")
        self.path = path


class ArchiveReadError(QuireError):
    pass


class ArchiveWriteError(QuireError):
    pass


class WorkingTreeError(QuireError, OSError):
    pass


class NoChapterFound(QuireError):
    def __init__(self, message: str = "No chapter documents were found in the uploaded archives") -> None:
        super().__init__(message)


class PackageDocumentMissing(QuireError):
    def __init__(self, message: str = "No package document (.opf) was extracted") -> None:
        super().__init__(message)


class ReservedNameConflict(QuireError):
    def __init__(self, file_name: str) -> None:
        super().__init__(f"A source document already uses the generated file name {file_name}")
        self.file_name = file_name


# Stage-level failures caused by the uploaded books rather than by the server.
CONTENT_ERRORS = (NoChapterFound, PackageDocumentMissing, ReservedNameConflict)


class MergeError(QuireError):
    def __init__(self, stage: str, cause: Optional[BaseException] = None, message: Optional[str] = None) -> None:
        detail = message or (str(cause) if cause is not None else "merge failed")
        super().__init__(f"{stage}: {detail}")
        self.stage = stage
        self.cause = cause
        self.detail = detail

    @property
    def is_content_error(self) -> bool:
        return isinstance(self.cause, CONTENT_ERRORS)
