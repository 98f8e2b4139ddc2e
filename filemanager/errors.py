"""
File Manager Errors

Exception taxonomy shared by every component. Each class carries the HTTP
status the API layer answers with.
"""

import errno
from pathlib import Path
from typing import Optional, Union


class FileManagerError(Exception):
    """Base class for errors reported back to the client."""

    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFound(FileManagerError):
    status_code = 404


class PermissionDenied(FileManagerError):
    status_code = 403


class InvalidInput(FileManagerError):
    status_code = 400


class AlreadyExists(InvalidInput):
    status_code = 409


class RemoteFetchFailed(FileManagerError):
    status_code = 502


class ArchiveError(FileManagerError):
    status_code = 422


class ProcessSpawnFailed(FileManagerError):
    status_code = 500


def from_os_error(exc: OSError, path: Union[str, Path, None] = None) -> FileManagerError:
    """Map an OSError onto the taxonomy."""
    target = str(path) if path is not None else (exc.filename or "")
    reason = exc.strerror or str(exc)

    if isinstance(exc, FileNotFoundError):
        return NotFound(f"No such file or directory: {target}")
    if isinstance(exc, PermissionError):
        return PermissionDenied(f"Permission denied: {target}")
    if isinstance(exc, FileExistsError):
        return AlreadyExists(f"Already exists: {target}")
    if isinstance(exc, (NotADirectoryError, IsADirectoryError)):
        return InvalidInput(f"{reason}: {target}")
    if exc.errno in (errno.ENOTEMPTY, errno.EINVAL, errno.ENAMETOOLONG):
        return InvalidInput(f"{reason}: {target}")
    return FileManagerError(f"{reason}: {target}")
