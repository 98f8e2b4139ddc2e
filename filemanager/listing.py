"""
Directory Lister

Reads one directory, computes the effective modification time of each
subdirectory and sorts the entries for display.
"""

import logging
import os
import stat
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Set, Tuple

import humanize

from .errors import InvalidInput, from_os_error
from .icons import classify, extension_of
from .models import DirectoryEntry, ListingResponse

logger = logging.getLogger(__name__)


def effective_mtime(path: str, _seen: Optional[Set[Tuple[int, int]]] = None) -> float:
    """
    Latest modification time of ``path`` and everything beneath it.

    Descendants that cannot be stat'ed are ignored. Directories already
    visited (symlink loops) contribute only their own mtime.

    Returns:
        POSIX timestamp, 0.0 if ``path`` itself cannot be stat'ed
    """
    seen = _seen if _seen is not None else set()

    try:
        st = os.stat(path)
    except OSError:
        return 0.0

    latest = st.st_mtime
    if not stat.S_ISDIR(st.st_mode):
        return latest

    key = (st.st_dev, st.st_ino)
    if key in seen:
        return latest
    seen.add(key)

    try:
        children = list(os.scandir(path))
    except OSError:
        return latest

    for child in children:
        try:
            if child.is_dir():
                child_mtime = effective_mtime(child.path, seen)
            else:
                child_mtime = child.stat().st_mtime
        except OSError:
            # vanished or unreadable during the walk
            continue
        if child_mtime > latest:
            latest = child_mtime

    return latest


def sort_key(entry: DirectoryEntry):
    """Directories first, hidden last, newest first, then name."""
    return (
        not entry.is_directory,
        entry.is_hidden,
        -entry.last_modified.timestamp(),
        entry.name,
    )


def _build_entry(dir_entry: os.DirEntry) -> Optional[DirectoryEntry]:
    try:
        is_dir = dir_entry.is_dir()
        st = dir_entry.stat()
    except OSError:
        return None

    if is_dir:
        mtime = effective_mtime(dir_entry.path)
        size_bytes = "n/a"
        size_label = "-"
        extension = "folder"
    else:
        mtime = st.st_mtime
        size_bytes = st.st_size
        size_label = humanize.naturalsize(st.st_size, binary=True)
        extension = extension_of(dir_entry.name)

    kind = classify(dir_entry.name, is_dir)
    return DirectoryEntry(
        name=dir_entry.name,
        is_directory=is_dir,
        size_bytes=size_bytes,
        size_label=size_label,
        is_hidden=dir_entry.name.startswith("."),
        extension=extension,
        last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
        full_path=dir_entry.path,
        category=kind.category,
        icon_class=kind.icon_class,
    )


def list_entries(directory: Path, show_hidden: bool = True) -> List[DirectoryEntry]:
    """
    Read and sort the immediate children of ``directory``.

    Raises:
        NotFound: If the directory does not exist
        PermissionDenied: If it cannot be read
        InvalidInput: If the path is not a directory
    """
    try:
        with os.scandir(directory) as it:
            children = list(it)
    except OSError as e:
        raise from_os_error(e, directory)

    entries = []
    for child in children:
        if not show_hidden and child.name.startswith("."):
            continue
        entry = _build_entry(child)
        if entry is not None:
            entries.append(entry)

    entries.sort(key=sort_key)
    return entries


def list_directory(directory: Path, show_hidden: bool = True) -> ListingResponse:
    """Build the full listing response for one directory."""
    if directory.exists() and not directory.is_dir():
        raise InvalidInput(f"Path is not a directory: {directory}")

    entries = list_entries(directory, show_hidden=show_hidden)
    logger.info(f"Listed {directory} ({len(entries)} entries)")

    return ListingResponse(
        path=str(directory),
        parent_path=str(directory.parent),
        path_segments=[part for part in directory.parts if part != directory.anchor],
        home_path=str(Path.home()),
        files=entries,
    )
