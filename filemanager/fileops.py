"""
File Operations

Read, write, create, delete, rename, copy, move and upload. Blocking calls;
the API layer runs them in a worker thread.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import BinaryIO, Iterable, List, Tuple

from .errors import AlreadyExists, InvalidInput, NotFound, from_os_error

logger = logging.getLogger(__name__)


def _check_name(name: str) -> str:
    name = name.strip()
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise InvalidInput(f"Invalid name: {name!r}")
    return name


def read_text(path: Path) -> str:
    """Read a UTF-8 text file."""
    if path.is_dir():
        raise InvalidInput(f"Path is not a file: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        raise InvalidInput(f"File is not a text file: {path}")
    except OSError as e:
        raise from_os_error(e, path)


def save_text(path: Path, content: str) -> None:
    """Write a UTF-8 text file, creating parent directories."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise from_os_error(e, path)
    logger.info(f"Saved file: {path}")


def create(name: str, kind: str, parent: Path) -> Path:
    """
    Create an empty file or a folder inside ``parent``.

    Folders are created with parents and tolerate existing ones; a file that
    already exists raises AlreadyExists.
    """
    target = parent / _check_name(name)
    try:
        if kind == "folder":
            target.mkdir(parents=True, exist_ok=True)
        elif kind == "file":
            target.touch(exist_ok=False)
        else:
            raise InvalidInput(f"Unknown type: {kind}")
    except OSError as e:
        raise from_os_error(e, target)
    logger.info(f"Created {kind}: {target}")
    return target


def delete(path: Path) -> None:
    """Remove a file, link or directory tree."""
    if not os.path.lexists(path):
        raise NotFound(f"No such file or directory: {path}")
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as e:
        raise from_os_error(e, path)
    logger.info(f"Deleted: {path}")


def delete_many(paths: Iterable[Path]) -> int:
    """Delete each path in order, stopping at the first failure."""
    count = 0
    for path in paths:
        delete(path)
        count += 1
    return count


def rename(old_path: Path, new_name: str) -> Path:
    """
    Rename an entry within its directory.

    Raises:
        NotFound: If ``old_path`` does not exist
        AlreadyExists: If an entry called ``new_name`` is already there
    """
    if not os.path.lexists(old_path):
        raise NotFound(f"No such file or directory: {old_path}")

    new_path = old_path.parent / _check_name(new_name)
    if new_path == old_path:
        return new_path
    if os.path.lexists(new_path):
        raise AlreadyExists(f"'{new_path.name}' already exists in {new_path.parent}")

    try:
        old_path.rename(new_path)
    except OSError as e:
        raise from_os_error(e, old_path)
    logger.info(f"Renamed {old_path} -> {new_path}")
    return new_path


def _transfer_targets(sources: Iterable[Path], dest_dir: Path) -> List[Tuple[Path, Path]]:
    if not dest_dir.is_dir():
        raise NotFound(f"Destination is not a directory: {dest_dir}")

    pairs = []
    for source in sources:
        if not os.path.lexists(source):
            raise NotFound(f"No such file or directory: {source}")
        if source.is_dir() and (dest_dir == source or source in dest_dir.parents):
            raise InvalidInput(f"Cannot place '{source}' inside itself")
        pairs.append((source, dest_dir / source.name))
    return pairs


def copy_items(sources: Iterable[Path], dest_dir: Path) -> int:
    """Copy entries into ``dest_dir``; directories merge, files overwrite."""
    pairs = _transfer_targets(sources, dest_dir)
    for source, target in pairs:
        if source == target:
            continue
        try:
            if source.is_dir():
                shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
            else:
                shutil.copy2(source, target)
        except shutil.Error as e:
            raise InvalidInput(f"Failed to copy {source}", detail=str(e))
        except OSError as e:
            raise from_os_error(e, source)
        logger.info(f"Copied {source} -> {target}")
    return len(pairs)


def move_items(sources: Iterable[Path], dest_dir: Path) -> int:
    """Move entries into ``dest_dir``, replacing any entry of the same name."""
    pairs = _transfer_targets(sources, dest_dir)
    for source, target in pairs:
        if source == target:
            continue
        try:
            if os.path.lexists(target):
                delete(target)
            shutil.move(str(source), str(target))
        except OSError as e:
            raise from_os_error(e, source)
        logger.info(f"Moved {source} -> {target}")
    return len(pairs)


def save_upload(fileobj: BinaryIO, filename: str, dest_dir: Path) -> Path:
    """Store one uploaded file in ``dest_dir`` under its base name."""
    name = _check_name(os.path.basename(filename.replace("\\", "/")))
    target = dest_dir / name
    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as out:
            shutil.copyfileobj(fileobj, out)
    except OSError as e:
        raise from_os_error(e, target)
    logger.info(f"Uploaded file: {target}")
    return target
