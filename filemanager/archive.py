"""
Archive Service

Zip export of directory trees and zip import with root-folder detection.
All functions here are blocking; callers offload them to a worker thread.
"""

import io
import logging
import os
import shutil
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Generator, Iterable, Iterator, List, Optional, Sequence, Tuple

from .config import EXPORT_EXCLUDES, TEMP_ROOT, get_export_dir
from .errors import ArchiveError, InvalidInput, NotFound, from_os_error

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 1024 * 1024


# ============================================================================
# Ignore patterns
# ============================================================================

def read_ignore_file(path: Path) -> List[str]:
    """
    Read patterns from a .gitignore-like file.

    Comments, blank lines and negations are skipped; leading and trailing
    slashes are stripped since matching is by path prefix only.
    """
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except FileNotFoundError:
        return []
    except OSError as e:
        raise from_os_error(e, path)

    patterns = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or line.startswith("!"):
            continue
        line = line.strip("/")
        if line:
            patterns.append(line)
    return patterns


def export_patterns(source: Path) -> List[str]:
    """Patterns applied by folder export: the source's .gitignore plus the defaults."""
    patterns = list(EXPORT_EXCLUDES)
    for pattern in read_ignore_file(source / ".gitignore"):
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns


def is_ignored(rel_path: str, patterns: Sequence[str]) -> bool:
    """True if ``rel_path`` equals a pattern or lies under it (prefix match, not glob)."""
    for pattern in patterns:
        if rel_path == pattern or rel_path.startswith(pattern + "/"):
            return True
    return False


# ============================================================================
# Export
# ============================================================================

def iter_tree(source: Path, patterns: Sequence[str] = ()) -> Iterator[Tuple[Path, str]]:
    """
    Yield (absolute path, archive name) for every entry under ``source``.

    Directories are yielded with a trailing '/' so empty ones survive the
    round trip. Ignored directories are not descended, and neither are
    symlinked ones: a link to a directory is archived as an empty folder.
    Any error while walking is raised.
    """
    def onerror(err: OSError):
        raise err

    for root, dirs, files in os.walk(source, onerror=onerror):
        rel_root = os.path.relpath(root, source)
        rel_root = "" if rel_root == "." else rel_root.replace(os.sep, "/") + "/"

        kept = []
        for name in sorted(dirs):
            rel = rel_root + name
            if is_ignored(rel, patterns):
                continue
            kept.append(name)
            yield Path(root) / name, rel + "/"
        dirs[:] = kept

        for name in sorted(files):
            rel = rel_root + name
            if is_ignored(rel, patterns):
                continue
            yield Path(root) / name, rel


def collect_items(paths: Iterable[Path]) -> List[Tuple[Path, str]]:
    """
    Archive entries for a selection: each item under its own base name.

    Raises:
        NotFound: If an item does not exist
        InvalidInput: If two items share a base name
    """
    collected = []
    names = set()
    for path in paths:
        if path.name in names:
            raise InvalidInput(f"More than one selected item is named '{path.name}'")
        names.add(path.name)
        if path.is_dir():
            collected.append((path, path.name + "/"))
            collected.extend(
                (abs_path, f"{path.name}/{arc_name}") for abs_path, arc_name in iter_tree(path)
            )
        elif path.exists():
            collected.append((path, path.name))
        else:
            raise NotFound(f"No such file or directory: {path}")
    return collected


def _write_entry(zf: zipfile.ZipFile, abs_path: Path, arc_name: str) -> Iterator[None]:
    """Write one entry, yielding after each chunk so callers can flush."""
    info = zipfile.ZipInfo.from_file(abs_path, arc_name)
    if arc_name.endswith("/"):
        zf.writestr(info, b"")
        yield
        return
    info.compress_type = zipfile.ZIP_DEFLATED
    with open(abs_path, "rb") as src, zf.open(info, "w") as dest:
        while True:
            chunk = src.read(STREAM_CHUNK_SIZE)
            if not chunk:
                break
            dest.write(chunk)
            yield


def write_zip(entries: Iterable[Tuple[Path, str]], target: Path) -> int:
    """Write ``entries`` into a zip file at ``target`` and return its size in bytes."""
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED, allowZip64=True) as zf:
        for abs_path, arc_name in entries:
            for _ in _write_entry(zf, abs_path, arc_name):
                pass
    return target.stat().st_size


class _ChunkSink(io.RawIOBase):
    """Write-only, unseekable buffer. zipfile writes data descriptors instead of seeking back."""

    def __init__(self):
        super().__init__()
        self._chunks: List[bytes] = []

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        self._chunks.append(bytes(b))
        return len(b)

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


def stream_zip(entries: Iterable[Tuple[Path, str]]) -> Generator[bytes, None, None]:
    """
    Generate a zip archive chunk by chunk.

    An error part-way through is logged and re-raised; bytes already handed
    out stay sent, so the client ends up with a truncated archive.
    """
    sink = _ChunkSink()
    try:
        with zipfile.ZipFile(sink, "w", compression=zipfile.ZIP_DEFLATED, allowZip64=True) as zf:
            for abs_path, arc_name in entries:
                for _ in _write_entry(zf, abs_path, arc_name):
                    data = sink.drain()
                    if data:
                        yield data
    except OSError as e:
        logger.error(f"Zip stream aborted, client receives a truncated archive: {e}")
        raise

    # central directory
    yield sink.drain()


def export_directory(source: Path, patterns: Optional[Sequence[str]] = None) -> Tuple[Path, int]:
    """
    Export ``source`` to a zip under the export directory.

    Args:
        source: Directory to export
        patterns: Ignore patterns; defaults to export_patterns(source)

    Returns:
        (zip path, size in bytes)

    Raises:
        NotFound / InvalidInput: If source is missing or not a directory
        FileManagerError: On any I/O error; the partial zip is removed
    """
    if not source.exists():
        raise NotFound(f"No such directory: {source}")
    if not source.is_dir():
        raise InvalidInput(f"Path is not a directory: {source}")

    if patterns is None:
        patterns = export_patterns(source)

    folder_name = source.name or "all-files"
    job_dir = Path(tempfile.mkdtemp(prefix="export-", dir=get_export_dir()))
    target = job_dir / f"{folder_name}.zip"

    try:
        entries = (e for e in iter_tree(source, patterns) if e[0] not in (job_dir, target))
        size = write_zip(entries, target)
    except OSError as e:
        shutil.rmtree(job_dir, ignore_errors=True)
        raise from_os_error(e)
    except BaseException:
        shutil.rmtree(job_dir, ignore_errors=True)
        raise

    logger.info(f"Exported {source} -> {target} ({size} bytes, ignoring {list(patterns)})")
    return target, size


def resolve_export_file(path: Path) -> Path:
    """Accept only files that export_directory produced."""
    export_dir = get_export_dir().resolve()
    resolved = path.resolve()
    if resolved.parent.parent != export_dir or resolved.suffix != ".zip":
        raise InvalidInput(f"Not an exported archive: {path}")
    if not resolved.is_file():
        raise NotFound(f"Export not found: {path}")
    return resolved


def discard_export(path: Path) -> None:
    """Remove an exported zip together with its job directory."""
    shutil.rmtree(path.parent, ignore_errors=True)
    logger.info(f"Removed export: {path}")


# ============================================================================
# Import
# ============================================================================

@contextmanager
def job_directory(prefix: str) -> Iterator[Path]:
    """Temporary working directory for one archive job, removed on exit."""
    TEMP_ROOT.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=TEMP_ROOT))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        logger.info(f"Removed job directory: {path}")


def extract_zip(zip_path: Path, target: Path) -> None:
    """Extract ``zip_path`` into ``target``. Member paths are sanitised by zipfile."""
    try:
        with zipfile.ZipFile(zip_path) as zf:
            zf.extractall(target)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"Not a valid zip archive: {e}")
    except OSError as e:
        raise from_os_error(e)


def detect_root_folder(extracted: Path, skip_hidden: bool = False) -> Optional[Path]:
    """
    Find the single top-level folder of an extracted archive.

    Returns the folder when it is the only top-level entry, otherwise None.
    With ``skip_hidden`` dot-prefixed entries are left out before counting.
    """
    children = sorted(extracted.iterdir())
    if skip_hidden:
        children = [c for c in children if not c.name.startswith(".")]
    if len(children) == 1 and children[0].is_dir():
        return children[0]
    return None


def merge_tree(source: Path, destination: Path) -> None:
    """Recursively copy the contents of ``source`` into ``destination``, overwriting files."""
    try:
        shutil.copytree(source, destination, dirs_exist_ok=True)
    except shutil.Error as e:
        raise ArchiveError("Failed to copy extracted files", detail=str(e))
    except OSError as e:
        raise from_os_error(e)


def import_zip_file(zip_path: Path, destination: Path) -> Optional[str]:
    """
    Extract an uploaded zip and merge it into ``destination``.

    Returns:
        Name of the root folder that was unwrapped, or None
    """
    with job_directory("zip-import-") as job_dir:
        extracted = job_dir / "extracted"
        extracted.mkdir()
        extract_zip(zip_path, extracted)

        root = detect_root_folder(extracted)
        merge_tree(root or extracted, destination)

    logger.info(f"Imported {zip_path.name} into {destination} (root folder: {root.name if root else None})")
    return root.name if root else None


def import_zip_upload(fileobj: BinaryIO, destination: Path) -> Optional[str]:
    """Store an uploaded zip stream in a job directory, then import it."""
    with job_directory("zip-upload-") as job_dir:
        zip_path = job_dir / "upload.zip"
        with open(zip_path, "wb") as out:
            shutil.copyfileobj(fileobj, out)
        return import_zip_file(zip_path, destination)
