"""
File Manager Configuration

Handles environment configuration and path resolution.
"""

import os
import tempfile
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .errors import PermissionDenied

# Pick up a local .env before reading any settings
load_dotenv()


# Server configuration
HOST = os.getenv("FILEMANAGER_HOST", "127.0.0.1")
PORT = int(os.getenv("FILEMANAGER_PORT", "3000"))

# Directory shown when a listing request carries no path
START_PATH = Path(os.getenv("FILEMANAGER_START_PATH", os.getcwd())).expanduser()

# Optional sandbox root. Unset means any path the server process can reach
# is accepted.
_root = os.getenv("FILEMANAGER_ROOT", "")
SANDBOX_ROOT: Optional[Path] = Path(_root).expanduser().resolve() if _root else None

# Archive jobs and exported zips live under this directory
TEMP_ROOT = Path(os.getenv("FILEMANAGER_TEMP_DIR", tempfile.gettempdir()))
EXPORT_DIR_NAME = "filemanager-exports"

# Patterns always excluded from folder exports, on top of .gitignore
EXPORT_EXCLUDES: List[str] = [
    p.strip()
    for p in os.getenv("FILEMANAGER_EXPORT_EXCLUDES", "node_modules").split(",")
    if p.strip()
]

# Branch archives tried, in order, when importing a repository by URL
REPO_BRANCHES: List[str] = [
    b.strip()
    for b in os.getenv("FILEMANAGER_REPO_BRANCHES", "main,master").split(",")
    if b.strip()
]

# Personal Access Token sent with github.com archive downloads (private repos)
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN", "")

# Timeouts in seconds. A command timeout of 0 disables it.
FETCH_TIMEOUT = float(os.getenv("FILEMANAGER_FETCH_TIMEOUT", "60"))
COMMAND_TIMEOUT = float(os.getenv("FILEMANAGER_COMMAND_TIMEOUT", "0"))


def _check_inside(p: Path, root: Path) -> None:
    try:
        p.relative_to(root)
    except ValueError:
        raise PermissionDenied(
            f"Path '{p}' is outside root '{root}'. Access denied."
        )


def resolve_path(path_str: str, sandbox: Optional[Path] = None, follow_links: bool = True) -> Path:
    """
    Resolve a client-supplied path to an absolute Path.

    Relative paths are taken relative to START_PATH. When a sandbox root is
    configured the result must lie inside it.

    Args:
        path_str: Path string (relative or absolute)
        sandbox: Override for SANDBOX_ROOT (mainly for tests)
        follow_links: When False, a symlink in the final component is only
            checked by its own location, not by its target. For operations
            that act on the link itself (delete, rename).

    Returns:
        Resolved absolute Path object

    Raises:
        PermissionDenied: If the resolved path is outside the sandbox root
    """
    p = Path(path_str).expanduser()

    if not p.is_absolute():
        p = START_PATH / p

    # Collapse '..' and resolve symlinks in the parent only, so a link itself
    # can be renamed or deleted without touching its target
    p = Path(os.path.normpath(p))
    if p.name:
        p = p.parent.resolve() / p.name
    else:
        p = p.resolve()

    root = sandbox if sandbox is not None else SANDBOX_ROOT
    if root is not None:
        _check_inside(p, root)
        if follow_links:
            _check_inside(p.resolve(), root)

    return p


def get_start_path() -> Path:
    """Get the directory shown by default."""
    return START_PATH


def get_export_dir() -> Path:
    """Directory holding zips produced by folder export; created on demand."""
    export_dir = TEMP_ROOT / EXPORT_DIR_NAME
    export_dir.mkdir(parents=True, exist_ok=True)
    return export_dir
