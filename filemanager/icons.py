"""
Maps file names to a display category and a Bootstrap Icons class.
"""

import os
from typing import NamedTuple


class FileKind(NamedTuple):
    category: str
    icon_class: str


FOLDER = FileKind("folder", "bi bi-folder-fill")
GENERIC = FileKind("file", "bi bi-file-earmark")

_BY_EXTENSION = {
    ".js": FileKind("javascript", "bi bi-filetype-js"),
    ".html": FileKind("html", "bi bi-filetype-html"),
    ".htm": FileKind("html", "bi bi-filetype-html"),
    ".css": FileKind("css", "bi bi-filetype-css"),
    ".json": FileKind("json", "bi bi-filetype-json"),
    ".txt": FileKind("text", "bi bi-file-earmark-text"),
    ".md": FileKind("markdown", "bi bi-file-earmark-code"),
    ".py": FileKind("python", "bi bi-filetype-py"),
    ".env": FileKind("config", "bi bi-gear"),
    ".sh": FileKind("shell", "bi bi-terminal"),
    ".bash": FileKind("shell", "bi bi-terminal"),
    ".png": FileKind("image", "bi bi-file-earmark-image"),
    ".jpg": FileKind("image", "bi bi-file-earmark-image"),
    ".jpeg": FileKind("image", "bi bi-file-earmark-image"),
    ".gif": FileKind("image", "bi bi-file-earmark-image"),
    ".svg": FileKind("image", "bi bi-file-earmark-image"),
    ".mp4": FileKind("video", "bi bi-file-earmark-play"),
    ".mov": FileKind("video", "bi bi-file-earmark-play"),
    ".avi": FileKind("video", "bi bi-file-earmark-play"),
    ".mp3": FileKind("audio", "bi bi-file-earmark-music"),
    ".wav": FileKind("audio", "bi bi-file-earmark-music"),
    ".pdf": FileKind("pdf", "bi bi-file-earmark-pdf"),
}


def extension_of(name: str) -> str:
    """Lower-case extension without the dot; a bare dotfile like '.env' counts as 'env'."""
    root, ext = os.path.splitext(name)
    if not ext and root.startswith(".") and len(root) > 1:
        ext = root
    return ext[1:].lower()


def classify(name: str, is_directory: bool) -> FileKind:
    if is_directory:
        return FOLDER
    ext = extension_of(name)
    if not ext:
        return GENERIC
    return _BY_EXTENSION.get("." + ext, GENERIC)
