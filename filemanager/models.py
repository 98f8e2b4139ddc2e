"""
File Manager API Models

Pydantic models for request/response validation. Wire names are camelCase.
"""

from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Listing models

class DirectoryEntry(ApiModel):
    """One file or directory in a listing."""
    name: str = Field(..., description="Entry name")
    is_directory: bool = Field(..., description="True for directories")
    size_bytes: Union[int, Literal["n/a"]] = Field(..., description="File size, 'n/a' for directories")
    size_label: str = Field(..., description="Human readable size, '-' for directories")
    is_hidden: bool = Field(..., description="Name starts with '.'")
    extension: str = Field(..., description="Lower-case extension, 'folder' for directories")
    last_modified: datetime = Field(..., description="Effective modification time")
    full_path: str = Field(..., description="Absolute path of the entry")
    category: str = Field(..., description="Display category")
    icon_class: str = Field(..., description="Icon CSS class")


class ListingResponse(ApiModel):
    """Sorted contents of one directory."""
    path: str = Field(..., description="Resolved absolute directory path")
    parent_path: str = Field(..., description="Parent directory path")
    path_segments: List[str] = Field(..., description="Breadcrumb segments")
    home_path: str = Field(..., description="Home directory of the server user")
    files: List[DirectoryEntry] = Field(default_factory=list, description="Sorted entries")


# File operation models

class FileContentResponse(ApiModel):
    """Response for reading a file."""
    path: str = Field(..., description="Path to the file")
    content: str = Field(..., description="File contents as a string")


class SaveFileRequest(ApiModel):
    """Request to save a file."""
    file_path: str = Field(..., min_length=1, description="Path to the file to save")
    content: str = Field(..., description="Updated file contents")


class CreateRequest(ApiModel):
    """Request to create an empty file or a folder."""
    name: str = Field(..., min_length=1, description="Name of the new entry")
    type: Literal["file", "folder"] = Field(..., description="What to create")
    current_path: str = Field(..., min_length=1, description="Directory to create it in")


class DeleteRequest(ApiModel):
    """Request to delete one entry."""
    path: str = Field(..., min_length=1, description="Path to delete")


class DeleteMultipleRequest(ApiModel):
    """Request to delete several entries."""
    paths: List[str] = Field(..., min_length=1, description="Paths to delete")


class RenameRequest(ApiModel):
    """Request to rename an entry within its directory."""
    old_path: str = Field(..., min_length=1, description="Current path")
    new_name: str = Field(..., min_length=1, description="New base name")


class TransferRequest(ApiModel):
    """Request to copy or move entries into a directory."""
    source_paths: List[str] = Field(..., min_length=1, description="Entries to copy or move")
    dest_path: str = Field(..., min_length=1, description="Destination directory")


class SuccessResponse(ApiModel):
    """Generic success response."""
    success: bool = Field(default=True, description="Operation status")
    message: Optional[str] = Field(None, description="Human readable result")


# Archive models

class ImportGitRequest(ApiModel):
    """Request to import a repository branch archive."""
    repo_url: str = Field(..., min_length=1, description="Repository URL (HTTPS)")
    current_path: str = Field(..., min_length=1, description="Destination directory")


class ExportZipRequest(ApiModel):
    """Request to export a directory to a zip file."""
    current_path: str = Field(..., min_length=1, description="Directory to export")


class ExportZipResponse(ApiModel):
    """Response describing the exported zip."""
    success: bool = Field(default=True, description="Operation status")
    file_path: str = Field(..., description="Server path of the zip, for /download-zip-file")
    file_size: str = Field(..., description="Human readable zip size")
    file_size_bytes: int = Field(..., description="Zip size in bytes")


# Error response model

class ErrorResponse(ApiModel):
    """Error response."""
    success: bool = Field(default=False, description="Always false")
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
