"""
File Manager Backend

FastAPI application exposing the host filesystem over HTTP and a
command-relay WebSocket.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

import humanize
from fastapi import FastAPI, File, Form, Query, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import archive, fileops
from .config import (
    COMMAND_TIMEOUT,
    HOST,
    PORT,
    SANDBOX_ROOT,
    get_start_path,
    resolve_path,
)
from .errors import FileManagerError, InvalidInput, NotFound
from .git_service import import_repository
from .listing import list_directory
from .models import (
    CreateRequest,
    DeleteMultipleRequest,
    DeleteRequest,
    ErrorResponse,
    ExportZipRequest,
    ExportZipResponse,
    FileContentResponse,
    ImportGitRequest,
    ListingResponse,
    RenameRequest,
    SaveFileRequest,
    SuccessResponse,
    TransferRequest,
)
from .terminal import INTERRUPT_UNAVAILABLE, ShellSession, TerminalEvent

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="File Manager",
    description="Browser-accessible file manager with a command terminal",
    version="1.0.0",
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    logger.info(f"File Manager starting on {HOST}:{PORT}")
    logger.info(f"Start path: {get_start_path()}")
    if SANDBOX_ROOT is None:
        logger.warning("No FILEMANAGER_ROOT set: every path reachable by this process is exposed")
    else:
        logger.info(f"Sandbox root: {SANDBOX_ROOT}")


# Serve a frontend build if one sits next to the package
frontend_path = Path(__file__).parent.parent / "frontend"
if (frontend_path / "static").exists():
    app.mount("/static", StaticFiles(directory=str(frontend_path / "static")), name="static")


def _attachment(filename: str) -> dict:
    """Content-Disposition header that survives non-ASCII names."""
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}


# ============================================================================
# Listing Endpoints
# ============================================================================

async def _listing(path: Optional[str], show_hidden: bool) -> ListingResponse:
    directory = resolve_path(path) if path else get_start_path().resolve()
    return await asyncio.to_thread(list_directory, directory, show_hidden)


@app.get("/")
async def index(
    path: Optional[str] = Query(None, description="Directory to list"),
    show_hidden: bool = Query(True, alias="showHidden"),
):
    """Serve the frontend, or the listing of ``path`` when no frontend is installed."""
    index_path = frontend_path / "index.html"
    if path is None and index_path.exists():
        return FileResponse(index_path)
    return await _listing(path, show_hidden)


@app.get("/api/files", response_model=ListingResponse)
async def get_files(
    path: Optional[str] = Query(None, description="Directory to list"),
    show_hidden: bool = Query(True, alias="showHidden"),
):
    """
    List one directory: folders first, hidden entries last, newest first.
    """
    return await _listing(path, show_hidden)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "File Manager",
        "startPath": str(get_start_path()),
    }


# ============================================================================
# File Operation Endpoints
# ============================================================================

@app.get("/file-content", response_model=FileContentResponse)
async def file_content(path: str = Query(..., min_length=1, description="File path to read")):
    """Read a text file for the editor."""
    file_path = resolve_path(path)
    content = await asyncio.to_thread(fileops.read_text, file_path)
    logger.info(f"Opened file: {file_path}")
    return FileContentResponse(path=str(file_path), content=content)


@app.post("/save-file", response_model=SuccessResponse)
async def save_file(request: SaveFileRequest):
    """Save file contents to disk."""
    file_path = resolve_path(request.file_path)
    await asyncio.to_thread(fileops.save_text, file_path, request.content)
    return SuccessResponse(message="File saved successfully!")


@app.post("/create", response_model=SuccessResponse)
async def create_entry(request: CreateRequest):
    """Create an empty file or a folder."""
    parent = resolve_path(request.current_path)
    target = await asyncio.to_thread(fileops.create, request.name, request.type, parent)
    return SuccessResponse(message=f"Created {request.type}: {target.name}")


@app.delete("/delete", response_model=SuccessResponse)
async def delete_entry(request: DeleteRequest):
    """Delete one file or folder."""
    target = resolve_path(request.path, follow_links=False)
    await asyncio.to_thread(fileops.delete, target)
    return SuccessResponse(message="Deleted successfully!")


@app.delete("/delete-multiple", response_model=SuccessResponse)
async def delete_multiple(request: DeleteMultipleRequest):
    """Delete several files or folders, stopping at the first failure."""
    targets = [resolve_path(p, follow_links=False) for p in request.paths]
    count = await asyncio.to_thread(fileops.delete_many, targets)
    return SuccessResponse(message=f"{count} item(s) deleted successfully!")


@app.post("/rename", response_model=SuccessResponse)
async def rename_entry(request: RenameRequest):
    """Rename an entry in place. Fails with 409 if the new name is taken."""
    old_path = resolve_path(request.old_path, follow_links=False)
    new_path = await asyncio.to_thread(fileops.rename, old_path, request.new_name)
    return SuccessResponse(message=f"Renamed to {new_path.name}")


@app.post("/copy", response_model=SuccessResponse)
async def copy_entries(request: TransferRequest):
    """Copy entries into a directory, merging folders and overwriting files."""
    sources = [resolve_path(p) for p in request.source_paths]
    dest = resolve_path(request.dest_path)
    count = await asyncio.to_thread(fileops.copy_items, sources, dest)
    return SuccessResponse(message=f"{count} item(s) copied successfully!")


@app.post("/move", response_model=SuccessResponse)
async def move_entries(request: TransferRequest):
    """Move entries into a directory, replacing entries of the same name."""
    sources = [resolve_path(p) for p in request.source_paths]
    dest = resolve_path(request.dest_path)
    count = await asyncio.to_thread(fileops.move_items, sources, dest)
    return SuccessResponse(message=f"{count} item(s) moved successfully!")


@app.post("/upload-files", response_model=SuccessResponse)
async def upload_files(
    files: List[UploadFile] = File(..., description="Files to upload"),
    current_path: str = Form(..., alias="currentPath"),
):
    """Store uploaded files in the current directory."""
    dest = resolve_path(current_path)
    try:
        for upload in files:
            await asyncio.to_thread(
                fileops.save_upload, upload.file, upload.filename or "upload", dest
            )
    finally:
        for upload in files:
            await upload.close()
    return SuccessResponse(message=f"{len(files)} file(s) uploaded successfully!")


# ============================================================================
# Download Endpoints
# ============================================================================

@app.get("/download")
async def download_file(path: str = Query(..., min_length=1)):
    """Send one file as an attachment."""
    file_path = resolve_path(path)
    if not file_path.exists():
        raise NotFound(f"File not found: {path}")
    if not file_path.is_file():
        raise InvalidInput(f"Path is not a file: {path}")
    return FileResponse(file_path, filename=file_path.name)


@app.get("/download-folder")
async def download_folder(path: str = Query(..., min_length=1)):
    """Stream a folder as a zip; archive paths are relative to the folder."""
    folder = resolve_path(path)
    if not folder.exists():
        raise NotFound(f"Folder not found: {path}")
    if not folder.is_dir():
        raise InvalidInput(f"Path is not a directory: {path}")

    logger.info(f"Streaming folder zip: {folder}")
    return StreamingResponse(
        archive.stream_zip(archive.iter_tree(folder)),
        media_type="application/zip",
        headers=_attachment(f"{folder.name or 'root'}.zip"),
    )


@app.get("/download-multiple")
async def download_multiple(paths: str = Query(..., description="JSON array of paths")):
    """Stream several entries as one zip, each under its own name."""
    try:
        raw = json.loads(paths)
    except ValueError:
        raise InvalidInput("paths must be a JSON array of strings")
    if not isinstance(raw, list) or not raw or not all(isinstance(p, str) for p in raw):
        raise InvalidInput("paths must be a JSON array of strings")

    targets = [resolve_path(p) for p in raw]
    entries = await asyncio.to_thread(archive.collect_items, targets)

    logger.info(f"Streaming zip of {len(targets)} selected item(s)")
    return StreamingResponse(
        archive.stream_zip(entries),
        media_type="application/zip",
        headers=_attachment("selected_files.zip"),
    )


# ============================================================================
# Archive Endpoints
# ============================================================================

@app.post("/import-zip", response_model=SuccessResponse)
async def import_zip(
    zip_file: UploadFile = File(..., alias="zipFile"),
    current_path: str = Form(..., alias="currentPath"),
):
    """Extract an uploaded zip into the current directory."""
    dest = resolve_path(current_path)
    logger.info(f"Import from zip request received: {zip_file.filename} -> {dest}")
    try:
        await asyncio.to_thread(archive.import_zip_upload, zip_file.file, dest)
    finally:
        await zip_file.close()
    return SuccessResponse(message="Files imported successfully from ZIP!")


@app.post("/import-git", response_model=SuccessResponse)
async def import_git(request: ImportGitRequest):
    """Download a repository's main/master archive and merge it into the current directory."""
    dest = resolve_path(request.current_path)
    logger.info(f"Import from Git request received: {request.repo_url}")
    branch = await import_repository(request.repo_url, dest)
    return SuccessResponse(
        message=f"Repository files imported successfully from ZIP ({branch}) to current path!"
    )


@app.post("/export-zip", response_model=ExportZipResponse)
async def export_zip(request: ExportZipRequest):
    """Zip the current directory, honouring its .gitignore and default exclusions."""
    source = resolve_path(request.current_path)
    logger.info(f"Export to zip request received for path: {source}")
    zip_path, size = await asyncio.to_thread(archive.export_directory, source)
    return ExportZipResponse(
        file_path=str(zip_path),
        file_size=humanize.naturalsize(size, binary=True),
        file_size_bytes=size,
    )


@app.get("/download-zip-file")
async def download_zip_file(path: str = Query(..., min_length=1)):
    """Send an exported zip, then delete it."""
    zip_path = archive.resolve_export_file(Path(path))
    logger.info(f"Download request for: {zip_path}")
    return FileResponse(
        zip_path,
        filename=zip_path.name,
        media_type="application/zip",
        background=BackgroundTask(archive.discard_export, zip_path),
    )


# ============================================================================
# Error Handlers
# ============================================================================

def _error_response(status_code: int, error: str, detail: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


@app.exception_handler(FileManagerError)
async def file_manager_exception_handler(request, exc: FileManagerError):
    """Map the error taxonomy onto HTTP status codes."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return _error_response(exc.status_code, exc.message, exc.detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    """Missing or malformed fields are reported as 400."""
    fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) or "body" for err in exc.errors())
    logger.warning(f"{request.method} {request.url.path} invalid input: {fields}")
    return _error_response(400, f"Invalid or missing field(s): {fields}", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    """Custom handler for HTTP exceptions."""
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Catch-all handler for unexpected errors."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error_response(500, "Internal server error", str(exc))


# ============================================================================
# Terminal WebSocket Endpoint
# ============================================================================

async def _send(websocket: WebSocket, event: TerminalEvent) -> None:
    await websocket.send_json(event.to_message())


@app.websocket("/terminal")
async def terminal_websocket(websocket: WebSocket):
    """
    WebSocket endpoint relaying one command at a time to a subprocess.

    Client messages: {"type": "cmd", "command", "currentPath"} or
    {"type": "interrupt"}. Server messages: {"output", "type"}.
    """
    await websocket.accept()
    logger.info("Terminal WebSocket connection accepted")

    session = ShellSession(timeout=COMMAND_TIMEOUT)
    runner: Optional[asyncio.Task] = None

    async def relay(events):
        try:
            async for event in events:
                await _send(websocket, event)
        except Exception as e:
            logger.error(f"Terminal relay failed: {e}", exc_info=True)
        finally:
            await events.aclose()

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
                if not isinstance(message, dict):
                    raise ValueError("message must be a JSON object")
            except ValueError as e:
                await _send(websocket, TerminalEvent(f"\r\nInvalid message: {e}\r\n", "error"))
                continue

            kind = message.get("type")
            if kind == "cmd":
                command = message.get("command") or ""
                current_path = message.get("currentPath") or str(get_start_path())
                if not isinstance(command, str) or not isinstance(current_path, str):
                    await _send(websocket, TerminalEvent(
                        "\r\nInvalid message: command and currentPath must be strings\r\n", "error"
                    ))
                    continue
                try:
                    cwd = resolve_path(current_path)
                    events = session.start(command, cwd)
                except FileManagerError as e:
                    await _send(websocket, TerminalEvent(f"\r\n{e.message}\r\n", "error"))
                    continue
                runner = asyncio.create_task(relay(events))
            elif kind == "interrupt":
                await _send(websocket, TerminalEvent(INTERRUPT_UNAVAILABLE, "error"))
            else:
                await _send(websocket, TerminalEvent(f"\r\nUnknown message type: {kind}\r\n", "error"))

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected")
    finally:
        if runner is not None:
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Terminal relay ended with an error: {e}")
        await session.terminate()
        logger.info("Terminal WebSocket connection closed")


# ============================================================================
# Development Server
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "filemanager.main:app",
        host=HOST,
        port=PORT,
        reload=True,
        log_level="info",
    )
