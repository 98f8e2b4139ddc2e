"""
Git Import Service

Imports a repository by downloading a branch archive zip and merging its
contents into a directory.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Sequence, Tuple
from urllib.parse import urlparse

import httpx

from .archive import detect_root_folder, extract_zip, merge_tree
from .config import FETCH_TIMEOUT, GITHUB_TOKEN, REPO_BRANCHES, TEMP_ROOT
from .errors import ArchiveError, InvalidInput, RemoteFetchFailed

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def normalize_repo_url(repo_url: str) -> Tuple[str, str]:
    """
    Validate a repository URL and strip a trailing '/' or '.git'.

    Returns:
        (base URL, repository name)

    Raises:
        InvalidInput: If the URL is empty or not HTTP(S)
    """
    url = (repo_url or "").strip().rstrip("/")
    if not url:
        raise InvalidInput("GitHub repository URL is required.")

    parsed = urlparse(url)
    if parsed.scheme not in ("https", "http") or not parsed.netloc:
        raise InvalidInput(f"Invalid repository URL: {repo_url}")

    if url.endswith(".git"):
        url = url[:-4]

    name = url.rsplit("/", 1)[-1]
    if not name or name == parsed.netloc:
        raise InvalidInput(f"Invalid repository URL: {repo_url}")
    return url, name


def _auth_headers(url: str) -> dict:
    if GITHUB_TOKEN and urlparse(url).netloc.lower() == "github.com":
        return {"Authorization": f"token {GITHUB_TOKEN}"}
    return {}


async def download_branch_archive(
    client: httpx.AsyncClient,
    base_url: str,
    target: Path,
    branches: Sequence[str],
) -> str:
    """
    Download the first available branch archive into ``target``.

    Returns:
        The branch that was downloaded

    Raises:
        RemoteFetchFailed: If no branch archive could be fetched
    """
    headers = _auth_headers(base_url)
    for branch in branches:
        zip_url = f"{base_url}/archive/refs/heads/{branch}.zip"
        logger.info(f"Attempting to download zip from: {zip_url}")
        try:
            async with client.stream("GET", zip_url, headers=headers, follow_redirects=True) as response:
                if response.status_code != 200:
                    logger.warning(f"Branch '{branch}' not available (HTTP {response.status_code})")
                    continue
                with open(target, "wb") as out:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        out.write(chunk)
            logger.info(f"Downloaded {zip_url} to {target}")
            return branch
        except httpx.HTTPError as e:
            logger.warning(f"Download of branch '{branch}' failed: {e}")

    raise RemoteFetchFailed(
        f"Failed to download repository zip from {'/'.join(branches)} branch. "
        "Please check the URL and branch name."
    )


def _unpack_repository(zip_path: Path, work_dir: Path, destination: Path) -> str:
    extracted = work_dir / "extracted"
    extracted.mkdir()
    extract_zip(zip_path, extracted)

    # Branch archives wrap everything in '<repo>-<branch>/'
    root = detect_root_folder(extracted, skip_hidden=True)
    if root is None:
        raise ArchiveError("Cloned repository folder not found after extraction.")

    merge_tree(root, destination)
    return root.name


async def import_repository(
    repo_url: str,
    destination: Path,
    client: Optional[httpx.AsyncClient] = None,
    branches: Optional[Sequence[str]] = None,
) -> str:
    """
    Import a repository's branch archive into ``destination``.

    Args:
        repo_url: Repository URL, e.g. https://github.com/owner/repo(.git)
        destination: Directory receiving the repository files
        client: Optional HTTP client (one with FETCH_TIMEOUT is created otherwise)
        branches: Branches to try in order, defaults to REPO_BRANCHES

    Returns:
        Name of the branch that was imported

    Raises:
        InvalidInput: If the URL is invalid
        RemoteFetchFailed: If no branch archive could be downloaded
        ArchiveError: If the archive is corrupt or has no root folder
    """
    base_url, repo_name = normalize_repo_url(repo_url)
    branches = list(branches or REPO_BRANCHES)

    TEMP_ROOT.mkdir(parents=True, exist_ok=True)
    work_dir = Path(tempfile.mkdtemp(prefix="git-zip-", dir=TEMP_ROOT))
    try:
        zip_path = work_dir / f"{repo_name}.zip"
        if client is None:
            async with httpx.AsyncClient(timeout=FETCH_TIMEOUT) as own_client:
                branch = await download_branch_archive(own_client, base_url, zip_path, branches)
        else:
            branch = await download_branch_archive(client, base_url, zip_path, branches)

        root_name = await asyncio.to_thread(_unpack_repository, zip_path, work_dir, destination)
        logger.info(f"Imported {base_url} ({branch}, root '{root_name}') into {destination}")
        return branch
    finally:
        await asyncio.to_thread(shutil.rmtree, work_dir, True)
        logger.info(f"Temporary folder deleted: {work_dir}")
