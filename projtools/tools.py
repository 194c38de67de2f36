"""Refreshing the tooling scripts from their source repository.

The scripts live at the top level of a GitHub repository. Both the local
refresh and the deployment step fetch the branch tarball from codeload and
keep only the files one level below its top directory.
"""

from __future__ import annotations

import fnmatch
import io
import logging
import shlex
import tarfile
from pathlib import Path

import httpx

from projtools.errors import Result, ToolsError, err, ok

logger = logging.getLogger(__name__)

CODELOAD_URL = "https://codeload.github.com/{repo}/tar.gz/refs/heads/{branch}"


def tools_tarball_url(repo: str, branch: str) -> str:
    """Tarball URL for a branch of a GitHub repository."""
    return CODELOAD_URL.format(repo=repo, branch=branch)


def select_tool_members(tar: tarfile.TarFile, pattern: str) -> list[tuple[tarfile.TarInfo, str]]:
    """Regular files directly below the tarball's top directory matching ``pattern``.

    Returns:
        (member, filename with the top directory stripped) pairs
    """
    selected = []
    for member in tar.getmembers():
        parts = member.name.split("/")
        if len(parts) != 2 or not member.isfile():
            continue
        if fnmatch.fnmatch(parts[1], pattern):
            selected.append((member, parts[1]))
    return selected


def install_tools(data: bytes, destination: Path, pattern: str = "*.sh") -> list[Path]:
    """Unpack matching scripts from a gzip tarball and mark them executable."""
    installed = []
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
        for member, filename in select_tool_members(tar, pattern):
            source = tar.extractfile(member)
            if source is None:
                continue
            target = destination / filename
            target.write_bytes(source.read())
            target.chmod(0o755)
            installed.append(target)
            logger.debug(f"Installed tool: {target}")
    return installed


def pull_tools(
    destination: Path,
    repo: str,
    branch: str = "main",
    pattern: str = "*.sh",
    timeout: float = 30.0,
) -> Result[list[Path], ToolsError]:
    """Download fresh copies of the tooling scripts into ``destination``.

    Args:
        destination: Directory receiving the scripts
        repo: GitHub "owner/name"
        branch: Branch to fetch
        pattern: Filename glob for the scripts
        timeout: HTTP timeout in seconds

    Returns:
        Paths of the installed scripts
    """
    url = tools_tarball_url(repo, branch)
    logger.info(f"Pulling fresh tools from {repo} ({branch})...")

    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as e:
        return err(
            ToolsError(
                code="TOOLS_DOWNLOAD_FAILED",
                message=f"Failed to download {url}: {e}",
                context={"url": url},
            )
        )

    try:
        installed = install_tools(response.content, destination, pattern)
    except (OSError, tarfile.TarError) as e:
        return err(
            ToolsError(
                code="TOOLS_EXTRACT_FAILED",
                message=f"Failed to unpack tools from {url}: {e}",
                context={"url": url, "destination": str(destination)},
            )
        )

    return ok(installed)


def remote_pull_command(repo: str, branch: str = "main", pattern: str = "*.sh") -> str:
    """Shell snippet doing what pull_tools() does, for a target without projtools."""
    url = shlex.quote(tools_tarball_url(repo, branch))
    member_glob = shlex.quote(f"*/{pattern}")
    return (
        f"curl -fsSL {url} | tar -xz --wildcards --strip-components=1 {member_glob} && "
        f"(chmod +x ./{pattern} 2>/dev/null || true)"
    )
