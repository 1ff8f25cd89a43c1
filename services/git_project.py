"""
Git Project - clone / fetch + hard reset synchronization
"""

import asyncio
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional, Union

from config.commands import format_command
from config.config import BackendConfig, GIT_BIN_ENV, get_backend_config
from models.project import GitRemote
from services.vcs_project import OutputCallback, VersionControlProject
from utils.async_base import (
    AsyncError,
    ConfigurationError,
    ProcessError,
    ResourceError,
    ServiceResult,
    ValidationError,
)
from utils.async_utils import run_bytes_async, run_lines_async
from utils.file_probe import hash_stream, read_stream_range

# Marker git puts in front of the checked out branch in `git branch`
CURRENT_BRANCH_MARKER = "* "


def parse_current_branch(line: str) -> Optional[str]:
    """
    Branch name from a `git branch` line, if it marks the current branch

    A detached HEAD is listed as "* (HEAD detached at <rev>)" and yields None.
    """
    if not line.startswith(CURRENT_BRANCH_MARKER):
        return None
    fields = line.split()
    if len(fields) < 2 or fields[1].startswith("("):
        return None
    return fields[1]


async def _read_all(stream: asyncio.StreamReader) -> bytes:
    return await stream.read()


class GitProject(VersionControlProject):
    """
    Working copy tracking the tip of one remote branch

    Updates fetch all remotes and hard-reset to origin/<branch>; local
    modifications are discarded.
    """

    PROJECT_TYPE = "git"

    def __init__(
        self,
        name: str,
        base_dir: Union[str, Path],
        options: Mapping[str, str],
        backends: Optional[BackendConfig] = None,
        output_callback: Optional[OutputCallback] = None,
    ):
        backends = backends or get_backend_config()
        if not backends.git_bin:
            raise ConfigurationError(
                f"{name}: cannot find git command; set {GIT_BIN_ENV}",
                setting=GIT_BIN_ENV,
            )

        super().__init__(name, base_dir, output_callback)

        url = options.get("Url")
        if not url:
            raise ValidationError(f"{name}: missing Url", field="Url")

        branch = options.get("Branch") or None
        if branch is None:
            self.logger.warning("%s: missing Branch; using default", name)

        self.git_bin = backends.git_bin
        self.remote = GitRemote(url=url, branch=branch)
        # Filled in from the working copy when not configured
        self.branch: Optional[str] = branch

    @property
    def url(self) -> str:
        return self.remote.url

    def _command(self, key: str, **kwargs) -> str:
        return format_command(
            "GIT_COMMANDS",
            key,
            git_bin=self.git_bin,
            base_dir=self.base_dir,
            **kwargs,
        )

    async def health_check(self) -> ServiceResult[Dict[str, Any]]:
        """Check that the git binary runs"""
        lines: List[str] = []
        try:
            await run_lines_async(self._command("version"), lines.append)
        except AsyncError as e:
            return ServiceResult.error(e)
        return ServiceResult.success(
            {
                "status": "healthy",
                "project_type": self.project_type(),
                "version": lines[0] if lines else "",
            }
        )

    async def detect_current_branch(self) -> Optional[str]:
        """Record the branch checked out in the working copy"""
        detected: List[str] = []

        def on_line(line: str) -> None:
            branch = parse_current_branch(line)
            if branch:
                detected.append(branch)

        await run_lines_async(self._command("branch"), on_line)
        if detected:
            self.branch = detected[-1]
            self.logger.info("%s: current branch is %s", self.name, self.branch)
        return self.branch

    async def _clone(self) -> Dict[str, str]:
        if not self.branch:
            await run_lines_async(
                self._command("clone", url=self.url), self.output_callback
            )
            await self.detect_current_branch()
        else:
            await run_lines_async(
                self._command("clone_branch", url=self.url, branch=self.branch),
                self.output_callback,
            )
        return {}

    async def _update(self) -> Dict[str, str]:
        await run_lines_async(self._command("fetch"), self.output_callback)
        if not self.branch:
            await self.detect_current_branch()
        if not self.branch:
            raise ResourceError(
                f"{self.name}: no branch is checked out (detached HEAD?); "
                "set Branch to choose one",
                resource_path=str(self.base_dir),
            )
        await run_lines_async(
            self._command("reset_hard", branch=self.branch), self.output_callback
        )
        return {}

    # Content access

    def _show_command(self, path: str, revision: str) -> str:
        return self._command("show", revision=revision or "HEAD", path=path)

    async def read_text(self, path: str, revision: str = "") -> ServiceResult[str]:
        invalid = self._check_path(path)
        if invalid:
            return invalid

        async def action() -> str:
            data = await run_bytes_async(self._show_command(path, revision), _read_all)
            return data.decode("utf-8", errors="replace")

        return await self._content_result("read_text", action)

    async def read_binary_range(
        self, path: str, revision: str, start: int, end: int
    ) -> ServiceResult[bytes]:
        invalid = self._check_path(path) or self._check_range(start, end)
        if invalid:
            return invalid

        async def action() -> bytes:
            return await run_bytes_async(
                self._show_command(path, revision),
                lambda stream: read_stream_range(stream, start, end),
            )

        return await self._content_result("read_binary_range", action)

    async def byte_length(self, path: str, revision: str = "") -> ServiceResult[int]:
        invalid = self._check_path(path)
        if invalid:
            return invalid

        async def action() -> int:
            lines: List[str] = []
            await run_lines_async(
                self._command(
                    "cat_file_size", revision=revision or "HEAD", path=path
                ),
                lines.append,
            )
            try:
                return int(lines[0].strip())
            except (IndexError, ValueError) as e:
                raise ProcessError(
                    f"Unexpected cat-file output for {path}: {lines!r}"
                ) from e

        return await self._content_result("byte_length", action)

    async def content_hash(self, path: str, revision: str = "") -> ServiceResult[str]:
        invalid = self._check_path(path)
        if invalid:
            return invalid

        async def action() -> str:
            return await run_bytes_async(
                self._show_command(path, revision), hash_stream
            )

        return await self._content_result("content_hash", action)

    async def blame_range(
        self, path: str, revision: str, start_line: int, end_line: int
    ) -> ServiceResult[List[str]]:
        invalid = self._check_path(path) or self._check_range(
            start_line, end_line, minimum=1
        )
        if invalid:
            return invalid

        async def action() -> List[str]:
            lines: List[str] = []
            await run_lines_async(
                self._command(
                    "blame",
                    start_line=start_line,
                    end_line=end_line,
                    revision=revision or "HEAD",
                    path=path,
                ),
                lines.append,
            )
            return lines

        return await self._content_result("blame_range", action)

    async def commit_info(self, path: str, revision: str = "") -> ServiceResult[List[str]]:
        """Hash, author name, author email, ISO date and subject of the last commit"""
        invalid = self._check_path(path)
        if invalid:
            return invalid

        async def action() -> List[str]:
            lines: List[str] = []
            await run_lines_async(
                self._command("log_commit", revision=revision or "HEAD", path=path),
                lines.append,
            )
            return lines

        return await self._content_result("commit_info", action)
