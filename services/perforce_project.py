"""
Perforce Project - workspace sync through the p4 command line client
"""

import asyncio
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional, Union

from config.commands import (
    P4_CONFIG_DIR,
    P4_CONFIG_FILE,
    P4_CONFIG_TEMPLATE,
    format_command,
)
from config.config import BackendConfig, P4_BIN_ENV, get_backend_config
from models.project import P4Connection
from services.vcs_project import OutputCallback, VersionControlProject
from utils.async_base import (
    AsyncError,
    ConfigurationError,
    ResourceError,
    ServiceResult,
    ValidationError,
)
from utils.async_utils import run_bytes_async, run_lines_async
from utils.file_probe import hash_stream, read_stream_range, stream_length

REQUIRED_OPTIONS = ("P4PORT", "P4USER", "P4CLIENT")


def file_spec(path: str, revision: str = "") -> str:
    """
    Perforce file specification for a path at a revision

    An empty revision means head, "#n" and "@change" are used as given and
    any other value is read as a changelist, label or date ("@value").
    """
    if not revision:
        return path
    if revision.startswith(("#", "@")):
        return f"{path}{revision}"
    return f"{path}@{revision}"


async def _read_all(stream: asyncio.StreamReader) -> bytes:
    return await stream.read()


class PerforceProject(VersionControlProject):
    """
    Client workspace synced with `p4 sync`

    The first sync forces a full refresh and leaves a .p4/config file with
    the connection triple in the base directory.
    """

    PROJECT_TYPE = "p4"

    def __init__(
        self,
        name: str,
        base_dir: Union[str, Path],
        options: Mapping[str, str],
        backends: Optional[BackendConfig] = None,
        output_callback: Optional[OutputCallback] = None,
    ):
        backends = backends or get_backend_config()
        if not backends.p4_bin:
            raise ConfigurationError(
                f"{name}: cannot find p4 command; set {P4_BIN_ENV}",
                setting=P4_BIN_ENV,
            )

        super().__init__(name, base_dir, output_callback)

        for option in REQUIRED_OPTIONS:
            if not options.get(option):
                raise ValidationError(f"{name}: missing {option}", field=option)

        self.p4_bin = backends.p4_bin
        self.connection = P4Connection(
            port=options["P4PORT"], user=options["P4USER"], client=options["P4CLIENT"]
        )

    @property
    def p4_config_path(self) -> Path:
        return self.base_dir / P4_CONFIG_DIR / P4_CONFIG_FILE

    def _command(self, key: str, **kwargs) -> str:
        env = format_command("P4_COMMANDS", "env", **self.connection.environment)
        return format_command(
            "P4_COMMANDS", key, env=env, p4_bin=self.p4_bin, **kwargs
        )

    async def health_check(self) -> ServiceResult[Dict[str, Any]]:
        """Check that the p4 binary runs"""
        lines: List[str] = []
        try:
            await run_lines_async(self._command("version"), lines.append)
        except AsyncError as e:
            return ServiceResult.error(e)
        return ServiceResult.success(
            {
                "status": "healthy",
                "project_type": self.project_type(),
                "version": lines[-1] if lines else "",
            }
        )

    async def _clone(self) -> Dict[str, str]:
        await run_lines_async(self._command("force_sync"), self.output_callback)
        self.write_p4_config()
        return {}

    async def _update(self) -> Dict[str, str]:
        await run_lines_async(self._command("sync"), self.output_callback)
        return {}

    def write_p4_config(self) -> Path:
        """Persist the connection triple so plain `p4` runs in the workspace pick it up"""
        p4_dir = self.p4_config_path.parent
        if p4_dir.exists() and not p4_dir.is_dir():
            raise ResourceError(
                f"{p4_dir} has been used as a normal file not a directory",
                resource_path=str(p4_dir),
            )
        try:
            p4_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
            self.p4_config_path.write_text(
                P4_CONFIG_TEMPLATE.format(**self.connection.environment),
                encoding="utf-8",
            )
        except OSError as e:
            raise ResourceError(
                f"Cannot write {self.p4_config_path}: {e}",
                resource_path=str(self.p4_config_path),
            ) from e
        self.logger.debug("Wrote %s", self.p4_config_path)
        return self.p4_config_path

    # Content access

    async def _print(self, path: str, revision: str, consumer) -> Any:
        return await run_bytes_async(
            self._command("print", file_spec=file_spec(path, revision)),
            consumer,
            cwd=str(self.base_dir),
        )

    async def read_text(self, path: str, revision: str = "") -> ServiceResult[str]:
        invalid = self._check_path(path)
        if invalid:
            return invalid

        async def action() -> str:
            data = await self._print(path, revision, _read_all)
            return data.decode("utf-8", errors="replace")

        return await self._content_result("read_text", action)

    async def read_binary_range(
        self, path: str, revision: str, start: int, end: int
    ) -> ServiceResult[bytes]:
        invalid = self._check_path(path) or self._check_range(start, end)
        if invalid:
            return invalid

        async def action() -> bytes:
            return await self._print(
                path, revision, lambda stream: read_stream_range(stream, start, end)
            )

        return await self._content_result("read_binary_range", action)

    async def byte_length(self, path: str, revision: str = "") -> ServiceResult[int]:
        invalid = self._check_path(path)
        if invalid:
            return invalid

        async def action() -> int:
            return await self._print(path, revision, stream_length)

        return await self._content_result("byte_length", action)

    async def content_hash(self, path: str, revision: str = "") -> ServiceResult[str]:
        invalid = self._check_path(path)
        if invalid:
            return invalid

        async def action() -> str:
            return await self._print(path, revision, hash_stream)

        return await self._content_result("content_hash", action)

    async def blame_range(
        self, path: str, revision: str, start_line: int, end_line: int
    ) -> ServiceResult[List[str]]:
        return self._unsupported("blame_range")

    async def commit_info(self, path: str, revision: str = "") -> ServiceResult[List[str]]:
        return self._unsupported("commit_info")
