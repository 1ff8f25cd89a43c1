"""
Version Control Project - common contract for the sync backends

A project is built once per logical repository and reused across repeated
sync() calls. It keeps no open resources between calls; each call runs one
or more backend commands to completion.
"""

import os
import stat
from abc import abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from models.project import ProjectIdentity
from utils.async_base import (
    AsyncError,
    AsyncServiceInterface,
    ResourceError,
    ServiceResult,
    UnsupportedOperationError,
    ValidationError,
)

OutputCallback = Callable[[str], None]


class VersionControlProject(AsyncServiceInterface):
    """Base class for the Perforce and Git project variants"""

    PROJECT_TYPE = ""

    def __init__(
        self,
        name: str,
        base_dir: Union[str, Path],
        output_callback: Optional[OutputCallback] = None,
    ):
        if not name:
            raise ValidationError("Project name is required", field="name")
        base_path = Path(base_dir)
        if not base_path.is_absolute():
            raise ValidationError(
                f"{name}: base directory must be absolute: {base_dir}",
                field="base_dir",
            )

        super().__init__(f"{self.__class__.__name__}.{name}")
        self.identity = ProjectIdentity(name=name, base_dir=base_path)
        self.output_callback = output_callback or self._log_output

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def base_dir(self) -> Path:
        return self.identity.base_dir

    def project_type(self) -> str:
        """Stable backend discriminator ("p4", "git")"""
        return self.PROJECT_TYPE

    def _log_output(self, line: str) -> None:
        self.logger.info("%s: %s", self.project_type(), line)

    async def sync(self) -> ServiceResult[Dict[str, str]]:
        """
        Bring the working directory up to date

        A missing base directory is cloned, an existing directory is updated
        and anything else fails without running a backend command. The data
        of a successful result maps changed paths to their latest
        modification marker and is currently always empty.
        """
        async with self.operation_context("sync") as ctx:
            try:
                info = os.stat(self.base_dir)
            except FileNotFoundError:
                action, step = "clone", self._clone
            except OSError as e:
                error = ResourceError(
                    f"{self.name}: cannot inspect {self.base_dir}: {e}",
                    resource_path=str(self.base_dir),
                )
                return ServiceResult.error(error)
            else:
                if not stat.S_ISDIR(info.st_mode):
                    error = ResourceError(
                        f'{self.name}: cannot clone repo since "{self.base_dir}" '
                        "is not a directory",
                        resource_path=str(self.base_dir),
                    )
                    return ServiceResult.error(error)
                action, step = "update", self._update

            self.logger.info("Starting %s of %s", action, self.identity)
            try:
                changed = await step()
            except AsyncError as e:
                self.logger.error("%s of %s failed: %s", action, self.base_dir, e)
                return ServiceResult.error(e)

            return ServiceResult.success(
                changed,
                message=f"{action} of {self.name} completed",
                metadata={
                    "action": action,
                    "project_type": self.project_type(),
                    "duration": ctx.elapsed,
                },
            )

    async def compile(self) -> ServiceResult[None]:
        """Post-sync processing hook; nothing to do yet"""
        return ServiceResult.success(None)

    @abstractmethod
    async def _clone(self) -> Dict[str, str]:
        """First-time checkout into a missing base directory"""

    @abstractmethod
    async def _update(self) -> Dict[str, str]:
        """Incremental refresh of an existing base directory"""

    # Content access by repository-relative path and revision

    @abstractmethod
    async def read_text(self, path: str, revision: str = "") -> ServiceResult[str]:
        pass

    @abstractmethod
    async def read_binary_range(
        self, path: str, revision: str, start: int, end: int
    ) -> ServiceResult[bytes]:
        pass

    @abstractmethod
    async def byte_length(self, path: str, revision: str = "") -> ServiceResult[int]:
        pass

    @abstractmethod
    async def content_hash(self, path: str, revision: str = "") -> ServiceResult[str]:
        pass

    @abstractmethod
    async def blame_range(
        self, path: str, revision: str, start_line: int, end_line: int
    ) -> ServiceResult[List[str]]:
        pass

    @abstractmethod
    async def commit_info(self, path: str, revision: str = "") -> ServiceResult[List[str]]:
        pass

    # Helpers shared by the backends

    async def _content_result(
        self, operation: str, action: Callable[[], Awaitable[Any]]
    ) -> ServiceResult[Any]:
        """Run a content operation, turning raised errors into an error result"""
        async with self.operation_context(operation):
            try:
                return ServiceResult.success(await action())
            except AsyncError as e:
                return ServiceResult.error(e)

    def _unsupported(self, operation: str) -> ServiceResult[Any]:
        error = UnsupportedOperationError(
            f"{operation} is not supported for {self.project_type()} projects yet",
            operation=operation,
            backend=self.project_type(),
        )
        return ServiceResult.error(error)

    @staticmethod
    def _check_path(path: str) -> Optional[ServiceResult[Any]]:
        if not path or not path.strip():
            return ServiceResult.error(ValidationError("Path is empty", field="path"))
        return None

    @staticmethod
    def _check_range(start: int, end: int, minimum: int = 0) -> Optional[ServiceResult[Any]]:
        if start < minimum or end < start:
            return ServiceResult.error(
                ValidationError(f"Invalid range {start}..{end}", field="range")
            )
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r}, {str(self.base_dir)!r})"
