"""
File Service - Standardized Async Version
"""

import logging
import tempfile
from pathlib import Path
from typing import Dict, Any, Optional, Union

from config.config import ProbeConfig, get_probe_config
from utils.async_base import (
    AsyncServiceInterface,
    ServiceResult,
    ResourceError,
)
from utils.async_utils import run_in_executor
from utils import file_probe

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class FileService(AsyncServiceInterface):
    """Async access to file probes with standardized results"""

    def __init__(self, probe_config: Optional[ProbeConfig] = None):
        super().__init__("FileService")
        self.probe_config = probe_config or get_probe_config()

    async def health_check(self) -> ServiceResult[Dict[str, Any]]:
        """Check File service health"""
        async with self.operation_context("health_check"):
            try:
                with tempfile.TemporaryDirectory() as temp_dir:
                    test_file = Path(temp_dir) / "probe.txt"
                    test_file.write_text("probe content")

                    digest = await run_in_executor(file_probe.file_hash, test_file)
                    is_binary, _ = await run_in_executor(
                        file_probe.is_binary_file, test_file
                    )

                    return ServiceResult.success(
                        {
                            "status": "healthy",
                            "hash_available": bool(digest),
                            "binary_check_bytes": self.probe_config.binary_check_bytes,
                            "text_detected": not is_binary,
                        }
                    )
            except OSError as e:
                error = ResourceError(f"File probe self-test failed: {str(e)}")
                return ServiceResult.error(error)

    async def is_binary(self, path: PathLike) -> ServiceResult[bool]:
        """
        Classify a file as binary or text

        An unreadable file yields a partial result: data is True and the
        error describes the failure.
        """
        is_binary, error = await run_in_executor(
            file_probe.is_binary_file, path, self.probe_config.binary_check_bytes
        )
        if error:
            return ServiceResult.partial(
                True,
                ResourceError(f"Cannot read {path}: {error}", resource_path=str(path)),
                message="Unreadable file treated as binary",
            )
        return ServiceResult.success(is_binary)

    async def file_hash(self, path: PathLike) -> ServiceResult[str]:
        """SHA-512 hex digest of a file"""
        async with self.operation_context("file_hash"):
            try:
                digest = await run_in_executor(
                    file_probe.file_hash, path, self.probe_config.hash_chunk_size
                )
                return ServiceResult.success(digest)
            except OSError as e:
                error = ResourceError(
                    f"Cannot hash {path}: {str(e)}", resource_path=str(path)
                )
                return ServiceResult.error(error)

    async def file_length(self, path: PathLike) -> ServiceResult[int]:
        """Byte size of a file from its metadata"""
        try:
            size = await run_in_executor(file_probe.file_length, path)
            return ServiceResult.success(size)
        except OSError as e:
            error = ResourceError(
                f"Cannot stat {path}: {str(e)}", resource_path=str(path)
            )
            return ServiceResult.error(error)

    async def is_empty_directory(self, path: PathLike) -> ServiceResult[bool]:
        """
        Check whether a directory has no entries

        A lookup failure yields a partial result: data is True and the error
        describes the failure.
        """
        is_empty, error = await run_in_executor(file_probe.is_empty_directory, path)
        if error:
            return ServiceResult.partial(
                True,
                ResourceError(
                    f"Cannot list {path}: {error}", resource_path=str(path)
                ),
                message="Unreadable directory treated as empty",
            )
        return ServiceResult.success(is_empty)
