"""
Async base classes shared by the runner, the file service and the projects

Utilities raise AsyncError subclasses; services catch them and hand back an
AsyncResult so callers branch on is_success / is_partial / is_error.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, TypeVar, Optional, Dict, Any, Callable
from contextlib import asynccontextmanager

T = TypeVar("T")


@dataclass
class AsyncResult(Generic[T]):
    """Outcome of a service operation"""

    success: bool
    data: Optional[T] = None
    error: Optional["AsyncError"] = None
    message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    # data is a stand-in value and error says why the real one is missing
    fallback: bool = False

    @classmethod
    def success(
        cls, data: T, message: str = None, metadata: Dict[str, Any] = None
    ) -> "AsyncResult[T]":
        return cls(
            success=True, data=data, error=None, message=message, metadata=metadata
        )

    @classmethod
    def error(
        cls, error: "AsyncError", metadata: Dict[str, Any] = None
    ) -> "AsyncResult[T]":
        return cls(success=False, error=error, metadata=metadata)

    @classmethod
    def partial(
        cls, data: T, error: "AsyncError", message: str = None
    ) -> "AsyncResult[T]":
        """Usable data together with the error that degraded it"""
        return cls(success=True, data=data, error=error, message=message, fallback=True)

    @property
    def is_success(self) -> bool:
        return self.success and not self.fallback

    @property
    def is_partial(self) -> bool:
        return self.success and self.fallback

    @property
    def is_error(self) -> bool:
        return not self.success


ServiceResult = AsyncResult


class AsyncError(Exception):
    """Root of the error kinds; error_code is stable, details are free-form"""

    error_code = "UNKNOWN_ERROR"

    def __init__(self, message: str, error_code: str = None, **details: Any):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = {k: v for k, v in details.items() if v is not None}


class ValidationError(AsyncError):
    """Bad input or a missing construction option"""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str = None):
        super().__init__(message, field=field)
        self.field = field


class ConfigurationError(AsyncError):
    """A backend binary or setting is not configured"""

    error_code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, setting: str = None):
        super().__init__(message, setting=setting)
        self.setting = setting


class ProcessError(AsyncError):
    """A subprocess failed to start, to be read, or to exit cleanly"""

    error_code = "PROCESS_ERROR"

    def __init__(
        self,
        message: str,
        return_code: int = None,
        stderr: str = None,
        error_code: str = None,
    ):
        super().__init__(
            message, error_code, return_code=return_code, stderr=stderr or None
        )
        self.return_code = return_code
        self.stderr = stderr


class ResourceError(AsyncError):
    """Filesystem conflict or I/O failure"""

    error_code = "RESOURCE_ERROR"

    def __init__(self, message: str, resource_path: str = None):
        super().__init__(message, resource_path=resource_path)
        self.resource_path = resource_path


class UnsupportedOperationError(AsyncError):
    """Contract operation the backend does not serve"""

    error_code = "UNSUPPORTED_OPERATION"

    def __init__(self, message: str, operation: str = None, backend: str = None):
        super().__init__(message, operation=operation, backend=backend)
        self.operation = operation
        self.backend = backend


class AsyncServiceContext:
    """Times one service operation and logs how it ended"""

    def __init__(self, service_name: str, operation_name: str):
        self.operation_name = operation_name
        self.logger = logging.getLogger(f"{service_name}.{operation_name}")
        self.started: Optional[float] = None

    @property
    def elapsed(self) -> float:
        if self.started is None:
            return 0.0
        return time.monotonic() - self.started

    async def __aenter__(self):
        self.started = time.monotonic()
        self.logger.debug("Starting %s", self.operation_name)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.logger.debug("Completed %s in %.2fs", self.operation_name, self.elapsed)
        elif issubclass(exc_type, asyncio.CancelledError):
            self.logger.info("Cancelled %s after %.2fs", self.operation_name, self.elapsed)
        else:
            self.logger.error(
                "Failed %s after %.2fs: %s", self.operation_name, self.elapsed, exc_val
            )
        return False


class AsyncServiceInterface(ABC):
    """Service with a named logger, timed operations and a health check"""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.logger = logging.getLogger(service_name)

    @asynccontextmanager
    async def operation_context(self, operation_name: str):
        async with AsyncServiceContext(self.service_name, operation_name) as ctx:
            yield ctx

    @abstractmethod
    async def health_check(self) -> AsyncResult[Dict[str, Any]]:
        pass


class AsyncCommand(ABC):
    """Caller-driven operation reporting progress as (message, level) pairs"""

    def __init__(
        self,
        progress_callback: Callable[[str, str], None] = None,
        completion_callback: Callable[[AsyncResult], None] = None,
    ):
        self.progress_callback = progress_callback
        self.completion_callback = completion_callback
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def execute(self) -> AsyncResult:
        pass

    async def run_with_progress(self) -> AsyncResult:
        """Run execute(); an escaping exception becomes a COMMAND_ERROR result"""
        self._update_progress("Starting operation...")
        try:
            result = await self.execute()
        except Exception as e:
            self.logger.exception("Command %s failed", self.__class__.__name__)
            result = AsyncResult.error(
                ProcessError(f"Command failed: {e}", error_code="COMMAND_ERROR")
            )
        if self.completion_callback:
            self.completion_callback(result)
        return result

    def _update_progress(self, message: str, level: str = "info"):
        if self.progress_callback:
            self.progress_callback(message, level)


__all__ = [
    "AsyncResult",
    "ServiceResult",
    "AsyncError",
    "ValidationError",
    "ConfigurationError",
    "ProcessError",
    "ResourceError",
    "UnsupportedOperationError",
    "AsyncServiceInterface",
    "AsyncCommand",
    "AsyncServiceContext",
]
