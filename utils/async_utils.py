"""
Async utilities for driving external command line tools

Commands are plain strings in the ``KEY=VAL KEY2=VAL2 binary arg1 arg2`` shape.
Leading assignments are merged onto the inherited environment, the first token
without ``=`` is the executable and the rest are its arguments. There is no
quoting support.
"""

import asyncio
import contextlib
import functools
import logging
import os
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional

from config.config import get_service_config
from utils.async_base import ProcessError, ValidationError

# Set up logging
logger = logging.getLogger(__name__)

# Global thread pool executor for blocking file work
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="async_worker")

# Chunk size used when discarding unread output
_DRAIN_CHUNK = 64 * 1024

# stderr lines kept for the exit error
_STDERR_TAIL_LINES = 20

LineCallback = Callable[[str], None]
StreamCallback = Callable[[asyncio.StreamReader], Awaitable[Any]]


@dataclass
class ParsedCommand:
    """A command string split into environment overlay, executable and arguments"""

    env: Dict[str, str] = field(default_factory=dict)
    executable: str = ""
    args: List[str] = field(default_factory=list)

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.args]


def parse_command(command: str) -> ParsedCommand:
    """
    Split a command string into its parts

    "A=1 B=2 ls -a -l" parses to env {"A": "1", "B": "2"}, executable "ls"
    and args ["-a", "-l"].
    """
    tokens = (command or "").split()
    if not tokens:
        raise ValidationError("Command is empty", field="command")

    env: Dict[str, str] = {}
    cmd_index = 0
    for token in tokens:
        if "=" not in token:
            break
        key, value = token.split("=", 1)
        if not key:
            raise ValidationError(
                f"Invalid environment assignment '{token}'", field="command"
            )
        env[key] = value
        cmd_index += 1

    if cmd_index >= len(tokens):
        raise ValidationError(
            f"Command has no executable: {command}", field="command"
        )

    return ParsedCommand(
        env=env, executable=tokens[cmd_index], args=tokens[cmd_index + 1 :]
    )


def _build_environment(overlay: Dict[str, str]) -> Dict[str, str]:
    env = os.environ.copy()
    env.update(overlay)
    return env


async def _start_process(
    parsed: ParsedCommand,
    cwd: Optional[str],
    stderr: int,
) -> asyncio.subprocess.Process:
    """Start the subprocess, mapping launch failures to ProcessError"""
    try:
        return await asyncio.create_subprocess_exec(
            parsed.executable,
            *parsed.args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=stderr,
            cwd=cwd,
            env=_build_environment(parsed.env),
            limit=get_service_config().stream_line_limit,
        )
    except OSError as e:
        raise ProcessError(
            f"Failed to start {parsed.executable}: {e}",
            error_code="PROCESS_START_ERROR",
        ) from e


async def _abort_process(process: asyncio.subprocess.Process) -> None:
    """
    Kill a child whose output can no longer be consumed and reap it

    wait() only returns once every pipe reports EOF, and a reader paused on a
    full buffer never sees it, so the pipes are drained after the kill.
    """
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    streams = [s for s in (process.stdout, process.stderr) if s is not None]
    await asyncio.gather(*(_drain(s) for s in streams), return_exceptions=True)
    await process.wait()


def _check_exit(
    parsed: ParsedCommand, return_code: int, stderr_tail: Iterable[str] = ()
) -> None:
    if return_code != 0:
        raise ProcessError(
            f"{parsed.executable} exited with status {return_code}",
            return_code=return_code,
            stderr="\n".join(stderr_tail),
            error_code="PROCESS_EXIT_ERROR",
        )


async def _watch_text_output(
    stream: asyncio.StreamReader,
    on_line: Optional[LineCallback],
    tail: Optional[Deque[str]] = None,
) -> None:
    """Read one stream to EOF, handing each decoded line to on_line"""
    while True:
        try:
            raw = await stream.readline()
        except (ValueError, OSError) as e:
            raise ProcessError(
                f"Failed reading process output: {e}", error_code="STREAM_READ_ERROR"
            ) from e
        if not raw:
            return
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if tail is not None:
            tail.append(line)
        if on_line is not None:
            on_line(line)


async def _drain(stream: asyncio.StreamReader) -> None:
    try:
        while await stream.read(_DRAIN_CHUNK):
            pass
    except OSError as e:
        raise ProcessError(
            f"Failed reading process output: {e}", error_code="STREAM_READ_ERROR"
        ) from e


async def run_lines_async(
    command: str,
    on_line: Optional[LineCallback] = None,
    cwd: Optional[str] = None,
) -> None:
    """
    Run a command and deliver its output line by line

    stdout and stderr are read concurrently by two reader tasks; lines keep
    their order within a stream but the two streams interleave freely. Both
    streams are drained even without a callback so the child never blocks
    on a full pipe. The last stderr lines are attached to the exit error.

    Raises:
        ValidationError: If the command string cannot be parsed
        ProcessError: If the process fails to start, output cannot be read,
            or the process exits with a non-zero status
    """
    parsed = parse_command(command)
    logger.info("Running: %s", command)

    process = await _start_process(parsed, cwd, stderr=asyncio.subprocess.PIPE)

    stderr_tail: Deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
    readers = [
        asyncio.ensure_future(_watch_text_output(process.stdout, on_line)),
        asyncio.ensure_future(_watch_text_output(process.stderr, on_line, stderr_tail)),
    ]
    try:
        await asyncio.gather(*readers)
    except BaseException:
        for reader in readers:
            reader.cancel()
        # Readers must be gone before the pipes are drained
        await asyncio.gather(*readers, return_exceptions=True)
        await _abort_process(process)
        raise

    _check_exit(parsed, await process.wait(), stderr_tail)


async def run_bytes_async(
    command: str,
    on_stream: Optional[StreamCallback] = None,
    cwd: Optional[str] = None,
) -> Any:
    """
    Run a command and hand its raw stdout stream to on_stream

    stderr is discarded in this mode. Output left unread by the callback is
    drained before waiting for exit. Returns whatever on_stream returns.

    Raises:
        ValidationError: If the command string cannot be parsed
        ProcessError: If the process fails to start, output cannot be read,
            or the process exits with a non-zero status
    """
    parsed = parse_command(command)
    logger.info("Running: %s", command)

    process = await _start_process(parsed, cwd, stderr=asyncio.subprocess.DEVNULL)

    result = None
    try:
        if on_stream is not None:
            result = await on_stream(process.stdout)
        await _drain(process.stdout)
    except BaseException:
        await _abort_process(process)
        raise

    _check_exit(parsed, await process.wait())
    return result


async def run_in_executor(func: Callable, *args, **kwargs) -> Any:
    """
    Run a synchronous function in the thread pool executor

    Raises:
        RuntimeError: If no event loop is running
    """
    try:
        # Get the currently running event loop - fail fast if none exists
        loop = asyncio.get_running_loop()
    except RuntimeError as e:
        logger.error("No event loop available for run_in_executor")
        raise RuntimeError("No async event loop available") from e
    bound_func = functools.partial(func, *args, **kwargs)
    return await loop.run_in_executor(_executor, bound_func)


def shutdown_all(wait: bool = False):
    """Shut down the shared thread pool"""
    logger.debug("Shutting down async worker pool")
    _executor.shutdown(wait=wait)
