"""
Tests for async utilities - command parsing and subprocess output streaming
"""

import os
import sys
import asyncio
import threading

import pytest

# Add parent directory to path to import modules
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

from config.config import ServiceConfig
from utils.async_base import ProcessError, ValidationError
from utils.async_utils import (
    ParsedCommand,
    parse_command,
    run_bytes_async,
    run_in_executor,
    run_lines_async,
)

# Commands are whitespace tokenized, so the interpreter path must not contain spaces
requires_plain_interpreter = pytest.mark.skipif(
    " " in sys.executable, reason="interpreter path contains spaces"
)

# Upper bound for runs that must fail rather than hang
ERROR_PATH_TIMEOUT = 30


class TestParseCommand:
    """Test cases for parse_command"""

    def test_environment_prefix(self):
        """Leading KEY=VALUE tokens become the environment overlay"""
        parsed = parse_command("A=1 B=2 echo hello")

        assert parsed.env == {"A": "1", "B": "2"}
        assert parsed.executable == "echo"
        assert parsed.args == ["hello"]

    def test_no_environment(self):
        """A plain command has an empty overlay"""
        parsed = parse_command("ls -a -l")

        assert parsed == ParsedCommand(env={}, executable="ls", args=["-a", "-l"])
        assert parsed.argv == ["ls", "-a", "-l"]

    def test_value_containing_equals(self):
        """Only the first '=' separates key from value"""
        parsed = parse_command("OPTS=a=b tool")

        assert parsed.env == {"OPTS": "a=b"}
        assert parsed.executable == "tool"

    def test_arguments_after_executable_keep_equals(self):
        """The scan stops at the executable; later tokens are arguments"""
        parsed = parse_command("P4PORT=srv:1666 p4 set X=1")

        assert parsed.env == {"P4PORT": "srv:1666"}
        assert parsed.executable == "p4"
        assert parsed.args == ["set", "X=1"]

    def test_extra_whitespace(self):
        """Runs of whitespace separate tokens"""
        parsed = parse_command("  A=1\t echo   hello  world ")

        assert parsed.env == {"A": "1"}
        assert parsed.args == ["hello", "world"]

    @pytest.mark.parametrize("command", ["", "   ", None])
    def test_empty_command(self, command):
        """An empty command cannot be run"""
        with pytest.raises(ValidationError):
            parse_command(command)

    def test_only_assignments(self):
        """A command needs an executable after the assignments"""
        with pytest.raises(ValidationError):
            parse_command("A=1 B=2")

    def test_empty_variable_name(self):
        """'=value' is not a valid assignment"""
        with pytest.raises(ValidationError):
            parse_command("=1 echo hi")


@requires_plain_interpreter
class TestRunLinesAsync:
    """Test cases for run_lines_async"""

    @pytest.mark.asyncio
    async def test_collects_both_streams(self, python_script):
        """Three stdout lines and two stderr lines arrive as five callbacks"""
        command = python_script(
            "import sys\n"
            "for i in range(3):\n"
            "    print(f'out{i}', flush=True)\n"
            "for i in range(2):\n"
            "    print(f'err{i}', file=sys.stderr, flush=True)\n"
        )
        lines = []
        lock = threading.Lock()

        def on_line(line):
            with lock:
                lines.append(line)

        result = await run_lines_async(command, on_line)

        assert result is None
        assert len(lines) == 5
        assert [l for l in lines if l.startswith("out")] == ["out0", "out1", "out2"]
        assert [l for l in lines if l.startswith("err")] == ["err0", "err1"]

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, python_script):
        """A failing command raises even when its output was captured"""
        command = python_script(
            "import sys\nprint('partial output')\nsys.exit(3)\n"
        )
        lines = []

        with pytest.raises(ProcessError) as exc_info:
            await asyncio.wait_for(
                run_lines_async(command, lines.append), ERROR_PATH_TIMEOUT
            )

        assert lines == ["partial output"]
        assert exc_info.value.return_code == 3
        assert exc_info.value.error_code == "PROCESS_EXIT_ERROR"

    @pytest.mark.asyncio
    async def test_exit_error_carries_stderr_tail(self, python_script):
        """The last stderr lines are attached to the exit error"""
        command = python_script(
            "import sys\n"
            "for i in range(50):\n"
            "    print(f'warning {i}', file=sys.stderr)\n"
            "print('fatal: no such depot', file=sys.stderr)\n"
            "sys.exit(1)\n"
        )

        with pytest.raises(ProcessError) as exc_info:
            await asyncio.wait_for(run_lines_async(command), ERROR_PATH_TIMEOUT)

        stderr_lines = exc_info.value.stderr.splitlines()
        assert stderr_lines[-1] == "fatal: no such depot"
        assert len(stderr_lines) == 20
        assert exc_info.value.details["stderr"] == exc_info.value.stderr

    @pytest.mark.asyncio
    async def test_environment_overlay_reaches_child(self, python_script):
        """Assignments in front of the executable are visible to the child"""
        command = python_script(
            "import os\nprint(os.environ['VCS_SYNC_TEST_VALUE'])\n"
            "print(os.environ.get('PATH') is not None)\n"
        )
        lines = []

        await run_lines_async(f"VCS_SYNC_TEST_VALUE=hello {command}", lines.append)

        assert lines == ["hello", "True"]

    @pytest.mark.asyncio
    async def test_output_drained_without_callback(self, python_script):
        """Output larger than a pipe buffer does not block the child"""
        command = python_script(
            "import sys\n"
            "chunk = 'x' * 1023 + '\\n'\n"
            "for _ in range(1024):\n"
            "    sys.stdout.write(chunk)\n"
            "    sys.stderr.write(chunk)\n"
        )

        await run_lines_async(command)

    @pytest.mark.asyncio
    async def test_working_directory(self, python_script, tmp_path):
        """cwd sets the child's working directory"""
        work = tmp_path / "work"
        work.mkdir()
        command = python_script("import os\nprint(os.getcwd())\n")
        lines = []

        await run_lines_async(command, lines.append, cwd=str(work))

        assert os.path.samefile(lines[0], work)

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        """A binary that cannot be started is reported as a start failure"""
        with pytest.raises(ProcessError) as exc_info:
            await run_lines_async("/nonexistent/vcs-sync-binary --version")

        assert exc_info.value.error_code == "PROCESS_START_ERROR"

    @pytest.mark.asyncio
    async def test_invalid_command(self):
        """Parsing errors surface before anything is started"""
        with pytest.raises(ValidationError):
            await run_lines_async("ONLY=env")

    @pytest.mark.asyncio
    async def test_line_too_long(self, python_script, monkeypatch):
        """A line beyond the reader limit is a read failure"""
        monkeypatch.setattr(
            "utils.async_utils.get_service_config",
            lambda: ServiceConfig(stream_line_limit=1024),
        )
        command = python_script("import sys\nsys.stdout.write('y' * 100000)\n")

        with pytest.raises(ProcessError) as exc_info:
            await asyncio.wait_for(
                run_lines_async(command, lambda line: None), ERROR_PATH_TIMEOUT
            )

        assert exc_info.value.error_code == "STREAM_READ_ERROR"

    @pytest.mark.asyncio
    async def test_read_failure_with_output_still_pending(
        self, python_script, monkeypatch
    ):
        """A child still writing when reading fails is killed and reaped"""
        monkeypatch.setattr(
            "utils.async_utils.get_service_config",
            lambda: ServiceConfig(stream_line_limit=1024),
        )
        command = python_script(
            "import sys\n"
            "sys.stdout.write('y' * 100000 + '\\n')\n"
            "sys.stdout.write('z' * (16 * 1024 * 1024))\n"
            "sys.stderr.write('e' * (4 * 1024 * 1024))\n"
        )

        with pytest.raises(ProcessError) as exc_info:
            await asyncio.wait_for(run_lines_async(command), ERROR_PATH_TIMEOUT)

        assert exc_info.value.error_code == "STREAM_READ_ERROR"

    @pytest.mark.asyncio
    async def test_callback_error_kills_child(self, python_script):
        """An exception from on_line reaches the caller while output is pending"""
        command = python_script(
            "import sys\n"
            "for _ in range(200000):\n"
            "    sys.stdout.write('x' * 99 + '\\n')\n"
        )

        def on_line(line):
            raise RuntimeError("consumer failed")

        with pytest.raises(RuntimeError, match="consumer failed"):
            await asyncio.wait_for(run_lines_async(command, on_line), ERROR_PATH_TIMEOUT)

    @pytest.mark.asyncio
    async def test_undecodable_bytes_are_replaced(self, python_script):
        """Invalid UTF-8 does not abort the run"""
        command = python_script(
            "import sys\nsys.stdout.buffer.write(b'bad \\xff byte\\n')\n"
        )
        lines = []

        await run_lines_async(command, lines.append)

        assert lines == ["bad \ufffd byte"]


@requires_plain_interpreter
class TestRunBytesAsync:
    """Test cases for run_bytes_async"""

    @pytest.mark.asyncio
    async def test_stream_handed_to_callback(self, python_script):
        """The callback reads raw stdout bytes and its result is returned"""
        command = python_script(
            "import sys\nsys.stdout.buffer.write(b'\\x00\\x01binary')\n"
            "sys.stderr.write('ignored')\n"
        )

        async def read_all(stream):
            return await stream.read()

        data = await run_bytes_async(command, read_all)

        assert data == b"\x00\x01binary"

    @pytest.mark.asyncio
    async def test_unread_output_is_drained(self, python_script):
        """A callback that stops early does not leave the child blocked"""
        command = python_script(
            "import sys\nsys.stdout.buffer.write(b'z' * (4 * 1024 * 1024))\n"
        )

        async def read_head(stream):
            return await stream.readexactly(10)

        data = await run_bytes_async(command, read_head)

        assert data == b"z" * 10

    @pytest.mark.asyncio
    async def test_without_callback(self, python_script):
        """Output is discarded when no callback is given"""
        command = python_script("print('hello')\n")

        assert await run_bytes_async(command) is None

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, python_script):
        """Exit status is checked after the stream is consumed"""
        command = python_script("import sys\nprint('data')\nsys.exit(2)\n")

        with pytest.raises(ProcessError) as exc_info:
            await asyncio.wait_for(run_bytes_async(command), ERROR_PATH_TIMEOUT)

        assert exc_info.value.return_code == 2

    @pytest.mark.asyncio
    async def test_callback_error_propagates(self, python_script):
        """Errors raised by the callback reach the caller"""
        command = python_script("print('hello')\n")

        async def broken(stream):
            raise RuntimeError("consumer failed")

        with pytest.raises(RuntimeError, match="consumer failed"):
            await asyncio.wait_for(run_bytes_async(command, broken), ERROR_PATH_TIMEOUT)

    @pytest.mark.asyncio
    async def test_callback_error_with_output_pending(self, python_script):
        """A consumer failing mid-stream does not leave the caller waiting on the child"""
        command = python_script(
            "import sys\nsys.stdout.buffer.write(b'q' * (16 * 1024 * 1024))\n"
        )

        async def broken(stream):
            await stream.readexactly(10)
            # Let the child fill the pipe and the reader buffer
            await asyncio.sleep(0.5)
            raise RuntimeError("consumer failed")

        with pytest.raises(RuntimeError, match="consumer failed"):
            await asyncio.wait_for(run_bytes_async(command, broken), ERROR_PATH_TIMEOUT)


class TestRunInExecutor:
    """Test cases for run_in_executor"""

    @pytest.mark.asyncio
    async def test_run_sync_function(self):
        """Test running synchronous function in executor"""

        def sync_func(x, y):
            return x + y

        result = await run_in_executor(sync_func, 5, 3)
        assert result == 8

    @pytest.mark.asyncio
    async def test_run_with_kwargs(self):
        """Test running function with keyword arguments"""

        def sync_func(a, b=10):
            return a * b

        result = await run_in_executor(sync_func, 5, b=20)
        assert result == 100

    @pytest.mark.asyncio
    async def test_runs_off_the_loop_thread(self):
        """The function runs on a worker thread"""
        loop_thread = threading.get_ident()

        worker_thread = await run_in_executor(threading.get_ident)

        assert worker_thread != loop_thread

    def test_requires_running_loop(self):
        """Driving the coroutine outside an event loop fails fast"""
        coro = run_in_executor(lambda: None)
        with pytest.raises(RuntimeError, match="No async event loop"):
            coro.send(None)
