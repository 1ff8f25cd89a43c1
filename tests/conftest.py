"""
Pytest configuration and fixtures for VCS Sync Tools tests
"""

import asyncio
import os
import sys

import pytest

# Add parent directory to path to import modules
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

from config.config import BackendConfig
from utils.async_base import ProcessError

FAKE_P4_BIN = "/opt/vcs/bin/p4"
FAKE_GIT_BIN = "/opt/vcs/bin/git"


@pytest.fixture
def backends():
    """Backend configuration pointing at fake binaries"""
    return BackendConfig(p4_bin=FAKE_P4_BIN, git_bin=FAKE_GIT_BIN)


@pytest.fixture
def python_script(tmp_path):
    """Write a python script and return the command string that runs it"""

    def factory(source: str, name: str = "script.py") -> str:
        script = tmp_path / name
        script.write_text(source, encoding="utf-8")
        return f"{sys.executable} {script}"

    return factory


def _matches(fragment: str, command: str) -> bool:
    wanted = fragment.split()
    tokens = command.split()
    return any(
        tokens[i : i + len(wanted)] == wanted
        for i in range(len(tokens) - len(wanted) + 1)
    )


class FakeRunner:
    """Stands in for run_lines_async / run_bytes_async and records every command"""

    def __init__(self):
        self.commands = []
        self.cwds = []
        self._line_scripts = []
        self._byte_scripts = []

    def on_lines(self, fragment: str, lines=(), return_code: int = 0):
        """Script the output of commands containing the given token sequence"""
        self._line_scripts.append((fragment, list(lines), return_code))

    def on_bytes(self, fragment: str, data: bytes = b"", return_code: int = 0):
        self._byte_scripts.append((fragment, data, return_code))

    def _record(self, command, cwd):
        self.commands.append(command)
        self.cwds.append(cwd)

    @staticmethod
    def _fail(command, return_code):
        raise ProcessError(
            f"{command.split()[0]} exited with status {return_code}",
            return_code=return_code,
            error_code="PROCESS_EXIT_ERROR",
        )

    async def run_lines(self, command, on_line=None, cwd=None):
        self._record(command, cwd)
        for fragment, lines, return_code in self._line_scripts:
            if _matches(fragment, command):
                if on_line is not None:
                    for line in lines:
                        on_line(line)
                if return_code:
                    self._fail(command, return_code)
                return

    async def run_bytes(self, command, on_stream=None, cwd=None):
        self._record(command, cwd)
        for fragment, data, return_code in self._byte_scripts:
            if _matches(fragment, command):
                break
        else:
            data, return_code = b"", 0

        reader = asyncio.StreamReader()
        reader.feed_data(data)
        reader.feed_eof()
        result = await on_stream(reader) if on_stream is not None else None
        if return_code:
            self._fail(command, return_code)
        return result


@pytest.fixture
def fake_runner(monkeypatch):
    """Replace the process runner inside the backend modules"""
    runner = FakeRunner()
    for module in ("services.git_project", "services.perforce_project"):
        monkeypatch.setattr(f"{module}.run_lines_async", runner.run_lines)
        monkeypatch.setattr(f"{module}.run_bytes_async", runner.run_bytes)
    return runner


# Test markers
def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


# Logging configuration for tests
@pytest.fixture(autouse=True)
def configure_logging():
    """Configure logging for tests"""
    import logging

    # Set log level for tests
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
