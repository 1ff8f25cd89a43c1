#!/usr/bin/env python3
"""
Project sync runner - keeps a list of working copies up to date

Usage:
    python sync_projects.py projects.json [--once] [--interval SECONDS]

projects.json holds a list of entries such as
    {"name": "core", "type": "git", "base_dir": "/srv/src/core",
     "options": {"Url": "https://example.com/core.git", "Branch": "main"}}
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from config.config import UnifiedConfig, get_config
from commands.sync_commands import SyncProjectCommand
from services.project_factory import create_project
from services.vcs_project import VersionControlProject
from utils.async_base import AsyncError
from utils.async_utils import shutdown_all

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 300.0


def load_project_entries(path: Path) -> List[Dict[str, Any]]:
    """Read the project list from a JSON file"""
    with open(path, "r", encoding="utf-8") as f:
        entries = json.load(f)
    if not isinstance(entries, list):
        raise ValueError(f"{path} must contain a list of projects")
    return entries


def build_projects(entries: List[Dict[str, Any]]) -> List[VersionControlProject]:
    """Construct a project per entry, skipping entries that fail validation"""
    backends = get_config().backends
    projects = []
    for entry in entries:
        try:
            project = create_project(
                entry.get("type", ""),
                entry.get("name", ""),
                entry.get("base_dir", ""),
                entry.get("options") or {},
                backends=backends,
            )
        except AsyncError as e:
            logger.error("Skipping project %s: %s", entry.get("name", "?"), e)
            continue
        projects.append(project)
    return projects


def log_level(config: UnifiedConfig) -> int:
    """DEBUG mode wins over the configured level name"""
    if config.debug:
        return logging.DEBUG
    return getattr(logging, config.log_level, logging.INFO)


def _report_progress(message: str, level: str) -> None:
    levelno = {
        "error": logging.ERROR,
        "warning": logging.WARNING,
    }.get(level, logging.INFO)
    logger.log(levelno, message)


async def sync_once(projects: List[VersionControlProject]) -> int:
    """Sync every project in turn; returns the number of failures"""
    failures = 0
    for project in projects:
        command = SyncProjectCommand(project, progress_callback=_report_progress)
        result = await command.run_with_progress()
        if result.is_error:
            failures += 1
    return failures


async def run(projects: List[VersionControlProject], once: bool, interval: float) -> int:
    while True:
        failures = await sync_once(projects)
        if once:
            return failures
        logger.info("Next sync in %.0fs", interval)
        await asyncio.sleep(interval)


def main(argv=None) -> int:
    config = get_config()

    parser = argparse.ArgumentParser(description="Sync version control working copies")
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {config.version}"
    )
    parser.add_argument("projects", type=Path, help="JSON file listing the projects")
    parser.add_argument("--once", action="store_true", help="Sync once and exit")
    parser.add_argument(
        "--interval",
        type=float,
        default=DEFAULT_INTERVAL,
        help="Seconds between sync rounds (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=log_level(config),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        entries = load_project_entries(args.projects)
    except (OSError, ValueError) as e:
        logger.error("Cannot load project list: %s", e)
        return 2

    projects = build_projects(entries)
    if not projects:
        logger.error("No usable projects in %s", args.projects)
        return 2

    try:
        failures = asyncio.run(run(projects, args.once, args.interval))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    finally:
        shutdown_all()

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
