"""
Data models for version control projects
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional


@dataclass(frozen=True)
class ProjectIdentity:
    """Logical name and working directory of a synchronized project"""

    name: str
    base_dir: Path

    def __str__(self) -> str:
        return f"{self.name} ({self.base_dir})"


@dataclass(frozen=True)
class P4Connection:
    """Perforce server address, user and client workspace"""

    port: str
    user: str
    client: str

    @property
    def environment(self) -> Dict[str, str]:
        """The connection as P4 environment variables"""
        return {"P4PORT": self.port, "P4USER": self.user, "P4CLIENT": self.client}


@dataclass(frozen=True)
class GitRemote:
    """Remote repository a Git project clones from"""

    url: str
    # Branch requested at construction; None means the remote default
    branch: Optional[str] = None
