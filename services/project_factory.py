"""
Factory for selecting the version control project implementation

The backend set is closed: "p4" builds a PerforceProject and "git" a
GitProject.
"""

from pathlib import Path
from typing import Dict, Mapping, Optional, Type, Union

from config.config import BackendConfig
from services.git_project import GitProject
from services.perforce_project import PerforceProject
from services.vcs_project import OutputCallback, VersionControlProject
from utils.async_base import ValidationError

PROJECT_CLASSES: Dict[str, Type[VersionControlProject]] = {
    PerforceProject.PROJECT_TYPE: PerforceProject,
    GitProject.PROJECT_TYPE: GitProject,
}

PROJECT_TYPES = tuple(PROJECT_CLASSES)


def create_project(
    project_type: str,
    name: str,
    base_dir: Union[str, Path],
    options: Optional[Mapping[str, str]] = None,
    backends: Optional[BackendConfig] = None,
    output_callback: Optional[OutputCallback] = None,
) -> VersionControlProject:
    """
    Build the project variant registered for project_type

    Raises:
        ValidationError: Unknown project type, bad base directory or missing option
        ConfigurationError: The backend binary is not configured
    """
    project_class = PROJECT_CLASSES.get((project_type or "").strip().lower())
    if project_class is None:
        raise ValidationError(
            f"Unknown project type '{project_type}'; expected one of "
            f"{', '.join(PROJECT_TYPES)}",
            field="type",
        )
    return project_class(
        name,
        base_dir,
        options or {},
        backends=backends,
        output_callback=output_callback,
    )
