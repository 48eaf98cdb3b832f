"""
Project configuration for reqtrace.

Settings come from an optional reqtrace.env in the project root. Every key
has a default, so a project without the file works out of the box.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from . import envparse
from .constants import (
    ARCHIVE_FILE,
    CONFIG_FILE,
    DEFAULT_ID_PREFIX,
    DEFAULT_SCAN_WORKERS,
    DEFAULT_TEST_GLOBS,
    ID_PREFIX_PATTERN,
    JOURNAL_FILE,
    REQUIREMENTS_FILE,
)

logger = logging.getLogger(__name__)


@dataclass
class ProjectConfig:
    """Project-level configuration from reqtrace.env"""
    root: Path
    requirements_file: str = REQUIREMENTS_FILE  # Relative to root
    archive_file: str = ARCHIVE_FILE  # Relative to root
    test_globs: list[str] = field(default_factory=lambda: list(DEFAULT_TEST_GLOBS))
    scan_workers: int = DEFAULT_SCAN_WORKERS
    id_prefix: str = DEFAULT_ID_PREFIX  # Used by 'init' for new stores

    @property
    def requirements_path(self) -> Path:
        return self.root / self.requirements_file

    @property
    def archive_path(self) -> Path:
        return self.root / self.archive_file

    @property
    def journal_path(self) -> Path:
        return self.requirements_path.parent / JOURNAL_FILE


def _parse_globs(value: str) -> list[str]:
    globs = [g.strip() for g in value.split(",") if g.strip()]
    return globs or list(DEFAULT_TEST_GLOBS)


def _parse_workers(value: str) -> int:
    try:
        workers = int(value)
    except ValueError:
        workers = 0
    if workers < 1:
        logger.warning(f"Invalid SCAN_WORKERS '{value}', using {DEFAULT_SCAN_WORKERS}")
        return DEFAULT_SCAN_WORKERS
    return workers


def load_project_config(root: Path) -> ProjectConfig:
    """Load reqtrace.env from root and return ProjectConfig.

    Raises:
        ValueError: If reqtrace.env exists but is malformed
    """
    env_path = root / CONFIG_FILE
    env = envparse.load_env(env_path) if env_path.exists() else {}

    id_prefix = env.get("ID_PREFIX", DEFAULT_ID_PREFIX)
    if not ID_PREFIX_PATTERN.match(id_prefix):
        logger.warning(f"Invalid ID_PREFIX '{id_prefix}', using {DEFAULT_ID_PREFIX}")
        id_prefix = DEFAULT_ID_PREFIX

    return ProjectConfig(
        root=root,
        requirements_file=env.get("REQUIREMENTS_FILE", REQUIREMENTS_FILE),
        archive_file=env.get("ARCHIVE_FILE", ARCHIVE_FILE),
        test_globs=_parse_globs(env.get("TEST_GLOB", "")),
        scan_workers=_parse_workers(env.get("SCAN_WORKERS", str(DEFAULT_SCAN_WORKERS))),
        id_prefix=id_prefix,
    )
