"""
Utility functions for file system operations and string sanitization.

This module provides helper functions for:
- Package logging setup
- Turning generated paper titles into safe upload filenames
- Ensuring directory creation
- Creating and removing per-job scratch directories
"""

from __future__ import annotations

import logging
import re
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Anything that is not an ASCII letter or digit becomes an underscore
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9]")
REPEATED_UNDERSCORES = re.compile(r"_+")

MAX_TITLE_LENGTH = 50
JOB_ID_FRAGMENT = 8


def setup_logging(name: str, log_level: str = "INFO") -> logging.Logger:
    """Attach a stream handler to the package logger (once) and set its level."""
    package_logger = logging.getLogger(name)
    package_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        package_logger.addHandler(handler)

    return package_logger


def sanitize_title(title: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    """
    Generate a filename-safe stem from a paper title.

    Args:
        title: The extracted paper title
        max_length: Maximum length of the returned stem

    Returns:
        The title with unsafe characters replaced by single underscores,
        truncated to ``max_length`` characters

    Example:
        >>> sanitize_title("Quantum Toast: A Study!")
        "Quantum_Toast_A_Study_"
    """
    cleaned = SANITIZE_PATTERN.sub("_", title)
    cleaned = REPEATED_UNDERSCORES.sub("_", cleaned)
    return cleaned[:max_length]


def build_pdf_filename(title: str, job_id: str) -> str:
    """
    Build the object name used when uploading a compiled paper.

    The short job id fragment keeps names unique even for identical titles.
    """
    return f"{sanitize_title(title)}-{job_id[:JOB_ID_FRAGMENT]}.pdf"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def make_job_workdir(job_id: str, root: Optional[Path] = None) -> Path:
    """Create a fresh scratch directory namespaced by the job id."""
    if root is not None:
        ensure_directory(root)
    return Path(tempfile.mkdtemp(prefix=f"tmp-{job_id[:JOB_ID_FRAGMENT]}-", dir=root))


def remove_directory(path: Path) -> None:
    """
    Remove a scratch directory and the files inside it.

    Each file is deleted individually; a failure is logged and the remaining
    files are still removed.
    """
    if not path.exists():
        return

    for child in path.iterdir():
        try:
            if child.is_dir():
                remove_directory(child)
            else:
                child.unlink()
        except OSError as exc:
            logger.error(f"Failed to delete {child}: {exc}")

    try:
        path.rmdir()
        logger.info(f"Cleaned up directory: {path}")
    except OSError as exc:
        logger.error(f"Error cleaning up directory {path}: {exc}")
