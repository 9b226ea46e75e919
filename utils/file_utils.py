"""
File Utilities Module
Path conversion and file helpers shared by the record store and the engine.
"""

import os
from pathlib import Path
from typing import Optional


def to_relative(base_dir: str | Path, path: str | Path) -> str:
    """
    Express a path relative to base_dir.

    Purely lexical: nothing is read from the file system and symlinks are
    not followed. The result always uses forward slashes so records stay
    portable between platforms.

    Args:
        base_dir: Directory the result should be relative to
        path: Path to convert (absolute, or relative to the working directory)

    Returns:
        Relative path string, e.g. 'screenshots/home_before.png'
    """
    relative = os.path.relpath(os.path.abspath(path), os.path.abspath(base_dir))
    return Path(relative).as_posix()


def to_absolute(base_dir: str | Path, path: str | Path) -> Path:
    """
    Resolve a path stored relative to base_dir into an absolute path.

    Absolute inputs are returned normalized. Like to_relative, this never
    touches the file system.
    """
    return Path(os.path.normpath(os.path.join(os.path.abspath(base_dir), path)))


def optional_relative(base_dir: str | Path, path: Optional[str | Path]) -> Optional[str]:
    if path is None:
        return None
    return to_relative(base_dir, path)


def optional_absolute(base_dir: str | Path, path: Optional[str | Path]) -> Optional[Path]:
    if path is None:
        return None
    return to_absolute(base_dir, path)


def suffixed_path(path: str | Path, suffix: str) -> Path:
    """Return a sibling path with suffix appended to the stem, keeping the extension."""
    path = Path(path)
    return path.with_name(f"{path.stem}{suffix}{path.suffix}")


def ensure_directory(directory: Path) -> None:
    """Ensure directory exists, create if necessary."""
    directory.mkdir(parents=True, exist_ok=True)


def read_file_content(file_path: Path) -> str:
    """
    Read a text file as UTF-8.

    Raises:
        FileNotFoundError: If file doesn't exist
        OSError: If file can't be read
    """
    with open(file_path, 'r', encoding='utf-8') as f:
        return f.read()


def write_file_content(file_path: Path, content: str) -> None:
    """Replace the whole file with content, creating parent directories."""
    ensure_directory(file_path.parent)
    with open(file_path, 'w', encoding='utf-8') as f:
        f.write(content)
