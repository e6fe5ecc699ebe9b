"""
Atomic file operations for the local key-value store.

Writes go to a temporary file in the target directory, are synced to disk and
then renamed over the target, so a reader never sees a partially written
file.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union


def atomic_write(file_path: Union[str, Path], content: str) -> None:
    """
    Write content to file atomically using temporary file + rename.

    File handles are always closed and the temporary file is removed, even
    on failure.

    Args:
        file_path: Target file path (string or Path object)
        content: Content to write to the file

    Raises:
        OSError: If directory creation, file write, or rename fails
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd = None
    temp_path = None

    try:
        # Same directory as the target so the rename stays on one filesystem
        temp_fd, temp_path = tempfile.mkstemp(
            dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
        )
        os.write(temp_fd, content.encode("utf-8"))
        os.fsync(temp_fd)
        os.close(temp_fd)
        temp_fd = None

        os.replace(temp_path, file_path)

    except Exception:
        if temp_fd is not None:
            try:
                os.close(temp_fd)
            except OSError:
                pass

        if temp_path is not None and os.path.exists(temp_path):
            try:
                os.unlink(temp_path)
            except OSError:
                pass

        raise


def atomic_write_json(file_path: Union[str, Path], data: Any) -> None:
    """Serialize ``data`` as indented, key-sorted JSON and write it atomically."""
    atomic_write(file_path, json.dumps(data, indent=2, sort_keys=True, default=str) + "\n")


def read_json(file_path: Union[str, Path], default: Any = None) -> Any:
    """
    Read a JSON file.

    Returns:
        The parsed value, or ``default`` when the file does not exist

    Raises:
        ValueError: If the file exists but is not valid JSON
    """
    file_path = Path(file_path)
    if not file_path.exists():
        return default
    text = file_path.read_text(encoding="utf-8")
    if not text.strip():
        return default
    return json.loads(text)
