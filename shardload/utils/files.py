"""
File system helpers shared by logging setup and checkpoint persistence.
"""
import os
import tempfile
from os import remove, scandir, path
from shutil import rmtree


def clear_latest_items(dir_path: str, n_to_keep: int) -> None:
    """
    Remove the oldest entries of a directory, keeping the `n_to_keep` newest.

    Entries are ordered by modification time. Files, symlinks and folders are
    removed; anything else is left alone.

    Raises:
        FileNotFoundError: If `dir_path` does not exist.
    """
    if not path.exists(dir_path):
        raise FileNotFoundError(f"Path not found: {dir_path}")

    entries = sorted(scandir(dir_path), key=lambda entry: entry.stat().st_mtime)
    for entry in entries[:max(len(entries) - n_to_keep, 0)]:
        if entry.is_file() or entry.is_symlink():
            remove(entry.path)
        elif entry.is_dir():
            rmtree(entry.path)


def atomic_write_text(file_path: str, content: str, encoding: str = "utf-8") -> None:
    """
    Write `content` so that readers only ever see the old or the new file.

    The data goes to a temporary file in the target directory, is fsynced and
    then renamed over the destination.
    """
    directory = path.dirname(path.abspath(file_path))
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        prefix=f".{path.basename(file_path)}.", suffix=".tmp", dir=directory
    )
    try:
        with os.fdopen(fd, "w", encoding=encoding) as tmp_file:
            tmp_file.write(content)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        os.replace(tmp_path, file_path)
    except BaseException:
        if path.exists(tmp_path):
            remove(tmp_path)
        raise
