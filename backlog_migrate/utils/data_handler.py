"""Data handler module for workspace files.

This module provides a consistent interface for reading and writing the
JSON, JSON-lines and content files of a migration workspace. Rewrites are
atomic: data goes to a temporary file in the target directory which then
replaces the target, so readers never observe a half written file.
"""

import os
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path

from pydantic import BaseModel, ValidationError

from backlog_migrate import config
from backlog_migrate.models.migration_error import ItemStoreError

DEFAULT_MAX_LINE_BYTES = 1024 * 1024


def atomic_write_text(path: Path, text: str) -> None:
    """Atomically replace a file with the given text.

    Args:
        path: Target file, parent directories are created as needed
        text: Content written as UTF-8 without newline translation

    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        newline="",
        dir=path.parent,
        delete=False,
        suffix=".tmp",
    ) as temp_file:
        temp_path = Path(temp_file.name)
        try:
            temp_file.write(text)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        except BaseException:
            temp_file.close()
            temp_path.unlink(missing_ok=True)
            raise

    try:
        temp_path.replace(path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def read_text(path: Path) -> str:
    """Read a content file exactly as it was written."""
    with path.open("r", encoding="utf-8", newline="") as f:
        return f.read()


def save_model(model: BaseModel, path: Path) -> None:
    """Atomically save a Pydantic model as indented JSON.

    Raises:
        ItemStoreError: If saving fails

    """
    try:
        atomic_write_text(path, model.model_dump_json(indent=2) + "\n")
    except OSError as e:
        msg = f"Failed to save data to {path}"
        raise ItemStoreError(msg) from e
    config.logger.debug("Saved data to %s", path)


def load_model[T: BaseModel](model_class: type[T], path: Path) -> T:
    """Load a JSON file into a Pydantic model.

    Args:
        model_class: Pydantic model class to load into
        path: File to load from

    Returns:
        Instance of model_class

    Raises:
        FileNotFoundError: If the file doesn't exist
        ItemStoreError: If the file cannot be parsed

    """
    if not path.exists():
        msg = f"File not found: {path}"
        raise FileNotFoundError(msg)

    try:
        return model_class.model_validate_json(read_text(path))
    except (OSError, ValidationError) as e:
        msg = f"Failed to load data from {path}: {e}"
        raise ItemStoreError(msg) from e


def iter_jsonl[T: BaseModel](
    model_class: type[T],
    path: Path,
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
) -> Iterator[T]:
    """Stream records from a JSON-lines file.

    Lines are read with an explicit size limit so a corrupt file cannot make
    the reader buffer unbounded data.

    Args:
        model_class: Pydantic model class of each record
        path: JSON-lines file
        max_line_bytes: Maximum size of one record in bytes

    Yields:
        One model instance per non-empty line

    Raises:
        ItemStoreError: If a line is too long or cannot be parsed

    """
    with path.open("rb") as f:
        line_number = 0
        while True:
            raw = f.readline(max_line_bytes + 1)
            if not raw:
                return
            line_number += 1
            if len(raw) > max_line_bytes and not raw.endswith(b"\n"):
                msg = f"{path}:{line_number}: line exceeds {max_line_bytes} bytes"
                raise ItemStoreError(msg)
            line = raw.strip()
            if not line:
                continue
            try:
                yield model_class.model_validate_json(line)
            except ValidationError as e:
                msg = f"{path}:{line_number}: invalid record: {e}"
                raise ItemStoreError(msg) from e


def write_jsonl(path: Path, records: Iterable[BaseModel]) -> None:
    """Atomically rewrite a JSON-lines file with the given records.

    Raises:
        ItemStoreError: If writing fails

    """
    text = "".join(record.model_dump_json() + "\n" for record in records)
    try:
        atomic_write_text(path, text)
    except OSError as e:
        msg = f"Failed to write {path}"
        raise ItemStoreError(msg) from e


def append_jsonl(path: Path, record: BaseModel) -> None:
    """Append one record to a JSON-lines file.

    Raises:
        ItemStoreError: If writing fails

    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(record.model_dump_json() + "\n")
            f.flush()
    except OSError as e:
        msg = f"Failed to append to {path}"
        raise ItemStoreError(msg) from e
