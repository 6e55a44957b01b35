"""Crash-safe writes for checkpoint records and config files.

Content goes to a hidden temp file next to the target, is flushed to disk,
then ``os.replace``-d over the target. Readers see either the old file or
the new one, never a partial write.

Failures come back as ``Err(WardenError)``; the checkpoint store converts
them to ``OSError`` for its callers.

Files default to 0o600 and new parent directories to 0o700.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from warden.errors import Err, Ok, Result, WardenError

logger = logging.getLogger(__name__)

FILE_MODE = 0o600
DIR_MODE = 0o700


def atomic_write_text(path: Path, content: str, mode: int = FILE_MODE) -> Result[Path, WardenError]:
    """Write ``content`` to ``path`` in one atomic step.

    Returns:
        Ok(path), or Err with code ATOMIC_PERMISSION_DENIED / ATOMIC_WRITE_FAILED
    """
    path = Path(path)
    fd = None
    temp_name = None

    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")

        data = content.encode("utf-8")
        while data:
            written = os.write(fd, data)
            data = data[written:]
        os.fsync(fd)
        os.close(fd)
        fd = None

        os.chmod(temp_name, mode)
        os.replace(temp_name, path)
    except OSError as e:
        _discard(fd, temp_name)
        if isinstance(e, PermissionError):
            logger.error(f"Permission denied writing {path}: {e}")
            return Err(
                WardenError(
                    code="ATOMIC_PERMISSION_DENIED",
                    message=f"Permission denied writing to {path}",
                    context={"path": str(path)},
                )
            )
        logger.error(f"Write failed for {path}: {e}")
        return Err(
            WardenError(
                code="ATOMIC_WRITE_FAILED",
                message=f"Failed to write {path}: {e}",
                context={"path": str(path), "error": str(e)},
            )
        )

    logger.debug(f"Wrote {path} atomically")
    return Ok(path)


def atomic_write_json(
    path: Path,
    data: Any,
    mode: int = FILE_MODE,
    indent: int | None = 2,
) -> Result[Path, WardenError]:
    """Serialize ``data`` as JSON (UTF-8, not ASCII-escaped) and write it atomically."""
    try:
        content = json.dumps(data, indent=indent, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.error(f"JSON serialization failed for {path}: {e}")
        return Err(
            WardenError(
                code="JSON_SERIALIZATION_FAILED",
                message=f"Failed to serialize data to JSON: {e}",
                context={"path": str(path), "error": str(e)},
            )
        )

    return atomic_write_text(path, content, mode)


def atomic_write_yaml(path: Path, data: Any, mode: int = FILE_MODE) -> Result[Path, WardenError]:
    """Serialize ``data`` with ``yaml.safe_dump`` (block style, key order kept) and write it atomically."""
    try:
        content = yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
    except yaml.YAMLError as e:
        logger.error(f"YAML serialization failed for {path}: {e}")
        return Err(
            WardenError(
                code="YAML_SERIALIZATION_FAILED",
                message=f"Failed to serialize data to YAML: {e}",
                context={"path": str(path), "error": str(e)},
            )
        )

    return atomic_write_text(path, content, mode)


def _discard(fd: int | None, temp_name: str | None) -> None:
    if fd is not None:
        try:
            os.close(fd)
        except OSError:
            pass
    if temp_name is not None:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temp file {temp_name}: {e}")
