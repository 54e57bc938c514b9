"""
Whole-file JSON snapshots.

Every cache and the credentials file are written as a complete document to a
temporary file in the same directory and then moved over the target with
os.replace(), so a crash mid-write leaves the previous snapshot intact.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: Any, *, mode: Optional[int] = None, indent: Optional[int] = None) -> None:
    """
    Serialize `data` to `path`, replacing any existing file in one step.

    Args:
        path: target file. Parent directories are created as needed.
        data: JSON-serialisable object.
        mode: optional permission bits applied before the replace (e.g. 0o600).
        indent: passed to json.dumps.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        "w",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        encoding="utf-8",
        delete=False,
    ) as f:
        tmp_path = Path(f.name)
        try:
            f.write(json.dumps(data, indent=indent))
            f.flush()
            os.fsync(f.fileno())
        except BaseException:
            f.close()
            tmp_path.unlink(missing_ok=True)
            raise

    try:
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def read_json(path: Path, default: Any) -> Any:
    """
    Load a JSON document, returning `default` if the file is missing or unreadable.

    A corrupt file is logged and treated as empty; the next checkpoint
    overwrites it with a fresh snapshot.
    """
    path = Path(path)
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable cache file %s: %s", path, exc)
        return default
