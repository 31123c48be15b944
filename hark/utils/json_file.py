"""Crash-safe JSON documents for the engine config and the command history.

A write goes to a hidden temp file beside the target and is moved over it
with os.replace, so a reader sees either the old document or the new one.
Callers serialise their own writes.
"""

import json
import logging
import os
import tempfile

logger = logging.getLogger("hark.store")


def read_json_object(path: str) -> dict:
    """The JSON object stored at path. {} if missing, unreadable or not an object."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Cannot read %s (%s), starting empty", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top level is %s, not an object", path, type(data).__name__)
        return {}
    return data


def write_json_atomic(path: str, data: dict) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
