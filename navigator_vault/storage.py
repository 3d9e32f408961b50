"""
Vault persistence — JSON collection files on local disk.

Each collection (the key registry, every agent's file table) is one JSON
array rewritten as a whole. Writers must hold ``collection.lock`` for the
entire read-modify-write; writes go to a temp file that replaces the target.

An unparseable file is moved aside to ``<name>.corrupt-<ms>`` and read as
empty, unless the collection is strict, in which case
``CorruptCollectionError`` is raised.
"""
import os
import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import orjson

from .exceptions import CorruptCollectionError
from .models import now_ms

logger = logging.getLogger("navigator.vault")

FILE_MODE = 0o600
DIR_MODE = 0o700


def ensure_dir(path: Path) -> None:
    path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)


def write_json(path: Path, data: Any) -> None:
    """Atomic write: write to a temp file then rename over ``path``."""
    ensure_dir(path.parent)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def read_json(path: Path) -> Optional[Any]:
    """Return parsed JSON, or None if the file does not exist.

    Raises:
        orjson.JSONDecodeError: If the file is not valid JSON.
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return None
    return orjson.loads(raw)


def dir_size(root: Path) -> int:
    """Sum the sizes of all regular files below ``root``."""
    total = 0
    if not root.exists():
        return 0
    for entry in root.rglob("*"):
        try:
            if entry.is_file():
                total += entry.stat().st_size
        except OSError:
            continue
    return total


class JsonCollection:
    """An ordered list of JSON objects persisted in a single file."""

    def __init__(self, path: Path, strict: bool = False):
        self.path = path
        self.strict = strict
        self.lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<JsonCollection {self.path}>"

    def _quarantine(self, err: Exception) -> None:
        target = self.path.with_name(f"{self.path.name}.corrupt-{now_ms()}")
        try:
            os.replace(self.path, target)
        except FileNotFoundError:
            return
        logger.error(
            "Collection %s is not valid JSON (%s); moved to %s and treated as empty",
            self.path, err, target.name,
        )

    def load_sync(self) -> list[dict]:
        try:
            data = read_json(self.path)
        except orjson.JSONDecodeError as err:
            if self.strict:
                raise CorruptCollectionError(
                    f"Collection {self.path} is not valid JSON: {err}"
                ) from err
            self._quarantine(err)
            return []
        if data is None:
            return []
        if not isinstance(data, list):
            if self.strict:
                raise CorruptCollectionError(
                    f"Collection {self.path} must hold a JSON array"
                )
            self._quarantine(TypeError(type(data).__name__))
            return []
        return [item for item in data if isinstance(item, dict)]

    def save_sync(self, items: list[dict]) -> None:
        write_json(self.path, items)

    async def load(self) -> list[dict]:
        return await asyncio.to_thread(self.load_sync)

    async def save(self, items: list[dict]) -> None:
        await asyncio.to_thread(self.save_sync, items)
