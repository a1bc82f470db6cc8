"""
State backends — where the tracker's whole-state blob lives.

The tracker only ever reads the full blob once at startup and writes the
full blob after every mutation. Backends never merge: the last save wins.

Implementations:
  - MemoryStateBackend: in-process dict (tests, scratch sessions)
  - JsonFileStateBackend: a JSON file with a .bak of the previous save
  - MongoStateBackend: see tools/mongo_state.py
"""

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from tools.tracker_errors import PersistenceError

logger = logging.getLogger("StateBackend")


def empty_state() -> Dict[str, Any]:
    return {"topics": [], "log": []}


@runtime_checkable
class StateBackend(Protocol):
    """Persistence collaborator: load and save an opaque state blob."""

    async def load(self) -> Dict[str, Any]:
        ...

    async def save(self, blob: Dict[str, Any]) -> None:
        ...


class MemoryStateBackend:
    """Keeps the blob in memory. Copies on the way in and out.

    ``fail_saves`` makes every save raise PersistenceError, for exercising
    the tracker's failure path.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._blob = copy.deepcopy(initial) if initial is not None else empty_state()
        self.fail_saves = False
        self.save_count = 0

    async def load(self) -> Dict[str, Any]:
        return copy.deepcopy(self._blob)

    async def save(self, blob: Dict[str, Any]) -> None:
        if self.fail_saves:
            raise PersistenceError("Simulated save failure.")
        self._blob = copy.deepcopy(blob)
        self.save_count += 1

    @property
    def blob(self) -> Dict[str, Any]:
        return copy.deepcopy(self._blob)


class JsonFileStateBackend:
    """File-based storage using JSON.

    Features:
    - Missing file loads as an empty state
    - Previous save kept as <name>.json.bak
    - Writes go to a temp file first, then replace the real one
    """

    def __init__(self, path):
        self.path = Path(path)

    async def load(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self._read)

    async def save(self, blob: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, blob)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.info(f"No state file at {self.path}, starting empty.")
            return empty_state()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read {self.path}: {e}") from e
        if not isinstance(data, dict):
            logger.warning(f"State file {self.path} does not hold an object, starting empty.")
            return empty_state()
        return data

    def _write(self, blob: Dict[str, Any]) -> None:
        try:
            payload = json.dumps(blob, indent=2, ensure_ascii=False)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                backup = self.path.with_suffix(self.path.suffix + ".bak")
                backup.write_text(self.path.read_text(encoding="utf-8"), encoding="utf-8")
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(self.path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write {self.path}: {e}") from e
