"""Backend collaborator contract + an in-memory implementation.

The prompt index never talks to storage itself; it is handed an object that
satisfies `PromptBackend`. `InMemoryBackend` is the reference implementation
used by the CLI and the tests:

- keeps prompts and folders as plain dicts, nothing is written to disk
- can be seeded from a JSON snapshot in any of the layouts older exports used
- supports failure injection and gating so optimistic paths can be exercised
"""
from __future__ import annotations

import asyncio, copy, json, logging, re, uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from data.errors import BackendError

log = logging.getLogger(__name__)


class PromptBackend(Protocol):
    async def fetch_all(self) -> List[Dict[str, Any]]: ...
    async def create(self, record: Dict[str, Any]) -> Dict[str, Any]: ...
    async def patch(self, id_value: str, fields: Dict[str, Any]) -> Dict[str, Any]: ...
    async def delete(self, id_value: str) -> None: ...

    async def fetch_folders(self) -> List[Dict[str, Any]]: ...
    async def create_folder(self, record: Dict[str, Any]) -> Dict[str, Any]: ...
    async def patch_folder(self, id_value: str, fields: Dict[str, Any]) -> Dict[str, Any]: ...
    async def delete_folder(self, id_value: str) -> None: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def extract_items(data: Any) -> Tuple[List[Dict], List[Dict]]:
    """Pull (prompts, folders) out of the snapshot layouts seen in the wild."""
    folders: List[Dict] = []
    if isinstance(data, dict) and isinstance(data.get("folders"), list):
        folders = [f for f in data["folders"] if isinstance(f, dict)]

    # Standard: {"items": [...]}
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"], folders

    # If top-level is already a list of items
    if isinstance(data, list):
        return data, folders

    # Legacy: {"prompts": [...]}
    if isinstance(data, dict) and isinstance(data.get("prompts"), list):
        return data["prompts"], folders

    # TinyDB-like: {"prompts": {"1": {...}}} or {"_default": {"1": {...}}}
    def dict_of_docs_to_list(d: Any) -> Optional[List[Dict]]:
        if isinstance(d, dict) and d and all(isinstance(k, str) and isinstance(v, dict) for k, v in d.items()):
            if all(re.fullmatch(r"\d+", k) for k in d.keys()):
                return list(d.values())
        return None

    if isinstance(data, dict):
        maybe = dict_of_docs_to_list(data.get("prompts"))
        if maybe is not None:
            return maybe, folders
        merged: List[Dict] = []
        for k, v in data.items():
            if k == "folders":
                continue
            maybe = dict_of_docs_to_list(v)
            if maybe:
                merged.extend(maybe)
        return merged, folders

    return [], folders


class InMemoryBackend:
    def __init__(self, prompts: Optional[List[Dict]] = None, folders: Optional[List[Dict]] = None) -> None:
        self._prompts: List[Dict[str, Any]] = copy.deepcopy(list(prompts or []))
        self._folders: List[Dict[str, Any]] = copy.deepcopy(list(folders or []))
        self._failures: Dict[str, List[BaseException]] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List[Tuple[str, Any]] = []

    @classmethod
    def from_snapshot(cls, path: str | Path) -> "InMemoryBackend":
        path = Path(path)
        data = json.loads(path.read_text(encoding="utf-8"))
        prompts, folders = extract_items(data)
        log.info("Snapshot %s: %d prompts, %d folders", path, len(prompts), len(folders))
        return cls(prompts, folders)

    # ----------------- test hooks ------------------
    def fail_next(self, operation: str, cause: Optional[BaseException] = None, times: int = 1) -> None:
        """Make the next `times` calls of `operation` fail."""
        err = cause or ConnectionError(f"simulated {operation} failure")
        self._failures.setdefault(operation, []).extend([err] * times)

    def gate(self, operation: str) -> asyncio.Event:
        """Calls of `operation` block until the returned event is set."""
        ev = asyncio.Event()
        self.gates[operation] = ev
        return ev

    async def _enter(self, operation: str, arg: Any = None) -> None:
        self.calls.append((operation, arg))
        ev = self.gates.get(operation)
        if ev is not None:
            await ev.wait()
        pending = self._failures.get(operation)
        if pending:
            cause = pending.pop(0)
            raise BackendError(operation, cause)

    @staticmethod
    def _find(rows: List[Dict], id_value: str) -> Optional[int]:
        for idx, it in enumerate(rows):
            if str(it.get("id", "")) == str(id_value):
                return idx
        return None

    # ----------------- prompts ---------------------
    async def fetch_all(self) -> List[Dict[str, Any]]:
        await self._enter("fetch_all")
        return copy.deepcopy(self._prompts)

    async def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        await self._enter("create", record)
        item = copy.deepcopy(record)
        item["id"] = uuid.uuid4().hex
        item["created_at"] = _now()
        self._prompts.insert(0, item)
        return copy.deepcopy(item)

    async def patch(self, id_value: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        await self._enter("patch", (id_value, fields))
        idx = self._find(self._prompts, id_value)
        if idx is None:
            raise BackendError("patch", KeyError(id_value))
        self._prompts[idx].update(copy.deepcopy(fields))
        return copy.deepcopy(self._prompts[idx])

    async def delete(self, id_value: str) -> None:
        await self._enter("delete", id_value)
        idx = self._find(self._prompts, id_value)
        if idx is not None:
            self._prompts.pop(idx)

    # ----------------- folders ---------------------
    async def fetch_folders(self) -> List[Dict[str, Any]]:
        await self._enter("fetch_folders")
        return copy.deepcopy(self._folders)

    async def create_folder(self, record: Dict[str, Any]) -> Dict[str, Any]:
        await self._enter("create_folder", record)
        item = copy.deepcopy(record)
        item["id"] = uuid.uuid4().hex
        item["created_at"] = _now()
        self._folders.append(item)
        return copy.deepcopy(item)

    async def patch_folder(self, id_value: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        await self._enter("patch_folder", (id_value, fields))
        idx = self._find(self._folders, id_value)
        if idx is None:
            raise BackendError("patch_folder", KeyError(id_value))
        self._folders[idx].update(copy.deepcopy(fields))
        return copy.deepcopy(self._folders[idx])

    async def delete_folder(self, id_value: str) -> None:
        await self._enter("delete_folder", id_value)
        idx = self._find(self._folders, id_value)
        if idx is not None:
            self._folders.pop(idx)
