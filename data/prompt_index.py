"""In-memory prompt index with optimistic mutations.

- Owns the session's working set of prompts and folders
- Queries (filter, tags, counts, paging) are synchronous and never mutate state
- Mutations apply locally first, then wait for the backend; on failure the
  affected records are reverted and the error is re-raised as BackendError
- Every mutation takes a per-record sequence number; a confirmation or
  rollback that has been overtaken by a newer mutation on the same record is
  dropped
"""
from __future__ import annotations

import itertools, logging, uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from config.config_loader import IndexSettings
from data.backend import PromptBackend
from data.debounce import SearchDebouncer
from data.errors import BackendError, NotFoundError, ValidationError
from data.tag_normalizer import TagNormalizer
from models.prompt import Folder, Prompt, PromptDraft, PromptPatch
from utils.hash_utils import tag_color

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# ids of folders whose create_folder call has not been confirmed yet
TEMP_FOLDER_PREFIX = "tmp-"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(dt: Optional[datetime]) -> float:
    if dt is None:
        return 0.0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _newest_first(prompts: Iterable[Prompt]) -> List[Prompt]:
    """Stable; records without created_at keep their relative order at the end."""
    items = list(prompts)
    dated = [p for p in items if p.created_at is not None]
    undated = [p for p in items if p.created_at is None]
    return sorted(dated, key=lambda p: _ts(p.created_at), reverse=True) + undated


def _folder_sort_key(f: Folder) -> Tuple[bool, int, bool, float]:
    return (f.order is None, f.order or 0, f.created_at is None, _ts(f.created_at))


def _wrap(operation: str, exc: BaseException) -> BackendError:
    if isinstance(exc, BackendError):
        return exc
    return BackendError(operation, exc)


class PromptIndex:
    def __init__(self, backend: PromptBackend, settings: Optional[IndexSettings] = None,
                 normalizer: Optional[TagNormalizer] = None) -> None:
        self.backend = backend
        self.settings = settings or IndexSettings()
        self.normalizer = normalizer or TagNormalizer()

        self._prompts: List[Prompt] = []
        self._folders: List[Folder] = []
        self._builtin_ids: Set[str] = set()
        # built-ins have no backend record, their manual order lives here
        self._builtin_order: Dict[str, int] = {}
        self._seq: Dict[str, int] = {}
        self._counter = itertools.count(1)

        self._folders = self._build_folders([])

    # ----------------- sequence bookkeeping --------
    def _begin(self, key: str) -> int:
        seq = next(self._counter)
        self._seq[key] = seq
        return seq

    def _is_current(self, key: str, seq: int) -> bool:
        return self._seq.get(key) == seq

    def _finish(self, key: str, seq: int) -> None:
        if self._is_current(key, seq):
            del self._seq[key]

    # ----------------- folders ---------------------
    def _build_folders(self, raw_folders: Iterable[Any]) -> List[Folder]:
        loaded: List[Folder] = []
        names: Set[str] = set()
        for raw in raw_folders or []:
            try:
                f = raw if isinstance(raw, Folder) else Folder.model_validate(raw)
            except PydanticValidationError as e:
                log.warning("Skipping malformed folder %r: %s", raw, e)
                continue
            key = f.name.casefold()
            if key == self.settings.all_label.casefold() or key in names:
                log.warning("Skipping folder with reserved or duplicate name %r", f.name)
                continue
            names.add(key)
            loaded.append(f)
        builtin: List[Folder] = []
        self._builtin_ids = set()
        labels = list(self.settings.folders)
        if self.settings.default_folder.casefold() not in {n.casefold() for n in labels}:
            labels.append(self.settings.default_folder)
        for label in labels:
            if label.casefold() in names:
                continue
            names.add(label.casefold())
            f = Folder(id=label.lower(), name=label, order=self._builtin_order.get(label.lower()))
            builtin.append(f)
            self._builtin_ids.add(f.id)
        # built-ins that were never reordered stay in front, in label order
        pinned = [f for f in builtin if f.order is None]
        ordered = [f for f in builtin if f.order is not None] + loaded
        return pinned + sorted(ordered, key=_folder_sort_key)

    def _folder_by_id(self, id_value: Optional[str]) -> Optional[Folder]:
        if not id_value:
            return None
        for f in self._folders:
            if f.id == str(id_value):
                return f
        return None

    def _folder_by_name(self, name: Optional[str]) -> Optional[Folder]:
        if not isinstance(name, str) or not name.strip():
            return None
        key = name.strip().casefold()
        for f in self._folders:
            if f.name.casefold() == key:
                return f
        return None

    def resolve_folder(self, value: Optional[str]) -> Optional[Folder]:
        """Folder by id, then by (case-insensitive) name."""
        return self._folder_by_id(value) or self._folder_by_name(value)

    @property
    def default_folder(self) -> Folder:
        f = self._folder_by_name(self.settings.default_folder)
        if f is None:
            raise RuntimeError(f"default folder {self.settings.default_folder!r} is not registered")
        return f

    def _folder_for_input(self, value: Optional[str]) -> Folder:
        if value is None or not str(value).strip() or str(value).strip() == self.settings.all_label:
            return self.default_folder
        f = self.resolve_folder(value)
        if f is None:
            raise ValidationError(f"unknown folder: {value}", [f"folder: unknown folder {value!r}"])
        if f.id.startswith(TEMP_FOLDER_PREFIX):
            raise ValidationError(f"folder is still being created: {f.name}",
                                  [f"folder: {f.name!r} is not confirmed yet"])
        return f

    # ----------------- loading ---------------------
    def _normalize_record(self, raw: Any) -> Optional[Prompt]:
        """Never raises. Returns None for records that cannot be salvaged."""
        if isinstance(raw, Prompt):
            raw = raw.model_dump()
        if not isinstance(raw, Mapping):
            log.warning("Skipping prompt record of type %s", type(raw).__name__)
            return None
        rec = dict(raw)
        label = rec.pop("folder", None)
        folder = self._folder_by_id(rec.get("folder_id"))
        if folder is None and isinstance(label, str):
            folder = self._folder_by_name(label)
        if folder is None:
            if (rec.get("folder_id") or label) and label != self.settings.all_label:
                log.info("Prompt %r: unknown folder %r, using %r",
                         rec.get("id"), rec.get("folder_id") or label, self.settings.default_folder)
            folder = self.default_folder
        rec["folder_id"] = folder.id
        try:
            return Prompt.model_validate(rec)
        except PydanticValidationError as e:
            log.warning("Skipping malformed prompt %r: %s", rec.get("id"), e)
            return None

    def load(self, records: Iterable[Any], folders: Optional[Iterable[Any]] = None) -> int:
        """Replace the working set. Input is copied, never modified."""
        if folders is not None:
            self._folders = self._build_folders(folders)
        seen: Set[str] = set()
        prompts: List[Prompt] = []
        for raw in records or []:
            p = self._normalize_record(raw)
            if p is None:
                continue
            if p.id in seen:
                log.warning("Skipping duplicate prompt id %r", p.id)
                continue
            seen.add(p.id)
            prompts.append(p)
        self._prompts = _newest_first(prompts)
        log.info("PromptIndex loaded %d prompts, %d folders", len(self._prompts), len(self._folders))
        return len(self._prompts)

    async def refresh(self) -> int:
        """Reload from the backend. State is untouched if fetching fails."""
        try:
            folders = await self.backend.fetch_folders()
            records = await self.backend.fetch_all()
        except Exception as e:
            log.error("refresh failed: %s", e)
            raise _wrap("fetch_all", e) from e
        return self.load(records, folders)

    # ----------------- queries ---------------------
    def __len__(self) -> int:
        return len(self._prompts)

    @property
    def prompts(self) -> List[Prompt]:
        return list(self._prompts)

    @property
    def folders(self) -> List[Folder]:
        return list(self._folders)

    def get(self, id_value: str) -> Prompt:
        for p in self._prompts:
            if p.id == id_value:
                return p
        raise NotFoundError("prompt", id_value)

    def _index_of(self, id_value: str) -> Optional[int]:
        for idx, p in enumerate(self._prompts):
            if p.id == id_value:
                return idx
        return None

    def _matches(self, p: Prompt, needle: str) -> bool:
        for field in (p.title, p.content, p.best_for, p.notes):
            if field and needle in field.lower():
                return True
        return any(needle in t.lower() for t in p.tags)

    def filter(self, search: Optional[str] = None, tag: Optional[str] = None,
               folder: Optional[str] = None) -> List[Prompt]:
        needle = (search or "").strip().lower()
        wanted_tag = self.normalizer.normalize_tag(tag) if tag else ""
        folder_id = None
        if folder and folder != self.settings.all_label:
            f = self.resolve_folder(folder)
            if f is None:
                return []
            folder_id = f.id

        results: List[Prompt] = []
        for p in self._prompts:
            if folder_id is not None and p.folder_id != folder_id:
                continue
            if wanted_tag and wanted_tag not in p.tags:
                continue
            if needle and not self._matches(p, needle):
                continue
            results.append(p)
        return results

    def unique_tags(self, limit: Optional[int] = None) -> List[str]:
        if limit is not None and limit < 0:
            raise ValueError("limit must be >= 0")
        seen: Set[str] = set()
        tags: List[str] = []
        for p in self._prompts:
            for t in p.tags:
                if t not in seen:
                    seen.add(t)
                    tags.append(t)
        return tags if limit is None else tags[:limit]

    def recent_tags(self) -> List[str]:
        return self.unique_tags(self.settings.recent_tags)

    def suggest_tags(self, text: str, selected: Iterable[str] = (), limit: Optional[int] = None) -> List[str]:
        return self.normalizer.suggest(self.unique_tags(), text, selected, limit)

    def tag_color(self, tag: str) -> str:
        return tag_color(tag)

    def search_debouncer(self, on_results: Callable[[List[Prompt]], Any]) -> SearchDebouncer:
        """Debounced search box: only the last query in a quiet period is run."""
        return SearchDebouncer(lambda q: on_results(self.filter(search=q)),
                               self.settings.search_debounce_ms / 1000)

    def counts_by_folder(self) -> Dict[str, int]:
        counts: Dict[str, int] = {f.name: 0 for f in self._folders}
        names = {f.id: f.name for f in self._folders}
        default_name = self.default_folder.name
        for p in self._prompts:
            name = names.get(p.folder_id or "", default_name)
            counts[name] += 1
        counts[self.settings.all_label] = len(self._prompts)
        return counts

    def folder_name(self, prompt: Prompt) -> str:
        f = self._folder_by_id(prompt.folder_id)
        return f.name if f else self.default_folder.name

    def list_page(self, limit: Optional[int] = None, offset: int = 0, folder: Optional[str] = None,
                  tags: Optional[Iterable[str]] = None) -> List[Prompt]:
        """Listing query: folder filter, tag containment, newest first."""
        limit = self.settings.page_size if limit is None else limit
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be >= 0")
        wanted = set(self.normalizer.normalize_list(tags or []))
        rows = self.filter(folder=folder)
        if wanted:
            rows = [p for p in rows if wanted.issubset(p.tags)]
        return _newest_first(rows)[offset:offset + limit]

    # ----------------- validation ------------------
    @staticmethod
    def _validate(model: Type[M], data: Any) -> M:
        if isinstance(data, model):
            return data
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

    def _replace(self, id_value: str, record: Prompt) -> bool:
        idx = self._index_of(id_value)
        if idx is None:
            return False
        self._prompts[idx] = record
        return True

    # ----------------- prompt mutations ------------
    async def add(self, draft: Any) -> Prompt:
        data = self._validate(PromptDraft, draft)
        folder = self._folder_for_input(data.folder)
        payload = data.model_dump(exclude={"folder"})
        payload["folder_id"] = folder.id

        temp_id = f"tmp-{uuid.uuid4().hex}"
        optimistic = Prompt(id=temp_id, created_at=_now(), **payload)
        seq = self._begin(temp_id)
        self._prompts.insert(0, optimistic)
        try:
            saved = await self.backend.create(dict(payload))
        except Exception as e:
            if self._is_current(temp_id, seq):
                self._prompts = [p for p in self._prompts if p.id != temp_id]
            self._finish(temp_id, seq)
            log.error("add(%r) failed, reverted: %s", data.title, e)
            raise _wrap("create", e) from e

        record = self._normalize_record(saved)
        if record is None:
            if self._is_current(temp_id, seq):
                self._prompts = [p for p in self._prompts if p.id != temp_id]
            self._finish(temp_id, seq)
            raise BackendError("create", ValueError("backend returned a malformed record"))
        if self._is_current(temp_id, seq):
            self._replace(temp_id, record)
        self._finish(temp_id, seq)
        log.info("add() ok: id=%s (%d prompts)", record.id, len(self._prompts))
        return record

    async def update(self, id_value: str, fields: Any) -> Prompt:
        data = self._validate(PromptPatch, fields)
        before = self.get(id_value)
        changes = data.model_dump(exclude_unset=True)
        if "folder" in changes:
            changes["folder_id"] = self._folder_for_input(changes.pop("folder")).id
        if not changes:
            return before

        try:
            optimistic = Prompt.model_validate({**before.model_dump(), **changes})
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e
        seq = self._begin(id_value)
        self._replace(id_value, optimistic)
        try:
            saved = await self.backend.patch(id_value, dict(changes))
        except Exception as e:
            if self._is_current(id_value, seq):
                self._replace(id_value, before)
            self._finish(id_value, seq)
            log.error("update(%s) failed, reverted: %s", id_value, e)
            raise _wrap("patch", e) from e

        if not self._is_current(id_value, seq):
            log.debug("update(%s) confirmed after a newer change, ignoring", id_value)
            return optimistic
        record = self._normalize_record(saved) or optimistic
        self._replace(id_value, record)
        self._finish(id_value, seq)
        return record

    async def remove(self, id_value: str) -> Optional[Prompt]:
        """Unknown ids are still sent to the backend."""
        idx = self._index_of(id_value)
        seq = self._begin(id_value)
        removed = self._prompts.pop(idx) if idx is not None else None
        if removed is None:
            log.info("remove(%s): not in working set, deleting on backend anyway", id_value)
        try:
            await self.backend.delete(id_value)
        except Exception as e:
            if removed is not None and self._is_current(id_value, seq) and self._index_of(id_value) is None:
                self._prompts.insert(min(idx, len(self._prompts)), removed)
            self._finish(id_value, seq)
            log.error("remove(%s) failed, reverted: %s", id_value, e)
            raise _wrap("delete", e) from e
        self._finish(id_value, seq)
        log.info("remove(%s) ok (%d prompts)", id_value, len(self._prompts))
        return removed

    async def toggle_favorite(self, id_value: str) -> Prompt:
        current = self.get(id_value)
        return await self.update(id_value, {"is_favorite": not current.is_favorite})

    async def move_to_folder(self, id_value: str, folder: Optional[str]) -> Prompt:
        return await self.update(id_value, {"folder": folder})

    # ----------------- folder mutations ------------
    def _check_folder_name(self, name: Any, exclude_id: Optional[str] = None) -> str:
        try:
            checked = Folder.model_validate({"id": "_", "name": name}).name
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e
        if checked.casefold() == self.settings.all_label.casefold():
            raise ValidationError(f"folder name {checked!r} is reserved", [f"name: {checked!r} is reserved"])
        clash = self._folder_by_name(checked)
        if clash is not None and clash.id != exclude_id:
            raise ValidationError(f"folder already exists: {checked}", [f"name: {checked!r} already exists"])
        return checked

    def _get_folder(self, id_value: str) -> Folder:
        f = self._folder_by_id(id_value)
        if f is None:
            raise NotFoundError("folder", id_value)
        return f

    def _replace_folder(self, id_value: str, record: Folder) -> None:
        self._folders = [record if f.id == id_value else f for f in self._folders]

    async def create_folder(self, name: str, icon: Optional[str] = None, color: Optional[str] = None) -> Folder:
        checked = self._check_folder_name(name)
        orders = [f.order for f in self._folders if f.order is not None]
        payload = {"name": checked, "order": (max(orders) + 1) if orders else len(self._folders),
                   "icon": icon, "color": color}
        temp_id = f"{TEMP_FOLDER_PREFIX}{uuid.uuid4().hex}"
        key = f"folder:{temp_id}"
        seq = self._begin(key)
        self._folders.append(Folder(id=temp_id, created_at=_now(), **payload))
        try:
            saved = await self.backend.create_folder(dict(payload))
        except Exception as e:
            if self._is_current(key, seq):
                self._folders = [f for f in self._folders if f.id != temp_id]
            self._finish(key, seq)
            log.error("create_folder(%r) failed, reverted: %s", checked, e)
            raise _wrap("create_folder", e) from e
        try:
            record = Folder.model_validate(saved)
        except PydanticValidationError as e:
            self._folders = [f for f in self._folders if f.id != temp_id]
            self._finish(key, seq)
            raise BackendError("create_folder", e) from e
        if self._is_current(key, seq):
            self._replace_folder(temp_id, record)
        self._finish(key, seq)
        log.info("create_folder(%r) ok: id=%s", checked, record.id)
        return record

    async def rename_folder(self, id_value: str, name: str) -> Folder:
        before = self._get_folder(id_value)
        if id_value in self._builtin_ids:
            raise ValidationError(f"built-in folder {before.name!r} cannot be renamed")
        checked = self._check_folder_name(name, exclude_id=id_value)
        if checked == before.name:
            return before
        key = f"folder:{id_value}"
        seq = self._begin(key)
        optimistic = before.model_copy(update={"name": checked})
        self._replace_folder(id_value, optimistic)
        try:
            saved = await self.backend.patch_folder(id_value, {"name": checked})
        except Exception as e:
            if self._is_current(key, seq):
                self._replace_folder(id_value, before)
            self._finish(key, seq)
            log.error("rename_folder(%s) failed, reverted: %s", id_value, e)
            raise _wrap("patch_folder", e) from e
        if not self._is_current(key, seq):
            return optimistic
        try:
            record = Folder.model_validate(saved)
        except PydanticValidationError:
            record = optimistic
        self._replace_folder(id_value, record)
        self._finish(key, seq)
        return record

    async def delete_folder(self, id_value: str) -> List[str]:
        """Delete a folder; its prompts move to the default folder.

        Returns the ids of the prompts that were moved.
        """
        folder = self._get_folder(id_value)
        default = self.default_folder
        if id_value in self._builtin_ids or folder.id == default.id:
            raise ValidationError(f"folder {folder.name!r} cannot be deleted")

        position = self._folders.index(folder)
        key = f"folder:{id_value}"
        fseq = self._begin(key)
        members: Dict[str, Tuple[Prompt, int]] = {}
        for p in list(self._prompts):
            if p.folder_id == id_value:
                members[p.id] = (p, self._begin(p.id))
                self._replace(p.id, p.model_copy(update={"folder_id": default.id}))
        self._folders = [f for f in self._folders if f.id != id_value]

        moved: List[str] = []
        try:
            for pid in members:
                await self.backend.patch(pid, {"folder_id": default.id})
                moved.append(pid)
            await self.backend.delete_folder(id_value)
        except Exception as e:
            # prompts already moved on the backend stay moved
            for pid, (before, seq) in members.items():
                if pid not in moved and self._is_current(pid, seq):
                    self._replace(pid, before)
            if self._is_current(key, fseq) and self._folder_by_id(id_value) is None:
                self._folders.insert(min(position, len(self._folders)), folder)
            for pid, (_, seq) in members.items():
                self._finish(pid, seq)
            self._finish(key, fseq)
            log.error("delete_folder(%s) failed after moving %d/%d prompts: %s",
                      id_value, len(moved), len(members), e)
            raise _wrap("delete_folder", e) from e

        for pid, (_, seq) in members.items():
            self._finish(pid, seq)
        self._finish(key, fseq)
        log.info("delete_folder(%s) ok, moved %d prompts to %r", id_value, len(moved), default.name)
        return moved

    async def reorder_folders(self, ordered_ids: List[str]) -> List[Folder]:
        """Persist a manual folder order (position becomes `order`)."""
        current_ids = [f.id for f in self._folders]
        if sorted(ordered_ids) != sorted(current_ids):
            raise ValidationError("ordered_ids must list every folder exactly once")

        previous = list(self._folders)
        previous_builtin = dict(self._builtin_order)
        by_id = {f.id: f for f in self._folders}
        reordered = [by_id[fid].model_copy(update={"order": pos}) for pos, fid in enumerate(ordered_ids)]
        seq = self._begin("folders:order")
        self._folders = reordered
        self._builtin_order.update({f.id: f.order for f in reordered if f.id in self._builtin_ids})
        try:
            for before, after in zip((by_id[fid] for fid in ordered_ids), reordered):
                if after.id in self._builtin_ids or before.order == after.order:
                    continue
                await self.backend.patch_folder(after.id, {"order": after.order})
        except Exception as e:
            if self._is_current("folders:order", seq):
                present = {f.id for f in self._folders}
                added = [f for f in self._folders if f.id not in by_id]
                self._folders = [f for f in previous if f.id in present] + added
                self._builtin_order = previous_builtin
            self._finish("folders:order", seq)
            log.error("reorder_folders failed, reverted: %s", e)
            raise _wrap("patch_folder", e) from e
        self._finish("folders:order", seq)
        return list(self._folders)
