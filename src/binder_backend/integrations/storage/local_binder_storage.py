from __future__ import annotations

import json
import logging
from pathlib import Path, PurePosixPath

from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from binder_backend.domain.migration import is_current, migrate_binder
from binder_backend.schemas_binder import Binder, binder_to_document


logger = logging.getLogger(__name__)

_CURRENT_POINTER = "current_binder_id"


def _safe_name(binder_id: str) -> str:
    parts = PurePosixPath(binder_id).parts
    if len(parts) != 1 or parts[0] in {"..", ".", "/", ""}:
        raise ValueError("invalid binder id")
    return parts[0]


class LocalBinderStorage:
    """Device-local binder documents: one JSON file per binder.

    Layout::

        {root}/binders/{binder_id}.json
        {root}/current_binder_id
    """

    def __init__(self, *, root_dir: str) -> None:
        self._root = Path(root_dir)
        self._binders_dir = self._root / "binders"

    def resolve_path(self, binder_id: str) -> Path:
        return self._binders_dir / f"{_safe_name(binder_id)}.json"

    @staticmethod
    def _atomic_write(path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        _ = tmp_path.write_text(text, encoding="utf-8")
        _ = tmp_path.replace(path)

    def _load_all_sync(self) -> list[Binder]:
        if not self._binders_dir.is_dir():
            return []

        binders: list[Binder] = []
        for path in sorted(self._binders_dir.glob("*.json")):
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                if not isinstance(raw, dict):
                    raise ValueError("binder document must be a JSON object")
                binder = migrate_binder(raw)
                if not is_current(raw):
                    text = json.dumps(binder_to_document(binder), ensure_ascii=False)
                    self._atomic_write(path, text)
                    logger.info("rewrote migrated binder file %s", path.name)
                binders.append(binder)
            except (OSError, ValueError, PydanticValidationError) as exc:
                # Skip the corrupt record, keep loading the rest.
                logger.warning("skipping unreadable binder file %s: %s", path.name, exc)
        return binders

    async def load_all(self) -> list[Binder]:
        return await run_in_threadpool(self._load_all_sync)

    async def save_binder(self, binder: Binder) -> None:
        path = self.resolve_path(binder.id)
        text = json.dumps(binder_to_document(binder), ensure_ascii=False)
        await run_in_threadpool(self._atomic_write, path, text)

    async def delete_binder(self, binder_id: str) -> None:
        path = self.resolve_path(binder_id)
        if not path.exists():
            return
        await run_in_threadpool(path.unlink)

    async def get_current_binder_id(self) -> str | None:
        path = self._root / _CURRENT_POINTER

        def _read() -> str | None:
            if not path.exists():
                return None
            value = path.read_text(encoding="utf-8").strip()
            return value or None

        return await run_in_threadpool(_read)

    async def set_current_binder_id(self, binder_id: str | None) -> None:
        path = self._root / _CURRENT_POINTER
        if binder_id is None:
            if path.exists():
                await run_in_threadpool(path.unlink)
            return
        await run_in_threadpool(self._atomic_write, path, _safe_name(binder_id))
