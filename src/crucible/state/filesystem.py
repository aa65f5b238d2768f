from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from crucible.config import get_settings
from crucible.core.errors import StateStoreError
from crucible.state.base import State, StateStore, StateStoreFactory, decode_key, encode_key

if TYPE_CHECKING:
    from crucible.scope import Scope

logger = structlog.get_logger()


class FileSystemStateStore(StateStore):
    """Stores each scope as a directory and each resource as ``<id>.json``.

    Layout: ``<state_dir>/<app>/<stage>/<scope>.../<id>.json``; a resource's
    own children live in the directory named after its id.
    """

    def __init__(self, scope: Scope, root_dir: str | Path | None = None) -> None:
        self._scope = scope
        base = Path(root_dir) if root_dir is not None else Path(get_settings().state_dir)
        self.dir = base.joinpath(*scope.chain)

    def _path(self, key: str) -> Path:
        return self.dir / f"{encode_key(key)}.json"

    async def init(self) -> None:
        await asyncio.to_thread(self.dir.mkdir, parents=True, exist_ok=True)

    async def deinit(self) -> None:
        def _remove() -> None:
            try:
                self.dir.rmdir()
            except FileNotFoundError:
                return
            except OSError:
                logger.debug("state_dir_not_empty", path=str(self.dir))

        await asyncio.to_thread(_remove)

    async def list(self) -> list[str]:
        def _list() -> list[str]:
            if not self.dir.is_dir():
                return []
            return sorted(decode_key(path.stem) for path in self.dir.glob("*.json"))

        return await asyncio.to_thread(_list)

    async def get(self, key: str) -> State | None:
        path = self._path(key)

        def _read() -> str | None:
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None

        text = await asyncio.to_thread(_read)
        if text is None:
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StateStoreError(f"Corrupted state file {path}", {"path": str(path)}) from exc
        return State.from_dict(data, password=self._scope.password)

    async def set(self, key: str, state: State) -> None:
        path = self._path(key)
        payload = json.dumps(state.to_dict(password=self._scope.password), indent=2) + "\n"

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)

        await asyncio.to_thread(_write)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, missing_ok=True)


def filesystem_state_store(root_dir: str | Path | None = None) -> StateStoreFactory:
    def factory(scope: Scope) -> StateStore:
        return FileSystemStateStore(scope, root_dir)

    return factory
