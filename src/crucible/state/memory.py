from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from crucible.state.base import State, StateStore, StateStoreFactory

if TYPE_CHECKING:
    from crucible.scope import Scope

MemoryBackend = Dict[str, Dict[str, Dict[str, Any]]]

_default_backend: MemoryBackend = {}


class InMemoryStateStore(StateStore):
    """Process-local store for tests and throwaway runs.

    Records are kept in their serialized form so reads never alias the
    objects a handler is still holding.
    """

    def __init__(self, scope: Scope, backend: MemoryBackend | None = None) -> None:
        self._scope = scope
        self._backend = backend if backend is not None else _default_backend
        self._key = "/".join(scope.chain)

    @property
    def _container(self) -> Dict[str, Dict[str, Any]]:
        return self._backend.setdefault(self._key, {})

    async def init(self) -> None:
        self._backend.setdefault(self._key, {})

    async def deinit(self) -> None:
        self._backend.pop(self._key, None)

    async def list(self) -> list[str]:
        return list(self._backend.get(self._key, {}))

    async def get(self, key: str) -> State | None:
        raw = self._backend.get(self._key, {}).get(key)
        if raw is None:
            return None
        return State.from_dict(raw, password=self._scope.password)

    async def set(self, key: str, state: State) -> None:
        self._container[key] = state.to_dict(password=self._scope.password)

    async def delete(self, key: str) -> None:
        self._backend.get(self._key, {}).pop(key, None)


def memory_state_store(backend: MemoryBackend | None = None) -> StateStoreFactory:
    """Factory binding every scope of a run to the same in-memory backend."""

    def factory(scope: Scope) -> StateStore:
        return InMemoryStateStore(scope, backend)

    return factory
