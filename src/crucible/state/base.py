from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Callable, Iterable
from urllib.parse import quote, unquote

from crucible.resource import ResourceIdentity, ResourceOutput
from crucible.serde import deserialize, serialize

if TYPE_CHECKING:
    from crucible.scope import Scope


class ResourceStatus(StrEnum):
    """Persisted lifecycle status of a resource."""

    CREATING = "creating"
    CREATED = "created"
    UPDATING = "updating"
    UPDATED = "updated"
    DELETING = "deleting"
    DELETED = "deleted"


@dataclass
class ReplacedResource:
    """A superseded incarnation waiting to be destroyed."""

    output: ResourceOutput
    props: dict[str, Any] | None = None


@dataclass
class State:
    """The persisted record for one resource id within one scope."""

    status: ResourceStatus
    kind: str
    id: str
    fqn: str
    seq: int
    props: dict[str, Any] | None = None
    output: ResourceOutput = field(default_factory=ResourceOutput)
    old_props: dict[str, Any] | None = None
    data: dict[str, Any] = field(default_factory=dict)
    replace: ReplacedResource | None = None
    destroy_strategy: str | None = None

    def to_dict(self, *, password: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": str(self.status),
            "kind": self.kind,
            "id": self.id,
            "fqn": self.fqn,
            "seq": self.seq,
            "props": serialize(self.props, password=password),
            "old_props": serialize(self.old_props, password=password),
            "output": serialize(dict(self.output), password=password),
            "data": serialize(self.data, password=password),
        }
        if self.replace is not None:
            payload["replace"] = {
                "output": serialize(dict(self.replace.output), password=password),
                "props": serialize(self.replace.props, password=password),
            }
        if self.destroy_strategy is not None:
            payload["destroy_strategy"] = self.destroy_strategy
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, password: str | None = None) -> State:
        replace = None
        if data.get("replace"):
            replace = ReplacedResource(
                output=ResourceOutput(deserialize(data["replace"].get("output") or {}, password=password)),
                props=deserialize(data["replace"].get("props"), password=password),
            )
        return cls(
            status=ResourceStatus(data["status"]),
            kind=data["kind"],
            id=data["id"],
            fqn=data["fqn"],
            seq=int(data["seq"]),
            props=deserialize(data.get("props"), password=password),
            output=ResourceOutput(deserialize(data.get("output") or {}, password=password)),
            old_props=deserialize(data.get("old_props"), password=password),
            data=deserialize(data.get("data") or {}, password=password),
            replace=replace,
            destroy_strategy=data.get("destroy_strategy"),
        )


class StateStore(ABC):
    """Key-value persistence for the resources of one scope."""

    async def init(self) -> None:
        """Create the state container if one is required."""
        return None

    async def deinit(self) -> None:
        """Delete the state container if one exists."""
        return None

    @abstractmethod
    async def list(self) -> list[str]:
        """Ids of every resource in this container."""

    async def count(self) -> int:
        return len(await self.list())

    @abstractmethod
    async def get(self, key: str) -> State | None:
        ...

    async def get_batch(self, ids: Iterable[str]) -> dict[str, State]:
        keys = list(ids)
        states = await asyncio.gather(*(self.get(key) for key in keys))
        return {key: state for key, state in zip(keys, states) if state is not None}

    async def all(self) -> dict[str, State]:
        return await self.get_batch(await self.list())

    @abstractmethod
    async def set(self, key: str, state: State) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


StateStoreFactory = Callable[["Scope"], StateStore]


class HydratingStateStore(StateStore):
    """Wraps a state store and re-attaches live identity to decoded outputs.

    Persisted bytes cannot carry a reference to the owning scope, so every
    read path goes through :meth:`hydrate`.
    """

    def __init__(self, scope: Scope, store: StateStore) -> None:
        self.scope = scope
        self.store = store

    def hydrate(self, state: State) -> State:
        identity = ResourceIdentity(
            id=state.id,
            fqn=state.fqn,
            kind=state.kind,
            seq=state.seq,
            scope=self.scope,
            destroy_strategy=state.destroy_strategy,
        )
        state.output = _as_output(state.output)
        state.output.identity = identity
        if state.replace is not None:
            state.replace.output = _as_output(state.replace.output)
            state.replace.output.identity = identity
        return state

    async def init(self) -> None:
        await self.store.init()

    async def deinit(self) -> None:
        await self.store.deinit()

    async def list(self) -> list[str]:
        return await self.store.list()

    async def count(self) -> int:
        return await self.store.count()

    async def get(self, key: str) -> State | None:
        state = await self.store.get(key)
        if state is not None:
            self.hydrate(state)
        return state

    async def get_batch(self, ids: Iterable[str]) -> dict[str, State]:
        batch = await self.store.get_batch(ids)
        for state in batch.values():
            self.hydrate(state)
        return batch

    async def all(self) -> dict[str, State]:
        states = await self.store.all()
        for state in states.values():
            self.hydrate(state)
        return states

    async def set(self, key: str, state: State) -> None:
        await self.store.set(key, state)

    async def delete(self, key: str) -> None:
        await self.store.delete(key)


def _as_output(value: Any) -> ResourceOutput:
    return value if isinstance(value, ResourceOutput) else ResourceOutput(value or {})


def encode_key(key: str) -> str:
    """Percent-encode an id for use as a file name, object key or URL segment."""
    return quote(key, safe="")


def decode_key(key: str) -> str:
    return unquote(key)
