from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Mapping, NoReturn

from crucible.core.errors import DestroyedSignal, LifecycleError, ReplacedSignal
from crucible.resource import ResourceIdentity, ResourceOutput
from crucible.state.base import State

if TYPE_CHECKING:
    from crucible.scope import Scope


class HandlerPhase(StrEnum):
    """What the engine is asking a handler to do."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class Context:
    """Everything a handler gets to know about one lifecycle invocation.

    ``props`` and ``output`` describe the previous incarnation (None on
    create); the desired props are passed to the handler separately.
    """

    scope: Scope
    phase: HandlerPhase
    id: str
    fqn: str
    kind: str
    seq: int
    state: State
    props: dict[str, Any] | None = None
    output: ResourceOutput | None = None
    replacing: bool = False
    identity: ResourceIdentity = field(init=False)

    def __post_init__(self) -> None:
        self.identity = ResourceIdentity(
            id=self.id,
            fqn=self.fqn,
            kind=self.kind,
            seq=self.seq,
            scope=self.scope.parent,
            destroy_strategy=self.state.destroy_strategy,
        )

    @property
    def stage(self) -> str | None:
        return self.scope.stage

    @property
    def quiet(self) -> bool:
        return self.scope.quiet

    @property
    def adopt(self) -> bool:
        return self.scope.adopt

    @property
    def local(self) -> bool:
        return self.scope.local

    @property
    def force(self) -> bool:
        return self.scope.force

    def finalize(self, fields: Mapping[str, Any] | None = None, **kwargs: Any) -> ResourceOutput:
        """Build the success output of this invocation."""
        return ResourceOutput({**(fields or {}), **kwargs}, identity=self.identity)

    def destroy(self) -> NoReturn:
        """Signal that the delete has completed."""
        if self.phase != HandlerPhase.DELETE:
            raise LifecycleError(
                f"destroy() called on {self.fqn!r} during {self.phase}",
                {"fqn": self.fqn, "phase": str(self.phase)},
            )
        raise DestroyedSignal(self.fqn)

    def replace(self) -> NoReturn:
        """Signal that this update cannot be applied in place."""
        if self.phase != HandlerPhase.UPDATE:
            raise LifecycleError(
                f"replace() called on {self.fqn!r} during {self.phase}",
                {"fqn": self.fqn, "phase": str(self.phase)},
            )
        raise ReplacedSignal(self.fqn)

    async def get(self, key: str, default: Any = None) -> Any:
        return self.state.data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self.state.data[key] = value
        await self.scope.parent.state.set(self.id, self.state)  # type: ignore[union-attr]

    async def delete(self, key: str) -> None:
        self.state.data.pop(key, None)
        await self.scope.parent.state.set(self.id, self.state)  # type: ignore[union-attr]
