"""Resource identity, outputs and the pending-resource handle.

A resource type is defined by decorating a handler::

    @resource("demo::queue")
    async def Queue(ctx: Context, id: str, props: dict) -> ResourceOutput:
        if ctx.phase == HandlerPhase.DELETE:
            await client.delete_queue(ctx.output["url"])
            ctx.destroy()
        url = await client.ensure_queue(props["name"])
        return ctx.finalize(url=url, name=props["name"])

Calling ``Queue("queue", {"name": "q1"})`` inside a scope returns a
:class:`PendingResource` whose identity is known immediately and which can be
awaited for the final :class:`ResourceOutput`.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Generator, Mapping

from crucible.providers.registry import Handler, Provider, ProviderRegistry, provider_registry

if TYPE_CHECKING:
    from crucible.scope import Scope


@dataclass(frozen=True)
class ResourceIdentity:
    """Identity tags carried by every resource output."""

    id: str
    fqn: str
    kind: str
    seq: int
    scope: Scope | None = field(default=None, compare=False, repr=False)
    destroy_strategy: str | None = None


class ResourceOutput(dict):
    """Output fields of a resource plus its identity tags.

    The identity lives on an attribute rather than in the mapping, so equality
    and serialization only ever see the output fields.
    """

    def __init__(
        self,
        fields: Mapping[str, Any] | None = None,
        *,
        identity: ResourceIdentity | None = None,
    ) -> None:
        super().__init__(fields or {})
        self.identity = identity

    def _require_identity(self) -> ResourceIdentity:
        if self.identity is None:
            raise AttributeError("ResourceOutput has not been hydrated with its identity")
        return self.identity

    @property
    def id(self) -> str:
        return self._require_identity().id

    @property
    def fqn(self) -> str:
        return self._require_identity().fqn

    @property
    def kind(self) -> str:
        return self._require_identity().kind

    @property
    def seq(self) -> int:
        return self._require_identity().seq

    @property
    def scope(self) -> Scope | None:
        return self._require_identity().scope

    def __repr__(self) -> str:
        label = self.identity.fqn if self.identity else "?"
        return f"ResourceOutput({label!r}, {dict.__repr__(self)})"


class PendingResource:
    """A resource that is being applied.

    ``identity`` and ``props`` are available as soon as the constructor
    returns; awaiting the handle yields the final output.
    """

    def __init__(self, identity: ResourceIdentity, props: Mapping[str, Any] | None = None) -> None:
        self.identity = identity
        self.props = dict(props or {})
        self._future: asyncio.Future[Any] | None = None

    def start(self, coro: Awaitable[Any]) -> None:
        self._future = asyncio.ensure_future(coro)

    def resolve(self, value: Any) -> None:
        future = asyncio.get_running_loop().create_future()
        future.set_result(value)
        self._future = future

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def fqn(self) -> str:
        return self.identity.fqn

    @property
    def kind(self) -> str:
        return self.identity.kind

    @property
    def seq(self) -> int:
        return self.identity.seq

    @property
    def scope(self) -> Scope | None:
        return self.identity.scope

    @property
    def started(self) -> bool:
        return self._future is not None

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def wait(self) -> asyncio.Future[Any]:
        """The future resolving to the final output."""
        if self._future is None:
            raise RuntimeError(f"Resource {self.fqn!r} was never started")
        return self._future

    def __await__(self) -> Generator[Any, None, Any]:
        return self.wait().__await__()

    def __repr__(self) -> str:
        status = "done" if self.done() else "pending"
        return f"PendingResource({self.fqn!r}, kind={self.kind!r}, seq={self.seq}, {status})"


class ResourceType:
    """Callable resource constructor produced by :func:`resource`."""

    def __init__(self, provider: Provider) -> None:
        self.provider = provider
        functools.update_wrapper(self, provider.handler)

    @property
    def kind(self) -> str:
        return self.provider.kind

    def __call__(
        self,
        id: str,
        props: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> PendingResource:
        from crucible.apply import declare

        merged = {**(props or {}), **kwargs}
        return declare(self.provider, id, merged)

    def __repr__(self) -> str:
        return f"ResourceType({self.kind!r})"


def resource(
    kind: str,
    *,
    description: str | None = None,
    registry: ProviderRegistry | None = None,
) -> Callable[[Handler], ResourceType]:
    """Register ``handler`` as the provider for ``kind``."""

    def decorator(handler: Handler) -> ResourceType:
        target = registry if registry is not None else provider_registry
        provider = target.register(
            kind,
            handler,
            description=description or _first_doc_line(handler),
        )
        return ResourceType(provider)

    return decorator


def _first_doc_line(handler: Handler) -> str | None:
    lines = (handler.__doc__ or "").strip().splitlines()
    return lines[0] if lines else None
