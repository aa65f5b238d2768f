"""
The scope tree.

Every resource belongs to a :class:`Scope`. Scopes form a tree rooted at the
application scope; the stage scope sits directly below it and user code runs
inside the stage (or inside named child scopes created with
:func:`crucible.run`). Each resource also gets a scope of its own, so handlers
that declare resources build composite resources.

The current scope is continuation-local: it lives in a
:class:`contextvars.ContextVar`, so it follows ``await`` chains and is copied
into every task spawned while it is set. For code that runs outside that
context, :meth:`Scope.enter` also pushes root scopes onto ``Scope.globals``,
which must then be finalized in LIFO order.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, ClassVar, TypeVar

import structlog

from crucible.core.errors import ControlSignal, ScopeConflictError, ScopeError
from crucible.providers.registry import ProviderRegistry, provider_registry
from crucible.state.base import HydratingStateStore, ResourceStatus, State, StateStoreFactory

if TYPE_CHECKING:
    from crucible.resource import PendingResource

logger = structlog.get_logger()

T = TypeVar("T")

SCOPE_KIND = "crucible::scope"


class Phase(StrEnum):
    """What a run does to the declared resources."""

    UP = "up"
    DESTROY = "destroy"
    READ = "read"


class DestroyStrategy(StrEnum):
    """Order in which a batch of resources is destroyed."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


_current_scope: contextvars.ContextVar[Scope | None] = contextvars.ContextVar(
    "crucible_scope", default=None
)


class _Ambient:
    def __repr__(self) -> str:
        return "<ambient scope>"


_AMBIENT: Any = _Ambient()


class Scope:
    """A node in the scope tree.

    Options left as ``None`` are inherited from the parent. Passing
    ``parent=None`` creates a root; by default the parent is the current
    ambient scope.
    """

    globals: ClassVar[list[Scope]] = []

    def __init__(
        self,
        scope_name: str | None = None,
        *,
        parent: Scope | None = _AMBIENT,
        stage: str | None = None,
        phase: Phase | str | None = None,
        password: str | None = None,
        quiet: bool | None = None,
        local: bool | None = None,
        watch: bool | None = None,
        force: bool | None = None,
        adopt: bool | None = None,
        destroy_strategy: DestroyStrategy | str | None = None,
        registry: ProviderRegistry | None = None,
        state_store: StateStoreFactory | None = None,
        replace_existing: bool = False,
    ) -> None:
        if parent is _AMBIENT:
            parent = Scope.get_scope()
        if parent is not None and not scope_name:
            raise ScopeError("A child scope requires a name")
        if scope_name and "/" in scope_name:
            raise ScopeError(f"Scope name {scope_name!r} cannot contain '/'")

        self.scope_name = scope_name
        self.parent = parent
        self.stage = _inherit(stage, parent, "stage", None)
        self.phase = Phase(_inherit(phase, parent, "phase", Phase.UP))
        self.password = _inherit(password, parent, "password", None)
        self.quiet = _inherit(quiet, parent, "quiet", False)
        self.local = _inherit(local, parent, "local", False)
        self.watch = _inherit(watch, parent, "watch", False)
        self.force = _inherit(force, parent, "force", False)
        self.adopt = _inherit(adopt, parent, "adopt", False)
        self.destroy_strategy = DestroyStrategy(
            _inherit(destroy_strategy, parent, "destroy_strategy", DestroyStrategy.SEQUENTIAL)
        )
        self.registry: ProviderRegistry = _inherit(registry, parent, "registry", provider_registry)
        self.state_store_factory: StateStoreFactory = _inherit(
            state_store, parent, "state_store_factory", None
        ) or _default_state_store

        self.chain: list[str] = (list(parent.chain) if parent is not None else []) + (
            [scope_name] if scope_name else []
        )
        self.children: dict[str, Scope] = {}
        self.resources: dict[str, PendingResource] = {}
        self.finalized = False
        self.is_errored = False
        self._seq = 0
        self._deferred: list[Callable[[], Awaitable[None]]] = []
        self._init_future: asyncio.Future[None] | None = None
        self._data_lock = asyncio.Lock()
        self._token: contextvars.Token[Scope | None] | None = None

        if parent is not None:
            if scope_name in parent.children and not replace_existing:
                raise ScopeConflictError(
                    f"Scope {scope_name!r} already exists in {parent.path!r}",
                    {"scope": scope_name, "parent": parent.path},
                )
            parent.children[scope_name] = self

        self.state = HydratingStateStore(self, self.state_store_factory(self))
        self.logger = logger.bind(
            app=self.app_name, scope=self.path, stage=self.stage, phase=str(self.phase)
        )

    # Ambient context

    @classmethod
    def get_scope(cls) -> Scope | None:
        scope = _current_scope.get()
        if scope is None and cls.globals:
            return cls.globals[-1]
        return scope

    @classmethod
    def current(cls) -> Scope:
        scope = cls.get_scope()
        if scope is None:
            raise ScopeError("Not running within a crucible scope; call crucible.app() first")
        return scope

    async def run(self, fn: Callable[[Scope], Any]) -> Any:
        """Run ``fn(scope)`` with this scope as the current scope."""
        if self.finalized:
            raise ScopeError(f"Scope {self.path!r} has already been finalized")
        return await self._run(fn)

    async def _run(self, fn: Callable[[Scope], Any]) -> Any:
        token = _current_scope.set(self)
        try:
            result = fn(self)
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            _current_scope.reset(token)

    def enter(self) -> Scope:
        """Make this scope current for the rest of the calling context."""
        _current_scope.set(self)
        if self.parent is None or self.parent in Scope.globals:
            Scope.globals.append(self)
        return self

    async def __aenter__(self) -> Scope:
        self._token = _current_scope.set(self)
        return self

    async def __aexit__(self, exc_type: Any, exc: BaseException | None, tb: Any) -> None:
        if self._token is not None:
            _current_scope.reset(self._token)
            self._token = None
        if exc is not None and not isinstance(exc, ControlSignal):
            self.fail(exc)
        await self.finalize()

    # Tree

    @property
    def root(self) -> Scope:
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope

    @property
    def app_name(self) -> str | None:
        return self.root.scope_name

    @property
    def path(self) -> str:
        return "/".join(self.chain)

    def fqn(self, resource_id: str) -> str:
        return "/".join([*self.chain, resource_id])

    def next_seq(self) -> int:
        """Allocate the next creation sequence number in this scope."""
        seq = self._seq
        self._seq += 1
        return seq

    def fail(self, error: BaseException | None = None) -> None:
        self.logger.error(
            "scope_failed",
            error=str(error) if error is not None else None,
            error_type=type(error).__name__ if error is not None else None,
        )
        self.is_errored = True

    async def init(self) -> None:
        if self._init_future is None:
            self._init_future = asyncio.ensure_future(self.state.init())
        await self._init_future

    async def deinit(self) -> None:
        """Remove this scope's record from its parent and delete its container."""
        if self.parent is not None and self.scope_name:
            await self.parent.state.delete(self.scope_name)
        await self.state.deinit()
        if self.parent is not None and self.parent.children.get(self.scope_name or "") is self:
            del self.parent.children[self.scope_name]

    async def delete_resource(self, resource_id: str) -> None:
        await self.state.delete(resource_id)
        self.resources.pop(resource_id, None)

    # Scope data, stored on this scope's record in its parent

    async def _scope_state(self) -> State:
        if self.parent is None or not self.scope_name:
            raise ScopeError("The root scope has no state record")
        state = await self.parent.state.get(self.scope_name)
        if state is None:
            if self.parent.parent is not None:
                raise ScopeError(f"Scope {self.path!r} has no state record")
            state = State(
                status=ResourceStatus.CREATED,
                kind=SCOPE_KIND,
                id=self.scope_name,
                fqn=self.parent.fqn(self.scope_name),
                seq=self.parent.next_seq(),
                props={},
            )
        return state

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._data_lock:
            state = await self._scope_state()
            return state.data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        async with self._data_lock:
            state = await self._scope_state()
            state.data[key] = value
            await self.parent.state.set(self.scope_name, state)  # type: ignore[union-attr,arg-type]

    async def delete(self, key: str) -> None:
        async with self._data_lock:
            state = await self._scope_state()
            state.data.pop(key, None)
            await self.parent.state.set(self.scope_name, state)  # type: ignore[union-attr,arg-type]

    # Finalization

    def defer(self, fn: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """Run ``fn`` inside this scope once the run finalizes."""
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()

        async def _deferred() -> None:
            try:
                result = await self._run(lambda _scope: fn())
            except Exception as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)

        self._deferred.append(_deferred)
        return future

    async def finalize(self, force: bool = False) -> None:
        """Finalize the run.

        Only the root drives finalization; the stage scope delegates to it and
        other scopes ignore calls unless ``force`` is set. Children are
        finalized depth-first before their parent.
        """
        if self.parent is not None and not force:
            if self.parent.parent is None and self.scope_name == self.stage:
                await self.parent.finalize()
            return
        if self.finalized:
            return
        if self.parent is None:
            self._release_globals()
        self.finalized = True
        if self.phase == Phase.READ:
            return

        await _settle(list(self.resources.values()))
        for child in list(self.children.values()):
            await child.finalize(force=True)
        for deferred in self._deferred:
            await deferred()

        if self.is_errored:
            self.logger.warning("scope_cleanup_skipped", reason="scope failed")
            return
        if self.phase == Phase.UP:
            await self._cleanup()

    async def _cleanup(self) -> None:
        from crucible.destroy import DestroyOptions, destroy_all, destroy_resource

        states = await self.state.all()
        orphans = [
            state.output
            for resource_id, state in states.items()
            if resource_id not in self.resources
            and resource_id not in self.children
            # stage records below the root belong to other runs
            and not (self.parent is None and state.kind == SCOPE_KIND)
        ]
        for state in states.values():
            if state.replace is not None:
                await destroy_resource(
                    state.replace.output,
                    DestroyOptions(
                        quiet=self.quiet,
                        strategy=DestroyStrategy.SEQUENTIAL,
                        replace=state.replace,
                    ),
                )
        if orphans:
            self.logger.debug("scope_orphans_found", ids=[o.id for o in orphans])
        await destroy_all(orphans, DestroyOptions(quiet=self.quiet, strategy=self.destroy_strategy))

    def _release_globals(self) -> None:
        if self not in Scope.globals:
            return
        while Scope.globals[-1] is not self:
            top = Scope.globals[-1]
            if top.root is not self:
                raise ScopeError(
                    f"Attempted to finalize {self.path!r} while {top.path!r} is still active; "
                    "entered scopes must be finalized in LIFO order"
                )
            Scope.globals.pop()
        Scope.globals.pop()

    def __repr__(self) -> str:
        return f"Scope({self.path!r})"


def _inherit(value: Any, parent: Scope | None, attr: str, default: Any) -> Any:
    if value is not None:
        return value
    if parent is not None:
        return getattr(parent, attr)
    return default


def _default_state_store(scope: Scope) -> Any:
    from crucible.state import default_state_store

    return default_state_store(scope)


async def _settle(pending: list[PendingResource]) -> None:
    """Wait for in-flight resources; their failures are reported by ``apply``."""
    started = [resource for resource in pending if resource.started]
    if started:
        await asyncio.gather(*(resource.wait() for resource in started), return_exceptions=True)
