"""
The resource lifecycle engine.

``declare`` is what a resource constructor call runs: it registers a
:class:`PendingResource` on the current scope synchronously and schedules
``apply``, which resolves the phase from the persisted state, runs the
provider handler in the resource's own scope and records the result.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Mapping

from crucible.context import Context, HandlerPhase
from crucible.core.errors import (
    DestroyedSignal,
    IdentityConflictError,
    LifecycleError,
    ReplacedSignal,
    ResourceNotFoundError,
    ScopeConflictError,
    ScopeError,
)
from crucible.providers.registry import Provider
from crucible.resource import PendingResource, ResourceIdentity, ResourceOutput
from crucible.scope import Phase, Scope
from crucible.state.base import ReplacedResource, ResourceStatus, State


def declare(provider: Provider, id: str, props: Mapping[str, Any] | None = None) -> PendingResource:
    """Register resource ``id`` on the current scope and start applying it."""
    scope = Scope.current()
    try:
        asyncio.get_running_loop()
    except RuntimeError as exc:
        raise ScopeError("Resources must be declared from inside a running event loop") from exc
    if scope.finalized:
        raise ScopeError(f"Cannot declare {id!r}: scope {scope.path!r} is finalized")
    if not id:
        raise ValueError("Resource id is required")
    if "/" in id:
        # the id also names the resource's own scope
        raise ScopeError(f"Resource id {id!r} cannot contain '/'", {"id": id, "scope": scope.path})
    if id in scope.resources:
        raise ScopeConflictError(
            f"Resource {id!r} is already declared in {scope.path!r}",
            {"id": id, "scope": scope.path},
        )

    # seq allocation and registration happen before the first await
    identity = ResourceIdentity(
        id=id,
        fqn=scope.fqn(id),
        kind=provider.kind,
        seq=scope.next_seq(),
        scope=scope,
    )
    pending = PendingResource(identity, props)
    scope.resources[id] = pending
    pending.start(apply(pending, provider, pending.props))
    return pending


async def apply(
    pending: PendingResource,
    provider: Provider,
    props: Mapping[str, Any] | None,
) -> ResourceOutput | None:
    scope: Scope = pending.scope  # type: ignore[assignment]
    if scope.phase == Phase.READ:
        return await _read(scope, pending)
    if scope.phase == Phase.DESTROY:
        await _destroy_leftover(scope, pending)
        return None
    try:
        return await _apply(scope, pending, provider, dict(props or {}))
    except Exception as exc:
        scope.fail(exc)
        raise


async def _read(scope: Scope, pending: PendingResource) -> ResourceOutput:
    state = await scope.state.get(pending.id)
    if state is None:
        raise ResourceNotFoundError(
            f'Resource "{pending.fqn}" not found and running in read phase',
            {"fqn": pending.fqn},
        )
    if state.status == ResourceStatus.CREATING and not state.output:
        raise ResourceNotFoundError(
            f'Resource "{pending.fqn}" did not finish creating; run an up phase first',
            {"fqn": pending.fqn},
        )
    return state.output


async def _destroy_leftover(scope: Scope, pending: PendingResource) -> None:
    from crucible.destroy import DestroyOptions, destroy_resource

    state = await scope.state.get(pending.id)
    if state is not None:
        await destroy_resource(state.output, DestroyOptions(quiet=scope.quiet))


async def _apply(
    scope: Scope,
    pending: PendingResource,
    provider: Provider,
    props: dict[str, Any],
) -> ResourceOutput:
    await scope.init()
    state = await scope.state.get(pending.id)
    if state is None:
        state = State(
            status=ResourceStatus.CREATING,
            kind=pending.kind,
            id=pending.id,
            fqn=pending.fqn,
            seq=pending.seq,
        )
        await scope.state.set(pending.id, state)
    elif state.kind != pending.kind:
        raise IdentityConflictError(
            f'Resource "{pending.fqn}" is a {state.kind}, not a {pending.kind}',
            {"fqn": pending.fqn, "stored_kind": state.kind, "kind": pending.kind},
        )

    phase = HandlerPhase.CREATE if state.status == ResourceStatus.CREATING else HandlerPhase.UPDATE
    old_props = state.props
    old_output = state.output if phase == HandlerPhase.UPDATE else None
    quiet = scope.quiet

    state.status = ResourceStatus.CREATING if phase == HandlerPhase.CREATE else ResourceStatus.UPDATING
    state.seq = pending.seq
    await scope.state.set(pending.id, state)

    if not quiet:
        scope.logger.info(f"resource_{phase}_started", fqn=pending.fqn, kind=pending.kind)

    replaced: ReplacedResource | None = None
    try:
        output = await _invoke(scope, pending, provider, phase, state, props, old_props, old_output)
    except ReplacedSignal:
        replaced = await _prepare_replace(scope, pending, state, old_output, old_props)
        output = await _invoke(
            scope, pending, provider, HandlerPhase.CREATE, state, props, None, None, replacing=True
        )

    state.status = (
        ResourceStatus.CREATED if phase == HandlerPhase.CREATE or replaced else ResourceStatus.UPDATED
    )
    state.output = output
    state.old_props = old_props
    state.props = props
    state.replace = replaced
    state.seq = pending.seq
    await scope.state.set(pending.id, state)

    if not quiet:
        scope.logger.info(
            "resource_replaced" if replaced else f"resource_{phase}d",
            fqn=pending.fqn,
            kind=pending.kind,
            seq=pending.seq,
        )
    return output


async def _prepare_replace(
    scope: Scope,
    pending: PendingResource,
    state: State,
    old_output: ResourceOutput | None,
    old_props: dict[str, Any] | None,
) -> ReplacedResource:
    """Set up a new incarnation of ``pending``; returns the superseded one."""
    from crucible.destroy import DestroyOptions, destroy_resource

    child = scope.children.get(pending.id)
    if child is not None and await child.state.count() > 0:
        error = LifecycleError(
            f'Resource "{pending.fqn}" has children and cannot be replaced',
            {"fqn": pending.fqn},
        )
        child.fail(error)
        raise error
    if state.replace is not None:
        # an earlier incarnation is still waiting for cleanup
        await destroy_resource(
            state.replace.output,
            DestroyOptions(quiet=scope.quiet, replace=state.replace),
        )
        state.replace = None

    pending.identity = ResourceIdentity(
        id=pending.id,
        fqn=pending.fqn,
        kind=pending.kind,
        seq=scope.next_seq(),
        scope=scope,
    )
    return ReplacedResource(output=old_output or ResourceOutput(), props=old_props)


async def _invoke(
    scope: Scope,
    pending: PendingResource,
    provider: Provider,
    phase: HandlerPhase,
    state: State,
    props: dict[str, Any],
    old_props: dict[str, Any] | None,
    old_output: ResourceOutput | None,
    *,
    replacing: bool = False,
) -> ResourceOutput:
    resource_scope = Scope(pending.id, parent=scope, replace_existing=True)
    ctx = Context(
        scope=resource_scope,
        phase=phase,
        id=pending.id,
        fqn=pending.fqn,
        kind=pending.kind,
        seq=pending.seq,
        state=state,
        props=old_props,
        output=old_output,
        replacing=replacing,
    )

    async def _call(_scope: Scope) -> Any:
        result = provider.handler(ctx, pending.id, props)
        if inspect.isawaitable(result):
            result = await result
        return result

    try:
        result = await resource_scope._run(_call)
    except ReplacedSignal:
        raise
    except DestroyedSignal as exc:
        resource_scope.fail(exc)
        raise LifecycleError(
            f'Handler for "{pending.fqn}" called destroy() outside a delete',
            {"fqn": pending.fqn},
        ) from exc
    except Exception as exc:
        # keeps finalize from removing the children of a failed resource
        resource_scope.fail(exc)
        raise
    if isinstance(result, ResourceOutput):
        result.identity = ctx.identity
        return result
    if result is None or isinstance(result, Mapping):
        return ctx.finalize(result)
    raise LifecycleError(
        f'Handler for "{pending.fqn}" returned {type(result).__name__}, expected a mapping',
        {"fqn": pending.fqn},
    )
