"""
Destroy orchestration.

``destroy(scope)`` removes everything a scope owns: the resources declared in
this run, the resources persisted by earlier runs (orphans) and finally the
scope's own state container. ``destroy(resource)`` runs one resource's delete
handler and cascades into the resource's own scope.

Batches are destroyed newest-first by default (descending ``seq``), which
approximates reverse dependency order without a dependency graph.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
from dataclasses import dataclass
from typing import Any, Iterable

from crucible.context import Context, HandlerPhase
from crucible.core.errors import DestroyedSignal
from crucible.resource import PendingResource, ResourceOutput
from crucible.scope import SCOPE_KIND, DestroyStrategy, Scope, _settle
from crucible.state.base import ReplacedResource, ResourceStatus


@dataclass(frozen=True)
class DestroyOptions:
    """Options for one destroy call.

    ``replace`` is set when the call cleans up a superseded incarnation; it
    carries that incarnation's output and props.
    """

    quiet: bool = False
    strategy: DestroyStrategy | None = None
    replace: ReplacedResource | None = None


async def destroy(
    target: Scope | PendingResource | ResourceOutput,
    options: DestroyOptions | None = None,
) -> None:
    """Destroy a scope or a single resource."""
    if isinstance(target, Scope):
        await destroy_scope(target, options)
    elif isinstance(target, PendingResource):
        await _settle([target])
        await destroy_resource(ResourceOutput(identity=target.identity), options)
    else:
        await destroy_resource(target, options)


async def destroy_scope(scope: Scope, options: DestroyOptions | None = None) -> None:
    options = options or DestroyOptions(quiet=scope.quiet)
    options = dataclasses.replace(
        options, strategy=options.strategy or scope.destroy_strategy, replace=None
    )

    persisted = await scope.state.all()
    kinds = {state.kind for state in persisted.values()}
    kinds.update(pending.kind for pending in scope.resources.values())
    kinds.discard(SCOPE_KIND)
    scope.registry.validate(kinds)

    await _settle(list(scope.resources.values()))
    tracked = [ResourceOutput(identity=pending.identity) for pending in scope.resources.values()]
    await destroy_all(tracked, options)

    orphans = [state.output for state in (await scope.state.all()).values()]
    await destroy_all(orphans, options)

    for child in list(scope.children.values()):
        await destroy_scope(child, options)

    await scope.deinit()


async def destroy_all(outputs: Iterable[ResourceOutput], options: DestroyOptions | None = None) -> None:
    options = options or DestroyOptions()
    outputs = list(outputs)
    if not outputs:
        return
    if options.strategy == DestroyStrategy.PARALLEL:
        await asyncio.gather(*(destroy_resource(output, options) for output in outputs))
        return
    for output in sorted(outputs, key=lambda output: output.seq, reverse=True):
        await destroy_resource(output, options)


async def destroy_resource(output: ResourceOutput, options: DestroyOptions | None = None) -> None:
    options = options or DestroyOptions()
    identity = output.identity
    if identity is None or identity.scope is None:
        raise ValueError("Cannot destroy a resource output that has not been hydrated")
    scope: Scope = identity.scope

    if "/" in identity.id:
        # left by a declaration that failed before its handler ran
        scope.logger.warning(
            "resource_state_dropped", fqn=identity.fqn, kind=identity.kind, reason="invalid id"
        )
        await scope.delete_resource(identity.id)
        return

    if identity.kind == SCOPE_KIND:
        child = scope.children.get(identity.id) or Scope(identity.id, parent=scope)
        await destroy_scope(
            child,
            dataclasses.replace(options, strategy=identity.destroy_strategy or options.strategy),
        )
        scope.resources.pop(identity.id, None)
        return

    provider = scope.registry.require(identity.kind, identity.fqn)
    state = await scope.state.get(identity.id)
    if state is None:
        return
    if options.replace is None and state.replace is not None:
        # the superseded incarnation always goes first
        await destroy_resource(
            state.replace.output, dataclasses.replace(options, replace=state.replace)
        )
        state = await scope.state.get(identity.id)
        if state is None:
            return

    quiet = options.quiet or scope.quiet
    log = scope.logger.bind(fqn=identity.fqn, kind=identity.kind, seq=identity.seq)
    if not quiet:
        log.info("resource_delete_started", replaced=options.replace is not None)

    if options.replace is None:
        state.status = ResourceStatus.DELETING
        await scope.state.set(identity.id, state)
        props, prior = state.props, state.output
    else:
        props, prior = options.replace.props, options.replace.output

    resource_scope = scope.children.get(identity.id) or Scope(identity.id, parent=scope)
    ctx = Context(
        scope=resource_scope,
        phase=HandlerPhase.DELETE,
        id=identity.id,
        fqn=identity.fqn,
        kind=identity.kind,
        seq=identity.seq,
        state=state,
        props=props,
        output=prior,
        replacing=options.replace is not None,
    )

    async def _call(_scope: Scope) -> Any:
        result = provider.handler(ctx, identity.id, props or {})
        if inspect.isawaitable(result):
            result = await result
        return result

    try:
        await resource_scope._run(_call)
    except DestroyedSignal:
        pass
    except Exception as exc:
        log.error("resource_delete_failed", error=str(exc), error_type=type(exc).__name__)
        raise

    if options.replace is None:
        await destroy_scope(
            resource_scope,
            DestroyOptions(
                quiet=quiet,
                strategy=identity.destroy_strategy or resource_scope.destroy_strategy,
            ),
        )
        await scope.delete_resource(identity.id)
    else:
        current = await scope.state.get(identity.id)
        if current is not None:
            current.replace = None
            await scope.state.set(identity.id, current)

    if not quiet:
        log.info("resource_deleted", replaced=options.replace is not None)
