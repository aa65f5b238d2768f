"""
Application entry points.

Usage::

    import crucible

    async def main():
        async with await crucible.app("my-app") as stage:
            queue = Queue("queue", name="q1")
            await crucible.run("workers", lambda scope: Worker("worker", queue=queue.id))

Run options come from three places, highest priority first: keyword arguments
to :func:`app`, command-line flags (``--destroy``, ``--read``, ``--stage``,
``--quiet``, ...) and ``CRUCIBLE_*`` settings.
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any, Callable, Sequence

import structlog

from crucible.config import Settings, get_settings
from crucible.core.errors import ConfigurationError, ControlSignal, IdentityConflictError, ScopeConflictError
from crucible.destroy import destroy
from crucible.providers.registry import ProviderRegistry
from crucible.resource import PendingResource, ResourceIdentity, ResourceOutput
from crucible.scope import SCOPE_KIND, DestroyStrategy, Phase, Scope
from crucible.state.base import ResourceStatus, State, StateStoreFactory

logger = structlog.get_logger()

CI_STATE_STORE_MESSAGE = (
    "Running in a CI environment with a local state store. State written here is "
    "lost when the job ends, which orphans every resource this run creates. "
    "Configure a durable store (CRUCIBLE_STATE_STORE=s3 or http) or pass "
    "state_store= explicitly; set CRUCIBLE_CI_STATE_STORE_CHECK=false to disable "
    "this check."
)


def build_run_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--destroy", action="store_true", help="Destroy every resource of the stage")
    parser.add_argument("--read", action="store_true", help="Read state without changing anything")
    parser.add_argument(
        "--local", "--dev", dest="local", action="store_true", default=None,
        help="Simulate resources locally where supported",
    )
    parser.add_argument("--watch", action="store_true", default=None, help="Watch for changes")
    parser.add_argument("--quiet", action="store_true", default=None, help="Suppress lifecycle logs")
    parser.add_argument("--force", action="store_true", default=None, help="Force updates")
    parser.add_argument("--adopt", action="store_true", default=None, help="Adopt existing resources")
    parser.add_argument("--stage", help="Stage name (default: CRUCIBLE_STAGE or $USER)")
    return parser


def parse_run_options(argv: Sequence[str] | None = None) -> dict[str, Any]:
    """Extract run options from command-line flags, ignoring anything else."""
    args, _unknown = build_run_parser().parse_known_args(
        list(argv) if argv is not None else sys.argv[1:]
    )
    options: dict[str, Any] = {}
    if args.destroy:
        options["phase"] = Phase.DESTROY
    elif args.read:
        options["phase"] = Phase.READ
    for key in ("local", "watch", "quiet", "force", "adopt", "stage"):
        value = getattr(args, key)
        if value is not None:
            options[key] = value
    return options


def check_ci_state_store(settings: Settings) -> None:
    """Refuse a local state store when running in CI."""
    if os.environ.get("CI") and settings.ci_state_store_check and settings.is_local_state_store:
        raise ConfigurationError(CI_STATE_STORE_MESSAGE, {"state_store": settings.state_store})


async def app(
    name: str,
    *,
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
    argv: Sequence[str] | None = None,
) -> Scope:
    """Create the root and stage scopes of an application run.

    Returns the stage scope, already entered as the current scope. In the
    destroy phase the stage is destroyed before this returns.
    """
    settings = get_settings()
    explicit = {
        "stage": stage,
        "phase": phase,
        "quiet": quiet,
        "local": local,
        "watch": watch,
        "force": force,
        "adopt": adopt,
    }
    options = {**parse_run_options(argv), **{k: v for k, v in explicit.items() if v is not None}}
    if state_store is None:
        check_ci_state_store(settings)

    run_phase = Phase(options.get("phase", Phase.UP))
    stage_name = options.get("stage") or settings.default_stage
    root = Scope(
        name,
        parent=None,
        stage=stage_name,
        phase=run_phase,
        password=password or settings.password,
        quiet=options.get("quiet", False),
        local=options.get("local", False),
        watch=options.get("watch", False),
        force=options.get("force", False),
        adopt=options.get("adopt", False),
        destroy_strategy=destroy_strategy or settings.destroy_strategy,
        registry=registry,
        state_store=state_store,
    )
    stage_scope = Scope(stage_name, parent=root, stage=stage_name)
    root.enter()
    stage_scope.enter()
    logger.debug("app_started", app=name, stage=stage_name, phase=str(run_phase))

    if run_phase == Phase.DESTROY:
        try:
            await destroy(stage_scope)
        except Exception as exc:
            stage_scope.fail(exc)
            await stage_scope.finalize()
            raise
    return stage_scope


async def run(
    name: str,
    fn: Callable[[Scope], Any],
    *,
    parent: Scope | None = None,
    **options: Any,
) -> Any:
    """Run ``fn(scope)`` inside a new named child scope.

    The child is recorded in its parent's state so that it is destroyed as a
    unit once it is no longer declared.
    """
    parent = parent if parent is not None else Scope.current()
    if name in parent.resources:
        raise ScopeConflictError(
            f"{name!r} is already declared in {parent.path!r}",
            {"scope": name, "parent": parent.path},
        )
    scope = Scope(name, parent=parent, **options)
    try:
        if scope.phase == Phase.UP:
            await _record_scope(scope, options.get("destroy_strategy"))
        return await scope.run(fn)
    except ControlSignal:
        raise
    except Exception as exc:
        scope.fail(exc)
        raise
    finally:
        await scope.finalize()


async def _record_scope(scope: Scope, destroy_strategy: str | None) -> None:
    parent: Scope = scope.parent  # type: ignore[assignment]
    name: str = scope.scope_name  # type: ignore[assignment]
    identity = ResourceIdentity(
        id=name,
        fqn=parent.fqn(name),
        kind=SCOPE_KIND,
        seq=parent.next_seq(),
        scope=parent,
        destroy_strategy=str(destroy_strategy) if destroy_strategy else None,
    )

    await parent.init()
    previous = await parent.state.get(name)
    if previous is None:
        await parent.state.set(
            name,
            State(
                status=ResourceStatus.CREATED,
                kind=SCOPE_KIND,
                id=name,
                fqn=identity.fqn,
                seq=identity.seq,
                props={},
                destroy_strategy=identity.destroy_strategy,
            ),
        )
    elif previous.kind != SCOPE_KIND:
        raise IdentityConflictError(
            f'Scope "{identity.fqn}" conflicts with a {previous.kind} resource',
            {"fqn": identity.fqn, "stored_kind": previous.kind},
        )

    pending = PendingResource(identity)
    pending.resolve(ResourceOutput(identity=identity))
    parent.resources[name] = pending
