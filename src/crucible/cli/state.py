"""
Inspect persisted state: ``crucible state <app> [--stage S]``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from crucible.cli.ux import console, info, print_table
from crucible.config import get_settings
from crucible.core.errors import ExitCode
from crucible.scope import Phase, Scope
from crucible.state.base import State, StateStoreFactory


@dataclass
class StateRow:
    depth: int
    state: State


async def collect_state(
    app_name: str,
    stage: str,
    *,
    state_store: StateStoreFactory | None = None,
    password: str | None = None,
) -> list[StateRow]:
    """Walk the persisted tree of one stage, parents before children."""
    root = Scope(
        app_name,
        parent=None,
        stage=stage,
        phase=Phase.READ,
        quiet=True,
        password=password,
        state_store=state_store,
    )
    rows: list[StateRow] = []
    await _walk(Scope(stage, parent=root), 0, rows)
    return rows


async def _walk(scope: Scope, depth: int, rows: list[StateRow]) -> None:
    states = await scope.state.all()
    for resource_id, state in sorted(states.items(), key=lambda item: item[1].seq):
        rows.append(StateRow(depth, state))
        await _walk(Scope(resource_id, parent=scope, replace_existing=True), depth + 1, rows)


def state_command(app_name: str, stage: str | None = None) -> int:
    settings = get_settings()
    stage_name = stage or settings.default_stage
    rows = asyncio.run(collect_state(app_name, stage_name, password=settings.password))

    if not rows:
        info(f"No state recorded for {app_name}/{stage_name}")
        return ExitCode.SUCCESS

    print_table(
        f"{app_name} / {stage_name}",
        ["Resource", "Kind", "Status", "Seq", "Replace pending"],
        [
            [
                "  " * row.depth + row.state.id,
                row.state.kind,
                str(row.state.status),
                str(row.state.seq),
                "yes" if row.state.replace is not None else "",
            ]
            for row in rows
        ],
    )
    console.print(f"[muted]{len(rows)} resources[/muted]")
    return ExitCode.SUCCESS
