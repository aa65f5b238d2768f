"""
Run an application script in a given phase.

``crucible deploy app.py --stage prod`` executes ``app.py`` as ``__main__``
with the matching flags in ``sys.argv``, where ``crucible.app()`` picks them
up.
"""

from __future__ import annotations

import runpy
import sys
from pathlib import Path

from crucible.cli.ux import confirm, header, success, warning
from crucible.core.errors import ConfigurationError, ExitCode

PHASE_FLAGS = {
    "deploy": [],
    "destroy": ["--destroy"],
    "read": ["--read"],
}


def script_argv(
    command: str,
    *,
    stage: str | None = None,
    quiet: bool = False,
    force: bool = False,
    adopt: bool = False,
    local: bool = False,
    watch: bool = False,
) -> list[str]:
    """Flags passed to the script for ``command``."""
    flags = list(PHASE_FLAGS[command])
    if stage:
        flags += ["--stage", stage]
    for enabled, flag in (
        (quiet, "--quiet"),
        (force, "--force"),
        (adopt, "--adopt"),
        (local, "--local"),
        (watch, "--watch"),
    ):
        if enabled:
            flags.append(flag)
    return flags


def run_script_command(
    command: str,
    script: str,
    *,
    stage: str | None = None,
    quiet: bool = False,
    force: bool = False,
    adopt: bool = False,
    local: bool = False,
    watch: bool = False,
    yes: bool = False,
) -> int:
    """Execute ``script`` in the phase selected by ``command``."""
    path = Path(script)
    if not path.is_file():
        raise ConfigurationError(f"Script not found: {script}", {"script": script})

    if command == "destroy" and not yes:
        target = f"stage '{stage}'" if stage else "the default stage"
        if not confirm(f"Destroy every resource of {target} declared by {path.name}?"):
            warning("Destroy aborted")
            return ExitCode.SUCCESS

    if not quiet:
        header(f"crucible {command}: {path.name}")

    flags = script_argv(
        command, stage=stage, quiet=quiet, force=force, adopt=adopt, local=local, watch=watch
    )
    saved_argv = sys.argv
    sys.argv = [str(path), *flags]
    try:
        runpy.run_path(str(path), run_name="__main__")
    finally:
        sys.argv = saved_argv

    if not quiet:
        success(f"{command.capitalize()} of {path.name} complete")
    return ExitCode.SUCCESS
