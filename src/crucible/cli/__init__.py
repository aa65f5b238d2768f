"""
CLI commands for crucible.
"""

from crucible.cli.deploy import run_script_command
from crucible.cli.providers import providers_command
from crucible.cli.state import state_command

__all__ = [
    "providers_command",
    "run_script_command",
    "state_command",
]
