"""
List registered resource kinds: ``crucible providers [--module M ...]``.
"""

from __future__ import annotations

import importlib
from typing import Sequence

from crucible.cli.ux import print_table
from crucible.core.errors import ConfigurationError, ExitCode
from crucible.providers.registry import ProviderRegistry, provider_registry

BUILTIN_PROVIDER_MODULES = (
    "crucible.providers.fs",
    "crucible.providers.random",
    "crucible.providers.grafana",
)


def load_provider_modules(modules: Sequence[str]) -> None:
    """Import modules so that their resources register themselves."""
    for name in modules:
        try:
            importlib.import_module(name)
        except ImportError as exc:
            raise ConfigurationError(f"Cannot import provider module {name!r}: {exc}", {"module": name}) from exc


def providers_command(
    modules: Sequence[str] | None = None,
    *,
    registry: ProviderRegistry | None = None,
) -> int:
    load_provider_modules([*BUILTIN_PROVIDER_MODULES, *(modules or [])])
    target = registry if registry is not None else provider_registry
    print_table(
        "Registered providers",
        ["Kind", "Handler", "Description"],
        [
            [
                provider.kind,
                f"{provider.handler.__module__}.{provider.handler.__qualname__}",
                provider.description or "",
            ]
            for provider in sorted(target.list(), key=lambda p: p.kind)
        ],
    )
    return ExitCode.SUCCESS
