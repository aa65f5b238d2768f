"""State persistence for the scope tree.

One container per scope chain, one :class:`State` record per resource id.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from crucible.config import get_settings
from crucible.state.base import (
    HydratingStateStore,
    ReplacedResource,
    ResourceStatus,
    State,
    StateStore,
    StateStoreFactory,
)
from crucible.state.filesystem import FileSystemStateStore, filesystem_state_store
from crucible.state.http import HttpStateStore, StateServiceClient, http_state_store
from crucible.state.memory import InMemoryStateStore, memory_state_store
from crucible.state.s3 import S3StateStore, s3_state_store

if TYPE_CHECKING:
    from crucible.scope import Scope


def default_state_store(scope: Scope) -> StateStore:
    """Build the store selected by ``CRUCIBLE_STATE_STORE`` for ``scope``."""
    kind = get_settings().state_store
    if kind == "memory":
        return memory_state_store()(scope)
    if kind == "s3":
        return s3_state_store()(scope)
    if kind == "http":
        return http_state_store()(scope)
    return filesystem_state_store()(scope)


__all__ = [
    "FileSystemStateStore",
    "HttpStateStore",
    "HydratingStateStore",
    "InMemoryStateStore",
    "ReplacedResource",
    "ResourceStatus",
    "S3StateStore",
    "State",
    "StateServiceClient",
    "StateStore",
    "StateStoreFactory",
    "default_state_store",
    "filesystem_state_store",
    "http_state_store",
    "memory_state_store",
    "s3_state_store",
]
