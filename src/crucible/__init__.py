"""crucible - infrastructure as code as plain async Python.

Declare resources inside an application scope; crucible creates, updates,
replaces and deletes them and removes whatever is no longer declared.
"""

from crucible.app import app, parse_run_options, run
from crucible.context import Context, HandlerPhase
from crucible.destroy import DestroyOptions, destroy
from crucible.resource import PendingResource, ResourceIdentity, ResourceOutput, ResourceType, resource
from crucible.scope import DestroyStrategy, Phase, Scope
from crucible.serde import Secret, secret

__version__ = "0.1.0"

__all__ = [
    "Context",
    "DestroyOptions",
    "DestroyStrategy",
    "HandlerPhase",
    "PendingResource",
    "Phase",
    "ResourceIdentity",
    "ResourceOutput",
    "ResourceType",
    "Scope",
    "Secret",
    "app",
    "destroy",
    "parse_run_options",
    "resource",
    "run",
    "secret",
]
