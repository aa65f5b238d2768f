"""Provider registry and built-in reference providers.

Built-in providers register themselves when their module is imported, e.g.
``from crucible.providers.fs import File``.
"""

from crucible.providers.registry import (
    Provider,
    ProviderRegistry,
    get_provider,
    list_providers,
    provider_registry,
    register_provider,
)

__all__ = [
    "Provider",
    "ProviderRegistry",
    "get_provider",
    "list_providers",
    "provider_registry",
    "register_provider",
]
