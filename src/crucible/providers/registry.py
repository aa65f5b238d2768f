from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List

from crucible.core.errors import ConfigurationError, ProviderNotFoundError

Handler = Callable[..., Any]


@dataclass(frozen=True)
class Provider:
    """A registered handler for one resource kind."""

    kind: str
    handler: Handler
    description: str | None = None


class ProviderRegistry:
    """In-memory registry mapping resource kinds to their handlers.

    A registry is injected into each root scope (``crucible.app(registry=...)``)
    and inherited by its descendants. Resources declared in a previous run can
    only be destroyed if their kind is still registered here.
    """

    def __init__(self) -> None:
        self._providers: Dict[str, Provider] = {}

    def register(
        self,
        kind: str,
        handler: Handler,
        *,
        description: str | None = None,
        replace: bool = False,
    ) -> Provider:
        if not kind:
            raise ValueError("Provider kind is required")
        if kind in self._providers and not replace:
            raise ConfigurationError(f"Provider '{kind}' is already registered", {"kind": kind})
        provider = Provider(
            kind=kind,
            handler=handler,
            description=description,
        )
        self._providers[kind] = provider
        return provider

    def get(self, kind: str) -> Provider | None:
        return self._providers.get(kind)

    def require(self, kind: str, fqn: str | None = None) -> Provider:
        provider = self._providers.get(kind)
        if provider is None:
            raise ProviderNotFoundError(kind, fqn)
        return provider

    def validate(self, kinds: Iterable[str]) -> None:
        """Fail before any mutation if some kind has no provider."""
        missing = sorted({kind for kind in kinds if kind not in self._providers})
        if missing:
            raise ProviderNotFoundError(", ".join(missing))

    def list(self) -> List[Provider]:
        return list(self._providers.values())

    def __contains__(self, kind: object) -> bool:
        return kind in self._providers


provider_registry = ProviderRegistry()


def register_provider(
    kind: str,
    handler: Handler,
    *,
    description: str | None = None,
) -> Provider:
    return provider_registry.register(kind, handler, description=description)


def get_provider(kind: str) -> Provider | None:
    return provider_registry.get(kind)


def list_providers() -> List[Provider]:
    return provider_registry.list()
