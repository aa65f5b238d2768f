from __future__ import annotations

from typing import TYPE_CHECKING, Any

from crucible.clients.base import BaseHTTPClient, PermanentHTTPError, RetryableHTTPError
from crucible.config import get_settings
from crucible.core.errors import ConfigurationError, StateStoreError
from crucible.state.base import State, StateStore, StateStoreFactory, decode_key, encode_key

if TYPE_CHECKING:
    from crucible.scope import Scope


class StateServiceClient(BaseHTTPClient):
    """Client for a remote state service.

    Wire protocol, relative to ``<url>/<scope chain>``:

    - ``GET ?operation=list`` returns a JSON array of ids
    - ``GET /<id>`` returns the state record (404 when absent)
    - ``PUT /<id>`` stores the state record
    - ``DELETE /<id>`` removes it
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = 30.0,
        max_retries: int = 5,
        backoff_factor: float = 0.03,
    ) -> None:
        super().__init__(
            base_url,
            timeout=timeout,
            max_retries=max_retries,
            backoff_factor=backoff_factor,
        )
        self._token = token

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def list_keys(self, container: str) -> list[str]:
        return await self.get(f"{container}/", params={"operation": "list"}) or []

    async def get_record(self, container: str, key: str) -> dict[str, Any] | None:
        try:
            return await self.get(f"{container}/{key}") or None
        except PermanentHTTPError as exc:
            if exc.status_code == 404:
                return None
            raise

    async def put_record(self, container: str, key: str, record: dict[str, Any]) -> None:
        await self.put(f"{container}/{key}", json=record)

    async def delete_record(self, container: str, key: str) -> None:
        try:
            await self.delete(f"{container}/{key}")
        except PermanentHTTPError as exc:
            if exc.status_code != 404:
                raise


class HttpStateStore(StateStore):
    """State store backed by a remote state service."""

    def __init__(self, scope: Scope, client: StateServiceClient) -> None:
        self._scope = scope
        self._client = client
        self._container = "/" + "/".join(scope.chain)

    async def list(self) -> list[str]:
        try:
            keys = await self._client.list_keys(self._container)
        except (PermanentHTTPError, RetryableHTTPError) as exc:
            raise StateStoreError(f"Failed to list state: {exc}", {"container": self._container}) from exc
        return [decode_key(key) for key in keys]

    async def get(self, key: str) -> State | None:
        try:
            record = await self._client.get_record(self._container, encode_key(key))
        except (PermanentHTTPError, RetryableHTTPError) as exc:
            raise StateStoreError(f"Failed to read state {key!r}: {exc}", {"key": key}) from exc
        if record is None:
            return None
        return State.from_dict(record, password=self._scope.password)

    async def set(self, key: str, state: State) -> None:
        record = state.to_dict(password=self._scope.password)
        try:
            await self._client.put_record(self._container, encode_key(key), record)
        except (PermanentHTTPError, RetryableHTTPError) as exc:
            raise StateStoreError(f"Failed to write state {key!r}: {exc}", {"key": key}) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete_record(self._container, encode_key(key))
        except (PermanentHTTPError, RetryableHTTPError) as exc:
            raise StateStoreError(f"Failed to delete state {key!r}: {exc}", {"key": key}) from exc


def http_state_store(
    url: str | None = None,
    *,
    token: str | None = None,
    backoff_factor: float = 0.03,
) -> StateStoreFactory:
    settings = get_settings()
    resolved_url = url or settings.http_state_url
    if not resolved_url:
        raise ConfigurationError("The http state store requires CRUCIBLE_HTTP_STATE_URL")
    client = StateServiceClient(
        resolved_url,
        token or settings.http_state_token,
        timeout=settings.http_timeout,
        max_retries=settings.http_max_retries,
        backoff_factor=backoff_factor,
    )

    def factory(scope: Scope) -> StateStore:
        return HttpStateStore(scope, client)

    return factory
