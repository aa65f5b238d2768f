from __future__ import annotations

from typing import Any

from crucible.clients.base import BaseHTTPClient, PermanentHTTPError

DEFAULT_USER_AGENT = "crucible-provider-grafana/0.1.0"


class GrafanaClient(BaseHTTPClient):
    """Grafana HTTP API client for folders and dashboards."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        org_id: int | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 2.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        super().__init__(
            base_url,
            timeout=timeout,
            max_retries=max_retries,
            backoff_factor=backoff_factor,
        )
        self._token = token
        self._org_id = org_id
        self._user_agent = user_agent

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["User-Agent"] = self._user_agent
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if self._org_id is not None:
            headers["X-Grafana-Org-Id"] = str(self._org_id)
        return headers

    async def _get_or_none(self, path: str) -> dict[str, Any] | None:
        try:
            return await self.get(path)
        except PermanentHTTPError as exc:
            if exc.status_code == 404:
                return None
            raise

    async def _delete_if_exists(self, path: str) -> bool:
        try:
            await self.delete(path)
        except PermanentHTTPError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    # Folders

    async def get_folder(self, uid: str) -> dict[str, Any] | None:
        return await self._get_or_none(f"/api/folders/{uid}")

    async def create_folder(self, uid: str, title: str) -> dict[str, Any]:
        return await self.post("/api/folders", json={"uid": uid, "title": title})

    async def update_folder(self, uid: str, title: str, *, version: int | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"title": title, "overwrite": version is None}
        if version is not None:
            payload["version"] = version
        return await self.put(f"/api/folders/{uid}", json=payload)

    async def delete_folder(self, uid: str) -> bool:
        return await self._delete_if_exists(f"/api/folders/{uid}")

    # Dashboards

    async def get_dashboard(self, uid: str) -> dict[str, Any] | None:
        return await self._get_or_none(f"/api/dashboards/uid/{uid}")

    async def upsert_dashboard(
        self,
        dashboard: dict[str, Any],
        *,
        folder_uid: str | None = None,
        message: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"dashboard": dashboard, "overwrite": True}
        if folder_uid:
            payload["folderUid"] = folder_uid
        if message:
            payload["message"] = message
        return await self.post("/api/dashboards/db", json=payload)

    async def delete_dashboard(self, uid: str) -> bool:
        return await self._delete_if_exists(f"/api/dashboards/uid/{uid}")
