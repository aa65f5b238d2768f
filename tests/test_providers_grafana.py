"""
Tests for the Grafana folder and dashboard providers.
"""

import json

import pytest
import respx
from crucible.app import app
from crucible.clients.grafana import GrafanaClient
from crucible.core.errors import ConfigurationError, ProviderError
from crucible.providers.grafana import GrafanaDashboard, GrafanaFolder
from crucible.scope import Phase
from httpx import Response

GRAFANA = "https://grafana.example.com"


def deploy(store, **options):
    options.setdefault("stage", "test")
    return app("observability", state_store=store, argv=[], **options)


def folder_json(version=1):
    return {"uid": "ops", "title": "Ops", "id": 7, "url": "/dashboards/f/ops/ops", "version": version}


class TestGrafanaClient:
    @pytest.mark.asyncio
    async def test_headers(self):
        client = GrafanaClient(GRAFANA, "glsa_token", org_id=2)

        with respx.mock:
            route = respx.get(f"{GRAFANA}/api/folders/ops").mock(return_value=Response(200, json=folder_json()))
            await client.get_folder("ops")

        headers = route.calls.last.request.headers
        assert headers["Authorization"] == "Bearer glsa_token"
        assert headers["X-Grafana-Org-Id"] == "2"
        assert headers["User-Agent"].startswith("crucible")

    @pytest.mark.asyncio
    async def test_missing_objects(self):
        client = GrafanaClient(GRAFANA)

        with respx.mock:
            respx.get(f"{GRAFANA}/api/dashboards/uid/none").mock(return_value=Response(404))
            respx.delete(f"{GRAFANA}/api/folders/none").mock(return_value=Response(404))

            assert await client.get_dashboard("none") is None
            assert await client.delete_folder("none") is False


class TestGrafanaFolder:
    @pytest.mark.asyncio
    async def test_create_update_destroy(self, store):
        with respx.mock:
            get = respx.get(f"{GRAFANA}/api/folders/ops")
            get.side_effect = [Response(404), Response(200, json=folder_json())]
            create = respx.post(f"{GRAFANA}/api/folders").mock(return_value=Response(200, json=folder_json()))
            update = respx.put(f"{GRAFANA}/api/folders/ops").mock(
                return_value=Response(200, json={**folder_json(version=2), "title": "Operations"})
            )
            delete = respx.delete(f"{GRAFANA}/api/folders/ops").mock(return_value=Response(200, json={}))

            stage = await deploy(store)
            created = await GrafanaFolder("ops", url=GRAFANA, token="t", title="Ops")
            await stage.finalize()

            stage = await deploy(store)
            updated = await GrafanaFolder("ops", url=GRAFANA, token="t", title="Operations")
            await stage.finalize()

            await deploy(store, phase=Phase.DESTROY)

        assert created == {
            "uid": "ops",
            "title": "Ops",
            "folder_id": 7,
            "url": "/dashboards/f/ops/ops",
            "version": 1,
        }
        assert json.loads(create.calls.last.request.content) == {"uid": "ops", "title": "Ops"}
        assert json.loads(update.calls.last.request.content) == {"title": "Operations", "overwrite": False, "version": 1}
        assert updated["title"] == "Operations"
        assert updated["version"] == 2
        assert delete.call_count == 1

    @pytest.mark.asyncio
    async def test_existing_folder_requires_adopt(self, store):
        with respx.mock:
            respx.get(f"{GRAFANA}/api/folders/ops").mock(return_value=Response(200, json=folder_json()))
            update = respx.put(f"{GRAFANA}/api/folders/ops").mock(return_value=Response(200, json=folder_json(2)))

            stage = await deploy(store)
            with pytest.raises(ProviderError):
                await GrafanaFolder("ops", url=GRAFANA, title="Ops")
            await stage.finalize()

            stage = await deploy(store, adopt=True)
            adopted = await GrafanaFolder("ops", url=GRAFANA, title="Ops")
            await stage.finalize()

        assert adopted["version"] == 2
        assert update.call_count == 1

    @pytest.mark.asyncio
    async def test_already_deleted_folder(self, store):
        with respx.mock:
            respx.get(f"{GRAFANA}/api/folders/ops").mock(return_value=Response(404))
            respx.post(f"{GRAFANA}/api/folders").mock(return_value=Response(200, json=folder_json()))
            delete = respx.delete(f"{GRAFANA}/api/folders/ops").mock(return_value=Response(404))

            stage = await deploy(store)
            await GrafanaFolder("ops", url=GRAFANA)
            await stage.finalize()

            await deploy(store, phase=Phase.DESTROY)

        assert delete.call_count == 1

    @pytest.mark.asyncio
    async def test_server_error_is_provider_error(self, store):
        with respx.mock:
            respx.get(f"{GRAFANA}/api/folders/ops").mock(return_value=Response(403))

            stage = await deploy(store)
            with pytest.raises(ProviderError) as exc_info:
                await GrafanaFolder("ops", url=GRAFANA)
            await stage.finalize()

        assert exc_info.value.details["status"] == 403

    @pytest.mark.asyncio
    async def test_url_is_required(self, store):
        stage = await deploy(store)
        with pytest.raises(ConfigurationError):
            await GrafanaFolder("ops")
        await stage.finalize()

    @pytest.mark.asyncio
    async def test_url_from_settings(self, monkeypatch, store):
        from crucible.config import get_settings

        monkeypatch.setenv("CRUCIBLE_GRAFANA_URL", GRAFANA)
        monkeypatch.setenv("CRUCIBLE_GRAFANA_TOKEN", "from-env")
        get_settings.cache_clear()

        with respx.mock:
            respx.get(f"{GRAFANA}/api/folders/ops").mock(return_value=Response(404))
            create = respx.post(f"{GRAFANA}/api/folders").mock(return_value=Response(200, json=folder_json()))

            stage = await deploy(store)
            await GrafanaFolder("ops")
            await stage.finalize()

        assert create.calls.last.request.headers["Authorization"] == "Bearer from-env"


class TestGrafanaDashboard:
    @pytest.mark.asyncio
    async def test_uid_change_replaces_dashboard(self, store):
        with respx.mock:
            respx.get(f"{GRAFANA}/api/dashboards/uid/svc").mock(return_value=Response(404))
            upsert = respx.post(f"{GRAFANA}/api/dashboards/db")
            upsert.side_effect = [
                Response(200, json={"uid": "svc", "url": "/d/svc", "version": 1}),
                Response(200, json={"uid": "svc-v2", "url": "/d/svc-v2", "version": 1}),
            ]
            delete_old = respx.delete(f"{GRAFANA}/api/dashboards/uid/svc").mock(
                return_value=Response(200, json={})
            )

            props = {
                "url": GRAFANA,
                "title": "Service",
                "folder_uid": "ops",
                "dashboard": {"id": 12, "version": 4, "panels": []},
            }

            stage = await deploy(store)
            first = await GrafanaDashboard("svc", props)
            await stage.finalize()

            stage = await deploy(store)
            second = await GrafanaDashboard("svc", {**props, "uid": "svc-v2"})
            assert delete_old.call_count == 0
            await stage.finalize()

        assert first["uid"] == "svc"
        assert second["uid"] == "svc-v2"
        assert delete_old.call_count == 1

        payload = json.loads(upsert.calls[0].request.content)
        assert payload["dashboard"] == {"uid": "svc", "title": "Service", "panels": []}
        assert payload["folderUid"] == "ops"
        assert payload["overwrite"] is True
        assert payload["message"] == "crucible: create observability/test/svc"

    @pytest.mark.asyncio
    async def test_existing_dashboard_requires_adopt(self, store):
        with respx.mock:
            respx.get(f"{GRAFANA}/api/dashboards/uid/svc").mock(
                return_value=Response(200, json={"dashboard": {"uid": "svc"}})
            )

            stage = await deploy(store)
            with pytest.raises(ProviderError):
                await GrafanaDashboard("svc", url=GRAFANA)
            await stage.finalize()
