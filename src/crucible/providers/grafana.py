"""
Grafana folder and dashboard resources.

Connection settings come from the resource props (``url``, ``token``,
``org_id``) or from ``CRUCIBLE_GRAFANA_URL`` / ``CRUCIBLE_GRAFANA_TOKEN``.
Folders and dashboards are identified by uid; changing the uid replaces the
resource.
"""

from __future__ import annotations

from typing import Any

import structlog

from crucible.clients.base import PermanentHTTPError, RetryableHTTPError
from crucible.clients.grafana import GrafanaClient
from crucible.config import get_settings
from crucible.context import Context, HandlerPhase
from crucible.core.errors import ConfigurationError, ProviderError
from crucible.resource import ResourceOutput, resource
from crucible.serde import Secret

logger = structlog.get_logger()


def _client(props: dict[str, Any]) -> GrafanaClient:
    settings = get_settings()
    url = props.get("url") or settings.grafana_url
    if not url:
        raise ConfigurationError("Grafana resources require a url prop or CRUCIBLE_GRAFANA_URL")
    token = props.get("token") or settings.grafana_token
    return GrafanaClient(
        url,
        token.unencrypted if isinstance(token, Secret) else token,
        org_id=props.get("org_id"),
        timeout=settings.http_timeout,
        max_retries=settings.http_max_retries,
    )


def _provider_error(ctx: Context, exc: Exception) -> ProviderError:
    return ProviderError(
        f'Grafana request for "{ctx.fqn}" failed: {exc}',
        {"fqn": ctx.fqn, "status": getattr(exc, "status_code", None)},
    )


@resource("grafana::folder")
async def GrafanaFolder(ctx: Context, id: str, props: dict[str, Any]) -> ResourceOutput:
    """A Grafana folder, identified by uid."""
    client = _client(props)
    uid = props.get("uid") or id
    try:
        if ctx.phase == HandlerPhase.DELETE:
            target = (ctx.output or {}).get("uid", uid)
            if not await client.delete_folder(target):
                logger.info("grafana_folder_already_deleted", uid=target)
            ctx.destroy()

        if ctx.phase == HandlerPhase.UPDATE and ctx.output.get("uid") != uid:
            ctx.replace()

        title = props.get("title") or id
        existing = await client.get_folder(uid)
        if existing is None:
            folder = await client.create_folder(uid, title)
        elif ctx.phase == HandlerPhase.CREATE and not (ctx.adopt or ctx.replacing):
            raise ProviderError(
                f'Grafana folder "{uid}" already exists; rerun with --adopt to manage it',
                {"fqn": ctx.fqn, "uid": uid},
            )
        else:
            folder = await client.update_folder(uid, title, version=existing.get("version"))
    except (PermanentHTTPError, RetryableHTTPError) as exc:
        raise _provider_error(ctx, exc) from exc

    return ctx.finalize(
        uid=folder.get("uid", uid),
        title=folder.get("title", title),
        folder_id=folder.get("id"),
        url=folder.get("url"),
        version=folder.get("version"),
    )


@resource("grafana::dashboard")
async def GrafanaDashboard(ctx: Context, id: str, props: dict[str, Any]) -> ResourceOutput:
    """A Grafana dashboard, identified by uid."""
    client = _client(props)
    uid = props.get("uid") or id
    try:
        if ctx.phase == HandlerPhase.DELETE:
            target = (ctx.output or {}).get("uid", uid)
            if not await client.delete_dashboard(target):
                logger.info("grafana_dashboard_already_deleted", uid=target)
            ctx.destroy()

        if ctx.phase == HandlerPhase.UPDATE and ctx.output.get("uid") != uid:
            ctx.replace()

        if ctx.phase == HandlerPhase.CREATE and not (ctx.adopt or ctx.replacing):
            if await client.get_dashboard(uid) is not None:
                raise ProviderError(
                    f'Grafana dashboard "{uid}" already exists; rerun with --adopt to manage it',
                    {"fqn": ctx.fqn, "uid": uid},
                )

        title = props.get("title") or id
        dashboard = dict(props.get("dashboard") or {})
        dashboard.update({"uid": uid, "title": title})
        dashboard.pop("id", None)
        dashboard.pop("version", None)
        folder_uid = props.get("folder_uid")
        result = await client.upsert_dashboard(
            dashboard,
            folder_uid=folder_uid,
            message=f"crucible: {ctx.phase} {ctx.fqn}",
        )
    except (PermanentHTTPError, RetryableHTTPError) as exc:
        raise _provider_error(ctx, exc) from exc

    return ctx.finalize(
        uid=result.get("uid", uid),
        title=title,
        folder_uid=folder_uid,
        url=result.get("url"),
        version=result.get("version"),
    )
