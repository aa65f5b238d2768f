"""Local filesystem resources: ``fs::file`` and ``fs::folder``."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import structlog

from crucible.context import Context, HandlerPhase
from crucible.core.errors import ProviderError
from crucible.resource import ResourceOutput, resource
from crucible.serde import Secret

logger = structlog.get_logger()


def _previous_path(ctx: Context) -> str | None:
    return (ctx.output or {}).get("path")


@resource("fs::file")
async def File(ctx: Context, id: str, props: dict[str, Any]) -> ResourceOutput:
    """A file with the given content; ``path`` defaults to the resource id.

    Changing the path replaces the file: the new one is written first and the
    old one is removed when the run finalizes.
    """
    path = Path(props.get("path") or id)

    if ctx.phase == HandlerPhase.DELETE:
        target = Path(_previous_path(ctx) or path)
        await asyncio.to_thread(target.unlink, missing_ok=True)
        ctx.destroy()

    if ctx.phase == HandlerPhase.UPDATE and _previous_path(ctx) != str(path):
        ctx.replace()

    if ctx.phase == HandlerPhase.CREATE and path.exists() and not ctx.adopt:
        raise ProviderError(
            f'File "{path}" already exists; rerun with --adopt to manage it',
            {"fqn": ctx.fqn, "path": str(path)},
        )

    content = props.get("content", "")
    text = content.unencrypted if isinstance(content, Secret) else str(content)

    def _write() -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    await asyncio.to_thread(_write)
    return ctx.finalize(path=str(path), content=content)


@resource("fs::folder")
async def Folder(ctx: Context, id: str, props: dict[str, Any]) -> ResourceOutput:
    """A directory; ``path`` defaults to the resource id.

    Deleting removes the directory only once it is empty, so files declared
    inside it must be destroyed first (they are, under the default
    sequential strategy, because they are declared later).
    """
    path = Path(props.get("path") or id)

    if ctx.phase == HandlerPhase.DELETE:
        target = Path(_previous_path(ctx) or path)
        try:
            await asyncio.to_thread(target.rmdir)
        except FileNotFoundError:
            logger.debug("folder_already_deleted", path=str(target))
        except OSError as exc:
            raise ProviderError(
                f'Folder "{target}" is not empty and cannot be deleted',
                {"fqn": ctx.fqn, "path": str(target)},
            ) from exc
        ctx.destroy()

    if ctx.phase == HandlerPhase.UPDATE and _previous_path(ctx) != str(path):
        ctx.replace()

    if ctx.phase == HandlerPhase.CREATE and path.is_dir() and not ctx.adopt:
        raise ProviderError(
            f'Folder "{path}" already exists; rerun with --adopt to manage it',
            {"fqn": ctx.fqn, "path": str(path)},
        )

    await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
    return ctx.finalize(path=str(path))
