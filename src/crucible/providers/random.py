"""``random::string``: a random value generated once and kept in state."""

from __future__ import annotations

import base64
import secrets
from typing import Any

from crucible.context import Context, HandlerPhase
from crucible.core.errors import ProviderError
from crucible.resource import ResourceOutput, resource
from crucible.serde import Secret

ENCODINGS = ("hex", "base64")


def generate(length: int, encoding: str) -> str:
    """Generate ``length`` random bytes rendered in ``encoding``."""
    raw = secrets.token_bytes(length)
    if encoding == "hex":
        return raw.hex()
    return base64.b64encode(raw).decode("ascii")


@resource("random::string")
async def RandomString(ctx: Context, id: str, props: dict[str, Any]) -> ResourceOutput:
    """A random string, stored encrypted. Requires a password.

    Changing ``length`` or ``encoding`` generates a new value; otherwise the
    value from the previous run is kept.
    """
    if ctx.phase == HandlerPhase.DELETE:
        ctx.destroy()

    length = int(props.get("length", 32))
    encoding = props.get("encoding", "hex")
    if encoding not in ENCODINGS:
        raise ProviderError(
            f"Unsupported encoding {encoding!r}; expected one of {', '.join(ENCODINGS)}",
            {"fqn": ctx.fqn, "encoding": encoding},
        )

    if ctx.phase == HandlerPhase.UPDATE:
        previous = ctx.props or {}
        if previous.get("length", 32) != length or previous.get("encoding", "hex") != encoding:
            ctx.replace()
        return ctx.finalize(ctx.output)

    return ctx.finalize(value=Secret(generate(length, encoding)), length=length, encoding=encoding)
