from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import aioboto3
from botocore.exceptions import ClientError

from crucible.config import get_settings
from crucible.core.errors import ConfigurationError
from crucible.state.base import State, StateStore, StateStoreFactory, decode_key, encode_key

if TYPE_CHECKING:
    from crucible.scope import Scope

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3StateStore(StateStore):
    """Stores each resource as ``<prefix><scope chain>/<id>.json`` in a bucket."""

    def __init__(
        self,
        scope: Scope,
        *,
        bucket: str,
        prefix: str = "crucible/",
        region: str | None = None,
        session: Any = None,
    ) -> None:
        self._scope = scope
        self._bucket = bucket
        chain = "/".join(scope.chain)
        base = prefix.rstrip("/")
        self._prefix = "/".join(part for part in (base, chain) if part) + "/"
        self._session = session or aioboto3.Session(region_name=region)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{encode_key(key)}.json"

    async def list(self) -> list[str]:
        ids: list[str] = []
        async with self._session.client("s3") as client:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(
                Bucket=self._bucket, Prefix=self._prefix, Delimiter="/"
            ):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(self._prefix) :]
                    if name.endswith(".json"):
                        ids.append(decode_key(name[: -len(".json")]))
        return ids

    async def get(self, key: str) -> State | None:
        async with self._session.client("s3") as client:
            try:
                response = await client.get_object(Bucket=self._bucket, Key=self._key(key))
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                    return None
                raise
            body = await response["Body"].read()
        return State.from_dict(json.loads(body), password=self._scope.password)

    async def set(self, key: str, state: State) -> None:
        body = json.dumps(state.to_dict(password=self._scope.password))
        async with self._session.client("s3") as client:
            await client.put_object(
                Bucket=self._bucket,
                Key=self._key(key),
                Body=body.encode("utf-8"),
                ContentType="application/json",
            )

    async def delete(self, key: str) -> None:
        async with self._session.client("s3") as client:
            await client.delete_object(Bucket=self._bucket, Key=self._key(key))


def s3_state_store(
    bucket: str | None = None,
    *,
    prefix: str | None = None,
    region: str | None = None,
    session: Any = None,
) -> StateStoreFactory:
    settings = get_settings()
    resolved_bucket = bucket or settings.s3_bucket
    if not resolved_bucket:
        raise ConfigurationError("The s3 state store requires CRUCIBLE_S3_BUCKET")

    def factory(scope: Scope) -> StateStore:
        return S3StateStore(
            scope,
            bucket=resolved_bucket,
            prefix=prefix if prefix is not None else settings.s3_prefix,
            region=region or settings.aws_region,
            session=session,
        )

    return factory
