from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from .object_storage import ObjectNotFound, ObjectStorageError

T = TypeVar("T")

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


def _is_not_found(exc: ClientError) -> bool:
    return str(exc.response.get("Error", {}).get("Code", "")) in _NOT_FOUND_CODES


class S3ObjectStorage:
    """S3 compatible backend; every boto3 call runs in the threadpool."""

    def __init__(
        self,
        *,
        endpoint_url: str,
        region: str,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        force_path_style: bool,
    ) -> None:
        self._bucket = bucket
        self._client: Any = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region or None,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(s3={"addressing_style": "path" if force_path_style else "virtual"}),
        )

    async def _call(self, op: str, key: str, fn: Callable[[], T]) -> T:
        def _guarded() -> T:
            try:
                return fn()
            except ClientError as e:
                if _is_not_found(e):
                    raise ObjectNotFound(key) from e
                raise ObjectStorageError(f"{op} failed: {key}") from e
            except BotoCoreError as e:
                raise ObjectStorageError(f"{op} failed: {key}") from e

        return await run_in_threadpool(_guarded)

    async def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra = {"ContentType": content_type} if content_type else {}
        await self._call(
            "put",
            key,
            lambda: self._client.put_object(Bucket=self._bucket, Key=key, Body=data, **extra),
        )

    async def get_bytes(self, key: str) -> bytes:
        def _get() -> bytes:
            body = self._client.get_object(Bucket=self._bucket, Key=key).get("Body")
            if body is None:
                raise ObjectNotFound(key)
            return body.read()

        return await self._call("get", key, _get)

    async def exists(self, key: str) -> bool:
        try:
            await self._call(
                "head", key, lambda: self._client.head_object(Bucket=self._bucket, Key=key)
            )
        except ObjectNotFound:
            return False
        return True

    async def delete(self, key: str) -> None:
        # DeleteObject already succeeds for missing keys.
        await self._call(
            "delete", key, lambda: self._client.delete_object(Bucket=self._bucket, Key=key)
        )
