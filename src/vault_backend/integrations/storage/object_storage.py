from __future__ import annotations

from typing import Protocol

from vault_backend.config import settings


class ObjectStorageError(Exception):
    """I/O failure talking to the object store (disk, network, credentials)."""


class ObjectNotFound(ObjectStorageError):
    def __init__(self, key: str) -> None:
        super().__init__(f"object not found: {key}")
        self.key = key


class ObjectStorage(Protocol):
    async def put_bytes(
        self, key: str, data: bytes, *, content_type: str | None = None
    ) -> None: ...

    async def get_bytes(self, key: str) -> bytes:
        """Raise ObjectNotFound when the key has no object."""
        ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, key: str) -> None:
        """Idempotent: deleting a missing key is not an error."""
        ...


def build_attachment_storage_key(*, attachment_id: str) -> str:
    # Pinned local layout: ${ATTACHMENTS_LOCAL_DIR}/attachments/{attachment_id}
    # The same key works for S3 providers.
    return f"attachments/{attachment_id}"


def get_object_storage() -> ObjectStorage:
    # Default to local storage when S3 config is incomplete.
    if settings.s3_configured():
        from .s3_storage import S3ObjectStorage

        return S3ObjectStorage(
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            bucket=settings.s3_bucket,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            force_path_style=settings.s3_force_path_style,
        )

    from .local_storage import LocalObjectStorage

    return LocalObjectStorage(root_dir=settings.attachments_local_dir)
