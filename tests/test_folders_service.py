from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from vault_backend.db import session_scope
from vault_backend.errors import DuplicateFolderName, FolderNotFound, InvalidPath, StorageFailure
from vault_backend.integrations.storage.local_storage import LocalObjectStorage
from vault_backend.models import AttachmentRow, FolderRow
from vault_backend.repositories import attachments_repo, folders_repo
from vault_backend.services import attachments_service, folders_service


async def _upload(storage: LocalObjectStorage, folder_path: str, name: str) -> str:
    async with session_scope() as session:
        out = await attachments_service.upload_plain(
            session=session,
            storage=storage,
            data=name.encode(),
            filename=name,
            mimetype="text/plain",
            folder_path=folder_path,
        )
    return out.id


async def _folder_paths() -> list[str]:
    async with session_scope() as session:
        return sorted((await session.exec(select(FolderRow.path))).all())


async def _live_attachments() -> dict[str, str | None]:
    async with session_scope() as session:
        stmt = select(AttachmentRow).where(AttachmentRow.deleted_at == None)  # noqa: E711
        rows = (await session.exec(stmt)).all()
    return {r.filename: r.folder_path for r in rows}


async def _disk_error(*_args: Any, **_kwargs: Any) -> Any:
    raise OperationalError("UPDATE", {}, Exception("disk I/O error"))


@pytest.mark.anyio
async def test_create_and_list_folders(storage: LocalObjectStorage):
    async with session_scope() as session:
        docs = await folders_service.create_folder(session=session, name="docs")
        assert docs.path == "/docs"
        assert docs.parent_path == "/"

        taxes = await folders_service.create_folder(
            session=session, name="taxes", parent_path="docs//"
        )
        assert taxes.path == "/docs/taxes"
        assert taxes.name == "taxes"
        await folders_service.create_folder(session=session, name="archive")

        with pytest.raises(DuplicateFolderName):
            await folders_service.create_folder(session=session, name="docs", parent_path="/")
        with pytest.raises(FolderNotFound):
            await folders_service.create_folder(session=session, name="x", parent_path="/nope")
        with pytest.raises(InvalidPath):
            await folders_service.create_folder(session=session, name="..")

    await _upload(storage, "/docs", "a.txt")
    await _upload(storage, "/", "root.txt")

    async with session_scope() as session:
        root = await folders_service.list_folder(session=session, path=None)
        assert root.folder_path == "/"
        assert [f.name for f in root.folders] == ["archive", "docs"]
        assert [f.filename for f in root.files] == ["root.txt"]

        listing = await folders_service.list_folder(session=session, path="/docs")
        assert [f.path for f in listing.folders] == ["/docs/taxes"]
        assert [f.filename for f in listing.files] == ["a.txt"]

        with pytest.raises(FolderNotFound):
            await folders_service.list_folder(session=session, path="/missing")


@pytest.mark.anyio
async def test_list_folder_omits_non_library_files(storage: LocalObjectStorage):
    async with session_scope() as session:
        await attachments_service.upload_plain(
            session=session, storage=storage, data=b"x", filename="loose.txt", mimetype="text/plain"
        )
        listing = await folders_service.list_folder(session=session, path="/")
    assert listing.files == []


@pytest.mark.anyio
async def test_rename_folder_remaps_subtree(storage: LocalObjectStorage):
    async with session_scope() as session:
        await folders_service.create_folder(session=session, name="docs")
        await folders_service.create_folder(session=session, name="x", parent_path="/docs")
        await folders_service.create_folder(session=session, name="docs2")

    in_docs = await _upload(storage, "/docs", "a.txt")
    in_x = await _upload(storage, "/docs/x", "b.txt")
    in_docs2 = await _upload(storage, "/docs2", "c.txt")

    async with session_scope() as session:
        out = await folders_service.rename_folder(session=session, path="/docs", new_name="archive")
    assert out.path == "/archive"
    assert out.name == "archive"

    async with session_scope() as session:
        paths = sorted((await session.exec(select(FolderRow.path))).all())
        assert paths == ["/archive", "/archive/x", "/docs2"]

        x = await folders_service.get_folder(session=session, path="/archive/x")
        assert x.parent_path == "/archive"

        rows = {r.id: r for r in (await session.exec(select(AttachmentRow))).all()}
        assert rows[in_docs].folder_path == "/archive"
        assert rows[in_x].folder_path == "/archive/x"
        # Prefix sibling is untouched.
        assert rows[in_docs2].folder_path == "/docs2"


@pytest.mark.anyio
async def test_rename_folder_errors(storage: LocalObjectStorage):
    _ = storage
    async with session_scope() as session:
        await folders_service.create_folder(session=session, name="a")
        await folders_service.create_folder(session=session, name="b")

        with pytest.raises(DuplicateFolderName):
            await folders_service.rename_folder(session=session, path="/a", new_name="b")
        with pytest.raises(FolderNotFound):
            await folders_service.rename_folder(session=session, path="/zzz", new_name="c")
        with pytest.raises(InvalidPath):
            await folders_service.rename_folder(session=session, path="/", new_name="c")
        with pytest.raises(InvalidPath):
            await folders_service.rename_folder(session=session, path="/a", new_name="c/d")

        same = await folders_service.rename_folder(session=session, path="/a", new_name="a")
        assert same.path == "/a"


@pytest.mark.anyio
async def test_delete_folder_cascades(storage: LocalObjectStorage):
    async with session_scope() as session:
        await folders_service.create_folder(session=session, name="docs")
        await folders_service.create_folder(session=session, name="y", parent_path="/docs")
        await folders_service.create_folder(session=session, name="other")

    doomed = [await _upload(storage, "/docs", "a.txt"), await _upload(storage, "/docs/y", "b.txt")]
    kept = await _upload(storage, "/other", "c.txt")

    async with session_scope() as session:
        removed = await folders_service.delete_folder(session=session, storage=storage, path="/docs")
    assert removed == 2

    async with session_scope() as session:
        paths = sorted((await session.exec(select(FolderRow.path))).all())
        assert paths == ["/other"]
        ids = [r.id for r in (await session.exec(select(AttachmentRow))).all()]
        assert ids == [kept]

        with pytest.raises(FolderNotFound):
            await folders_service.delete_folder(session=session, storage=storage, path="/docs")
        with pytest.raises(InvalidPath):
            await folders_service.delete_folder(session=session, storage=storage, path="/")

    for attachment_id in doomed:
        assert await storage.exists(f"attachments/{attachment_id}") is False
    assert await storage.exists(f"attachments/{kept}") is True


@pytest.mark.anyio
async def test_get_folder(storage: LocalObjectStorage):
    _ = storage
    async with session_scope() as session:
        await folders_service.create_folder(session=session, name="docs")
        out = await folders_service.get_folder(session=session, path="docs/")
        assert (out.path, out.name, out.parent_path) == ("/docs", "docs", "/")
        with pytest.raises(FolderNotFound):
            await folders_service.get_folder(session=session, path="/nope")


@pytest.mark.anyio
async def test_delete_folder_sweeps_writes_that_land_during_the_cascade(
    storage: LocalObjectStorage, monkeypatch: pytest.MonkeyPatch
):
    async with session_scope() as session:
        await folders_service.create_folder(session=session, name="docs")
    await _upload(storage, "/docs", "early.txt")

    real_mark = attachments_repo.mark_subtree_deleted
    late_ids: list[str] = []

    async def _mark_after_concurrent_writes(session: Any, *, path: str) -> list[str]:
        # Another request files into /docs after the delete has looked the folder up.
        late_ids.append(await _upload(storage, "/docs", "late.txt"))
        async with session_scope() as other:
            await folders_service.create_folder(session=other, name="late", parent_path="/docs")
        return await real_mark(session, path=path)

    monkeypatch.setattr(attachments_repo, "mark_subtree_deleted", _mark_after_concurrent_writes)

    async with session_scope() as session:
        removed = await folders_service.delete_folder(
            session=session, storage=storage, path="/docs"
        )

    assert removed == 2
    assert await _folder_paths() == []
    assert await _live_attachments() == {}
    assert await storage.exists(f"attachments/{late_ids[0]}") is False


@pytest.mark.anyio
async def test_rename_folder_carries_writes_that_land_during_the_cascade(
    storage: LocalObjectStorage, monkeypatch: pytest.MonkeyPatch
):
    async with session_scope() as session:
        await folders_service.create_folder(session=session, name="docs")

    real_rename = folders_repo.rename_subtree

    async def _rename_after_concurrent_writes(session: Any, **kwargs: Any) -> int:
        await _upload(storage, "/docs", "late.txt")
        async with session_scope() as other:
            await folders_service.create_folder(session=other, name="late", parent_path="/docs")
        return await real_rename(session, **kwargs)

    monkeypatch.setattr(folders_repo, "rename_subtree", _rename_after_concurrent_writes)

    async with session_scope() as session:
        await folders_service.rename_folder(session=session, path="/docs", new_name="archive")

    assert await _folder_paths() == ["/archive", "/archive/late"]
    assert await _live_attachments() == {"late.txt": "/archive"}


@pytest.mark.anyio
async def test_rename_folder_failing_midway_changes_nothing(
    storage: LocalObjectStorage, monkeypatch: pytest.MonkeyPatch
):
    async with session_scope() as session:
        await folders_service.create_folder(session=session, name="docs")
        await folders_service.create_folder(session=session, name="x", parent_path="/docs")
    await _upload(storage, "/docs/x", "a.txt")

    # Folder rows are rewritten first; the attachment step then fails.
    monkeypatch.setattr(attachments_repo, "move_subtree", _disk_error)

    async with session_scope() as session:
        with pytest.raises(StorageFailure):
            await folders_service.rename_folder(session=session, path="/docs", new_name="archive")

    assert await _folder_paths() == ["/docs", "/docs/x"]
    assert await _live_attachments() == {"a.txt": "/docs/x"}


@pytest.mark.anyio
async def test_rename_folder_failing_at_commit_changes_nothing(
    storage: LocalObjectStorage, monkeypatch: pytest.MonkeyPatch
):
    async with session_scope() as session:
        await folders_service.create_folder(session=session, name="docs")
    await _upload(storage, "/docs", "a.txt")

    async with session_scope() as session:
        monkeypatch.setattr(session, "commit", _disk_error)
        with pytest.raises(StorageFailure):
            await folders_service.rename_folder(session=session, path="/docs", new_name="archive")

    assert await _folder_paths() == ["/docs"]
    assert await _live_attachments() == {"a.txt": "/docs"}


@pytest.mark.anyio
async def test_delete_folder_failing_midway_changes_nothing(
    storage: LocalObjectStorage, monkeypatch: pytest.MonkeyPatch
):
    async with session_scope() as session:
        await folders_service.create_folder(session=session, name="docs")
        await folders_service.create_folder(session=session, name="y", parent_path="/docs")
    kept = [await _upload(storage, "/docs", "a.txt"), await _upload(storage, "/docs/y", "b.txt")]

    # Attachments are tombstoned first; removing the folder rows then fails.
    monkeypatch.setattr(folders_repo, "delete_subtree", _disk_error)

    async with session_scope() as session:
        with pytest.raises(StorageFailure):
            await folders_service.delete_folder(session=session, storage=storage, path="/docs")

    assert await _folder_paths() == ["/docs", "/docs/y"]
    assert await _live_attachments() == {"a.txt": "/docs", "b.txt": "/docs/y"}
    for attachment_id in kept:
        assert await storage.exists(f"attachments/{attachment_id}") is True


@pytest.mark.anyio
async def test_delete_folder_failing_at_commit_changes_nothing(
    storage: LocalObjectStorage, monkeypatch: pytest.MonkeyPatch
):
    async with session_scope() as session:
        await folders_service.create_folder(session=session, name="docs")
    await _upload(storage, "/docs", "a.txt")

    async with session_scope() as session:
        monkeypatch.setattr(session, "commit", _disk_error)
        with pytest.raises(StorageFailure):
            await folders_service.delete_folder(session=session, storage=storage, path="/docs")

    assert await _folder_paths() == ["/docs"]
    assert await _live_attachments() == {"a.txt": "/docs"}
