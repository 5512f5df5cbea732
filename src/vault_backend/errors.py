"""Error taxonomy for the attachment library.

Every condition a caller is expected to handle has its own class with a
stable ``code``; the HTTP layer maps them in ``error_handlers``. None of these
are retried inside the service layer.
"""

from __future__ import annotations

from typing import ClassVar


class AttachmentError(Exception):
    code: ClassVar[str] = "attachment_error"
    status_code: ClassVar[int] = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()

    @classmethod
    def default_message(cls) -> str:
        return cls.code.replace("_", " ")

    def details(self) -> dict[str, object] | None:
        return None


class PasswordRequired(AttachmentError):
    code = "password_required"
    status_code = 400

    @classmethod
    def default_message(cls) -> str:
        return "Password is required to open this file"


class IncorrectPassword(AttachmentError):
    code = "incorrect_password"
    status_code = 401

    def __init__(self, attempts_remaining: int) -> None:
        self.attempts_remaining = max(0, int(attempts_remaining))
        super().__init__(f"Incorrect password. {self.attempts_remaining} attempts left.")

    def details(self) -> dict[str, object] | None:
        return {"attempts_remaining": self.attempts_remaining}


class DeletedAfterLockout(AttachmentError):
    """Terminal: the attachment no longer exists."""

    code = "deleted_after_lockout"
    status_code = 410

    @classmethod
    def default_message(cls) -> str:
        return "File deleted after too many incorrect password attempts"


class MissingFile(AttachmentError):
    code = "missing_file"
    status_code = 404

    @classmethod
    def default_message(cls) -> str:
        return "Attachment contents missing"


class CorruptArchive(AttachmentError):
    code = "corrupt_archive"
    status_code = 422

    @classmethod
    def default_message(cls) -> str:
        return "Encrypted file could not be opened"


class AttachmentNotFound(AttachmentError):
    code = "attachment_not_found"
    status_code = 404

    @classmethod
    def default_message(cls) -> str:
        return "Attachment not found"


class FolderNotFound(AttachmentError):
    code = "folder_not_found"
    status_code = 404

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Folder not found: {path}")


class DuplicateFolderName(AttachmentError):
    code = "duplicate_folder_name"
    status_code = 409

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Folder already exists: {path}")


class InvalidPath(AttachmentError):
    code = "invalid_path"
    status_code = 400


class UploadRejected(AttachmentError):
    code = "upload_rejected"
    status_code = 400


class UploadTooLarge(UploadRejected):
    code = "payload_too_large"
    status_code = 413

    @classmethod
    def default_message(cls) -> str:
        return "attachment too large"


class StorageFailure(AttachmentError):
    """Infrastructure failure (disk, object store, database); never a credential problem."""

    code = "storage_failure"
    status_code = 503

    @classmethod
    def default_message(cls) -> str:
        return "Storage temporarily unavailable"
