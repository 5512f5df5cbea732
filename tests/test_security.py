from __future__ import annotations

import bcrypt
import pytest

from vault_backend.config import settings
from vault_backend.security import (
    MAX_PASSWORD_BYTES,
    check_attachment_password,
    hash_attachment_password,
    password_fits,
)


@pytest.fixture(autouse=True)
def _cheap_rounds(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "attachments_bcrypt_rounds", 4)


def test_hash_and_check_attachment_password():
    h = hash_attachment_password("hunter2")
    assert h != "hunter2"
    assert bcrypt.checkpw(b"hunter2", h.encode("ascii"))
    assert check_attachment_password("hunter2", h) is True
    assert check_attachment_password("hunter3", h) is False


def test_hash_uses_configured_rounds():
    assert hash_attachment_password("pw").startswith("$2b$04$")


def test_password_fits_counts_utf8_bytes():
    assert password_fits("x" * MAX_PASSWORD_BYTES)
    assert not password_fits("x" * (MAX_PASSWORD_BYTES + 1))
    # 36 two-byte characters fill the limit exactly.
    assert password_fits("é" * 36)
    assert not password_fits("é" * 37)
    assert not password_fits("")


def test_hash_rejects_unfit_password():
    with pytest.raises(ValueError):
        hash_attachment_password("x" * (MAX_PASSWORD_BYTES + 1))
    with pytest.raises(ValueError):
        hash_attachment_password("")


def test_check_tolerates_bad_input():
    h = hash_attachment_password("pw")
    assert check_attachment_password("x" * (MAX_PASSWORD_BYTES + 1), h) is False
    assert check_attachment_password("", h) is False
    assert check_attachment_password("pw", "not-a-bcrypt-hash") is False
