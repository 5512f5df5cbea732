from __future__ import annotations

import io
import os
import struct
import zipfile

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from vault_backend import sealed_archive
from vault_backend.sealed_archive import IncorrectPasswordOrCorrupt, open_sealed, seal

# Lowest accepted scrypt cost; keeps these tests fast.
_COST = sealed_archive.MIN_LOG2_N


def _reseal_inner(inner_zip: bytes, password: str) -> bytes:
    salt = os.urandom(sealed_archive.SALT_LEN)
    nonce = os.urandom(sealed_archive.NONCE_LEN)
    header = (
        struct.pack(
            ">4sBBBB",
            sealed_archive.MAGIC,
            sealed_archive.VERSION,
            _COST,
            sealed_archive.SCRYPT_R,
            sealed_archive.SCRYPT_P,
        )
        + salt
        + nonce
    )
    key = sealed_archive._derive_key(  # pyright: ignore[reportPrivateUsage]
        password, salt, log2_n=_COST, r=sealed_archive.SCRYPT_R, p=sealed_archive.SCRYPT_P
    )
    return header + AESGCM(key).encrypt(nonce, inner_zip, header)


def test_seal_open_returns_original_bytes_and_filename():
    data = b"tax return 2025\x00\xff" * 50
    container = seal(data, "taxes 2025.pdf", "correct horse", log2_n=_COST)

    name, out = open_sealed(container, "correct horse")
    assert name == "taxes 2025.pdf"
    assert out == data


def test_seal_handles_empty_payload_and_unicode_name():
    container = seal(b"", "résumé.txt", "pw", log2_n=_COST)
    assert open_sealed(container, "pw") == ("résumé.txt", b"")


def test_seal_is_randomized_per_call():
    a = seal(b"same", "f.txt", "pw", log2_n=_COST)
    b = seal(b"same", "f.txt", "pw", log2_n=_COST)
    assert a != b
    assert a[: len(sealed_archive.MAGIC)] == sealed_archive.MAGIC


def test_seal_does_not_leak_plaintext_or_filename():
    container = seal(b"very secret plaintext", "secret-name.txt", "pw", log2_n=_COST)
    assert b"very secret plaintext" not in container
    assert b"secret-name" not in container


def test_open_with_wrong_password_fails():
    container = seal(b"hello", "a.txt", "right", log2_n=_COST)
    with pytest.raises(IncorrectPasswordOrCorrupt):
        open_sealed(container, "wrong")


@pytest.mark.parametrize("position", [0, 5, 30, -1])
def test_open_tampered_container_fails(position: int):
    container = bytearray(seal(b"hello world", "a.txt", "pw", log2_n=_COST))
    container[position] ^= 0x01
    with pytest.raises(IncorrectPasswordOrCorrupt):
        open_sealed(bytes(container), "pw")


def test_open_truncated_container_fails():
    container = seal(b"hello", "a.txt", "pw", log2_n=_COST)
    with pytest.raises(IncorrectPasswordOrCorrupt):
        open_sealed(container[: sealed_archive.HEADER_LEN], "pw")
    with pytest.raises(IncorrectPasswordOrCorrupt):
        open_sealed(b"", "pw")


def test_open_rejects_empty_archive():
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w"):
        pass
    with pytest.raises(IncorrectPasswordOrCorrupt):
        open_sealed(_reseal_inner(buf.getvalue(), "pw"), "pw")


def test_open_rejects_multi_entry_archive():
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_STORED) as zf:
        zf.writestr("a.txt", b"a")
        zf.writestr("b.txt", b"b")
    with pytest.raises(IncorrectPasswordOrCorrupt):
        open_sealed(_reseal_inner(buf.getvalue(), "pw"), "pw")


def test_open_rejects_compressed_entry():
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("a.txt", b"a" * 100)
    with pytest.raises(IncorrectPasswordOrCorrupt):
        open_sealed(_reseal_inner(buf.getvalue(), "pw"), "pw")


def test_inner_archive_is_store_only():
    container = seal(b"x" * 1000, "a.txt", "pw", log2_n=_COST)
    # Store-only: ciphertext length tracks the plaintext, no compression.
    assert len(container) > 1000


def test_seal_rejects_bad_inputs():
    with pytest.raises(ValueError):
        seal(b"x", "a.txt", "", log2_n=_COST)
    with pytest.raises(ValueError):
        seal(b"x", "a.txt", "pw", log2_n=sealed_archive.MAX_LOG2_N + 1)


@pytest.mark.parametrize(
    "name", [" lead.txt", "trail.txt ", "  ", "a/b.txt", "/abs.txt", "x\\y.txt"]
)
def test_filename_is_kept_exactly(name: str):
    container = seal(b"abc", name, "pw", log2_n=_COST)
    assert open_sealed(container, "pw") == (name, b"abc")


@pytest.mark.parametrize("name", ["", "dir/", "a\x00b.txt"])
def test_seal_rejects_names_that_cannot_round_trip(name: str):
    with pytest.raises(ValueError):
        seal(b"abc", name, "pw", log2_n=_COST)
