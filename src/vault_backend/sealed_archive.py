"""Sealed container: a single-entry, store-only ZIP encrypted with a password.

Layout (all integers unsigned, big endian)::

    magic "VLTZ" | version u8 | log2(n) u8 | r u8 | p u8 | salt[16] | nonce[12] | AES-256-GCM(zip)

The whole header is bound as associated data, so tampering with the KDF
parameters fails authentication like any other corruption. The key is
derived with scrypt.
"""

from __future__ import annotations

import io
import os
import struct
import zipfile

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from vault_backend.config import (
    ARCHIVE_SCRYPT_MAX_LOG2_N,
    ARCHIVE_SCRYPT_MIN_LOG2_N,
    settings,
)

MAGIC = b"VLTZ"
VERSION = 1

KEY_LEN = 32
SALT_LEN = 16
NONCE_LEN = 12
TAG_LEN = 16

SCRYPT_R = 8
SCRYPT_P = 1

# Hard limits applied when reading a header.
MIN_LOG2_N = ARCHIVE_SCRYPT_MIN_LOG2_N
MAX_LOG2_N = ARCHIVE_SCRYPT_MAX_LOG2_N
MAX_SCRYPT_R = 16
MAX_SCRYPT_P = 4

_PARAMS = struct.Struct(">4sBBBB")
HEADER_LEN = _PARAMS.size + SALT_LEN + NONCE_LEN


class IncorrectPasswordOrCorrupt(ValueError):
    """Raised for any container that does not open with the given password."""


def _derive_key(password: str, salt: bytes, *, log2_n: int, r: int, p: int) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LEN, n=1 << log2_n, r=r, p=p)
    return kdf.derive(password.encode("utf-8"))


def _zip_single_entry(data: bytes, filename: str) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_STORED) as zf:
        info = zipfile.ZipInfo(filename)
        info.compress_type = zipfile.ZIP_STORED
        zf.writestr(info, data)
    return buf.getvalue()


def _unzip_single_entry(raw: bytes) -> tuple[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(raw), mode="r") as zf:
        entries = zf.infolist()
        if len(entries) != 1:
            raise IncorrectPasswordOrCorrupt("archive must hold exactly one entry")
        entry = entries[0]
        if entry.is_dir() or entry.compress_type != zipfile.ZIP_STORED:
            raise IncorrectPasswordOrCorrupt("unexpected archive entry")
        # ZipFile.read verifies the CRC.
        return entry.filename, zf.read(entry)


def _check_entry_name(filename: str) -> None:
    # The name is stored verbatim; reject the ones zipfile would alter or read back as a directory.
    if not filename:
        raise ValueError("filename is required")
    if "\x00" in filename:
        raise ValueError("filename contains a null byte")
    if filename.endswith("/"):
        raise ValueError("filename cannot end with '/'")


def seal(data: bytes, filename: str, password: str, *, log2_n: int | None = None) -> bytes:
    if not password:
        raise ValueError("password is required")
    _check_entry_name(filename)

    cost = settings.archive_scrypt_log2_n if log2_n is None else int(log2_n)
    if not MIN_LOG2_N <= cost <= MAX_LOG2_N:
        raise ValueError(f"scrypt cost must be within [{MIN_LOG2_N}, {MAX_LOG2_N}]")

    salt = os.urandom(SALT_LEN)
    nonce = os.urandom(NONCE_LEN)
    header = _PARAMS.pack(MAGIC, VERSION, cost, SCRYPT_R, SCRYPT_P) + salt + nonce

    key = _derive_key(password, salt, log2_n=cost, r=SCRYPT_R, p=SCRYPT_P)
    ciphertext = AESGCM(key).encrypt(nonce, _zip_single_entry(data, filename), header)
    return header + ciphertext


def open_sealed(container: bytes, password: str) -> tuple[str, bytes]:
    """Return ``(filename, data)``; any failure raises IncorrectPasswordOrCorrupt."""

    if not password or len(container) < HEADER_LEN + TAG_LEN:
        raise IncorrectPasswordOrCorrupt("incorrect password or corrupt archive")

    magic, version, log2_n, r, p = _PARAMS.unpack_from(container, 0)
    if (
        magic != MAGIC
        or version != VERSION
        or not MIN_LOG2_N <= log2_n <= MAX_LOG2_N
        or not 1 <= r <= MAX_SCRYPT_R
        or not 1 <= p <= MAX_SCRYPT_P
    ):
        raise IncorrectPasswordOrCorrupt("incorrect password or corrupt archive")

    header = container[:HEADER_LEN]
    salt = header[_PARAMS.size : _PARAMS.size + SALT_LEN]
    nonce = header[_PARAMS.size + SALT_LEN :]

    try:
        key = _derive_key(password, salt, log2_n=log2_n, r=r, p=p)
        raw = AESGCM(key).decrypt(nonce, container[HEADER_LEN:], header)
        return _unzip_single_entry(raw)
    except IncorrectPasswordOrCorrupt:
        raise
    except (InvalidTag, zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, KeyError, EOFError) as e:
        raise IncorrectPasswordOrCorrupt("incorrect password or corrupt archive") from e
