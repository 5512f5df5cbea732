from __future__ import annotations

from vault_backend.errors import InvalidPath

ROOT = "/"

_MAX_SEGMENT_LEN = 255


def _has_control_chars(value: str) -> bool:
    return any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value)


def validate_segment(name: str) -> str:
    """Return ``name`` trimmed, or raise InvalidPath if it can't be a single path segment."""

    if not isinstance(name, str):
        raise InvalidPath("folder name must be a string")
    v = name.strip()
    if not v:
        raise InvalidPath("folder name is required")
    if "/" in v or "\\" in v:
        raise InvalidPath("folder name cannot contain path separators")
    if v in {".", ".."}:
        raise InvalidPath(f"invalid folder name: {v}")
    if _has_control_chars(v):
        raise InvalidPath("folder name contains control characters")
    if len(v) > _MAX_SEGMENT_LEN:
        raise InvalidPath("folder name too long")
    return v


def normalize(value: str | None) -> str:
    # None/"" mean root; "/a//b/" -> "/a/b"; backslashes count as separators.
    if value is None:
        return ROOT
    if not isinstance(value, str):
        raise InvalidPath("path must be a string")
    if "\x00" in value:
        raise InvalidPath("path contains a null byte")

    raw = value.strip().replace("\\", "/")
    parts = [p for p in raw.split("/") if p != ""]
    if not parts:
        return ROOT
    return ROOT + "/".join(validate_segment(p) for p in parts)


def parent(path: str) -> str:
    p = normalize(path)
    if p == ROOT:
        return ROOT
    head = p.rsplit("/", 1)[0]
    return head or ROOT


def basename(path: str) -> str:
    p = normalize(path)
    if p == ROOT:
        return ""
    return p.rsplit("/", 1)[1]


def join(parent_path: str, name: str) -> str:
    base = normalize(parent_path)
    segment = validate_segment(name)
    if base == ROOT:
        return ROOT + segment
    return f"{base}/{segment}"


def is_descendant_or_self(path: str, ancestor: str) -> bool:
    p = normalize(path)
    a = normalize(ancestor)
    if a == ROOT:
        return True
    return p == a or p.startswith(a + "/")


def replace_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    """Rewrite ``path`` living under ``old_prefix`` so it lives under ``new_prefix``."""

    p = normalize(path)
    old = normalize(old_prefix)
    new = normalize(new_prefix)
    if not is_descendant_or_self(p, old):
        raise InvalidPath(f"{p} is not under {old}")
    if p == old:
        return new
    suffix = p[len(old) :] if old != ROOT else p
    if new == ROOT:
        return suffix
    return new + suffix
