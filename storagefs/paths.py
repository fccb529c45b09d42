"""
Helpers for logical paths and object key prefixes.

Logical paths are always absolute and use the disk's directory separator.
Object keys never start with the separator.
"""

import re


def strip_separators(value: str | None, separator: str = "/") -> str:
    """Remove every leading and trailing separator from value"""
    if not value:
        return ""
    sep = re.escape(separator)
    return re.sub(rf"^(?:{sep})+|(?:{sep})+$", "", value)


def join_prefix(*parts: str | None, separator: str = "/") -> str:
    """
    Join key prefixes with exactly one separator between non-empty parts.
    join_prefix("a/", "/b") == join_prefix("a", "b") == "a/b", and the operation is
    associative: join_prefix(join_prefix(a, b), c) == join_prefix(a, join_prefix(b, c))
    """
    cleaned = [strip_separators(part, separator) for part in parts]
    return separator.join(part for part in cleaned if part)


def normalize(path: str, separator: str = "/") -> str:
    """
    Collapse repeated separators and resolve '.' and '..' segments.
    The result is always absolute; '..' above the root stays at the root.
    """
    segments: list[str] = []
    for segment in path.split(separator):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return separator + separator.join(segments)


def resolve(path: str, base: str, separator: str = "/") -> str:
    """Resolve path against base (an absolute directory) unless it is already absolute"""
    if not path.startswith(separator):
        path = f"{base.rstrip(separator)}{separator}{path}"
    return normalize(path, separator)


def dirname(path: str, separator: str = "/") -> str:
    head, _, _ = normalize(path, separator).rpartition(separator)
    return head or separator


def basename(path: str, separator: str = "/") -> str:
    return normalize(path, separator).rpartition(separator)[2]


def is_root(path: str, separator: str = "/") -> bool:
    return normalize(path, separator) == separator


def relative_to(key: str, prefix: str, separator: str = "/") -> str:
    """
    Return key relative to a key prefix (with or without trailing separator).
    Keys outside the prefix are returned unchanged.
    """
    prefix = strip_separators(prefix, separator)
    if not prefix:
        return key.lstrip(separator)
    if key == prefix:
        return ""
    if key.startswith(prefix + separator):
        return key[len(prefix) + len(separator) :]
    return key
