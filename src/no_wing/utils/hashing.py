"""Hashing helpers."""

from __future__ import annotations

import hashlib


def sha256_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def fingerprint(*parts: str | None) -> str:
    material = "\x1f".join(part or "" for part in parts)
    return sha256_text(material)
