from __future__ import annotations

import hashlib


def sha256_hex(data: bytes) -> str:
    """Hex SHA-256 of a byte buffer. Used for artifact checksums and manifest integrity."""
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_hex(text.encode("utf-8"))


def short_hash(value: str, length: int = 8) -> str:
    return sha256_text(value)[:length]
