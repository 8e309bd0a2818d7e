from __future__ import annotations

import hashlib
import re

_SHA256_HEX = re.compile(r"[0-9a-fA-F]{64}")


def sha256_hex(data: bytes) -> str:
    """Hex SHA-256 of raw bytes; the content checksum stored on assets and renditions."""
    return hashlib.sha256(data).hexdigest()


def is_sha256_hex(value: str) -> bool:
    return bool(_SHA256_HEX.fullmatch(value or ""))
