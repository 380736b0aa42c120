from __future__ import annotations

import hashlib
import secrets

_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"


def make_random_code(size: int, seed: str = "") -> str:
    """Return ``size`` alphanumeric characters derived from ``seed`` and fresh entropy."""
    chars: list[str] = []
    counter = 0
    while len(chars) < size:
        digest = hashlib.sha256(f"{seed}:{counter}:{secrets.token_hex(16)}".encode("utf-8")).digest()
        for byte in digest:
            # 248 == 62 * 4
            if byte >= 248:
                continue
            chars.append(_ALPHABET[byte % len(_ALPHABET)])
            if len(chars) == size:
                break
        counter += 1
    return "".join(chars)
