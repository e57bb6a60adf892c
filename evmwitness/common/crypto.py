"""
Hashing utilities.

- keccak256 (the standard Ethereum hash)
- sha256
- code hash schemes used by the code store
"""

from __future__ import annotations

from typing import Callable

from Crypto.Hash import keccak as _keccak_mod
from Crypto.Hash import SHA256


def keccak256(data: bytes) -> bytes:
    """Compute Keccak-256 hash (NOT SHA3-256)."""
    h = _keccak_mod.new(digest_bits=256)
    h.update(data)
    return h.digest()


def sha256(data: bytes) -> bytes:
    """Compute SHA-256 hash."""
    return SHA256.new(data).digest()


# ---------------------------------------------------------------------------
# Code hash schemes
# ---------------------------------------------------------------------------

CodeHasher = Callable[[bytes], bytes]

CODE_HASH_SCHEMES: dict[str, CodeHasher] = {
    "keccak": keccak256,
    "sha256": sha256,
}


def get_code_hasher(scheme: str) -> CodeHasher:
    """Return the hash function registered under `scheme`."""
    try:
        return CODE_HASH_SCHEMES[scheme]
    except KeyError:
        raise ValueError(f"Unknown code hash scheme: {scheme}") from None
