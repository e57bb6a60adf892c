"""
Core types shared by the state database and the witness builder.

Words are plain Python ints in [0, 2**256); addresses are 20-byte `bytes`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

from evmwitness.common.crypto import keccak256
from evmwitness.vm.errors import StateDBError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

UINT256_MAX = (1 << 256) - 1

EMPTY_CODE_HASH = keccak256(b"")

ZERO_HASH = b"\x00" * 32
ZERO_ADDRESS = b"\x00" * 20


# ---------------------------------------------------------------------------
# Word / address helpers
# ---------------------------------------------------------------------------

def word_to_address(word: int) -> bytes:
    """Take the low 160 bits of a stack word as an address."""
    return (word & ((1 << 160) - 1)).to_bytes(20, "big")


def address_to_word(address: bytes) -> int:
    return int.from_bytes(address, "big")


def word_to_bytes(word: int) -> bytes:
    return (word & UINT256_MAX).to_bytes(32, "big")


def is_precompiled(address: bytes, count: int = 10) -> bool:
    """Precompiles occupy addresses 0x01..count."""
    value = int.from_bytes(address, "big")
    return 1 <= value <= count


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

@dataclass
class Account:
    """Account of the in-memory state: balance, nonce, storage and code info.

    `code_hash` uses the code store's lookup scheme; `keccak_code_hash` is the
    standard keccak hash of the same code.
    """

    nonce: int = 0
    balance: int = 0
    storage: dict[int, int] = field(default_factory=dict)
    code_hash: bytes = field(default_factory=lambda: EMPTY_CODE_HASH)
    keccak_code_hash: bytes = field(default_factory=lambda: EMPTY_CODE_HASH)
    code_size: int = 0

    @classmethod
    def zero(cls, empty_code_hash: bytes = EMPTY_CODE_HASH) -> Account:
        return cls(code_hash=empty_code_hash)

    def is_empty(self) -> bool:
        is_code_hash_empty = self.keccak_code_hash == EMPTY_CODE_HASH
        if is_code_hash_empty and self.code_size != 0:
            raise StateDBError(
                f"account with empty code hash has code size {self.code_size}"
            )
        return self.nonce == 0 and self.balance == 0 and is_code_hash_empty

    def code_hash_read(self) -> bytes:
        """Code hash as observed by EXTCODEHASH: zero for empty accounts."""
        if self.is_empty():
            return ZERO_HASH
        return self.code_hash

    def copy(self) -> Account:
        return copy.deepcopy(self)
