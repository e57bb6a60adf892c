"""Test fixtures for the witness builder tests."""

from .addresses import (
    ALICE_ADDRESS,
    BOB_ADDRESS,
    CHARLIE_ADDRESS,
    COINBASE_ADDRESS,
    CONTRACT_A_ADDRESS,
    CONTRACT_B_ADDRESS,
    ZERO_ADDRESS,
    TEST_ADDRESSES,
)
from .contracts import (
    BAD_JUMP_BYTECODE,
    JUMPDEST_BYTECODE,
    STORE_BYTECODE,
    bytecode,
    push,
)

__all__ = [
    # Addresses
    "ALICE_ADDRESS",
    "BOB_ADDRESS",
    "CHARLIE_ADDRESS",
    "COINBASE_ADDRESS",
    "CONTRACT_A_ADDRESS",
    "CONTRACT_B_ADDRESS",
    "ZERO_ADDRESS",
    "TEST_ADDRESSES",
    # Contracts
    "BAD_JUMP_BYTECODE",
    "JUMPDEST_BYTECODE",
    "STORE_BYTECODE",
    "bytecode",
    "push",
]
