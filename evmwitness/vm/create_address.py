"""Contract address computation for CREATE and CREATE2 (EIP-1014).

CREATE:
    address = keccak256(rlp([sender, nonce]))[12:]
CREATE2:
    address = keccak256(0xff ++ sender ++ salt ++ keccak256(init_code))[12:]

The *_for_step variants read their inputs from a trace step at the instant
the creation opcode executes. They never mutate state.
"""

from __future__ import annotations

import rlp

from evmwitness.common.crypto import keccak256
from evmwitness.common.types import word_to_bytes


def get_create_address(sender: bytes, nonce: int) -> bytes:
    """Address of a contract created by `sender` with account nonce `nonce`."""
    if len(sender) != 20:
        raise ValueError(f"Sender must be 20 bytes, got {len(sender)}")
    return keccak256(rlp.encode([sender, nonce]))[12:]


def get_create2_address(sender: bytes, salt: bytes, init_code: bytes) -> bytes:
    """
    Compute a CREATE2 contract address.

    Args:
        sender: 20-byte deployer address
        salt: 32-byte salt
        init_code: contract initialization code

    Raises:
        ValueError: If sender is not 20 bytes or salt is not 32 bytes
    """
    if len(sender) != 20:
        raise ValueError(f"Sender must be 20 bytes, got {len(sender)}")
    if len(salt) != 32:
        raise ValueError(f"Salt must be 32 bytes, got {len(salt)}")
    preimage = b"\xff" + sender + salt + keccak256(init_code)
    return keccak256(preimage)[12:]


def create_address_for_step(call, sdb) -> bytes:
    """CREATE address for the frame `call`, using the creator's current nonce."""
    return get_create_address(call.address, sdb.get_nonce(call.address))


def create2_address_for_step(step, call) -> bytes:
    """CREATE2 address from the step's operands and init code in its memory.

    Stack (top first): value, offset, length, salt.
    """
    salt = step.stack_nth_last(3)
    init_code = init_code_for_step(step)
    return get_create2_address(call.address, word_to_bytes(salt), init_code)


def init_code_for_step(step) -> bytes:
    """Init code window of a CREATE or CREATE2 step (operands value, offset, length)."""
    return step.memory_slice(step.stack_nth_last(1), step.stack_nth_last(2))
