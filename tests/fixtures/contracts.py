"""Bytecode helpers and small contracts used by the builder tests."""

from evmwitness.vm.opcodes import Op


def bytecode(*ops) -> bytes:
    """Build bytecode from a mix of ints (opcodes) and bytes."""
    result = bytearray()
    for op in ops:
        if isinstance(op, int):
            result.append(op)
        else:
            result.extend(op)
    return bytes(result)


def push(value: int, n: int = 0) -> bytes:
    """Create PUSH instruction. Auto-selects PUSH width if n=0."""
    if value == 0 and n == 0:
        return bytes([Op.PUSH0])
    if n == 0:
        n = max(1, (value.bit_length() + 7) // 8)
    return bytes([Op.PUSH1 + n - 1]) + value.to_bytes(n, "big")


# PUSH1 0x2a PUSH1 0x01 SSTORE STOP
STORE_BYTECODE = bytecode(push(0x2A, 1), push(0x01, 1), Op.SSTORE, Op.STOP)

# PUSH1 0x10 JUMP: 0x10 is past the end of the code
BAD_JUMP_BYTECODE = bytecode(push(0x10, 1), Op.JUMP)

# PUSH1 0x04 JUMP INVALID JUMPDEST STOP: the only valid target is 4
JUMPDEST_BYTECODE = bytecode(push(0x04, 1), Op.JUMP, Op.INVALID, Op.JUMPDEST, Op.STOP)

# PUSH1 0x5b: the 0x5b is push data, not a JUMPDEST
PUSH_DATA_BYTECODE = bytecode(push(0x5B, 1), Op.STOP)

# Init code from EIP-1014 examples
EIP1014_INIT_CODE = bytes.fromhex("deadbeef")
