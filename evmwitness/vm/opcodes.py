"""
EVM opcode definitions.

Opcode byte values, the names geth prints in struct logs, stack arity, and
the opcode families the error classifier and the builder dispatch on.
"""

from __future__ import annotations

import re

from evmwitness.vm.errors import OogError


# ---------------------------------------------------------------------------
# Opcode enum / names
# ---------------------------------------------------------------------------

# fmt: off
class Op:
    STOP            = 0x00
    ADD             = 0x01
    MUL             = 0x02
    SUB             = 0x03
    DIV             = 0x04
    SDIV            = 0x05
    MOD             = 0x06
    SMOD            = 0x07
    ADDMOD          = 0x08
    MULMOD          = 0x09
    EXP             = 0x0A
    SIGNEXTEND      = 0x0B
    LT              = 0x10
    GT              = 0x11
    SLT             = 0x12
    SGT             = 0x13
    EQ              = 0x14
    ISZERO          = 0x15
    AND             = 0x16
    OR              = 0x17
    XOR             = 0x18
    NOT             = 0x19
    BYTE            = 0x1A
    SHL             = 0x1B
    SHR             = 0x1C
    SAR             = 0x1D
    KECCAK256       = 0x20
    ADDRESS         = 0x30
    BALANCE         = 0x31
    ORIGIN          = 0x32
    CALLER          = 0x33
    CALLVALUE       = 0x34
    CALLDATALOAD    = 0x35
    CALLDATASIZE    = 0x36
    CALLDATACOPY    = 0x37
    CODESIZE        = 0x38
    CODECOPY        = 0x39
    GASPRICE        = 0x3A
    EXTCODESIZE     = 0x3B
    EXTCODECOPY     = 0x3C
    RETURNDATASIZE  = 0x3D
    RETURNDATACOPY  = 0x3E
    EXTCODEHASH     = 0x3F
    BLOCKHASH       = 0x40
    COINBASE        = 0x41
    TIMESTAMP       = 0x42
    NUMBER          = 0x43
    PREVRANDAO      = 0x44  # was DIFFICULTY pre-merge
    GASLIMIT        = 0x45
    CHAINID         = 0x46
    SELFBALANCE     = 0x47
    BASEFEE         = 0x48
    BLOBHASH        = 0x49
    BLOBBASEFEE     = 0x4A
    POP             = 0x50
    MLOAD           = 0x51
    MSTORE          = 0x52
    MSTORE8         = 0x53
    SLOAD           = 0x54
    SSTORE          = 0x55
    JUMP            = 0x56
    JUMPI           = 0x57
    PC              = 0x58
    MSIZE           = 0x59
    GAS             = 0x5A
    JUMPDEST        = 0x5B
    TLOAD           = 0x5C
    TSTORE          = 0x5D
    MCOPY           = 0x5E
    PUSH0           = 0x5F
    PUSH1           = 0x60
    PUSH2           = 0x61
    PUSH32          = 0x7F
    DUP1            = 0x80
    DUP16           = 0x8F
    SWAP1           = 0x90
    SWAP16          = 0x9F
    LOG0            = 0xA0
    LOG4            = 0xA4
    CREATE          = 0xF0
    CALL            = 0xF1
    CALLCODE        = 0xF2
    RETURN          = 0xF3
    DELEGATECALL    = 0xF4
    CREATE2         = 0xF5
    STATICCALL      = 0xFA
    REVERT          = 0xFD
    INVALID         = 0xFE
    SELFDESTRUCT    = 0xFF
# fmt: on


def _build_names() -> dict[int, str]:
    names = {
        value: name
        for name, value in vars(Op).items()
        if name.isupper() and isinstance(value, int)
    }
    for i in range(1, 33):
        names[Op.PUSH1 + i - 1] = f"PUSH{i}"
    for i in range(1, 17):
        names[Op.DUP1 + i - 1] = f"DUP{i}"
        names[Op.SWAP1 + i - 1] = f"SWAP{i}"
    for i in range(5):
        names[Op.LOG0 + i] = f"LOG{i}"
    return names


OPCODE_NAMES: dict[int, str] = _build_names()
OPCODES_BY_NAME: dict[str, int] = {name: value for value, name in OPCODE_NAMES.items()}
# Names printed by older clients
OPCODES_BY_NAME.update({"SHA3": Op.KECCAK256, "DIFFICULTY": Op.PREVRANDAO, "SUICIDE": Op.SELFDESTRUCT})

_UNDEFINED_RE = re.compile(r"^opcode (0x[0-9a-fA-F]+) not defined$")


def op_name(op: int) -> str:
    return OPCODE_NAMES.get(op, f"opcode {op:#x} not defined")


def parse_op(name: str) -> int:
    """Map a struct-log opcode name to its byte value."""
    value = OPCODES_BY_NAME.get(name.upper())
    if value is not None:
        return value
    match = _UNDEFINED_RE.match(name)
    if match:
        return int(match.group(1), 16)
    raise ValueError(f"Unknown opcode name: {name!r}")


def is_defined(op: int) -> bool:
    """INVALID (0xFE) is a designated opcode but never executes successfully."""
    return op in OPCODE_NAMES and op != Op.INVALID


# ---------------------------------------------------------------------------
# Stack arity
# ---------------------------------------------------------------------------

def _build_arity() -> dict[int, tuple[int, int]]:
    # (inputs popped, outputs pushed)
    arity: dict[int, tuple[int, int]] = {
        Op.STOP: (0, 0),
        Op.ADD: (2, 1), Op.MUL: (2, 1), Op.SUB: (2, 1), Op.DIV: (2, 1),
        Op.SDIV: (2, 1), Op.MOD: (2, 1), Op.SMOD: (2, 1),
        Op.ADDMOD: (3, 1), Op.MULMOD: (3, 1), Op.EXP: (2, 1), Op.SIGNEXTEND: (2, 1),
        Op.LT: (2, 1), Op.GT: (2, 1), Op.SLT: (2, 1), Op.SGT: (2, 1), Op.EQ: (2, 1),
        Op.ISZERO: (1, 1), Op.AND: (2, 1), Op.OR: (2, 1), Op.XOR: (2, 1),
        Op.NOT: (1, 1), Op.BYTE: (2, 1), Op.SHL: (2, 1), Op.SHR: (2, 1), Op.SAR: (2, 1),
        Op.KECCAK256: (2, 1),
        Op.ADDRESS: (0, 1), Op.BALANCE: (1, 1), Op.ORIGIN: (0, 1), Op.CALLER: (0, 1),
        Op.CALLVALUE: (0, 1), Op.CALLDATALOAD: (1, 1), Op.CALLDATASIZE: (0, 1),
        Op.CALLDATACOPY: (3, 0), Op.CODESIZE: (0, 1), Op.CODECOPY: (3, 0),
        Op.GASPRICE: (0, 1), Op.EXTCODESIZE: (1, 1), Op.EXTCODECOPY: (4, 0),
        Op.RETURNDATASIZE: (0, 1), Op.RETURNDATACOPY: (3, 0), Op.EXTCODEHASH: (1, 1),
        Op.BLOCKHASH: (1, 1), Op.COINBASE: (0, 1), Op.TIMESTAMP: (0, 1),
        Op.NUMBER: (0, 1), Op.PREVRANDAO: (0, 1), Op.GASLIMIT: (0, 1),
        Op.CHAINID: (0, 1), Op.SELFBALANCE: (0, 1), Op.BASEFEE: (0, 1),
        Op.BLOBHASH: (1, 1), Op.BLOBBASEFEE: (0, 1),
        Op.POP: (1, 0), Op.MLOAD: (1, 1), Op.MSTORE: (2, 0), Op.MSTORE8: (2, 0),
        Op.SLOAD: (1, 1), Op.SSTORE: (2, 0), Op.JUMP: (1, 0), Op.JUMPI: (2, 0),
        Op.PC: (0, 1), Op.MSIZE: (0, 1), Op.GAS: (0, 1), Op.JUMPDEST: (0, 0),
        Op.TLOAD: (1, 1), Op.TSTORE: (2, 0), Op.MCOPY: (3, 0), Op.PUSH0: (0, 1),
        Op.CREATE: (3, 1), Op.CALL: (7, 1), Op.CALLCODE: (7, 1), Op.RETURN: (2, 0),
        Op.DELEGATECALL: (6, 1), Op.CREATE2: (4, 1), Op.STATICCALL: (6, 1),
        Op.REVERT: (2, 0), Op.INVALID: (0, 0), Op.SELFDESTRUCT: (1, 0),
    }
    for i in range(1, 33):
        arity[Op.PUSH1 + i - 1] = (0, 1)
    for i in range(1, 17):
        arity[Op.DUP1 + i - 1] = (i, i + 1)
        arity[Op.SWAP1 + i - 1] = (i + 1, i + 1)
    for i in range(5):
        arity[Op.LOG0 + i] = (2 + i, 0)
    return arity


STACK_ARITY: dict[int, tuple[int, int]] = _build_arity()


def stack_inputs(op: int) -> int:
    return STACK_ARITY.get(op, (0, 0))[0]


def stack_outputs(op: int) -> int:
    return STACK_ARITY.get(op, (0, 0))[1]


def push_size(op: int) -> int:
    """Number of immediate bytes following a PUSH opcode (0 otherwise)."""
    if Op.PUSH1 <= op <= Op.PUSH32:
        return op - Op.PUSH1 + 1
    return 0


# ---------------------------------------------------------------------------
# Opcode families
# ---------------------------------------------------------------------------

CALL_OPS = frozenset({Op.CALL, Op.CALLCODE, Op.DELEGATECALL, Op.STATICCALL})
CREATE_OPS = frozenset({Op.CREATE, Op.CREATE2})
JUMP_OPS = frozenset({Op.JUMP, Op.JUMPI})
LOG_OPS = frozenset(range(Op.LOG0, Op.LOG4 + 1))
SUCCESS_HALT_OPS = frozenset({Op.STOP, Op.RETURN, Op.SELFDESTRUCT})

# Opcodes that always modify state, regardless of their operands
STATE_MUTATING_OPS = frozenset({Op.SSTORE, Op.TSTORE, Op.CREATE, Op.CREATE2, Op.SELFDESTRUCT}) | LOG_OPS

# Opcodes whose first operand is an address the access list warms
ACCOUNT_ACCESS_OPS = frozenset({Op.BALANCE, Op.EXTCODESIZE, Op.EXTCODECOPY, Op.EXTCODEHASH})


def call_has_value(op: int) -> bool:
    """CALL and CALLCODE take a value operand; the other calls do not."""
    return op in (Op.CALL, Op.CALLCODE)


# ---------------------------------------------------------------------------
# Out-of-gas sub-kind per opcode
# ---------------------------------------------------------------------------

_OOG_KINDS: dict[int, OogError] = {
    Op.MLOAD: OogError.STATIC_MEMORY_EXPANSION,
    Op.MSTORE: OogError.STATIC_MEMORY_EXPANSION,
    Op.MSTORE8: OogError.STATIC_MEMORY_EXPANSION,
    Op.RETURN: OogError.DYNAMIC_MEMORY_EXPANSION,
    Op.REVERT: OogError.DYNAMIC_MEMORY_EXPANSION,
    Op.CALLDATACOPY: OogError.MEMORY_COPY,
    Op.CODECOPY: OogError.MEMORY_COPY,
    Op.EXTCODECOPY: OogError.MEMORY_COPY,
    Op.RETURNDATACOPY: OogError.MEMORY_COPY,
    Op.MCOPY: OogError.MEMORY_COPY,
    Op.BALANCE: OogError.ACCOUNT_ACCESS,
    Op.EXTCODESIZE: OogError.ACCOUNT_ACCESS,
    Op.EXTCODEHASH: OogError.ACCOUNT_ACCESS,
    Op.KECCAK256: OogError.SHA3,
    Op.EXP: OogError.EXP,
    Op.SLOAD: OogError.SLOAD_SSTORE,
    Op.SSTORE: OogError.SLOAD_SSTORE,
    Op.TLOAD: OogError.TLOAD_TSTORE,
    Op.TSTORE: OogError.TLOAD_TSTORE,
    Op.SELFDESTRUCT: OogError.SELF_DESTRUCT,
    Op.CREATE: OogError.CREATE,
    Op.CREATE2: OogError.CREATE,
}
for _op in CALL_OPS:
    _OOG_KINDS[_op] = OogError.CALL
for _op in LOG_OPS:
    _OOG_KINDS[_op] = OogError.LOG


def oog_kind(op: int) -> OogError:
    """Which gas component an out-of-gas failure of `op` is attributed to."""
    return _OOG_KINDS.get(op, OogError.CONSTANT)
