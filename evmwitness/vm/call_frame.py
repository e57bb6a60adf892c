"""
Call frame record: one activation of contract code within a transaction.

Frames live in an arena keyed by `call_id` (see builder.tx_context); parent
links are ids, never object references.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from evmwitness.common.types import ZERO_ADDRESS
from evmwitness.vm.opcodes import Op, push_size


class CallKind(Enum):
    CALL = "CALL"
    CALLCODE = "CALLCODE"
    DELEGATECALL = "DELEGATECALL"
    STATICCALL = "STATICCALL"
    CREATE = "CREATE"
    CREATE2 = "CREATE2"

    @classmethod
    def from_op(cls, op: int) -> CallKind:
        try:
            return _KIND_BY_OP[op]
        except KeyError:
            raise ValueError(f"Opcode {op:#x} does not open a call frame") from None

    @classmethod
    def from_trace_type(cls, name: str) -> CallKind:
        return cls(name.upper())


_KIND_BY_OP = {
    Op.CALL: CallKind.CALL,
    Op.CALLCODE: CallKind.CALLCODE,
    Op.DELEGATECALL: CallKind.DELEGATECALL,
    Op.STATICCALL: CallKind.STATICCALL,
    Op.CREATE: CallKind.CREATE,
    Op.CREATE2: CallKind.CREATE2,
}


class CodeSourceKind(Enum):
    ADDRESS = "address"   # code of an existing account
    MEMORY = "memory"     # init code read from the caller's memory
    TX = "tx"             # init code from the transaction input


@dataclass(frozen=True)
class CodeSource:
    kind: CodeSourceKind
    address: Optional[bytes] = None

    @classmethod
    def from_address(cls, address: bytes) -> CodeSource:
        return cls(CodeSourceKind.ADDRESS, address)

    @classmethod
    def memory(cls) -> CodeSource:
        return cls(CodeSourceKind.MEMORY)

    @classmethod
    def tx(cls) -> CodeSource:
        return cls(CodeSourceKind.TX)


@dataclass
class Call:
    """One frame in the call stack."""

    call_id: int = 0
    caller_id: int = 0
    kind: CallKind = CallKind.CALL

    # Flags
    is_static: bool = False
    is_root: bool = False
    is_success: bool = False
    # Provisional until the frame pops (persistence_pending=False afterwards)
    is_persistent: bool = False
    persistence_pending: bool = True

    # Context
    caller_address: bytes = ZERO_ADDRESS
    address: bytes = ZERO_ADDRESS
    code_source: CodeSource = field(default_factory=CodeSource.tx)
    code_hash: Optional[bytes] = None
    depth: int = 1
    value: int = 0

    # Input window in the caller's memory
    call_data_offset: int = 0
    call_data_length: int = 0
    # Output window in the caller's memory, from the call operands
    return_window_offset: int = 0
    return_window_length: int = 0
    # Window of the callee's memory returned by RETURN / REVERT
    return_data_offset: int = 0
    return_data_length: int = 0

    # Last callee that returned to this frame
    last_callee_id: int = 0
    last_callee_return_data_offset: int = 0
    last_callee_return_data_length: int = 0
    last_callee_memory: bytes = b""

    # Operation counter at push time; failed frames undo everything after it
    rw_counter_checkpoint: int = 0

    def is_create(self) -> bool:
        return self.kind in (CallKind.CREATE, CallKind.CREATE2)

    def is_call(self) -> bool:
        return not self.is_create()


def compute_valid_jumpdests(code: bytes) -> set[int]:
    """Pre-compute the set of valid JUMPDEST positions in bytecode.

    PUSH instructions' immediate data bytes are not valid jump targets.
    """
    valid = set()
    i = 0
    while i < len(code):
        op = code[i]
        if op == Op.JUMPDEST:
            valid.add(i)
        i += push_size(op) + 1
    return valid
