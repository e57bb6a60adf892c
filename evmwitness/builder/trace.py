"""
External trace data: geth struct logs, call tracer and prestate tracer output.

These are the inputs the witness builder consumes. Each type has a
from_json() constructor accepting the geth JSON-RPC response shape.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from eth_utils import decode_hex, to_canonical_address

from evmwitness.common.types import word_to_address
from evmwitness.vm.call_frame import CallKind
from evmwitness.vm.errors import MissingMemory, MissingStackOperand, UnknownTraceError
from evmwitness.vm.opcodes import op_name, parse_op


def hex_to_int(value) -> int:
    """Accept ints, 0x-prefixed hex strings and decimal strings."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    text = value.strip()
    if text.startswith(("0x", "0X")):
        return int(text[2:], 16) if len(text) > 2 else 0
    return int(text)


def _to_address(value: Optional[str]) -> Optional[bytes]:
    if not value:
        return None
    return to_canonical_address(value)


def _to_bytes(value: Optional[str]) -> bytes:
    if not value:
        return b""
    return decode_hex(value)


# ---------------------------------------------------------------------------
# Errors reported by the tracer
# ---------------------------------------------------------------------------

class GethErrorKind(Enum):
    STACK_OVERFLOW = "stack_overflow"
    STACK_UNDERFLOW = "stack_underflow"
    INVALID_OPCODE = "invalid_opcode"
    GAS_UINT_OVERFLOW = "gas_uint_overflow"
    OUT_OF_GAS = "out_of_gas"
    WRITE_PROTECTION = "write_protection"
    INVALID_JUMP = "invalid_jump"
    RETURN_DATA_OUT_OF_BOUNDS = "return_data_out_of_bounds"
    DEPTH = "depth"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    CONTRACT_ADDRESS_COLLISION = "contract_address_collision"
    CODE_STORE_OUT_OF_GAS = "code_store_out_of_gas"
    MAX_CODE_SIZE_EXCEEDED = "max_code_size_exceeded"
    INVALID_CODE = "invalid_code"
    EXECUTION_REVERTED = "execution_reverted"


_STACK_OVERFLOW_RE = re.compile(r"^stack limit reached (\d+) \((\d+)\)$")
_STACK_UNDERFLOW_RE = re.compile(r"^stack underflow \((\d+) <=> (\d+)\)$")

_FIXED_MESSAGES: dict[str, GethErrorKind] = {
    "gas uint64 overflow": GethErrorKind.GAS_UINT_OVERFLOW,
    "out of gas": GethErrorKind.OUT_OF_GAS,
    "write protection": GethErrorKind.WRITE_PROTECTION,
    "invalid jump destination": GethErrorKind.INVALID_JUMP,
    "return data out of bounds": GethErrorKind.RETURN_DATA_OUT_OF_BOUNDS,
    "max call depth exceeded": GethErrorKind.DEPTH,
    "insufficient balance for transfer": GethErrorKind.INSUFFICIENT_BALANCE,
    "contract address collision": GethErrorKind.CONTRACT_ADDRESS_COLLISION,
    "contract creation code storage out of gas": GethErrorKind.CODE_STORE_OUT_OF_GAS,
    "max code size exceeded": GethErrorKind.MAX_CODE_SIZE_EXCEEDED,
    "invalid code: must not begin with 0xef": GethErrorKind.INVALID_CODE,
    "execution reverted": GethErrorKind.EXECUTION_REVERTED,
}


@dataclass(frozen=True)
class GethExecError:
    """An error string from the tracer, parsed into a kind plus its numbers."""

    kind: GethErrorKind
    message: str = ""
    stack_len: int = 0
    # Capacity limit for overflow, required depth for underflow
    limit: int = 0

    @classmethod
    def parse(cls, message: str) -> GethExecError:
        text = message.strip()
        match = _STACK_OVERFLOW_RE.match(text)
        if match:
            return cls(GethErrorKind.STACK_OVERFLOW, text, int(match.group(1)), int(match.group(2)))
        match = _STACK_UNDERFLOW_RE.match(text)
        if match:
            return cls(GethErrorKind.STACK_UNDERFLOW, text, int(match.group(1)), int(match.group(2)))
        if text.startswith("invalid opcode"):
            return cls(GethErrorKind.INVALID_OPCODE, text)
        kind = _FIXED_MESSAGES.get(text)
        if kind is None:
            raise UnknownTraceError(f"Unrecognized trace error: {message!r}")
        return cls(kind, text)


# ---------------------------------------------------------------------------
# Struct log step
# ---------------------------------------------------------------------------

@dataclass
class GethExecStep:
    """One struct-log entry: the machine state *before* the opcode runs."""

    pc: int = 0
    op: int = 0
    gas: int = 0
    gas_cost: int = 0
    refund: int = 0
    depth: int = 1
    error: Optional[GethExecError] = None
    # Bottom first; the last element is the top of the stack
    stack: list[int] = field(default_factory=list)
    # None when the trace was captured without memory
    memory: Optional[bytes] = None

    @property
    def op_name(self) -> str:
        return op_name(self.op)

    def stack_nth_last(self, n: int) -> int:
        """Stack item `n` positions below the top (0 = top)."""
        if n >= len(self.stack):
            raise MissingStackOperand(
                f"{self.op_name} at pc={self.pc} needs stack item {n}, "
                f"trace has {len(self.stack)}"
            )
        return self.stack[-(n + 1)]

    def stack_top_or_zero(self) -> int:
        return self.stack[-1] if self.stack else 0

    def stack_address(self, n: int) -> bytes:
        return word_to_address(self.stack_nth_last(n))

    def memory_slice(self, offset: int, length: int) -> bytes:
        """Read memory; bytes past the captured size read as zero."""
        if length == 0:
            return b""
        if self.memory is None:
            raise MissingMemory(f"{self.op_name} at pc={self.pc} needs memory")
        chunk = self.memory[offset : offset + length]
        return chunk + b"\x00" * (length - len(chunk))

    def memory_byte(self, offset: int) -> int:
        return self.memory_slice(offset, 1)[0]

    @classmethod
    def from_json(cls, data: dict) -> GethExecStep:
        error = data.get("error")
        memory = data.get("memory")
        return cls(
            pc=hex_to_int(data.get("pc")),
            op=parse_op(data["op"]),
            gas=hex_to_int(data.get("gas")),
            gas_cost=hex_to_int(data.get("gasCost")),
            refund=hex_to_int(data.get("refund")),
            depth=hex_to_int(data.get("depth", 1)),
            error=GethExecError.parse(error) if error else None,
            stack=[hex_to_int(item) for item in data.get("stack") or []],
            memory=decode_hex("".join(memory)) if memory is not None else None,
        )


# ---------------------------------------------------------------------------
# Call tracer output
# ---------------------------------------------------------------------------

@dataclass
class GethCallTrace:
    call_type: CallKind = CallKind.CALL
    from_address: bytes = b""
    to: Optional[bytes] = None
    value: int = 0
    gas: int = 0
    gas_used: int = 0
    input: bytes = b""
    output: bytes = b""
    error: Optional[str] = None
    calls: list[GethCallTrace] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.error is None

    def flatten(self) -> list[GethCallTrace]:
        """All calls in depth-first pre-order, this call first."""
        result = [self]
        for sub in self.calls:
            result.extend(sub.flatten())
        return result

    @classmethod
    def from_json(cls, data: dict) -> GethCallTrace:
        return cls(
            call_type=CallKind.from_trace_type(data.get("type", "CALL")),
            from_address=_to_address(data.get("from")) or b"",
            to=_to_address(data.get("to")),
            value=hex_to_int(data.get("value")),
            gas=hex_to_int(data.get("gas")),
            gas_used=hex_to_int(data.get("gasUsed")),
            input=_to_bytes(data.get("input")),
            output=_to_bytes(data.get("output")),
            error=data.get("error"),
            calls=[
                cls.from_json(sub)
                for sub in data.get("calls") or []
                if sub.get("type", "CALL").upper() not in _NON_FRAME_TYPES
            ],
        )


# callTracer reports these as children, but they open no frame
_NON_FRAME_TYPES = frozenset({"SELFDESTRUCT"})


# ---------------------------------------------------------------------------
# Prestate tracer output
# ---------------------------------------------------------------------------

@dataclass
class PrestateAccount:
    balance: int = 0
    nonce: int = 0
    code: bytes = b""
    storage: dict[int, int] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: dict) -> PrestateAccount:
        return cls(
            balance=hex_to_int(data.get("balance")),
            nonce=hex_to_int(data.get("nonce")),
            code=_to_bytes(data.get("code")),
            storage={
                hex_to_int(k): hex_to_int(v) for k, v in (data.get("storage") or {}).items()
            },
        )


# ---------------------------------------------------------------------------
# Whole transaction trace
# ---------------------------------------------------------------------------

@dataclass
class GethExecTrace:
    gas: int = 0  # gas used by the transaction
    failed: bool = False
    return_value: bytes = b""
    struct_logs: list[GethExecStep] = field(default_factory=list)
    prestate: dict[bytes, PrestateAccount] = field(default_factory=dict)
    call_trace: Optional[GethCallTrace] = None

    @classmethod
    def from_json(cls, data: dict) -> GethExecTrace:
        call_trace = data.get("callTrace")
        return cls(
            gas=hex_to_int(data.get("gas")),
            failed=bool(data.get("failed", False)),
            return_value=_to_bytes(data.get("returnValue")),
            struct_logs=[GethExecStep.from_json(s) for s in data.get("structLogs") or []],
            prestate={
                to_canonical_address(addr): PrestateAccount.from_json(acc)
                for addr, acc in (data.get("prestate") or {}).items()
            },
            call_trace=GethCallTrace.from_json(call_trace) if call_trace else None,
        )


@dataclass
class Transaction:
    hash: bytes = b""
    from_address: bytes = b""
    to: Optional[bytes] = None  # None for contract creation
    nonce: int = 0
    value: int = 0
    gas: int = 0
    gas_price: int = 0  # effective gas price
    input: bytes = b""
    access_list: list[tuple[bytes, list[int]]] = field(default_factory=list)

    @property
    def is_create(self) -> bool:
        return self.to is None

    @classmethod
    def from_json(cls, data: dict) -> Transaction:
        return cls(
            hash=_to_bytes(data.get("hash")),
            from_address=_to_address(data.get("from")) or b"",
            to=_to_address(data.get("to")),
            nonce=hex_to_int(data.get("nonce")),
            value=hex_to_int(data.get("value")),
            gas=hex_to_int(data.get("gas")),
            gas_price=hex_to_int(data.get("gasPrice")),
            input=_to_bytes(data.get("input")),
            access_list=[
                (
                    to_canonical_address(entry["address"]),
                    [hex_to_int(k) for k in entry.get("storageKeys") or []],
                )
                for entry in data.get("accessList") or []
            ],
        )
