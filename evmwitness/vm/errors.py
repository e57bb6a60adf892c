"""
Execution error taxonomy and witness builder exceptions.

ExecError: the classified outcome of a failing step. A closed set of kinds,
some of which carry a sub-kind naming the opcode family that failed.

WitnessError and subclasses: raised by the builder when the trace or the
builder's own bookkeeping is inconsistent. These are never step outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


# ---------------------------------------------------------------------------
# Step error taxonomy
# ---------------------------------------------------------------------------

class ExecErrorKind(Enum):
    DEPTH = "depth"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    CONTRACT_ADDRESS_COLLISION = "contract_address_collision"
    INVALID_JUMP = "invalid_jump"
    RETURN_DATA_OUT_OF_BOUNDS = "return_data_out_of_bounds"
    CODE_STORE_OUT_OF_GAS = "code_store_out_of_gas"
    INVALID_CREATION_CODE = "invalid_creation_code"
    MAX_CODE_SIZE_EXCEEDED = "max_code_size_exceeded"
    WRITE_PROTECTION = "write_protection"
    STACK_OVERFLOW = "stack_overflow"
    STACK_UNDERFLOW = "stack_underflow"
    INVALID_OPCODE = "invalid_opcode"
    OUT_OF_GAS = "out_of_gas"


class OogError(Enum):
    """Out-of-gas sub-kinds, by the gas component that ran out."""
    CONSTANT = "constant"
    STATIC_MEMORY_EXPANSION = "static_memory_expansion"
    DYNAMIC_MEMORY_EXPANSION = "dynamic_memory_expansion"
    MEMORY_COPY = "memory_copy"
    ACCOUNT_ACCESS = "account_access"
    SHA3 = "sha3"
    CALL = "call"
    CREATE = "create"
    EXP = "exp"
    LOG = "log"
    SLOAD_SSTORE = "sload_sstore"
    TLOAD_TSTORE = "tload_tstore"
    SELF_DESTRUCT = "self_destruct"


class DepthError(Enum):
    CALL = "call"
    CREATE = "create"


class InsufficientBalanceError(Enum):
    CALL = "call"
    CREATE = "create"
    CREATE2 = "create2"


class ContractAddressCollisionError(Enum):
    CREATE = "create"
    CREATE2 = "create2"


ErrorDetail = Union[OogError, DepthError, InsufficientBalanceError, ContractAddressCollisionError]

_DETAIL_TYPES: dict[ExecErrorKind, type] = {
    ExecErrorKind.DEPTH: DepthError,
    ExecErrorKind.INSUFFICIENT_BALANCE: InsufficientBalanceError,
    ExecErrorKind.CONTRACT_ADDRESS_COLLISION: ContractAddressCollisionError,
    ExecErrorKind.OUT_OF_GAS: OogError,
}


@dataclass(frozen=True)
class ExecError:
    """One classified step failure: a kind plus, for some kinds, a sub-kind."""

    kind: ExecErrorKind
    detail: Optional[ErrorDetail] = None

    def __post_init__(self) -> None:
        expected = _DETAIL_TYPES.get(self.kind)
        if expected is None:
            if self.detail is not None:
                raise ValueError(f"{self.kind.name} takes no detail, got {self.detail!r}")
        elif not isinstance(self.detail, expected):
            raise ValueError(
                f"{self.kind.name} requires a {expected.__name__} detail, got {self.detail!r}"
            )

    def __str__(self) -> str:
        if self.detail is None:
            return self.kind.name
        return f"{self.kind.name}({self.detail.name})"

    @classmethod
    def depth(cls, detail: DepthError) -> ExecError:
        return cls(ExecErrorKind.DEPTH, detail)

    @classmethod
    def insufficient_balance(cls, detail: InsufficientBalanceError) -> ExecError:
        return cls(ExecErrorKind.INSUFFICIENT_BALANCE, detail)

    @classmethod
    def address_collision(cls, detail: ContractAddressCollisionError) -> ExecError:
        return cls(ExecErrorKind.CONTRACT_ADDRESS_COLLISION, detail)

    @classmethod
    def out_of_gas(cls, detail: OogError) -> ExecError:
        return cls(ExecErrorKind.OUT_OF_GAS, detail)


INVALID_JUMP = ExecError(ExecErrorKind.INVALID_JUMP)
RETURN_DATA_OUT_OF_BOUNDS = ExecError(ExecErrorKind.RETURN_DATA_OUT_OF_BOUNDS)
CODE_STORE_OUT_OF_GAS = ExecError(ExecErrorKind.CODE_STORE_OUT_OF_GAS)
INVALID_CREATION_CODE = ExecError(ExecErrorKind.INVALID_CREATION_CODE)
MAX_CODE_SIZE_EXCEEDED = ExecError(ExecErrorKind.MAX_CODE_SIZE_EXCEEDED)
WRITE_PROTECTION = ExecError(ExecErrorKind.WRITE_PROTECTION)
STACK_OVERFLOW = ExecError(ExecErrorKind.STACK_OVERFLOW)
STACK_UNDERFLOW = ExecError(ExecErrorKind.STACK_UNDERFLOW)
INVALID_OPCODE = ExecError(ExecErrorKind.INVALID_OPCODE)


# ---------------------------------------------------------------------------
# Builder exceptions
# ---------------------------------------------------------------------------

class WitnessError(Exception):
    """Base class for witness builder errors."""
    pass


class TraceError(WitnessError):
    """Malformed or inconsistent external trace data."""
    pass


class MissingStackOperand(TraceError):
    pass


class MissingMemory(TraceError):
    """Memory was needed but the trace was captured without it."""
    pass


class UnknownTraceError(TraceError):
    """The trace reports an error string outside the known set."""
    pass


class CallStackUnderflow(TraceError):
    pass


class CallStackMismatch(TraceError):
    """Step depth disagrees with the live call stack."""
    pass


class CallTraceMismatch(TraceError):
    """The call tracer output disagrees with what the steps show."""
    pass


class StateMismatch(TraceError):
    """A value observed in the trace disagrees with the state database."""
    pass


class StateDBError(WitnessError):
    pass


class AccessListError(StateDBError):
    pass


class UnexpectedStepError(WitnessError):
    """A step that no classification rule explains."""

    def __init__(self, reason: str, step: object = None):
        self.reason = reason
        self.step = step
        super().__init__(f"{reason}: {step!r}" if step is not None else reason)
