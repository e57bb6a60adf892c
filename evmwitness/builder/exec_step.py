"""Per-step witness record."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from evmwitness.builder.operations import Operation
from evmwitness.vm.errors import ExecError
from evmwitness.vm.opcodes import op_name


@dataclass
class ExecStep:
    pc: int = 0
    op: int = 0
    gas: int = 0
    gas_cost: int = 0
    depth: int = 1
    call_id: int = 0
    error: Optional[ExecError] = None
    operations: list[Operation] = field(default_factory=list)
    rwc_start: int = 0
    rwc_end: int = 0
    frozen: bool = False

    @property
    def op_name(self) -> str:
        return op_name(self.op)

    @property
    def is_success(self) -> bool:
        return self.error is None

    def add(self, operation: Operation) -> None:
        if self.frozen:
            raise RuntimeError(f"step at pc={self.pc} is frozen")
        self.operations.append(operation)

    def freeze(self, rwc_end: int) -> None:
        self.rwc_end = rwc_end
        self.frozen = True

    def __repr__(self) -> str:
        error = f" error={self.error}" if self.error is not None else ""
        return (
            f"ExecStep(pc={self.pc} {self.op_name} depth={self.depth} "
            f"call={self.call_id}{error} ops={len(self.operations)})"
        )
