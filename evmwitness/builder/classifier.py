"""
Step error classification.

The tracer captures each step *before* it executes, so several failures are
never reported in the step's error field. They are recovered from the shape
of the trace around the step: whether the next step is at the same depth or
one frame up, and the value the next step sees on top of its stack (the call
or creation result).

Shapes:
    same depth, zero result      a call / creation that failed before entry
    unwinding, zero result       the frame halted in failure at this step
    unwinding, nonzero result    the frame halted successfully
"""

from __future__ import annotations

import logging
from typing import Optional

from evmwitness.builder.trace import GethErrorKind, GethExecStep
from evmwitness.common.config import CANCUN_CONFIG, WitnessConfig
from evmwitness.state.state_db import CodeDB, StateDB
from evmwitness.vm.call_frame import Call, compute_valid_jumpdests
from evmwitness.vm.create_address import create2_address_for_step, create_address_for_step
from evmwitness.vm.errors import (
    CODE_STORE_OUT_OF_GAS,
    INVALID_CREATION_CODE,
    INVALID_JUMP,
    INVALID_OPCODE,
    MAX_CODE_SIZE_EXCEEDED,
    RETURN_DATA_OUT_OF_BOUNDS,
    STACK_OVERFLOW,
    STACK_UNDERFLOW,
    WRITE_PROTECTION,
    CallStackMismatch,
    ContractAddressCollisionError,
    DepthError,
    ExecError,
    InsufficientBalanceError,
    OogError,
    UnexpectedStepError,
)
from evmwitness.vm.opcodes import (
    CALL_OPS,
    CREATE_OPS,
    JUMP_OPS,
    STATE_MUTATING_OPS,
    SUCCESS_HALT_OPS,
    Op,
    call_has_value,
    is_defined,
    oog_kind,
)

logger = logging.getLogger(__name__)


class StepErrorClassifier:
    def __init__(self, config: WitnessConfig = CANCUN_CONFIG) -> None:
        self.config = config
        self._jumpdest_cache: dict[bytes, set[int]] = {}

    def classify(
        self,
        step: GethExecStep,
        next_step: Optional[GethExecStep],
        call: Call,
        sdb: StateDB,
        code_db: Optional[CodeDB] = None,
    ) -> Optional[ExecError]:
        """Return None if `step` succeeds, otherwise its single ExecError."""
        if step.error is not None:
            return self.map_reported_error(step)
        if not is_defined(step.op):
            return INVALID_OPCODE

        if next_step is None:
            next_depth = 0
            next_result = 1 if call.is_success else 0
        else:
            next_depth = next_step.depth
            next_result = next_step.stack_top_or_zero()

        if next_depth == step.depth:
            if next_result == 0 and step.op in CALL_OPS:
                return self._classify_failed_call(step, call, sdb)
            if next_result == 0 and step.op in CREATE_OPS:
                return self._classify_failed_create(step, call, sdb)
            return None

        if next_depth > step.depth:
            # Entering a callee
            return None

        if next_depth != step.depth - 1:
            raise CallStackMismatch(
                f"depth drops from {step.depth} to {next_depth} after {step.op_name}"
            )

        if next_result == 0:
            return self._classify_failed_halt(step, call, code_db)

        if step.op == Op.RETURN and call.is_create():
            return self._classify_create_return(step)
        if step.op not in SUCCESS_HALT_OPS:
            raise UnexpectedStepError(
                f"{step.op_name} leaves its frame with a nonzero result", step
            )
        return None

    # -- Same depth, zero result --

    def _classify_failed_call(
        self, step: GethExecStep, call: Call, sdb: StateDB
    ) -> Optional[ExecError]:
        if step.depth >= self.config.max_depth_step:
            return ExecError.depth(DepthError.CALL)
        value = step.stack_nth_last(2) if call_has_value(step.op) else 0
        if value != 0 and sdb.get_balance(call.address) < value:
            return ExecError.insufficient_balance(InsufficientBalanceError.CALL)
        if step.op == Op.CALL and value != 0 and call.is_static:
            return WRITE_PROTECTION
        # A precompile that failed, for example
        return None

    def _classify_failed_create(
        self, step: GethExecStep, call: Call, sdb: StateDB
    ) -> Optional[ExecError]:
        is_create2 = step.op == Op.CREATE2
        if step.depth >= self.config.max_depth_step:
            return ExecError.depth(DepthError.CREATE)
        value = step.stack_nth_last(0)
        if sdb.get_balance(call.address) < value:
            return ExecError.insufficient_balance(
                InsufficientBalanceError.CREATE2 if is_create2 else InsufficientBalanceError.CREATE
            )
        if is_create2:
            address = create2_address_for_step(step, call)
        else:
            address = create_address_for_step(call, sdb)
        found, account = sdb.get_account(address)
        if found and (account.nonce != 0 or account.code_size != 0):
            logger.debug("address collision at %s", address.hex())
            return ExecError.address_collision(
                ContractAddressCollisionError.CREATE2
                if is_create2
                else ContractAddressCollisionError.CREATE
            )
        if call.is_static:
            return WRITE_PROTECTION
        return None

    # -- Unwinding --

    def _classify_failed_halt(
        self, step: GethExecStep, call: Call, code_db: Optional[CodeDB]
    ) -> Optional[ExecError]:
        op = step.op
        if op in JUMP_OPS:
            self._check_invalid_jump(step, call, code_db)
            return INVALID_JUMP
        if op == Op.REVERT:
            return None
        if op == Op.RETURNDATACOPY:
            return RETURN_DATA_OUT_OF_BOUNDS
        if op == Op.RETURN:
            if not call.is_create():
                raise UnexpectedStepError("RETURN failed outside a creation frame", step)
            error = self._classify_create_return(step)
            if error is None:
                raise UnexpectedStepError("creation RETURN failed for no known reason", step)
            return error
        if call.is_static and self._is_state_mutating(step):
            return WRITE_PROTECTION
        raise UnexpectedStepError(f"{step.op_name} halts its frame with a zero result", step)

    def _classify_create_return(self, step: GethExecStep) -> Optional[ExecError]:
        offset = step.stack_nth_last(0)
        length = step.stack_nth_last(1)
        if step.gas < self.config.code_deposit_cost * length:
            return CODE_STORE_OUT_OF_GAS
        if length > 0 and step.memory_byte(offset) == self.config.invalid_code_prefix:
            return INVALID_CREATION_CODE
        if length > self.config.max_code_size:
            return MAX_CODE_SIZE_EXCEEDED
        return None

    def _check_invalid_jump(
        self, step: GethExecStep, call: Call, code_db: Optional[CodeDB]
    ) -> None:
        if step.op == Op.JUMPI and step.stack_nth_last(1) == 0:
            raise UnexpectedStepError("JUMPI not taken cannot fail", step)
        if code_db is None or call.code_hash is None:
            return
        code = code_db.get(call.code_hash)
        if code is None:
            return
        jumpdests = self._jumpdest_cache.get(call.code_hash)
        if jumpdests is None:
            jumpdests = compute_valid_jumpdests(code)
            self._jumpdest_cache[call.code_hash] = jumpdests
        if step.stack_nth_last(0) in jumpdests:
            raise UnexpectedStepError("jump to a valid JUMPDEST failed", step)

    @staticmethod
    def _is_state_mutating(step: GethExecStep) -> bool:
        if step.op in STATE_MUTATING_OPS:
            return True
        return step.op == Op.CALL and step.stack_nth_last(2) != 0

    # -- Errors reported by the tracer --

    def map_reported_error(self, step: GethExecStep) -> Optional[ExecError]:
        """Map the step's reported error one-to-one onto the taxonomy."""
        kind = step.error.kind
        if kind == GethErrorKind.EXECUTION_REVERTED:
            return None
        if kind == GethErrorKind.STACK_OVERFLOW:
            reported = step.error
            # geth reports the capacity left for this opcode, never above the limit
            if not reported.limit < reported.stack_len <= self.config.stack_limit:
                raise UnexpectedStepError(
                    f"stack overflow reported at {reported.stack_len} items "
                    f"against capacity {reported.limit}", step
                )
            return STACK_OVERFLOW
        if kind == GethErrorKind.OUT_OF_GAS:
            return ExecError.out_of_gas(oog_kind(step.op))
        if kind == GethErrorKind.DEPTH:
            if step.op in CREATE_OPS:
                return ExecError.depth(DepthError.CREATE)
            return ExecError.depth(DepthError.CALL)
        if kind == GethErrorKind.INSUFFICIENT_BALANCE:
            if step.op == Op.CREATE2:
                return ExecError.insufficient_balance(InsufficientBalanceError.CREATE2)
            if step.op == Op.CREATE:
                return ExecError.insufficient_balance(InsufficientBalanceError.CREATE)
            return ExecError.insufficient_balance(InsufficientBalanceError.CALL)
        if kind == GethErrorKind.CONTRACT_ADDRESS_COLLISION:
            if step.op == Op.CREATE2:
                return ExecError.address_collision(ContractAddressCollisionError.CREATE2)
            return ExecError.address_collision(ContractAddressCollisionError.CREATE)
        return _REPORTED_ERRORS[kind]


_REPORTED_ERRORS: dict[GethErrorKind, ExecError] = {
    GethErrorKind.STACK_UNDERFLOW: STACK_UNDERFLOW,
    GethErrorKind.INVALID_OPCODE: INVALID_OPCODE,
    GethErrorKind.GAS_UINT_OVERFLOW: ExecError.out_of_gas(OogError.STATIC_MEMORY_EXPANSION),
    GethErrorKind.WRITE_PROTECTION: WRITE_PROTECTION,
    GethErrorKind.INVALID_JUMP: INVALID_JUMP,
    GethErrorKind.RETURN_DATA_OUT_OF_BOUNDS: RETURN_DATA_OUT_OF_BOUNDS,
    GethErrorKind.CODE_STORE_OUT_OF_GAS: CODE_STORE_OUT_OF_GAS,
    GethErrorKind.MAX_CODE_SIZE_EXCEEDED: MAX_CODE_SIZE_EXCEEDED,
    GethErrorKind.INVALID_CODE: INVALID_CREATION_CODE,
}
