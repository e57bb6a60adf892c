"""
Transaction-scoped call stack.

Frames are stored in an arena keyed by call id; the stack holds ids. Each
pushed frame records the operation counter as its reversion checkpoint and a
provisional persistence flag taken from the call tracer. When a frame pops as
failed, every reversible operation recorded since its checkpoint is undone on
the state database, in reverse order, and a reversion operation is emitted
for each.
"""

from __future__ import annotations

import logging
from typing import Optional

from evmwitness.builder.exec_step import ExecStep
from evmwitness.builder.operations import AccountField, Operation, RWTarget
from evmwitness.builder.trace import GethCallTrace, Transaction
from evmwitness.state.state_db import StateDB
from evmwitness.vm.call_frame import Call
from evmwitness.vm.errors import CallStackUnderflow, CallTraceMismatch

logger = logging.getLogger(__name__)

ROOT_CALL_ID = 1


class TransactionContext:
    def __init__(
        self,
        tx: Transaction,
        sdb: StateDB,
        call_trace: Optional[GethCallTrace] = None,
    ) -> None:
        self.tx = tx
        self.sdb = sdb
        self.calls: dict[int, Call] = {}
        self.call_stack: list[int] = []
        self.operations: list[Operation] = []
        self.rw_counter: int = 1
        self.created_accounts: set[bytes] = set()

        # Flattened call tracer output, depth-first pre-order
        self.call_trace_queue: list[GethCallTrace] = call_trace.flatten() if call_trace else []
        self.call_is_success: list[bool] = [c.is_success for c in self.call_trace_queue]
        self._call_trace_index = 0
        self.call_trace_by_id: dict[int, GethCallTrace] = {}

        self._next_call_id = ROOT_CALL_ID
        self._reverted: set[int] = set()

    # -- Call tracer queue --

    def peek_call_trace(self) -> Optional[GethCallTrace]:
        if self._call_trace_index >= len(self.call_trace_queue):
            return None
        return self.call_trace_queue[self._call_trace_index]

    def next_call_trace(self) -> GethCallTrace:
        entry = self.peek_call_trace()
        if entry is None:
            raise CallTraceMismatch(
                f"call trace exhausted after {self._call_trace_index} calls"
            )
        self._call_trace_index += 1
        return entry

    @property
    def call_trace_remaining(self) -> int:
        return len(self.call_trace_queue) - self._call_trace_index

    # -- Frame access --

    def call(self) -> Call:
        """The frame currently executing."""
        if not self.call_stack:
            raise CallStackUnderflow("no call in progress")
        return self.calls[self.call_stack[-1]]

    def caller(self) -> Call:
        if len(self.call_stack) < 2:
            raise CallStackUnderflow("current call has no caller")
        return self.calls[self.call_stack[-2]]

    def root(self) -> Call:
        if not self.calls:
            raise CallStackUnderflow("no root call")
        return self.calls[ROOT_CALL_ID]

    def call_by_id(self, call_id: int) -> Call:
        return self.calls[call_id]

    @property
    def depth(self) -> int:
        return len(self.call_stack)

    # -- Push / pop --

    def push_call(self, call: Call, success: Optional[bool] = None) -> Call:
        """Enter `call`.

        The outcome flag comes from the next call tracer entry unless
        `success` is given (frames the tracer never saw).
        """
        entry = None
        if success is None:
            entry = self.next_call_trace()
            success = entry.is_success
        parent = self.calls[self.call_stack[-1]] if self.call_stack else None

        call.call_id = self._next_call_id
        self._next_call_id += 1
        call.is_success = success
        call.rw_counter_checkpoint = self.rw_counter
        call.persistence_pending = True
        if parent is None:
            call.caller_id = 0
            call.is_root = True
            call.depth = 1
            call.is_persistent = success
        else:
            call.caller_id = parent.call_id
            call.is_root = False
            call.depth = parent.depth + 1
            call.is_persistent = success and parent.is_persistent
            call.is_static = call.is_static or parent.is_static

        self.calls[call.call_id] = call
        if entry is not None:
            self.call_trace_by_id[call.call_id] = entry
        self.call_stack.append(call.call_id)
        logger.debug(
            "push call %d (%s) depth=%d success=%s persistent=%s",
            call.call_id, call.kind.value, call.depth, success, call.is_persistent,
        )
        return call

    def pop_call(
        self,
        success: bool,
        step: Optional[ExecStep] = None,
        memory: bytes = b"",
    ) -> Call:
        """Leave the current frame with the observed outcome `success`."""
        if not self.call_stack:
            raise CallStackUnderflow("pop on an empty call stack")
        call = self.calls[self.call_stack[-1]]
        if success != call.is_success:
            raise CallTraceMismatch(
                f"call {call.call_id} at depth {call.depth}: steps show "
                f"success={success}, call trace shows success={call.is_success}"
            )
        if not success:
            self._revert_since(call.rw_counter_checkpoint, step)

        call.persistence_pending = False
        self.call_stack.pop()
        if self.call_stack:
            caller = self.calls[self.call_stack[-1]]
            caller.last_callee_id = call.call_id
            caller.last_callee_return_data_offset = call.return_data_offset
            caller.last_callee_return_data_length = call.return_data_length
            caller.last_callee_memory = memory
        logger.debug("pop call %d depth=%d success=%s", call.call_id, call.depth, success)
        return call

    # -- Operations --

    def record(self, op: Operation, step: Optional[ExecStep] = None) -> Operation:
        """Assign the next counter to `op` and append it to the log."""
        op.rwc = self.rw_counter
        self.rw_counter += 1
        if op.call_id == 0 and self.call_stack:
            op.call_id = self.call_stack[-1]
        self.operations.append(op)
        if step is not None:
            step.add(op)
        return op

    def _revert_since(self, checkpoint: int, step: Optional[ExecStep]) -> None:
        pending = [
            op for op in self.operations
            if op.rwc >= checkpoint
            and op.is_reversible
            and not op.is_reversion
            and op.rwc not in self._reverted
        ]
        for op in reversed(pending):
            self._undo(op)
            op.is_persistent = False
            self._reverted.add(op.rwc)
            self.record(op.reversed(0), step)
        if pending:
            logger.debug("reverted %d operations since rwc %d", len(pending), checkpoint)

    def _undo(self, op: Operation) -> None:
        sdb = self.sdb
        target = op.target
        if target == RWTarget.STORAGE:
            sdb.set_storage(op.address, op.key, op.value_prev)
        elif target == RWTarget.TRANSIENT_STORAGE:
            sdb.set_transient_storage(op.address, op.key, op.value_prev)
        elif target == RWTarget.ACCOUNT:
            _, acc = sdb.get_account_mut(op.address)
            if op.field == AccountField.NONCE:
                acc.nonce = op.value_prev
                if op.value_prev == 0:
                    self.created_accounts.discard(op.address)
            elif op.field == AccountField.BALANCE:
                acc.balance = op.value_prev
            elif op.field == AccountField.CODE_HASH:
                acc.code_hash, acc.keccak_code_hash, acc.code_size = op.value_prev
        elif target == RWTarget.ACCOUNT_DESTRUCTED:
            sdb.restore_destructed_account(op.address, op.value_prev)
        elif target == RWTarget.TX_ACCESS_LIST_ACCOUNT:
            if not op.value_prev:
                sdb.remove_account_from_access_list(op.address)
        elif target == RWTarget.TX_ACCESS_LIST_ACCOUNT_STORAGE:
            if not op.value_prev:
                sdb.remove_account_storage_from_access_list(op.address, op.key)
        elif target == RWTarget.TX_REFUND:
            sdb.set_refund(op.value_prev)
