"""
Witness builder.

Walks each transaction's struct logs in order, keeping a call stack in step
with the trace, classifying every step's outcome and recording the state
operations the step performs. The StateDB is mutated as operations are
recorded, so later steps observe the effects of earlier ones.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from evmwitness.builder.block import BlockContext, BlockData
from evmwitness.builder.classifier import StepErrorClassifier
from evmwitness.builder.exec_step import ExecStep
from evmwitness.builder.operations import AccountField, Operation, RWTarget
from evmwitness.builder.trace import GethCallTrace, GethExecStep, GethExecTrace, Transaction
from evmwitness.builder.tx_context import ROOT_CALL_ID, TransactionContext
from evmwitness.common.config import CANCUN_CONFIG, WitnessConfig
from evmwitness.common.crypto import keccak256
from evmwitness.common.types import Account
from evmwitness.state.state_db import CodeDB, StateDB
from evmwitness.vm.call_frame import Call, CallKind, CodeSource
from evmwitness.vm.create_address import (
    create2_address_for_step,
    create_address_for_step,
    get_create_address,
    init_code_for_step,
)
from evmwitness.vm.errors import (
    CallStackMismatch,
    CallTraceMismatch,
    ExecError,
    ExecErrorKind,
    StateMismatch,
    UnexpectedStepError,
)
from evmwitness.vm.opcodes import (
    ACCOUNT_ACCESS_OPS,
    CALL_OPS,
    CREATE_OPS,
    LOG_OPS,
    Op,
    call_has_value,
    stack_inputs,
    stack_outputs,
)

logger = logging.getLogger(__name__)

# Failures that stop a call or creation before its frame starts executing
PRE_ENTRY_ERRORS = frozenset({
    ExecErrorKind.DEPTH,
    ExecErrorKind.INSUFFICIENT_BALANCE,
    ExecErrorKind.CONTRACT_ADDRESS_COLLISION,
})

# Call tracer messages for those failures
_PRE_ENTRY_MESSAGES = frozenset({
    "max call depth exceeded",
    "insufficient balance for transfer",
    "contract address collision",
})

# Failures a call or creation reports without leaving the calling frame
SAME_DEPTH_ERRORS = PRE_ENTRY_ERRORS | {ExecErrorKind.WRITE_PROTECTION}


# ---------------------------------------------------------------------------
# Witness records
# ---------------------------------------------------------------------------

@dataclass
class AccountDelta:
    pre: Account
    post: Account

    @property
    def changed(self) -> bool:
        return self.pre != self.post


@dataclass
class TxWitness:
    tx: Transaction
    steps: list[ExecStep] = field(default_factory=list)
    calls: dict[int, Call] = field(default_factory=dict)
    operations: list[Operation] = field(default_factory=list)
    state_delta: dict[bytes, AccountDelta] = field(default_factory=dict)
    # Operations recorded outside any step
    begin_operations: list[Operation] = field(default_factory=list)
    end_operations: list[Operation] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.calls[ROOT_CALL_ID].is_success

    def errors(self) -> list[tuple[int, ExecError]]:
        """(step index, error) for every failing step."""
        return [(i, s.error) for i, s in enumerate(self.steps) if s.error is not None]


@dataclass
class BlockWitness:
    block: BlockContext
    transactions: list[TxWitness] = field(default_factory=list)

    @property
    def operation_count(self) -> int:
        return sum(len(tx.operations) for tx in self.transactions)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class WitnessBuilder:
    def __init__(
        self,
        sdb: StateDB,
        code_db: CodeDB,
        block: BlockContext,
        config: WitnessConfig = CANCUN_CONFIG,
    ) -> None:
        self.sdb = sdb
        self.code_db = code_db
        self.block = block
        self.config = config
        self.classifier = StepErrorClassifier(config)

    @classmethod
    def from_block_data(cls, data: BlockData) -> WitnessBuilder:
        return cls(data.sdb, data.code_db, data.block, data.config)

    def handle_block(
        self,
        transactions: Iterable[Transaction],
        traces: Iterable[GethExecTrace],
    ) -> BlockWitness:
        transactions = list(transactions)
        traces = list(traces)
        if len(transactions) != len(traces):
            raise ValueError(f"{len(transactions)} transactions but {len(traces)} traces")
        witness = BlockWitness(self.block)
        for index, (tx, trace) in enumerate(zip(transactions, traces)):
            logger.debug("block %d tx %d", self.block.number, index)
            witness.transactions.append(self.handle_tx(tx, trace))
        logger.info(
            "Built witness for block %d: %d txs, %d operations",
            self.block.number, len(witness.transactions), witness.operation_count,
        )
        return witness

    def handle_tx(self, tx: Transaction, trace: GethExecTrace) -> TxWitness:
        """Build one transaction's witness.

        On any error the StateDB object is rolled back in place to its state
        before the transaction and the error propagates.
        """
        snapshot = self.sdb.clone()
        try:
            return _TxBuild(self, tx, trace).run()
        except Exception:
            self.sdb.rollback(snapshot)
            logger.warning("Discarding partial witness for tx %s", tx.hash.hex() or "?")
            raise


class _TxBuild:
    """State of one transaction build."""

    def __init__(self, builder: WitnessBuilder, tx: Transaction, trace: GethExecTrace) -> None:
        self.builder = builder
        self.config = builder.config
        self.sdb = builder.sdb
        self.code_db = builder.code_db
        self.block = builder.block
        self.tx = tx
        self.trace = trace
        self.ctx = TransactionContext(tx, self.sdb, trace.call_trace or self._root_only_trace())
        self._pre: dict[bytes, Account] = {}

    def _root_only_trace(self) -> GethCallTrace:
        return GethCallTrace(
            call_type=CallKind.CREATE if self.tx.is_create else CallKind.CALL,
            from_address=self.tx.from_address,
            to=self.tx.to,
            value=self.tx.value,
            error="execution reverted" if self.trace.failed else None,
        )

    def run(self) -> TxWitness:
        witness = TxWitness(self.tx)
        self.begin_tx(witness.begin_operations)

        logs = self.trace.struct_logs
        for index, step in enumerate(logs):
            next_step = logs[index + 1] if index + 1 < len(logs) else None
            witness.steps.append(self.handle_step(step, next_step))

        # A root frame without code never produces a halting step
        if self.ctx.call_stack:
            if self.ctx.depth != 1 or logs:
                raise CallStackMismatch(
                    f"{self.ctx.depth} frames still open after the last step"
                )
            self.ctx.pop_call(not self.trace.failed)
        if self.ctx.call_trace_remaining:
            raise CallTraceMismatch(
                f"{self.ctx.call_trace_remaining} call trace entries never executed"
            )

        self.end_tx(witness.end_operations)
        witness.calls = self.ctx.calls
        witness.operations = self.ctx.operations
        witness.state_delta = {
            address: AccountDelta(pre, self.sdb.get_account(address)[1].copy())
            for address, pre in self._pre.items()
        }
        logger.debug(
            "tx %s: %d steps, %d calls, %d operations, success=%s",
            self.tx.hash.hex() or "?", len(witness.steps), len(witness.calls),
            len(witness.operations), witness.is_success,
        )
        return witness

    # -- Recording helpers --

    def _touch(self, address: bytes) -> None:
        if address not in self._pre:
            self._pre[address] = self.sdb.get_account(address)[1].copy()

    def _record(self, op: Operation, sink) -> Operation:
        if self.ctx.call_stack:
            op.is_persistent = self.ctx.call().is_persistent
        if isinstance(sink, ExecStep):
            return self.ctx.record(op, sink)
        self.ctx.record(op)
        sink.append(op)
        return op

    def _warm_account(self, address: bytes, sink, call_id: int = 0) -> bool:
        was_warm = self.sdb.check_account_in_access_list(address)
        self.sdb.add_account_to_access_list(address)
        self._record(Operation(
            target=RWTarget.TX_ACCESS_LIST_ACCOUNT, is_write=True, call_id=call_id,
            address=address, value=True, value_prev=was_warm,
        ), sink)
        return was_warm

    def _warm_slot(self, address: bytes, key: int, sink) -> bool:
        was_warm = self.sdb.check_account_storage_in_access_list(address, key)
        self.sdb.add_account_storage_to_access_list(address, key)
        self._record(Operation(
            target=RWTarget.TX_ACCESS_LIST_ACCOUNT_STORAGE, is_write=True,
            address=address, key=key, value=True, value_prev=was_warm,
        ), sink)
        return was_warm

    def _set_balance(self, address: bytes, balance: int, sink, call_id: int = 0) -> None:
        self._touch(address)
        _, acc = self.sdb.get_account_mut(address)
        prev = acc.balance
        acc.balance = balance
        self._record(Operation(
            target=RWTarget.ACCOUNT, is_write=True, call_id=call_id, address=address,
            field=AccountField.BALANCE, value=balance, value_prev=prev,
        ), sink)

    def _set_nonce(self, address: bytes, nonce: int, sink, call_id: int = 0) -> None:
        self._touch(address)
        _, acc = self.sdb.get_account_mut(address)
        prev = acc.nonce
        acc.nonce = nonce
        self._record(Operation(
            target=RWTarget.ACCOUNT, is_write=True, call_id=call_id, address=address,
            field=AccountField.NONCE, value=nonce, value_prev=prev,
        ), sink)

    def _transfer(self, sender: bytes, receiver: bytes, value: int, sink) -> None:
        if value == 0:
            return
        balance = self.sdb.get_balance(sender)
        if balance < value:
            raise StateMismatch(
                f"{sender.hex()} transfers {value} with balance {balance}"
            )
        self._set_balance(sender, balance - value, sink)
        if not self.sdb.get_account(receiver)[0]:
            self.sdb.set_touched(receiver)
        self._set_balance(receiver, self.sdb.get_balance(receiver) + value, sink)

    # -- Transaction boundary --

    def begin_tx(self, sink: list[Operation]) -> None:
        tx, sdb = self.tx, self.sdb
        sender = tx.from_address

        nonce = sdb.get_nonce(sender)
        if nonce != tx.nonce:
            raise StateMismatch(f"sender nonce is {nonce}, transaction nonce is {tx.nonce}")
        self._set_nonce(sender, nonce + 1, sink, ROOT_CALL_ID)

        fee = tx.gas * tx.gas_price
        balance = sdb.get_balance(sender)
        if balance < fee + tx.value:
            raise StateMismatch(f"sender balance {balance} cannot cover {fee + tx.value}")
        self._set_balance(sender, balance - fee, sink, ROOT_CALL_ID)

        if tx.is_create:
            callee = get_create_address(sender, nonce)
            code_hash = self.code_db.insert(tx.input)
            code_source = CodeSource.tx()
        else:
            callee = tx.to
            code_hash = sdb.get_account(callee)[1].code_hash
            code_source = CodeSource.from_address(callee)

        warm = [sender, callee]
        if self.config.eip3651_warm_coinbase:
            warm.append(self.block.coinbase)
        for address in warm:
            self._warm_account(address, sink, ROOT_CALL_ID)
        for address, keys in tx.access_list:
            self._warm_account(address, sink, ROOT_CALL_ID)
            for key in keys:
                was_warm = sdb.check_account_storage_in_access_list(address, key)
                sdb.add_account_storage_to_access_list(address, key)
                self._record(Operation(
                    target=RWTarget.TX_ACCESS_LIST_ACCOUNT_STORAGE, is_write=True,
                    call_id=ROOT_CALL_ID, address=address, key=key,
                    value=True, value_prev=was_warm,
                ), sink)

        root = Call(
            kind=CallKind.CREATE if tx.is_create else CallKind.CALL,
            caller_address=sender,
            address=callee,
            code_source=code_source,
            code_hash=code_hash,
            value=tx.value,
            call_data_length=0 if tx.is_create else len(tx.input),
        )
        self.ctx.push_call(root)

        if tx.is_create:
            self._touch(callee)
            sdb.set_touched(callee)
            self.ctx.created_accounts.add(callee)
            self._set_nonce(callee, 1, sink)
        self._transfer(sender, callee, tx.value, sink)

    def end_tx(self, sink: list[Operation]) -> None:
        tx, sdb = self.tx, self.sdb
        gas_used = self.trace.gas
        if gas_used > tx.gas:
            raise StateMismatch(f"gas used {gas_used} exceeds gas limit {tx.gas}")

        refund = (tx.gas - gas_used) * tx.gas_price
        if refund:
            self._set_balance(
                tx.from_address, sdb.get_balance(tx.from_address) + refund, sink, ROOT_CALL_ID
            )

        tip = tx.gas_price - self.block.base_fee
        if tip < 0:
            raise StateMismatch(
                f"gas price {tx.gas_price} below base fee {self.block.base_fee}"
            )
        reward = gas_used * tip
        if reward:
            coinbase = self.block.coinbase
            self._set_balance(coinbase, sdb.get_balance(coinbase) + reward, sink, ROOT_CALL_ID)

        sdb.commit_tx()
        if self.config.eip1153_transient_storage:
            sdb.clear_transient_storage()

    # -- Steps --

    def handle_step(self, step: GethExecStep, next_step: Optional[GethExecStep]) -> ExecStep:
        ctx = self.ctx
        call = ctx.call()
        if step.depth != call.depth:
            raise CallStackMismatch(
                f"step {step.op_name} at pc={step.pc} has depth {step.depth}, "
                f"call stack depth is {call.depth}"
            )

        error = self.builder.classifier.classify(step, next_step, call, self.sdb, self.code_db)
        exec_step = ExecStep(
            pc=step.pc, op=step.op, gas=step.gas, gas_cost=step.gas_cost,
            depth=step.depth, call_id=call.call_id, error=error,
            rwc_start=ctx.rw_counter,
        )
        self._record_stack(step, next_step, exec_step)

        next_depth = next_step.depth if next_step is not None else 0
        if next_depth > step.depth and (
            next_depth != step.depth + 1
            or step.op not in CALL_OPS | CREATE_OPS
            or error is not None
        ):
            raise CallStackMismatch(
                f"{step.op_name} at pc={step.pc} cannot enter depth {next_depth}"
            )

        if error is None or error.kind in SAME_DEPTH_ERRORS and next_depth == step.depth:
            self._apply(step, next_step, call, error, exec_step)
        elif next_depth == step.depth:
            raise CallStackMismatch(
                f"{step.op_name} at pc={step.pc} failed with {error} without leaving its frame"
            )
        else:
            ctx.pop_call(False, exec_step, step.memory or b"")

        if next_step is not None and next_step.refund != self.sdb.refund:
            self._record(Operation(
                target=RWTarget.TX_REFUND, is_write=True,
                value=next_step.refund, value_prev=self.sdb.refund,
            ), exec_step)
            self.sdb.set_refund(next_step.refund)

        exec_step.freeze(ctx.rw_counter)
        return exec_step

    def _record_stack(
        self, step: GethExecStep, next_step: Optional[GethExecStep], exec_step: ExecStep
    ) -> None:
        size = len(step.stack)
        for n in range(min(stack_inputs(step.op), size)):
            self._record(Operation(
                target=RWTarget.STACK, key=size - 1 - n, value=step.stack[-(n + 1)],
            ), exec_step)
        if (
            exec_step.error is None
            and next_step is not None
            and next_step.depth == step.depth
            and stack_outputs(step.op) > 0
            and next_step.stack
        ):
            out_size = len(next_step.stack)
            self._record(Operation(
                target=RWTarget.STACK, is_write=True, key=out_size - 1,
                value=next_step.stack[-1],
            ), exec_step)

    def _apply(
        self,
        step: GethExecStep,
        next_step: Optional[GethExecStep],
        call: Call,
        error: Optional[ExecError],
        exec_step: ExecStep,
    ) -> None:
        op = step.op
        if op in CALL_OPS:
            self._handle_call(step, next_step, call, error, exec_step)
        elif op in CREATE_OPS:
            self._handle_create(step, next_step, call, error, exec_step)
        elif op == Op.SLOAD:
            self._handle_sload(step, next_step, call, exec_step)
        elif op == Op.SSTORE:
            self._handle_sstore(step, call, exec_step)
        elif op == Op.TLOAD:
            self._handle_tload(step, next_step, call, exec_step)
        elif op == Op.TSTORE:
            key, value = step.stack_nth_last(0), step.stack_nth_last(1)
            _, prev = self.sdb.get_transient_storage(call.address, key)
            self.sdb.set_transient_storage(call.address, key, value)
            self._record(Operation(
                target=RWTarget.TRANSIENT_STORAGE, is_write=True, address=call.address,
                key=key, value=value, value_prev=prev,
            ), exec_step)
        elif op in ACCOUNT_ACCESS_OPS:
            address = step.stack_address(0)
            self._warm_account(address, exec_step)
            _, acc = self.sdb.get_account(address)
            if op == Op.BALANCE:
                self._record(Operation(
                    target=RWTarget.ACCOUNT, address=address,
                    field=AccountField.BALANCE, value=acc.balance,
                ), exec_step)
            else:
                self._record(Operation(
                    target=RWTarget.ACCOUNT, address=address,
                    field=AccountField.CODE_HASH, value=acc.code_hash_read(),
                ), exec_step)
        elif op == Op.SELFBALANCE:
            self._record(Operation(
                target=RWTarget.ACCOUNT, address=call.address,
                field=AccountField.BALANCE, value=self.sdb.get_balance(call.address),
            ), exec_step)
        elif op == Op.BLOCKHASH:
            self._handle_blockhash(step, next_step, exec_step)
        elif op in LOG_OPS:
            self._handle_log(step, call, exec_step)
        elif op == Op.RETURNDATACOPY:
            self._check_return_data_copy(step, call)
        elif op == Op.SELFDESTRUCT:
            self._handle_selfdestruct(step, call, exec_step)

        if next_step is None or next_step.depth < step.depth:
            self._halt(step, next_step, call, exec_step)

    # -- Storage --

    def _handle_sload(self, step, next_step, call: Call, exec_step: ExecStep) -> None:
        key = step.stack_nth_last(0)
        self._warm_slot(call.address, key, exec_step)
        _, value = self.sdb.get_storage(call.address, key)
        _, committed = self.sdb.get_committed_storage(call.address, key)
        self._record(Operation(
            target=RWTarget.STORAGE, address=call.address, key=key,
            value=value, value_prev=value, committed_value=committed,
        ), exec_step)
        self._cross_check(next_step, step, value, f"SLOAD {key:#x}")

    def _handle_sstore(self, step, call: Call, exec_step: ExecStep) -> None:
        key, value = step.stack_nth_last(0), step.stack_nth_last(1)
        self._warm_slot(call.address, key, exec_step)
        self._touch(call.address)
        _, prev = self.sdb.get_storage(call.address, key)
        _, committed = self.sdb.get_committed_storage(call.address, key)
        self.sdb.set_storage(call.address, key, value)
        self._record(Operation(
            target=RWTarget.STORAGE, is_write=True, address=call.address, key=key,
            value=value, value_prev=prev, committed_value=committed,
        ), exec_step)

    def _handle_tload(self, step, next_step, call: Call, exec_step: ExecStep) -> None:
        key = step.stack_nth_last(0)
        _, value = self.sdb.get_transient_storage(call.address, key)
        self._record(Operation(
            target=RWTarget.TRANSIENT_STORAGE, address=call.address, key=key,
            value=value, value_prev=value,
        ), exec_step)
        self._cross_check(next_step, step, value, f"TLOAD {key:#x}")

    def _handle_blockhash(self, step, next_step, exec_step: ExecStep) -> None:
        number = step.stack_nth_last(0)
        block_hash = self.block.block_hash(number)
        self._cross_check(next_step, step, int.from_bytes(block_hash, "big"), f"BLOCKHASH {number}")

    def _cross_check(self, next_step, step, expected: int, what: str) -> None:
        if not self.config.verify_cross_steps:
            return
        if next_step is None or next_step.depth != step.depth:
            return
        observed = next_step.stack_top_or_zero()
        if observed != expected:
            raise StateMismatch(f"{what}: trace shows {observed:#x}, state has {expected:#x}")

    def _check_return_data_copy(self, step, call: Call) -> None:
        data_offset = step.stack_nth_last(1)
        length = step.stack_nth_last(2)
        if data_offset + length > call.last_callee_return_data_length:
            raise StateMismatch(
                f"RETURNDATACOPY reads {data_offset}+{length} of "
                f"{call.last_callee_return_data_length} return data bytes"
            )

    def _handle_log(self, step, call: Call, exec_step: ExecStep) -> None:
        topic_count = step.op - Op.LOG0
        offset, length = step.stack_nth_last(0), step.stack_nth_last(1)
        topics = tuple(step.stack_nth_last(2 + i) for i in range(topic_count))
        data = step.memory_slice(offset, length) if step.memory is not None else None
        self._record(Operation(
            target=RWTarget.TX_LOG, is_write=True, address=call.address,
            value=(topics, data),
        ), exec_step)

    # -- Self-destruct --

    def _handle_selfdestruct(self, step, call: Call, exec_step: ExecStep) -> None:
        address = call.address
        beneficiary = step.stack_address(0)
        self._warm_account(beneficiary, exec_step)

        destruct = call.is_persistent and (
            not self.config.eip6780_selfdestruct or address in self.ctx.created_accounts
        )
        balance = self.sdb.get_balance(address)
        if beneficiary != address:
            if balance:
                self._set_balance(address, 0, exec_step)
                self._set_balance(
                    beneficiary, self.sdb.get_balance(beneficiary) + balance, exec_step
                )
        elif destruct and balance:
            self._set_balance(address, 0, exec_step)

        if destruct:
            self._touch(address)
            previous = self.sdb.destruct_account(address)
            self._record(Operation(
                target=RWTarget.ACCOUNT_DESTRUCTED, is_write=True, address=address,
                value=True, value_prev=previous,
            ), exec_step)
            logger.debug("destructed %s", address.hex())

    # -- Calls --

    def _push_child(self, child: Call, error: Optional[ExecError]) -> Call:
        if error is None:
            entry = self.ctx.peek_call_trace()
            if entry is not None and entry.call_type != child.kind:
                raise CallTraceMismatch(
                    f"steps open a {child.kind.value} frame, "
                    f"call trace has {entry.call_type.value}"
                )
            return self.ctx.push_call(child)
        # Newer tracers report frames that failed before entry; older ones do not
        entry = self.ctx.peek_call_trace()
        if (
            entry is not None
            and entry.error in _PRE_ENTRY_MESSAGES
            and not entry.calls
            and entry.call_type == child.kind
        ):
            return self.ctx.push_call(child)
        return self.ctx.push_call(child, success=False)

    def _pop_child_without_steps(self, next_step, exec_step: ExecStep) -> None:
        """Pop a frame that ran no code: EOA, precompile or empty init code."""
        child = self.ctx.call()
        success = child.is_success if next_step is None else next_step.stack_top_or_zero() != 0
        entry = self.ctx.call_trace_by_id.get(child.call_id)
        if success and entry is not None and child.is_call():
            child.return_data_length = len(entry.output)
        self.ctx.pop_call(success, exec_step)

    def _handle_call(self, step, next_step, call: Call, error, exec_step: ExecStep) -> None:
        op = step.op
        callee = step.stack_address(1)
        value = step.stack_nth_last(2) if call_has_value(op) else 0
        args = 3 if call_has_value(op) else 2
        self._warm_account(callee, exec_step)

        child = Call(
            kind=CallKind.from_op(op),
            caller_address=call.address,
            address=callee,
            code_source=CodeSource.from_address(callee),
            code_hash=self.sdb.get_account(callee)[1].code_hash,
            value=value,
            is_static=op == Op.STATICCALL,
            call_data_offset=step.stack_nth_last(args),
            call_data_length=step.stack_nth_last(args + 1),
            return_window_offset=step.stack_nth_last(args + 2),
            return_window_length=step.stack_nth_last(args + 3),
        )
        if op == Op.CALLCODE:
            child.address = call.address
        elif op == Op.DELEGATECALL:
            child.caller_address = call.caller_address
            child.address = call.address
            child.value = call.value

        self._push_child(child, error)
        if error is None and op == Op.CALL:
            self._transfer(call.address, callee, value, exec_step)

        if next_step is None or next_step.depth == step.depth:
            self._pop_child_without_steps(next_step, exec_step)

    def _handle_create(self, step, next_step, call: Call, error, exec_step: ExecStep) -> None:
        op = step.op
        value = step.stack_nth_last(0)
        init_code = init_code_for_step(step)
        if op == Op.CREATE2:
            address = create2_address_for_step(step, call)
        else:
            address = create_address_for_step(call, self.sdb)

        entered = error is None or error.kind == ExecErrorKind.CONTRACT_ADDRESS_COLLISION
        if entered:
            self._set_nonce(call.address, self.sdb.get_nonce(call.address) + 1, exec_step)
            self._warm_account(address, exec_step)

        child = Call(
            kind=CallKind.from_op(op),
            caller_address=call.address,
            address=address,
            code_source=CodeSource.memory(),
            code_hash=self.code_db.insert(init_code),
            value=value,
        )
        self._push_child(child, error)
        if error is None:
            self._touch(address)
            self.sdb.set_touched(address)
            self.ctx.created_accounts.add(address)
            self._set_nonce(address, 1, exec_step)
            self._transfer(call.address, address, value, exec_step)

        if next_step is None or next_step.depth == step.depth:
            self._pop_child_without_steps(next_step, exec_step)

    # -- Halting --

    def _halt(self, step, next_step, call: Call, exec_step: ExecStep) -> None:
        """Pop the current frame after a successfully classified halting step."""
        if call.is_root or next_step is None:
            observed = not self.trace.failed if call.is_root else call.is_success
        else:
            observed = next_step.stack_top_or_zero() != 0

        if step.op == Op.REVERT:
            if observed:
                raise CallTraceMismatch(f"REVERT at pc={step.pc} reported as success")
            call.return_data_offset = step.stack_nth_last(0)
            call.return_data_length = step.stack_nth_last(1)
        elif not observed:
            raise UnexpectedStepError(f"{step.op_name} halts its frame as failed", step)
        elif step.op == Op.RETURN:
            offset, length = step.stack_nth_last(0), step.stack_nth_last(1)
            if call.is_create():
                self._deploy(call, step.memory_slice(offset, length), exec_step)
            else:
                call.return_data_offset = offset
                call.return_data_length = length

        self.ctx.pop_call(observed, exec_step, step.memory or b"")

    def _deploy(self, call: Call, code: bytes, exec_step: ExecStep) -> None:
        self._touch(call.address)
        code_hash = self.code_db.insert(code)
        _, acc = self.sdb.get_account_mut(call.address)
        prev = (acc.code_hash, acc.keccak_code_hash, acc.code_size)
        acc.code_hash = code_hash
        acc.keccak_code_hash = keccak256(code)
        acc.code_size = len(code)
        self._record(Operation(
            target=RWTarget.ACCOUNT, is_write=True, address=call.address,
            field=AccountField.CODE_HASH,
            value=(code_hash, acc.keccak_code_hash, acc.code_size), value_prev=prev,
        ), exec_step)
        logger.debug("deployed %d bytes at %s", len(code), call.address.hex())
