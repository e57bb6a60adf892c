"""
Read/write operation log.

Every state access the builder observes is recorded as an Operation with a
monotonically increasing counter (rwc). Operations on reversible targets are
undone when their frame fails; the undo is itself recorded as a reversion
operation pointing back at the original through `reverts`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RWTarget(Enum):
    STACK = "stack"
    STORAGE = "storage"
    TRANSIENT_STORAGE = "transient_storage"
    ACCOUNT = "account"
    ACCOUNT_DESTRUCTED = "account_destructed"
    TX_ACCESS_LIST_ACCOUNT = "tx_access_list_account"
    TX_ACCESS_LIST_ACCOUNT_STORAGE = "tx_access_list_account_storage"
    TX_REFUND = "tx_refund"
    TX_LOG = "tx_log"
    CALL_CONTEXT = "call_context"


class AccountField(Enum):
    NONCE = "nonce"
    BALANCE = "balance"
    CODE_HASH = "code_hash"


REVERSIBLE_TARGETS = frozenset({
    RWTarget.STORAGE,
    RWTarget.TRANSIENT_STORAGE,
    RWTarget.ACCOUNT,
    RWTarget.ACCOUNT_DESTRUCTED,
    RWTarget.TX_ACCESS_LIST_ACCOUNT,
    RWTarget.TX_ACCESS_LIST_ACCOUNT_STORAGE,
    RWTarget.TX_REFUND,
})


@dataclass
class Operation:
    """One counted read or write.

    `value` / `value_prev` are ints for words and flags (0/1), and arbitrary
    payloads (account snapshot, log data) for the targets that need them.
    """

    rwc: int = 0
    target: RWTarget = RWTarget.STACK
    is_write: bool = False
    call_id: int = 0
    address: Optional[bytes] = None
    key: Optional[int] = None
    field: Optional[object] = None
    value: object = 0
    value_prev: object = 0
    committed_value: int = 0
    is_persistent: bool = True
    reverts: Optional[int] = None

    @property
    def is_reversible(self) -> bool:
        return self.is_write and self.target in REVERSIBLE_TARGETS

    @property
    def is_reversion(self) -> bool:
        return self.reverts is not None

    def reversed(self, rwc: int) -> Operation:
        """The operation undoing this one, swapping value and value_prev."""
        return Operation(
            rwc=rwc,
            target=self.target,
            is_write=True,
            call_id=self.call_id,
            address=self.address,
            key=self.key,
            field=self.field,
            value=self.value_prev,
            value_prev=self.value,
            committed_value=self.committed_value,
            is_persistent=False,
            reverts=self.rwc,
        )
