"""
In-memory state database.

CodeDB: content-addressed bytecode store.
StateDB: committed accounts plus the transaction-scoped working sets
(access lists, dirty storage, transient storage, destructed and touched
accounts, refund counter). Nothing here is merkleized.
"""

from __future__ import annotations

import copy
import logging
from typing import Optional

from evmwitness.common.crypto import CodeHasher, keccak256
from evmwitness.common.types import Account, EMPTY_CODE_HASH, is_precompiled
from evmwitness.vm.errors import AccessListError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Code store
# ---------------------------------------------------------------------------

class CodeDB:
    """Bytecode keyed by its hash. The empty code is always present."""

    def __init__(self, hasher: CodeHasher = keccak256) -> None:
        self._hasher = hasher
        self._code: dict[bytes, bytes] = {}
        self.empty_code_hash: bytes = self.insert(b"")

    def hash(self, code: bytes) -> bytes:
        return self._hasher(code)

    def insert(self, code: bytes) -> bytes:
        """Store `code` and return its hash."""
        code_hash = self._hasher(code)
        self._code[code_hash] = bytes(code)
        return code_hash

    def get(self, code_hash: bytes) -> Optional[bytes]:
        return self._code.get(code_hash)

    def __contains__(self, code_hash: bytes) -> bool:
        return code_hash in self._code

    def __len__(self) -> int:
        return len(self._code)


# ---------------------------------------------------------------------------
# State database
# ---------------------------------------------------------------------------

class StateDB:
    """Account / storage model with transaction-scoped access tracking."""

    def __init__(
        self,
        empty_code_hash: bytes = EMPTY_CODE_HASH,
        precompile_count: int = 10,
    ) -> None:
        self.empty_code_hash = empty_code_hash
        self.precompile_count = precompile_count
        # Shared template returned for missing accounts; never mutated.
        self._zero_account = Account.zero(empty_code_hash)

        self._state: dict[bytes, Account] = {}

        # Transaction lifespan
        self._access_list_account: set[bytes] = set()
        self._access_list_storage: set[tuple[bytes, int]] = set()
        self._dirty_storage: dict[tuple[bytes, int], int] = {}
        self._transient_storage: dict[tuple[bytes, int], int] = {}
        self._destructed_account: set[bytes] = set()
        self._touched_account: set[bytes] = set()
        self._refund: int = 0

    def zero_account(self) -> Account:
        """A fresh zero account using this database's empty code hash."""
        return Account.zero(self.empty_code_hash)

    # -- Accounts --

    def set_account(self, address: bytes, account: Account) -> None:
        self._state[address] = account

    def get_account(self, address: bytes) -> tuple[bool, Account]:
        """Return (found, account). Missing accounts yield the shared zero account."""
        acc = self._state.get(address)
        if acc is None:
            return False, self._zero_account
        return True, acc

    def get_account_mut(self, address: bytes) -> tuple[bool, Account]:
        """Return (found, account), inserting a zero account if missing."""
        acc = self._state.get(address)
        if acc is not None:
            return True, acc
        logger.debug("insert empty account for %s", address.hex())
        acc = self.zero_account()
        self._state[address] = acc
        return False, acc

    def accounts(self) -> dict[bytes, Account]:
        return self._state

    def get_balance(self, address: bytes) -> int:
        return self.get_account(address)[1].balance

    def get_nonce(self, address: bytes) -> int:
        return self.get_account(address)[1].nonce

    def increase_nonce(self, address: bytes) -> int:
        """Increment the nonce and return its previous value."""
        _, acc = self.get_account_mut(address)
        nonce = acc.nonce
        acc.nonce = nonce + 1
        return nonce

    def is_touched(self, address: bytes) -> bool:
        """False means the address never existed this transaction."""
        return address in self._touched_account

    def set_touched(self, address: bytes) -> bool:
        """Mark an empty account as created. Returns True if newly marked."""
        if address in self._touched_account:
            return False
        self._touched_account.add(address)
        return True

    # -- Storage --

    def get_storage(self, address: bytes, key: int) -> tuple[bool, int]:
        """Current value: this transaction's writes first, then committed."""
        slot = (address, key)
        if slot in self._dirty_storage:
            return True, self._dirty_storage[slot]
        return self.get_committed_storage(address, key)

    def get_committed_storage(self, address: bytes, key: int) -> tuple[bool, int]:
        """Value as of the start of the transaction."""
        _, acc = self.get_account(address)
        if key in acc.storage:
            return True, acc.storage[key]
        return False, 0

    def set_storage(self, address: bytes, key: int, value: int) -> None:
        self._dirty_storage[(address, key)] = value

    def get_transient_storage(self, address: bytes, key: int) -> tuple[bool, int]:
        slot = (address, key)
        if slot in self._transient_storage:
            return True, self._transient_storage[slot]
        return False, 0

    def set_transient_storage(self, address: bytes, key: int, value: int) -> None:
        self._transient_storage[(address, key)] = value

    def clear_transient_storage(self) -> None:
        self._transient_storage = {}

    # -- Access lists (EIP-2929) --

    def check_account_in_access_list(self, address: bytes) -> bool:
        """Precompiles are always warm."""
        return (
            is_precompiled(address, self.precompile_count)
            or address in self._access_list_account
        )

    def add_account_to_access_list(self, address: bytes) -> bool:
        """Returns True if the address was not in the access list before."""
        if address in self._access_list_account:
            return False
        self._access_list_account.add(address)
        return True

    def remove_account_from_access_list(self, address: bytes) -> None:
        if address not in self._access_list_account:
            raise AccessListError(f"address {address.hex()} not in access list")
        self._access_list_account.remove(address)

    def check_account_storage_in_access_list(self, address: bytes, key: int) -> bool:
        return (address, key) in self._access_list_storage

    def add_account_storage_to_access_list(self, address: bytes, key: int) -> bool:
        slot = (address, key)
        if slot in self._access_list_storage:
            return False
        self._access_list_storage.add(slot)
        return True

    def remove_account_storage_from_access_list(self, address: bytes, key: int) -> None:
        slot = (address, key)
        if slot not in self._access_list_storage:
            raise AccessListError(f"slot ({address.hex()}, {key:#x}) not in access list")
        self._access_list_storage.remove(slot)

    # -- Self-destruct --

    def destruct_account(self, address: bytes) -> Account:
        """Zero the live account and mark it destructed.

        Returns the pre-destruct account so a reverted frame can restore it;
        the zeroing becomes durable in `commit_tx`.
        """
        _, previous = self.get_account(address)
        previous = previous.copy()
        self._state[address] = self.zero_account()
        self._destructed_account.add(address)
        return previous

    def restore_destructed_account(self, address: bytes, account: Account) -> None:
        self._state[address] = account
        self._destructed_account.discard(address)

    def is_destructed(self, address: bytes) -> bool:
        return address in self._destructed_account

    # -- Refund --

    @property
    def refund(self) -> int:
        return self._refund

    def set_refund(self, value: int) -> None:
        self._refund = value

    # -- Transaction boundary --

    def commit_tx(self) -> None:
        """Fold this transaction's writes into committed state.

        Clears both access lists, moves dirty storage into account storage,
        clears touched accounts, zeroes destructed accounts and resets the
        refund counter. A second call without intervening writes does nothing.
        """
        self._access_list_account = set()
        self._access_list_storage = set()
        for (address, key), value in self._dirty_storage.items():
            _, acc = self.get_account_mut(address)
            acc.storage[key] = value
        self._dirty_storage = {}
        self._touched_account = set()
        for address in self._destructed_account:
            self._state[address] = self.zero_account()
        self._destructed_account = set()
        self._refund = 0

    def clone(self) -> StateDB:
        """Independent deep copy."""
        return copy.deepcopy(self)

    def rollback(self, snapshot: StateDB) -> None:
        """Restore this database in place from a `clone` taken earlier.

        The snapshot's containers are taken over, so it must not be used after.
        """
        self._state = snapshot._state
        self._access_list_account = snapshot._access_list_account
        self._access_list_storage = snapshot._access_list_storage
        self._dirty_storage = snapshot._dirty_storage
        self._transient_storage = snapshot._transient_storage
        self._destructed_account = snapshot._destructed_account
        self._touched_account = snapshot._touched_account
        self._refund = snapshot._refund
