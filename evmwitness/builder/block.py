"""
Block-level inputs.

BlockContext: header fields visible to the EVM plus the recent block hashes.
BlockData: a BlockContext, its transactions and traces, and the StateDB /
CodeDB reconstructed from the prestate traces.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from eth_utils import decode_hex, to_canonical_address

from evmwitness.builder.trace import GethExecTrace, Transaction, hex_to_int
from evmwitness.common.config import CANCUN_CONFIG, WitnessConfig
from evmwitness.common.crypto import get_code_hasher, keccak256
from evmwitness.common.types import ZERO_ADDRESS, ZERO_HASH, Account, word_to_address
from evmwitness.state.state_db import CodeDB, StateDB
from evmwitness.vm.opcodes import ACCOUNT_ACCESS_OPS, Op

logger = logging.getLogger(__name__)

MAX_HISTORY_HASHES = 256


@dataclass
class BlockContext:
    chain_id: int = 1
    number: int = 0
    timestamp: int = 0
    coinbase: bytes = ZERO_ADDRESS
    gas_limit: int = 0
    base_fee: int = 0
    prevrandao: int = 0
    # Oldest first; the last entry is the hash of block `number - 1`
    history_hashes: list[bytes] = field(default_factory=list)

    def __post_init__(self) -> None:
        if len(self.history_hashes) > MAX_HISTORY_HASHES:
            raise ValueError(
                f"at most {MAX_HISTORY_HASHES} history hashes, got {len(self.history_hashes)}"
            )

    def block_hash(self, number: int) -> bytes:
        """BLOCKHASH semantics: zero outside the available recent window."""
        if number >= self.number:
            return ZERO_HASH
        distance = self.number - number
        if distance > len(self.history_hashes):
            return ZERO_HASH
        return self.history_hashes[-distance]

    @classmethod
    def from_json(
        cls,
        data: dict,
        history_hashes: Optional[list[str]] = None,
        chain_id: int = 1,
    ) -> BlockContext:
        miner = data.get("miner") or data.get("coinbase")
        prevrandao = data.get("prevRandao") or data.get("mixHash") or data.get("difficulty")
        return cls(
            chain_id=chain_id,
            number=hex_to_int(data.get("number")),
            timestamp=hex_to_int(data.get("timestamp")),
            coinbase=to_canonical_address(miner) if miner else ZERO_ADDRESS,
            gas_limit=hex_to_int(data.get("gasLimit")),
            base_fee=hex_to_int(data.get("baseFeePerGas")),
            prevrandao=hex_to_int(prevrandao),
            history_hashes=[decode_hex(h) for h in history_hashes or []],
        )


def accessed_addresses(block: BlockContext, tx: Transaction, trace: GethExecTrace) -> set[bytes]:
    """Every address the transaction may touch, as far as the trace shows."""
    addresses = {block.coinbase, tx.from_address}
    if tx.to is not None:
        addresses.add(tx.to)
    for address, _ in tx.access_list:
        addresses.add(address)
    addresses.update(trace.prestate)
    if trace.call_trace is not None:
        for entry in trace.call_trace.flatten():
            addresses.add(entry.from_address)
            if entry.to is not None:
                addresses.add(entry.to)
    for step in trace.struct_logs:
        if step.error is None and step.stack and (
            step.op in ACCOUNT_ACCESS_OPS or step.op == Op.SELFDESTRUCT
        ):
            addresses.add(word_to_address(step.stack[-1]))
    return addresses


@dataclass
class BlockData:
    block: BlockContext
    sdb: StateDB
    code_db: CodeDB
    transactions: list[Transaction]
    traces: list[GethExecTrace]
    config: WitnessConfig = CANCUN_CONFIG

    @classmethod
    def from_geth_data(
        cls,
        block: BlockContext,
        transactions: Iterable[Transaction],
        traces: Iterable[GethExecTrace],
        config: WitnessConfig = CANCUN_CONFIG,
    ) -> BlockData:
        """Build the pre-block state from the prestate traces.

        Every accessed address starts as a zero account; prestate accounts
        then overwrite them, the first transaction mentioning an account
        providing its pre-block value.
        """
        transactions = list(transactions)
        traces = list(traces)
        if len(transactions) != len(traces):
            raise ValueError(
                f"{len(transactions)} transactions but {len(traces)} traces"
            )

        code_db = CodeDB(get_code_hasher(config.code_hash_scheme))
        sdb = StateDB(code_db.empty_code_hash, config.precompile_count)

        for tx, trace in zip(transactions, traces):
            for address in accessed_addresses(block, tx, trace):
                if not sdb.get_account(address)[0]:
                    sdb.set_account(address, sdb.zero_account())

        seen: set[bytes] = set()
        for trace in traces:
            for address, pre in trace.prestate.items():
                if address in seen:
                    continue
                seen.add(address)
                code_hash = code_db.insert(pre.code)
                sdb.set_account(
                    address,
                    Account(
                        nonce=pre.nonce,
                        balance=pre.balance,
                        storage=dict(pre.storage),
                        code_hash=code_hash,
                        keccak_code_hash=keccak256(pre.code),
                        code_size=len(pre.code),
                    ),
                )
        logger.debug(
            "block %d: %d accounts, %d codes", block.number, len(sdb.accounts()), len(code_db)
        )
        return cls(block, sdb, code_db, transactions, traces, config)
