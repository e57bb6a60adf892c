"""
evmwitness: build execution witnesses from geth traces.

Reads a JSON document holding a block header, its transactions and their
traces, rebuilds the pre-block state from the prestate traces and prints a
per-transaction summary of the witness.

Input document:
    {
      "chainId": 1,
      "block": {...},             # eth_getBlockByNumber header fields
      "historyHashes": [...],     # up to 256 recent block hashes, oldest first
      "transactions": [...],      # eth_getTransactionByHash objects
      "traces": [...]             # {"gas", "failed", "returnValue", "structLogs",
                                  #  "prestate", "callTrace"} per transaction
    }
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from evmwitness.builder.block import BlockContext, BlockData
from evmwitness.builder.builder import BlockWitness, WitnessBuilder
from evmwitness.builder.trace import GethExecTrace, Transaction, hex_to_int
from evmwitness.common.config import FORK_CONFIGS, config_for_fork
from evmwitness.vm.errors import WitnessError


logger = logging.getLogger("evmwitness")


def load_block_data(document: dict, fork: str = "cancun") -> BlockData:
    chain_id = hex_to_int(document.get("chainId", 1))
    config = config_for_fork(fork, chain_id)
    block = BlockContext.from_json(
        document.get("block") or {},
        history_hashes=document.get("historyHashes"),
        chain_id=chain_id,
    )
    transactions = [Transaction.from_json(tx) for tx in document.get("transactions") or []]
    traces = [GethExecTrace.from_json(t) for t in document.get("traces") or []]
    return BlockData.from_geth_data(block, transactions, traces, config)


def format_summary(witness: BlockWitness) -> list[str]:
    lines = [f"block {witness.block.number}: {len(witness.transactions)} transactions"]
    for index, tx in enumerate(witness.transactions):
        status = "ok" if tx.is_success else "failed"
        lines.append(
            f"  tx {index} {tx.tx.hash.hex() or '-'} {status}: "
            f"{len(tx.steps)} steps, {len(tx.calls)} calls, "
            f"{len(tx.operations)} operations"
        )
        for step_index, error in tx.errors():
            step = tx.steps[step_index]
            lines.append(f"    step {step_index} pc={step.pc} {step.op_name}: {error}")
    return lines


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="evmwitness",
        description="Build EVM execution witnesses from geth traces",
    )
    parser.add_argument(
        "block_file",
        type=str,
        help="Path to the block JSON document",
    )
    parser.add_argument(
        "--fork",
        choices=sorted(FORK_CONFIGS),
        default="cancun",
        help="Fork rules to apply (default: cancun)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    path = Path(args.block_file)
    if not path.exists():
        logger.error("Block file not found: %s", args.block_file)
        sys.exit(1)
    with open(path) as f:
        document = json.load(f)

    try:
        data = load_block_data(document, args.fork)
        builder = WitnessBuilder.from_block_data(data)
        witness = builder.handle_block(data.transactions, data.traces)
    except WitnessError as e:
        logger.error("Witness build failed: %s", e)
        sys.exit(1)

    for line in format_summary(witness):
        print(line)


if __name__ == "__main__":
    main()
