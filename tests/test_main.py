"""Tests for the evmwitness command line entry point."""

import json

import pytest

from evmwitness.main import build_parser, format_summary, load_block_data, main
from evmwitness.builder.builder import WitnessBuilder

from tests.fixtures.addresses import ALICE_ADDRESS, BOB_ADDRESS, COINBASE_ADDRESS


def _document(nonce=0):
    return {
        "chainId": "0x1",
        "block": {
            "number": "0x64",
            "timestamp": "0x6553f100",
            "miner": "0x" + COINBASE_ADDRESS.hex(),
            "gasLimit": "0x1c9c380",
            "baseFeePerGas": "0x7",
        },
        "historyHashes": ["0x" + "01" * 32],
        "transactions": [
            {
                "hash": "0x" + "ab" * 32,
                "from": "0x" + ALICE_ADDRESS.hex(),
                "to": "0x" + BOB_ADDRESS.hex(),
                "nonce": hex(nonce),
                "value": "0x3e8",
                "gas": "0x5208",
                "gasPrice": "0xa",
                "input": "0x",
            }
        ],
        "traces": [
            {
                "gas": 21000,
                "failed": False,
                "returnValue": "",
                "structLogs": [],
                "prestate": {
                    "0x" + ALICE_ADDRESS.hex(): {"balance": hex(10**18), "nonce": 0},
                },
            }
        ],
    }


def _write(tmp_path, document):
    path = tmp_path / "block.json"
    path.write_text(json.dumps(document))
    return str(path)


class TestLoadBlockData:
    def test_load(self):
        data = load_block_data(_document())
        assert data.block.number == 100
        assert data.config.fork == "cancun"
        assert len(data.transactions) == 1
        assert data.sdb.get_balance(ALICE_ADDRESS) == 10**18

    def test_fork_selection(self):
        data = load_block_data(_document(), "shanghai")
        assert data.config.fork == "shanghai"
        assert not data.config.eip6780_selfdestruct

    def test_unknown_fork(self):
        with pytest.raises(ValueError):
            load_block_data(_document(), "frontier")

    def test_summary(self):
        data = load_block_data(_document())
        witness = WitnessBuilder.from_block_data(data).handle_block(data.transactions, data.traces)
        lines = format_summary(witness)
        assert lines[0] == "block 100: 1 transactions"
        assert lines[1].startswith("  tx 0 " + "ab" * 32 + " ok: 0 steps, 1 calls")


class TestMain:
    def test_parser_defaults(self):
        args = build_parser().parse_args(["block.json"])
        assert args.fork == "cancun"
        assert args.log_level == "INFO"

    def test_prints_summary(self, tmp_path, capsys):
        main([_write(tmp_path, _document()), "--log-level", "WARNING"])
        out = capsys.readouterr().out
        assert "block 100: 1 transactions" in out
        assert " ok: " in out

    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main([str(tmp_path / "missing.json")])
        assert exc.value.code == 1

    def test_witness_error_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main([_write(tmp_path, _document(nonce=5))])
        assert exc.value.code == 1

    def test_unknown_trace_error_exits(self, tmp_path, caplog):
        document = _document()
        document["traces"][0]["structLogs"] = [
            {"pc": 0, "op": "STOP", "gas": 0, "gasCost": 0, "depth": 1,
             "error": "no such geth error"},
        ]
        with pytest.raises(SystemExit) as exc:
            main([_write(tmp_path, document)])
        assert exc.value.code == 1
        assert "Witness build failed" in caplog.text
