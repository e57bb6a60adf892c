"""Tests for CREATE and CREATE2 address derivation (EIP-1014)."""

import pytest

from evmwitness.state.state_db import StateDB
from evmwitness.common.types import Account
from evmwitness.vm.call_frame import CallKind
from evmwitness.vm.create_address import (
    create2_address_for_step,
    create_address_for_step,
    get_create2_address,
    get_create_address,
    init_code_for_step,
)
from evmwitness.vm.errors import MissingMemory, MissingStackOperand
from evmwitness.vm.opcodes import Op

from tests.fixtures.contracts import EIP1014_INIT_CODE
from tests.fixtures.traces import make_call, step


DEADBEEF_SENDER = bytes.fromhex("00000000000000000000000000000000deadbeef")
CAFEBABE_SALT = bytes.fromhex("00" * 28 + "cafebabe")


class TestCreate2Address:
    """Vectors from EIP-1014."""

    @pytest.mark.parametrize(
        "sender,salt,init_code,expected",
        [
            ("00" * 20, "00" * 32, "00", "4d1a2e2bb4f88f0250f26ffff098b0b30b26bf38"),
            ("deadbeef" + "00" * 16, "00" * 32, "00", "b928f69bb1d91cd65274e3c79d8986362984fda3"),
            (
                "deadbeef" + "00" * 16,
                "00" * 12 + "feed" + "00" * 18,
                "00",
                "d04116cdd17bebe565eb2422f2497e06cc1c9833",
            ),
            ("00" * 20, "00" * 32, "deadbeef", "70f2b2914a2a4b783faefb75f459a580616fcb5e"),
            (
                "00" * 16 + "deadbeef",
                "00" * 28 + "cafebabe",
                "deadbeef",
                "60f3f640a8508fc6a86d45df051962668e1e8ac7",
            ),
            (
                "00" * 16 + "deadbeef",
                "00" * 28 + "cafebabe",
                "deadbeef" * 11,
                "1d8bfdc5d46dc4f61d6b6115972536ebe6a8854c",
            ),
            ("00" * 20, "00" * 32, "", "e33c0c7f7df4809055c3eba6c09cfe4baf1bd9e0"),
        ],
    )
    def test_eip1014_vectors(self, sender, salt, init_code, expected):
        address = get_create2_address(
            bytes.fromhex(sender), bytes.fromhex(salt), bytes.fromhex(init_code)
        )
        assert address.hex() == expected

    def test_rejects_short_sender(self):
        with pytest.raises(ValueError, match="Sender must be 20 bytes"):
            get_create2_address(b"\x00" * 19, bytes(32), b"")

    def test_rejects_short_salt(self):
        with pytest.raises(ValueError, match="Salt must be 32 bytes"):
            get_create2_address(bytes(20), bytes(31), b"")


class TestCreateAddress:
    SENDER = bytes.fromhex("6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0")

    @pytest.mark.parametrize(
        "nonce,expected",
        [
            (0, "cd234a471b72ba2f1ccf0a70fcaba648a5eecd8d"),
            (1, "343c43a37d37dff08ae8c4a11544c718abb4fcf8"),
            (2, "f778b86fa74e846c4f0a1fbd1335fe81c00a0c91"),
        ],
    )
    def test_known_addresses(self, nonce, expected):
        assert get_create_address(self.SENDER, nonce).hex() == expected

    def test_rejects_bad_sender(self):
        with pytest.raises(ValueError):
            get_create_address(b"\x01" * 32, 0)

    def test_for_step_uses_current_nonce(self):
        sdb = StateDB()
        sdb.set_account(self.SENDER, Account(nonce=1))
        call = make_call(address=self.SENDER)
        assert create_address_for_step(call, sdb).hex() == (
            "343c43a37d37dff08ae8c4a11544c718abb4fcf8"
        )
        # Pure: the nonce is not consumed
        assert sdb.get_nonce(self.SENDER) == 1


class TestCreate2ForStep:
    def _create2_step(self, memory=EIP1014_INIT_CODE, stack=None):
        # Bottom first: salt, length, offset, value
        if stack is None:
            stack = [int.from_bytes(CAFEBABE_SALT, "big"), 4, 0, 0]
        return step(Op.CREATE2, stack=stack, memory=memory)

    def test_matches_eip1014(self):
        call = make_call(address=DEADBEEF_SENDER)
        address = create2_address_for_step(self._create2_step(), call)
        assert address.hex() == "60f3f640a8508fc6a86d45df051962668e1e8ac7"

    def test_init_code_window(self):
        s = step(Op.CREATE, stack=[2, 1, 0], memory=b"\x00\xde\xad\xbe\xef")
        assert init_code_for_step(s) == b"\xde\xad"

    def test_init_code_reads_zero_past_memory(self):
        s = step(Op.CREATE, stack=[4, 3, 0], memory=b"\x00\x00\x00\xaa")
        assert init_code_for_step(s) == b"\xaa\x00\x00\x00"

    def test_empty_init_code_without_memory(self):
        s = step(Op.CREATE, stack=[0, 0, 0], memory=None)
        assert init_code_for_step(s) == b""

    def test_missing_memory(self):
        with pytest.raises(MissingMemory):
            create2_address_for_step(self._create2_step(memory=None), make_call())

    def test_missing_stack_operand(self):
        with pytest.raises(MissingStackOperand):
            create2_address_for_step(self._create2_step(stack=[4, 0, 0]), make_call())

    def test_does_not_depend_on_call_kind(self):
        call = make_call(CallKind.CREATE2, address=DEADBEEF_SENDER)
        address = create2_address_for_step(self._create2_step(), call)
        assert address.hex() == "60f3f640a8508fc6a86d45df051962668e1e8ac7"
