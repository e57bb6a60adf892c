"""Unit tests for core types: Account and word / address helpers."""

import pytest

from evmwitness.common.crypto import keccak256
from evmwitness.common.types import (
    EMPTY_CODE_HASH,
    UINT256_MAX,
    ZERO_HASH,
    Account,
    address_to_word,
    is_precompiled,
    word_to_address,
    word_to_bytes,
)
from evmwitness.vm.errors import StateDBError


class TestWordHelpers:
    def test_word_to_address_takes_low_bytes(self):
        word = (0xDEAD << 160) | 0x1234
        assert word_to_address(word) == bytes(18) + b"\x12\x34"

    def test_address_round_trip(self):
        address = bytes.fromhex("cafe" * 10)
        assert word_to_address(address_to_word(address)) == address

    def test_word_to_bytes(self):
        assert word_to_bytes(1) == bytes(31) + b"\x01"
        assert word_to_bytes(UINT256_MAX) == b"\xff" * 32


class TestPrecompiles:
    def test_range(self):
        assert not is_precompiled(bytes(20))
        assert is_precompiled(bytes(19) + b"\x01")
        assert is_precompiled(bytes(19) + b"\x0a")
        assert not is_precompiled(bytes(19) + b"\x0b")

    def test_custom_count(self):
        assert not is_precompiled(bytes(19) + b"\x0a", count=9)


class TestAccount:
    def test_zero_account_is_empty(self):
        acc = Account.zero()
        assert acc.is_empty()
        assert acc.code_hash == EMPTY_CODE_HASH

    def test_nonce_makes_account_non_empty(self):
        assert not Account(nonce=1).is_empty()

    def test_balance_makes_account_non_empty(self):
        assert not Account(balance=1).is_empty()

    def test_code_makes_account_non_empty(self):
        code = b"\x60\x00"
        acc = Account(code_hash=keccak256(code), keccak_code_hash=keccak256(code), code_size=2)
        assert not acc.is_empty()

    def test_empty_code_hash_with_code_size(self):
        acc = Account(code_size=3)
        with pytest.raises(StateDBError):
            acc.is_empty()

    def test_code_hash_read(self):
        assert Account.zero().code_hash_read() == ZERO_HASH
        assert Account(nonce=1).code_hash_read() == EMPTY_CODE_HASH

    def test_copy_is_independent(self):
        acc = Account(storage={1: 2})
        clone = acc.copy()
        clone.storage[1] = 3
        assert acc.storage[1] == 2
