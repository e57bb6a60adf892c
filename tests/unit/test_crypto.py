"""Unit tests for the hashing helpers and code hash schemes."""

import pytest

from evmwitness.common.crypto import CODE_HASH_SCHEMES, get_code_hasher, keccak256, sha256


class TestKeccak256:
    """Test keccak256 hashing wrapper."""

    def test_hash_empty(self):
        """Known hash of the empty string (this is the empty code hash)."""
        assert keccak256(b"").hex() == (
            "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        )

    def test_not_sha3_256(self):
        """Keccak-256 differs from the standardized SHA3-256 padding."""
        assert keccak256(b"").hex() != (
            "a7ffc6f8bf1ed76651c14756a061d662f580ff4de43b49fa82d80a4b80f8434a"
        )

    def test_hash_different_inputs(self):
        assert keccak256(b"input1") != keccak256(b"input2")

    def test_hash_length(self):
        for data in [b"", b"a", b"a" * 100, b"a" * 10000]:
            assert len(keccak256(data)) == 32


class TestSha256:
    def test_hash_empty(self):
        assert sha256(b"").hex() == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )


class TestCodeHashSchemes:
    def test_keccak_is_default_scheme(self):
        assert get_code_hasher("keccak") is keccak256

    def test_sha256_scheme(self):
        assert get_code_hasher("sha256") is sha256

    def test_registered_schemes(self):
        assert set(CODE_HASH_SCHEMES) == {"keccak", "sha256"}

    def test_unknown_scheme(self):
        with pytest.raises(ValueError, match="Unknown code hash scheme"):
            get_code_hasher("poseidon")
