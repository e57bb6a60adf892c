"""Unit tests for fork configuration and the error taxonomy."""

import pytest

from evmwitness.common.config import (
    CANCUN_CONFIG,
    SHANGHAI_CONFIG,
    WitnessConfig,
    config_for_fork,
)
from evmwitness.vm.errors import (
    DepthError,
    ExecError,
    ExecErrorKind,
    OogError,
    WRITE_PROTECTION,
)


class TestWitnessConfig:
    def test_defaults(self):
        cfg = WitnessConfig()
        assert cfg.max_call_depth == 1024
        assert cfg.max_depth_step == 1025
        assert cfg.stack_limit == 1024
        assert cfg.max_code_size == 24576
        assert cfg.code_deposit_cost == 200
        assert cfg.invalid_code_prefix == 0xEF

    def test_presets(self):
        assert CANCUN_CONFIG.eip6780_selfdestruct
        assert CANCUN_CONFIG.eip1153_transient_storage
        assert not SHANGHAI_CONFIG.eip6780_selfdestruct
        assert not SHANGHAI_CONFIG.eip1153_transient_storage
        assert SHANGHAI_CONFIG.eip3651_warm_coinbase

    def test_config_for_fork(self):
        cfg = config_for_fork("Shanghai", chain_id=5)
        assert cfg.fork == "shanghai"
        assert cfg.chain_id == 5
        assert SHANGHAI_CONFIG.chain_id == 1

    def test_unknown_fork(self):
        with pytest.raises(ValueError, match="Unsupported fork"):
            config_for_fork("frontier")


class TestExecError:
    def test_detail_required(self):
        with pytest.raises(ValueError):
            ExecError(ExecErrorKind.DEPTH)

    def test_detail_type_checked(self):
        with pytest.raises(ValueError):
            ExecError(ExecErrorKind.OUT_OF_GAS, DepthError.CALL)

    def test_no_detail_allowed(self):
        with pytest.raises(ValueError):
            ExecError(ExecErrorKind.INVALID_JUMP, OogError.CONSTANT)

    def test_equality(self):
        assert ExecError.out_of_gas(OogError.SHA3) == ExecError(ExecErrorKind.OUT_OF_GAS, OogError.SHA3)
        assert WRITE_PROTECTION == ExecError(ExecErrorKind.WRITE_PROTECTION)

    def test_str(self):
        assert str(ExecError.depth(DepthError.CREATE)) == "DEPTH(CREATE)"
        assert str(WRITE_PROTECTION) == "WRITE_PROTECTION"
