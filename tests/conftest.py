"""Pytest configuration and shared fixtures for all tests."""

import pytest

from evmwitness.builder.block import BlockContext
from evmwitness.builder.builder import WitnessBuilder
from evmwitness.builder.classifier import StepErrorClassifier
from evmwitness.common.config import CANCUN_CONFIG, SHANGHAI_CONFIG
from evmwitness.state.state_db import CodeDB, StateDB

from tests.fixtures.addresses import ALICE_ADDRESS, COINBASE_ADDRESS
from tests.fixtures.traces import ALICE_BALANCE, BASE_FEE, put_account


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def config():
    """Default (Cancun) configuration."""
    return CANCUN_CONFIG


@pytest.fixture
def shanghai_config():
    return SHANGHAI_CONFIG


# =============================================================================
# State
# =============================================================================

@pytest.fixture
def code_db():
    return CodeDB()


@pytest.fixture
def sdb(code_db):
    """StateDB with a funded externally owned sender."""
    db = StateDB(code_db.empty_code_hash)
    put_account(db, code_db, ALICE_ADDRESS, balance=ALICE_BALANCE)
    return db


@pytest.fixture
def block():
    return BlockContext(
        chain_id=1,
        number=100,
        timestamp=1_700_000_000,
        coinbase=COINBASE_ADDRESS,
        gas_limit=30_000_000,
        base_fee=BASE_FEE,
        history_hashes=[bytes([i]) * 32 for i in range(1, 4)],
    )


# =============================================================================
# Builder
# =============================================================================

@pytest.fixture
def classifier(config):
    return StepErrorClassifier(config)


@pytest.fixture
def builder(sdb, code_db, block, config):
    return WitnessBuilder(sdb, code_db, block, config)
