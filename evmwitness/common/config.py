"""
Witness builder configuration.

Fork-dependent limits and feature switches used by the error classifier and
the builder. Presets cover the forks the builder targets.
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class WitnessConfig:
    chain_id: int = 1
    fork: str = "cancun"

    # Call / stack limits
    max_call_depth: int = 1024          # a call at depth 1025 fails
    stack_limit: int = 1024

    # Contract deployment
    max_code_size: int = 0x6000         # EIP-170
    code_deposit_cost: int = 200        # gas per deployed byte
    invalid_code_prefix: int = 0xEF     # EIP-3541

    # Precompiles at 0x01..precompile_count are always warm
    precompile_count: int = 10

    # Fork features
    eip3651_warm_coinbase: bool = True      # Shanghai
    eip1153_transient_storage: bool = True  # Cancun
    eip6780_selfdestruct: bool = True       # Cancun

    # Code store hash scheme ("keccak" or "sha256")
    code_hash_scheme: str = "keccak"

    # Cross-check SLOAD / TLOAD / BLOCKHASH results against the next step
    verify_cross_steps: bool = True

    @property
    def max_depth_step(self) -> int:
        """Depth at which call / creation opcodes fail with a depth error."""
        return self.max_call_depth + 1


SHANGHAI_CONFIG = WitnessConfig(
    fork="shanghai",
    precompile_count=9,
    eip1153_transient_storage=False,
    eip6780_selfdestruct=False,
)

CANCUN_CONFIG = WitnessConfig()

FORK_CONFIGS: dict[str, WitnessConfig] = {
    "shanghai": SHANGHAI_CONFIG,
    "cancun": CANCUN_CONFIG,
}


def config_for_fork(fork: str, chain_id: int = 1) -> WitnessConfig:
    """Return the preset for `fork` with the given chain id."""
    try:
        base = FORK_CONFIGS[fork.lower()]
    except KeyError:
        raise ValueError(f"Unsupported fork: {fork}") from None
    return replace(base, chain_id=chain_id)
