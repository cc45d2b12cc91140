"""
Tests for wallet derivation and unit helpers (no RPC access).
"""

import pytest

from agentforge.blockchain.constants import get_token
from agentforge.blockchain.wallet import (
    CeloWallet,
    WalletNotConfigured,
    from_base_units,
    is_valid_address,
    to_base_units,
)

MNEMONIC = "test test test test test test test test test test test junk"


def test_derive_address_per_index():
    wallet = CeloWallet(rpc_url="http://localhost:8545", mnemonic=MNEMONIC, chain_id=42220)

    assert wallet.derive_address(0) == "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
    assert wallet.derive_address(1) == "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


def test_derive_without_mnemonic():
    wallet = CeloWallet(rpc_url="http://localhost:8545", mnemonic="", chain_id=42220)
    with pytest.raises(WalletNotConfigured):
        wallet.derive_address(1)


def test_address_validation():
    assert is_valid_address("0x" + "ab" * 20)
    assert is_valid_address("0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266")
    assert not is_valid_address("0xf39FD6e51aad88F6F4ce6aB8827279cffFb92266")  # bad checksum
    assert not is_valid_address("0x1234")
    assert not is_valid_address("")


def test_base_units():
    assert to_base_units(1.5) == 1_500_000_000_000_000_000
    assert to_base_units(0.1, decimals=6) == 100_000
    assert from_base_units(2_500_000_000_000_000_000) == 2.5


def test_token_lookup_is_case_insensitive():
    assert get_token("cusd").symbol == "cUSD"
    assert get_token("CELO").is_native
    assert get_token("DOGE") is None
