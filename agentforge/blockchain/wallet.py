"""
Agent wallets on Celo.

Each agent's wallet is derived from one platform mnemonic at
m/44'/60'/0'/0/{index}; index 0 is reserved for the platform itself. Private
keys are derived per call and never stored.

Read helpers (balances, gas, oracle rates) work without a mnemonic.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from agentforge.blockchain.constants import (
    ERC20_ABI, SORTED_ORACLES_ABI, STABLE_SYMBOLS, TOKENS, get_token,
)
from agentforge.config import settings

logger = logging.getLogger(__name__)

Account.enable_unaudited_hdwallet_features()

NATIVE_TRANSFER_GAS = 21_000
ORACLE_STALE_SECONDS = 600


class WalletError(Exception):
    pass


class WalletNotConfigured(WalletError):
    pass


class TransactionTimeout(WalletError):
    """Receipt did not arrive within the confirmation window."""

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"Transaction {tx_hash} not confirmed after {timeout:.0f}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


class TransactionReverted(WalletError):
    def __init__(self, tx_hash: str, block_number: Optional[int] = None):
        super().__init__(f"Transaction {tx_hash} reverted")
        self.tx_hash = tx_hash
        self.block_number = block_number


@dataclass
class TxReceipt:
    tx_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass
class WalletBalance:
    address: str
    celo: float
    tokens: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, float]:
        return {"CELO": self.celo, **self.tokens}


@dataclass
class GasInfo:
    base_fee_gwei: float
    suggested_tip_gwei: float
    estimated_cost_celo: float


@dataclass
class OracleRate:
    pair: str
    rate: float      # 1 CELO = rate <stable>
    inverse: float
    num_reporters: int
    last_update: datetime
    source: str = "sorted_oracles"

    @property
    def is_expired(self) -> bool:
        return (datetime.utcnow() - self.last_update).total_seconds() > ORACLE_STALE_SECONDS


def is_valid_address(address: str) -> bool:
    """0x + 40 hex; mixed case must carry a valid checksum."""
    return bool(address) and Web3.is_address(address)


def to_base_units(amount: float, decimals: int = 18) -> int:
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


def from_base_units(value: int, decimals: int = 18) -> float:
    return float(Decimal(value) / (Decimal(10) ** decimals))


class CeloWallet:
    """HD-derived agent wallets plus read access to the chain."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        mnemonic: Optional[str] = None,
        chain_id: Optional[int] = None,
    ):
        self._rpc_url = rpc_url or settings.celo_rpc_url
        self._mnemonic = mnemonic if mnemonic is not None else settings.wallet_mnemonic
        self._chain_id = chain_id or settings.chain_id
        self._w3: Optional[AsyncWeb3] = None
        self._nonce_locks: Dict[str, asyncio.Lock] = {}

    @property
    def w3(self) -> AsyncWeb3:
        if self._w3 is None:
            self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self._rpc_url, request_kwargs={"timeout": 20}))
        return self._w3

    # ── Derivation ──

    def derive_account(self, index: int):
        if not self._mnemonic:
            raise WalletNotConfigured("WALLET_MNEMONIC is not set; agent wallets are disabled")
        return Account.from_mnemonic(self._mnemonic.strip(), account_path=f"m/44'/60'/0'/0/{index}")

    def derive_address(self, index: int) -> str:
        return self.derive_account(index).address

    # ── Reads ──

    async def get_balances(self, address: str) -> WalletBalance:
        checksum = Web3.to_checksum_address(address)
        native = await self.w3.eth.get_balance(checksum)
        tokens = {}
        for symbol in STABLE_SYMBOLS:
            token = TOKENS[symbol]
            contract = self.w3.eth.contract(address=Web3.to_checksum_address(token.address), abi=ERC20_ABI)
            raw = await contract.functions.balanceOf(checksum).call()
            tokens[symbol] = from_base_units(raw, token.decimals)
        return WalletBalance(address=checksum, celo=from_base_units(native), tokens=tokens)

    async def get_gas_info(self) -> GasInfo:
        gas_price = await self.w3.eth.gas_price
        block = await self.w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas", 0) or 0
        tip = max(gas_price - base_fee, 0)
        return GasInfo(
            base_fee_gwei=float(Web3.from_wei(base_fee, "gwei")),
            suggested_tip_gwei=float(Web3.from_wei(tip, "gwei")),
            estimated_cost_celo=from_base_units(gas_price * NATIVE_TRANSFER_GAS),
        )

    async def get_oracle_rate(self, symbol: str) -> OracleRate:
        token = get_token(symbol)
        if token is None or token.is_native:
            raise WalletError(f"No oracle rate for {symbol}")

        oracles = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.sorted_oracles_address),
            abi=SORTED_ORACLES_ABI,
        )
        token_address = Web3.to_checksum_address(token.address)
        numerator, denominator = await oracles.functions.medianRate(token_address).call()
        if not denominator:
            raise WalletError(f"Oracle has no rate for {token.symbol}")
        reporters = await oracles.functions.numRates(token_address).call()
        timestamp = await oracles.functions.medianTimestamp(token_address).call()

        rate = numerator / denominator
        return OracleRate(
            pair=f"CELO/{token.symbol}",
            rate=rate,
            inverse=1 / rate if rate else 0.0,
            num_reporters=int(reporters),
            last_update=datetime.utcfromtimestamp(int(timestamp)),
        )

    async def get_all_oracle_rates(self) -> List[OracleRate]:
        return [await self.get_oracle_rate(symbol) for symbol in STABLE_SYMBOLS]

    # ── Writes ──

    async def send_native(self, index: int, to: str, amount: float) -> str:
        account = self.derive_account(index)
        async with self._nonce_lock(account.address):
            tx = {
                "to": Web3.to_checksum_address(to),
                "value": to_base_units(amount),
                "gas": NATIVE_TRANSFER_GAS,
                "gasPrice": await self.w3.eth.gas_price,
                "nonce": await self.w3.eth.get_transaction_count(account.address, "pending"),
                "chainId": self._chain_id,
            }
            signed = account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info(f"[TX] Submitted {amount} CELO from {account.address} → {to}")
        return Web3.to_hex(tx_hash)

    async def send_erc20(self, index: int, token_address: str, to: str, amount: float, decimals: int = 18) -> str:
        account = self.derive_account(index)
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        async with self._nonce_lock(account.address):
            tx = await contract.functions.transfer(
                Web3.to_checksum_address(to), to_base_units(amount, decimals)
            ).build_transaction({
                "from": account.address,
                "nonce": await self.w3.eth.get_transaction_count(account.address, "pending"),
                "chainId": self._chain_id,
                "gasPrice": await self.w3.eth.gas_price,
            })
            signed = account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info(f"[TX] Submitted {amount} of {token_address} from {account.address} → {to}")
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> TxReceipt:
        timeout = timeout or settings.tx_confirmation_timeout_seconds
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise TransactionTimeout(tx_hash, timeout) from e
        return TxReceipt(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )

    def _nonce_lock(self, address: str) -> asyncio.Lock:
        if address not in self._nonce_locks:
            self._nonce_locks[address] = asyncio.Lock()
        return self._nonce_locks[address]


# ── Singleton ──
_wallet: Optional[CeloWallet] = None


def get_wallet() -> CeloWallet:
    global _wallet
    if _wallet is None:
        _wallet = CeloWallet()
    return _wallet
