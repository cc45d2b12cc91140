"""Celo network constants: supported tokens and minimal contract ABIs."""

from dataclasses import dataclass
from typing import Dict, Optional

NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"

NO_WALLET_MESSAGE = (
    "\n⚠️ **Cannot execute transaction** — this agent does not have a wallet initialized. "
    "Please initialize a wallet first."
)


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    address: str
    decimals: int = 18

    @property
    def is_native(self) -> bool:
        return self.address == NATIVE_TOKEN_ADDRESS


TOKENS: Dict[str, TokenInfo] = {
    "CELO": TokenInfo("CELO", NATIVE_TOKEN_ADDRESS),
    "cUSD": TokenInfo("cUSD", "0x874069Fa1Eb16D44d622F2e0Ca25eeA172369bC1"),
    "cEUR": TokenInfo("cEUR", "0x10c892A6EC43a53E45D0B916B4b7D383B1b78C0F"),
    "cREAL": TokenInfo("cREAL", "0xE4D517785D091D3c54818832dB6094bcc2744545"),
}

STABLE_SYMBOLS = ("cUSD", "cEUR", "cREAL")

# Rough USD value of one unit, used only for portfolio estimates
APPROX_USD_VALUE = {"cUSD": 1.0, "cEUR": 1.08, "cREAL": 0.20}


def get_token(symbol: str) -> Optional[TokenInfo]:
    """Case-insensitive lookup: "cusd" → cUSD."""
    if not symbol:
        return None
    wanted = symbol.strip().lower()
    for key, token in TOKENS.items():
        if key.lower() == wanted:
            return token
    return None


ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

SORTED_ORACLES_ABI = [
    {
        "inputs": [{"name": "token", "type": "address"}],
        "name": "medianRate",
        "outputs": [
            {"name": "", "type": "uint256"},
            {"name": "", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "token", "type": "address"}],
        "name": "numRates",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "token", "type": "address"}],
        "name": "medianTimestamp",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]
