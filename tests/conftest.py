"""
Shared fixtures: in-memory database, owners, agents and chain/LLM doubles.
"""

import os

# Must be set before agentforge.config is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["ALLOW_ENV_API_KEYS"] = "false"
os.environ["GATEWAY_WEBHOOK_TOKEN"] = ""
os.environ["CRON_SECRET"] = ""

from typing import List, Optional

import pytest
import pytest_asyncio

from agentforge.blockchain.wallet import GasInfo, OracleRate, TxReceipt, WalletBalance
from agentforge.db import Agent, AgentStatus, User, async_session_maker, drop_db, init_db
from agentforge.services.llm_service import ChatResponse

WALLET_ADDRESS = "0x" + "ab" * 20
RECIPIENT = "0x" + "cd" * 20
TX_HASH = "0x" + "ef" * 32


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create a fresh database for each test"""
    await init_db()
    yield
    await drop_db()


@pytest_asyncio.fixture
async def owner() -> User:
    async with async_session_maker() as db:
        user = User(email="owner@example.com", name="Owner", groq_api_key="gsk-test")
        db.add(user)
        await db.commit()
        await db.refresh(user)
    return user


@pytest.fixture
def make_agent(owner):
    """Factory: active forex agent with a wallet, owned by `owner`."""

    async def _make(**overrides) -> Agent:
        fields = dict(
            owner_id=owner.id,
            name="Forex Bot",
            template_type="forex",
            status=AgentStatus.ACTIVE.value,
            llm_provider="groq",
            llm_model="llama-3.3-70b-versatile",
            agent_wallet_address=WALLET_ADDRESS,
            wallet_derivation_index=1,
        )
        fields.update(overrides)
        async with async_session_maker() as db:
            agent = Agent(**fields)
            db.add(agent)
            await db.commit()
            await db.refresh(agent)
        return agent

    return _make


class FakeWallet:
    """Chain double: records sends, returns canned reads."""

    def __init__(self, receipt_status: int = 1, send_error: Optional[Exception] = None,
                 receipt_error: Optional[Exception] = None):
        self.receipt_status = receipt_status
        self.send_error = send_error
        self.receipt_error = receipt_error
        self.sent: List[dict] = []
        self.rates = {"cUSD": 0.5, "cEUR": 0.45, "cREAL": 2.5}

    async def send_native(self, index: int, to: str, amount: float) -> str:
        if self.send_error:
            raise self.send_error
        self.sent.append({"index": index, "to": to, "amount": amount, "token": None})
        return TX_HASH

    async def send_erc20(self, index: int, token_address: str, to: str, amount: float, decimals: int = 18) -> str:
        if self.send_error:
            raise self.send_error
        self.sent.append({"index": index, "to": to, "amount": amount, "token": token_address})
        return TX_HASH

    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> TxReceipt:
        if self.receipt_error:
            raise self.receipt_error
        return TxReceipt(tx_hash=tx_hash, status=self.receipt_status, block_number=1234, gas_used=21000)

    async def get_oracle_rate(self, symbol: str) -> OracleRate:
        from datetime import datetime

        from agentforge.blockchain.constants import get_token
        from agentforge.blockchain.wallet import WalletError

        token = get_token(symbol)
        if token is None or token.is_native:
            raise WalletError(f"No oracle rate for {symbol}")
        rate = self.rates[token.symbol]
        return OracleRate(pair=f"CELO/{token.symbol}", rate=rate, inverse=1 / rate,
                          num_reporters=5, last_update=datetime.utcnow())

    async def get_all_oracle_rates(self) -> List[OracleRate]:
        return [await self.get_oracle_rate(s) for s in ("cUSD", "cEUR", "cREAL")]

    async def get_balances(self, address: str) -> WalletBalance:
        return WalletBalance(address=address, celo=10.0, tokens={"cUSD": 5.0, "cEUR": 0.0, "cREAL": 0.0})

    async def get_gas_info(self) -> GasInfo:
        return GasInfo(base_fee_gwei=25.0, suggested_tip_gwei=1.0, estimated_cost_celo=0.000546)


@pytest.fixture
def fake_wallet() -> FakeWallet:
    return FakeWallet()


class ScriptedLLM:
    """chat_fn double: pops one scripted outcome per call (exception or reply text)."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: List[dict] = []

    async def __call__(self, provider: str, api_key: str, model: str, messages) -> ChatResponse:
        self.calls.append({"provider": provider, "model": model, "messages": messages})
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, Exception):
            raise outcome
        return ChatResponse(content=outcome, model=model, provider=provider, usage={"total_tokens": 10})
