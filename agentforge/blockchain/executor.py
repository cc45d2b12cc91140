"""
Transaction Executor

Finds financial command tags in a (skill-processed) reply, executes them from
the agent's HD wallet, and replaces each tag with a receipt or a rejection.

Tag formats:
    [[SEND_CELO|<to>|<amount>]]
    [[SEND_TOKEN|<currency>|<to>|<amount>]]
    [[SEND_AGENT_TOKEN|<token_address>|<to>|<amount>]]

Tags are handled in a single ordered pass; a failing tag never blanks out the
rest of the reply.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import update

from agentforge.blockchain.constants import TOKENS, TokenInfo, get_token
from agentforge.blockchain.wallet import TransactionTimeout, is_valid_address
from agentforge.config import settings
from agentforge.db import ActivityType, Agent, Transaction, async_session_maker
from agentforge.services.activity_service import record_activity

logger = logging.getLogger(__name__)

FINANCIAL_TAG_RE = re.compile(r"\[\[(SEND_CELO|SEND_TOKEN|SEND_AGENT_TOKEN)(?:\|([^\]]*))?\]\]")

EXPECTED_ARGS = {"SEND_CELO": 2, "SEND_TOKEN": 3, "SEND_AGENT_TOKEN": 3}

UNAUTHORIZED_MESSAGE = (
    "\n⚠️ **Transaction not executed** — Transaction execution requires the agent owner to be "
    "connected. Sign this transfer with your own wallet, or ask the owner to run it."
)


@dataclass
class TransactionIntent:
    action: str             # SEND_CELO | SEND_TOKEN | SEND_AGENT_TOKEN
    to: str
    amount: float
    currency: str           # symbol, or token address for agent tokens
    token: Optional[TokenInfo]
    raw: str


@dataclass
class TransactionResult:
    success: bool
    raw: str
    intent: Optional[TransactionIntent] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "tx_hash": self.tx_hash,
            "amount": self.intent.amount if self.intent else None,
            "currency": self.intent.currency if self.intent else None,
            "to": self.intent.to if self.intent else None,
            "error": self.error,
        }


@dataclass
class TransactionExecution:
    text: str
    executed_count: int
    results: List[TransactionResult]


class IntentRejected(ValueError):
    pass


def _parse_amount(raw: str) -> float:
    try:
        amount = float(raw.strip())
    except ValueError:
        raise IntentRejected(f"Invalid amount: {raw.strip()}")
    if not math.isfinite(amount) or amount <= 0 or amount >= settings.max_transfer_amount:
        raise IntentRejected(f"Invalid amount: {raw.strip()}")
    return amount


def parse_intent(action: str, raw_args: Optional[str], raw: str) -> TransactionIntent:
    """Validate one tag. Raises IntentRejected with a user-facing reason."""
    args = [a.strip() for a in raw_args.split("|")] if raw_args else []
    if len(args) != EXPECTED_ARGS[action]:
        raise IntentRejected(f"Malformed {action} command: expected {EXPECTED_ARGS[action]} parameters")

    if action == "SEND_CELO":
        to, amount_raw = args
        token, currency = TOKENS["CELO"], "CELO"
    elif action == "SEND_TOKEN":
        symbol, to, amount_raw = args
        token = get_token(symbol)
        if token is None:
            raise IntentRejected(f"Unsupported currency: {symbol}. Supported: {', '.join(TOKENS)}")
        currency = token.symbol
    else:
        token_address, to, amount_raw = args
        if not is_valid_address(token_address):
            raise IntentRejected(f"Invalid token address: {token_address}")
        token, currency = TokenInfo(symbol=token_address, address=token_address), token_address

    if not is_valid_address(to):
        raise IntentRejected(f"Invalid recipient address: {to}")

    return TransactionIntent(action=action, to=to, amount=_parse_amount(amount_raw),
                             currency=currency, token=token, raw=raw)


def format_receipt(result: TransactionResult) -> str:
    intent = result.intent
    return "\n".join([
        "\n✅ **Transaction Confirmed**",
        f"• Sent: {intent.amount:g} {intent.currency}",
        f"• To: {intent.to}",
        f"• TX Hash: `{result.tx_hash}`",
        f"• Explorer: {settings.block_explorer_url}/tx/{result.tx_hash}",
    ])


def format_failure(result: TransactionResult) -> str:
    lines = ["\n❌ **Transaction Failed**"]
    if result.intent:
        lines.append(f"• Attempted: {result.intent.amount:g} {result.intent.currency} → {result.intent.to}")
    lines.append(f"• Error: {result.error or 'Unknown error'}")
    if result.tx_hash:
        lines.append(f"• Explorer: {settings.block_explorer_url}/tx/{result.tx_hash}")
    return "\n".join(lines)


class TransactionExecutor:
    """Executes financial tags through a wallet collaborator (CeloWallet or a test double)."""

    def __init__(self, wallet=None, session_maker=None):
        if wallet is None:
            from agentforge.blockchain.wallet import get_wallet
            wallet = get_wallet()
        self.wallet = wallet
        self._session_maker = session_maker or async_session_maker

    async def execute(
        self,
        text: str,
        agent_id: str,
        wallet_index: Optional[int],
        unauthorized_message: str = UNAUTHORIZED_MESSAGE,
    ) -> TransactionExecution:
        matches = list(FINANCIAL_TAG_RE.finditer(text or ""))
        if not matches:
            return TransactionExecution(text=text, executed_count=0, results=[])

        if wallet_index is None:
            logger.info(f"[TX] {len(matches)} financial tag(s) blocked for agent {agent_id}: no wallet authority")
            return TransactionExecution(
                text=FINANCIAL_TAG_RE.sub(lambda m: unauthorized_message, text),
                executed_count=0,
                results=[],
            )

        # Validate everything first so the spending check sees real amounts
        parsed: List[Any] = []
        for m in matches:
            try:
                parsed.append(parse_intent(m.group(1), m.group(2), m.group(0)))
            except IntentRejected as e:
                parsed.append(TransactionResult(success=False, raw=m.group(0), error=str(e)))

        limit_notice = await self._spending_limit_notice(
            agent_id, sum(p.amount for p in parsed if isinstance(p, TransactionIntent))
        )

        parts: List[str] = []
        results: List[TransactionResult] = []
        cursor = 0
        for m, item in zip(matches, parsed):
            parts.append(text[cursor:m.start()])
            cursor = m.end()

            if isinstance(item, TransactionResult):
                logger.info(f"[TX] Rejected tag for agent {agent_id}: {item.error}")
                results.append(item)
                parts.append(format_failure(item))
            elif limit_notice:
                parts.append(limit_notice)
            else:
                result = await self._execute_intent(item, wallet_index, agent_id)
                results.append(result)
                parts.append(format_receipt(result) if result.success else format_failure(result))
        parts.append(text[cursor:])

        executed = sum(1 for r in results if r.success)
        attempted = [r for r in results if r.intent is not None]
        if attempted:
            async with self._session_maker() as db:
                record_activity(
                    db,
                    agent_id,
                    f"Executed {executed}/{len(attempted)} transaction(s)",
                    type=ActivityType.ACTION if executed == len(attempted) else ActivityType.WARNING,
                    metadata={"transactions": [r.to_dict() for r in attempted]},
                )
                await db.commit()

        return TransactionExecution(text="".join(parts), executed_count=executed, results=results)

    async def _spending_limit_notice(self, agent_id: str, total: float) -> Optional[str]:
        if total <= 0:
            return None
        async with self._session_maker() as db:
            agent = await db.get(Agent, agent_id)
        if agent is None or not agent.spending_limit:
            return None
        if (agent.spending_used or 0) + total <= agent.spending_limit:
            return None
        logger.warning(f"[TX] Spending limit reached for agent {agent_id}")
        return (
            f"\n⚠️ **Spending limit reached.** Used: {agent.spending_used or 0:.2f} / "
            f"Limit: {agent.spending_limit:.2f}."
        )

    async def _execute_intent(self, intent: TransactionIntent, wallet_index: int, agent_id: str) -> TransactionResult:
        result = TransactionResult(success=False, raw=intent.raw, intent=intent)
        try:
            if intent.token is None or intent.token.is_native:
                tx_hash = await self.wallet.send_native(wallet_index, intent.to, intent.amount)
            else:
                tx_hash = await self.wallet.send_erc20(
                    wallet_index, intent.token.address, intent.to, intent.amount, intent.token.decimals
                )
            result.tx_hash = tx_hash
            receipt = await self.wallet.wait_for_receipt(tx_hash, settings.tx_confirmation_timeout_seconds)
            result.block_number = receipt.block_number
            if receipt.status == 1:
                result.success = True
            else:
                result.error = "Transaction reverted on-chain"
        except TransactionTimeout as e:
            result.error = f"Confirmation timed out after {e.timeout:.0f}s; check the explorer for the final status"
        except Exception as e:
            logger.error(f"[TX] {intent.action} failed for agent {agent_id}: {e}")
            result.error = str(e)

        await self._record(agent_id, result)
        if result.success:
            logger.info(f"[TX] {intent.amount} {intent.currency} → {intent.to} confirmed: {result.tx_hash}")
        return result

    async def _record(self, agent_id: str, result: TransactionResult) -> None:
        intent = result.intent
        async with self._session_maker() as db:
            db.add(Transaction(
                agent_id=agent_id,
                tx_hash=result.tx_hash,
                type="send",
                status="confirmed" if result.success else "failed",
                to_address=intent.to,
                amount=intent.amount,
                currency=intent.currency,
                block_number=result.block_number,
                description=(
                    f"Sent {intent.amount:g} {intent.currency} to {intent.to}" if result.success
                    else f"Failed: {(result.error or '')[:200]}"
                ),
            ))
            if result.success:
                await db.execute(
                    update(Agent)
                    .where(Agent.id == agent_id)
                    .values(spending_used=Agent.spending_used + intent.amount)
                )
            await db.commit()


# ── Singleton ──
_executor: Optional[TransactionExecutor] = None


def get_transaction_executor() -> TransactionExecutor:
    global _executor
    if _executor is None:
        _executor = TransactionExecutor()
    return _executor
