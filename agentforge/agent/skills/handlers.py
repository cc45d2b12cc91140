"""
Skill handlers.

Each handler takes (params, ctx, services) and returns a SkillResult whose
`display` replaces the command tag in the reply. Expected failures (bad input,
missing wallet, RPC errors) come back as `success=False` with a readable
display; anything unexpected propagates to the registry, which renders it
inline as a skill failure.
"""

import logging
from datetime import datetime
from typing import List

from agentforge.agent.skills.base import SkillContext, SkillResult, SkillServices
from agentforge.blockchain.constants import APPROX_USD_VALUE, STABLE_SYMBOLS, get_token
from agentforge.blockchain.price_tracker import format_period
from agentforge.blockchain.wallet import WalletError, is_valid_address
from agentforge.services.selfclaw_client import SelfClawError

logger = logging.getLogger(__name__)


def _short(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


# ── Oracle ──

async def execute_query_rate(params: List[str], ctx: SkillContext, services: SkillServices) -> SkillResult:
    currency = params[0] if params and params[0] else "cUSD"
    try:
        rate = await services.wallet.get_oracle_rate(currency)
    except WalletError as e:
        return SkillResult(success=False, error=str(e), display=f"❌ Failed to query {currency} rate: {e}")

    symbol = rate.pair.split("/")[1]
    lines = [
        f"📊 **{rate.pair} Exchange Rate**",
        f"• 1 CELO = {rate.rate:.4f} {symbol}",
        f"• 1 {symbol} = {rate.inverse:.4f} CELO",
        f"• Reporters: {rate.num_reporters}",
        f"• Last update: {rate.last_update.isoformat()}",
        "• Source: Celo SortedOracles (on-chain)",
    ]
    if rate.is_expired:
        lines.append("⚠️ Warning: Oracle data may be stale")
    return SkillResult(success=True, display="\n".join(lines), data={"pair": rate.pair, "rate": rate.rate})


async def execute_query_all_rates(params: List[str], ctx: SkillContext, services: SkillServices) -> SkillResult:
    try:
        rates = await services.wallet.get_all_oracle_rates()
    except WalletError as e:
        return SkillResult(success=False, error=str(e), display=f"❌ Failed to query rates: {e}")

    lines = ["📊 **Celo Exchange Rates (SortedOracles)**"]
    for r in rates:
        lines.append(f"• {r.pair}: 1 CELO = {r.rate:.4f} {r.pair.split('/')[1]}")
    lines += ["", f"_Updated: {datetime.utcnow().isoformat()}_"]
    return SkillResult(success=True, display="\n".join(lines), data={"rates": {r.pair: r.rate for r in rates}})


async def execute_mento_quote(params: List[str], ctx: SkillContext, services: SkillServices) -> SkillResult:
    if len(params) < 3 or not all(params[:3]):
        return SkillResult(success=False, error="Missing parameters",
                           display="❌ Usage: [[MENTO_QUOTE|sell_currency|buy_currency|amount]]")

    sell_token, buy_token = get_token(params[0]), get_token(params[1])
    try:
        amount = float(params[2])
    except ValueError:
        amount = 0.0
    if sell_token is None or buy_token is None or sell_token == buy_token or amount <= 0:
        return SkillResult(success=False, error="Invalid quote request",
                           display=f"❌ Cannot quote {params[2]} {params[0]} → {params[1]}")

    try:
        # Convert through CELO: value of one unit of each side in CELO
        sell_in_celo = 1.0 if sell_token.is_native else (await services.wallet.get_oracle_rate(sell_token.symbol)).inverse
        buy_in_celo = 1.0 if buy_token.is_native else (await services.wallet.get_oracle_rate(buy_token.symbol)).inverse
    except WalletError as e:
        return SkillResult(success=False, error=str(e), display=f"❌ Failed to get quote: {e}")

    rate = sell_in_celo / buy_in_celo
    display = "\n".join([
        "💱 **Mento Swap Quote**",
        f"• Sell: {amount} {sell_token.symbol}",
        f"• Buy: ~{amount * rate:.4f} {buy_token.symbol}",
        f"• Rate: 1 {sell_token.symbol} = {rate:.4f} {buy_token.symbol}",
        "• Source: oracle mid-rate (before slippage and fees)",
    ])
    return SkillResult(success=True, display=display, data={"rate": rate, "buy_amount": amount * rate})


# ── Data ──

async def execute_check_balance(params: List[str], ctx: SkillContext, services: SkillServices) -> SkillResult:
    address = params[0] if params and params[0] else ctx.agent_wallet_address
    if not address or not is_valid_address(address):
        return SkillResult(success=False, error="Invalid address", display="❌ Please provide a valid 0x address.")

    try:
        balance = await services.wallet.get_balances(address)
    except WalletError as e:
        return SkillResult(success=False, error=str(e), display=f"❌ Failed to check balance: {e}")

    lines = [f"💰 **Balance for {_short(address)}**", f"• CELO: {balance.celo:.4f}"]
    for symbol in STABLE_SYMBOLS:
        lines.append(f"• {symbol}: {balance.tokens.get(symbol, 0.0):.4f}")
    return SkillResult(success=True, display="\n".join(lines), data=balance.to_dict())


async def execute_gas_price(params: List[str], ctx: SkillContext, services: SkillServices) -> SkillResult:
    try:
        gas = await services.wallet.get_gas_info()
    except WalletError as e:
        return SkillResult(success=False, error=str(e), display=f"❌ Failed to get gas price: {e}")

    display = "\n".join([
        "⛽ **Celo Gas Price**",
        f"• Base fee: {gas.base_fee_gwei:.2f} gwei",
        f"• Suggested tip: {gas.suggested_tip_gwei:.2f} gwei",
        f"• Simple transfer cost: ~{gas.estimated_cost_celo:.6f} CELO",
    ])
    return SkillResult(success=True, display=display, data={"base_fee_gwei": gas.base_fee_gwei})


# ── Forex ──

async def execute_portfolio_status(params: List[str], ctx: SkillContext, services: SkillServices) -> SkillResult:
    if not ctx.agent_wallet_address:
        return SkillResult(success=False, error="No wallet", display="⚠️ Agent wallet not initialized.")

    try:
        balance = await services.wallet.get_balances(ctx.agent_wallet_address)
        celo_rate = await services.wallet.get_oracle_rate("cUSD")
    except WalletError as e:
        return SkillResult(success=False, error=str(e), display=f"❌ Portfolio check failed: {e}")

    celo_usd = balance.celo * celo_rate.rate
    lines = [
        "💼 **Agent Portfolio**",
        f"• Wallet: {_short(ctx.agent_wallet_address)}",
        "",
        "**Holdings:**",
        f"• CELO: {balance.celo:.4f} (~${celo_usd:.2f})",
    ]
    total = celo_usd
    for symbol in STABLE_SYMBOLS:
        units = balance.tokens.get(symbol, 0.0)
        usd = units * APPROX_USD_VALUE[symbol]
        total += usd
        lines.append(f"• {symbol}: {units:.4f} (~${usd:.2f})")
    lines += ["", f"**Total Value: ~${total:.2f}**", "", f"_CELO/cUSD rate: {celo_rate.rate:.4f}_"]
    return SkillResult(success=True, display="\n".join(lines), data={**balance.to_dict(), "total_usd": total})


async def execute_price_track(params: List[str], ctx: SkillContext, services: SkillServices) -> SkillResult:
    target = (params[0] if params and params[0] else "all").strip()
    try:
        if target.lower() == "all":
            snapshots = await services.prices.record_all(services.wallet)
        else:
            snapshots = [await services.prices.record(services.wallet, target.split("/")[-1])]
    except WalletError as e:
        return SkillResult(success=False, error=str(e), display=f"❌ Failed to record prices: {e}")

    lines = [f"📊 **Price Snapshot Recorded** ({len(snapshots)} pairs)", ""]
    lines += [f"• {s.pair}: {s.rate:.6f} at {s.timestamp.isoformat()}" for s in snapshots]

    changes = []
    for s in snapshots:
        history = services.prices.history(s.pair, 5)
        if len(history) > 1 and history[0].rate:
            pct = (history[-1].rate - history[0].rate) / history[0].rate * 100
            changes.append(f"• {s.pair}: {pct:+.3f}% over {len(history)} snapshots")
    if changes:
        lines += ["", "**Recent Changes:**"] + changes
    return SkillResult(success=True, display="\n".join(lines), data={"snapshots": len(snapshots)})


async def execute_price_trend(params: List[str], ctx: SkillContext, services: SkillServices) -> SkillResult:
    pair = params[0] if params and params[0] else "all"
    try:
        period = int(params[1]) if len(params) > 1 and params[1] else 60
    except ValueError:
        period = 60

    if pair.lower() == "all":
        trends = services.prices.all_trends(period)
    else:
        if "/" not in pair:
            pair = f"CELO/{pair}"
        trend = services.prices.trend(pair, period)
        trends = [trend] if trend else []

    if not trends:
        return SkillResult(success=True, display="📈 **No trend data yet.** Run [[PRICE_TRACK|all]] a few times to build history.")

    lines = [f"📈 **Price Trends ({format_period(period)})**", ""]
    for t in trends:
        lines.append(
            f"{t.icon} **{t.pair}**: {t.change_percent:+.3f}% "
            f"({t.previous_rate:.6f} → {t.current_rate:.6f}) [{t.snapshots} pts]"
        )
    return SkillResult(success=True, display="\n".join(lines),
                       data={t.pair: t.change_percent for t in trends})


# ── Economy ──

async def execute_agent_tokens(params: List[str], ctx: SkillContext, services: SkillServices) -> SkillResult:
    identifier = ctx.agent_wallet_address or ctx.agent_id
    try:
        economics = await services.selfclaw.get_agent_economics(identifier)
        pools = await services.selfclaw.get_pools()
    except SelfClawError as e:
        return SkillResult(success=False, error=str(e), display=f"❌ SelfClaw lookup failed: {e}")

    lines = [
        f"🪙 **{ctx.agent_name or 'Agent'} Token Economy**",
        f"• Revenue: {economics.get('totalRevenue', '0')}",
        f"• Costs: {economics.get('totalCosts', '0')}",
        f"• P/L: {economics.get('profitLoss', '0')}",
    ]
    runway = economics.get("runway")
    if isinstance(runway, dict):
        lines.append(f"• Runway: {runway.get('months', '?')} months ({runway.get('status', 'unknown')})")

    own_pools = [p for p in pools if (p.get("agentName") or "").lower() == ctx.agent_name.lower()] if ctx.agent_name else []
    if own_pools:
        lines += ["", "**Pools:**"]
        for p in own_pools:
            lines.append(f"• {p.get('tokenAddress', '?')}: price {p.get('price', '?')}, 24h vol {p.get('volume24h', '?')}")
    return SkillResult(success=True, display="\n".join(lines), data={"economics": economics, "pools": own_pools})


HANDLERS = {
    "QUERY_RATE": execute_query_rate,
    "QUERY_ALL_RATES": execute_query_all_rates,
    "MENTO_QUOTE": execute_mento_quote,
    "CHECK_BALANCE": execute_check_balance,
    "GAS_PRICE": execute_gas_price,
    "PORTFOLIO_STATUS": execute_portfolio_status,
    "PRICE_TRACK": execute_price_track,
    "PRICE_TREND": execute_price_trend,
    "AGENT_TOKENS": execute_agent_tokens,
}
