"""
Skill definitions and the template → skill assignment.

Transfer skills (SEND_CELO, SEND_TOKEN) are listed so templates can declare
them, but they have no handler here; the transaction executor owns them.
"""

from typing import Dict, List

from agentforge.agent.skills.base import SkillDefinition, SkillExample, SkillParam

SKILL_DEFINITIONS: List[SkillDefinition] = [
    # ── Transfer ──
    SkillDefinition(
        id="send_celo",
        name="Send CELO",
        description="Send native CELO to an address",
        category="transfer",
        command_tag="SEND_CELO",
        params=[
            SkillParam("to", "Recipient 0x address", example="0xABC...123"),
            SkillParam("amount", "Amount in CELO", example="1.5"),
        ],
        examples=[SkillExample("send 2 CELO to 0xABC...123", "[[SEND_CELO|0xABC...123|2]]")],
        requires_wallet=True,
        mutates_state=True,
    ),
    SkillDefinition(
        id="send_token",
        name="Send Token",
        description="Send ERC-20 tokens (cUSD, cEUR, cREAL)",
        category="transfer",
        command_tag="SEND_TOKEN",
        params=[
            SkillParam("currency", "Token symbol (cUSD, cEUR, cREAL)", example="cUSD"),
            SkillParam("to", "Recipient 0x address", example="0xDEF...456"),
            SkillParam("amount", "Amount", example="10"),
        ],
        examples=[SkillExample("send 5 cUSD to 0xDEF...456", "[[SEND_TOKEN|cUSD|0xDEF...456|5]]")],
        requires_wallet=True,
        mutates_state=True,
    ),

    # ── Oracle ──
    SkillDefinition(
        id="query_rate",
        name="Query Exchange Rate",
        description="Get the current CELO exchange rate for a stablecoin from SortedOracles",
        category="oracle",
        command_tag="QUERY_RATE",
        params=[SkillParam("currency", "Stable token symbol (cUSD, cEUR, cREAL)", example="cUSD")],
        examples=[
            SkillExample("what's the CELO/cUSD rate?", "[[QUERY_RATE|cUSD]]"),
            SkillExample("check cEUR price", "[[QUERY_RATE|cEUR]]"),
        ],
    ),
    SkillDefinition(
        id="query_all_rates",
        name="Query All Rates",
        description="Get all available CELO exchange rates from SortedOracles",
        category="oracle",
        command_tag="QUERY_ALL_RATES",
        examples=[SkillExample("show me all exchange rates", "[[QUERY_ALL_RATES]]")],
    ),

    # ── Mento ──
    SkillDefinition(
        id="mento_quote",
        name="Mento Swap Quote",
        description="Estimate a swap between CELO and stablecoins at oracle rates",
        category="mento",
        command_tag="MENTO_QUOTE",
        params=[
            SkillParam("sell_currency", "Currency to sell (CELO, cUSD, cEUR, cREAL)", example="CELO"),
            SkillParam("buy_currency", "Currency to buy", example="cUSD"),
            SkillParam("amount", "Amount to sell", example="10"),
        ],
        examples=[
            SkillExample("how much cUSD for 10 CELO?", "[[MENTO_QUOTE|CELO|cUSD|10]]"),
            SkillExample("quote 50 cUSD to CELO", "[[MENTO_QUOTE|cUSD|CELO|50]]"),
        ],
    ),

    # ── Data ──
    SkillDefinition(
        id="check_balance",
        name="Check Balance",
        description="Check CELO and stablecoin balances for any address",
        category="data",
        command_tag="CHECK_BALANCE",
        params=[SkillParam("address", "0x address to check", example="0xABC...123")],
        examples=[
            SkillExample("check balance of 0xABC...123", "[[CHECK_BALANCE|0xABC...123]]"),
            SkillExample("what's my balance?", "[[CHECK_BALANCE|<agent_wallet_address>]]"),
        ],
    ),
    SkillDefinition(
        id="gas_price",
        name="Gas Price",
        description="Get current gas price on Celo network",
        category="data",
        command_tag="GAS_PRICE",
        examples=[SkillExample("what's the current gas price?", "[[GAS_PRICE]]")],
    ),

    # ── Forex ──
    SkillDefinition(
        id="portfolio_status",
        name="Portfolio Status",
        description="Show agent portfolio with balances valued in USD",
        category="forex",
        command_tag="PORTFOLIO_STATUS",
        examples=[
            SkillExample("show my portfolio", "[[PORTFOLIO_STATUS]]"),
            SkillExample("what are my holdings worth?", "[[PORTFOLIO_STATUS]]"),
        ],
        requires_wallet=True,
    ),
    SkillDefinition(
        id="price_track",
        name="Record & Show Prices",
        description="Record current Mento asset prices and show recent price history",
        category="forex",
        command_tag="PRICE_TRACK",
        params=[SkillParam("pair", "Pair to track (e.g. cUSD) or 'all'", required=False, example="all")],
        examples=[
            SkillExample("track all prices", "[[PRICE_TRACK|all]]"),
            SkillExample("record cUSD price", "[[PRICE_TRACK|cUSD]]"),
        ],
    ),
    SkillDefinition(
        id="price_trend",
        name="Price Trend Analysis",
        description="Analyze price trends for Mento assets: direction, change %, momentum",
        category="forex",
        command_tag="PRICE_TREND",
        params=[
            SkillParam("pair", "Pair to analyze (e.g. CELO/cUSD) or 'all'", required=False, example="CELO/cUSD"),
            SkillParam("period", "Period in minutes (default 60)", required=False, example="60"),
        ],
        examples=[
            SkillExample("what's the cUSD trend?", "[[PRICE_TREND|CELO/cUSD|60]]"),
            SkillExample("show all trends for the last hour", "[[PRICE_TREND|all|60]]"),
        ],
    ),

    # ── Economy ──
    SkillDefinition(
        id="agent_tokens",
        name="Agent Token Economy",
        description="Show this agent's SelfClaw economics (revenue, costs, runway) and its liquidity pools",
        category="economy",
        command_tag="AGENT_TOKENS",
        examples=[SkillExample("how is your token doing?", "[[AGENT_TOKENS]]")],
    ),
]

TRANSFER_SKILL_IDS = {"send_celo", "send_token"}

_FULL_TRADING = [
    "send_celo", "send_token", "check_balance", "query_rate", "query_all_rates", "mento_quote",
    "gas_price", "portfolio_status", "price_track", "price_trend", "agent_tokens",
]

TEMPLATE_SKILLS: Dict[str, List[str]] = {
    "payment": ["send_celo", "send_token", "check_balance", "query_rate", "gas_price"],
    "trading": _FULL_TRADING,
    "forex": _FULL_TRADING,
    "social": ["send_celo", "send_token", "check_balance"],
    "custom": [
        "send_celo", "send_token", "check_balance", "query_rate", "query_all_rates",
        "mento_quote", "gas_price", "agent_tokens",
    ],
}


def get_skills_for_template(template: str) -> List[SkillDefinition]:
    """Unknown templates get the custom set."""
    skill_ids = TEMPLATE_SKILLS.get(template) or TEMPLATE_SKILLS["custom"]
    return [s for s in SKILL_DEFINITIONS if s.id in skill_ids]
