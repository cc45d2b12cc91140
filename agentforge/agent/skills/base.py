"""
Skill types — the contract every command-tag skill implements.

A skill is triggered when the model writes its tag in a reply:

    [[QUERY_RATE|cUSD]]

The executor calls the handler with the pipe-separated params and replaces
the tag with the handler's `display` text.

Example handler:
    async def execute_gas_price(params, ctx, services) -> SkillResult:
        gas = await services.wallet.get_gas_info()
        return SkillResult(success=True, display=f"⛽ {gas.base_fee_gwei:.2f} gwei")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional


@dataclass
class SkillParam:
    name: str
    description: str
    required: bool = True
    example: str = ""


@dataclass
class SkillExample:
    input: str
    output: str


@dataclass
class SkillDefinition:
    """Declarative metadata for a skill."""
    id: str                 # "query_rate"
    name: str               # "Query Exchange Rate"
    description: str
    category: str           # transfer, oracle, mento, data, forex, economy
    command_tag: str        # "QUERY_RATE"
    params: List[SkillParam] = field(default_factory=list)
    examples: List[SkillExample] = field(default_factory=list)
    requires_wallet: bool = False
    mutates_state: bool = False

    @property
    def tag_syntax(self) -> str:
        if not self.params:
            return f"[[{self.command_tag}]]"
        return "[[" + self.command_tag + "|" + "|".join(f"<{p.name}>" for p in self.params) + "]]"


@dataclass
class SkillContext:
    """Per-reply context passed to every handler."""
    agent_id: str
    agent_name: str = ""
    agent_wallet_address: Optional[str] = None  # None when the caller may not use the wallet
    wallet_derivation_index: Optional[int] = None


@dataclass
class SkillResult:
    success: bool
    display: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class SkillServices:
    """External collaborators handlers may call."""
    wallet: Any = None      # CeloWallet
    prices: Any = None      # PriceTracker
    selfclaw: Any = None    # SelfClawClient


SkillHandler = Callable[[List[str], SkillContext, SkillServices], Awaitable[SkillResult]]
