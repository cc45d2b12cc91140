"""
Prompt Composer - Builds the message list for one agent turn.

The system prompt is constructed in layers:
1. Agent persona (its own system prompt, or a default)
2. Wallet section: one of
   - transaction instructions (wallet exists and caller may use it)
   - external-user notice (wallet exists, caller may not use it)
   - no-wallet notice
3. Skill section for the agent's template
4. Economy note when the template has economy skills

Only the first wallet variant ever contains transaction-tag syntax.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from agentforge.agent.skills.definitions import get_skills_for_template
from agentforge.agent.skills.registry import SkillRegistry
from agentforge.config import settings

logger = logging.getLogger(__name__)

DEFAULT_PERSONA = "You are a helpful AI agent on the Celo blockchain."

TRANSACTION_INSTRUCTIONS = """

[TRANSACTION EXECUTION — CRITICAL INSTRUCTIONS]
Your wallet address: {wallet} (Celo Sepolia testnet, funded with real test tokens).

You MUST use the following command tags to execute REAL on-chain transactions.
DO NOT fabricate transaction hashes, block numbers, or receipts.
DO NOT pretend a transaction was executed — only the command tags below trigger real execution.

To send native CELO:
  [[SEND_CELO|<recipient_0x_address>|<amount>]]

To send ERC-20 tokens (cUSD, cEUR, cREAL):
  [[SEND_TOKEN|<currency>|<recipient_0x_address>|<amount>]]

To send an agent token (custom ERC20 by address):
  [[SEND_AGENT_TOKEN|<token_0x_address>|<recipient_0x_address>|<amount>]]

FEE ABSTRACTION:
- Gas fees are paid automatically in the best available currency.
- If the wallet holds CELO, gas is paid in CELO (default).
- If the wallet holds NO CELO but has cUSD/cEUR/cREAL, gas is paid from that stablecoin.
- Transactions can therefore run with 0 CELO as long as stablecoins are available; the user does nothing special.

RULES:
- The command tag MUST appear in your response text exactly as shown (with double square brackets).
- The recipient MUST be a valid 0x address (42 hex characters). If the user gives an ENS or non-0x name, ask for the real address.
- After you include the tag, the system will execute the transaction and replace the tag with a real receipt (tx hash, block number, explorer link).
- Always ask the user to confirm before including the command tag for amounts over 10.
- Never reveal private keys.

Example — user says "send 2 CELO to 0xABC...123":
  Your response: "Sending 2 CELO now. [[SEND_CELO|0xABC...123|2]]"

Example — user says "send 5 cUSD to 0xDEF...456":
  Your response: "Sending 5 cUSD now. [[SEND_TOKEN|cUSD|0xDEF...456|5]]"
"""

EXTERNAL_USER_NOTICE = """

[TRANSACTION CONTEXT — EXTERNAL USER]
The connected user is NOT the agent owner. You CANNOT execute transactions from the agent's wallet.
- Do not emit transfer command tags (SEND_CELO, SEND_TOKEN, SEND_AGENT_TOKEN); they will not execute.
- Instead: prepare transaction details (recipient, amount, currency) and tell the user they can sign with their own wallet, or the agent owner must connect to execute.
- You can still provide quotes, check public data, and advise."""

NO_WALLET_NOTICE = (
    "\n\n[WALLET CONTEXT] This agent does not have a wallet initialized yet. "
    "You CANNOT execute any transactions. Tell the user to click \"Initialize Wallet\" "
    "on the agent dashboard first."
)

ECONOMY_NOTE = """

[SELFCLAW — Agent Economy]
This agent has a token economy tracked by SelfClaw (API: {base_url}).
To report it, include this command tag in your response:
  [[AGENT_TOKENS]]  (no arguments) shows revenue, costs, profit/loss, runway and the agent's liquidity pools.
The system replaces the tag with live data. Never invent economy figures.
When users ask what you can do, mention the token economy."""


@dataclass
class AgentProfile:
    """The slice of an agent the prompt depends on."""
    id: str
    name: str
    template_type: str = "custom"
    system_prompt: Optional[str] = None
    agent_wallet_address: Optional[str] = None

    @classmethod
    def from_model(cls, agent) -> "AgentProfile":
        return cls(
            id=agent.id,
            name=agent.name,
            template_type=agent.template_type or "custom",
            system_prompt=agent.system_prompt,
            agent_wallet_address=agent.agent_wallet_address,
        )


def build_system_prompt(profile: AgentProfile, can_use_wallet: bool, skills: SkillRegistry) -> str:
    prompt = profile.system_prompt or DEFAULT_PERSONA

    if profile.agent_wallet_address and can_use_wallet:
        prompt += TRANSACTION_INSTRUCTIONS.format(wallet=profile.agent_wallet_address)
    elif profile.agent_wallet_address:
        prompt += EXTERNAL_USER_NOTICE
    else:
        prompt += NO_WALLET_NOTICE

    # Callers who may not use the wallet don't get its address exposed to skills either
    effective_wallet = profile.agent_wallet_address if can_use_wallet else None
    skill_section = skills.generate_skill_prompt(profile.template_type, effective_wallet)
    if skill_section:
        prompt += "\n" + skill_section

    if any(s.category == "economy" for s in get_skills_for_template(profile.template_type)):
        prompt += ECONOMY_NOTE.format(base_url=settings.selfclaw_api_url)

    return prompt


def compose_messages(
    profile: AgentProfile,
    history: List[Dict[str, str]],
    user_message: str,
    *,
    can_use_wallet: bool,
    skills: SkillRegistry,
) -> List[Dict[str, str]]:
    """[system, *history (chronological), user]."""
    messages = [{"role": "system", "content": build_system_prompt(profile, can_use_wallet, skills)}]
    for turn in history:
        if turn.get("role") in ("user", "assistant") and turn.get("content"):
            messages.append({"role": turn["role"], "content": turn["content"]})
    messages.append({"role": "user", "content": user_message})
    return messages
