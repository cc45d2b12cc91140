"""
Skill Registry — Parse command tags out of model output and execute them.

Tags look like `[[TAG]]` or `[[TAG|p1|p2]]`. Execution is a single ordered
pass over the original text: each recognised tag is replaced by its handler's
display text, and replacement text is never scanned again, so a handler whose
output contains tag-like text cannot trigger another skill.

Financial tags are skipped here and left intact for the transaction executor.

Usage:
    from agentforge.agent.skills import get_skill_registry

    registry = get_skill_registry()
    result = await registry.execute(reply_text, SkillContext(agent_id=...))
    result.text, result.executed_count
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from agentforge.agent.skills.base import (
    SkillContext, SkillDefinition, SkillHandler, SkillServices,
)
from agentforge.agent.skills.definitions import (
    SKILL_DEFINITIONS, TRANSFER_SKILL_IDS, get_skills_for_template,
)

logger = logging.getLogger(__name__)

TAG_RE = re.compile(r"\[\[([A-Z_]+?)(?:\|([^\]]*))?\]\]")

FINANCIAL_TAGS = frozenset({"SEND_CELO", "SEND_TOKEN", "SEND_AGENT_TOKEN"})


@dataclass(frozen=True)
class ParsedCommand:
    tag: str
    params: List[str]
    raw: str
    start: int
    end: int


@dataclass
class SkillExecution:
    text: str
    executed_count: int


def parse_commands(text: str) -> List[ParsedCommand]:
    """All well-formed tags in order of appearance, financial ones excluded."""
    commands = []
    for match in TAG_RE.finditer(text or ""):
        tag = match.group(1)
        if tag in FINANCIAL_TAGS:
            continue
        raw_params = match.group(2) or ""
        params = [p.strip() for p in raw_params.split("|")] if raw_params else []
        commands.append(ParsedCommand(tag, params, match.group(0), match.start(), match.end()))
    return commands


class SkillRegistry:
    """Maps command tags to definitions and handlers."""

    def __init__(self, services: Optional[SkillServices] = None):
        self.services = services or SkillServices()
        self._definitions: Dict[str, SkillDefinition] = {}
        self._handlers: Dict[str, SkillHandler] = {}

    def register(self, definition: SkillDefinition, handler: SkillHandler) -> None:
        if definition.command_tag in FINANCIAL_TAGS:
            raise ValueError(f"{definition.command_tag} is reserved for the transaction executor")
        self._definitions[definition.command_tag] = definition
        self._handlers[definition.command_tag] = handler

    def get(self, tag: str) -> Optional[SkillDefinition]:
        return self._definitions.get(tag)

    @property
    def tags(self) -> List[str]:
        return list(self._handlers.keys())

    async def execute(self, text: str, ctx: SkillContext) -> SkillExecution:
        """Replace every registered tag with its result. Unknown tags are left as-is."""
        if not text or "[[" not in text:
            return SkillExecution(text=text, executed_count=0)

        parts: List[str] = []
        cursor = 0
        executed = 0
        for cmd in parse_commands(text):
            handler = self._handlers.get(cmd.tag)
            if handler is None:
                continue

            parts.append(text[cursor:cmd.start])
            cursor = cmd.end
            try:
                result = await handler(cmd.params, ctx, self.services)
            except Exception as e:
                logger.warning(f"[SKILLS] {cmd.tag} raised for agent {ctx.agent_id}: {e}")
                parts.append(f"\n❌ Skill `{cmd.tag}` failed: {e}\n")
                continue

            parts.append(f"\n{result.display}\n")
            if result.success:
                executed += 1
            else:
                logger.info(f"[SKILLS] {cmd.tag} returned failure: {result.error}")

        parts.append(text[cursor:])
        if executed:
            logger.info(f"[SKILLS] Executed {executed} skill(s) for agent {ctx.agent_id}")
        return SkillExecution(text="".join(parts), executed_count=executed)

    def generate_skill_prompt(self, template: str, wallet_address: Optional[str]) -> str:
        """
        Prompt section listing the template's non-transfer skills that have handlers.

        Transfer skills have their own section, gated on wallet permission.
        """
        skills = [
            s for s in get_skills_for_template(template)
            if s.id not in TRANSFER_SKILL_IDS and s.command_tag in self._handlers
        ]
        if not skills:
            return ""

        lines = ["", "[AVAILABLE SKILLS — Use these command tags to query data and execute actions]", ""]
        for skill in skills:
            lines.append(f"**{skill.name}**: {skill.description}")
            lines.append(f"  Tag: {skill.tag_syntax}")
            for ex in skill.examples:
                lines.append(f'  Example — user says "{ex.input}":')
                lines.append(f"    Your response includes: {ex.output}")
            if skill.requires_wallet and not wallet_address:
                lines.append("  ⚠️ Requires wallet (not initialized)")
            lines.append("")

        lines += [
            "RULES:",
            "- Include the command tag in your response exactly as shown.",
            "- The system will execute the skill and replace the tag with real data.",
            "- DO NOT fabricate data — always use the command tags to get real information.",
            "- You can use multiple skill tags in one response.",
        ]
        return "\n".join(lines)


def build_default_registry(services: Optional[SkillServices] = None) -> SkillRegistry:
    """Registry with every built-in handler wired to its definition."""
    from agentforge.agent.skills.handlers import HANDLERS

    registry = SkillRegistry(services)
    for definition in SKILL_DEFINITIONS:
        handler = HANDLERS.get(definition.command_tag)
        if handler is not None:
            registry.register(definition, handler)
    return registry


# ── Singleton ──
_registry: Optional[SkillRegistry] = None


def get_skill_registry() -> SkillRegistry:
    global _registry
    if _registry is None:
        from agentforge.blockchain.price_tracker import get_price_tracker
        from agentforge.blockchain.wallet import get_wallet
        from agentforge.services.selfclaw_client import get_selfclaw_client

        _registry = build_default_registry(SkillServices(
            wallet=get_wallet(),
            prices=get_price_tracker(),
            selfclaw=get_selfclaw_client(),
        ))
    return _registry
