"""AgentForge command-tag skills."""

from agentforge.agent.skills.base import SkillContext, SkillDefinition, SkillResult, SkillServices
from agentforge.agent.skills.definitions import get_skills_for_template
from agentforge.agent.skills.registry import (
    SkillRegistry, build_default_registry, get_skill_registry, parse_commands,
)

__all__ = [
    "SkillContext",
    "SkillDefinition",
    "SkillResult",
    "SkillServices",
    "SkillRegistry",
    "build_default_registry",
    "get_skill_registry",
    "get_skills_for_template",
    "parse_commands",
]
