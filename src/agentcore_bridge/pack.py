"""
Prompt pack loading and agent identity.

The runtime serves exactly one agent out of a prompt pack. This module
reads the pack, decides which agent that is, and builds the A2A agent
card the loopback server advertises.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from .a2a.models import AgentCapabilities, AgentCard, AgentSkill
from .errors import PackError
from .settings import Settings

logger = logging.getLogger(__name__)


class PackPrompt(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str = ""
    description: str = ""
    version: str = ""
    system_template: str = ""


class PackAgentMember(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = ""
    tags: List[str] = []
    input_modes: List[str] = []
    output_modes: List[str] = []


class PackAgents(BaseModel):
    model_config = ConfigDict(extra="ignore")

    entry: str = ""
    members: Dict[str, PackAgentMember] = {}


class PromptPack(BaseModel):
    """The parts of a compiled prompt pack the runtime cares about."""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str = ""
    version: str = ""
    template_engine: Optional[Any] = None
    prompts: Dict[str, PackPrompt] = {}
    agents: Optional[PackAgents] = None


def load_pack(settings: Settings) -> PromptPack:
    """
    Load the prompt pack named by the settings.

    PROMPTPACK_FILE wins over PROMPTPACK_PACK_JSON when both are set.

    Raises:
        PackError: no source configured, the file cannot be read, or the
            content is not a valid pack.
    """
    if settings.pack_file:
        source = settings.pack_file
        try:
            raw = Path(settings.pack_file).read_text(encoding="utf-8")
        except OSError as exc:
            raise PackError(f"cannot read pack file {settings.pack_file}: {exc}") from exc
    elif settings.pack_json:
        source = "PROMPTPACK_PACK_JSON"
        raw = settings.pack_json
    else:
        raise PackError("no prompt pack configured: set PROMPTPACK_FILE or PROMPTPACK_PACK_JSON")

    try:
        pack = PromptPack.model_validate_json(raw)
    except ValidationError as exc:
        raise PackError(f"invalid prompt pack from {source}: {exc.error_count()} errors") from exc

    logger.info(
        "Loaded prompt pack",
        extra={"source": source, "pack_id": pack.id, "version": pack.version, "prompts": len(pack.prompts)},
    )
    return pack


def resolve_agent_name(settings: Settings, pack: PromptPack) -> str:
    """Pick the served agent: PROMPTPACK_AGENT, then agents.entry, then the only prompt."""
    if settings.agent_name:
        return settings.agent_name

    if pack.agents is not None and pack.agents.entry:
        return pack.agents.entry

    if len(pack.prompts) == 1:
        return next(iter(pack.prompts))

    raise PackError(
        "cannot determine agent name: set PROMPTPACK_AGENT, define agents.entry in the pack, "
        "or ensure the pack has exactly one prompt"
    )


def build_agent_card(pack: PromptPack, agent_name: str, url: str) -> AgentCard:
    """
    Build the A2A agent card for the served agent.

    Agents declared under ``agents.members`` get their description, tags
    and modes from the pack; any other agent gets a minimal card from the
    prompt description and the pack version.
    """
    prompt = pack.prompts.get(agent_name)
    member = pack.agents.members.get(agent_name) if pack.agents is not None else None

    if member is None:
        logger.info("Using minimal agent card", extra={"agent_name": agent_name})
        return AgentCard(
            name=agent_name,
            description=prompt.description if prompt is not None else "",
            url=url,
            version=pack.version,
        )

    description = member.description or (prompt.description if prompt is not None else "")
    card = AgentCard(
        name=agent_name,
        description=description,
        url=url,
        version=pack.version,
        capabilities=AgentCapabilities(streaming=True, pushNotifications=False),
        defaultInputModes=member.input_modes or ["text/plain"],
        defaultOutputModes=member.output_modes or ["text/plain"],
        skills=[
            AgentSkill(
                id=agent_name,
                name=(prompt.name if prompt is not None and prompt.name else agent_name),
                description=description,
                tags=member.tags,
            )
        ],
    )
    logger.info("Generated AgentCard", extra={"agent_name": agent_name, "skills_count": len(card.skills)})
    return card
