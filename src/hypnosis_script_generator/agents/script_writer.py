"""ScriptWriter agent: writes outlines, sections and regenerated sections."""

from __future__ import annotations

from typing import Any

import autogen

from ..config import build_llm_config
from ..models import ProjectConfig


def make_script_writer(
    config: ProjectConfig,
    *,
    step: str,
    system_message: str,
) -> autogen.AssistantAgent:
    """Create the ScriptWriter agent for one generation step."""
    return autogen.AssistantAgent(
        name="ScriptWriter",
        system_message=system_message,
        llm_config=build_llm_config(step, config),
        human_input_mode="NEVER",
    )


def extract_reply_text(reply: Any) -> str:
    """Extract the text of an AG2 ``generate_reply`` result."""
    if reply is None:
        return ""
    if isinstance(reply, str):
        return reply
    if isinstance(reply, dict):
        return str(reply.get("content") or "")
    return str(reply)
