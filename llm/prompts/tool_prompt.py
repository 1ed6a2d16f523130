"""Prompt template turning a product idea into a prompt for an AI builder tool."""

from __future__ import annotations

from typing import Dict, List

_NO_PREAMBLE = " Do not include any introductory or concluding paragraphs."

TOOL_SYSTEM_PROMPTS: Dict[str, str] = {
    "V0": (
        "You are an expert in V0 AI design tool. Based on the user's product idea, create a detailed prompt "
        "that they can use with V0 to generate their desired UI design. Include specific layout suggestions, "
        "component recommendations, and styling preferences. Format the prompt to be directly usable in V0."
    ),
    "Cursor": (
        "You are an expert in Cursor AI coding tool. Based on the user's product idea, create a detailed prompt "
        "that they can use with Cursor to develop their application. Include specific technical requirements, "
        "architecture suggestions, and implementation details. Format the prompt to be directly usable with "
        "Cursor's /edit or /chat commands."
    ),
    "Bolt": (
        "You are an expert in Bolt AI development tool. Based on the user's product idea, create a detailed prompt "
        "that they can use with Bolt to build their application. Include specific feature requirements, technical "
        "specifications, and implementation guidance. Format the prompt to be directly usable in Bolt."
    ),
    "Tempo": (
        "You are an expert in Tempo AI development platform. Based on the user's product idea, create a detailed "
        "prompt that they can use with Tempo to build their application. Include specific component structures, "
        "styling preferences, and functionality details. Format the prompt to be directly usable in Tempo's chat "
        "interface."
    ),
    "Lovable": (
        "You are an expert in Lovable AI design tool. Based on the user's product idea, create a detailed prompt "
        "that they can use with Lovable to design their application. Include specific UI/UX requirements, design "
        "system recommendations, and visual style guidelines. Format the prompt to be directly usable in "
        "Lovable's interface."
    ),
}

USER_PROMPT_TEMPLATE = (
    "Create a detailed prompt for {tool} based on this product idea: {idea}. Include feature list, "
    "functionality details, and specific implementation guidance. Format your response with markdown for "
    "better readability."
)


def system_prompt(tool: str) -> str:
    base = TOOL_SYSTEM_PROMPTS.get(
        tool,
        f"You are an expert in {tool} AI tool. Create a detailed prompt based on the user's product idea.",
    )
    return base + _NO_PREAMBLE


def get_prompt(idea: str, tool: str) -> List[dict]:
    return [
        {"role": "system", "content": system_prompt(tool)},
        {"role": "user", "content": USER_PROMPT_TEMPLATE.format(tool=tool, idea=idea.strip())},
    ]


__all__ = ["TOOL_SYSTEM_PROMPTS", "get_prompt", "system_prompt"]
