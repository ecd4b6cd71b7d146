"""Prompt templates used for LLM refinement."""

from __future__ import annotations

from typing import Dict, List

REFINE_SYSTEM_PROMPT = (
    "You are an expert at refining and improving prompts for software development "
    "projects. Your task is to take the user's prompt and make it clearer, more "
    "specific, and more effective while maintaining the original intent."
)

REFINE_INSTRUCTION = (
    "Refine and improve the following prompt for a software development project:\n\n{content}"
)


def refine_messages(content: str) -> List[Dict[str, str]]:
    """Chat messages for OpenAI-compatible endpoints (separate system role)."""

    return [
        {"role": "system", "content": REFINE_SYSTEM_PROMPT},
        {"role": "user", "content": REFINE_INSTRUCTION.format(content=content)},
    ]


def refine_single_turn(content: str) -> List[Dict[str, str]]:
    """A single user message carrying both the system prompt and the request."""

    text = f"{REFINE_SYSTEM_PROMPT}\n\n{REFINE_INSTRUCTION.format(content=content)}"
    return [{"role": "user", "content": text}]


__all__ = ["REFINE_INSTRUCTION", "REFINE_SYSTEM_PROMPT", "refine_messages", "refine_single_turn"]
