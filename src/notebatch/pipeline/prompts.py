"""Prompt construction for the outline and content phases."""

from __future__ import annotations

import textwrap
from typing import List

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from .models import NoteMode

__all__ = [
    "CORE_FORMATTING_RULES",
    "OUTLINE_SYSTEM_PROMPT",
    "TOPIC_EXTRACTION_PROMPT",
    "build_content_messages",
    "build_content_prompt",
    "build_outline_messages",
    "mode_instruction",
]

CORE_FORMATTING_RULES = textwrap.dedent(
    """
    ### ROLE
    You are a no-nonsense academic mentor. The user provides a rough blueprint
    of what a study note must cover. Turn it into a high-density mental model.

    ### INPUT INTERPRETATION
    1. Do not copy the blueprint's formatting.
    2. Treat the blueprint as a scope checklist, not a fill-in template.
    3. Rewrite everything in the functional style below.

    ### FUNCTIONAL STYLE
    - Open every concept with why it exists, never with a dictionary definition.
    - Use concrete analogies that tie the concept to real mechanics.
    - Name headers by function, e.g. `## 3. Absorption engine` rather than `## 3. Anatomy`.
    - Output strictly formatted Markdown; tables for comparisons, lists for sequences.
    - Do not summarise or truncate: if a list has twenty items, list all twenty.
    """
).strip()

_MODE_INSTRUCTIONS = {
    NoteMode.GENERAL: textwrap.dedent(
        """
        MODE: GENERAL STUDY NOTE
        OBJECTIVE: Balanced coverage of every blueprint item with clear mechanisms.
        """
    ).strip(),
    NoteMode.CHEAT_CODES: textwrap.dedent(
        """
        MODE: CHEAT CODES
        OBJECTIVE: High-yield facts, mnemonics and exam traps. Bullet density over prose.
        """
    ).strip(),
    NoteMode.COMPREHENSIVE: textwrap.dedent(
        """
        MODE: COMPREHENSIVE TEXTBOOK
        OBJECTIVE: Exhaustive depth, including edge cases, clinical or practical correlations
        and worked examples for every blueprint item.
        """
    ).strip(),
    NoteMode.CUSTOM: textwrap.dedent(
        """
        MODE: CUSTOM INSTRUCTION
        OBJECTIVE: Follow the user's constraints strictly while keeping the high-density formatting.
        """
    ).strip(),
}

OUTLINE_SYSTEM_PROMPT = textwrap.dedent(
    """
    ROLE: Curriculum architect.
    GOAL: List the critical concepts needed to understand the input topic.
    OUTPUT: A simple list of topics. Do not write the full note yet.
    FORMAT: Markdown headers.
    """
).strip()

TOPIC_EXTRACTION_PROMPT = textwrap.dedent(
    """
    TASK: Analyse the provided syllabus content.
    GOAL: Extract a logical, sequential learning path of specific topics.
    RETURN A JSON STRING ARRAY ONLY.
    Example: ["Topic 1", "Topic 2"]
    """
).strip()


def mode_instruction(mode: NoteMode) -> str:
    return f"{CORE_FORMATTING_RULES}\n\n{_MODE_INSTRUCTIONS.get(mode, _MODE_INSTRUCTIONS[NoteMode.GENERAL])}"


def build_outline_messages(topic: str, *, instructions: str | None = None) -> List[BaseMessage]:
    """Messages for phase 1; custom instructions replace the default system prompt."""

    if not topic.strip():
        raise ValueError("Topic is empty; unable to build outline prompt.")
    system_prompt = instructions.strip() if instructions and instructions.strip() else OUTLINE_SYSTEM_PROMPT
    return [
        SystemMessage(content=system_prompt),
        HumanMessage(content=f"INPUT TOPIC: {topic.strip()}"),
    ]


def build_content_prompt(
    topic: str,
    outline: str,
    mode: NoteMode = NoteMode.GENERAL,
    *,
    instructions: str | None = None,
) -> str:
    if not outline.strip():
        raise ValueError("Outline is empty; content generation needs a blueprint.")
    sections = [
        mode_instruction(mode),
        "---",
        f"**TARGET TOPIC:** {topic.strip()}",
        "",
        "**ROUGH BLUEPRINT (SCOPE OF MATERIAL):**",
        "*This is a raw list of what to cover. Reorganise it logically; do not copy it blindly.*",
        outline.strip(),
    ]
    if instructions and instructions.strip():
        sections.extend(["", "**USER SPECIAL REQUEST:**", instructions.strip()])
    sections.extend(["---", "**EXECUTE TRANSFORMATION NOW.**"])
    return "\n".join(sections)


def build_content_messages(
    topic: str,
    outline: str,
    mode: NoteMode = NoteMode.GENERAL,
    *,
    instructions: str | None = None,
) -> List[BaseMessage]:
    return [
        SystemMessage(
            content=(
                "You write exhaustive study notes. Output strictly formatted Markdown and "
                "ignore output length limits."
            )
        ),
        HumanMessage(content=build_content_prompt(topic, outline, mode, instructions=instructions)),
    ]
