from __future__ import annotations

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from notebatch.pipeline.models import NoteMode
from notebatch.pipeline.prompts import (
    CORE_FORMATTING_RULES,
    OUTLINE_SYSTEM_PROMPT,
    build_content_messages,
    build_content_prompt,
    build_outline_messages,
    mode_instruction,
)


def test_outline_messages_use_default_system_prompt() -> None:
    system, human = build_outline_messages("  Cardiac output ")

    assert isinstance(system, SystemMessage)
    assert system.content == OUTLINE_SYSTEM_PROMPT
    assert isinstance(human, HumanMessage)
    assert human.content == "INPUT TOPIC: Cardiac output"


def test_outline_instructions_replace_system_prompt() -> None:
    system, _ = build_outline_messages("Topic", instructions="List five subtopics only.")
    assert system.content == "List five subtopics only."

    system, _ = build_outline_messages("Topic", instructions="   ")
    assert system.content == OUTLINE_SYSTEM_PROMPT


def test_outline_rejects_blank_topic() -> None:
    with pytest.raises(ValueError):
        build_outline_messages(" ")


@pytest.mark.parametrize("mode", list(NoteMode))
def test_every_mode_has_instructions(mode: NoteMode) -> None:
    text = mode_instruction(mode)
    assert text.startswith(CORE_FORMATTING_RULES)
    assert "MODE:" in text


def test_content_prompt_structure() -> None:
    prompt = build_content_prompt("Nephron", "# Nephron\n## 1. Filtration", NoteMode.CHEAT_CODES)

    assert "MODE: CHEAT CODES" in prompt
    assert "**TARGET TOPIC:** Nephron" in prompt
    assert "## 1. Filtration" in prompt
    assert "USER SPECIAL REQUEST" not in prompt
    assert prompt.endswith("**EXECUTE TRANSFORMATION NOW.**")


def test_content_prompt_includes_special_request() -> None:
    prompt = build_content_prompt("T", "# T", instructions="Add a summary table.")
    assert "**USER SPECIAL REQUEST:**\nAdd a summary table." in prompt


def test_content_prompt_requires_outline() -> None:
    with pytest.raises(ValueError):
        build_content_prompt("T", "  ")


def test_content_messages_wrap_prompt() -> None:
    system, human = build_content_messages("T", "# T", NoteMode.COMPREHENSIVE)

    assert isinstance(system, SystemMessage)
    assert "Markdown" in system.content
    assert human.content == build_content_prompt("T", "# T", NoteMode.COMPREHENSIVE)
