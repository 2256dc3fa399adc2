from __future__ import annotations

import asyncio

import pytest
from langchain_core.messages import AIMessage

from notebatch.llm.providers import build_provider
from notebatch.pipeline.intake import (
    MAX_EXTRACTION_CHARS,
    TopicExtractionError,
    TopicExtractor,
    parse_topic_lines,
    strip_code_fence,
)
from notebatch.pipeline.prompts import TOPIC_EXTRACTION_PROMPT


def test_parse_topic_lines_strips_markers_and_duplicates() -> None:
    text = """
    # Week 1
    - Cell membranes
    * Action potentials
    1. Synaptic transmission
    2) cell membranes

    --- Page 2 ---
    [figure]
    """

    assert parse_topic_lines(text) == [
        "Week 1",
        "Cell membranes",
        "Action potentials",
        "Synaptic transmission",
    ]


def test_parse_topic_lines_accepts_json() -> None:
    assert parse_topic_lines('["Glycolysis", "Krebs cycle", "Glycolysis"]') == ["Glycolysis", "Krebs cycle"]
    assert parse_topic_lines('{"topics": ["A", "B"]}') == ["A", "B"]
    assert parse_topic_lines('```json\n["A"]\n```') == ["A"]


def test_strip_code_fence() -> None:
    assert strip_code_fence("```\nbody\n```") == "body"
    assert strip_code_fence("plain") == "plain"


def test_extractor_parses_json_reply(dummy_chat_model) -> None:
    chat = build_provider(model="stub-model")
    dummy_chat_model.replies = [AIMessage(content='```json\n["Topic A", "Topic B"]\n```')]

    topics = asyncio.run(TopicExtractor(chat).extract("Syllabus text " * 5000))

    assert topics == ["Topic A", "Topic B"]
    client = dummy_chat_model.instances[-1]
    assert client.kwargs["temperature"] == 0.2
    system, human = client.invocations[0][1][0]
    assert system.content == TOPIC_EXTRACTION_PROMPT
    assert len(human.content) <= MAX_EXTRACTION_CHARS


def test_extractor_falls_back_to_lines(dummy_chat_model, caplog) -> None:
    chat = build_provider(model="stub-model", temperature=0.2)
    dummy_chat_model.replies = [AIMessage(content="Here you go:\n- Topic A\n- Topic B")]

    with caplog.at_level("INFO"):
        topics = asyncio.run(TopicExtractor(chat).extract("syllabus"))

    assert topics == ["Here you go:", "Topic A", "Topic B"]
    assert len(dummy_chat_model.instances) == 1
    assert "fell back to line parsing" in caplog.text


def test_extractor_rejects_empty_input_and_output(dummy_chat_model) -> None:
    extractor = TopicExtractor(build_provider(model="stub-model"))

    with pytest.raises(TopicExtractionError):
        asyncio.run(extractor.extract("   "))

    dummy_chat_model.replies = [AIMessage(content="[]")]
    with pytest.raises(TopicExtractionError):
        asyncio.run(extractor.extract("syllabus"))
