"""Turn raw syllabus text into an ordered list of topics."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, List

from langchain_core.messages import HumanMessage, SystemMessage

from ..llm.providers import LangChainChatProvider
from .prompts import TOPIC_EXTRACTION_PROMPT
from .providers import extract_text

__all__ = ["TopicExtractionError", "TopicExtractor", "parse_topic_lines", "strip_code_fence"]

logger = logging.getLogger(__name__)

_LIST_MARKER = re.compile(r"^\s*(?:[-*+•]\s+|\d+[.)]\s*|#{1,6}\s+)")
_PAGE_MARKER = re.compile(r"^-{2,}\s*page\s+\d+\s*-{2,}$", re.IGNORECASE)
MAX_EXTRACTION_CHARS = 30000


class TopicExtractionError(ValueError):
    """Raised when no topics can be recovered from the supplied text."""


def strip_code_fence(payload: str) -> str:
    stripped = payload.strip()
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1 :] if first_newline != -1 else stripped[3:]
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def _dedupe(topics: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for topic in topics:
        cleaned = " ".join(topic.split())
        key = cleaned.casefold()
        if cleaned and key not in seen:
            seen.add(key)
            ordered.append(cleaned)
    return ordered


def _from_json(text: str) -> List[str] | None:
    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(payload, dict):
        payload = payload.get("topics")
    if not isinstance(payload, list):
        return None
    return [str(entry) for entry in payload if isinstance(entry, (str, int, float))]


def parse_topic_lines(text: str) -> List[str]:
    """Parse a JSON string array, or one topic per line with list markers removed."""

    stripped = strip_code_fence(text)
    from_json = _from_json(stripped)
    if from_json is not None:
        return _dedupe(from_json)

    topics: List[str] = []
    for line in stripped.splitlines():
        candidate = line.strip()
        if not candidate or _PAGE_MARKER.match(candidate) or candidate.startswith(("[", "]")):
            continue
        topics.append(_LIST_MARKER.sub("", candidate).strip())
    return _dedupe(topics)


class TopicExtractor:
    """Ask a chat model for a sequential learning path found in a syllabus."""

    def __init__(self, chat: LangChainChatProvider, *, temperature: float = 0.2) -> None:
        self._chat = chat if chat.settings.temperature == temperature else chat.with_model(
            chat.model, temperature=temperature
        )

    async def extract(self, syllabus_text: str) -> List[str]:
        if not syllabus_text.strip():
            raise TopicExtractionError("Syllabus text is empty.")
        excerpt = syllabus_text.strip()[:MAX_EXTRACTION_CHARS]
        response = await self._chat.ainvoke(
            [SystemMessage(content=TOPIC_EXTRACTION_PROMPT), HumanMessage(content=excerpt)]
        )
        text = extract_text(response)
        topics = parse_topic_lines(text)
        if _from_json(strip_code_fence(text)) is None:
            logger.info("Topic extraction response was not JSON; fell back to line parsing")
        if not topics:
            raise TopicExtractionError("The model did not return any topics.")
        return topics
