from __future__ import annotations

import pytest

from memoria.errors import ExtractionError
from memoria.memory.extraction import (
    FACT_PROMPT,
    SUMMARY_PROMPT,
    LLMStructuredExtractor,
    parse_json_object,
    render_transcript,
)
from memoria.memory.types import MemoryKind, Turn, TurnRole
from memoria.providers.base import ModelResponse


class _Provider:
    def __init__(self, text: str) -> None:
        self.text = text
        self.calls: list[dict[str, object]] = []

    async def generate(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 2048,
        json_mode: bool = False,
    ) -> ModelResponse:
        self.calls.append({"messages": messages, "json_mode": json_mode})
        return ModelResponse(text=self.text)

    async def health_check(self) -> bool:
        return True


TURNS = [
    Turn(id="t1", role=TurnRole.USER, content="I moved to Berlin last month."),
    Turn(id="t2", role=TurnRole.AGENT, content="Noted, welcome to Berlin!"),
]


def test_render_transcript_labels_roles() -> None:
    assert render_transcript(TURNS) == (
        "## Transcript\n[user] I moved to Berlin last month.\n[agent] Noted, welcome to Berlin!"
    )


def test_parse_json_object_strips_fences_and_prose() -> None:
    assert parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_object('Sure! Here it is: {"a": 2} hope that helps') == {"a": 2}
    with pytest.raises(ExtractionError):
        parse_json_object("no json here")
    with pytest.raises(ExtractionError):
        parse_json_object("[1, 2, 3]")


@pytest.mark.asyncio
async def test_summary_extraction_validates_and_cleans() -> None:
    provider = _Provider(
        '{"summary": "  User relocated to Berlin. ", "key_facts": ["User lives in Berlin", ""],'
        ' "tools_used": [], "topics": ["relocation", "relocation"]}'
    )
    extractor = LLMStructuredExtractor(provider)

    result = await extractor.extract(SUMMARY_PROMPT, TURNS)

    assert result.summary == "User relocated to Berlin."
    assert result.key_facts == ["User lives in Berlin"]
    assert result.topics == ["relocation"]
    assert result.decisions == []
    call = provider.calls[0]
    assert call["json_mode"] is True
    messages = call["messages"]
    assert isinstance(messages, list)
    assert messages[0]["role"] == "system"
    assert "[user] I moved to Berlin last month." in messages[1]["content"]


@pytest.mark.asyncio
async def test_summary_missing_required_field_fails_closed() -> None:
    extractor = LLMStructuredExtractor(_Provider('{"key_facts": ["x"]}'))
    with pytest.raises(ExtractionError) as exc_info:
        await extractor.extract(SUMMARY_PROMPT, TURNS)
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_malformed_output_raises_extraction_error() -> None:
    extractor = LLMStructuredExtractor(_Provider("I could not do that"))
    with pytest.raises(ExtractionError):
        await extractor.extract(FACT_PROMPT, TURNS)


@pytest.mark.asyncio
async def test_fact_extraction_normalizes_kind_and_importance() -> None:
    provider = _Provider(
        '{"facts": ['
        '{"content": "User lives in Berlin", "kind": "fact", "importance": 0.9},'
        '{"content": "User prefers tea", "fact_type": "Preference", "importance": 3},'
        '{"content": "User is learning German", "kind": "hobby", "importance": "high"}'
        "]}"
    )
    result = await LLMStructuredExtractor(provider).extract(FACT_PROMPT, TURNS)

    assert [fact.kind for fact in result.facts] == [
        MemoryKind.FACT,
        MemoryKind.PREFERENCE,
        MemoryKind.FACT,
    ]
    assert [fact.importance for fact in result.facts] == [0.9, 1.0, 0.5]


@pytest.mark.asyncio
async def test_extract_requires_turns() -> None:
    extractor = LLMStructuredExtractor(_Provider("{}"))
    with pytest.raises(ExtractionError) as exc_info:
        await extractor.extract(FACT_PROMPT, [])
    assert exc_info.value.retryable is False
