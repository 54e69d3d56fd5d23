"""Schema-validated structured extraction over conversation turns."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from memoria.errors import ExtractionError
from memoria.memory.types import MemoryKind, Turn, clamp_importance
from memoria.providers.base import ModelProvider

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def _clean_strings(values: object) -> list[str]:
    if not isinstance(values, list):
        return []
    cleaned: list[str] = []
    for value in values:
        text = str(value).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


class SummaryExtraction(BaseModel):
    summary: str = Field(min_length=1)
    key_facts: list[str] = Field(default_factory=list)
    tools_used: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    decisions: list[str] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _strip_summary(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("key_facts", "tools_used", "topics", "decisions", mode="before")
    @classmethod
    def _clean_lists(cls, value: object) -> list[str]:
        return _clean_strings(value)


class ExtractedFact(BaseModel):
    content: str = Field(min_length=1)
    kind: MemoryKind = Field(
        default=MemoryKind.FACT,
        validation_alias=AliasChoices("kind", "fact_type", "type"),
    )
    importance: float = 0.5

    @field_validator("content", mode="before")
    @classmethod
    def _strip_content(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("kind", mode="before")
    @classmethod
    def _lenient_kind(cls, value: object) -> MemoryKind:
        return MemoryKind.parse(value)

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp(cls, value: object) -> float:
        return clamp_importance(value)


class FactExtraction(BaseModel):
    facts: list[ExtractedFact] = Field(default_factory=list)


@dataclass(slots=True, frozen=True)
class PromptSpec(Generic[SchemaT]):
    name: str
    instructions: str
    schema: type[SchemaT]


SUMMARY_PROMPT: PromptSpec[SummaryExtraction] = PromptSpec(
    name="summary",
    instructions=(
        "You condense a stretch of conversation between a user and an AI agent so it can "
        "replace the raw transcript in the agent's memory.\n"
        "Return one JSON object with keys:\n"
        '- "summary": 2-4 sentences covering what was discussed and what happened\n'
        '- "key_facts": durable facts worth remembering (user details, preferences, '
        "constraints, results)\n"
        '- "tools_used": names of tools or commands that were used\n'
        '- "topics": short topic labels\n'
        '- "decisions": decisions or agreements that were reached\n'
        "Use empty lists when nothing applies. Do not invent details."
    ),
    schema=SummaryExtraction,
)

FACT_PROMPT: PromptSpec[FactExtraction] = PromptSpec(
    name="facts",
    instructions=(
        "You extract durable memories from one exchange between a user and an AI agent.\n"
        'Return one JSON object: {"facts": [{"content": str, "kind": str, '
        '"importance": float}]}.\n'
        "kind is one of fact, preference, skill, context. importance is between 0 and 1; "
        "use 0.8 or more only for things the user would expect to be remembered long term.\n"
        "Each content must be a self-contained sentence about the user or their work. "
        "Skip small talk, transient requests and anything already implied by the question. "
        'Return {"facts": []} when there is nothing durable.'
    ),
    schema=FactExtraction,
)


class StructuredExtractor(Protocol):
    async def extract(self, spec: PromptSpec[SchemaT], turns: Sequence[Turn]) -> SchemaT: ...


def render_transcript(turns: Sequence[Turn]) -> str:
    lines = ["## Transcript"]
    for turn in turns:
        role = turn.role.value if hasattr(turn.role, "value") else str(turn.role)
        lines.append(f"[{role}] {turn.content}")
    return "\n".join(lines)


def parse_json_object(text: str) -> dict[str, Any]:
    payload = text.strip()
    if payload.startswith("```"):
        payload = payload.strip("`").strip()
        if payload.lower().startswith("json"):
            payload = payload[4:].strip()
    try:
        parsed = json.loads(payload)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass
    start = payload.find("{")
    end = payload.rfind("}")
    if start >= 0 and end > start:
        try:
            parsed = json.loads(payload[start : end + 1])
        except json.JSONDecodeError as exc:
            raise ExtractionError(f"model output is not valid JSON: {exc}") from exc
        if isinstance(parsed, dict):
            return parsed
    raise ExtractionError("model output does not contain a JSON object")


class LLMStructuredExtractor:
    """Structured extraction backed by a chat-completion model.

    Output that fails to parse or validate raises ExtractionError; nothing
    partially valid is ever returned.
    """

    def __init__(
        self,
        provider: ModelProvider,
        *,
        temperature: float = 0.1,
        max_tokens: int = 2048,
    ) -> None:
        self._provider = provider
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def extract(self, spec: PromptSpec[SchemaT], turns: Sequence[Turn]) -> SchemaT:
        if not turns:
            raise ExtractionError(f"{spec.name}: nothing to extract from", retryable=False)
        messages = [
            {"role": "system", "content": spec.instructions},
            {"role": "user", "content": render_transcript(turns)},
        ]
        response = await self._provider.generate(
            messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            json_mode=True,
        )
        data = parse_json_object(response.text)
        try:
            return spec.schema.model_validate(data)
        except ValidationError as exc:
            logger.debug("Rejected %s extraction: %s", spec.name, exc)
            raise ExtractionError(
                f"{spec.name}: output does not match schema ({exc.error_count()} errors)"
            ) from exc
