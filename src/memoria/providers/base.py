"""Provider contracts."""

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(slots=True)
class ModelResponse:
    text: str
    usage: dict[str, Any] = field(default_factory=dict)


class ModelProvider(Protocol):
    async def generate(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 2048,
        json_mode: bool = False,
    ) -> ModelResponse: ...

    async def health_check(self) -> bool: ...
