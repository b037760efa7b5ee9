# core/usage.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ModelUsage:
    calls: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class TokenUsage:
    """Provider token usage, accumulated per model."""

    by_model: dict[str, ModelUsage] = field(default_factory=dict)

    def add(self, model_name: str, usage: dict[str, int] | None) -> None:
        """Record one provider response. ``usage`` is the response's usage block."""
        entry = self.by_model.setdefault(model_name, ModelUsage())
        entry.calls += 1
        if not usage:
            return
        entry.prompt_tokens += int(usage.get("prompt_tokens") or 0)
        entry.completion_tokens += int(usage.get("completion_tokens") or 0)

    @property
    def total_tokens(self) -> int:
        return sum(entry.total_tokens for entry in self.by_model.values())

    def snapshot(self) -> dict[str, dict[str, int]]:
        return {
            model: {
                "calls": entry.calls,
                "prompt_tokens": entry.prompt_tokens,
                "completion_tokens": entry.completion_tokens,
                "total_tokens": entry.total_tokens,
            }
            for model, entry in self.by_model.items()
        }
