"""
Token usage accounting.

Usage is returned with every call and aggregated per run by a tracker the
caller owns; nothing here is module-global.
"""
from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class TokenUsage:
    """Token counts for one or more generation calls."""
    input_tokens: int = 0
    output_tokens: int = 0
    calls: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            calls=self.calls + other.calls,
        )

    def as_dict(self) -> Dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "calls": self.calls,
        }


@dataclass
class UsageTracker:
    """Per-run accumulator keyed by stage label (``scoring``, ``script``...)."""
    by_stage: Dict[str, TokenUsage] = field(default_factory=dict)

    def record(self, label: str, usage: TokenUsage) -> None:
        self.by_stage[label] = self.by_stage.get(label, TokenUsage()) + usage

    @property
    def total(self) -> TokenUsage:
        total = TokenUsage()
        for usage in self.by_stage.values():
            total = total + usage
        return total

    def as_dict(self) -> Dict[str, Dict]:
        return {
            "total": self.total.as_dict(),
            "by_stage": {label: usage.as_dict() for label, usage in self.by_stage.items()},
        }
