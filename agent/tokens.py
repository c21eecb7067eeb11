"""Token accounting.

TokenUsage is a bag of additive counters. TokenTracker arranges usage into a
tree: every agent owns a tracker, every tool call gets a child of it, and a
sub-agent's tracker hangs off the tool call that started it. Totals roll up
from the leaves so the root always reports the whole run.
"""

from dataclasses import dataclass
from typing import List, Optional

# USD per million tokens, used for the rough cost estimate in logs and
# status updates.
DEFAULT_PRICING = {
    "input": 3.0,
    "output": 15.0,
    "cache_reads": 0.3,
    "cache_writes": 3.75,
}


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0
    cache_reads: int = 0
    cache_writes: int = 0

    def add(self, other: "TokenUsage") -> "TokenUsage":
        self.input += other.input
        self.output += other.output
        self.cache_reads += other.cache_reads
        self.cache_writes += other.cache_writes
        return self

    def clone(self) -> "TokenUsage":
        return TokenUsage(self.input, self.output, self.cache_reads, self.cache_writes)

    @property
    def total(self) -> int:
        return self.input + self.output + self.cache_reads + self.cache_writes

    def cost(self, pricing: Optional[dict] = None) -> float:
        """Estimated cost in USD."""
        pricing = pricing or DEFAULT_PRICING
        return (
            self.input * pricing["input"]
            + self.output * pricing["output"]
            + self.cache_reads * pricing["cache_reads"]
            + self.cache_writes * pricing["cache_writes"]
        ) / 1_000_000

    def to_dict(self) -> dict:
        return {
            "input": self.input,
            "output": self.output,
            "cache_reads": self.cache_reads,
            "cache_writes": self.cache_writes,
        }

    def __str__(self) -> str:
        return (
            f"input: {self.input} cache-writes: {self.cache_writes} "
            f"cache-reads: {self.cache_reads} output: {self.output} "
            f"COST: ${self.cost():.2f}"
        )


class TokenTracker:
    """A node in the token usage tree."""

    def __init__(self, name: str = "root", parent: Optional["TokenTracker"] = None):
        self.name = name
        self.parent = parent
        self.usage = TokenUsage()
        self.children: List["TokenTracker"] = []
        if parent is not None:
            parent.children.append(self)

    def child(self, name: str) -> "TokenTracker":
        return TokenTracker(name, self)

    def add(self, usage: TokenUsage):
        self.usage.add(usage)

    def total_usage(self) -> TokenUsage:
        total = self.usage.clone()
        for child in self.children:
            total.add(child.total_usage())
        return total

    def total_cost(self) -> float:
        return self.total_usage().cost()

    def summary(self, indent: int = 0) -> str:
        """Tree rendering used by the CLI's --verbose summary."""
        lines = [f"{'  ' * indent}{self.name}: {self.total_usage()}"]
        for child in self.children:
            if child.total_usage().total:
                lines.append(child.summary(indent + 1))
        return "\n".join(lines)

    def __str__(self) -> str:
        return f"{self.name}: {self.total_usage()}"
