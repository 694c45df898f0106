"""
Token counting and usage tracking.

Token buckets as the pricing catalog understands them.
"""

from dataclasses import dataclass

from ai_usage_meter.storage.models import UsageRecord


@dataclass(frozen=True)
class TokenUsage:
    """Token counts for one priced request.

    Reasoning tokens are billed as output, so `output_tokens` already
    includes them when built from a record.
    """
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens across all buckets."""
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )

    @classmethod
    def from_record(cls, record: UsageRecord) -> "TokenUsage":
        return cls(
            input_tokens=record.input_tokens,
            output_tokens=record.output_tokens + record.reasoning_tokens,
            cache_creation_input_tokens=record.cache_creation_tokens,
            cache_read_input_tokens=record.cache_read_tokens,
        )
