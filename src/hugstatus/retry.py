from __future__ import annotations

from dataclasses import dataclass

from hugstatus.config import RuntimeConfig


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff shared by every local-failure branch."""

    base_seconds: float
    max_seconds: float
    multiplier: float = 2.0

    @classmethod
    def from_runtime(cls, runtime: RuntimeConfig) -> RetryPolicy:
        return cls(base_seconds=runtime.retry_base_seconds, max_seconds=runtime.retry_max_seconds)

    def delay(self, consecutive_failures: int) -> float:
        if consecutive_failures < 1:
            return 0.0
        # Cap the exponent as well so huge failure counts cannot overflow.
        exponent = min(consecutive_failures - 1, 64)
        return min(self.max_seconds, self.base_seconds * self.multiplier**exponent)
