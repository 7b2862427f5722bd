"""
Exponential backoff with jitter for sink redelivery.
"""
import random
from dataclasses import dataclass, field


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Delay schedule between delivery attempts.

    delay(n) = min(base * 2^n +/- uniform(0, jitter_fraction * base * 2^n), max),
    never negative. For a fixed jitter draw the result is non-decreasing in n,
    so the expected delay is non-decreasing too.
    """
    base_backoff_ms: float = 100
    max_backoff_ms: float = 30_000
    jitter_fraction: float = 0.2
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self):
        if self.base_backoff_ms < 0:
            raise ValueError("base_backoff_ms must be >= 0")
        if self.max_backoff_ms < self.base_backoff_ms:
            raise ValueError("max_backoff_ms must be >= base_backoff_ms")
        if not 0.0 <= self.jitter_fraction <= 1.0:
            raise ValueError("jitter_fraction must be within [0, 1]")

    def delay_ms(self, attempt: int) -> float:
        """Delay in milliseconds before retrying after attempt ``attempt`` failed."""
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        # Cap the exponent so 2 ** attempt cannot overflow a float
        computed = min(self.base_backoff_ms * (2 ** min(attempt, 64)), self.max_backoff_ms)
        jitter = self.rng.uniform(-1.0, 1.0) * self.jitter_fraction * computed
        return max(0.0, min(computed + jitter, self.max_backoff_ms))

    def delay(self, attempt: int) -> float:
        """Delay in seconds, suitable for asyncio.sleep."""
        return self.delay_ms(attempt) / 1000.0
