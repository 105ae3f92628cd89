import random
from typing import Literal


BackoffStrategy = Literal["fixed", "exponential"]


def compute_backoff_seconds(attempt: int, base: float, cap: float, jitter_ratio: float = 0.1) -> float:
    # exponential backoff with jitter
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    jitter = random.uniform(0, exp * jitter_ratio)
    return min(cap, exp + jitter)


class CycleBackoff:
    """
    Sleep schedule after failed relay cycles.

    fixed: always `base` (poll interval * 2).
    exponential: base, 2*base, 4*base ... up to `cap`, with jitter; reset() after a good cycle.
    """

    def __init__(self, *, base: float, cap: float, strategy: BackoffStrategy = "exponential"):
        self.base = base
        self.cap = max(cap, base)
        self.strategy = strategy
        self.failures = 0

    def next_delay(self) -> float:
        self.failures += 1
        if self.strategy == "fixed":
            return self.base
        return compute_backoff_seconds(self.failures, base=self.base, cap=self.cap)

    def reset(self) -> None:
        self.failures = 0
