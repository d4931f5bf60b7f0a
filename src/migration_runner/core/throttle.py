import logging
from typing import Optional

from ..config import ThrottleConfig

logger = logging.getLogger(__name__)


class AdaptiveThrottle:
    """
    Latency driven additive increase / additive decrease of one tunable value.

    Used for the record page size of batch requests and for the byte size of
    asset transfer chunks. A request faster than the ceiling grows the value by
    one increment; a slower one shrinks it, but never below the floor.
    """

    def __init__(self, config: ThrottleConfig, name: str = "throttle") -> None:
        if config.increment <= 0:
            raise ValueError(f"increment must be positive, got {config.increment!r}")
        if config.default < config.effective_floor:
            raise ValueError(
                f"default {config.default!r} is below floor {config.effective_floor!r}")
        self.config = config
        self.name = name
        self._value = config.default

    @property
    def value(self) -> int:
        return self._value

    @property
    def floor(self) -> int:
        return self.config.effective_floor

    @property
    def maximum(self) -> Optional[int]:
        return self.config.maximum

    def reset(self) -> None:
        self._value = self.config.default

    def adjust(self, duration_ms: float) -> int:
        """Update the value from the duration of the preceding request and return it."""
        old = self._value
        step = self.config.increment

        if duration_ms < self.config.ceiling_ms:
            grown = self._value + step
            if self.config.maximum is not None:
                grown = min(grown, self.config.maximum)
            self._value = max(self._value, grown)

        if duration_ms > self.config.ceiling_ms and self._value - step >= self.floor:
            self._value -= step

        if self._value != old:
            logger.debug("%s %d -> %d after %.0f ms", self.name, old, self._value, duration_ms)
        return self._value

    def __repr__(self) -> str:
        return f"AdaptiveThrottle(name={self.name!r}, value={self._value})"
