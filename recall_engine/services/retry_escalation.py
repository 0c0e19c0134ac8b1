"""
Escalating retry policy for duplicate responses.

Each retry changes the request enough to break a cached or deterministic
completion path:

- attempt 1: configured defaults
- attempt 2: temperature 1.0 and frequency penalty 0.5
- attempt 3+: same overrides, plus drop the oldest 30% of history
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

# Some providers reject temperature > 1.0
RETRY_TEMPERATURE = 1.0
RETRY_FREQUENCY_PENALTY = 0.5
RETRY_HISTORY_REDUCTION = 0.3


@dataclass(frozen=True)
class RetryConfig:
    """Sampling and context overrides for one attempt. None means "use the default"."""
    temperature_override: Optional[float] = None
    frequency_penalty_override: Optional[float] = None
    history_reduction_percent: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Only the overrides that are set (attempt 1 gives {})."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @property
    def is_default(self) -> bool:
        return not self.to_dict()


def build_retry_config(attempt: int) -> RetryConfig:
    """
    Overrides for a 1-based attempt number.

    Escalation caps at attempt 3: every later attempt gets the same config.

    Raises:
        ValueError: If attempt < 1
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    if attempt == 1:
        return RetryConfig()

    if attempt == 2:
        return RetryConfig(
            temperature_override=RETRY_TEMPERATURE,
            frequency_penalty_override=RETRY_FREQUENCY_PENALTY,
        )

    return RetryConfig(
        temperature_override=RETRY_TEMPERATURE,
        frequency_penalty_override=RETRY_FREQUENCY_PENALTY,
        history_reduction_percent=RETRY_HISTORY_REDUCTION,
    )
