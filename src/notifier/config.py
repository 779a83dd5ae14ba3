"""Dispatch tunables loaded from the ``[custom]`` table of ``domain.toml``.

Example:
    config = DispatchConfig.from_domain(notifier)
    config.backoff_delay_ms(0)   # 1000
    config.backoff_delay_ms(2)   # 4000
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class DispatchConfig:
    """Retry, backoff and cache settings for the delivery pipeline.

    Attributes:
        max_retries: Send attempts per channel before dead-lettering. Zero
            still allows exactly one attempt.
        retry_delay_base_ms: Backoff after the first failed attempt.
        max_retry_delay_ms: Cap applied to the exponential backoff.
        preference_cache_ttl_seconds: Lifetime of cached preferences.
        save_attempts: Reload-and-reapply attempts on a version conflict.
    """

    max_retries: int = 3
    retry_delay_base_ms: int = 1000
    max_retry_delay_ms: int = 60000
    preference_cache_ttl_seconds: float = 30
    save_attempts: int = 3

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_delay_base_ms < 0:
            raise ValueError("retry_delay_base_ms must be >= 0")
        if self.max_retry_delay_ms < self.retry_delay_base_ms:
            raise ValueError("max_retry_delay_ms must be >= retry_delay_base_ms")
        if self.preference_cache_ttl_seconds < 0:
            raise ValueError("preference_cache_ttl_seconds must be >= 0")
        if self.save_attempts < 1:
            raise ValueError("save_attempts must be at least 1")

    @classmethod
    def from_domain(cls, domain) -> "DispatchConfig":
        custom = domain.config.get("custom") or {}
        return cls(
            max_retries=int(custom.get("MAX_RETRIES", cls.max_retries)),
            retry_delay_base_ms=int(custom.get("RETRY_DELAY_BASE_MS", cls.retry_delay_base_ms)),
            max_retry_delay_ms=int(custom.get("MAX_RETRY_DELAY_MS", cls.max_retry_delay_ms)),
            preference_cache_ttl_seconds=float(
                custom.get("PREFERENCE_CACHE_TTL_SECONDS", cls.preference_cache_ttl_seconds)
            ),
            save_attempts=int(custom.get("SAVE_ATTEMPTS", cls.save_attempts)),
        )

    @property
    def attempts_per_channel(self) -> int:
        return max(self.max_retries, 1)

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay after failed attempt ``attempt`` (0-based): ``base * 2^attempt``, capped."""
        return min(self.retry_delay_base_ms * (2**attempt), self.max_retry_delay_ms)

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_delay_ms(attempt) / 1000.0
