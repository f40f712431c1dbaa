"""Resilience helpers."""

from .retry import RetryConfig, submit_with_retry

__all__ = ["RetryConfig", "submit_with_retry"]
