"""HTTP request execution with retry and failure classification."""

from myme.net.retry import RequestExecutor, RetryConfig, RetryDecision, with_retry

__all__ = ["RequestExecutor", "RetryConfig", "RetryDecision", "with_retry"]
