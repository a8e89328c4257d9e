"""Gateway error types."""

from typing import Optional


class GatewayError(Exception):
    """Error returned by (or while talking to) the messaging gateway."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None,
        retryable: Optional[bool] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        if retryable is None:
            retryable = status_code is not None and (status_code == 429 or 500 <= status_code < 600)
        self.retryable = retryable


class RateLimitExceeded(GatewayError):
    """Local rate limit hit; the request was never sent."""

    def __init__(self, key: str):
        super().__init__(f"Rate limit exceeded for {key}", retryable=False)
        self.key = key


class GatewayConfigError(ValueError):
    """Gateway client constructed with missing credentials."""
    pass
