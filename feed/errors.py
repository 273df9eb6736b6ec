"""Errors raised while fetching and walking an RPDE feed."""
from typing import Optional


class FeedError(Exception):
    """Base class for feed errors."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class FeedNotFoundError(FeedError):
    """The feed endpoint returned HTTP 404. Never retried."""

    def __init__(self, url: str):
        super().__init__(f'Page not found: "{url}"', url=url)


class FeedValidationError(FeedError):
    """A page did not have the shape of an RPDE page."""


class BackoffExhaustedError(FeedError):
    """Retries for a single page went past the maximum backoff."""

    def __init__(self, url: str, attempts: int, last_error: Exception):
        super().__init__(
            f'Cannot download feed page "{url}" after {attempts} attempts, '
            f'backoff limit reached. Last error: {last_error}',
            url=url
        )
        self.attempts = attempts
        self.last_error = last_error
