"""Sequential walker over the pages of an RPDE feed."""
import logging
import time
from dataclasses import dataclass
from typing import Callable, List

import requests

from feed.errors import BackoffExhaustedError, FeedNotFoundError, FeedValidationError
from feed.rpde_client import loggable_request_error
from processor.models import FeedItem, FeedPage

logger = logging.getLogger(__name__)

# Failures that are retried with backoff. Anything else propagates.
RETRYABLE_ERRORS = (requests.RequestException, FeedValidationError, ValueError)


@dataclass
class Cursor:
    """Walker position: the page being requested and the current backoff."""
    current_url: str
    backoff_seconds: float


@dataclass
class WalkResult:
    """Summary of a finished walk."""
    pages: int
    items: int


class FeedWalker:
    """Walks an RPDE feed page by page until the next URL stops changing."""

    RETRY_BACKOFF_MIN_SECONDS = 1
    RETRY_BACKOFF_MAX_SECONDS = 1024  # ~17 minutes
    RETRY_BACKOFF_RATE = 2
    MIN_REQUEST_DELAY_SECONDS = 0.01

    def __init__(
        self,
        fetch_page: Callable[[str], FeedPage],
        min_request_delay_seconds: float = MIN_REQUEST_DELAY_SECONDS,
        backoff_min_seconds: float = RETRY_BACKOFF_MIN_SECONDS,
        backoff_max_seconds: float = RETRY_BACKOFF_MAX_SECONDS,
        backoff_rate: float = RETRY_BACKOFF_RATE,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the walker.

        Args:
            fetch_page: Callable returning a validated FeedPage for a URL
            min_request_delay_seconds: Courtesy delay between successful pages
            backoff_min_seconds: First retry delay, restored after every success
            backoff_max_seconds: Largest retry delay before the walk aborts
            backoff_rate: Multiplier applied to the delay after each failure
            sleep: Sleep function, replaceable in tests
        """
        self.fetch_page = fetch_page
        self.min_request_delay_seconds = min_request_delay_seconds
        self.backoff_min_seconds = backoff_min_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.backoff_rate = backoff_rate
        self.sleep = sleep

    def walk(self, start_url: str,
             on_page: Callable[[List[FeedItem]], None]) -> WalkResult:
        """
        Walk the feed from start_url to its last page.

        Each page's items are handed to on_page, which must finish before the
        next page is requested.

        Args:
            start_url: First page URL
            on_page: Item processor called once per page

        Returns:
            WalkResult with page and item counts

        Raises:
            FeedNotFoundError: If any page returns HTTP 404
            BackoffExhaustedError: If a page keeps failing past the max backoff
        """
        cursor = Cursor(current_url=start_url, backoff_seconds=self.backoff_min_seconds)
        pages = 0
        items = 0

        while True:
            page = self._fetch_with_backoff(cursor)
            on_page(page.items)
            pages += 1
            items += len(page.items)
            logger.info(
                f"Processed page {pages} with {len(page.items)} items",
                extra={'url': cursor.current_url}
            )

            if page.next_url == cursor.current_url:
                logger.info(f"Reached end of feed after {pages} pages")
                return WalkResult(pages=pages, items=items)

            cursor.current_url = page.next_url
            cursor.backoff_seconds = self.backoff_min_seconds
            self.sleep(self.min_request_delay_seconds)

    def _fetch_with_backoff(self, cursor: Cursor) -> FeedPage:
        """
        Fetch the cursor's page, retrying transient failures.

        The backoff only grows while the same URL keeps failing.
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                return self.fetch_page(cursor.current_url)
            except FeedNotFoundError:
                logger.error(
                    f'URL ("{cursor.current_url}") not found. '
                    f'Please check the feed base URL.',
                    extra={'url': cursor.current_url}
                )
                raise
            except RETRYABLE_ERRORS as e:
                if cursor.backoff_seconds > self.backoff_max_seconds:
                    logger.error(
                        f'Cannot download feed page "{cursor.current_url}", '
                        f'backoff limit reached',
                        extra={'url': cursor.current_url}
                    )
                    raise BackoffExhaustedError(cursor.current_url, attempts, e) from e

                logger.warning(
                    f'Retrying [page: "{cursor.current_url}"] in '
                    f'{cursor.backoff_seconds} seconds due to error: {e}',
                    extra={'url': cursor.current_url, 'error': loggable_request_error(e)}
                )
                self.sleep(cursor.backoff_seconds)
                cursor.backoff_seconds *= self.backoff_rate
