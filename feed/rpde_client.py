"""HTTP client for a single page of an RPDE feed."""
import logging
from typing import Any, Dict, Optional

import requests

from feed.errors import FeedNotFoundError, FeedValidationError
from processor.models import FeedItem, FeedPage, ItemState

logger = logging.getLogger(__name__)

VALID_STATES = {state.value for state in ItemState}


class RpdeFeedClient:
    """Downloads and validates RPDE pages."""

    API_KEY_HEADER = 'X-API-Key'

    def __init__(self, api_key: Optional[str] = None, timeout: int = 30,
                 session: Optional[requests.Session] = None):
        """
        Initialize the feed client.

        Args:
            api_key: Value for the X-API-Key header, if the feed needs one
            timeout: HTTP request timeout in seconds (default: 30)
            session: Optional requests session to reuse connections
        """
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_page(self, url: str) -> FeedPage:
        """
        Fetch and validate one RPDE page.

        Args:
            url: Page URL

        Returns:
            FeedPage with parsed items and the next page URL

        Raises:
            FeedNotFoundError: If the endpoint returns HTTP 404
            FeedValidationError: If the body is not a valid RPDE page
            requests.RequestException: On any other transport failure
        """
        headers = {self.API_KEY_HEADER: self.api_key} if self.api_key else {}
        logger.debug(f"Downloading {url}")
        response = self.session.get(url, headers=headers, timeout=self.timeout)
        if response.status_code == 404:
            raise FeedNotFoundError(url)
        response.raise_for_status()

        try:
            body = response.json()
        except ValueError as e:
            raise FeedValidationError(f"RPDE page is not valid JSON: {e}", url=url)

        page = self.parse_page(body, url)
        logger.debug(f"Downloaded {url} ({len(page.items)} items)")
        return page

    @staticmethod
    def parse_page(body: Any, url: Optional[str] = None) -> FeedPage:
        """
        Validate a decoded page body and convert it to a FeedPage.

        Raises:
            FeedValidationError: If the page violates the RPDE shape
        """
        if not isinstance(body, dict):
            raise FeedValidationError(
                f"RPDE page should be an object. Value: {body!r}", url=url
            )

        next_url = body.get('next')
        if not isinstance(next_url, str) or not next_url:
            raise FeedValidationError(
                f"RPDE .next should be a non-empty string. Value: {next_url!r}",
                url=url
            )

        raw_items = body.get('items')
        if not isinstance(raw_items, list):
            raise FeedValidationError(
                f"RPDE .items should be an array. Value: {raw_items!r}", url=url
            )

        items = []
        for index, raw_item in enumerate(raw_items):
            if not isinstance(raw_item, dict) or raw_item.get('state') not in VALID_STATES:
                item_id = raw_item.get('id') if isinstance(raw_item, dict) else None
                raise FeedValidationError(
                    f'item [index: "{index}" ; id: "{item_id}"] should be non-null '
                    f'and have state=updated|deleted. It does not',
                    url=url
                )
            items.append(_to_feed_item(raw_item))

        return FeedPage(items=items, next_url=next_url)


def _to_feed_item(raw_item: Dict[str, Any]) -> FeedItem:
    item_id = raw_item.get('id')
    data = raw_item.get('data')
    return FeedItem(
        id=str(item_id) if item_id is not None and item_id != '' else None,
        state=ItemState(raw_item['state']),
        kind=raw_item.get('kind'),
        modified=raw_item.get('modified'),
        data=data if isinstance(data, dict) else {}
    )


def loggable_request_error(error: Exception) -> Dict[str, Any]:
    """
    Reduce a transport error to the fields worth logging.

    Args:
        error: Exception raised while fetching a page

    Returns:
        Dict with the message and, when there was a response, its status and
        a short excerpt of its body
    """
    details: Dict[str, Any] = {
        'error_type': type(error).__name__,
        'message': str(error)
    }
    if isinstance(error, requests.RequestException):
        if error.request is not None:
            details['url'] = error.request.url
        if error.response is not None:
            details['status'] = error.response.status_code
            details['body'] = error.response.text[:500]
    return details
