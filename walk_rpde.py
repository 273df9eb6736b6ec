"""Download a whole RPDE feed into one JSON file per item, plus an HTML index."""
import argparse
import logging
import math
import sys
import time
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional

from feed.errors import BackoffExhaustedError, FeedNotFoundError
from feed.feed_walker import FeedWalker, WalkResult
from feed.rpde_client import RpdeFeedClient
from geo_segment import setup_logging
from processor.models import FeedItem
from storage.hash_store import HashStore, write_json_atomic

logger = logging.getLogger(__name__)

MIN_REQUEST_DELAY_SECONDS = 0.1


def parse_request_delay(value: str) -> float:
    """Request delay in seconds, never below MIN_REQUEST_DELAY_SECONDS."""
    try:
        delay = float(value)
    except (TypeError, ValueError):
        return MIN_REQUEST_DELAY_SECONDS
    if math.isnan(delay):
        return MIN_REQUEST_DELAY_SECONDS
    return max(delay, MIN_REQUEST_DELAY_SECONDS)


class ItemDumper:
    """
    Page handler that saves every updated item of a page to its own file.

    Files are named <prefix>-rpde-<page>-<index>.json, where index is the
    item's position in its page, and are appended to <prefix>-index.html.
    """

    def __init__(self, output_dir: Path, index_file_prefix: str, datestamp: str):
        self.output_dir = Path(output_dir)
        self.index_file_prefix = index_file_prefix
        self.datestamp = datestamp
        self.page_number = 0
        self.files_written = 0

    @property
    def index_path(self) -> Path:
        return self.output_dir / f"{self.index_file_prefix}-index.html"

    def __call__(self, items: List[FeedItem]) -> None:
        filenames = []
        for i, item in enumerate(items):
            if item.is_deleted:
                continue
            filename = f"{self.index_file_prefix}-rpde-{self.page_number}-{i}.json"
            write_json_atomic(
                self.output_dir / filename,
                {**item.to_dict(), 'datestamp': self.datestamp}
            )
            filenames.append(filename)

        with open(self.index_path, 'a', encoding='utf-8') as f:
            f.write(''.join(f'<a href="/{filename}">file</a>' for filename in filenames))

        self.files_written += len(filenames)
        logger.debug(f"Saved {len(filenames)} items of page {self.page_number}")
        self.page_number += 1


def dump_feed(rpde_endpoint: str,
              api_key: Optional[str],
              output_dir: Path,
              index_file_prefix: str,
              request_delay_seconds: float = MIN_REQUEST_DELAY_SECONDS,
              client: Optional[RpdeFeedClient] = None,
              sleep: Callable[[float], None] = time.sleep,
              today: Optional[date] = None) -> WalkResult:
    """
    Empty output_dir and fill it with the items of the feed at rpde_endpoint.

    Args:
        rpde_endpoint: First page URL
        api_key: Sent as the X-API-Key header
        output_dir: Directory to empty and write into
        index_file_prefix: Prefix of the item files and the index file
        request_delay_seconds: Delay between pages
        client: Feed client (built from api_key when omitted)
        sleep: Sleep function used between pages and retries
        today: Date stamped on every saved item (defaults to today)

    Returns:
        WalkResult with page and item counts

    Raises:
        ValueError: If output_dir is a filesystem root
        FeedNotFoundError: If a page returns HTTP 404
        BackoffExhaustedError: If a page cannot be fetched within the backoff limit
    """
    output_dir = Path(output_dir)
    HashStore(output_dir).prepare([], clean=True)

    dumper = ItemDumper(
        output_dir, index_file_prefix, (today or date.today()).strftime('%d/%m/%Y')
    )
    dumper.index_path.write_text('', encoding='utf-8')

    client = client or RpdeFeedClient(api_key=api_key)
    walker = FeedWalker(
        client.fetch_page,
        min_request_delay_seconds=max(request_delay_seconds, MIN_REQUEST_DELAY_SECONDS),
        sleep=sleep
    )
    result = walker.walk(rpde_endpoint, dumper)
    logger.info(
        f"Saved {dumper.files_written} items from {result.pages} pages",
        extra={'url': rpde_endpoint}
    )
    return result


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='walk-rpde',
        description='Download every item of an RPDE feed into its own JSON file. '
                    'The output directory is emptied first.'
    )
    parser.add_argument('rpde_endpoint', help='URL of the first feed page')
    parser.add_argument('api_key', help='Value of the X-API-Key header')
    parser.add_argument('output_dir', type=Path, help='Directory to empty and write into')
    parser.add_argument('index_file_prefix', help='Prefix of the item and index file names')
    parser.add_argument(
        'request_delay_seconds', type=parse_request_delay,
        help=f'Delay between pages (minimum {MIN_REQUEST_DELAY_SECONDS})'
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Command line entry point.

    Returns:
        Process exit status: 0 on success, 1 on any fatal error
    """
    start_time = time.time()
    args = parse_args(argv)
    setup_logging('INFO')

    try:
        dump_feed(
            args.rpde_endpoint,
            args.api_key,
            args.output_dir,
            args.index_file_prefix,
            args.request_delay_seconds
        )
    except ValueError as e:
        logger.error(f"Cannot use output directory: {e}", extra={'error_type': type(e).__name__})
        logging.shutdown()
        return 1
    except FeedNotFoundError as e:
        logger.error(
            f'URL ("{e.url}") not found. Please check the value for rpde_endpoint.',
            extra={'url': e.url, 'error_type': type(e).__name__}
        )
        logging.shutdown()
        return 1
    except BackoffExhaustedError as e:
        logger.error(
            'Cannot download feed pages, backoff limit reached',
            extra={'url': e.url, 'error_type': type(e).__name__}
        )
        logging.shutdown()
        return 1

    logger.info(
        "Feed download completed",
        extra={'duration_seconds': round(time.time() - start_time, 2)}
    )
    logging.shutdown()
    return 0


if __name__ == '__main__':
    sys.exit(main())
