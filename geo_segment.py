"""Geo-segmentation of an OpenActive RPDE firehose into flat files."""
import json
import logging
import sys
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from feed.errors import BackoffExhaustedError, FeedNotFoundError
from feed.feed_walker import FeedWalker
from feed.rpde_client import RpdeFeedClient
from processor.feed_processor import (
    SESSION_SERIES_NAMESPACE,
    OccurrenceProcessor,
    SeriesProcessor,
    segment_namespace,
    utc_now
)
from settings import Settings, load_settings
from storage.hash_store import HashStore

LOG_FILENAME = 'log.txt'

# Structured fields copied from log records into the JSON output
EXTRA_FIELDS = ('url', 'hash', 'existing_id', 'incoming_id', 'error', 'error_type',
                'statistics', 'duration_seconds')


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for field in EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO', log_file_path: Optional[Path] = None) -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file_path: Also append log lines to this file when given
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    handlers = [logging.StreamHandler()]
    if log_file_path is not None:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file_path, encoding='utf-8'))

    for handler in handlers:
        handler.setFormatter(JsonFormatter())
        root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def run(settings: Settings,
        client: Optional[RpdeFeedClient] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep) -> Dict[str, Any]:
    """
    Walk the session series feed, then the scheduled sessions feed, writing
    segmented output under settings.output_dir.

    Args:
        settings: Run settings
        client: Feed client (built from settings when omitted)
        clock: Returns the current instant
        sleep: Sleep function used between pages and retries

    Returns:
        Summary statistics of both walks

    Raises:
        FeedNotFoundError: If a feed URL returns HTTP 404
        BackoffExhaustedError: If a page cannot be fetched within the backoff limit
    """
    logger = logging.getLogger(__name__)

    store = HashStore(settings.output_dir)
    segment_namespaces = [segment_namespace(s.identifier) for s in settings.segments]
    store.prepare(
        [SESSION_SERIES_NAMESPACE] + segment_namespaces,
        clean=settings.clean_output,
        listed=segment_namespaces
    )

    client = client or RpdeFeedClient(
        api_key=settings.feed_api_key,
        timeout=settings.timeout_seconds
    )
    walker = FeedWalker(
        client.fetch_page,
        min_request_delay_seconds=settings.min_request_delay_seconds,
        sleep=sleep
    )

    # Scheduled sessions can only be linked to series that are already stored
    series_processor = SeriesProcessor(
        store, settings.segments, window=settings.schedule_window, clock=clock
    )
    logger.info("Downloading SessionSeries feed", extra={'url': settings.session_series_url})
    series_walk = walker.walk(settings.session_series_url, series_processor.process_items)
    logger.info("Downloaded SessionSeries feed")

    occurrence_processor = OccurrenceProcessor(
        store, window=settings.occurrence_window, clock=clock
    )
    logger.info("Downloading ScheduledSession feed", extra={'url': settings.scheduled_sessions_url})
    occurrence_walk = walker.walk(
        settings.scheduled_sessions_url, occurrence_processor.process_items
    )
    logger.info("Downloaded ScheduledSession feed")

    return {
        'session_series': {'pages': series_walk.pages, **series_processor.stats.to_dict()},
        'scheduled_sessions': {
            'pages': occurrence_walk.pages,
            **occurrence_processor.stats.to_dict()
        }
    }


def main() -> int:
    """
    Command line entry point.

    Returns:
        Process exit status: 0 on success, 1 on any fatal error
    """
    start_time = time.time()
    setup_logging('INFO')
    logger = logging.getLogger(__name__)

    try:
        settings = load_settings()
    except (OSError, ValueError) as e:
        logger.error(f"Config file is invalid: {e}", extra={'error_type': type(e).__name__})
        logging.shutdown()
        return 1

    # Empty the output directory before log.txt is opened inside it
    if settings.clean_output:
        HashStore(settings.output_dir).prepare([], clean=True)
        settings = replace(settings, clean_output=False)
    setup_logging(settings.log_level, settings.output_dir / LOG_FILENAME)
    logger.info(
        "geoSegment starting",
        extra={'url': settings.feed_base_url}
    )

    try:
        statistics = run(settings)
    except (FeedNotFoundError, BackoffExhaustedError) as e:
        duration = time.time() - start_time
        logger.error(
            f"Run aborted: {e}",
            extra={
                'url': e.url,
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            }
        )
        logging.shutdown()
        return 1
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Run failed: {e}",
            extra={
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            },
            exc_info=True
        )
        logging.shutdown()
        return 1

    duration = time.time() - start_time
    logger.info(
        "Run completed successfully",
        extra={'statistics': statistics, 'duration_seconds': round(duration, 2)}
    )
    logging.shutdown()
    return 0


if __name__ == '__main__':
    sys.exit(main())
