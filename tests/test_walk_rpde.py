"""Integration tests for the RPDE feed downloader."""
import json
import logging
import math
from datetime import date
from pathlib import Path

import pytest
import responses

from feed.errors import FeedNotFoundError
from walk_rpde import (
    MIN_REQUEST_DELAY_SECONDS,
    dump_feed,
    main,
    parse_request_delay
)

FEED_URL = 'https://firehose.example.com/session-series'
PAGE_2 = 'https://firehose.example.com/session-series/page-2'
TODAY = date(2024, 1, 4)


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def feed():
    """Register a two-page feed whose second page is the last."""
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, FEED_URL, json={
            'items': [
                {'id': 'a', 'state': 'updated', 'kind': 'SessionSeries', 'modified': 10,
                 'data': {'name': 'Yoga'}},
                {'id': 'b', 'state': 'deleted', 'kind': 'SessionSeries', 'modified': 11},
                {'id': 'c', 'state': 'updated', 'kind': 'SessionSeries', 'modified': 12,
                 'data': {'name': 'Pilates'}}
            ],
            'next': PAGE_2
        })
        rsps.add(responses.GET, PAGE_2, json={
            'items': [
                {'id': 'd', 'state': 'updated', 'kind': 'SessionSeries', 'modified': 13,
                 'data': {'name': 'Spin'}}
            ],
            'next': PAGE_2
        })
        yield rsps


@pytest.fixture
def restore_logging():
    """Put the root logger back the way pytest configured it."""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)


class TestDumpFeed:
    """Test cases for dump_feed."""

    def test_updated_items_saved_one_per_file(self, feed, sleep, tmp_path):
        """Test that each updated item gets its own file named by page and position."""
        output_dir = tmp_path / 'dump'

        result = dump_feed(FEED_URL, 'secret', output_dir, 'series',
                           sleep=sleep, today=TODAY)

        assert result.pages == 2
        assert result.items == 4
        assert sorted(p.name for p in output_dir.iterdir()) == [
            'series-index.html',
            'series-rpde-0-0.json',
            'series-rpde-0-2.json',
            'series-rpde-1-0.json'
        ]
        saved = json.loads((output_dir / 'series-rpde-0-2.json').read_text())
        assert saved == {
            'state': 'updated',
            'id': 'c',
            'kind': 'SessionSeries',
            'modified': 12,
            'data': {'name': 'Pilates'},
            'datestamp': '04/01/2024'
        }

    def test_index_lists_saved_files(self, feed, sleep, tmp_path):
        """Test the index file contents."""
        output_dir = tmp_path / 'dump'

        dump_feed(FEED_URL, 'secret', output_dir, 'series', sleep=sleep, today=TODAY)

        assert (output_dir / 'series-index.html').read_text() == (
            '<a href="/series-rpde-0-0.json">file</a>'
            '<a href="/series-rpde-0-2.json">file</a>'
            '<a href="/series-rpde-1-0.json">file</a>'
        )

    def test_api_key_header_sent(self, feed, sleep, tmp_path):
        dump_feed(FEED_URL, 'secret', tmp_path / 'dump', 'series', sleep=sleep, today=TODAY)

        assert all(call.request.headers['X-API-Key'] == 'secret' for call in feed.calls)

    def test_request_delay_has_a_minimum(self, feed, sleep, tmp_path):
        """Test that the delay between pages is never below the minimum."""
        dump_feed(FEED_URL, 'secret', tmp_path / 'dump', 'series',
                  request_delay_seconds=0, sleep=sleep, today=TODAY)

        assert sleep.calls == [MIN_REQUEST_DELAY_SECONDS]

    def test_output_directory_is_emptied(self, feed, sleep, tmp_path):
        """Test that files from a previous download are removed."""
        output_dir = tmp_path / 'dump'
        output_dir.mkdir()
        (output_dir / 'series-rpde-9-9.json').write_text('{}')

        dump_feed(FEED_URL, 'secret', output_dir, 'series', sleep=sleep, today=TODAY)

        assert not (output_dir / 'series-rpde-9-9.json').exists()

    def test_filesystem_root_refused(self, sleep):
        """Test that the filesystem root is never emptied."""
        root = Path(Path.cwd().anchor)

        with pytest.raises(ValueError):
            dump_feed(FEED_URL, 'secret', root, 'series', sleep=sleep, today=TODAY)

    @responses.activate
    def test_missing_feed_aborts(self, sleep, tmp_path):
        """Test that a 404 aborts without retrying."""
        responses.add(responses.GET, FEED_URL, status=404)

        with pytest.raises(FeedNotFoundError):
            dump_feed(FEED_URL, 'secret', tmp_path / 'dump', 'series', sleep=sleep, today=TODAY)

        assert sleep.calls == []
        assert (tmp_path / 'dump' / 'series-index.html').read_text() == ''

    @responses.activate
    def test_transient_error_retried(self, sleep, tmp_path):
        """Test that a failed page is retried and the download completes."""
        responses.add(responses.GET, FEED_URL, status=503)
        responses.add(responses.GET, FEED_URL, json={'items': [], 'next': FEED_URL})

        result = dump_feed(FEED_URL, 'secret', tmp_path / 'dump', 'series',
                           sleep=sleep, today=TODAY)

        assert result.pages == 1
        assert sleep.calls == [1]


@pytest.mark.parametrize('value,expected', [
    ('2.5', 2.5),
    ('0', MIN_REQUEST_DELAY_SECONDS),
    ('-1', MIN_REQUEST_DELAY_SECONDS),
    ('soon', MIN_REQUEST_DELAY_SECONDS),
    ('nan', MIN_REQUEST_DELAY_SECONDS)
])
def test_parse_request_delay(value, expected):
    """Test the request delay argument parsing."""
    delay = parse_request_delay(value)

    assert not math.isnan(delay)
    assert delay == expected


@pytest.mark.usefixtures('restore_logging')
class TestMain:
    """Test cases for the command line entry point."""

    def test_success(self, feed, tmp_path):
        """Test a successful download exits 0."""
        output_dir = tmp_path / 'dump'

        assert main([FEED_URL, 'secret', str(output_dir), 'series', '0']) == 0
        assert (output_dir / 'series-rpde-1-0.json').exists()

    @responses.activate
    def test_missing_feed_exits_1(self, tmp_path):
        """Test that a 404 exits with status 1."""
        responses.add(responses.GET, FEED_URL, status=404)

        assert main([FEED_URL, 'secret', str(tmp_path / 'dump'), 'series', '0']) == 1

    def test_filesystem_root_exits_1(self):
        """Test that the filesystem root is refused as output directory."""
        root = Path.cwd().anchor

        assert main([FEED_URL, 'secret', root, 'series', '0']) == 1

    def test_wrong_argument_count(self):
        with pytest.raises(SystemExit):
            main([FEED_URL, 'secret'])
