"""Processing of session series and scheduled session feed items."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from dateutil.parser import isoparse

from processor.merge import merge_into_model, merge_occurrence
from processor.models import FeedItem, ProcessingStats, Segment
from processor.schedule_expander import correct_schedules
from processor.segmenter import assign_segments, get_geo, supports_online
from storage.hash_store import HashStore, StoreOutcome

logger = logging.getLogger(__name__)

SESSION_SERIES_NAMESPACE = 'sessionseries'
SEGMENTS_NAMESPACE = 'segments'
MODEL_FILENAME = 'model.json'

SEGMENT_ATTRIBUTE = 'imin:segment'
PRESENT_AS_SLOTS = 'beta:presentAsSlots'


def segment_namespace(segment_identifier: str) -> str:
    return f"{SEGMENTS_NAMESPACE}/{segment_identifier}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OccurrenceWriter:
    """Merges occurrences with their series and writes them into segments."""

    def __init__(self, store: HashStore, stats: ProcessingStats):
        self.store = store
        self.stats = stats

    def write(self, occurrence: Dict[str, Any], series: Dict[str, Any]) -> None:
        """
        Merge an occurrence with its series and persist it into every segment
        of the series.

        Every stored occurrence ends up in the segment listing; a
        newly written one is also folded into the segment's model example.
        """
        merged = merge_occurrence(occurrence, series)
        for segment_identifier in series.get(SEGMENT_ATTRIBUTE) or []:
            namespace = segment_namespace(segment_identifier)
            result = self.store.put(merged['id'], namespace, merged)

            if result.outcome == StoreOutcome.COLLISION_SKIPPED:
                self.stats.collisions += 1
                continue

            # A previous run may have stopped between the write and the listing
            self.store.append_to_listing(namespace, result.key)
            if result.outcome == StoreOutcome.ALREADY_IDENTICAL:
                self.stats.already_present += 1
                continue

            self.stats.written += 1
            self.store.update_json(
                namespace, MODEL_FILENAME,
                lambda model: merge_into_model(model or {}, merged)
            )


class SeriesProcessor:
    """Processes session series items: segments them, stores them and
    generates their scheduled sessions."""

    def __init__(self, store: HashStore, segments: Sequence[Segment],
                 window: timedelta = timedelta(weeks=4),
                 clock: Callable[[], datetime] = utc_now):
        """
        Initialize the processor.

        Args:
            store: Output store
            segments: Configured segments
            window: How far ahead scheduled sessions are generated
            clock: Returns the current (timezone aware) instant
        """
        self.store = store
        self.segments = list(segments)
        self.window = window
        self.clock = clock
        self.stats = ProcessingStats()
        self.writer = OccurrenceWriter(store, self.stats)

    def process_items(self, items: List[FeedItem]) -> None:
        """Process one page of session series items."""
        now = self.clock()
        for item in items:
            self.stats.items += 1
            if not self._process_item(item, now):
                self.stats.dropped += 1

    def _process_item(self, item: FeedItem, now: datetime) -> bool:
        if item.is_deleted or not item.id:
            return False

        data = item.data
        series_id = str(data.get('id') or item.id)

        # Physical events need a geo; virtual ones are kept without one
        if get_geo(data) is None and not supports_online(data):
            return False

        # High-frequency "slot" data is not useful as listings
        super_event = data.get('superEvent')
        if data.get(PRESENT_AS_SLOTS) or (
                isinstance(super_event, dict) and super_event.get(PRESENT_AS_SLOTS)):
            return False

        segment_identifiers = assign_segments(data, self.segments)
        if not segment_identifiers:
            return False

        corrected_schedules, occurrences = correct_schedules(
            data.get('eventSchedule'), now, self.window, super_event_id=series_id
        )
        record = {
            **data,
            'id': series_id,
            SEGMENT_ATTRIBUTE: segment_identifiers,
            'eventSchedule': corrected_schedules
        }

        result = self.store.put(series_id, SESSION_SERIES_NAMESPACE, record)
        if result.outcome == StoreOutcome.COLLISION_SKIPPED:
            self.stats.collisions += 1
            return True
        if result.outcome == StoreOutcome.ALREADY_IDENTICAL:
            self.stats.already_present += 1
        else:
            self.stats.written += 1

        self.stats.occurrences_generated += len(occurrences)
        for occurrence in occurrences:
            self.writer.write(occurrence.to_dict(), record)
        return True


class OccurrenceProcessor:
    """Processes scheduled session items by attaching them to stored series."""

    def __init__(self, store: HashStore, window: timedelta = timedelta(weeks=1),
                 clock: Callable[[], datetime] = utc_now):
        """
        Initialize the processor.

        Args:
            store: Output store holding the already processed series
            window: How far ahead scheduled sessions are accepted
            clock: Returns the current (timezone aware) instant
        """
        self.store = store
        self.window = window
        self.clock = clock
        self.stats = ProcessingStats()
        self.writer = OccurrenceWriter(store, self.stats)

    def process_items(self, items: List[FeedItem]) -> None:
        """Process one page of scheduled session items."""
        now = self.clock()
        for item in items:
            self.stats.items += 1
            if not self._process_item(item, now):
                self.stats.dropped += 1

    def _process_item(self, item: FeedItem, now: datetime) -> bool:
        if item.is_deleted or not item.id:
            return False

        data = item.data
        start = parse_start_date(data.get('startDate'))
        if start is None:
            return False
        # Past, or beyond the time window
        if start < now or start > now + self.window:
            return False

        super_event_id = get_super_event_id(data)
        if not super_event_id:
            return False

        series = self.store.get(super_event_id, SESSION_SERIES_NAMESPACE)
        if series is None:
            return False
        if series.get('id') != super_event_id:
            key = self.store.path_for(SESSION_SERIES_NAMESPACE, super_event_id).stem
            logger.warning(
                f"ScheduledSession superEvent:{super_event_id} and SessionSeries "
                f"ID: {series.get('id')} are not the same despite having the same "
                f"hash: {key}",
                extra={'existing_id': series.get('id'), 'incoming_id': super_event_id,
                       'hash': key}
            )
            self.stats.collisions += 1
            return False

        occurrence = {**data, 'id': str(data.get('id') or item.id)}
        self.writer.write(occurrence, series)
        return True


def parse_start_date(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 start date; naive values are taken as UTC.

    Returns:
        Aware datetime or None if missing or unparseable
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = isoparse(value)
    except ValueError:
        logger.warning(f"Invalid startDate: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_super_event_id(data: Dict[str, Any]) -> Optional[str]:
    """Parent series id of a scheduled session (a URL or an embedded object's id)."""
    super_event = data.get('superEvent')
    if isinstance(super_event, dict):
        super_event = super_event.get('id') or super_event.get('@id')
    return str(super_event) if super_event else None
