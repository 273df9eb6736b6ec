"""Data models for feed processing."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


DEFAULT_SCHEDULE_TIMEZONE = 'Europe/London'

SCHEDULE_TYPE = 'Schedule'
PARTIAL_SCHEDULE_TYPE = 'PartialSchedule'
SCHEDULED_SESSION_TYPE = 'ScheduledSession'


class ItemState(str, Enum):
    """RPDE item state."""
    UPDATED = 'updated'
    DELETED = 'deleted'


class AttendanceModeFilter(str, Enum):
    """Which attendance modes a segment accepts."""
    ALL = 'all'
    PHYSICAL_ONLY = 'physical-only'
    VIRTUAL_ONLY = 'virtual-only'


@dataclass(frozen=True)
class FeedItem:
    """Single item of an RPDE page."""
    id: Optional[str]
    state: ItemState
    kind: Optional[str]
    data: Dict[str, Any]
    modified: Any = None

    @property
    def is_deleted(self) -> bool:
        return self.state == ItemState.DELETED

    def to_dict(self) -> Dict[str, Any]:
        """RPDE item as it appeared in the page."""
        item = {'state': self.state.value, 'id': self.id}
        if self.kind is not None:
            item['kind'] = self.kind
        if self.modified is not None:
            item['modified'] = self.modified
        if not self.is_deleted:
            item['data'] = self.data
        return item


@dataclass
class FeedPage:
    """Validated RPDE page."""
    items: List[FeedItem]
    next_url: str


@dataclass(frozen=True)
class Segment:
    """Output partition defined by a circle and an attendance mode filter."""
    identifier: str
    latitude: float
    longitude: float
    radius_km: float
    attendance_mode_filter: AttendanceModeFilter = AttendanceModeFilter.ALL


@dataclass
class EventSchedule:
    """
    An OpenActive eventSchedule entry.

    Keeps the raw dict so that unrecognised fields survive into the
    persisted series record.
    """
    by_day: Optional[List[str]]
    start_time: Optional[str]
    end_time: Optional[str]
    start_date: Optional[str]
    end_date: Optional[str]
    schedule_timezone: str
    id_template: Optional[str]
    duration: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventSchedule':
        return cls(
            by_day=data.get('byDay'),
            start_time=data.get('startTime'),
            end_time=data.get('endTime'),
            start_date=data.get('startDate'),
            end_date=data.get('endDate'),
            schedule_timezone=data.get('scheduleTimezone') or DEFAULT_SCHEDULE_TIMEZONE,
            id_template=data.get('idTemplate'),
            duration=data.get('duration'),
            raw=dict(data)
        )

    @property
    def type(self) -> Optional[str]:
        return self.raw.get('type')

    def to_partial(self) -> Dict[str, Any]:
        """Raw dict re-typed as a non-generating PartialSchedule."""
        return {**self.raw, 'type': PARTIAL_SCHEDULE_TYPE}


@dataclass
class Occurrence:
    """Concrete dated instance of a series."""
    id: str
    start_date: str
    end_date: str
    super_event_id: Optional[str] = None
    duration: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': SCHEDULED_SESSION_TYPE,
            'id': self.id,
            'startDate': self.start_date,
            'endDate': self.end_date
        }
        if self.duration:
            data['duration'] = self.duration
        if self.super_event_id:
            data['superEvent'] = self.super_event_id
        return data


@dataclass
class ProcessingStats:
    """Counters for one walk over a feed."""
    items: int = 0
    dropped: int = 0
    written: int = 0
    already_present: int = 0
    collisions: int = 0
    occurrences_generated: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'items': self.items,
            'dropped': self.dropped,
            'written': self.written,
            'already_present': self.already_present,
            'collisions': self.collisions,
            'occurrences_generated': self.occurrences_generated
        }
