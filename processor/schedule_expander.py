"""Expansion of weekly event schedules into dated occurrences."""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.parser import isoparse

from processor.models import EventSchedule, Occurrence, SCHEDULE_TYPE

logger = logging.getLogger(__name__)

START_DATE_PLACEHOLDER = '{startDate}'

ISO_WEEKDAYS = {
    'Monday': 1,
    'Tuesday': 2,
    'Wednesday': 3,
    'Thursday': 4,
    'Friday': 5,
    'Saturday': 6,
    'Sunday': 7
}

TIME_FORMATS = ['%H:%M', '%H:%M:%S']


def parse_time(time_str: Any) -> Optional[time]:
    """
    Parse an HH:MM or HH:MM:SS wall-clock time.

    Returns:
        time object or None if parsing fails
    """
    if not isinstance(time_str, str):
        return None
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(time_str.strip(), fmt).time()
        except ValueError:
            continue
    return None


def parse_date(date_str: Any) -> Optional[date]:
    """
    Parse the calendar date of a YYYY-MM-DD (or full ISO 8601) string.

    Returns:
        date object or None if parsing fails
    """
    if not isinstance(date_str, str) or not date_str.strip():
        return None
    try:
        return isoparse(date_str.strip()).date()
    except ValueError:
        return None


def resolve_timezone(name: str) -> Optional[ZoneInfo]:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        return None


def to_utc_string(moment: datetime) -> str:
    """Format an aware datetime as UTC ISO 8601, e.g. 2024-01-08T18:00:00Z."""
    return moment.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def validate_schedule(schedule: EventSchedule) -> List[str]:
    """
    Check that a schedule carries enough to generate occurrences.

    Args:
        schedule: Schedule to check

    Returns:
        List of problems, empty if the schedule can be expanded
    """
    problems = []
    if (not isinstance(schedule.by_day, list) or not schedule.by_day
            or not all(isinstance(day, str) for day in schedule.by_day)):
        problems.append('byDay should be a non-empty list of strings')
    if parse_time(schedule.start_time) is None:
        problems.append(f'startTime is missing or invalid: {schedule.start_time!r}')
    if parse_time(schedule.end_time) is None:
        problems.append(f'endTime is missing or invalid: {schedule.end_time!r}')
    if not isinstance(schedule.id_template, str):
        problems.append('idTemplate is required')
    if schedule.start_date is not None and parse_date(schedule.start_date) is None:
        problems.append(f'startDate is invalid: {schedule.start_date!r}')
    if schedule.end_date is not None and parse_date(schedule.end_date) is None:
        problems.append(f'endDate is invalid: {schedule.end_date!r}')
    if resolve_timezone(schedule.schedule_timezone) is None:
        problems.append(f'scheduleTimezone is unknown: {schedule.schedule_timezone!r}')
    return problems


def get_iso_weekdays(schedule: EventSchedule) -> List[int]:
    """
    Weekdays (1 = Monday .. 7 = Sunday) on which the schedule recurs.

    byDay entries are matched by weekday name, so both
    "https://schema.org/Monday" and "schema:Monday" are accepted. Without
    byDay, the startDate's weekday is the only one; without either there is
    nothing to go on and the result is empty.
    """
    if not isinstance(schedule.by_day, list):
        start_date = parse_date(schedule.start_date)
        if start_date is None:
            return []
        return [start_date.isoweekday()]

    weekdays = set()
    for by_day in schedule.by_day:
        if not isinstance(by_day, str):
            continue
        for name, iso_weekday in ISO_WEEKDAYS.items():
            if name in by_day:
                weekdays.add(iso_weekday)
                break
    return sorted(weekdays)


def _combine(day: date, wall_time: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, wall_time, tzinfo=tz)


def expand_schedule(schedule: EventSchedule, now: datetime, window: timedelta,
                    super_event_id: Optional[str] = None) -> Iterator[Occurrence]:
    """
    Generate the occurrences of a schedule between now and now + window.

    Occurrences are yielded in chronological order and generation stops at
    the first start after the latest allowed instant, so the sequence is
    always finite. The schedule is assumed to have passed validate_schedule.

    Args:
        schedule: Valid schedule to expand
        now: Current instant (timezone aware)
        window: How far past now to generate
        super_event_id: Parent series id recorded on each occurrence

    Yields:
        Occurrence objects
    """
    tz = resolve_timezone(schedule.schedule_timezone)
    start_time = parse_time(schedule.start_time)
    end_time = parse_time(schedule.end_time)
    if tz is None or start_time is None or end_time is None or schedule.id_template is None:
        return

    now_local = now.astimezone(tz)

    # Latest start: end of the time window, or the schedule's end date if sooner
    latest = (now.astimezone(timezone.utc) + window).astimezone(tz)
    schedule_end_date = parse_date(schedule.end_date)
    if schedule_end_date is not None:
        latest = min(latest, _combine(schedule_end_date, start_time, tz))

    # Earliest start: next startTime at or after now, or the schedule's start date if later
    earliest = _combine(now_local.date(), start_time, tz)
    if earliest < now_local:
        earliest = _combine(now_local.date() + timedelta(days=1), start_time, tz)
    schedule_start_date = parse_date(schedule.start_date)
    if schedule_start_date is not None:
        earliest = max(earliest, _combine(schedule_start_date, start_time, tz))

    if earliest > latest:
        return

    # Signed day offsets from earliest's weekday, ascending so output is ordered
    earliest_weekday = earliest.isoweekday()
    offsets = [weekday - earliest_weekday for weekday in get_iso_weekdays(schedule)]
    if not offsets:
        return

    earliest_day = earliest.date()
    for start_day in _iter_start_days(earliest_day, offsets):
        start = _combine(start_day, start_time, tz)
        if start > latest:
            return
        end = _combine(start_day, end_time, tz)
        start_utc = to_utc_string(start)
        yield Occurrence(
            id=schedule.id_template.replace(START_DATE_PLACEHOLDER, start_utc),
            start_date=start_utc,
            end_date=to_utc_string(end),
            super_event_id=super_event_id,
            duration=schedule.duration
        )


def _iter_start_days(earliest_day: date, offsets: List[int]) -> Iterator[date]:
    # First week: weekdays before earliest have already passed
    for offset in offsets:
        if offset >= 0:
            yield earliest_day + timedelta(days=offset)
    week = 1
    while True:
        for offset in offsets:
            yield earliest_day + timedelta(days=week * 7 + offset)
        week += 1


def correct_schedules(raw_schedules: Any, now: datetime, window: timedelta,
                      super_event_id: Optional[str] = None
                      ) -> Tuple[List[Dict[str, Any]], List[Occurrence]]:
    """
    Validate a series' eventSchedule list and expand its valid schedules.

    Schedules of type Schedule that fail validation are re-typed as
    PartialSchedule and generate nothing. Entries of any other type are kept
    as they are.

    Args:
        raw_schedules: The series' eventSchedule value
        now: Current instant
        window: Generation window
        super_event_id: Parent series id

    Returns:
        Tuple of (corrected schedule dicts, generated occurrences)
    """
    corrected: List[Dict[str, Any]] = []
    occurrences: List[Occurrence] = []
    if not isinstance(raw_schedules, list):
        return corrected, occurrences

    for raw_schedule in raw_schedules:
        if not isinstance(raw_schedule, dict):
            continue
        schedule = EventSchedule.from_dict(raw_schedule)
        if schedule.type != SCHEDULE_TYPE:
            corrected.append(raw_schedule)
            continue

        problems = validate_schedule(schedule)
        if problems:
            logger.debug(
                f"Schedule of {super_event_id} is partial: {'; '.join(problems)}"
            )
            corrected.append(schedule.to_partial())
            continue

        corrected.append(raw_schedule)
        occurrences.extend(expand_schedule(schedule, now, window, super_event_id))

    return corrected, occurrences
