"""Assignment of events to geographic / attendance-mode segments."""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from geopy.distance import great_circle

from processor.models import AttendanceModeFilter, Segment

logger = logging.getLogger(__name__)

OFFLINE_MODE = 'OfflineEventAttendanceMode'
ONLINE_MODE = 'OnlineEventAttendanceMode'
MIXED_MODE = 'MixedEventAttendanceMode'

AFFILIATED_LOCATION = 'beta:affiliatedLocation'


def get_attendance_mode(item: Dict[str, Any]) -> str:
    """
    Bare attendance mode name of an event; offline when unspecified.

    "https://schema.org/OnlineEventAttendanceMode",
    "schema:OnlineEventAttendanceMode" and "OnlineEventAttendanceMode" all
    give "OnlineEventAttendanceMode".
    """
    mode = item.get('eventAttendanceMode')
    if not isinstance(mode, str) or not mode:
        return OFFLINE_MODE
    return mode.rstrip('/').rsplit('/', 1)[-1].rsplit(':', 1)[-1]


def supports_online(item: Dict[str, Any]) -> bool:
    return get_attendance_mode(item) in (ONLINE_MODE, MIXED_MODE)


def supports_offline(item: Dict[str, Any]) -> bool:
    return get_attendance_mode(item) in (OFFLINE_MODE, MIXED_MODE)


def get_geo(item: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """
    (latitude, longitude) of an event's location.

    Falls back to beta:affiliatedLocation when location has no geo.

    Returns:
        Coordinate pair or None if there is no usable geo
    """
    for location_key in ('location', AFFILIATED_LOCATION):
        location = item.get(location_key)
        if not isinstance(location, dict):
            continue
        geo = location.get('geo')
        if not isinstance(geo, dict):
            continue
        latitude = _to_float(geo.get('latitude'))
        longitude = _to_float(geo.get('longitude'))
        if (latitude is not None and longitude is not None
                and -90 <= latitude <= 90 and -180 <= longitude <= 180):
            return latitude, longitude
    return None


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def matches_attendance_filter(segment: Segment, is_online: bool, is_offline: bool) -> bool:
    if segment.attendance_mode_filter == AttendanceModeFilter.ALL:
        return True
    if segment.attendance_mode_filter == AttendanceModeFilter.PHYSICAL_ONLY:
        return is_offline
    if segment.attendance_mode_filter == AttendanceModeFilter.VIRTUAL_ONLY:
        return is_online
    raise ValueError(
        f"Unrecognised attendanceModeFilter: {segment.attendance_mode_filter}"
    )


def assign_segments(item: Dict[str, Any], segments: Sequence[Segment]) -> List[str]:
    """
    Work out which segments an event belongs to.

    An event that can be attended in person but has no geo cannot be placed,
    so it belongs to no segment. Purely online events without a location are
    only filtered by attendance mode.

    Args:
        item: Event data (a series, or an occurrence merged with its series)
        segments: Configured segments

    Returns:
        Segment identifiers in configured order
    """
    geo = get_geo(item)
    is_online = supports_online(item)
    is_offline = supports_offline(item)
    if geo is None and is_offline:
        return []

    identifiers = []
    for segment in segments:
        if not matches_attendance_filter(segment, is_online, is_offline):
            continue
        if geo is not None:
            distance_km = great_circle(geo, (segment.latitude, segment.longitude)).km
            if distance_km > segment.radius_km:
                continue
        identifiers.append(segment.identifier)
    return identifiers
