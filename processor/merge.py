"""Merging of occurrences with their parent series."""
from typing import Any, Dict

from storage.hash_store import stable_hash

SUPER_EVENT = 'superEvent'
FILE_IDENTIFIER = 'imin:fileIdentifier'

# Lists of strings in the model example stop growing at this length
MODEL_LIST_LIMIT = 10


def merge_occurrence(occurrence: Dict[str, Any], series: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge an occurrence with the series it belongs to.

    Attributes are layered, later layers winning:
      1. the series' superEvent (e.g. the course a session series is part of)
      2. the series itself, without its superEvent
      3. the occurrence

    The name is the occurrence's own, then the superEvent's, then the
    series'. The result records the hash of the occurrence id under
    imin:fileIdentifier.

    Args:
        occurrence: Occurrence data, including its "id"
        series: Stored series record

    Returns:
        New merged dict; neither argument is modified
    """
    super_event = series.get(SUPER_EVENT)
    merged: Dict[str, Any] = {}
    if isinstance(super_event, dict):
        merged.update(super_event)
    merged.update({key: value for key, value in series.items() if key != SUPER_EVENT})
    merged.update(occurrence)

    name = (
        occurrence.get('name')
        or (super_event.get('name') if isinstance(super_event, dict) else None)
        or series.get('name')
    )
    if name:
        merged['name'] = name

    merged[FILE_IDENTIFIER] = stable_hash(merged['id'])
    return merged


def merge_into_model(model: Any, data: Any) -> Any:
    """
    Fold one record into a model example covering every field seen so far.

    Objects are merged recursively. When only one side is an object, or only
    one side is a list, that side wins. Lists are merged with merge_lists;
    for any other pair of values the new data wins.
    """
    if isinstance(model, dict) and not isinstance(data, dict):
        return model
    if isinstance(data, dict) and not isinstance(model, dict):
        return data
    if isinstance(model, list) and not isinstance(data, list):
        return model
    if isinstance(data, list) and not isinstance(model, list):
        return data

    if isinstance(model, dict):
        merged = dict(model)
        for key, value in data.items():
            merged[key] = merge_into_model(merged[key], value) if key in merged else value
        return merged
    if isinstance(model, list):
        return merge_lists(model, data)
    return data


def merge_lists(target: list, source: list) -> list:
    """
    Merge two lists for the model example.

    Lists of strings are unioned (order kept, at most MODEL_LIST_LIMIT
    items). Lists of objects collapse into a single merged object. Anything
    else is taken from source as-is.
    """
    if all(isinstance(s, str) for s in target) and all(isinstance(s, str) for s in source):
        return list(dict.fromkeys(target + source))[:MODEL_LIST_LIMIT]
    if all(isinstance(s, dict) for s in target) and all(isinstance(s, dict) for s in source):
        destination: Any = target[0] if target else {}
        for item in source:
            destination = merge_into_model(destination, item)
        return [destination]
    return source
