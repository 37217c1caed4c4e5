"""
Construction of outbound analytics events.

An `Event` is built once per `capture`/`batch` call and is ready to be
serialized as soon as it exists: the name is a string, the property keys are
strings all the way down, and the library metadata (`$lib`, `$lib_version`)
has been merged in underneath the caller's own properties.

Examples:
    ```python
    event = build_event("movie played", "user_123", {"movie_id": 42})
    to_api_payload(event)
    # {"event": "movie played", "distinct_id": "user_123",
    #  "properties": {"$lib": "posthog-lite", "$lib_version": "...", "movie_id": 42},
    #  "uuid": "0192...", "timestamp": "2024-..."}
    ```
"""

import logging
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union
from uuid import UUID

from posthog_lite.utils import guess_timezone, stringify_id, utc_now, uuid7
from posthog_lite.version import VERSION

LIB_NAME = "posthog-lite"

log = logging.getLogger("posthog_lite")


def lib_properties() -> Dict[str, str]:
    return {"$lib": LIB_NAME, "$lib_version": VERSION}


@dataclass(frozen=True)
class Event:
    event: str
    distinct_id: str
    properties: Dict[str, Any] = field(default_factory=dict)
    uuid: str = ""
    timestamp: str = ""


def stringify_key(key) -> str:
    if isinstance(key, str):
        return key
    if isinstance(key, Enum):
        return key.value if isinstance(key.value, str) else key.name
    if isinstance(key, bytes):
        return key.decode("utf-8", "replace")
    return str(key)


def _is_pair_sequence(value) -> bool:
    # [("key", value), ...] is treated as a mapping; lists of lists stay lists
    return (
        isinstance(value, list)
        and len(value) > 0
        and all(
            isinstance(item, tuple)
            and len(item) == 2
            and isinstance(item[0], (str, Enum))
            for item in value
        )
    )


def stringify_keys(value):
    """
    Recursively turn every mapping key into a string and every value into
    something JSON can carry.

    Mappings, dataclasses, pydantic-style models and sequences of
    `(key, value)` tuples become dicts; lists, tuples and sets become lists;
    scalars are passed through, except `Decimal` (to float), `UUID` (to str)
    and enum members (to their value).
    """
    if isinstance(value, Mapping):
        return {stringify_key(k): stringify_keys(v) for k, v in value.items()}
    if _is_pair_sequence(value):
        return {stringify_key(k): stringify_keys(v) for k, v in value}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [stringify_keys(item) for item in value]
    if isinstance(value, (str, bool, int, float, datetime, date, type(None))):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return stringify_keys(value.value)
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    if is_dataclass(value) and not isinstance(value, type):
        return stringify_keys(asdict(value))
    # Pydantic model
    try:
        # v2+
        if hasattr(value, "model_dump") and callable(value.model_dump):
            return stringify_keys(value.model_dump())
        # v1
        if hasattr(value, "dict") and callable(value.dict):
            return stringify_keys(value.dict())
    except TypeError as e:
        log.debug(f"Could not serialize Pydantic-like model: {e}")
    return str(value)


def _format_timestamp(timestamp: Union[datetime, str, None], now: Callable[[], str]) -> str:
    if timestamp is None:
        return now()
    if isinstance(timestamp, datetime):
        return guess_timezone(timestamp).isoformat()
    return str(timestamp)


def build_event(
    event,
    distinct_id,
    properties: Optional[Mapping] = None,
    *,
    timestamp: Union[datetime, str, None] = None,
    uuid: Union[UUID, str, None] = None,
    now: Callable[[], str] = utc_now,
    uuid_factory: Callable[[], Any] = uuid7,
) -> Event:
    """
    Build an `Event`, generating its identity and timestamp unless given.

    `now` and `uuid_factory` can be swapped out to make the output
    deterministic. Caller properties win over the library metadata keys.
    """
    merged = {**lib_properties(), **stringify_keys(properties or {})}
    return Event(
        event=stringify_key(event),
        distinct_id=stringify_id(distinct_id),
        properties=merged,
        uuid=stringify_id(uuid) if uuid else str(uuid_factory()),
        timestamp=_format_timestamp(timestamp, now),
    )


def to_api_payload(event: Event) -> Dict[str, Any]:
    return {
        "event": event.event,
        "distinct_id": event.distinct_id,
        "properties": event.properties,
        "uuid": event.uuid,
        "timestamp": event.timestamp,
    }


def batch_payload(events: Iterable[Event]) -> Dict[str, List[Dict[str, Any]]]:
    return {"batch": [to_api_payload(event) for event in events]}
