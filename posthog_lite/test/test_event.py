import unittest
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from dateutil.tz import tzutc
from parameterized import parameterized

from posthog_lite.event import (
    LIB_NAME,
    Event,
    batch_payload,
    build_event,
    stringify_keys,
    to_api_payload,
)
from posthog_lite.version import VERSION

FIXED_NOW = "2024-03-20T10:00:00+00:00"
FIXED_UUID = "01890f4e-6f5a-7c3b-9d2e-4a1b2c3d4e5f"


class Color(Enum):
    RED = "red"
    BLUE = 2


@dataclass
class Movie:
    title: str
    year: int


class FakeModel:
    def model_dump(self):
        return {"name": "model", Color.RED: 1}


def _build(name="test_event", distinct_id="user_123", properties=None, **kwargs):
    kwargs.setdefault("now", lambda: FIXED_NOW)
    kwargs.setdefault("uuid_factory", lambda: FIXED_UUID)
    return build_event(name, distinct_id, properties, **kwargs)


class TestBuildEvent(unittest.TestCase):
    def test_defaults(self):
        event = build_event("test_event", "user_123")

        self.assertEqual(event.event, "test_event")
        self.assertEqual(event.distinct_id, "user_123")
        self.assertEqual(
            event.properties, {"$lib": LIB_NAME, "$lib_version": VERSION}
        )
        self.assertIsInstance(event.timestamp, str)
        self.assertEqual(datetime.fromisoformat(event.timestamp).tzinfo.utcoffset(None).total_seconds(), 0)
        self.assertEqual(len(event.uuid), 36)
        self.assertEqual(UUID(event.uuid).version, 7)

    def test_uses_injected_clock_and_id_generator(self):
        event = _build()

        self.assertEqual(event.timestamp, FIXED_NOW)
        self.assertEqual(event.uuid, FIXED_UUID)

    def test_explicit_timestamp_and_uuid_win(self):
        uuid = "123e4567-e89b-12d3-a456-426614174000"
        event = _build(timestamp="2023-01-01T00:00:00Z", uuid=uuid)

        self.assertEqual(event.timestamp, "2023-01-01T00:00:00Z")
        self.assertEqual(event.uuid, uuid)

    def test_uuid_objects_are_stringified(self):
        uuid = UUID("123e4567-e89b-12d3-a456-426614174000")

        self.assertEqual(_build(uuid=uuid).uuid, str(uuid))

    def test_datetime_timestamp_is_formatted(self):
        event = _build(timestamp=datetime(2023, 1, 1, 12, 30, tzinfo=tzutc()))

        self.assertEqual(event.timestamp, "2023-01-01T12:30:00+00:00")

    def test_naive_old_datetime_is_assumed_utc(self):
        event = _build(timestamp=datetime(2020, 1, 1, 0, 0))

        self.assertEqual(event.timestamp, "2020-01-01T00:00:00+00:00")

    @parameterized.expand(
        [
            ("string", "page_view", "page_view"),
            ("enum", Color.RED, "red"),
            ("number", 42, "42"),
        ]
    )
    def test_event_name_is_coerced_to_string(self, _name, name, expected):
        self.assertEqual(_build(name=name).event, expected)

    def test_distinct_id_is_coerced_to_string(self):
        self.assertEqual(_build(distinct_id=123).distinct_id, "123")

    def test_merges_user_properties_with_library_properties(self):
        event = _build(properties={"user_id": 123, "custom": "value"})

        self.assertEqual(
            event.properties,
            {
                "$lib": LIB_NAME,
                "$lib_version": VERSION,
                "user_id": 123,
                "custom": "value",
            },
        )

    def test_user_properties_override_library_properties(self):
        event = _build(properties={"$lib": "custom", "$lib_version": "1.0.0"})

        self.assertEqual(event.properties["$lib"], "custom")
        self.assertEqual(event.properties["$lib_version"], "1.0.0")

    def test_nested_keys_are_stringified(self):
        event = _build(
            properties={
                Color.RED: "bar",
                "nested": {Color.BLUE: 123, 1: {"deep": [{Color.RED: True}]}},
            }
        )

        self.assertEqual(
            event.properties,
            {
                "$lib": LIB_NAME,
                "$lib_version": VERSION,
                "red": "bar",
                "nested": {"BLUE": 123, "1": {"deep": [{"red": True}]}},
            },
        )

    def test_input_properties_are_not_mutated(self):
        properties = {"a": {"b": 1}}

        _build(properties=properties)

        self.assertEqual(properties, {"a": {"b": 1}})


class TestStringifyKeys(unittest.TestCase):
    def test_pair_sequences_become_mappings(self):
        self.assertEqual(
            stringify_keys({"user": [("first_name", "John"), (Color.RED, 1)]}),
            {"user": {"first_name": "John", "red": 1}},
        )

    def test_plain_sequences_stay_sequences(self):
        self.assertEqual(
            stringify_keys({"tags": ["python", "posthog"], "pairs": [["a", 1]]}),
            {"tags": ["python", "posthog"], "pairs": [["a", 1]]},
        )

    def test_tuples_and_sets_become_lists(self):
        self.assertEqual(stringify_keys((1, 2)), [1, 2])
        self.assertEqual(stringify_keys({3}), [3])

    def test_empty_list_stays_list(self):
        self.assertEqual(stringify_keys([]), [])

    def test_dataclasses_become_mappings(self):
        self.assertEqual(
            stringify_keys({"movie": Movie("Jaws", 1975)}),
            {"movie": {"title": "Jaws", "year": 1975}},
        )

    def test_pydantic_like_models_become_mappings(self):
        self.assertEqual(stringify_keys(FakeModel()), {"name": "model", "red": 1})

    @parameterized.expand(
        [
            ("decimal", Decimal("1.5"), 1.5),
            ("uuid", UUID("123e4567-e89b-12d3-a456-426614174000"), "123e4567-e89b-12d3-a456-426614174000"),
            ("enum", Color.BLUE, 2),
            ("bytes", b"abc", "abc"),
            ("none", None, None),
            ("bool", False, False),
        ]
    )
    def test_scalars(self, _name, value, expected):
        self.assertEqual(stringify_keys(value), expected)


class TestPayloads(unittest.TestCase):
    def test_to_api_payload(self):
        event = _build("page_view", "user_123", {"page": "home"})

        self.assertEqual(
            to_api_payload(event),
            {
                "event": "page_view",
                "distinct_id": "user_123",
                "properties": {"$lib": LIB_NAME, "$lib_version": VERSION, "page": "home"},
                "uuid": FIXED_UUID,
                "timestamp": FIXED_NOW,
            },
        )

    def test_payload_properties_match_input_without_library_keys(self):
        properties = {Color.RED: {"x": [1, {2: "two"}]}, "plain": "value"}
        payload = to_api_payload(_build(properties=properties))

        stripped = {
            k: v
            for k, v in payload["properties"].items()
            if k not in ("$lib", "$lib_version")
        }
        self.assertEqual(stripped, stringify_keys(properties))

    def test_batch_payload_preserves_order(self):
        events = [
            _build("page_view", "user_123", {"page": "home"}),
            _build("click", "user_123", {"button": "signup"}),
            _build("page_leave", "user_456"),
        ]

        batch = batch_payload(events)

        self.assertEqual(
            [msg["event"] for msg in batch["batch"]],
            ["page_view", "click", "page_leave"],
        )
        self.assertEqual(batch["batch"][0], to_api_payload(events[0]))

    def test_batch_payload_handles_empty_list(self):
        self.assertEqual(batch_payload([]), {"batch": []})

    def test_event_is_immutable(self):
        event = _build()

        with self.assertRaises(Exception):
            event.event = "other"

        self.assertIsInstance(event, Event)
