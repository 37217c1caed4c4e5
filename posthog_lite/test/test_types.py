import unittest

import pytest
from parameterized import parameterized

from posthog_lite.types import (
    FeatureFlag,
    FeatureFlagResult,
    FlagEvaluationResult,
    FlagMetadata,
    FlagReason,
    Result,
    decode_payload,
    normalize_decide_response,
)


def _v4_flag(enabled=True, variant=None, payload=None, id=1, version=2, reason="matched"):
    return {
        "key": "ignored",
        "enabled": enabled,
        "variant": variant,
        "metadata": {"id": id, "version": version, "payload": payload},
        "reason": {"code": "condition_match", "description": reason, "condition_index": 0},
    }


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, None),
        ("not json", "not json"),
        ('{"color": "red"}', {"color": "red"}),
        ("[0, 1, 2]", [0, 1, 2]),
        ("true", True),
        ("12", 12),
        ('"quoted"', "quoted"),
        ("", ""),
        ("NaN", "NaN"),
        ("{'single': 'quotes'}", "{'single': 'quotes'}"),
        ({"already": "decoded"}, {"already": "decoded"}),
        ([1, 2], [1, 2]),
        (3.5, 3.5),
        (False, False),
    ],
)
def test_decode_payload(raw, expected):
    assert decode_payload(raw) == expected


def test_decode_payload_never_raises_on_deep_nesting():
    raw = "[" * 100_000 + "]" * 100_000
    assert decode_payload(raw) == raw


class TestNormalizeLegacyResponse(unittest.TestCase):
    def test_flags_and_decoded_payloads(self):
        result = normalize_decide_response(
            {
                "featureFlags": {"beta": "v2", "enabled-flag": True, "off": False},
                "featureFlagPayloads": {
                    "beta": '{"color":"red"}',
                    "enabled-flag": "example-payload-string",
                },
            }
        )

        self.assertEqual(result.flags, {"beta": "v2", "enabled-flag": True, "off": False})
        self.assertEqual(
            result.payloads,
            {"beta": {"color": "red"}, "enabled-flag": "example-payload-string"},
        )
        self.assertIsNone(result.raw_flags)
        self.assertIsNone(result.request_id)
        self.assertIsNone(result.get_flag_details("beta"))

    def test_missing_mappings_default_to_empty(self):
        result = normalize_decide_response({})

        self.assertEqual(result.flags, {})
        self.assertEqual(result.payloads, {})
        self.assertIsNone(result.raw_flags)

    def test_null_mappings_default_to_empty(self):
        result = normalize_decide_response(
            {"featureFlags": None, "featureFlagPayloads": None}
        )

        self.assertEqual(result, FlagEvaluationResult())

    def test_request_id_is_kept(self):
        result = normalize_decide_response({"featureFlags": {}, "requestId": "rq-9"})

        self.assertEqual(result.request_id, "rq-9")

    @parameterized.expand([(None,), ([],), ("oops",)])
    def test_non_mapping_body_has_no_flags(self, body):
        self.assertEqual(normalize_decide_response(body), FlagEvaluationResult())


class TestNormalizeFlagDetailsResponse(unittest.TestCase):
    def test_boolean_flag(self):
        raw = {"flags": {"beta": _v4_flag()}, "requestId": "rq-1"}

        result = normalize_decide_response(raw)

        self.assertEqual(result.flags, {"beta": True})
        self.assertEqual(result.payloads, {"beta": None})
        self.assertIs(result.raw_flags, raw["flags"])
        self.assertEqual(result.request_id, "rq-1")

    def test_variant_takes_precedence_over_enabled(self):
        result = normalize_decide_response(
            {"flags": {"pricing": _v4_flag(variant="variant-a")}}
        )

        self.assertEqual(result.flags, {"pricing": "variant-a"})

    def test_disabled_flag(self):
        result = normalize_decide_response({"flags": {"off": _v4_flag(enabled=False)}})

        self.assertEqual(result.flags, {"off": False})

    def test_payloads_are_decoded(self):
        result = normalize_decide_response(
            {
                "flags": {
                    "json": _v4_flag(payload='{"animal": "hedgehog"}'),
                    "array": _v4_flag(payload="[0, 1, 2]"),
                    "text": _v4_flag(payload="example-payload-string"),
                }
            }
        )

        self.assertEqual(
            result.payloads,
            {
                "json": {"animal": "hedgehog"},
                "array": [0, 1, 2],
                "text": "example-payload-string",
            },
        )

    def test_missing_metadata_means_no_payload(self):
        result = normalize_decide_response({"flags": {"bare": {"enabled": True}}})

        self.assertEqual(result.flags, {"bare": True})
        self.assertEqual(result.payloads, {"bare": None})
        details = result.get_flag_details("bare")
        self.assertIsNone(details.metadata)
        self.assertIsNone(details.reason)

    def test_flag_details(self):
        result = normalize_decide_response({"flags": {"beta": _v4_flag(id=7, version=3)}})

        details = result.get_flag_details("beta")

        self.assertEqual(
            details,
            FeatureFlag(
                key="beta",
                enabled=True,
                variant=None,
                reason=FlagReason(
                    code="condition_match", condition_index=0, description="matched"
                ),
                metadata=FlagMetadata(id=7, payload=None, version=3, description=""),
            ),
        )
        self.assertIsNone(result.get_flag_details("missing"))

    def test_empty_flags_still_uses_flag_details_shape(self):
        result = normalize_decide_response({"flags": {}, "featureFlags": {"x": True}})

        self.assertEqual(result.flags, {})
        self.assertEqual(result.raw_flags, {})


class TestShapeEquivalence(unittest.TestCase):
    def test_boolean_flag_normalizes_the_same_in_both_shapes(self):
        v4 = normalize_decide_response({"flags": {"f": _v4_flag(enabled=True, variant=None)}})
        legacy = normalize_decide_response({"featureFlags": {"f": True}})

        self.assertEqual(v4.flags["f"], True)
        self.assertEqual(legacy.flags["f"], True)
        self.assertEqual(v4.flags, legacy.flags)

    def test_variant_flag_normalizes_the_same_in_both_shapes(self):
        v4 = normalize_decide_response(
            {"flags": {"f": _v4_flag(variant="control", payload='{"a": 1}')}}
        )
        legacy = normalize_decide_response(
            {"featureFlags": {"f": "control"}, "featureFlagPayloads": {"f": '{"a": 1}'}}
        )

        self.assertEqual(v4.flags, legacy.flags)
        self.assertEqual(v4.payloads, legacy.payloads)


class TestFeatureFlagResult(unittest.TestCase):
    def test_boolean_flag(self):
        result = FeatureFlagResult("new-dashboard", True, True)

        self.assertTrue(result.is_boolean())
        self.assertEqual(result.get_value(), True)

    def test_multivariate_flag(self):
        result = FeatureFlagResult("pricing-test", "variant-a", {"price": 99})

        self.assertFalse(result.is_boolean())
        self.assertEqual(result.get_value(), "variant-a")
        self.assertEqual(result.payload, {"price": 99})


class TestResult(unittest.TestCase):
    def test_ok(self):
        result = Result(value=1)

        self.assertTrue(result.ok)
        self.assertEqual(result.unwrap(), 1)

    def test_error(self):
        error = ValueError("boom")
        result = Result(error=error)

        self.assertFalse(result.ok)
        with self.assertRaises(ValueError):
            result.unwrap()
